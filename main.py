import logging
import subprocess
import sys
from functools import wraps
from typing import Optional

import typer

from config import settings
from database import StoreError, create_store
from errors import LibraryError
from library import Library
from utils.ui_helpers import print_message, print_records, set_output_mode

logger = logging.getLogger(__name__)

BOOK_COLUMNS = ("id", "title", "description", "category_id", "person_id", "state")
PERSON_COLUMNS = ("id", "first_name", "last_name", "alias", "email")
CATEGORY_COLUMNS = ("id", "name")

app = typer.Typer(help="Lending library CLI")


def get_library() -> Library:
    return Library(create_store(settings))


def report_errors(func):
    """Turn library and store failures into a message and exit code 1."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except LibraryError as e:
            print_message(f"Error ({e.reason.value}): {e.message}", style="bold red")
            raise typer.Exit(code=1)
        except StoreError:
            logger.exception("Store failure in %s", func.__name__)
            print_message("Unexpected error.", style="bold red")
            raise typer.Exit(code=1)
    return wrapper


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    )
):
    """Global CLI options (output mode)."""
    logging.basicConfig(level=settings.log_level)
    if output:
        set_output_mode(output)


@app.command("init-db")
@report_errors
def cli_init_db():
    """Create the database tables."""
    get_library().close()
    print_message(f"Database ready at {settings.database_file}")


@app.command("books")
@report_errors
def cli_books(category_id: Optional[int] = typer.Option(None, "--category-id", "-c", help="Only this category")):
    """List books."""
    books = get_library().list_books(category_id=category_id)
    print_records("Books", [b.to_dict() for b in books], BOOK_COLUMNS)


@app.command("persons")
@report_errors
def cli_persons():
    """List persons."""
    persons = get_library().list_persons()
    print_records("Persons", [p.to_dict() for p in persons], PERSON_COLUMNS)


@app.command("categories")
@report_errors
def cli_categories():
    """List categories."""
    categories = get_library().list_categories()
    print_records("Categories", [c.to_dict() for c in categories], CATEGORY_COLUMNS)


@app.command("add-category")
@report_errors
def cli_add_category(name: str):
    category = get_library().create_category(name)
    print_message(f"Added category {category.id}: {category.name}")


@app.command("add-person")
@report_errors
def cli_add_person(first_name: str, last_name: str, alias: str, email: str):
    person = get_library().create_person(first_name, last_name, alias, email)
    print_message(f"Added person {person.id}: {person.first_name} {person.last_name}")


@app.command("add-book")
@report_errors
def cli_add_book(
    title: str,
    description: str,
    category_id: int,
    person_id: Optional[int] = typer.Option(None, "--person-id", "-p", help="Lend it to this person right away"),
):
    book = get_library().create_book(title, description, category_id, person_id)
    print_message(f"Added book {book.id}: {book.title} ({book.state.value})")


@app.command("lend")
@report_errors
def cli_lend(book_id: int, person_id: int):
    """Lend a book to a person."""
    book = get_library().borrow_book(book_id, person_id)
    print_message(f"Book {book.id} lent to person {book.person_id}.")


@app.command("return")
@report_errors
def cli_return(book_id: int):
    """Return a lent book."""
    book = get_library().return_book(book_id)
    print_message(f"Book {book.id} returned.")


@app.command("remove")
@report_errors
def cli_remove(book_id: int):
    """Delete an available book."""
    book = get_library().delete_book(book_id)
    print_message(f"Book {book.id} has been removed.")


@app.command("serve")
def cli_serve(
    host: str = typer.Option(settings.api_host, help="Bind address"),
    port: int = typer.Option(settings.api_port, help="Port"),
):
    """Run the HTTP API with uvicorn."""
    print(f"Starting API on http://{host}:{port}")
    subprocess.run([sys.executable, "-m", "uvicorn", "api:app", "--host", host, "--port", str(port)])


if __name__ == "__main__":
    app()
