import logging
from typing import Any, Dict, List, Optional

from book import Book, HOLDER_NONE
from category import Category
from database import DuplicateRecordError, Entity, RecordStore
from errors import ConflictError, InvalidError, NotFoundError, Reason
from person import Person
from utils.validators import TextValidator, normalize_email

logger = logging.getLogger(__name__)

PERSON_NAME_FIELDS = ("first_name", "last_name", "alias")


def _missing(values: Dict[str, Any]) -> None:
    missing = TextValidator.missing_fields(values)
    if missing:
        raise InvalidError(Reason.MISSING_FIELD, f"Missing required field(s): {', '.join(missing)}.")


def _clean(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


class Library:
    """Enforces the lending rules for books, persons and categories.

    A book is AVAILABLE while its holder is ``HOLDER_NONE`` and LENT otherwise.
    Holder changes go through the store's conditional update so two callers
    can never both move the same book out of the same state.
    """

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    # ------------------------- Books ------------------------- #
    def list_books(self, category_id: Optional[int] = None) -> List[Book]:
        if category_id is None:
            rows = self.store.list(Entity.BOOKS)
        else:
            rows = self.store.list(Entity.BOOKS, category_id=category_id)
        return [Book.from_dict(row) for row in rows]

    def get_book(self, book_id: int) -> Book:
        row = self.store.get(Entity.BOOKS, book_id)
        if row is None:
            raise NotFoundError(Reason.BOOK_NOT_FOUND, f"Book {book_id} not found.")
        return Book.from_dict(row)

    def create_book(self, title: Optional[str], description: Optional[str],
                    category_id: Optional[int], person_id: Optional[int] = None) -> Book:
        """Create a book; it starts LENT when a valid holder is given."""
        _missing({"title": title, "description": description, "category_id": category_id})

        if self.store.get(Entity.CATEGORIES, category_id) is None:
            raise InvalidError(Reason.UNKNOWN_REFERENCE, f"Category {category_id} does not exist.")

        holder = HOLDER_NONE if person_id is None else person_id
        if holder != HOLDER_NONE and self.store.get(Entity.PERSONS, holder) is None:
            raise InvalidError(Reason.UNKNOWN_REFERENCE, f"Person {holder} does not exist.")

        book_id = self.store.insert(Entity.BOOKS, {
            "title": _clean(title),
            "description": _clean(description),
            "category_id": category_id,
            "person_id": holder,
        })
        book = self.get_book(book_id)
        logger.info("Created book %s (%s)", book_id, book.state.value)
        return book

    def update_book(self, book_id: int, description: Optional[str]) -> Book:
        """Change a book's description. Nothing else is touched."""
        self.get_book(book_id)
        _missing({"description": description})
        if not self.store.update_fields(Entity.BOOKS, book_id, {"description": _clean(description)}):
            raise NotFoundError(Reason.BOOK_NOT_FOUND, f"Book {book_id} not found.")
        return self.get_book(book_id)

    def borrow_book(self, book_id: int, person_id: Optional[int]) -> Book:
        book = self.get_book(book_id)
        if book.is_lent:
            logger.info("Borrow of book %s rejected: held by person %s", book_id, book.person_id)
            raise ConflictError(Reason.ALREADY_LENT, f"Book {book_id} is already lent.")

        if person_id is None or self.store.get(Entity.PERSONS, person_id) is None:
            raise NotFoundError(Reason.PERSON_NOT_FOUND, f"Person {person_id} not found.")

        lent = self.store.update_fields(
            Entity.BOOKS, book_id, {"person_id": person_id},
            expected={"person_id": HOLDER_NONE},
            requires=(Entity.PERSONS, person_id),
        )
        if not lent:
            # Lost a race: the book is gone, someone else borrowed it first,
            # or the person was deleted since the check above.
            if self.get_book(book_id).is_lent:
                logger.info("Borrow of book %s rejected: lent concurrently", book_id)
                raise ConflictError(Reason.ALREADY_LENT, f"Book {book_id} is already lent.")
            logger.info("Borrow of book %s rejected: person %s deleted concurrently", book_id, person_id)
            raise NotFoundError(Reason.PERSON_NOT_FOUND, f"Person {person_id} not found.")

        logger.info("Book %s lent to person %s", book_id, person_id)
        return self.get_book(book_id)

    def return_book(self, book_id: int) -> Book:
        while True:
            book = self.get_book(book_id)
            if not book.is_lent:
                raise ConflictError(Reason.NOT_LENT, f"Book {book_id} is not lent.")
            returned = self.store.update_fields(
                Entity.BOOKS, book_id, {"person_id": HOLDER_NONE}, expected={"person_id": book.person_id}
            )
            if returned:
                break

        logger.info("Book %s returned by person %s", book_id, book.person_id)
        return self.get_book(book_id)

    def delete_book(self, book_id: int) -> Book:
        """Delete an AVAILABLE book and return the removed record."""
        book = self.get_book(book_id)
        if book.is_lent:
            raise ConflictError(Reason.CURRENTLY_LENT, f"Book {book_id} is currently lent and cannot be deleted.")

        if not self.store.delete(Entity.BOOKS, book_id, expected={"person_id": HOLDER_NONE}):
            self.get_book(book_id)
            raise ConflictError(Reason.CURRENTLY_LENT, f"Book {book_id} is currently lent and cannot be deleted.")

        logger.info("Deleted book %s", book_id)
        return book

    # ------------------------- Persons ------------------------- #
    def list_persons(self) -> List[Person]:
        return [Person.from_dict(row) for row in self.store.list(Entity.PERSONS)]

    def get_person(self, person_id: int) -> Person:
        row = self.store.get(Entity.PERSONS, person_id)
        if row is None:
            raise NotFoundError(Reason.PERSON_NOT_FOUND, f"Person {person_id} not found.")
        return Person.from_dict(row)

    def create_person(self, first_name: Optional[str], last_name: Optional[str],
                      alias: Optional[str], email: Optional[str]) -> Person:
        _missing({"first_name": first_name, "last_name": last_name, "alias": alias, "email": email})
        email = normalize_email(email)

        if self.store.list(Entity.PERSONS, email=email):
            raise ConflictError(Reason.DUPLICATE_EMAIL, f"Email {email} is already registered.")
        try:
            person_id = self.store.insert(Entity.PERSONS, {
                "first_name": _clean(first_name),
                "last_name": _clean(last_name),
                "alias": _clean(alias),
                "email": email,
            })
        except DuplicateRecordError as e:
            raise ConflictError(Reason.DUPLICATE_EMAIL, f"Email {email} is already registered.") from e

        logger.info("Created person %s", person_id)
        return self.get_person(person_id)

    def update_person(self, person_id: int, changes: Dict[str, Any]) -> Person:
        """Update names and alias. Any attempt to send an email is rejected."""
        self.get_person(person_id)
        if "email" in changes:
            raise InvalidError(Reason.EMAIL_IMMUTABLE, "Email cannot be modified.")

        unknown = sorted(name for name in changes if name not in PERSON_NAME_FIELDS)
        if unknown:
            raise InvalidError(Reason.MALFORMED_INPUT, f"Unknown field(s): {', '.join(unknown)}.")

        # Fields that were sent must carry a value; absent ones stay as they are.
        blank = TextValidator.missing_fields(changes)
        if blank:
            raise InvalidError(Reason.MISSING_FIELD, f"Field(s) sent without a value: {', '.join(blank)}.")

        updates = {name: _clean(value) for name, value in changes.items()}
        if not updates:
            raise InvalidError(
                Reason.MISSING_FIELD,
                f"Provide at least one of: {', '.join(PERSON_NAME_FIELDS)}.",
            )

        if not self.store.update_fields(Entity.PERSONS, person_id, updates):
            raise NotFoundError(Reason.PERSON_NOT_FOUND, f"Person {person_id} not found.")
        return self.get_person(person_id)

    def books_held_by(self, person_id: int) -> List[Book]:
        self.get_person(person_id)
        return [Book.from_dict(row) for row in self.store.list(Entity.BOOKS, person_id=person_id)]

    def delete_person(self, person_id: int) -> Person:
        person = self.get_person(person_id)
        held = self.store.list(Entity.BOOKS, person_id=person_id)
        if held:
            logger.info("Delete of person %s rejected: holds %d book(s)", person_id, len(held))
            raise ConflictError(
                Reason.HAS_ASSOCIATED_BOOKS,
                f"Person {person_id} has {len(held)} book(s) lent and cannot be deleted.",
            )
        if not self.store.delete(Entity.PERSONS, person_id, unreferenced_by=(Entity.BOOKS, "person_id")):
            # A book was lent to this person after the check above.
            self.get_person(person_id)
            logger.info("Delete of person %s rejected: borrowed concurrently", person_id)
            raise ConflictError(
                Reason.HAS_ASSOCIATED_BOOKS,
                f"Person {person_id} has book(s) lent and cannot be deleted.",
            )

        logger.info("Deleted person %s", person_id)
        return person

    # ------------------------- Categories ------------------------- #
    def list_categories(self) -> List[Category]:
        return [Category.from_dict(row) for row in self.store.list(Entity.CATEGORIES)]

    def get_category(self, category_id: int) -> Category:
        row = self.store.get(Entity.CATEGORIES, category_id)
        if row is None:
            raise NotFoundError(Reason.CATEGORY_NOT_FOUND, f"Category {category_id} not found.")
        return Category.from_dict(row)

    def _ensure_unique_name(self, name: str, exclude_id: Optional[int] = None) -> None:
        for row in self.store.list(Entity.CATEGORIES, name=name):
            if row["id"] != exclude_id:
                raise ConflictError(Reason.DUPLICATE_NAME, f"Category {name} already exists.")

    def create_category(self, name: Optional[str]) -> Category:
        _missing({"name": name})
        name = _clean(name)
        self._ensure_unique_name(name)
        try:
            category_id = self.store.insert(Entity.CATEGORIES, {"name": name})
        except DuplicateRecordError as e:
            raise ConflictError(Reason.DUPLICATE_NAME, f"Category {name} already exists.") from e

        logger.info("Created category %s", category_id)
        return self.get_category(category_id)

    def update_category(self, category_id: int, name: Optional[str]) -> Category:
        self.get_category(category_id)
        _missing({"name": name})
        name = _clean(name)
        self._ensure_unique_name(name, exclude_id=category_id)
        try:
            updated = self.store.update_fields(Entity.CATEGORIES, category_id, {"name": name})
        except DuplicateRecordError as e:
            raise ConflictError(Reason.DUPLICATE_NAME, f"Category {name} already exists.") from e
        if not updated:
            raise NotFoundError(Reason.CATEGORY_NOT_FOUND, f"Category {category_id} not found.")
        return self.get_category(category_id)

    def books_in_category(self, category_id: int) -> List[Book]:
        self.get_category(category_id)
        return self.list_books(category_id=category_id)

    def delete_category(self, category_id: int) -> Category:
        category = self.get_category(category_id)
        books = self.store.list(Entity.BOOKS, category_id=category_id)
        if books:
            raise ConflictError(
                Reason.HAS_ASSOCIATED_BOOKS,
                f"Category {category_id} has {len(books)} book(s) and cannot be deleted.",
            )
        if not self.store.delete(Entity.CATEGORIES, category_id, unreferenced_by=(Entity.BOOKS, "category_id")):
            self.get_category(category_id)
            raise ConflictError(
                Reason.HAS_ASSOCIATED_BOOKS,
                f"Category {category_id} has book(s) and cannot be deleted.",
            )

        logger.info("Deleted category %s", category_id)
        return category

    def close(self) -> None:
        self.store.close()
