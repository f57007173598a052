import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict

from config import settings
from database import RecordStore, StoreError, create_store
from errors import ErrorKind, InvalidError, LibraryError, Reason, UnexpectedError
from library import Library

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INVALID: 400,
    ErrorKind.UNEXPECTED: 500,
}


# --- Models ---
class BookModel(BaseModel):
    id: int
    title: str
    description: str
    category_id: int
    person_id: int
    state: str


class BookCreateModel(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category_id: Optional[int] = None
    person_id: Optional[int] = None


class BookUpdateModel(BaseModel):
    description: Optional[str] = None


class BorrowModel(BaseModel):
    person_id: Optional[int] = None


class PersonModel(BaseModel):
    id: int
    first_name: str
    last_name: str
    alias: str
    email: str


class PersonCreateModel(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    alias: Optional[str] = None
    email: Optional[str] = None


class PersonUpdateModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    alias: Optional[str] = None
    email: Optional[str] = None


class CategoryModel(BaseModel):
    id: int
    name: str


class CategoryWriteModel(BaseModel):
    name: Optional[str] = None


class CreatedModel(BaseModel):
    id: int


# --- Dependencies ---
def get_library(request: Request) -> Library:
    return request.app.state.library


# --- Books ---
books_router = APIRouter(prefix="/books", tags=["books"])


@books_router.get("", response_model=List[BookModel])
def list_books(category_id: Optional[int] = None, library: Library = Depends(get_library)):
    """List every book, optionally only those in one category."""
    return [b.to_dict() for b in library.list_books(category_id=category_id)]


@books_router.post("", response_model=CreatedModel)
def create_book(payload: BookCreateModel, library: Library = Depends(get_library)):
    book = library.create_book(payload.title, payload.description, payload.category_id, payload.person_id)
    return {"id": book.id}


@books_router.put("/prestar/{book_id}", response_model=BookModel)
@books_router.put("/{book_id}/borrow", response_model=BookModel)
def borrow_book(book_id: int, payload: Optional[BorrowModel] = None, library: Library = Depends(get_library)):
    """Lend an available book to a person."""
    person_id = payload.person_id if payload is not None else None
    return library.borrow_book(book_id, person_id).to_dict()


@books_router.put("/devolver/{book_id}", response_model=BookModel)
@books_router.put("/{book_id}/return", response_model=BookModel)
def return_book(book_id: int, library: Library = Depends(get_library)):
    """Give a lent book back to the library."""
    return library.return_book(book_id).to_dict()


@books_router.get("/{book_id}", response_model=BookModel)
def get_book(book_id: int, library: Library = Depends(get_library)):
    return library.get_book(book_id).to_dict()


@books_router.put("/{book_id}", response_model=BookModel)
def update_book(book_id: int, payload: BookUpdateModel, library: Library = Depends(get_library)):
    """Update a book's description. Other fields in the body are ignored."""
    return library.update_book(book_id, payload.description).to_dict()


@books_router.delete("/{book_id}")
def delete_book(book_id: int, library: Library = Depends(get_library)):
    book = library.delete_book(book_id)
    return {"message": "Book removed.", "book": book.to_dict()}


# --- Persons ---
persons_router = APIRouter(prefix="/persons", tags=["persons"])


@persons_router.get("", response_model=List[PersonModel])
def list_persons(library: Library = Depends(get_library)):
    return [p.to_dict() for p in library.list_persons()]


@persons_router.post("", response_model=PersonModel)
def create_person(payload: PersonCreateModel, library: Library = Depends(get_library)):
    person = library.create_person(payload.first_name, payload.last_name, payload.alias, payload.email)
    return person.to_dict()


@persons_router.get("/{person_id}", response_model=PersonModel)
def get_person(person_id: int, library: Library = Depends(get_library)):
    return library.get_person(person_id).to_dict()


@persons_router.get("/{person_id}/books", response_model=List[BookModel])
def get_person_books(person_id: int, library: Library = Depends(get_library)):
    """Books currently held by a person."""
    return [b.to_dict() for b in library.books_held_by(person_id)]


@persons_router.put("/{person_id}", response_model=PersonModel)
def update_person(person_id: int, payload: PersonUpdateModel, library: Library = Depends(get_library)):
    # Only the fields actually sent count, so an explicit email is caught.
    changes = {name: getattr(payload, name) for name in payload.model_fields_set}
    return library.update_person(person_id, changes).to_dict()


@persons_router.delete("/{person_id}")
def delete_person(person_id: int, library: Library = Depends(get_library)):
    person = library.delete_person(person_id)
    return {"message": "Person removed.", "person": person.to_dict()}


# --- Categories ---
categories_router = APIRouter(prefix="/categories", tags=["categories"])


@categories_router.get("", response_model=List[CategoryModel])
def list_categories(library: Library = Depends(get_library)):
    return [c.to_dict() for c in library.list_categories()]


@categories_router.post("", response_model=CategoryModel)
def create_category(payload: CategoryWriteModel, library: Library = Depends(get_library)):
    return library.create_category(payload.name).to_dict()


@categories_router.get("/{category_id}", response_model=CategoryModel)
def get_category(category_id: int, library: Library = Depends(get_library)):
    return library.get_category(category_id).to_dict()


@categories_router.get("/{category_id}/books", response_model=List[BookModel])
def get_category_books(category_id: int, library: Library = Depends(get_library)):
    return [b.to_dict() for b in library.books_in_category(category_id)]


@categories_router.put("/{category_id}", response_model=CategoryModel)
def update_category(category_id: int, payload: CategoryWriteModel, library: Library = Depends(get_library)):
    return library.update_category(category_id, payload.name).to_dict()


@categories_router.delete("/{category_id}")
def delete_category(category_id: int, library: Library = Depends(get_library)):
    category = library.delete_category(category_id)
    return {"message": "Category removed.", "category": category.to_dict()}


# --- Error handling ---
async def library_error_handler(request: Request, exc: LibraryError) -> JSONResponse:
    return JSONResponse(status_code=STATUS_BY_KIND[exc.kind], content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Bodies and ids that fail to parse get the same error shape as everything else.
    problems = []
    for detail in exc.errors():
        location = ".".join(str(part) for part in detail.get("loc", ()) if part != "body")
        problems.append(f"{location}: {detail.get('msg')}" if location else str(detail.get("msg")))
    error = InvalidError(Reason.MALFORMED_INPUT, "Malformed request: " + "; ".join(problems) + ".")
    return JSONResponse(status_code=STATUS_BY_KIND[error.kind], content=error.to_dict())


async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    logger.exception("Store failure while handling %s %s", request.method, request.url.path, exc_info=exc)
    error = UnexpectedError(Reason.STORE_FAILURE, "Unexpected error.")
    return JSONResponse(status_code=STATUS_BY_KIND[error.kind], content=error.to_dict())


# --- Application ---
def create_app(store: Optional[RecordStore] = None) -> FastAPI:
    """Build the API. Without a store, one is opened from settings at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(level=settings.log_level)
        owned = None
        if app.state.library is None:
            owned = Library(create_store(settings))
            app.state.library = owned
            logger.info("Record store opened (%s)", settings.store_backend)
        yield
        if owned is not None:
            owned.close()
            app.state.library = None

    app = FastAPI(title=settings.app_name, version=settings.app_version, debug=settings.debug, lifespan=lifespan)
    app.state.library = Library(store) if store is not None else None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(LibraryError, library_error_handler)
    app.add_exception_handler(StoreError, store_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    app.include_router(books_router)
    app.include_router(persons_router)
    app.include_router(categories_router)

    @app.get("/health")
    def health():
        return {"status": "ok", "version": settings.app_version}

    return app


app = create_app()
