from __future__ import annotations

from enum import Enum

# Holder value meaning "not lent to anyone".
HOLDER_NONE = 0


class BookState(str, Enum):
    AVAILABLE = "available"
    LENT = "lent"


class Book:
    """Represents a single book and who currently holds it."""

    def __init__(self, id: int, title: str, description: str, category_id: int,
                 person_id: int = HOLDER_NONE) -> None:
        self.id = id
        self.title = title
        self.description = description
        self.category_id = category_id
        self.person_id = person_id

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"#{self.id} {self.title} ({self.state.value})"

    @property
    def is_lent(self) -> bool:
        return self.person_id != HOLDER_NONE

    @property
    def state(self) -> BookState:
        return BookState.LENT if self.is_lent else BookState.AVAILABLE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category_id": self.category_id,
            "person_id": self.person_id,
            "state": self.state.value,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        holder = data.get("person_id")
        return Book(
            id=data["id"],
            title=data["title"],
            description=data["description"],
            category_id=data["category_id"],
            person_id=HOLDER_NONE if holder is None else int(holder),
        )
