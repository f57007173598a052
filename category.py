from __future__ import annotations


class Category:
    def __init__(self, id: int, name: str) -> None:
        self.id = id
        self.name = name

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return self.name

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name}

    @staticmethod
    def from_dict(data: dict) -> "Category":
        return Category(id=data["id"], name=data["name"])
