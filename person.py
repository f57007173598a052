from __future__ import annotations


class Person:
    """A library member who can hold books. The email never changes once stored."""

    def __init__(self, id: int, first_name: str, last_name: str, alias: str, email: str) -> None:
        self.id = id
        self.first_name = first_name
        self.last_name = last_name
        self.alias = alias
        self.email = email

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.first_name} {self.last_name} <{self.email}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "alias": self.alias,
            "email": self.email,
        }

    @staticmethod
    def from_dict(data: dict) -> "Person":
        return Person(
            id=data["id"],
            first_name=data["first_name"],
            last_name=data["last_name"],
            alias=data["alias"],
            email=data["email"],
        )
