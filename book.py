from __future__ import annotations


class Book:
    """A catalog entry together with its count of available copies."""

    def __init__(self, id: int, title: str, author: str, stock: int = 0) -> None:
        self.id = id
        self.title = title.strip()
        self.author = author.strip()
        self.stock = stock

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} (stock: {self.stock})"

    def __repr__(self) -> str:  # pragma: no cover
        return f"Book(id={self.id!r}, title={self.title!r}, stock={self.stock!r})"

    @property
    def available(self) -> bool:
        return self.stock > 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "stock": self.stock,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            id=int(data["id"]),
            title=data["title"],
            author=data["author"],
            stock=int(data.get("stock") or 0),
        )
