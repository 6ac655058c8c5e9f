from __future__ import annotations


class Member:
    """A registered library member."""

    def __init__(self, id: int, name: str, email: str) -> None:
        self.id = id
        self.name = name.strip()
        self.email = email.strip()

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "email": self.email}

    @staticmethod
    def from_dict(data: dict) -> "Member":
        return Member(id=int(data["id"]), name=data["name"], email=data["email"])
