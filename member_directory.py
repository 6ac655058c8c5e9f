import sqlite3
from typing import Optional

from database import get_db_connection
from member import Member


class MemberDirectory:
    """Member lookups. The loan workflows never write here."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    def get_by_id(self, member_id: int) -> Optional[Member]:
        conn = get_db_connection(self.db_file)
        try:
            row = conn.execute(
                "SELECT id, name, email FROM members WHERE id = ?", (member_id,)
            ).fetchone()
            return Member.from_dict(dict(row)) if row else None
        finally:
            conn.close()

    def add(self, name: str, email: str) -> Member:
        name = (name or "").strip()
        email = (email or "").strip()
        if not name or not email:
            raise ValueError("Name and email are required.")

        conn = get_db_connection(self.db_file)
        try:
            cursor = conn.execute(
                "INSERT INTO members (name, email) VALUES (?, ?)", (name, email)
            )
            return Member(id=cursor.lastrowid, name=name, email=email)
        except sqlite3.IntegrityError as e:
            raise ValueError(f"Member with email {email} already exists.") from e
        finally:
            conn.close()
