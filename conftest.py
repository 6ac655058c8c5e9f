import os
import tempfile
import pytest

import database

# Modules that build a Library at import time (api.py) must never touch the
# working directory's library.db during tests.
os.environ.setdefault(
    "LIBRARY_DB_FILE",
    os.path.join(tempfile.gettempdir(), f"library_pytest_{os.getpid()}.db"),
)

from library import Library


@pytest.fixture
def lib(tmp_path, request, monkeypatch):
    # A fresh database file per test
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    # Default connections opened directly by tests land in the same file
    monkeypatch.setattr(database, "DATABASE_FILE", db_file)
    lib = Library(db_file=db_file)
    yield lib
    lib.close()


@pytest.fixture
def make_book(lib):
    def _make(title="Bumi Manusia", author="Pramoedya Ananta Toer", stock=1):
        return lib.add_book(title, author, stock)
    return _make


@pytest.fixture
def make_member(lib):
    counter = {"n": 0}

    def _make(name=None):
        counter["n"] += 1
        n = counter["n"]
        return lib.add_member(name or f"Member {n}", f"member{n}@example.com")
    return _make
