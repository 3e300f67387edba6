from typing import Callable, Dict, Tuple

import mongomock
import pytest
from fastapi.testclient import TestClient

import catalog
import database
import main
import users
from schemas import BookCreate
from security import Role


@pytest.fixture
def db(monkeypatch):
    mock_db = mongomock.MongoClient()["bookstore_test"]
    monkeypatch.setattr(database, "db", mock_db)
    database.ensure_indexes()
    return mock_db


@pytest.fixture
def client(db) -> TestClient:
    return TestClient(main.app)


@pytest.fixture
def make_user(db) -> Callable[..., Tuple[str, str]]:
    """Register a user and return (user_id, token)."""
    counter = {"n": 0}

    def _make(name: str = "Reader", role: Role = Role.USER, email: str = None) -> Tuple[str, str]:
        counter["n"] += 1
        email = email or f"{name.lower()}{counter['n']}@example.com"
        result = users.register(name=name, email=email, password="secret123", role=role)
        return result["user"]["id"], result["token"]

    return _make


@pytest.fixture
def make_book(db) -> Callable[..., Dict]:
    def _make(title: str = "Dune", price: float = 10.0, stock: int = 5, category: str = "Fiction", author: str = "Frank Herbert") -> Dict:
        return catalog.create_book(BookCreate(title=title, author=author, price=price, stock=stock, category=category))

    return _make
