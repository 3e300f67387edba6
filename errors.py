"""Domain errors raised by the service modules and rendered by the API."""

from typing import Any, Dict, Optional


class BookstoreError(Exception):
    status_code = 500
    code = "Error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "error": self.code, **self.details}


class NotFound(BookstoreError):
    status_code = 404
    code = "NotFound"


class InvalidInput(BookstoreError):
    status_code = 400
    code = "InvalidInput"


class Unauthorized(BookstoreError):
    status_code = 401
    code = "Unauthorized"


class Forbidden(BookstoreError):
    status_code = 403
    code = "Forbidden"


class Conflict(BookstoreError):
    status_code = 409
    code = "Conflict"


class EmptyCart(BookstoreError):
    status_code = 400
    code = "EmptyCart"

    def __init__(self, message: str = "Cart is empty"):
        super().__init__(message)


class DanglingReference(BookstoreError):
    status_code = 400
    code = "DanglingReference"

    def __init__(self, book_id: str):
        super().__init__("One or more books in cart no longer exist", {"book_id": book_id})
        self.book_id = book_id


class InsufficientStock(BookstoreError):
    status_code = 400
    code = "InsufficientStock"

    def __init__(self, book_id: str, title: str, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for {title}. Available: {available}, Requested: {requested}",
            {"book_id": book_id, "title": title, "available": available, "requested": requested},
        )
        self.book_id = book_id
        self.available = available
        self.requested = requested
