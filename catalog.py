"""Catalog store: book records and their listing."""

import logging
import re
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING

from database import (
    create_document,
    delete_document,
    get_document_by_id,
    get_documents,
    serialize_doc,
    update_document,
)
from errors import InvalidInput, NotFound
from schemas import Book, BookUpdate

logger = logging.getLogger(__name__)

SORTS = {
    "newest": [("created_at", DESCENDING)],
    "price_asc": [("price", ASCENDING)],
    "price_desc": [("price", DESCENDING)],
    "title": [("title", ASCENDING)],
}

NON_NULLABLE = ("title", "author", "price", "stock", "category")


def create_book(payload: Book) -> Dict[str, Any]:
    book_id = create_document("book", payload)
    logger.info("Book %s added: %s", book_id, payload.title)
    return get_book(book_id)


def get_book(book_id) -> Dict[str, Any]:
    doc = get_document_by_id("book", book_id)
    if not doc:
        raise NotFound("Book not found")
    return serialize_doc(doc)


def update_book(book_id: str, payload: BookUpdate) -> Dict[str, Any]:
    changes = payload.model_dump(exclude_unset=True)
    for field in NON_NULLABLE:
        if changes.get(field) is None:
            changes.pop(field, None)
    # null image clears the cover
    if "image" in changes and changes["image"] is None:
        changes["image"] = ""
    if not update_document("book", book_id, changes):
        raise NotFound("Book not found")
    logger.info("Book %s updated: %s", book_id, sorted(changes))
    return get_book(book_id)


def delete_book(book_id: str) -> Dict[str, Any]:
    # Orders keep their reference; it resolves to a placeholder on read.
    book = get_book(book_id)
    if not delete_document("book", book_id):
        raise NotFound("Book not found")
    logger.info("Book %s deleted", book_id)
    return book


def list_books(search: Optional[str] = None, category: Optional[str] = None, sort: Optional[str] = None) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {}
    if search:
        pattern = re.escape(search.strip())
        query["$or"] = [
            {"title": {"$regex": pattern, "$options": "i"}},
            {"author": {"$regex": pattern, "$options": "i"}},
        ]
    if category and category.lower() != "all":
        query["category"] = {"$regex": f"^{re.escape(category)}$", "$options": "i"}
    if sort is not None and sort not in SORTS:
        raise InvalidInput(f"Invalid sort. Must be one of: {', '.join(SORTS)}")
    books = get_documents("book", query, sort=SORTS[sort or "newest"])
    return [serialize_doc(b) for b in books]
