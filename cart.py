"""Cart holder: the cart embedded in each user document.

Entries are stored as {"book": ObjectId, "quantity": int}, one per book.
Mutations are single update statements against the user document, so two
requests touching the same cart do not overwrite each other.
"""

import logging
from typing import Any, Dict, List

from database import collection, get_document_by_id, serialize_doc, to_object_id
from errors import InvalidInput, NotFound

logger = logging.getLogger(__name__)


def _user_oid(user_id):
    oid = to_object_id(user_id)
    if oid is None or collection("user").count_documents({"_id": oid}) == 0:
        raise NotFound("User not found")
    return oid


def _check_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InvalidInput("Quantity must be at least 1")
    return quantity


def books_by_id(book_ids) -> Dict[Any, Dict[str, Any]]:
    """Fetch the given books in one query, keyed by ObjectId."""
    ids = list({oid for oid in book_ids if oid is not None})
    if not ids:
        return {}
    return {b["_id"]: b for b in collection("book").find({"_id": {"$in": ids}})}


def view(user_id) -> Dict[str, Any]:
    user = get_document_by_id("user", user_id)
    if not user:
        raise NotFound("User not found")
    entries = user.get("cart", [])
    books = books_by_id(e["book"] for e in entries)

    items: List[Dict[str, Any]] = []
    subtotal = 0.0
    for entry in entries:
        book = books.get(entry["book"])
        if book is not None:
            subtotal += float(book.get("price", 0)) * entry["quantity"]
        items.append({
            "book_id": entry["book"],
            "quantity": entry["quantity"],
            "book": book,
        })
    return serialize_doc({
        "cart": items,
        "total_items": sum(e["quantity"] for e in entries),
        "subtotal": round(subtotal, 2),
    })


def merge_entry(user_oid, book_oid, quantity: int) -> None:
    """Add quantity to the entry for a book, pushing a new entry only when the book is absent."""
    users = collection("user")
    merged = users.update_one({"_id": user_oid, "cart.book": book_oid}, {"$inc": {"cart.$.quantity": quantity}})
    if merged.matched_count == 0:
        pushed = users.update_one(
            {"_id": user_oid, "cart.book": {"$ne": book_oid}},
            {"$push": {"cart": {"book": book_oid, "quantity": quantity}}},
        )
        if pushed.matched_count == 0:
            # another request pushed the same book in between
            users.update_one({"_id": user_oid, "cart.book": book_oid}, {"$inc": {"cart.$.quantity": quantity}})


def add_item(user_id, book_id, quantity: int = 1) -> Dict[str, Any]:
    quantity = _check_quantity(quantity)
    if get_document_by_id("book", book_id) is None:
        raise NotFound("Book not found")
    uid = _user_oid(user_id)
    merge_entry(uid, to_object_id(book_id), quantity)
    logger.debug("User %s added %d of book %s to cart", user_id, quantity, book_id)
    return view(uid)


def update_item(user_id, book_id, quantity: int) -> Dict[str, Any]:
    quantity = _check_quantity(quantity)
    uid = _user_oid(user_id)
    bid = to_object_id(book_id)
    if bid is None:
        raise NotFound("Item not found in cart")
    res = collection("user").update_one({"_id": uid, "cart.book": bid}, {"$set": {"cart.$.quantity": quantity}})
    if res.matched_count == 0:
        raise NotFound("Item not found in cart")
    return view(uid)


def remove_item(user_id, book_id) -> Dict[str, Any]:
    uid = _user_oid(user_id)
    bid = to_object_id(book_id)
    if bid is None:
        raise NotFound("Item not found in cart")
    res = collection("user").update_one({"_id": uid, "cart.book": bid}, {"$pull": {"cart": {"book": bid}}})
    if res.matched_count == 0:
        raise NotFound("Item not found in cart")
    return view(uid)


def clear(user_id) -> Dict[str, Any]:
    uid = _user_oid(user_id)
    collection("user").update_one({"_id": uid}, {"$set": {"cart": []}})
    return view(uid)
