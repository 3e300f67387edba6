"""
Order placement and the order ledger.

Placing an order runs in this order:

1. read the cart (or the caller's line items) and pre-flight check every book,
2. reserve stock per line with one conditional update
   (``stock -= n`` only where ``stock >= n``),
3. claim the cart by emptying it only if it still equals what was read,
4. insert the order.

A failed pre-flight changes nothing. Once reservations start, every failure
path releases what was reserved before the error propagates, so stock never
goes negative and the same units are never sold twice.
"""

import logging
from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Optional, Tuple

from bson import ObjectId
from pydantic import ValidationError
from pymongo import DESCENDING, ReturnDocument

from cart import books_by_id, merge_entry
from database import collection, create_document, get_documents, now, serialize_doc, to_object_id, update_document
from errors import BookstoreError, Conflict, DanglingReference, EmptyCart, InsufficientStock, InvalidInput, NotFound
from schemas import ORDER_STATUSES, LineItem, Order, OrderLine

logger = logging.getLogger(__name__)

MISSING_BOOK_TITLE = "Book not found"

Line = Tuple[ObjectId, int]
Reservation = Tuple[ObjectId, int, Dict[str, Any]]


def _dangling(book_id: ObjectId) -> BookstoreError:
    return DanglingReference(str(book_id))


def _unknown_book(book_id: ObjectId) -> BookstoreError:
    return NotFound(f"Book with ID {book_id} not found", {"book_id": str(book_id)})


def _merge_lines(lines: Iterable[Line]) -> List[Line]:
    merged: "OrderedDict[ObjectId, int]" = OrderedDict()
    for book_id, quantity in lines:
        merged[book_id] = merged.get(book_id, 0) + quantity
    return list(merged.items())


def _load_user(user_id) -> Dict[str, Any]:
    oid = to_object_id(user_id)
    user = collection("user").find_one({"_id": oid}) if oid else None
    if not user:
        raise NotFound("User not found")
    return user


def _preflight(lines: List[Line], missing_error) -> None:
    books = books_by_id(book_id for book_id, _ in lines)
    for book_id, quantity in lines:
        book = books.get(book_id)
        if book is None:
            raise missing_error(book_id)
        available = int(book.get("stock", 0))
        if available < quantity:
            raise InsufficientStock(str(book_id), book.get("title", ""), available, quantity)


def _release(reserved: List[Reservation]) -> None:
    books = collection("book")
    for book_id, quantity, _ in reserved:
        books.update_one({"_id": book_id}, {"$inc": {"stock": quantity}})
        logger.warning("Released %d reserved units of book %s", quantity, book_id)


def _reserve(lines: List[Line], missing_error) -> List[Reservation]:
    """Decrement stock line by line, all or nothing."""
    books = collection("book")
    reserved: List[Reservation] = []
    try:
        for book_id, quantity in lines:
            book = books.find_one_and_update(
                {"_id": book_id, "stock": {"$gte": quantity}},
                {"$inc": {"stock": -quantity}},
                return_document=ReturnDocument.AFTER,
            )
            if book is None:
                current = books.find_one({"_id": book_id})
                if current is None:
                    raise missing_error(book_id)
                raise InsufficientStock(str(book_id), current.get("title", ""), int(current.get("stock", 0)), quantity)
            reserved.append((book_id, quantity, book))
    except Exception:
        _release(reserved)
        raise
    return reserved


def _total(reserved: List[Reservation]) -> float:
    return round(sum(float(book.get("price", 0)) * quantity for _, quantity, book in reserved), 2)


def _insert_order(user_oid: ObjectId, reserved: List[Reservation]) -> ObjectId:
    order = Order(
        user=user_oid,
        books=[OrderLine(book=book_id, quantity=quantity) for book_id, quantity, _ in reserved],
        total_amount=_total(reserved),
        status="pending",
        ordered_at=now(),
    )
    return create_document("order", order)


def _claim_cart(user_oid: ObjectId, snapshot: List[Dict[str, Any]]) -> bool:
    res = collection("user").update_one(
        {"_id": user_oid, "cart": snapshot},
        {"$set": {"cart": [], "updated_at": now()}},
    )
    return res.matched_count == 1


def _restore_cart(user_oid: ObjectId, snapshot: List[Dict[str, Any]]) -> None:
    # merge so a book re-added meanwhile keeps a single entry
    for entry in snapshot:
        merge_entry(user_oid, entry["book"], int(entry.get("quantity", 1)))


def place_from_cart(user_id) -> Dict[str, Any]:
    """Turn the user's cart into a pending order and empty the cart."""
    user = _load_user(user_id)
    snapshot = user.get("cart") or []
    if not snapshot:
        raise EmptyCart()

    lines = _merge_lines((entry["book"], int(entry.get("quantity", 1))) for entry in snapshot)
    try:
        _preflight(lines, _dangling)
        reserved = _reserve(lines, _dangling)
    except BookstoreError as exc:
        logger.info("Order rejected for user %s: %s", user_id, exc.message)
        raise

    if not _claim_cart(user["_id"], snapshot):
        _release(reserved)
        raise Conflict("Cart changed while the order was being placed, please try again")

    try:
        order_id = _insert_order(user["_id"], reserved)
    except Exception:
        logger.exception("Could not save order for user %s", user_id)
        _release(reserved)
        _restore_cart(user["_id"], snapshot)
        raise

    logger.info("Order %s placed by user %s (%d lines)", order_id, user_id, len(reserved))
    return get(order_id)


def place_manual(user_id, items: List[Any], total_amount: Optional[float] = None) -> Dict[str, Any]:
    """Place an order from explicit line items; the stored cart is left alone.

    The total is always computed from current prices. A caller supplied
    `total_amount` is only compared and logged when it disagrees.
    """
    user = _load_user(user_id)
    if not items:
        raise InvalidInput("No books in order")

    raw: List[Line] = []
    for item in items:
        if isinstance(item, dict):
            try:
                item = LineItem(**item)
            except ValidationError:
                raise InvalidInput("Each book needs a book id and a quantity of at least 1")
        book_id = to_object_id(item.book)
        if book_id is None:
            raise NotFound(f"Book with ID {item.book} not found", {"book_id": item.book})
        if item.quantity < 1:
            raise InvalidInput("Quantity must be at least 1")
        raw.append((book_id, item.quantity))
    lines = _merge_lines(raw)

    try:
        _preflight(lines, _unknown_book)
        reserved = _reserve(lines, _unknown_book)
    except BookstoreError as exc:
        logger.info("Manual order rejected for user %s: %s", user_id, exc.message)
        raise

    try:
        order_id = _insert_order(user["_id"], reserved)
    except Exception:
        logger.exception("Could not save manual order for user %s", user_id)
        _release(reserved)
        raise

    computed = _total(reserved)
    if total_amount is not None and abs(total_amount - computed) > 0.005:
        logger.warning("Manual order %s: client total %.2f differs from computed %.2f", order_id, total_amount, computed)
    logger.info("Manual order %s placed by user %s", order_id, user_id)
    return get(order_id)


# ------------------------- Ledger queries ---------------------
def _resolve(orders: List[Dict[str, Any]], with_user: bool = False) -> List[Dict[str, Any]]:
    """Attach book data to line items and, for admins, the owner's name/email."""
    books = books_by_id(line["book"] for order in orders for line in order.get("books", []))
    users = {}
    if with_user:
        user_ids = list({order["user"] for order in orders})
        users = {
            u["_id"]: {"_id": u["_id"], "name": u.get("name", ""), "email": u.get("email", "")}
            for u in collection("user").find({"_id": {"$in": user_ids}})
        }

    resolved = []
    for order in orders:
        lines = []
        for line in order.get("books", []):
            book = books.get(line["book"])
            if book is None:
                book = {"_id": line["book"], "title": MISSING_BOOK_TITLE, "missing": True}
            lines.append({"book": book, "quantity": line["quantity"]})
        out = dict(order, books=lines)
        if with_user:
            out["user"] = users.get(order["user"], {"_id": order["user"], "name": "", "email": ""})
        resolved.append(serialize_doc(out))
    return resolved


def list_for_user(user_id) -> List[Dict[str, Any]]:
    uid = to_object_id(user_id)
    if uid is None:
        return []
    return _resolve(get_documents("order", {"user": uid}, sort=[("ordered_at", DESCENDING)]))


def get_for_user(user_id, order_id) -> Dict[str, Any]:
    uid, oid = to_object_id(user_id), to_object_id(order_id)
    order = collection("order").find_one({"_id": oid, "user": uid}) if uid and oid else None
    if not order:
        raise NotFound("Order not found")
    return _resolve([order])[0]


def list_all() -> List[Dict[str, Any]]:
    return _resolve(get_documents("order", sort=[("ordered_at", DESCENDING)]), with_user=True)


def get(order_id) -> Dict[str, Any]:
    oid = to_object_id(order_id)
    order = collection("order").find_one({"_id": oid}) if oid else None
    if not order:
        raise NotFound("Order not found")
    return _resolve([order], with_user=True)[0]


def update_status(order_id, status: str) -> Dict[str, Any]:
    if status not in ORDER_STATUSES:
        raise InvalidInput(
            f"Invalid status. Must be one of: {', '.join(ORDER_STATUSES)}",
            {"valid_statuses": list(ORDER_STATUSES)},
        )
    if not update_document("order", order_id, {"status": status}):
        raise NotFound("Order not found")
    logger.info("Order %s status set to %s", order_id, status)
    return get(order_id)
