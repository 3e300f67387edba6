import pytest
from bson import ObjectId

import cart
import catalog
import orders
from errors import Conflict, DanglingReference, EmptyCart, InsufficientStock, InvalidInput, NotFound
from schemas import LineItem


def _stock(db, book) -> int:
    return db["book"].find_one({"_id": ObjectId(book["id"])})["stock"]


def _cart(db, user_id):
    return db["user"].find_one({"_id": ObjectId(user_id)})["cart"]


def test_place_from_cart__with_two_books__totals_live_prices_and_empties_cart(db, make_user, make_book) -> None:
    user_id, _ = make_user()
    book_a = make_book(title="A", price=10.00, stock=5)
    book_b = make_book(title="B", price=5.50, stock=3)
    cart.add_item(user_id, book_a["id"], 2)
    cart.add_item(user_id, book_b["id"], 1)

    order = orders.place_from_cart(user_id)

    assert order["total_amount"] == 25.50
    assert order["status"] == "pending"
    assert [line["quantity"] for line in order["books"]] == [2, 1]
    assert order["books"][0]["book"]["title"] == "A"
    assert _cart(db, user_id) == []
    assert _stock(db, book_a) == 3
    assert _stock(db, book_b) == 2
    assert db["order"].count_documents({}) == 1


def test_place_from_cart__uses_price_at_placement_not_add_time(db, make_user, make_book) -> None:
    user_id, _ = make_user()
    book = make_book(price=10.0)
    cart.add_item(user_id, book["id"], 3)
    db["book"].update_one({"_id": ObjectId(book["id"])}, {"$set": {"price": 12.5}})

    order = orders.place_from_cart(user_id)

    assert order["total_amount"] == 37.5


def test_place_from_cart__on_insufficient_stock__changes_nothing(db, make_user, make_book) -> None:
    user_id, _ = make_user()
    plenty = make_book(title="Plenty", stock=10)
    scarce = make_book(title="Scarce", stock=1)
    cart.add_item(user_id, plenty["id"], 1)
    cart.add_item(user_id, scarce["id"], 2)
    cart_before = _cart(db, user_id)

    with pytest.raises(InsufficientStock) as exc_info:
        orders.place_from_cart(user_id)

    assert exc_info.value.book_id == scarce["id"]
    assert exc_info.value.available == 1
    assert exc_info.value.requested == 2
    assert "Available: 1, Requested: 2" in exc_info.value.message
    assert _stock(db, plenty) == 10
    assert _stock(db, scarce) == 1
    assert _cart(db, user_id) == cart_before
    assert db["order"].count_documents({}) == 0


def test_place_from_cart__on_empty_cart__raises_empty_cart(db, make_user) -> None:
    user_id, _ = make_user()

    with pytest.raises(EmptyCart):
        orders.place_from_cart(user_id)

    assert db["order"].count_documents({}) == 0


def test_place_from_cart__on_unknown_user__raises_not_found(db) -> None:
    with pytest.raises(NotFound):
        orders.place_from_cart(str(ObjectId()))


def test_place_from_cart__on_deleted_book__raises_dangling_reference(db, make_user, make_book) -> None:
    user_id, _ = make_user()
    kept = make_book(title="Kept", stock=4)
    gone = make_book(title="Gone")
    cart.add_item(user_id, kept["id"], 1)
    cart.add_item(user_id, gone["id"], 1)
    catalog.delete_book(gone["id"])

    with pytest.raises(DanglingReference) as exc_info:
        orders.place_from_cart(user_id)

    assert exc_info.value.book_id == gone["id"]
    assert _stock(db, kept) == 4
    assert len(_cart(db, user_id)) == 2
    assert db["order"].count_documents({}) == 0


def test_place_from_cart__two_buyers_race_for_last_unit__exactly_one_wins(db, make_user, make_book, monkeypatch) -> None:
    first_id, _ = make_user("First")
    second_id, _ = make_user("Second")
    book = make_book(stock=1)
    cart.add_item(first_id, book["id"], 1)
    cart.add_item(second_id, book["id"], 1)

    checked = orders._preflight
    started = []
    interleaved = []

    def preflight_then_competitor(lines, missing_error):
        checked(lines, missing_error)
        # the first buyer has passed its stock check; the second now completes a full order
        if not started:
            started.append(True)
            interleaved.append(orders.place_from_cart(second_id))

    monkeypatch.setattr(orders, "_preflight", preflight_then_competitor)

    with pytest.raises(InsufficientStock) as exc_info:
        orders.place_from_cart(first_id)

    assert exc_info.value.available == 0
    assert len(interleaved) == 1
    assert interleaved[0]["user"]["id"] == second_id
    assert db["order"].count_documents({}) == 1
    assert _stock(db, book) == 0
    assert len(_cart(db, first_id)) == 1
    assert _cart(db, second_id) == []


def test_place_from_cart__when_later_line_runs_out__releases_earlier_reservations(db, make_user, make_book, monkeypatch) -> None:
    user_id, _ = make_user()
    first = make_book(title="First", stock=5)
    second = make_book(title="Second", stock=1)
    cart.add_item(user_id, first["id"], 2)
    cart.add_item(user_id, second["id"], 1)

    checked = orders._preflight

    def preflight_then_drain(lines, missing_error):
        checked(lines, missing_error)
        db["book"].update_one({"_id": ObjectId(second["id"])}, {"$set": {"stock": 0}})

    monkeypatch.setattr(orders, "_preflight", preflight_then_drain)

    with pytest.raises(InsufficientStock):
        orders.place_from_cart(user_id)

    assert _stock(db, first) == 5
    assert _stock(db, second) == 0
    assert len(_cart(db, user_id)) == 2
    assert db["order"].count_documents({}) == 0


def test_place_from_cart__when_cart_changes_mid_placement__raises_conflict_and_restores_stock(db, make_user, make_book, monkeypatch) -> None:
    user_id, _ = make_user()
    book = make_book(stock=3)
    extra = make_book(title="Extra", stock=3)
    cart.add_item(user_id, book["id"], 1)

    reserve = orders._reserve

    def reserve_then_edit_cart(lines, missing_error):
        reserved = reserve(lines, missing_error)
        cart.add_item(user_id, extra["id"], 1)
        return reserved

    monkeypatch.setattr(orders, "_reserve", reserve_then_edit_cart)

    with pytest.raises(Conflict):
        orders.place_from_cart(user_id)

    assert _stock(db, book) == 3
    assert len(_cart(db, user_id)) == 2
    assert db["order"].count_documents({}) == 0


def test_place_from_cart__repeated_until_sold_out__never_drives_stock_negative(db, make_user, make_book) -> None:
    user_id, _ = make_user()
    book = make_book(stock=5)

    placed = 0
    for _ in range(5):
        cart.add_item(user_id, book["id"], 2)
        try:
            orders.place_from_cart(user_id)
            placed += 1
        except InsufficientStock:
            cart.clear(user_id)

    assert placed == 2
    assert _stock(db, book) == 1
    assert all(b["stock"] >= 0 for b in db["book"].find())


def test_place_manual__leaves_cart_alone_and_merges_duplicate_lines(db, make_user, make_book) -> None:
    user_id, _ = make_user()
    book = make_book(price=4.0, stock=10)
    in_cart = make_book(title="In cart")
    cart.add_item(user_id, in_cart["id"], 1)

    order = orders.place_manual(
        user_id,
        [LineItem(book=book["id"], quantity=2), {"book": book["id"], "quantity": 1}],
        total_amount=1.0,
    )

    assert order["total_amount"] == 12.0
    assert len(order["books"]) == 1
    assert order["books"][0]["quantity"] == 3
    assert _stock(db, book) == 7
    assert len(_cart(db, user_id)) == 1


def test_place_manual__on_unknown_book__raises_not_found(db, make_user, make_book) -> None:
    user_id, _ = make_user()
    book = make_book(stock=2)

    with pytest.raises(NotFound):
        orders.place_manual(user_id, [LineItem(book=book["id"], quantity=1), LineItem(book=str(ObjectId()), quantity=1)])

    assert _stock(db, book) == 2
    assert db["order"].count_documents({}) == 0


def test_place_manual__without_items__raises_invalid_input(db, make_user) -> None:
    user_id, _ = make_user()

    with pytest.raises(InvalidInput):
        orders.place_manual(user_id, [])


def test_get_for_user__after_book_deleted__resolves_placeholder(db, make_user, make_book) -> None:
    user_id, _ = make_user()
    book = make_book(title="Short lived")
    cart.add_item(user_id, book["id"], 1)
    placed = orders.place_from_cart(user_id)

    catalog.delete_book(book["id"])
    order = orders.get_for_user(user_id, placed["id"])

    assert order["total_amount"] == placed["total_amount"]
    assert order["books"][0]["quantity"] == 1
    assert order["books"][0]["book"]["id"] == book["id"]
    assert order["books"][0]["book"]["title"] == orders.MISSING_BOOK_TITLE
    assert order["books"][0]["book"]["missing"] is True


def test_get_for_user__on_other_users_order__raises_not_found(db, make_user, make_book) -> None:
    owner_id, _ = make_user("Owner")
    other_id, _ = make_user("Other")
    book = make_book()
    cart.add_item(owner_id, book["id"], 1)
    placed = orders.place_from_cart(owner_id)

    with pytest.raises(NotFound):
        orders.get_for_user(other_id, placed["id"])


def test_update_status__validates_and_persists(db, make_user, make_book) -> None:
    user_id, _ = make_user()
    book = make_book()
    cart.add_item(user_id, book["id"], 1)
    placed = orders.place_from_cart(user_id)

    with pytest.raises(InvalidInput):
        orders.update_status(placed["id"], "cancelled")
    shipped = orders.update_status(placed["id"], "shipped")

    assert shipped["status"] == "shipped"
    assert shipped["total_amount"] == placed["total_amount"]
    with pytest.raises(NotFound):
        orders.update_status(str(ObjectId()), "delivered")


def test_list_all__returns_newest_first_with_owner(db, make_user, make_book) -> None:
    user_id, _ = make_user("Alice")
    book = make_book(stock=10)
    for _ in range(2):
        cart.add_item(user_id, book["id"], 1)
        orders.place_from_cart(user_id)

    listed = orders.list_all()

    assert len(listed) == 2
    assert listed[0]["ordered_at"] >= listed[1]["ordered_at"]
    assert listed[0]["user"]["name"] == "Alice"
    assert len(orders.list_for_user(user_id)) == 2


def test_place_from_cart__when_insert_fails__restores_stock_and_cart(db, make_user, make_book, monkeypatch) -> None:
    user_id, _ = make_user()
    book = make_book(stock=5)
    cart.add_item(user_id, book["id"], 2)

    def failing_insert(user_oid, reserved):
        raise RuntimeError("write failed")

    monkeypatch.setattr(orders, "_insert_order", failing_insert)

    with pytest.raises(RuntimeError):
        orders.place_from_cart(user_id)

    assert _stock(db, book) == 5
    assert [(e["book"], e["quantity"]) for e in _cart(db, user_id)] == [(ObjectId(book["id"]), 2)]
    assert db["order"].count_documents({}) == 0


def test_place_from_cart__when_insert_fails_after_readd__keeps_one_entry_per_book(db, make_user, make_book, monkeypatch) -> None:
    user_id, _ = make_user()
    book = make_book(stock=5)
    cart.add_item(user_id, book["id"], 1)

    def readd_then_fail(user_oid, reserved):
        cart.add_item(user_id, book["id"], 2)
        raise RuntimeError("write failed")

    monkeypatch.setattr(orders, "_insert_order", readd_then_fail)

    with pytest.raises(RuntimeError):
        orders.place_from_cart(user_id)

    entries = _cart(db, user_id)
    assert len(entries) == 1
    assert entries[0]["quantity"] == 3
    assert _stock(db, book) == 5
    assert cart.remove_item(user_id, book["id"])["cart"] == []
