import logging
import os
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import cart
import catalog
import complaints
import database
import orders
import users
from errors import BookstoreError
from schemas import (
    BookCreate,
    BookUpdate,
    CartAdd,
    CartUpdate,
    ComplaintCreate,
    ComplaintUpdate,
    LoginRequest,
    ManualOrderRequest,
    OrderStatusUpdate,
    RegisterRequest,
)
from security import CurrentUser, get_current_user, require_capability

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Bookstore API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

catalog_admin = require_capability("manage_catalog")
orders_admin = require_capability("manage_orders")
complaints_admin = require_capability("manage_complaints")


# ------------------------- Error handling ---------------------
@app.exception_handler(BookstoreError)
async def bookstore_error_handler(request: Request, exc: BookstoreError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        problems.append(f"{location}: {err.get('msg')}" if location else err.get("msg"))
    return JSONResponse(
        status_code=400,
        content={"detail": "; ".join(problems) or "Invalid request", "error": "InvalidInput"},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error", "error": "InternalError"})


# ------------------------- Startup ----------------------------
@app.on_event("startup")
def prepare_database():
    if database.db is None:
        logger.warning("DATABASE_URL/DATABASE_NAME not set, running without a database")
        return
    database.ensure_indexes()
    users.seed_admin(os.getenv("ADMIN_EMAIL"), os.getenv("ADMIN_PASSWORD"))


# ------------------------- Basic Routes -----------------------
@app.get("/")
def root():
    return {"message": "Bookstore API"}


@app.get("/health")
def health():
    response = {"backend": "running", "database": "not configured", "collections": []}
    if database.db is None:
        return response
    try:
        response["collections"] = database.db.list_collection_names()[:10]
        response["database"] = "connected"
    except Exception as e:
        logger.warning("Database health check failed: %s", e)
        response["database"] = "unreachable"
    return response


# ------------------------- Auth -------------------------------
@app.get("/user/check-admin")
def check_admin():
    exists = users.admin_exists()
    return {"admin_exists": exists, "message": "Admin already exists" if exists else "No admin found"}


@app.post("/user/register", status_code=201)
def register(payload: RegisterRequest):
    result = users.register(payload.name, payload.email, payload.password, payload.role, payload.photo)
    return {"message": "User registered successfully", **result}


@app.post("/user/login")
def login(payload: LoginRequest):
    return {"message": "Login successful", **users.authenticate(payload.email, payload.password)}


@app.get("/user/profile")
def profile(user: CurrentUser = Depends(get_current_user)):
    return {"user": users.get_profile(user.id)}


# ------------------------- Catalog ----------------------------
@app.get("/user/allBooks")
def browse_books(
    search: Optional[str] = None,
    category: Optional[str] = None,
    sort: Optional[str] = None,
    user: CurrentUser = Depends(get_current_user),
):
    return {"books": catalog.list_books(search=search, category=category, sort=sort)}


@app.get("/user/book/{book_id}")
def book_detail(book_id: str, user: CurrentUser = Depends(get_current_user)):
    return {"book": catalog.get_book(book_id)}


@app.post("/admin/addBook", status_code=201)
def add_book(payload: BookCreate, admin: CurrentUser = Depends(catalog_admin)):
    return {"message": "Book added successfully", "book": catalog.create_book(payload)}


@app.post("/admin/updateBook/{book_id}")
def update_book(book_id: str, payload: BookUpdate, admin: CurrentUser = Depends(catalog_admin)):
    return {"message": "Book updated successfully", "book": catalog.update_book(book_id, payload)}


@app.delete("/admin/deleteBook/{book_id}")
def delete_book(book_id: str, admin: CurrentUser = Depends(catalog_admin)):
    return {"message": "Book deleted successfully", "book": catalog.delete_book(book_id)}


@app.get("/admin/allBooks")
def admin_books(admin: CurrentUser = Depends(catalog_admin)):
    return {"books": catalog.list_books()}


# ------------------------- Cart -------------------------------
@app.post("/user/cart")
def add_to_cart(payload: CartAdd, user: CurrentUser = Depends(get_current_user)):
    return {"message": "Item added to cart successfully", **cart.add_item(user.id, payload.book_id, payload.quantity)}


@app.get("/user/cart")
def view_cart(user: CurrentUser = Depends(get_current_user)):
    return cart.view(user.id)


@app.put("/user/cart/{book_id}")
def update_cart_item(book_id: str, payload: CartUpdate, user: CurrentUser = Depends(get_current_user)):
    return {"message": "Cart item updated successfully", **cart.update_item(user.id, book_id, payload.quantity)}


@app.delete("/user/cart/{book_id}")
def remove_cart_item(book_id: str, user: CurrentUser = Depends(get_current_user)):
    return {"message": "Item removed from cart successfully", **cart.remove_item(user.id, book_id)}


@app.delete("/user/cart")
def clear_cart(user: CurrentUser = Depends(get_current_user)):
    return {"message": "Cart cleared successfully", **cart.clear(user.id)}


# ------------------------- Orders -----------------------------
@app.post("/user/order", status_code=201)
def place_order(user: CurrentUser = Depends(get_current_user)):
    return {"message": "Order placed successfully", "order": orders.place_from_cart(user.id)}


@app.post("/user/order/manual", status_code=201)
def place_manual_order(payload: ManualOrderRequest, user: CurrentUser = Depends(get_current_user)):
    order = orders.place_manual(user.id, payload.books, payload.total_amount)
    return {"message": "Order placed successfully", "order": order}


@app.get("/user/orders")
def my_orders(user: CurrentUser = Depends(get_current_user)):
    return {"orders": orders.list_for_user(user.id)}


@app.get("/user/orders/{order_id}")
def my_order(order_id: str, user: CurrentUser = Depends(get_current_user)):
    return {"order": orders.get_for_user(user.id, order_id)}


@app.get("/admin/orders")
def all_orders(admin: CurrentUser = Depends(orders_admin)):
    found = orders.list_all()
    return {"orders": found, "total_orders": len(found)}


@app.get("/admin/orders/{order_id}")
def order_detail(order_id: str, admin: CurrentUser = Depends(orders_admin)):
    return {"order": orders.get(order_id)}


@app.put("/admin/orders/{order_id}")
def update_order_status(order_id: str, payload: OrderStatusUpdate, admin: CurrentUser = Depends(orders_admin)):
    order = orders.update_status(order_id, payload.status)
    return {"message": f"Order status updated to {payload.status} successfully", "order": order}


# ------------------------- Complaints -------------------------
@app.post("/user/complaint", status_code=201)
def submit_complaint(payload: ComplaintCreate, user: CurrentUser = Depends(get_current_user)):
    return {"message": "Complaint submitted successfully", "complaint": complaints.submit(user.id, payload)}


@app.get("/user/complaints")
def my_complaints(user: CurrentUser = Depends(get_current_user)):
    return {"complaints": complaints.list_for_user(user.id)}


@app.get("/user/complaint/{complaint_id}")
def my_complaint(complaint_id: str, user: CurrentUser = Depends(get_current_user)):
    return {"complaint": complaints.get_for_user(user.id, complaint_id)}


@app.get("/admin/complaints")
def all_complaints(
    status: Optional[str] = None,
    type: Optional[str] = None,
    priority: Optional[str] = None,
    category: Optional[str] = None,
    admin: CurrentUser = Depends(complaints_admin),
):
    return {"complaints": complaints.list_all(status=status, type=type, priority=priority, category=category)}


@app.get("/admin/complaints/stats")
def complaint_stats(admin: CurrentUser = Depends(complaints_admin)):
    return {"stats": complaints.stats()}


@app.get("/admin/complaint/{complaint_id}")
def complaint_detail(complaint_id: str, admin: CurrentUser = Depends(complaints_admin)):
    return {"complaint": complaints.get(complaint_id)}


@app.put("/admin/complaint/{complaint_id}")
def respond_to_complaint(complaint_id: str, payload: ComplaintUpdate, admin: CurrentUser = Depends(complaints_admin)):
    complaint = complaints.respond(complaint_id, admin.id, payload)
    return {"message": "Complaint updated successfully", "complaint": complaint}


@app.delete("/admin/complaint/{complaint_id}")
def delete_complaint(complaint_id: str, admin: CurrentUser = Depends(complaints_admin)):
    complaints.delete(complaint_id)
    return {"message": "Complaint deleted successfully"}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
