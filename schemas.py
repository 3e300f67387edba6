"""
Database Schemas

MongoDB collection schemas for the bookstore, as Pydantic models.
Model name is converted to lowercase for the collection name:
- User -> "user" collection (cart embedded)
- Book -> "book" collection
- Order -> "order" collection
- Complaint -> "complaint" collection

Request bodies used by the API live at the bottom of the module.
"""

from datetime import datetime
from typing import List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field, conlist

from security import Role

OrderStatus = Literal["pending", "shipped", "delivered"]
ComplaintType = Literal["complaint", "feedback", "suggestion", "bug-report"]
ComplaintPriority = Literal["low", "medium", "high", "urgent"]
ComplaintStatus = Literal["pending", "in-progress", "resolved", "closed"]
ComplaintCategory = Literal[
    "order-issue",
    "book-quality",
    "website-issue",
    "payment-issue",
    "delivery-issue",
    "other",
]

ORDER_STATUSES = ("pending", "shipped", "delivered")


class Book(BaseModel):
    title: str = Field(..., min_length=1, description="Book title")
    author: str = Field(..., min_length=1, description="Author name")
    price: float = Field(..., ge=0, description="Price")
    stock: int = Field(0, ge=0, description="Units available for sale")
    category: str = Field(..., min_length=1, description="Category")
    description: Optional[str] = Field(None, description="Description")
    image: str = Field("", description="Cover image URL")


class CartEntry(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    book: ObjectId = Field(..., description="Referenced Book _id")
    quantity: int = Field(1, ge=1, description="Quantity, merged on repeat add")


class User(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    name: str = Field(..., min_length=1, description="Full name")
    email: EmailStr = Field(..., description="Email address, stored lower-case")
    password_hash: str = Field(..., description="pbkdf2_sha256 hash of the password")
    role: Role = Field(Role.USER, description="Role for access control")
    photo: str = Field("", description="Profile photo URL")
    cart: List[CartEntry] = Field(default_factory=list, description="Embedded cart")


class OrderLine(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    book: ObjectId = Field(..., description="Referenced Book _id")
    quantity: int = Field(..., ge=1, description="Quantity captured at placement")


class Order(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    user: ObjectId = Field(..., description="Owning User _id")
    books: conlist(OrderLine, min_length=1) = Field(..., description="Ordered line items")
    total_amount: float = Field(..., ge=0, description="Total computed at placement")
    status: OrderStatus = Field("pending", description="Fulfillment status")
    ordered_at: datetime


class Complaint(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    user: ObjectId = Field(..., description="Owning User _id")
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=1000)
    type: ComplaintType = "complaint"
    priority: ComplaintPriority = "medium"
    status: ComplaintStatus = "pending"
    category: ComplaintCategory = "other"
    admin_response: str = ""


# ------------------------- Request bodies ---------------------
class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: Role = Role.USER
    photo: str = ""


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class BookCreate(Book):
    pass


class BookUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    author: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    category: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    image: Optional[str] = None


class CartAdd(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    book_id: str = Field(..., alias="bookId")
    quantity: int = Field(1, ge=1)


class CartUpdate(BaseModel):
    quantity: int = Field(..., ge=1)


class LineItem(BaseModel):
    book: str = Field(..., description="Referenced Book _id as string")
    quantity: int = Field(1, ge=1)


class ManualOrderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    books: List[LineItem] = Field(default_factory=list)
    total_amount: Optional[float] = Field(None, ge=0, alias="totalAmount")


class OrderStatusUpdate(BaseModel):
    status: str


class ComplaintCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=1000)
    type: ComplaintType = "complaint"
    priority: ComplaintPriority = "medium"
    category: ComplaintCategory = "other"


class ComplaintUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: Optional[ComplaintStatus] = None
    priority: Optional[ComplaintPriority] = None
    admin_response: Optional[str] = Field(None, alias="adminResponse")
