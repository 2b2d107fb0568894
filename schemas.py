"""
Database Schemas for the Storefront

Each top-level Pydantic model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name. Cart lines and orders
are embedded in the user document.
"""
from datetime import datetime, timezone
from typing import List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, EmailStr

Role = Literal["user", "admin"]
OrderStatus = Literal["pending", "canceled", "delivered"]
ORDER_STATUSES = ("pending", "canceled", "delivered")


class CartLine(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class OrderItem(BaseModel):
    product_id: str
    name: Optional[str] = None
    image: Optional[str] = None
    price: float = Field(0, ge=0)
    quantity: int = Field(..., ge=1)


class ShippingAddress(BaseModel):
    street: str = ""
    city: str = Field(..., min_length=1)


class Customer(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    address: ShippingAddress


class Order(BaseModel):
    """
    Snapshot of a cart at checkout time
    Embedded in: "user".orders
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: ObjectId = Field(default_factory=ObjectId)
    items: List[OrderItem]
    status: OrderStatus = "pending"
    subtotal: float = Field(..., ge=0)
    delivery_fee: float = Field(..., ge=0)
    grand_total: float = Field(..., ge=0)
    customer: Customer
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class User(BaseModel):
    """
    Registered shoppers and the seeded administrator
    Collection: "user"
    """
    username: str = Field(..., min_length=1)
    email: EmailStr
    password_hash: str = Field(..., description="bcrypt hash")
    role: Role = "user"
    wishlist: List[str] = []
    cart: List[CartLine] = []
    orders: List[Order] = []


class Product(BaseModel):
    """
    Catalog entries
    Collection: "product"
    """
    name: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    category: str = Field(..., min_length=1)
    image: str = Field(..., min_length=1)
