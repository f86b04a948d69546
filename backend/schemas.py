"""
Data shapes for the AngoTech storefront.

Row models mirror what is stored in the hosted collections
(products, orders, order_items, user_carts, users); the remaining models are
the in-memory and request/response shapes the storefront works with.
"""
from __future__ import annotations
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

NotificationType = Literal["success", "error", "info"]
OrderStatus = Literal["Pending", "Processing", "Shipped", "Delivered", "Cancelled"]


class Review(BaseModel):
    id: str
    author: str
    rating: int = Field(..., ge=1, le=5)
    comment: str
    date: datetime


class ReviewIn(BaseModel):
    author: str = Field(..., min_length=1)
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1)


class Product(BaseModel):
    id: str
    name: str
    description: str = ""
    price: float = Field(..., ge=0, description="Price in AOA")
    category: str
    stock: int = Field(0, ge=0)
    image_urls: list[str] = Field(default_factory=list)
    reviews: list[Review] = Field(default_factory=list)


class ProductIn(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    price: float = Field(..., gt=0)
    category: str = Field(..., min_length=1)
    stock: int = Field(..., ge=0)
    image_urls: list[str] = Field(..., min_length=1, description="External URLs or data:image URLs")


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, gt=0)
    category: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    image_urls: Optional[list[str]] = None


class CartItem(BaseModel):
    """A product snapshot plus the quantity in the cart."""
    product: Product
    quantity: int = Field(..., ge=1)

    @property
    def product_id(self) -> str:
        return self.product.id

    @property
    def subtotal(self) -> float:
        return self.product.price * self.quantity


class CartLineIn(BaseModel):
    product_id: str
    quantity: int = 1


class QuantityIn(BaseModel):
    quantity: int


class CartOut(BaseModel):
    items: list[CartItem]
    total_price: float
    item_count: int
    authenticated: bool
    # True while a login merge with the remote cart is running.
    syncing: bool = False


class ShippingAddress(BaseModel):
    # Checked field by field at checkout, not by the model.
    full_name: str = ""
    address: str = ""
    city: str = "Luanda"
    province: str = "Luanda"
    phone_number: str = ""


class CheckoutRequest(BaseModel):
    shipping_address: ShippingAddress
    payment_method: Optional[str] = None


class OrderLine(BaseModel):
    product_id: str
    name: str
    category: str = "N/A"
    image_urls: list[str] = Field(default_factory=list)
    quantity: int = Field(..., ge=1)
    price_at_purchase: float = Field(..., ge=0)


class Order(BaseModel):
    id: str
    user_id: Optional[str] = None
    items: list[OrderLine]
    total_amount: float = Field(..., ge=0)
    shipping_address: ShippingAddress
    payment_method: Optional[str] = None
    order_date: datetime
    status: OrderStatus = "Pending"


class PaymentMethod(BaseModel):
    id: str
    name: str
    description: str


class Notification(BaseModel):
    id: int
    message: str
    type: NotificationType = "success"
    is_visible: bool = True


class User(BaseModel):
    id: str
    email: str


class Credentials(BaseModel):
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=6)


class RouteMatch(BaseModel):
    page: str
    params: dict[str, str] = Field(default_factory=dict)
    redirect: Optional[str] = None
    state: dict[str, str] = Field(default_factory=dict)
