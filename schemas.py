"""
Database Schemas for the shop backend

Each top-level Pydantic model represents a collection in MongoDB. The
collection name is the lowercase of the class name without the "Record"
suffix (e.g., Product -> "product", TrackingRecord -> "tracking").

Documents are stored and served with camelCase field names, which is what the
storefront and the admin dashboard send.
"""

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self, partial: bool = False) -> dict:
        """Dump with wire names; ``partial`` keeps only the fields the client sent."""
        if partial:
            return self.model_dump(by_alias=True, exclude_unset=True)
        return self.model_dump(by_alias=True, exclude_none=True)


class Product(CamelModel):
    """
    Products collection schema
    Collection: "product"
    """
    id: Optional[int] = Field(None, ge=0, description="Stable product number, assigned when omitted")
    name: str = Field(..., min_length=1, description="Product name")
    category: Optional[str] = Field(None, description="Product category")
    price: Optional[float] = Field(None, ge=0, description="Selling price in INR")
    original_price: Optional[float] = Field(None, ge=0, description="Price before discount")
    image: Optional[str] = Field(None, description="Image path or data URL")
    image_url: Optional[str] = Field(None, description="Image URL")
    rating: Optional[float] = Field(None, ge=0, le=5)
    reviews: Optional[int] = Field(None, ge=0, description="Review count")
    in_stock: bool = Field(True, description="Availability")
    badge: Optional[str] = Field(None, description="Badge label, e.g. Sale")
    qr_id: Optional[str] = Field(None, description="Linked repair tracking id")
    qr_password: Optional[str] = None
    tracking_status: Optional[str] = None
    owner_gender: Optional[str] = None


class ProductUpdate(CamelModel):
    id: Optional[int] = None
    name: Optional[str] = Field(None, min_length=1)
    category: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    image: Optional[str] = None
    image_url: Optional[str] = None
    rating: Optional[float] = Field(None, ge=0, le=5)
    reviews: Optional[int] = Field(None, ge=0)
    in_stock: Optional[bool] = None
    badge: Optional[str] = None
    qr_id: Optional[str] = None
    qr_password: Optional[str] = None
    tracking_status: Optional[str] = None
    owner_gender: Optional[str] = None


class TrackingRecord(CamelModel):
    """
    Repair tracking collection schema
    Collection: "tracking"
    """
    qr_id: str = Field(..., min_length=1, description="QR code printed on the repair ticket")
    qr_password: Optional[str] = None
    customer_name: Optional[str] = None
    product_name: Optional[str] = None
    device_model: Optional[str] = None
    contact: Optional[str] = None
    status: Optional[str] = Field(None, description="Received | Diagnosing | Repairing | Ready | Delivered")
    issue: Optional[str] = None
    estimated_days: Optional[int] = Field(None, ge=0)
    created_at: Optional[str] = Field(None, description="Client-side timestamp")
    last_updated: Optional[str] = Field(None, description="Client-side timestamp")


class TrackingUpdate(CamelModel):
    qr_id: Optional[str] = None
    qr_password: Optional[str] = None
    customer_name: Optional[str] = None
    product_name: Optional[str] = None
    device_model: Optional[str] = None
    contact: Optional[str] = None
    status: Optional[str] = None
    issue: Optional[str] = None
    estimated_days: Optional[int] = Field(None, ge=0)
    created_at: Optional[str] = None
    last_updated: Optional[str] = None


class Customer(CamelModel):
    name: str
    phone: str
    email: Optional[EmailStr] = None
    address: str

    @field_validator("email", mode="before")
    @classmethod
    def blank_email(cls, v):
        return v or None


class OrderItem(CamelModel):
    product_id: Optional[int] = None
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    image: Optional[str] = None


class PaymentScreenshot(CamelModel):
    data: str = Field(..., description="data:image/...;base64,... payload")
    filename: Optional[str] = None
    uploaded_at: Optional[str] = None


class Order(CamelModel):
    """
    Orders collection schema
    Collection: "order"
    """
    order_id: str = Field(..., min_length=1, description="Order number issued at checkout")
    customer: Customer
    items: List[OrderItem] = Field(..., min_length=1)
    total: float = Field(..., ge=0)
    payment_method: str = Field(..., description="cod | upi | ...")
    status: str = Field("Pending", description="Pending | Confirmed | Shipped | Delivered | Cancelled")
    order_date: Optional[str] = None
    payment_screenshot: Optional[PaymentScreenshot] = None


class OrderUpdate(CamelModel):
    # no items: they are fixed at checkout
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    order_id: Optional[str] = None
    customer: Optional[Customer] = None
    total: Optional[float] = Field(None, ge=0)
    payment_method: Optional[str] = None
    status: Optional[str] = None
    payment_screenshot: Optional[PaymentScreenshot] = None
