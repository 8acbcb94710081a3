"""
Database Schemas for the Nail Studio storefront

Each Pydantic model represents a MongoDB collection (collection name = lowercase class name).

Collections:
- User: shoppers and admins
- Product: press-on nail sets with size x design variants
- Order: checkout orders with item snapshots, totals and payment info
- Counter: daily order number sequences
"""
from __future__ import annotations
import re
from datetime import datetime
from typing import Optional, List, Literal
from pydantic import BaseModel, ConfigDict, Field, EmailStr, field_validator, model_validator

Size = Literal["XS", "S", "M", "L", "XL"]
Category = Literal["french", "glitter", "matte", "chrome", "stiletto", "coffin", "almond", "square", "gel", "acrylic"]
Role = Literal["customer", "admin"]
OrderStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled", "refunded"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded", "completed"]
PaymentMethod = Literal["razorpay", "cod", "bank_transfer"]
RefundStatus = Literal["none", "requested", "approved", "rejected", "processed"]


def slugify(title: str) -> str:
    slug = re.sub(r"[^a-z0-9]", "-", title.lower())
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


# ---------------------------
# Users
# ---------------------------
class User(BaseModel):
    """
    Collection: "user"
    """
    name: str = Field(..., min_length=1, description="Full name")
    email: EmailStr = Field(..., description="Login email")
    password_hash: str = Field(..., description="Hashed password")
    phone: Optional[str] = Field(None, description="Contact number used to prefill checkout")
    role: Role = Field("customer")


# ---------------------------
# Product Catalog
# ---------------------------
class ProductImage(BaseModel):
    url: str
    alt: str = ""
    is_primary: bool = False


class ProductVariant(BaseModel):
    size: Size
    design: str = Field(..., min_length=1)
    stock: int = Field(0, ge=0)

    @field_validator("design")
    @classmethod
    def strip_design(cls, v: str) -> str:
        return v.strip()


class Rating(BaseModel):
    average: float = Field(0, ge=0, le=5)
    count: int = Field(0, ge=0)


class Seo(BaseModel):
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    slug: Optional[str] = None


class Product(BaseModel):
    """
    Collection: "product"
    A press-on nail set. Stock is tracked per (size, design) variant.
    The slug is derived from the title once and then kept, and the first
    image is made primary when none is flagged.
    """
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=1000)
    price: float = Field(..., ge=0, description="Unit price")
    category: Category
    colors: List[str] = Field(default_factory=list)
    images: List[ProductImage] = Field(default_factory=list)
    variants: List[ProductVariant] = Field(default_factory=list)
    featured: bool = False
    active: bool = True
    tags: List[str] = Field(default_factory=list)
    rating: Rating = Field(default_factory=Rating)
    seo: Seo = Field(default_factory=Seo)

    @field_validator("title", "description")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return v.strip()

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, v: List[str]) -> List[str]:
        return [t.strip().lower() for t in v if t.strip()]

    @model_validator(mode="after")
    def apply_defaults(self) -> "Product":
        if self.images and not any(img.is_primary for img in self.images):
            self.images[0].is_primary = True
        if not self.seo.slug:
            self.seo.slug = slugify(self.title)
        return self


def primary_image_url(product_doc: dict) -> Optional[str]:
    images = product_doc.get("images") or []
    for img in images:
        if img.get("is_primary"):
            return img.get("url")
    return images[0].get("url") if images else None


def find_variant(product_doc: dict, size: str, design: str) -> Optional[dict]:
    for v in product_doc.get("variants") or []:
        if v.get("size") == size and v.get("design") == design:
            return v
    return None


# ---------------------------
# Orders
# ---------------------------
class VariantSelection(BaseModel):
    size: Size
    design: str = Field(..., min_length=1)


class OrderItem(BaseModel):
    product: str = Field(..., description="Product id; the rest is a snapshot at order time")
    title: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    variant: VariantSelection
    image: Optional[str] = None


class ShippingInfo(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)


class PaymentInfo(BaseModel):
    status: PaymentStatus = "pending"
    method: PaymentMethod = "razorpay"
    amount: float = Field(..., ge=0)
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    refund_amount: float = Field(0, ge=0)


class Tracking(BaseModel):
    carrier: Optional[str] = None
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None


class OrderNotes(BaseModel):
    customer: Optional[str] = None
    admin: Optional[str] = None


class Refund(BaseModel):
    requested: bool = False
    requested_at: Optional[datetime] = None
    reason: Optional[str] = None
    status: RefundStatus = "none"
    processed_at: Optional[datetime] = None
    amount: float = Field(0, ge=0)


class Order(BaseModel):
    """
    Collection: "order"
    """
    order_number: Optional[str] = None
    user: str = Field(..., description="User id")
    items: List[OrderItem] = Field(..., min_length=1)
    subtotal: float = Field(..., ge=0)
    tax: float = Field(0, ge=0)
    shipping: float = Field(0, ge=0)
    discount: float = Field(0, ge=0)
    total: float = Field(..., ge=0)
    status: OrderStatus = "pending"
    shipping_info: ShippingInfo
    payment_info: PaymentInfo
    tracking: Tracking = Field(default_factory=Tracking)
    notes: OrderNotes = Field(default_factory=OrderNotes)
    refund: Refund = Field(default_factory=Refund)


ORDER_STATUS_DISPLAY = {
    "pending": "Pending Payment",
    "confirmed": "Order Confirmed",
    "processing": "Processing",
    "shipped": "Shipped",
    "delivered": "Delivered",
    "cancelled": "Cancelled",
    "refunded": "Refunded",
}

PAYMENT_STATUS_DISPLAY = {
    "pending": "Payment Pending",
    "paid": "Payment Completed",
    "failed": "Payment Failed",
    "refunded": "Refunded",
    "completed": "Completed",
}


def product_summary(product_doc: dict) -> dict:
    """Add stock-derived fields to a stored product for catalog responses."""
    total_stock = sum(int(v.get("stock", 0)) for v in product_doc.get("variants", []))
    return {
        **product_doc,
        "total_stock": total_stock,
        "is_available": bool(product_doc.get("active", True)) and total_stock > 0,
        "primary_image": primary_image_url(product_doc),
    }


def order_summary(order_doc: dict) -> dict:
    """Add the display-only fields clients show next to an order."""
    payment_status = (order_doc.get("payment_info") or {}).get("status")
    return {
        **order_doc,
        "total_items": sum(int(i.get("quantity", 0)) for i in order_doc.get("items", [])),
        "status_display": ORDER_STATUS_DISPLAY.get(order_doc.get("status"), order_doc.get("status")),
        "payment_status_display": PAYMENT_STATUS_DISPLAY.get(payment_status, payment_status),
    }
