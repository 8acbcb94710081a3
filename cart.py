from __future__ import annotations
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from auth import require_user
from config import settings
from database import get_db, to_object_id, utcnow
from orders import confirm_payment, create_pending_order
from payments import PaymentGatewayError, RazorpayClient, get_gateway, to_minor_units, verify_payment_signature
from schemas import Order, OrderItem, PaymentInfo, ShippingInfo, Size, VariantSelection, find_variant, primary_image_url

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cart", tags=["cart"])

TAX_RATE = 0.08
SHIPPING_FEE = 9.99
FREE_SHIPPING_THRESHOLD = 50.0
MAX_QTY_PER_ITEM = 10

# Discount codes
DISCOUNTS = {
    "NAILED10": 0.10,
    "GLAM15": 0.15,
    "STUDIO20": 0.20,
}


class CartAddRequest(BaseModel):
    product_id: str
    size: Size
    design: str = Field(..., min_length=1)
    quantity: int = Field(1, ge=1, le=MAX_QTY_PER_ITEM)


class CartLine(BaseModel):
    product_id: str
    variant: VariantSelection
    quantity: int = Field(..., ge=1, le=MAX_QTY_PER_ITEM)


class CartValidateRequest(BaseModel):
    items: List[CartLine] = Field(..., min_length=1)
    discount_code: Optional[str] = None


class ValidatedCart(BaseModel):
    items: List[OrderItem]
    subtotal: float
    tax: float
    shipping: float
    discount: float
    total: float
    discount_code: Optional[str] = None


def compute_totals(subtotal: float, discount_code: Optional[str] = None) -> dict:
    """Price a cart subtotal. Every component is rounded to cents and the total is built from the rounded parts."""
    code = (discount_code or "").strip().upper()
    percent = DISCOUNTS.get(code, 0)
    subtotal = round(subtotal, 2)
    discount = round(subtotal * percent, 2)
    tax = round((subtotal - discount) * TAX_RATE, 2)
    shipping = 0.0 if subtotal >= FREE_SHIPPING_THRESHOLD else SHIPPING_FEE
    total = round(subtotal + tax + shipping - discount, 2)
    return {
        "subtotal": subtotal,
        "tax": tax,
        "shipping": shipping,
        "discount": discount,
        "total": total,
        "discount_code": code if percent > 0 else None,
    }


def merge_lines(lines: List[CartLine]) -> List[CartLine]:
    """Fold repeated lines for the same product variant into one, keeping first-seen order."""
    merged: dict = {}
    for line in lines:
        key = (line.product_id, line.variant.size, line.variant.design)
        if key in merged:
            merged[key] = merged[key].model_copy(update={"quantity": merged[key].quantity + line.quantity})
        else:
            merged[key] = line
    return list(merged.values())


async def validate_cart(lines: List[CartLine], discount_code: Optional[str] = None) -> ValidatedCart:
    """Re-read every product and variant from the store and price the cart server-side."""
    db = await get_db()
    items: List[OrderItem] = []
    subtotal = 0.0
    for line in merge_lines(lines):
        if line.quantity > MAX_QTY_PER_ITEM:
            raise HTTPException(status_code=400,
                                detail=f"At most {MAX_QTY_PER_ITEM} of each item can be ordered")
        product = await db["product"].find_one({"_id": to_object_id(line.product_id, "product id")})
        if not product or not product.get("active", True):
            raise HTTPException(status_code=400, detail=f'Product "{line.product_id}" is no longer available')

        variant = find_variant(product, line.variant.size, line.variant.design)
        if not variant:
            raise HTTPException(status_code=400, detail=f'Variant for "{product["title"]}" is no longer available')

        if variant.get("stock", 0) < line.quantity:
            raise HTTPException(
                status_code=400,
                detail=f'Only {variant.get("stock", 0)} items available for "{product["title"]}" '
                       f'({variant["size"]}, {variant["design"]})',
            )

        price = float(product["price"])
        items.append(OrderItem(
            product=str(product["_id"]),
            title=product["title"],
            price=price,
            quantity=line.quantity,
            variant=VariantSelection(size=variant["size"], design=variant["design"]),
            image=primary_image_url(product),
        ))
        subtotal += price * line.quantity

    return ValidatedCart(items=items, **compute_totals(subtotal, discount_code))


@router.post("/add")
async def add_to_cart(payload: CartAddRequest):
    db = await get_db()
    product = await db["product"].find_one({"_id": to_object_id(payload.product_id, "product id")})
    if not product or not product.get("active", True):
        raise HTTPException(status_code=404, detail="Product not found")

    variant = find_variant(product, payload.size, payload.design)
    if not variant:
        raise HTTPException(status_code=400, detail="Selected variant not available")
    if variant.get("stock", 0) < payload.quantity:
        raise HTTPException(status_code=400, detail=f'Only {variant.get("stock", 0)} items available in stock')

    return {
        "message": "Item added to cart",
        "item": {
            "product_id": str(product["_id"]),
            "title": product["title"],
            "price": float(product["price"]),
            "image": primary_image_url(product),
            "variant": {"size": payload.size, "design": payload.design},
            "quantity": payload.quantity,
            "max_quantity": min(variant.get("stock", 0), MAX_QTY_PER_ITEM),
        },
    }


@router.post("/validate", response_model=ValidatedCart)
async def validate(payload: CartValidateRequest):
    return await validate_cart(payload.items, payload.discount_code)


class CheckoutRequest(BaseModel):
    items: List[CartLine] = Field(..., min_length=1)
    shipping_info: ShippingInfo
    discount_code: Optional[str] = None


@router.post("/create-razorpay-order")
async def create_razorpay_order(payload: CheckoutRequest,
                                user: dict = Depends(require_user),
                                gateway: RazorpayClient = Depends(get_gateway)):
    cart = await validate_cart(payload.items, payload.discount_code)
    user_id = str(user["_id"])

    order = await create_pending_order(Order(
        user=user_id,
        items=cart.items,
        subtotal=cart.subtotal,
        tax=cart.tax,
        shipping=cart.shipping,
        discount=cart.discount,
        total=cart.total,
        shipping_info=payload.shipping_info,
        payment_info=PaymentInfo(status="pending", amount=cart.total),
    ))
    db = await get_db()
    oid = to_object_id(order["id"])

    try:
        gateway_order = await gateway.create_order(
            amount=to_minor_units(cart.total),
            currency=settings.CURRENCY,
            receipt=f"order_{order['id']}",
            notes={"order_id": order["id"], "user_id": user_id, "user_email": user.get("email", "")},
        )
    except PaymentGatewayError as e:
        logger.error("Gateway order creation failed for %s: %s", order["order_number"], e)
        await db["order"].update_one({"_id": oid}, {"$set": {
            "status": "cancelled", "payment_info.status": "failed", "updated_at": utcnow(),
        }})
        raise HTTPException(status_code=502, detail="Could not start payment, please try again")

    await db["order"].update_one({"_id": oid}, {"$set": {
        "payment_info.razorpay_order_id": gateway_order["id"], "updated_at": utcnow(),
    }})

    return {
        "razorpay_order_id": gateway_order["id"],
        "order_id": order["id"],
        "order_number": order["order_number"],
        "amount": gateway_order.get("amount", to_minor_units(cart.total)),
        "currency": gateway_order.get("currency", settings.CURRENCY),
        "key_id": settings.RAZORPAY_KEY_ID,
        "customer_info": {
            "name": user.get("name"),
            "email": user.get("email"),
            "contact": user.get("phone") or payload.shipping_info.phone,
        },
        "shipping_info": payload.shipping_info.model_dump(),
    }


class VerifyPaymentRequest(BaseModel):
    razorpay_payment_id: str = Field(..., min_length=1)
    razorpay_order_id: str = Field(..., min_length=1)
    razorpay_signature: str = Field(..., min_length=1)
    order_id: str


@router.post("/verify-payment")
async def verify_payment(payload: VerifyPaymentRequest, user: dict = Depends(require_user)):
    if not settings.RAZORPAY_KEY_SECRET:
        logger.error("RAZORPAY_KEY_SECRET is not configured, refusing payment verification")
        raise HTTPException(status_code=500, detail="Payment verification is not configured")

    if not verify_payment_signature(payload.razorpay_order_id, payload.razorpay_payment_id,
                                    payload.razorpay_signature, settings.RAZORPAY_KEY_SECRET):
        logger.warning("Payment signature mismatch for order %s", payload.order_id)
        raise HTTPException(status_code=400, detail="Payment verification failed")

    db = await get_db()
    oid = to_object_id(payload.order_id, "order id")
    order = await db["order"].find_one({"_id": oid})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    if order["user"] != str(user["_id"]):
        raise HTTPException(status_code=403, detail="Unauthorized")
    if order["payment_info"].get("razorpay_order_id") != payload.razorpay_order_id:
        raise HTTPException(status_code=400, detail="Payment does not belong to this order")

    order = await confirm_payment({"_id": oid}, payload.razorpay_payment_id, "checkout callback")
    if order["status"] in ("pending", "cancelled", "refunded"):
        raise HTTPException(status_code=409, detail=f"Order is {order['status']} and cannot be confirmed")

    return {
        "success": True,
        "message": "Payment verified successfully",
        "order_id": str(order["_id"]),
        "order_number": order.get("order_number"),
    }
