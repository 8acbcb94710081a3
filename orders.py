"""
Order lifecycle

Order numbers, the payment confirmation/failure transitions shared by the
checkout callback and the gateway webhook, and the customer/admin order
endpoints (history, fulfillment status, refunds).
"""
from __future__ import annotations
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from pymongo import ReturnDocument

from auth import require_admin, require_user
from database import create_document, get_db, get_documents, to_object_id, to_str_id, utcnow
from payments import PaymentGatewayError, RazorpayClient, get_gateway, to_minor_units
from schemas import Order, OrderStatus, order_summary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])
admin_router = APIRouter(prefix="/admin/orders", tags=["admin"])

# A retried payment may confirm an order whose earlier attempt failed.
CONFIRMABLE = {"$or": [
    {"status": "pending"},
    {"status": "cancelled", "payment_info.status": "failed"},
]}

FULFILLMENT_TRANSITIONS = {
    "confirmed": {"processing", "cancelled"},
    "processing": {"shipped", "cancelled"},
    "shipped": {"delivered"},
}


async def next_order_number() -> str:
    """ORD<yy><mm><dd><seq>, with the per-day sequence drawn from an atomic counter."""
    db = await get_db()
    day = utcnow().strftime("%y%m%d")
    counter = await db["counter"].find_one_and_update(
        {"_id": f"order-{day}"},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return f"ORD{day}{counter['seq']:03d}"


async def create_pending_order(order: Order) -> dict[str, Any]:
    data = order.model_dump()
    data["order_number"] = await next_order_number()
    saved = await create_document("order", data)
    logger.info("Order %s created for user %s (total %.2f)", saved["order_number"], order.user, order.total)
    return saved


async def decrement_stock(items: list[dict[str, Any]]) -> None:
    db = await get_db()
    now = utcnow()
    for item in items:
        qty = int(item["quantity"])
        variant = item["variant"]
        try:
            pid = to_object_id(item["product"])
        except HTTPException:
            logger.warning("Skipping stock update for invalid product id %r", item.get("product"))
            continue
        result = await db["product"].update_one(
            {"_id": pid, "variants": {"$elemMatch": {
                "size": variant["size"], "design": variant["design"], "stock": {"$gte": qty},
            }}},
            {"$inc": {"variants.$.stock": -qty}, "$set": {"updated_at": now}},
        )
        if result.modified_count == 0:
            logger.warning("Could not take %s x %s (%s, %s) from stock", qty, item["product"],
                           variant["size"], variant["design"])


async def confirm_payment(match: dict[str, Any], razorpay_payment_id: Optional[str], source: str) -> Optional[dict[str, Any]]:
    """
    Move an order matching ``match`` to confirmed/paid and take its items out of stock.

    Only the call that wins the pending -> confirmed transition touches stock, so a
    webhook redelivery or a webhook racing the checkout callback is a no-op.
    Returns the order after the call, or None when no order matches.
    """
    db = await get_db()
    now = utcnow()
    fields = {
        "status": "confirmed",
        "payment_info.status": "paid",
        "payment_info.paid_at": now,
        "updated_at": now,
    }
    if razorpay_payment_id:
        fields["payment_info.razorpay_payment_id"] = razorpay_payment_id
    order = await db["order"].find_one_and_update(
        {**match, **CONFIRMABLE},
        {"$set": fields},
        return_document=ReturnDocument.AFTER,
    )
    if order is None:
        existing = await db["order"].find_one(match)
        if existing is None:
            logger.error("No order matches %s for %s confirmation", match, source)
        else:
            logger.info("Order %s already %s, ignoring %s confirmation",
                        existing.get("order_number"), existing.get("status"), source)
        return existing
    await decrement_stock(order["items"])
    logger.info("Order %s confirmed via %s and stock updated", order.get("order_number"), source)
    return order


async def fail_payment(match: dict[str, Any], source: str) -> Optional[dict[str, Any]]:
    db = await get_db()
    now = utcnow()
    order = await db["order"].find_one_and_update(
        {**match, "status": "pending"},
        {"$set": {"status": "cancelled", "payment_info.status": "failed", "updated_at": now}},
        return_document=ReturnDocument.AFTER,
    )
    if order is None:
        existing = await db["order"].find_one(match)
        if existing is None:
            logger.error("No order matches %s for %s failure", match, source)
        else:
            logger.info("Order %s is %s, ignoring %s failure",
                        existing.get("order_number"), existing.get("status"), source)
        return existing
    logger.info("Payment failed for order %s", order.get("order_number"))
    return order


async def get_order_or_404(order_id: str) -> dict[str, Any]:
    db = await get_db()
    order = await db["order"].find_one({"_id": to_object_id(order_id, "order id")})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


def present(order: dict[str, Any]) -> dict[str, Any]:
    return order_summary(to_str_id(order))


# ---------- Customer endpoints ----------

@router.get("")
async def list_my_orders(user: dict = Depends(require_user)):
    docs = await get_documents("order", {"user": str(user["_id"])}, sort=[("created_at", -1)])
    return [order_summary(d) for d in docs]


@router.get("/{order_id}")
async def get_order(order_id: str, user: dict = Depends(require_user)):
    order = await get_order_or_404(order_id)
    if order["user"] != str(user["_id"]) and user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Unauthorized")
    return present(order)


class RefundRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


@router.post("/{order_id}/refund-request")
async def request_refund(order_id: str, payload: RefundRequest, user: dict = Depends(require_user)):
    order = await get_order_or_404(order_id)
    if order["user"] != str(user["_id"]):
        raise HTTPException(status_code=403, detail="Unauthorized")
    if order["payment_info"]["status"] != "paid":
        raise HTTPException(status_code=400, detail="Only paid orders can be refunded")
    if order.get("refund", {}).get("status") not in ("none", "rejected"):
        raise HTTPException(status_code=409, detail="A refund has already been requested")
    db = await get_db()
    now = utcnow()
    updated = await db["order"].find_one_and_update(
        {"_id": order["_id"]},
        {"$set": {
            "refund.requested": True,
            "refund.requested_at": now,
            "refund.reason": payload.reason,
            "refund.status": "requested",
            "updated_at": now,
        }},
        return_document=ReturnDocument.AFTER,
    )
    return present(updated)


# ---------- Admin endpoints ----------

@admin_router.get("")
async def admin_list_orders(status: Optional[OrderStatus] = None,
                            limit: int = Query(50, ge=1, le=200),
                            _: dict = Depends(require_admin)):
    filt = {"status": status} if status else {}
    docs = await get_documents("order", filt, limit=limit, sort=[("created_at", -1)])
    return [order_summary(d) for d in docs]


class StatusUpdate(BaseModel):
    status: OrderStatus
    carrier: Optional[str] = None
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    admin_note: Optional[str] = None


@admin_router.patch("/{order_id}/status")
async def update_order_status(order_id: str, payload: StatusUpdate, _: dict = Depends(require_admin)):
    order = await get_order_or_404(order_id)
    current = order["status"]
    if payload.status not in FULFILLMENT_TRANSITIONS.get(current, set()):
        raise HTTPException(status_code=409, detail=f"Cannot move order from {current} to {payload.status}")

    now = utcnow()
    fields: dict[str, Any] = {"status": payload.status, "updated_at": now}
    if payload.status == "shipped":
        fields["tracking.shipped_at"] = now
        for key in ("carrier", "tracking_number", "tracking_url"):
            value = getattr(payload, key)
            if value:
                fields[f"tracking.{key}"] = value
    elif payload.status == "delivered":
        fields["tracking.delivered_at"] = now
    if payload.admin_note:
        fields["notes.admin"] = payload.admin_note

    db = await get_db()
    updated = await db["order"].find_one_and_update(
        {"_id": order["_id"], "status": current},
        {"$set": fields},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise HTTPException(status_code=409, detail="Order was updated concurrently, please retry")
    logger.info("Order %s moved from %s to %s", order.get("order_number"), current, payload.status)
    return present(updated)


class RefundDecision(BaseModel):
    approve: bool
    amount: Optional[float] = Field(None, gt=0)


@admin_router.post("/{order_id}/refund")
async def process_refund(order_id: str, payload: RefundDecision,
                         _: dict = Depends(require_admin),
                         gateway: RazorpayClient = Depends(get_gateway)):
    order = await get_order_or_404(order_id)
    db = await get_db()
    now = utcnow()

    if not payload.approve:
        updated = await db["order"].find_one_and_update(
            {"_id": order["_id"], "refund.status": "requested"},
            {"$set": {"refund.status": "rejected", "refund.processed_at": now, "updated_at": now}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            raise HTTPException(status_code=409, detail="No refund request to reject")
        return present(updated)

    payment = order["payment_info"]
    if payment["status"] != "paid" or not payment.get("razorpay_payment_id"):
        raise HTTPException(status_code=400, detail="Order has no captured payment to refund")
    refundable = round(order["total"] - payment.get("refund_amount", 0), 2)
    amount = round(payload.amount if payload.amount is not None else refundable, 2)
    if amount > refundable:
        raise HTTPException(status_code=400, detail=f"At most {refundable:.2f} can be refunded")

    try:
        await gateway.refund_payment(payment["razorpay_payment_id"], to_minor_units(amount))
    except PaymentGatewayError as e:
        logger.error("Refund failed for order %s: %s", order.get("order_number"), e)
        raise HTTPException(status_code=502, detail="Payment gateway refund failed")

    refunded_total = round(payment.get("refund_amount", 0) + amount, 2)
    fields: dict[str, Any] = {
        "payment_info.refund_amount": refunded_total,
        "payment_info.refunded_at": now,
        "refund.status": "processed",
        "refund.processed_at": now,
        "refund.amount": refunded_total,
        "updated_at": now,
    }
    if refunded_total >= order["total"]:
        fields["status"] = "refunded"
        fields["payment_info.status"] = "refunded"
    updated = await db["order"].find_one_and_update(
        {"_id": order["_id"]}, {"$set": fields}, return_document=ReturnDocument.AFTER,
    )
    logger.info("Refunded %.2f on order %s", amount, order.get("order_number"))
    return present(updated)
