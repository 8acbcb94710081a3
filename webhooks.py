from __future__ import annotations
import json
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from config import settings
from database import to_object_id
from orders import confirm_payment, fail_payment
from payments import verify_webhook_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _order_match_from_notes(payment: dict) -> dict | None:
    order_id = (payment.get("notes") or {}).get("order_id")
    if not order_id:
        logger.error("Order ID not found in payment notes: %s", payment.get("id"))
        return None
    return {"_id": to_object_id(order_id, "order id")}


async def handle_payment_captured(payment: dict) -> None:
    match = _order_match_from_notes(payment)
    if match is not None:
        await confirm_payment(match, payment.get("id"), "payment.captured webhook")


async def handle_payment_failed(payment: dict) -> None:
    match = _order_match_from_notes(payment)
    if match is not None:
        await fail_payment(match, "payment.failed webhook")


async def handle_order_paid(razorpay_order: dict, payment: dict | None = None) -> None:
    razorpay_order_id = razorpay_order.get("id")
    if not razorpay_order_id:
        logger.error("Razorpay order ID missing from order.paid event")
        return
    payment_id = (payment or {}).get("id")
    await confirm_payment({"payment_info.razorpay_order_id": razorpay_order_id}, payment_id,
                          "order.paid webhook")


@router.post("/razorpay")
async def razorpay_webhook(request: Request):
    body = await request.body()
    if not settings.RAZORPAY_WEBHOOK_SECRET:
        logger.error("RAZORPAY_WEBHOOK_SECRET is not configured, rejecting webhook")
        return JSONResponse(status_code=500, content={"error": "Webhook secret not configured"})

    if not verify_webhook_signature(body, request.headers.get("x-razorpay-signature"),
                                    settings.RAZORPAY_WEBHOOK_SECRET):
        logger.error("Razorpay webhook signature verification failed")
        return PlainTextResponse("Webhook signature verification failed", status_code=400)

    try:
        event = json.loads(body)
        event_type = event.get("event")
        payload = event.get("payload") or {}
        if event_type == "payment.captured":
            await handle_payment_captured(payload["payment"]["entity"])
        elif event_type == "payment.failed":
            await handle_payment_failed(payload["payment"]["entity"])
        elif event_type == "order.paid":
            await handle_order_paid(payload["order"]["entity"], (payload.get("payment") or {}).get("entity"))
        else:
            logger.info("Unhandled Razorpay event type: %s", event_type)
    except Exception:
        logger.exception("Razorpay webhook processing error")
        return JSONResponse(status_code=500, content={"error": "Webhook processing failed"})

    return {"status": "ok"}
