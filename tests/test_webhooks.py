from config import settings
from conftest import SHIPPING_INFO, checkout, find_order, line, payment_event, run, sign, variant_stock, webhook


def order_paid_event(order_data, payment_id="pay_hook1"):
    return {
        "event": "order.paid",
        "payload": {
            "order": {"entity": {"id": order_data["razorpay_order_id"], "status": "paid"}},
            "payment": {"entity": {"id": payment_id}},
        },
    }


def test_forged_webhook_is_rejected(client, db, customer, product_id):
    data = checkout(client, customer, product_id)
    resp = webhook(client, payment_event("payment.captured", data), secret="not-the-webhook-secret")
    assert resp.status_code == 400
    assert find_order(db, data["order_id"])["status"] == "pending"
    assert variant_stock(db, product_id, "M", "classic") == 5


def test_webhook_without_signature_is_rejected(client):
    resp = webhook(client, {"event": "payment.captured"}, signature="")
    assert resp.status_code == 400


def test_webhook_signed_with_key_secret_is_rejected(client, customer, product_id):
    data = checkout(client, customer, product_id)
    resp = webhook(client, payment_event("payment.captured", data), secret=settings.RAZORPAY_KEY_SECRET)
    assert resp.status_code == 400


def test_payment_captured_confirms_order(client, db, customer, product_id):
    data = checkout(client, customer, product_id, quantity=2)
    resp = webhook(client, payment_event("payment.captured", data))
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}

    order = find_order(db, data["order_id"])
    assert order["status"] == "confirmed"
    assert order["payment_info"]["status"] == "paid"
    assert order["payment_info"]["razorpay_payment_id"] == "pay_hook1"
    assert variant_stock(db, product_id, "M", "classic") == 3


def test_duplicate_delivery_takes_stock_once(client, db, customer, product_id):
    data = checkout(client, customer, product_id, quantity=2)
    event = payment_event("payment.captured", data)
    assert webhook(client, event).status_code == 200
    assert webhook(client, event).status_code == 200
    assert variant_stock(db, product_id, "M", "classic") == 3


def test_webhook_after_checkout_callback_takes_stock_once(client, db, customer, product_id):
    data = checkout(client, customer, product_id, quantity=2)
    rzp_order = data["razorpay_order_id"]
    resp = client.post("/cart/verify-payment", headers=customer["headers"], json={
        "razorpay_payment_id": "pay_hook1",
        "razorpay_order_id": rzp_order,
        "razorpay_signature": sign(settings.RAZORPAY_KEY_SECRET, f"{rzp_order}|pay_hook1"),
        "order_id": data["order_id"],
    })
    assert resp.status_code == 200
    assert webhook(client, payment_event("payment.captured", data)).status_code == 200
    assert webhook(client, order_paid_event(data)).status_code == 200
    assert variant_stock(db, product_id, "M", "classic") == 3


def test_payment_failed_cancels_order(client, db, customer, product_id):
    data = checkout(client, customer, product_id)
    assert webhook(client, payment_event("payment.failed", data)).status_code == 200
    order = find_order(db, data["order_id"])
    assert order["status"] == "cancelled"
    assert order["payment_info"]["status"] == "failed"
    assert variant_stock(db, product_id, "M", "classic") == 5


def test_retried_payment_after_failure_confirms(client, db, customer, product_id):
    data = checkout(client, customer, product_id)
    webhook(client, payment_event("payment.failed", data, payment_id="pay_first"))
    webhook(client, payment_event("payment.captured", data, payment_id="pay_second"))
    order = find_order(db, data["order_id"])
    assert order["status"] == "confirmed"
    assert order["payment_info"]["razorpay_payment_id"] == "pay_second"
    assert variant_stock(db, product_id, "M", "classic") == 4


def test_failure_after_confirmation_is_ignored(client, db, customer, product_id):
    data = checkout(client, customer, product_id)
    webhook(client, payment_event("payment.captured", data))
    webhook(client, payment_event("payment.failed", data, payment_id="pay_late"))
    assert find_order(db, data["order_id"])["status"] == "confirmed"


def test_order_paid_confirms_by_gateway_order_id(client, db, customer, product_id):
    data = checkout(client, customer, product_id)
    assert webhook(client, order_paid_event(data)).status_code == 200
    order = find_order(db, data["order_id"])
    assert order["status"] == "confirmed"
    assert order["payment_info"]["status"] == "paid"
    assert variant_stock(db, product_id, "M", "classic") == 4


def test_unhandled_event_is_acknowledged(client):
    assert webhook(client, {"event": "refund.created", "payload": {}}).status_code == 200


def test_event_for_unknown_order_is_acknowledged(client):
    event = {"event": "payment.captured", "payload": {"payment": {"entity": {"id": "pay_x", "notes": {}}}}}
    assert webhook(client, event).status_code == 200
    event = {"event": "order.paid", "payload": {"order": {"entity": {"id": "order_missing"}}}}
    assert webhook(client, event).status_code == 200


def test_malformed_event_is_a_server_error(client):
    resp = webhook(client, {"event": "payment.captured", "payload": {}})
    assert resp.status_code == 500
    assert resp.json() == {"error": "Webhook processing failed"}


def test_non_ascii_signature_header_is_rejected(client):
    resp = webhook(client, {"event": "payment.captured"}, signature=b"\xe9")
    assert resp.status_code == 400


def test_order_paid_without_gateway_order_id_is_ignored(client, db, gateway, customer, product_id):
    gateway.fail = True
    resp = client.post("/cart/create-razorpay-order", headers=customer["headers"],
                       json={"items": [line(product_id)], "shipping_info": SHIPPING_INFO})
    assert resp.status_code == 502

    event = {"event": "order.paid", "payload": {"order": {"entity": {"status": "paid"}}}}
    assert webhook(client, event).status_code == 200
    order = run(db["order"].find_one({}))
    assert order["status"] == "cancelled"
    assert variant_stock(db, product_id, "M", "classic") == 5
