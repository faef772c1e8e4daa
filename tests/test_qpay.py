from conftest import order_payload
from storefront.application.payment_service import order_number_from_sender_invoice, storable_qr_image
from storefront.domain.models import DeliveryDispatch


def _checkout(client, headers=None, **overrides):
    order = client.post("/api/order", json=order_payload(**overrides), headers=headers).json()
    invoice = client.post(
        "/api/qpay/checkout/invoice", json={"orderId": order["id"], "amount": order["grand_total"]}
    )
    assert invoice.status_code == 200
    return invoice.json()


def test_sender_invoice_number_roundtrip():
    assert order_number_from_sender_invoice("ECO_ORD2501151234_1736900000000") == "ORD2501151234"
    assert order_number_from_sender_invoice("plain") == "plain"


def test_storable_qr_image_drops_oversized_base64():
    assert storable_qr_image("https://qpay.mn/q/abc") == "https://qpay.mn/q/abc"
    assert storable_qr_image("A" * 100) == "A" * 100
    assert storable_qr_image("A" * 40000) is None
    assert storable_qr_image(None) is None


def test_create_invoice_stores_qr_on_order(client, fake_qpay):
    result = _checkout(client)
    invoice_id = result["invoice"]["invoice_id"]
    assert invoice_id == "INV-1"
    assert result["success"] is True
    assert result["order"]["invoice_id"] == invoice_id
    assert result["order"]["qr_text"] == "qr-INV-1"
    assert result["invoice"]["urls"][0]["name"] == "Khan bank"

    sent = fake_qpay.invoices[invoice_id]
    assert sent["sender_invoice_no"].startswith(f"ECO_{result['order']['order_number']}_")
    assert sent["callback_url"] == "https://api.tsaas.test/api/qpay/webhook"
    assert sent["amount"] == 55000


def test_create_invoice_requires_order_and_amount(client):
    response = client.post("/api/qpay/checkout/invoice", json={"orderId": 1})
    assert response.status_code == 400
    assert response.json()["message"] == "Order ID and amount are required"


def test_create_invoice_upstream_failure(client, fake_qpay):
    order = client.post("/api/order", json=order_payload()).json()
    fake_qpay.fail_invoice = True
    response = client.post("/api/qpay/checkout/invoice", json={"orderId": order["id"], "amount": 55000})
    assert response.status_code == 502
    assert response.json()["message"] == "INVOICE_CODE_INVALID"
    assert response.json()["order_id"] == order["id"]


def test_qpay_token_is_cached(client, fake_qpay):
    _checkout(client)
    _checkout(client)
    token_requests = [r for r in fake_qpay.requests if r.url.path.endswith("/auth/token")]
    assert len(token_requests) == 1


def test_polling_marks_paid_and_dispatches_once(client, db, fake_qpay, fake_chuchu):
    invoice_id = _checkout(client)["invoice"]["invoice_id"]

    pending = client.get(f"/api/qpay/check/{invoice_id}")
    assert pending.status_code == 200
    assert pending.json()["payment"] == {"status": "PENDING", "is_paid": False, "data": {"count": 0, "paid_amount": 0, "rows": []}}
    assert fake_chuchu.payloads == []

    fake_qpay.paid.add(invoice_id)
    for _ in range(3):
        paid = client.get(f"/api/qpay/check/{invoice_id}")
        assert paid.json()["payment"]["is_paid"] is True
        assert paid.json()["order"]["payment_status"] == 1

    assert len(fake_chuchu.payloads) == 1
    ledger = db.query(DeliveryDispatch).one()
    assert (ledger.trigger, ledger.status, ledger.attempts) == ("payment", "sent", 1)


def test_check_transaction_info(client, fake_qpay):
    result = _checkout(client)
    invoice_id = result["invoice"]["invoice_id"]
    transaction = client.get(f"/api/qpay/check/{invoice_id}").json()["transaction"]
    assert transaction == {
        "ORDERID": result["order"]["order_number"],
        "Phone": "99001122",
        "Name": "Бат-Эрдэнэ",
    }


def test_check_unknown_invoice(client):
    response = client.get("/api/qpay/check/INV-404")
    assert response.status_code == 404
    assert response.json()["message"] == "Order not found"


def test_webhook_marks_paid(client, db, fake_qpay, fake_chuchu, user_headers):
    invoice_id = _checkout(client, headers=user_headers)["invoice"]["invoice_id"]
    payload = {"object_type": "INVOICE", "object_id": invoice_id, "payment_status": "PAID"}

    ack = client.post("/api/qpay/webhook", json=payload)
    assert ack.status_code == 200
    assert ack.json()["success"] is True
    assert ack.json()["status"] == 1

    # Redelivered webhook and later polls do not notify the courier again
    client.post("/api/qpay/webhook", json=payload)
    fake_qpay.paid.add(invoice_id)
    for _ in range(2):
        polled = client.get(f"/api/qpay/check/{invoice_id}")
        assert polled.json()["payment"]["is_paid"] is True
        assert polled.json()["order"]["payment_status"] == 1
    assert len(fake_chuchu.payloads) == 1
    ledger = db.query(DeliveryDispatch).one()
    assert (ledger.trigger, ledger.status, ledger.attempts) == ("payment", "sent", 1)

    # Registered customers get the delivery address remembered
    saved = client.get("/api/user/addresses", headers=user_headers).json()
    assert len(saved) == 1


def test_webhook_cancelled_fails_pending_order(client, fake_chuchu):
    invoice_id = _checkout(client)["invoice"]["invoice_id"]
    ack = client.post(
        "/api/qpay/webhook",
        json={"object_type": "INVOICE", "object_id": invoice_id, "payment_status": "CANCELLED"},
    )
    assert ack.json()["status"] == 2
    assert fake_chuchu.payloads == []


def test_webhook_validation(client):
    invalid = client.post("/api/qpay/webhook", json={"object_type": "QR", "object_id": "x"})
    assert invalid.status_code == 400
    assert invalid.json()["message"] == "Invalid webhook data"

    unknown = client.post(
        "/api/qpay/webhook", json={"object_type": "INVOICE", "object_id": "INV-404", "payment_status": "PAID"}
    )
    assert unknown.status_code == 404


def test_pickup_order_paid_without_courier(client, fake_qpay, fake_chuchu):
    invoice_id = _checkout(client, shippingAddress="Ирж авах", shippingCost=0, grandTotal=50000)["invoice"]["invoice_id"]
    fake_qpay.paid.add(invoice_id)
    assert client.get(f"/api/qpay/check/{invoice_id}").json()["payment"]["is_paid"] is True
    assert fake_chuchu.payloads == []


def test_order_by_invoice(client):
    result = _checkout(client)
    response = client.get(f"/api/qpay/invoice/{result['invoice']['invoice_id']}")
    assert response.status_code == 200
    assert response.json()["order"]["id"] == result["order"]["id"]


def test_payments_listing(client, fake_qpay, admin_headers, user_headers):
    paid_invoice = _checkout(client)["invoice"]["invoice_id"]
    _checkout(client)
    client.post("/api/order", json=order_payload())  # no invoice, not a payment
    fake_qpay.paid.add(paid_invoice)
    client.get(f"/api/qpay/check/{paid_invoice}")

    assert client.get("/api/qpay/payments", headers=user_headers).status_code == 403

    everything = client.get("/api/qpay/payments", headers=admin_headers).json()
    assert everything["total"] == 2
    assert {p["status"] for p in everything["payments"]} == {"paid", "pending"}

    paid = client.get("/api/qpay/payments", params={"status": "paid"}, headers=admin_headers).json()
    assert paid["total"] == 1
    row = paid["payments"][0]
    assert row["qpay_invoice_id"] == paid_invoice
    assert row["payment_url"] == f"https://qpay.mn/pay/{paid_invoice}"
    assert row["description"] == "Дэвтэр x2"
    assert row["paid_at"] is not None

    bad = client.get("/api/qpay/payments", params={"status": "refunded"}, headers=admin_headers)
    assert bad.status_code == 422


def test_token_cache_honours_expiry(monkeypatch):
    from storefront.infrastructure import qpay_client

    clock = [1000.0]
    monkeypatch.setattr(qpay_client.time, "monotonic", lambda: clock[0])
    cache = qpay_client.TokenCache(ttl_seconds=3000)

    cache.set("merchant", "short-lived", expires_in=120)
    assert cache.get("merchant") == "short-lived"
    clock[0] += 61
    assert cache.get("merchant") is None

    cache.set("merchant", "fresh")
    cache.evict("merchant")
    assert cache.get("merchant") is None
