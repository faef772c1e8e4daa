import json
import logging

from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine

from shared.core import RedactionFilter, ServiceHealth, current_context
from shared.core.logging_config import REDACTED, StructuredFormatter, request_id_var, user_id_var


def test_health_endpoints(client):
    health = client.get("/health")
    assert health.status_code == 200
    assert health.json()["status"] == "pass"
    assert health.json()["service"] == "storefront-api"

    assert client.get("/health/live").json() == {"status": "alive"}

    ready = client.get("/health/ready").json()
    assert ready["checks"]["database:connectivity"]["status"] == "pass"

    metrics = client.get("/metrics").json()
    assert metrics["service"] == "storefront-api"
    assert "uptime_seconds" in metrics


def test_startup_without_migrations_table_is_a_warning(client):
    startup = client.get("/health/startup")
    assert startup.status_code == 200
    body = startup.json()
    assert body["checks"]["database:migrations"]["status"] == "warn"
    assert body["checks"]["config:settings"]["status"] == "pass"


def _probe_app(health: ServiceHealth) -> TestClient:
    app = FastAPI()
    app.include_router(health.create_health_router())
    return TestClient(app)


def test_unreachable_database_fails_readiness():
    broken = create_engine("sqlite:////nonexistent-dir/storefront.db")
    probe = _probe_app(ServiceHealth("probe", "0.0.1", engine_provider=lambda: broken))
    ready = probe.get("/health/ready")
    assert ready.status_code == 503
    assert ready.json()["status"] == "fail"


def test_missing_settings_fail_startup():
    engine = create_engine("sqlite://")
    health = ServiceHealth(
        "probe", "0.0.1", engine_provider=lambda: engine, required_settings=lambda: {"QPAY_LOGIN": ""}
    )
    startup = _probe_app(health).get("/health/startup")
    assert startup.status_code == 503
    assert "QPAY_LOGIN" in startup.json()["checks"]["config:settings"]["output"]


def test_request_id_is_echoed(client):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"

    generated = client.post("/api/order/quote", json={"subtotal": 1000})
    assert generated.headers["X-Request-ID"]


def test_error_responses_share_shape(client):
    response = client.get("/api/order/999")
    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "ID-тай захиалга олдсонгүй: 999"}


def _record(msg, **extra):
    record = logging.LogRecord("storefront.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_redaction_filter_masks_credentials():
    record = _record(
        "QPay auth header Authorization: Basic VEVTVDpzZWNyZXQ= password=hunter2",
        extra_fields={"qpay_password": "hunter2", "order": {"access_token": "abc"}, "amount": 5000},
    )
    RedactionFilter().filter(record)

    message = record.getMessage()
    assert "VEVTVDpzZWNyZXQ=" not in message
    assert "hunter2" not in message
    assert record.extra_fields == {
        "qpay_password": REDACTED,
        "order": {"access_token": REDACTED},
        "amount": 5000,
    }


def test_bearer_tokens_are_masked():
    record = _record("calling with Bearer eyJhbGciOiJIUzI1NiJ9.e30.sig")
    RedactionFilter().filter(record)
    assert record.getMessage() == f"calling with Bearer {REDACTED}"


def test_structured_formatter_includes_context():
    tokens = (request_id_var.set("req-42"), user_id_var.set("user-1"))
    try:
        assert current_context()["request_id"] == "req-42"
        line = StructuredFormatter().format(_record("Order created", extra_fields={"order_id": 7}))
    finally:
        request_id_var.reset(tokens[0])
        user_id_var.reset(tokens[1])

    entry = json.loads(line)
    assert entry["message"] == "Order created"
    assert entry["level"] == "INFO"
    assert entry["trace"]["request_id"] == "req-42"
    assert entry["trace"]["user_id"] == "user-1"
    assert entry["custom"] == {"order_id": 7}
