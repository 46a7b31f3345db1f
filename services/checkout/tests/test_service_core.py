import json
import logging

from shared.core.logging_config import REDACTED, SecurityFilter, StructuredFormatter, set_request_context


def make_record(msg, args=(), **extra):
    record = logging.LogRecord("checkout", logging.INFO, __file__, 1, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_card_numbers_and_tokens_are_redacted():
    record = make_record("charging card 4580 1234 5678 9012 with token=abc.def.ghi")
    SecurityFilter().filter(record)
    message = record.getMessage()
    assert "4580" not in message
    assert "abc.def.ghi" not in message
    assert f"token={REDACTED}" in message


def test_sensitive_custom_fields_are_redacted():
    record = make_record("payment", extra_fields={"cvv": "123", "amount": 10, "gateway": {"api_key": "k"}})
    SecurityFilter().filter(record)
    assert record.extra_fields == {"cvv": REDACTED, "amount": 10, "gateway": {"api_key": REDACTED}}


def test_non_string_messages_are_left_alone():
    record = make_record({"event": "quote"})
    assert SecurityFilter().filter(record)


def test_records_are_json_with_trace_context():
    set_request_context(request_id="req-1", user_id="old-user")
    record = make_record("Order %s created", ("ORD-2024-00001",), extra_fields={"total": 135.7})
    body = json.loads(StructuredFormatter().format(record))
    assert body["message"] == "Order ORD-2024-00001 created"
    assert body["custom"] == {"total": 135.7}
    assert body["trace"]["request_id"] == "req-1"
    assert body["trace"]["user_id"] == "old-user"


def test_health_endpoints(client):
    assert client.get("/health").json()["service"] == "checkout-service"
    assert client.get("/health/live").json() == {"status": "alive"}
    ready = client.get("/health/ready")
    assert ready.status_code in (200, 503)
    assert "database:connectivity" in ready.json()["checks"]
    assert client.get("/metrics").json()["system"]["num_threads"] >= 1


def test_request_id_is_echoed(client):
    resp = client.get("/info", headers={"X-Request-ID": "abc-123"})
    assert resp.headers["X-Request-ID"] == "abc-123"
    assert resp.json()["currency"] == "ILS"
