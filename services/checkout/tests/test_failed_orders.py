import pytest
from sqlalchemy.exc import OperationalError

from app.application.failed_orders import FailedOrderRecorder, FailedOrderReport
from app.domain.errors import InvalidFailedOrder

ORDER_DATA = {"items": [{"productId": "p1", "quantity": 3}], "total": 135.7}


def report(client, headers, transaction_id="TX-1001", order_data=None, error="Order insert failed"):
    return client.post("/orders/failed", headers=headers, json={
        "transactionId": transaction_id,
        "orderData": order_data if order_data is not None else ORDER_DATA,
        "error": error,
        "errorDetails": {"code": "DB_DOWN"},
    })


def test_failed_order_is_recorded(client, auth_headers, admin_headers):
    resp = report(client, auth_headers(email="old@example.com", name="Old User"))
    assert resp.status_code == 201
    assert resp.json()["transactionId"] == "TX-1001"

    records = client.get("/orders/failed", headers=admin_headers).json()
    assert len(records) == 1
    assert records[0]["amount"] == 135.7
    assert records[0]["status"] == "pending"
    assert records[0]["userEmail"] == "old@example.com"
    assert records[0]["flaggedForReview"] is False


def test_same_user_retry_updates_the_record(client, auth_headers, admin_headers):
    headers = auth_headers()
    first = report(client, headers)
    second = report(client, headers, order_data={**ORDER_DATA, "total": 140}, error="Retry failed")
    assert second.status_code == 200
    assert second.json()["id"] == first.json()["id"]

    records = client.get("/orders/failed", headers=admin_headers).json()
    assert len(records) == 1
    assert records[0]["amount"] == 140.0
    assert records[0]["error"] == "Retry failed"


def test_other_user_reusing_transaction_id_conflicts(client, auth_headers, admin_headers):
    report(client, auth_headers("old-user"))
    resp = report(client, auth_headers("intruder"))
    assert resp.status_code == 409

    records = client.get("/orders/failed", headers=admin_headers).json()
    assert records[0]["userId"] == "old-user"
    assert records[0]["flaggedForReview"] is True


@pytest.mark.parametrize("transaction_id, order_data", [
    ("", ORDER_DATA),
    ("ab", ORDER_DATA),
    ("x" * 101, ORDER_DATA),
    ("TX-1", {"items": [], "total": 10}),
    ("TX-1", {"items": [{"productId": "p1"}], "total": 0}),
    ("TX-1", {"items": [{"productId": "p1"}], "total": "NaN"}),
])
def test_invalid_reports_are_rejected(client, auth_headers, transaction_id, order_data):
    resp = report(client, auth_headers(), transaction_id=transaction_id, order_data=order_data)
    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid failed order report"


def test_reports_are_rate_limited_per_user(client, auth_headers):
    headers = auth_headers()
    for n in range(5):
        assert report(client, headers, transaction_id=f"TX-{n:04d}").status_code == 201
    resp = report(client, headers, transaction_id="TX-0005")
    assert resp.status_code == 429
    # Other users are unaffected
    assert report(client, auth_headers("new-user"), transaction_id="TX-0006").status_code == 201


def test_rate_limit_fails_open_when_count_query_fails(client, auth_headers, monkeypatch):
    def broken_count(self, user_id, since):
        raise OperationalError("SELECT count(*)", {}, Exception("database is locked"))

    monkeypatch.setattr(FailedOrderRecorder, "_count_since", broken_count)
    headers = auth_headers()
    for n in range(7):
        assert report(client, headers, transaction_id=f"TX-{n:04d}").status_code == 201


def test_admin_reviews_failed_orders(client, auth_headers, admin_headers):
    record_id = report(client, auth_headers()).json()["id"]

    resp = client.patch(f"/orders/failed/{record_id}", headers=admin_headers, json={"status": "resolved"})
    assert resp.status_code == 400

    resp = client.patch(f"/orders/failed/{record_id}", headers=admin_headers,
                        json={"status": "reviewed", "comment": "Refund issued"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "reviewed"
    assert resp.json()["comment"] == "Refund issued"

    assert client.get("/orders/failed?status=pending", headers=admin_headers).json() == []
    assert len(client.get("/orders/failed?status=reviewed", headers=admin_headers).json()) == 1


def test_failed_order_admin_routes_require_admin(client, auth_headers):
    assert client.get("/orders/failed", headers=auth_headers()).status_code == 403
    assert client.patch("/orders/failed/1", headers=auth_headers(), json={"comment": "x"}).status_code == 403


def test_unknown_failed_order_is_404(client, admin_headers):
    resp = client.patch("/orders/failed/42", headers=admin_headers, json={"comment": "x"})
    assert resp.status_code == 404


def test_report_amount_is_rounded():
    parsed = FailedOrderReport.parse("  TX-9 ", {"items": [{}], "total": "99.999"})
    assert parsed.transaction_id == "TX-9"
    assert str(parsed.amount) == "100.00"
    with pytest.raises(InvalidFailedOrder):
        FailedOrderReport.parse("TX-9", ["not", "a", "dict"])
