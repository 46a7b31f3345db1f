from datetime import datetime, timedelta, timezone

import pytest


def future(days=30):
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


def create_coupon(client, headers, **fields):
    body = {"code": "spring20", "percentage": 20, "expiresAt": future()}
    body.update(fields)
    return client.post("/coupons", headers=headers, json=body)


def test_admin_creates_and_lists_coupons(client, admin_headers):
    resp = create_coupon(client, admin_headers, userId="old-user")
    assert resp.status_code == 201
    coupon = resp.json()
    assert coupon["code"] == "SPRING20"
    assert coupon["percentage"] == 20.0
    assert coupon["userId"] == "old-user"
    assert coupon["maxUses"] == 1
    assert coupon["usedCount"] == 0
    assert coupon["used"] is False

    listed = client.get("/coupons", headers=admin_headers).json()["coupons"]
    assert [c["code"] for c in listed] == ["SPRING20"]


def test_created_coupon_applies_at_checkout(client, auth_headers, admin_headers):
    create_coupon(client, admin_headers, code="half", percentage=50, maxUses=None)
    resp = client.post("/payment/calculate-total", headers=auth_headers(), json={
        "items": [{"productId": "p1", "quantity": 3}], "couponCode": "HALF",
    })
    assert resp.status_code == 200
    assert resp.json()["discount"] == {"amount": 15.0, "percentage": 50.0, "type": "coupon", "couponCode": "HALF"}


@pytest.mark.parametrize("fields", [
    {"percentage": 0},
    {"percentage": 101},
    {"expiresAt": (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()},
    {"code": "   "},
    {"maxUses": 0},
])
def test_invalid_coupons_are_rejected(client, admin_headers, fields):
    resp = create_coupon(client, admin_headers, **fields)
    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid coupon"
    assert client.get("/coupons", headers=admin_headers).json()["coupons"] == []


def test_missing_expiry_is_a_bad_request(client, admin_headers):
    resp = client.post("/coupons", headers=admin_headers, json={"code": "NODATE", "percentage": 10})
    assert resp.status_code == 400
    assert resp.json()["details"].startswith("expiresAt")


def test_duplicate_codes_conflict(client, admin_headers):
    create_coupon(client, admin_headers)
    resp = create_coupon(client, admin_headers, code="SPRING20")
    assert resp.status_code == 409
    assert resp.json()["error"] == "Coupon code already exists"


def test_patch_changes_only_supplied_fields(client, admin_headers):
    coupon_id = create_coupon(client, admin_headers, userId="old-user").json()["id"]
    resp = client.patch(f"/coupons/{coupon_id}", headers=admin_headers,
                        json={"percentage": 35, "userId": None, "isActive": False})
    assert resp.status_code == 200
    coupon = resp.json()
    assert coupon["percentage"] == 35.0
    assert coupon["userId"] is None
    assert coupon["isActive"] is False
    assert coupon["code"] == "SPRING20"
    assert coupon["maxUses"] == 1

    resp = client.patch(f"/coupons/{coupon_id}", headers=admin_headers, json={"percentage": 250})
    assert resp.status_code == 400


def test_delete_coupon(client, admin_headers):
    coupon_id = create_coupon(client, admin_headers).json()["id"]
    assert client.delete(f"/coupons/{coupon_id}", headers=admin_headers).json() == {"message": "Coupon deleted"}
    assert client.get(f"/coupons/{coupon_id}", headers=admin_headers).status_code == 404
    assert client.delete(f"/coupons/{coupon_id}", headers=admin_headers).status_code == 404


def test_coupon_management_requires_admin(client, auth_headers):
    headers = auth_headers()
    assert client.get("/coupons", headers=headers).status_code == 403
    assert create_coupon(client, headers).status_code == 403
    assert client.delete("/coupons/1", headers=headers).status_code == 403
