ITEMS = [{"productId": "p1", "price": 10, "quantity": 3}]


def test_calculate_total_with_items(client, auth_headers):
    resp = client.post("/payment/calculate-total", headers=auth_headers(), json={
        "items": ITEMS, "deliveryType": "delivery", "deliveryZone": "jerusalem", "deliveryCost": 85,
    })
    assert resp.status_code == 200
    assert resp.json() == {
        "subtotal": 30.0,
        "subtotalBeforeDiscount": 30.0,
        "discount": None,
        "tax": 20.7,
        "deliveryCost": 85.0,
        "total": 135.7,
    }


def test_calculate_total_without_zone_is_a_pickup_estimate(client, auth_headers):
    resp = client.post("/payment/calculate-total", headers=auth_headers(), json={"items": ITEMS})
    assert resp.json()["deliveryCost"] == 0.0
    assert resp.json()["total"] == 35.4


def test_calculate_total_reports_new_user_discount(client, auth_headers):
    resp = client.post("/payment/calculate-total", headers=auth_headers("new-user"),
                       json={"items": [{"productId": "tee"}]})
    body = resp.json()
    assert body["discount"]["type"] == "new_user"
    assert body["discount"]["amount"] == 1.1
    assert body["total"] == 24.66


def test_calculate_total_from_subtotal(client, auth_headers):
    resp = client.post("/payment/calculate-total", headers=auth_headers(), json={"subtotal": 22})
    assert resp.status_code == 200
    assert resp.json()["total"] == 25.96


def test_calculate_total_needs_items_or_subtotal(client, auth_headers):
    resp = client.post("/payment/calculate-total", headers=auth_headers(), json={"subtotal": -1})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Order items are required"


def test_calculate_total_with_bad_coupon(client, auth_headers):
    resp = client.post("/payment/calculate-total", headers=auth_headers(),
                       json={"items": ITEMS, "couponCode": "NOPE"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid coupon", "details": "Coupon not found"}


def test_process_payment(client, auth_headers):
    resp = client.post("/payment/process", headers=auth_headers(), json={
        "amount": 135.7, "currency": "ILS", "paymentMethod": "tranzila",
        "items": ITEMS, "deliveryZone": "jerusalem", "transactionId": "TX-77",
    })
    assert resp.status_code == 200
    assert resp.json() == {
        "success": True,
        "transactionId": "TX-77",
        "amount": 135.7,
        "currency": "ILS",
        "status": "completed",
        "message": "Payment verified successfully",
        "paymentGateway": "tranzila",
    }


def test_process_payment_rejects_wrong_amount(client, auth_headers):
    resp = client.post("/payment/process", headers=auth_headers(), json={
        "amount": 100, "items": ITEMS, "deliveryZone": "jerusalem", "transactionId": "TX-77",
    })
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "Payment amount mismatch"
    assert body["expectedTotal"] == 135.7


def test_process_payment_rejects_non_positive_amount(client, auth_headers):
    for amount in (0, -10, "abc", None):
        resp = client.post("/payment/process", headers=auth_headers(),
                           json={"amount": amount, "transactionId": "TX-77"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid payment amount"


def test_process_payment_requires_transaction_id(client, auth_headers):
    resp = client.post("/payment/process", headers=auth_headers(), json={"amount": 50})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Payment verification failed"


def test_process_payment_reads_gateway_reference(client, auth_headers):
    resp = client.post("/payment/process", headers=auth_headers(), json={
        "amount": 50, "currency": "ILS", "gatewayResponse": {"RefNo": "R-9"},
    })
    assert resp.status_code == 200
    assert resp.json()["transactionId"] == "R-9"
    assert resp.json()["paymentGateway"] == "unknown"


def test_calculate_total_with_out_of_range_coupon(client, auth_headers, add_coupon):
    add_coupon("HUGE", 150)
    resp = client.post("/payment/calculate-total", headers=auth_headers(),
                       json={"items": ITEMS, "couponCode": "huge"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid coupon", "details": "Coupon percentage is invalid"}
