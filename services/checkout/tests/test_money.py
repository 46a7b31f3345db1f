from decimal import Decimal

from app.domain.money import as_number, assemble_totals, discounted_subtotal, percentage_of, round2


def test_round2_rounds_half_up():
    assert round2(0.125) == Decimal("0.13")
    assert round2(2.675) == Decimal("2.68")
    assert round2(0.396) == Decimal("0.40")
    assert round2(Decimal("3.762")) == Decimal("3.76")


def test_as_number_rejects_non_numeric_payloads():
    assert as_number("12.5") == 12.5
    assert as_number(None) is None
    assert as_number(True) is None
    assert as_number("abc") is None
    assert as_number([1]) is None


def test_discounted_subtotal_never_negative():
    assert discounted_subtotal(10, 15) == Decimal("0.00")
    assert discounted_subtotal(22, Decimal("19.8")) == Decimal("2.20")


def test_coupon_worked_example():
    discount = percentage_of(22, 90)
    totals = assemble_totals(22, discount, 0, 0.18)
    assert discount == Decimal("19.80")
    assert totals.subtotal == Decimal("2.20")
    assert totals.tax == Decimal("0.40")
    assert totals.total == Decimal("2.60")


def test_new_user_worked_example():
    discount = percentage_of(22, 5)
    totals = assemble_totals(22, discount, 0, 0.18)
    assert discount == Decimal("1.10")
    assert totals.subtotal == Decimal("20.90")
    assert totals.tax == Decimal("3.76")
    assert totals.total == Decimal("24.66")


def test_tax_applies_to_delivery_fee():
    totals = assemble_totals(30, 0, 85, 0.18)
    assert totals.tax == Decimal("20.70")
    assert totals.total == Decimal("135.70")
    assert totals.as_dict() == {"subtotal": 30.0, "deliveryCost": 85.0, "tax": 20.7, "total": 135.7}


def test_assembling_totals_is_stable():
    first = assemble_totals(Decimal("19.99"), Decimal("1.00"), 65, 0.18)
    for _ in range(50):
        again = assemble_totals(first.subtotal, 0, first.delivery_cost, 0.18)
        assert again == first
