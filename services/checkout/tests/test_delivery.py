from decimal import Decimal

import pytest

from app.domain.delivery import DeliveryFeeCalculator, DeliveryType, weight_multiplier
from app.domain.errors import MissingDeliveryZone


@pytest.mark.parametrize("weight, expected", [
    (0, 1),
    (None, 1),
    (-5, 1),
    (30, 1),
    (30.01, 2),
    (60, 2),
    (1000, 2),
])
def test_weight_multiplier_tiers(weight, expected):
    assert weight_multiplier(weight) == expected


def test_pickup_is_free_and_needs_no_zone():
    assert DeliveryFeeCalculator().fee(DeliveryType.PICKUP, None, 500, 10) == Decimal("0.00")


def test_zone_base_fees():
    calc = DeliveryFeeCalculator()
    assert calc.fee(DeliveryType.DELIVERY, "telaviv_north", 5, 100) == Decimal("65.00")
    assert calc.fee(DeliveryType.DELIVERY, "jerusalem", 5, 100) == Decimal("85.00")
    assert calc.fee(DeliveryType.DELIVERY, "south", 45, 100) == Decimal("170.00")


def test_free_delivery_threshold_boundary():
    calc = DeliveryFeeCalculator()
    assert calc.fee(DeliveryType.DELIVERY, "jerusalem", 5, 850) == Decimal("0.00")
    assert calc.fee(DeliveryType.DELIVERY, "jerusalem", 5, 849) == Decimal("85.00")


def test_westbank_has_higher_threshold():
    calc = DeliveryFeeCalculator()
    assert calc.fee(DeliveryType.DELIVERY, "westbank", 5, 1000) == Decimal("85.00")
    assert calc.fee(DeliveryType.DELIVERY, "westbank", 5, 1500) == Decimal("0.00")


@pytest.mark.parametrize("zone", [None, "", "atlantis"])
def test_delivery_without_known_zone_is_rejected(zone):
    with pytest.raises(MissingDeliveryZone) as exc:
        DeliveryFeeCalculator().fee(DeliveryType.DELIVERY, zone, 1, 10)
    assert exc.value.status_code == 400
    assert exc.value.to_dict()["error"] == "Please select a delivery zone"
