"""Zone and weight tiered delivery fees."""

import math
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional

from .errors import MissingDeliveryZone
from .money import Number, ZERO, is_finite_non_negative, round2, to_decimal

WEIGHT_TIER_KG = Decimal("30")
MAX_WEIGHT_MULTIPLIER = 2


class DeliveryType(str, Enum):
    DELIVERY = "delivery"
    PICKUP = "pickup"


@dataclass(frozen=True)
class DeliveryZone:
    code: str
    base_fee: Decimal
    free_delivery_threshold: Decimal


DELIVERY_ZONES: Dict[str, DeliveryZone] = {
    zone.code: zone
    for zone in (
        DeliveryZone("telaviv_north", Decimal("65"), Decimal("850")),
        DeliveryZone("jerusalem", Decimal("85"), Decimal("850")),
        DeliveryZone("south", Decimal("85"), Decimal("850")),
        DeliveryZone("westbank", Decimal("85"), Decimal("1500")),
    )
}


def weight_multiplier(weight_kg: Number) -> int:
    """One base fee per started 30kg, never less than one and capped at two."""
    weight = to_decimal(weight_kg) if is_finite_non_negative(weight_kg) else ZERO
    return min(MAX_WEIGHT_MULTIPLIER, max(1, math.ceil(weight / WEIGHT_TIER_KG)))


class DeliveryFeeCalculator:
    def __init__(self, zones: Optional[Dict[str, DeliveryZone]] = None):
        self.zones = zones if zones is not None else DELIVERY_ZONES

    def zone_for(self, delivery_type: DeliveryType, zone_code: Optional[str]) -> Optional[DeliveryZone]:
        """Pickup needs no zone; delivery must name a known one."""
        if delivery_type == DeliveryType.PICKUP:
            return None
        zone = self.zones.get((zone_code or "").strip())
        if zone is None:
            if zone_code:
                raise MissingDeliveryZone(f"Unknown delivery zone: {zone_code}")
            raise MissingDeliveryZone("A delivery zone is required for delivery orders")
        return zone

    def fee(
        self,
        delivery_type: DeliveryType,
        zone_code: Optional[str],
        weight_kg: Number,
        subtotal: Number,
    ) -> Decimal:
        zone = self.zone_for(delivery_type, zone_code)
        if zone is None:
            return round2(ZERO)
        if to_decimal(subtotal) >= zone.free_delivery_threshold:
            return round2(ZERO)
        return round2(zone.base_fee * weight_multiplier(weight_kg))
