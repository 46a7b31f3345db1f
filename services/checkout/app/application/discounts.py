"""Coupon and new-user discount resolution.

A supplied coupon code always wins: it either applies or fails the request.
Only when no code is supplied does the new-user promotion get considered.
"""

import math
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.domain.errors import CouponExists, InvalidCoupon, NotFound
from app.domain.models import Coupon
from app.domain.money import as_number, round2
from app.domain.pricing import Discount, DiscountType
from app.infrastructure.clients import CustomerDirectory
from shared.core import get_logger

logger = get_logger(__name__)

# Average month length in days
DAYS_PER_MONTH = 30.44
SECONDS_PER_MONTH = DAYS_PER_MONTH * 24 * 60 * 60
MAX_CODE_LENGTH = 50


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() + "Z" if value else None


def normalize_coupon_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def valid_percentage(value: Any) -> bool:
    """Coupons take between 0 (exclusive) and 100 percent off."""
    number = as_number(value)
    return number is not None and math.isfinite(number) and 0 < number <= 100


class CouponService:
    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    def _now(self) -> datetime:
        # Stored timestamps are naive UTC
        return self.clock().astimezone(timezone.utc).replace(tzinfo=None)

    def find(self, code: str) -> Optional[Coupon]:
        return self.db.execute(
            select(Coupon).where(Coupon.code == normalize_coupon_code(code))
        ).scalar_one_or_none()

    def validate(self, code: str, user_id: str) -> Coupon:
        coupon = self.find(code)
        if coupon is None:
            raise InvalidCoupon("Coupon not found")
        if not coupon.is_active:
            raise InvalidCoupon("Coupon is no longer active")
        if coupon.expires_at is not None and coupon.expires_at <= self._now():
            raise InvalidCoupon("Coupon has expired")
        if coupon.user_id and coupon.user_id != user_id:
            raise InvalidCoupon("Coupon is not valid for this account")
        if coupon.max_uses is not None and coupon.used_count >= coupon.max_uses:
            raise InvalidCoupon("Coupon has already been used")
        if not valid_percentage(coupon.percentage):
            logger.warning(
                f"Coupon {coupon.code} has an out of range percentage",
                extra={'extra_fields': {'coupon_id': coupon.id, 'percentage': str(coupon.percentage)}}
            )
            raise InvalidCoupon("Coupon percentage is invalid")
        return coupon

    def redeem(self, coupon_id: int, user_id: str) -> bool:
        """Consume one use of a coupon in the caller's transaction.

        The usage check and the increment are one conditional UPDATE, so two
        concurrent redemptions of a single-use coupon cannot both succeed.
        """
        now = self._now()
        result = self.db.execute(
            update(Coupon)
            .where(
                Coupon.id == coupon_id,
                Coupon.is_active.is_(True),
                or_(Coupon.expires_at.is_(None), Coupon.expires_at > now),
                or_(Coupon.max_uses.is_(None), Coupon.used_count < Coupon.max_uses),
            )
            .values(used_count=Coupon.used_count + 1, last_used_by=user_id, last_used_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # Admin management

    def list(self) -> List[Coupon]:
        return list(self.db.execute(select(Coupon).order_by(Coupon.created_at.desc(), Coupon.id.desc())).scalars())

    def get(self, coupon_id: int) -> Coupon:
        coupon = self.db.get(Coupon, coupon_id)
        if coupon is None:
            raise NotFound("Coupon not found")
        return coupon

    def _check_code(self, code: Optional[str], coupon_id: Optional[int] = None) -> str:
        normalized = normalize_coupon_code(code)
        if not normalized or len(normalized) > MAX_CODE_LENGTH:
            raise InvalidCoupon(f"Coupon code must be 1-{MAX_CODE_LENGTH} characters")
        existing = self.find(normalized)
        if existing is not None and existing.id != coupon_id:
            raise CouponExists(f"Coupon {normalized} already exists")
        return normalized

    @staticmethod
    def _check_percentage(percentage: Any) -> Decimal:
        if not valid_percentage(percentage):
            raise InvalidCoupon("Percentage must be greater than 0 and at most 100")
        return round2(as_number(percentage))

    @staticmethod
    def _check_max_uses(max_uses: Optional[int]) -> Optional[int]:
        if max_uses is not None and max_uses < 1:
            raise InvalidCoupon("Maximum uses must be at least 1")
        return max_uses

    def create(
        self,
        code: str,
        percentage: Any,
        expires_at: datetime,
        user_id: Optional[str] = None,
        max_uses: Optional[int] = 1,
        is_active: bool = True,
    ) -> Coupon:
        expires = naive_utc(expires_at)
        if expires <= self._now():
            raise InvalidCoupon("Expiration date must be in the future")
        coupon = Coupon(
            code=self._check_code(code),
            percentage=self._check_percentage(percentage),
            expires_at=expires,
            user_id=user_id or None,
            is_active=is_active,
            max_uses=self._check_max_uses(max_uses),
            used_count=0,
            created_at=self._now(),
        )
        self.db.add(coupon)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise CouponExists(f"Coupon {coupon.code} already exists") from e
        self.db.refresh(coupon)
        logger.info(f"Coupon {coupon.code} created",
                    extra={'extra_fields': {'coupon_id': coupon.id, 'percentage': float(coupon.percentage)}})
        return coupon

    def update(self, coupon_id: int, changes: Dict[str, Any]) -> Coupon:
        """Apply the supplied fields only; ``None`` clears user_id and max_uses."""
        coupon = self.get(coupon_id)
        if "code" in changes:
            coupon.code = self._check_code(changes["code"], coupon.id)
        if "percentage" in changes:
            coupon.percentage = self._check_percentage(changes["percentage"])
        if "expires_at" in changes:
            if changes["expires_at"] is None:
                raise InvalidCoupon("Expiration date is required")
            coupon.expires_at = naive_utc(changes["expires_at"])
        if "user_id" in changes:
            coupon.user_id = changes["user_id"] or None
        if "max_uses" in changes:
            coupon.max_uses = self._check_max_uses(changes["max_uses"])
        if changes.get("is_active") is not None:
            coupon.is_active = changes["is_active"]
        self.db.commit()
        self.db.refresh(coupon)
        return coupon

    def delete(self, coupon_id: int) -> None:
        coupon = self.get(coupon_id)
        self.db.delete(coupon)
        self.db.commit()
        logger.info(f"Coupon {coupon.code} deleted", extra={'extra_fields': {'coupon_id': coupon_id}})


def serialize_coupon(coupon: Coupon) -> Dict[str, Any]:
    return {
        "id": coupon.id,
        "code": coupon.code,
        "percentage": float(coupon.percentage),
        "userId": coupon.user_id,
        "expiresAt": _iso(coupon.expires_at),
        "isActive": coupon.is_active,
        "maxUses": coupon.max_uses,
        "usedCount": coupon.used_count,
        "used": coupon.max_uses is not None and coupon.used_count >= coupon.max_uses,
        "lastUsedBy": coupon.last_used_by,
        "lastUsedAt": _iso(coupon.last_used_at),
        "createdAt": _iso(coupon.created_at),
    }


class DiscountResolver:
    def __init__(
        self,
        coupons: CouponService,
        customers: CustomerDirectory,
        new_user_percentage: float = 5,
        new_user_months: float = 3,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.coupons = coupons
        self.customers = customers
        self.new_user_percentage = new_user_percentage
        self.new_user_months = new_user_months
        self.clock = clock

    async def resolve(self, subtotal_before_discount: Decimal, coupon_code: Optional[str], user_id: str) -> Discount:
        code = normalize_coupon_code(coupon_code)
        if code:
            coupon = await run_in_threadpool(self.coupons.validate, code, user_id)
            return Discount.percent_off(
                DiscountType.COUPON,
                coupon.percentage,
                subtotal_before_discount,
                reason=f"Coupon {coupon.code}",
                coupon_code=coupon.code,
                coupon_id=coupon.id,
            )

        if await self.is_new_user(user_id):
            return Discount.percent_off(
                DiscountType.NEW_USER,
                self.new_user_percentage,
                subtotal_before_discount,
                reason=f"New user discount (first {self.new_user_months:g} months)",
            )
        return Discount.none()

    async def is_new_user(self, user_id: str) -> bool:
        if not user_id:
            return False
        created_at = await self.customers.fetch_created_at(user_id)
        if created_at is None:
            return False
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        months = (self.clock() - created_at).total_seconds() / SECONDS_PER_MONTH
        return months < self.new_user_months
