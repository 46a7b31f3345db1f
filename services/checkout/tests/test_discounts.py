from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.application.discounts import CouponService, DiscountResolver, normalize_coupon_code
from app.domain.errors import InvalidCoupon
from app.domain.models import Coupon
from app.domain.pricing import DiscountType

SUBTOTAL = Decimal("22.00")


def naive_utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def resolver(db_session, customers, **kwargs):
    return DiscountResolver(CouponService(db_session), customers, **kwargs)


def test_coupon_codes_are_normalized():
    assert normalize_coupon_code("  save10 ") == "SAVE10"
    assert normalize_coupon_code(None) == ""


@pytest.mark.asyncio
async def test_coupon_takes_precedence_over_new_user(db_session, customers, add_coupon):
    add_coupon("BIG90", 90)
    discount = await resolver(db_session, customers).resolve(SUBTOTAL, "big90", "new-user")
    assert discount.type == DiscountType.COUPON
    assert discount.amount == Decimal("19.80")
    assert discount.coupon_code == "BIG90"


@pytest.mark.asyncio
async def test_new_user_discount_without_coupon(db_session, customers):
    discount = await resolver(db_session, customers).resolve(SUBTOTAL, None, "new-user")
    assert discount.type == DiscountType.NEW_USER
    assert discount.amount == Decimal("1.10")


@pytest.mark.asyncio
async def test_established_and_unknown_users_get_nothing(db_session, customers):
    r = resolver(db_session, customers)
    assert (await r.resolve(SUBTOTAL, "", "old-user")).type is None
    assert (await r.resolve(SUBTOTAL, None, "ghost")).type is None


@pytest.mark.asyncio
async def test_new_user_window_is_measured_in_average_months(db_session, customers):
    now = datetime(2024, 6, 1, tzinfo=timezone.utc)
    customers.created["edge"] = now - timedelta(days=91)
    customers.created["late"] = now - timedelta(days=92)
    r = resolver(db_session, customers, clock=lambda: now)
    # 3 months of 30.44 days is 91.32 days
    assert await r.is_new_user("edge")
    assert not await r.is_new_user("late")


@pytest.mark.asyncio
async def test_invalid_coupon_fails_instead_of_falling_back(db_session, customers):
    with pytest.raises(InvalidCoupon):
        await resolver(db_session, customers).resolve(SUBTOTAL, "NOPE", "new-user")


@pytest.mark.parametrize("fields, message", [
    ({"is_active": False}, "no longer active"),
    ({"expires_at": naive_utcnow() - timedelta(days=1)}, "expired"),
    ({"user_id": "someone-else"}, "not valid for this account"),
    ({"used_count": 1}, "already been used"),
])
def test_coupon_validation_rules(db_session, add_coupon, fields, message):
    add_coupon("RULE", 10, **fields)
    with pytest.raises(InvalidCoupon) as exc:
        CouponService(db_session).validate("rule", "old-user")
    assert message in exc.value.details


def test_unlimited_coupon_stays_valid(db_session, add_coupon):
    coupon = add_coupon("FOREVER", 10, max_uses=None, used_count=25)
    db_session.expire_all()
    assert db_session.get(Coupon, coupon.id).max_uses is None
    assert CouponService(db_session).validate("FOREVER", "old-user").code == "FOREVER"


def test_single_use_coupon_redeems_exactly_once(db_session, add_coupon):
    coupon = add_coupon("ONCE", 10)
    coupons = CouponService(db_session)
    assert coupons.redeem(coupon.id, "old-user") is True
    assert coupons.redeem(coupon.id, "new-user") is False
    db_session.commit()
    db_session.refresh(coupon)
    assert coupon.used_count == 1
    assert coupon.last_used_by == "old-user"


def test_expired_coupon_cannot_be_redeemed(db_session, add_coupon):
    coupon = add_coupon("OLD", 10, expires_at=naive_utcnow() - timedelta(minutes=1))
    assert CouponService(db_session).redeem(coupon.id, "old-user") is False


@pytest.mark.parametrize("percentage", [150, 0, -5])
def test_out_of_range_coupon_percentage_is_invalid(db_session, add_coupon, percentage):
    add_coupon("WEIRD", percentage)
    with pytest.raises(InvalidCoupon) as exc:
        CouponService(db_session).validate("WEIRD", "old-user")
    assert exc.value.details == "Coupon percentage is invalid"
