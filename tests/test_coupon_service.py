"""Coupon checks, discount math and atomic reservation"""

from datetime import timedelta
from decimal import Decimal

import pytest

from models import Coupon, DiscountType
from services.coupon_service import EXHAUSTED, EXPIRED, INACTIVE, NOT_FOUND, CouponInfo, CouponService
from utils.datetime_helpers import get_naive_utc_now


@pytest.fixture
def add_coupon(session_factory):
    def add(code, discount_type=DiscountType.PERCENTAGE, value="10", is_active=True, usage_count=0,
            max_usage=None, expires_at=None):
        db = session_factory()
        try:
            db.add(Coupon(
                code=code,
                discount_type=discount_type.value,
                discount_value=Decimal(value),
                is_active=is_active,
                usage_count=usage_count,
                max_usage=max_usage,
                expires_at=expires_at,
            ))
            db.commit()
        finally:
            db.close()

    return add


def _coupon(discount_type, value):
    return CouponInfo(code="X", discount_type=discount_type, discount_value=Decimal(value), usage_count=0, max_usage=None)


class TestDiscountedPrice:

    def test_percentage_discount(self):
        price = CouponService.discounted_price(_coupon(DiscountType.PERCENTAGE, "10"), Decimal("918.75"))
        assert price == Decimal("826.88")

    def test_fixed_discount(self):
        price = CouponService.discounted_price(_coupon(DiscountType.FIXED, "100"), Decimal("918.75"))
        assert price == Decimal("818.75")

    def test_fixed_discount_never_negative(self):
        price = CouponService.discounted_price(_coupon(DiscountType.FIXED, "5000"), Decimal("918.75"))
        assert price == Decimal("0.00")

    @pytest.mark.parametrize("value", ["0", "1", "50", "99.99", "100", "150"])
    def test_percentage_stays_within_price(self, value):
        price = CouponService.discounted_price(_coupon(DiscountType.PERCENTAGE, value), Decimal("1617.50"))
        assert Decimal("0") <= price <= Decimal("1617.50")


class TestCouponCheck:

    def test_valid_coupon(self, coupon_service, add_coupon):
        add_coupon("AFRO10", max_usage=5, usage_count=1)
        check = coupon_service.check("afro10")
        assert check.is_valid
        assert check.coupon.discount_value == Decimal("10")

    def test_rejections(self, coupon_service, add_coupon):
        now = get_naive_utc_now()
        add_coupon("OFF", is_active=False)
        add_coupon("OLD", expires_at=now - timedelta(days=1))
        add_coupon("FULL", max_usage=3, usage_count=3)

        assert coupon_service.check("NOPE").reason == NOT_FOUND
        assert coupon_service.check("OFF").reason == INACTIVE
        assert coupon_service.check("OLD").reason == EXPIRED
        assert coupon_service.check("FULL").reason == EXHAUSTED


class TestReservation:

    def test_reserve_stops_at_ceiling(self, coupon_service, add_coupon):
        add_coupon("TWICE", max_usage=2)

        assert coupon_service.reserve("TWICE") is True
        assert coupon_service.reserve("TWICE") is True
        assert coupon_service.reserve("TWICE") is False
        assert coupon_service.check("TWICE").reason == EXHAUSTED

    def test_release_gives_back_one_use(self, coupon_service, add_coupon):
        add_coupon("ONCE", max_usage=1)
        assert coupon_service.reserve("ONCE") is True

        coupon_service.release("ONCE")

        assert coupon_service.check("ONCE").is_valid

    def test_expired_coupon_cannot_be_reserved(self, coupon_service, add_coupon):
        add_coupon("OLD", expires_at=get_naive_utc_now() - timedelta(minutes=1))
        assert coupon_service.reserve("OLD") is False
