"""
Coupon Service
Coupon lookup, discount computation and atomic usage reservation
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import SessionLocal
from models import Coupon, DiscountType
from utils.datetime_helpers import get_naive_utc_now
from utils.exception_handler import BackendError

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")

# Rejection reasons returned by CouponService.check
NOT_FOUND = "not_found"
INACTIVE = "inactive"
EXPIRED = "expired"
EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class CouponInfo:
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    usage_count: int
    max_usage: Optional[int]


@dataclass(frozen=True)
class CouponCheck:
    """Either a usable coupon or the reason it can't be used"""
    coupon: Optional[CouponInfo] = None
    reason: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.coupon is not None


class CouponService:
    """Coupon checks; the usage ceiling is enforced by a conditional increment in the database"""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self._session_factory = session_factory

    @staticmethod
    def normalize_code(code: str) -> str:
        return (code or "").strip().upper()

    def check(self, code: str) -> CouponCheck:
        """Active flag, expiry and usage ceiling, in that order"""
        code = self.normalize_code(code)
        db = self._session_factory()
        try:
            coupon = db.execute(select(Coupon).where(Coupon.code == code)).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"❌ COUPON: Lookup failed for {code}: {e}")
            raise BackendError("Coupon lookup failed") from e
        finally:
            db.close()

        if coupon is None:
            logger.info(f"🏷️ COUPON: {code} not found")
            return CouponCheck(reason=NOT_FOUND)
        if not coupon.is_active:
            return CouponCheck(reason=INACTIVE)
        if coupon.expires_at is not None and coupon.expires_at <= get_naive_utc_now():
            return CouponCheck(reason=EXPIRED)
        if coupon.max_usage is not None and coupon.usage_count >= coupon.max_usage:
            return CouponCheck(reason=EXHAUSTED)

        return CouponCheck(coupon=CouponInfo(
            code=coupon.code,
            discount_type=DiscountType(coupon.discount_type),
            discount_value=Decimal(str(coupon.discount_value)),
            usage_count=coupon.usage_count,
            max_usage=coupon.max_usage,
        ))

    @staticmethod
    def discounted_price(coupon: CouponInfo, price: Decimal) -> Decimal:
        """Apply the discount; result is within [0, price] and rounded to 2 dp"""
        price = Decimal(str(price))
        value = Decimal(str(coupon.discount_value))
        if coupon.discount_type == DiscountType.PERCENTAGE:
            discount = price * value / Decimal("100")
        else:
            discount = value
        discounted = price - discount
        discounted = max(Decimal("0"), min(price, discounted))
        return discounted.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)

    def reserve(self, code: str) -> bool:
        """
        Atomically take one use of the coupon.

        Succeeds only if the coupon is still active, unexpired and under its ceiling at
        the moment of the increment. Returns False when the coupon can no longer be used.
        """
        code = self.normalize_code(code)
        db = self._session_factory()
        try:
            result = db.execute(
                update(Coupon)
                .where(
                    Coupon.code == code,
                    Coupon.is_active.is_(True),
                    or_(Coupon.expires_at.is_(None), Coupon.expires_at > get_naive_utc_now()),
                    or_(Coupon.max_usage.is_(None), Coupon.usage_count < Coupon.max_usage),
                )
                .values(usage_count=Coupon.usage_count + 1)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            reserved = result.rowcount == 1
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"❌ COUPON: Reservation failed for {code}: {e}")
            raise BackendError("Coupon reservation failed") from e
        finally:
            db.close()

        if reserved:
            logger.info(f"✅ COUPON: Reserved one use of {code}")
        else:
            logger.info(f"🚫 COUPON: {code} could not be reserved (inactive, expired or exhausted)")
        return reserved

    def release(self, code: str) -> None:
        """Give back a reservation whose payment link could not be created"""
        code = self.normalize_code(code)
        db = self._session_factory()
        try:
            db.execute(
                update(Coupon)
                .where(Coupon.code == code, Coupon.usage_count > 0)
                .values(usage_count=Coupon.usage_count - 1)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            logger.info(f"↩️ COUPON: Released reservation of {code}")
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"❌ COUPON: Failed to release {code}: {e}")
        finally:
            db.close()
