"""
Ticket Availability
Soft inventory cap for the VIP tier.

A baseline (successful VIP sales when the cap was introduced) is captured lazily on
first use and persisted in system_config, so restarts keep the same zero-point.
VIP is available while (successful VIP sales now - baseline) < VIP_ADDITIONAL_AVAILABLE.

This is a check-then-act gate: several buyers can see "available" before any of their
payments land, so the cap can be exceeded by the number of in-flight VIP checkouts.
"""

import logging
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import Config
from database import SessionLocal
from models import SystemConfig
from services.payment_service import PaymentService
from utils.constants import CONSTRAINED_TICKET_TYPE, VIP_BASELINE_CONFIG_KEY

logger = logging.getLogger(__name__)


class TicketAvailabilityService:
    """VIP availability gate"""

    def __init__(
        self,
        payment_service: PaymentService,
        additional_available: Optional[int] = None,
        session_factory: Callable[[], Session] = SessionLocal,
    ):
        self.payment_service = payment_service
        self.additional_available = (
            additional_available if additional_available is not None else Config.VIP_ADDITIONAL_AVAILABLE
        )
        self._session_factory = session_factory
        self._baseline: Optional[int] = None

    def _load_or_initialize_baseline(self) -> int:
        if self._baseline is not None:
            return self._baseline

        db = self._session_factory()
        try:
            stored = db.execute(
                select(SystemConfig.value).where(SystemConfig.key == VIP_BASELINE_CONFIG_KEY)
            ).scalar_one_or_none()
            if stored is not None:
                self._baseline = int(stored)
                return self._baseline

            current = self.payment_service.count_successful_payments(CONSTRAINED_TICKET_TYPE)
            db.add(SystemConfig(
                key=VIP_BASELINE_CONFIG_KEY,
                value=str(current),
                value_type="int",
                description="Successful VIP sales when the additional-allotment cap was activated",
            ))
            try:
                db.commit()
                self._baseline = current
                logger.info(
                    f"🎟️ TICKET_AVAILABILITY: Baseline initialized: {current} VIP tickets already sold. "
                    f"{self.additional_available} more available."
                )
            except IntegrityError:
                # Another process stored it first; use theirs
                db.rollback()
                self._baseline = int(db.execute(
                    select(SystemConfig.value).where(SystemConfig.key == VIP_BASELINE_CONFIG_KEY)
                ).scalar_one())
            return self._baseline
        finally:
            db.close()

    def remaining_vip_tickets(self) -> int:
        """How many of the additional VIP tickets are left (0 on error)"""
        try:
            baseline = self._load_or_initialize_baseline()
            sold = self.payment_service.count_successful_payments(CONSTRAINED_TICKET_TYPE)
            return max(0, self.additional_available - (sold - baseline))
        except Exception as e:
            logger.error(f"❌ TICKET_AVAILABILITY: Error getting remaining VIP tickets: {e}", exc_info=True)
            return 0

    def is_vip_out_of_stock(self) -> bool:
        """True when the additional allotment is used up; errors count as out of stock"""
        try:
            baseline = self._load_or_initialize_baseline()
            sold = self.payment_service.count_successful_payments(CONSTRAINED_TICKET_TYPE)
        except Exception as e:
            logger.error(f"❌ TICKET_AVAILABILITY: Error checking VIP availability: {e}", exc_info=True)
            return True

        new_sold = sold - baseline
        out_of_stock = new_sold >= self.additional_available
        if out_of_stock:
            logger.info(
                f"🚫 TICKET_AVAILABILITY: VIP out of stock: {new_sold}/{self.additional_available} new sold "
                f"({sold} total, baseline {baseline})"
            )
        else:
            logger.debug(
                f"🎟️ TICKET_AVAILABILITY: VIP available: {self.additional_available - new_sold} remaining "
                f"({sold} total, baseline {baseline})"
            )
        return out_of_stock
