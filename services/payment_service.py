"""
Payment Service
Payment-link generation, wallet transfers, sales counts and ticket ids
"""

import logging
import random
import time
from dataclasses import replace
from decimal import Decimal
from typing import Callable, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import Config
from database import SessionLocal
from models import (
    OPEN_PAYMENT_STATUSES, Payment, PaymentStatus, SessionState, TicketSession, TicketType, WalletTransfer
)
from services.paystack_service import PaymentMetadata, PaystackService, get_paystack_service
from utils.constants import TICKET_ID_PREFIX
from utils.exception_handler import BackendError, PaymentError, SessionConflictError, ValidationError
from utils.input_validation import InputValidator

logger = logging.getLogger(__name__)


class PaymentService:
    """Backend collaborator used by the conversation engine and the schedulers"""

    def __init__(
        self,
        paystack: Optional[PaystackService] = None,
        session_factory: Callable[[], Session] = SessionLocal,
    ):
        self.paystack = paystack or get_paystack_service()
        self._session_factory = session_factory

    def _payer_email(self, db: Session, chat_id: str) -> str:
        """Session e-mail, else a placeholder address on the fallback domain"""
        email = db.execute(
            select(TicketSession.email).where(TicketSession.chat_id == chat_id)
        ).scalar_one_or_none()
        if email:
            return email
        local_part = "".join(ch for ch in str(chat_id) if ch.isalnum()) or "guest"
        return f"{local_part}@{Config.FALLBACK_EMAIL_DOMAIN}"

    async def generate_payment_link(
        self,
        chat_id: str,
        amount: Decimal,
        metadata: Optional[PaymentMetadata] = None,
    ) -> Tuple[str, str]:
        """
        Initialize a Paystack checkout and persist a pending Payment row.

        Returns (payment_link, reference). Provider failures raise BackendError.
        """
        try:
            amount = InputValidator.validate_amount(amount)
        except ValidationError as e:
            raise PaymentError(f"Refusing to create payment link: {e.message}")

        metadata = replace(metadata or PaymentMetadata(), chat_id=str(chat_id))

        db = self._session_factory()
        try:
            email = self._payer_email(db, chat_id)
        except SQLAlchemyError as e:
            logger.error(f"❌ PAYMENT_LINK: Could not read payer e-mail for chat {chat_id}: {e}")
            raise BackendError("Failed to generate payment link. Please try again.") from e
        finally:
            db.close()

        reference = self.paystack.generate_reference(chat_id)
        initialized = await self.paystack.initialize_payment(amount, email, metadata, reference=reference)

        db = self._session_factory()
        try:
            db.add(Payment(
                reference=initialized.reference,
                chat_id=str(chat_id),
                amount=amount,
                currency=self.paystack.currency,
                status=PaymentStatus.PENDING.value,
                ticket_type=metadata.ticket_type,
                payment_type=metadata.payment_type,
                installment_number=metadata.installment_number,
                coupon_code=metadata.coupon_code,
                payment_metadata=metadata.to_dict(),
                authorization_url=initialized.authorization_url,
                access_code=initialized.access_code,
            ))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"❌ PAYMENT_LINK: Failed to persist payment {initialized.reference}: {e}")
            raise BackendError("Failed to generate payment link. Please try again.") from e
        finally:
            db.close()

        logger.info(
            f"✅ PAYMENT_LINK: Created {initialized.reference} for chat {chat_id} "
            f"({amount} {self.paystack.currency}, ticket={metadata.ticket_type}, type={metadata.payment_type})"
        )
        return initialized.authorization_url, initialized.reference

    def process_wallet_transfer(
        self,
        chat_id: str,
        amount: Decimal,
        destination: str,
        expected_version: Optional[int] = None,
    ) -> WalletTransfer:
        """
        Move the wallet balance to a destination.

        The transfer row and the session update (wallet zeroed, back to MAIN_MENU) commit
        together, conditional on the balance still being `amount` so a balance can only
        be transferred once.
        """
        amount = Decimal(str(amount))
        if amount <= 0:
            raise BackendError(f"Nothing to transfer for chat {chat_id}")

        db = self._session_factory()
        try:
            stmt = update(TicketSession).where(
                TicketSession.chat_id == str(chat_id),
                TicketSession.wallet_balance == amount,
            )
            if expected_version is not None:
                stmt = stmt.where(TicketSession.version == expected_version)
            result = db.execute(
                stmt.values(
                    wallet_balance=Decimal("0"),
                    state=SessionState.MAIN_MENU.value,
                    version=TicketSession.version + 1,
                    updated_at=func.now(),
                ).execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                db.rollback()
                logger.warning(f"🔒 WALLET_TRANSFER: Balance for chat {chat_id} changed before transfer")
                raise SessionConflictError(str(chat_id), expected_version if expected_version is not None else -1)

            transfer = WalletTransfer(chat_id=str(chat_id), amount=amount, destination=destination)
            db.add(transfer)
            db.commit()
            logger.info(f"💸 WALLET_TRANSFER: {amount} moved to {destination} for chat {chat_id}")
            return transfer
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"❌ WALLET_TRANSFER: Failed for chat {chat_id}: {e}")
            raise BackendError("Wallet transfer failed. Please try again.") from e
        finally:
            db.close()

    def detach_coupon(self, reference: str) -> Optional[str]:
        """
        Unlink the coupon from a still-open payment and return its code.

        Only one caller gets the code back, so the reservation is released at most once.
        """
        db = self._session_factory()
        try:
            code = db.execute(
                select(Payment.coupon_code).where(Payment.reference == reference)
            ).scalar_one_or_none()
            if not code:
                return None
            result = db.execute(
                update(Payment)
                .where(
                    Payment.reference == reference,
                    Payment.coupon_code == code,
                    Payment.status.in_(OPEN_PAYMENT_STATUSES),
                )
                .values(coupon_code=None)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            return code if result.rowcount == 1 else None
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"❌ PAYMENT_LINK: Could not detach coupon from {reference}: {e}")
            raise BackendError("Failed to update payment record") from e
        finally:
            db.close()

    def count_successful_payments(self, ticket_type: TicketType) -> int:
        """Live count of successful payments for a tier"""
        db = self._session_factory()
        try:
            return db.execute(
                select(func.count(Payment.id)).where(
                    Payment.ticket_type == ticket_type.value,
                    Payment.status == PaymentStatus.SUCCESS.value,
                )
            ).scalar_one()
        finally:
            db.close()

    @staticmethod
    def generate_ticket_id() -> str:
        """AF + last 8 digits of the ms timestamp + 4 random digits"""
        timestamp = str(int(time.time() * 1000))[-8:]
        return f"{TICKET_ID_PREFIX}{timestamp}{random.randint(0, 9999):04d}"
