"""
Payment Reconciliation - Paystack webhook and callback processing

Both entry points converge on `reconcile()`:
    signed webhook  -> HMAC check -> trust signed payload -> reconcile
    redirect callback -> verify with Paystack              -> reconcile

A payment moves out of pending/abandoned with one conditional UPDATE, so only the
first confirmation of a reference touches the session and sends a message. Replays
of the same event are no-ops once the payment is terminal.
"""

import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from telegram.error import TelegramError

from config import Config
from database import SessionLocal
from models import (
    OPEN_PAYMENT_STATUSES, TERMINAL_PAYMENT_STATUSES,
    Payment, PaymentStatus, PaymentType, SessionState, TicketType
)
from services.chat_notifier import ChatNotifier
from services.coupon_service import CouponService
from services.paystack_service import PaystackService, VerifiedPayment
from services.session_store import SessionStore, UserSession
from utils.constants import PAYSTACK_CHARGE_SUCCESS_EVENT, TICKETS, TicketInfo
from utils.datetime_helpers import format_date, get_naive_utc_now
from utils.exception_handler import BackendError
from utils.messages import TicketMessages

logger = logging.getLogger(__name__)

# Reconciliation outcomes
APPLIED = "applied"
ALREADY_PROCESSED = "already_processed"
UNKNOWN_REFERENCE = "unknown_reference"
NOT_SUCCESSFUL = "not_successful"
MISMATCH = "mismatch"
IGNORED_EVENT = "ignored_event"
MALFORMED = "malformed"
INVALID_SIGNATURE = "invalid_signature"


@dataclass
class ReconciliationResult:
    outcome: str
    reference: Optional[str] = None
    provider_status: Optional[str] = None


@dataclass
class _ConfirmedPayment:
    reference: str
    chat_id: str
    amount: Decimal
    ticket_type: Optional[str]
    payment_type: Optional[str]
    installment_number: Optional[int]
    previous_status: str


def _ticket_for(value: Optional[str]) -> Optional[TicketInfo]:
    try:
        return TICKETS[TicketType(value)]
    except (ValueError, KeyError):
        return None


class PaymentReconciler:
    """Feeds confirmed Paystack payments back into sessions and chat"""

    def __init__(
        self,
        paystack: PaystackService,
        store: SessionStore,
        notifier: Optional[ChatNotifier] = None,
        session_factory: Callable[[], Session] = SessionLocal,
        coupon_service: Optional[CouponService] = None,
    ):
        self.paystack = paystack
        self.store = store
        self.notifier = notifier
        self._session_factory = session_factory
        self.coupon_service = coupon_service

    # ==================== ENTRY POINTS ====================

    async def handle_webhook_event(self, raw_body: bytes, signature: Optional[str]) -> ReconciliationResult:
        """Signed push from Paystack; anything but a bad signature is acknowledged"""
        if not self.paystack.verify_signature(raw_body, signature):
            return ReconciliationResult(outcome=INVALID_SIGNATURE)

        try:
            event: Dict[str, Any] = json.loads(raw_body)
        except ValueError as e:
            logger.error(f"❌ PAYSTACK_WEBHOOK: Signed body is not valid JSON: {e}")
            return ReconciliationResult(outcome=MALFORMED)

        event_type = event.get("event") if isinstance(event, dict) else None
        data = event.get("data") if isinstance(event, dict) else None
        if event_type != PAYSTACK_CHARGE_SUCCESS_EVENT:
            logger.info(f"ℹ️ PAYSTACK_WEBHOOK: Ignoring event {event_type!r}")
            return ReconciliationResult(outcome=IGNORED_EVENT)
        if not isinstance(data, dict) or not data.get("reference"):
            logger.error("❌ PAYSTACK_WEBHOOK: charge.success without transaction data/reference")
            return ReconciliationResult(outcome=MALFORMED)

        logger.info(f"📥 PAYSTACK_WEBHOOK: charge.success for ref={data.get('reference')}")
        return await self.reconcile(self.paystack.parse_transaction(data))

    async def handle_callback(self, reference: str) -> ReconciliationResult:
        """Redirect callback: never trust the client, ask Paystack (BackendError propagates)"""
        logger.info(f"📥 PAYSTACK_CALLBACK: Received callback for ref={reference}")
        verified = await self.paystack.verify_payment(reference)
        return await self.reconcile(verified)

    # ==================== RECONCILIATION ====================

    async def reconcile(self, verified: VerifiedPayment) -> ReconciliationResult:
        reference = verified.reference
        confirmed = self._transition_payment(verified)
        if isinstance(confirmed, ReconciliationResult):
            return confirmed

        try:
            session = self._apply_to_session(confirmed)
        except Exception as e:
            # Reopen the payment so a replayed event or callback applies it again
            logger.error(
                f"❌ PAYMENT_RECONCILE: Session update failed for {reference}, reopening payment: {e}",
                exc_info=True,
            )
            self._reopen_payment(confirmed)
            raise BackendError("Session update failed after payment confirmation") from e

        await self._notify(confirmed, session)
        return ReconciliationResult(outcome=APPLIED, reference=reference, provider_status=verified.status)

    def _transition_payment(self, verified: VerifiedPayment):
        """Move the Payment row exactly once; returns _ConfirmedPayment on the first success"""
        reference = verified.reference
        db = self._session_factory()
        try:
            payment = db.execute(select(Payment).where(Payment.reference == reference)).scalar_one_or_none()
            if payment is None:
                logger.warning(f"⚠️ PAYMENT_RECONCILE: No payment record for ref={reference} - nothing to reconcile")
                return ReconciliationResult(outcome=UNKNOWN_REFERENCE, reference=reference, provider_status=verified.status)

            if payment.status in TERMINAL_PAYMENT_STATUSES:
                logger.info(f"✅ ALREADY_PROCESSED: ref={reference} is already {payment.status}")
                return ReconciliationResult(outcome=ALREADY_PROCESSED, reference=reference, provider_status=verified.status)

            status = verified.status
            if status == PaymentStatus.SUCCESS.value:
                expected_amount = Decimal(str(payment.amount))
                if verified.amount != expected_amount or verified.currency != payment.currency.upper():
                    reason = (
                        f"Provider reported {verified.amount} {verified.currency}, "
                        f"expected {expected_amount} {payment.currency}"
                    )
                    closed = self._conditional_update(db, reference, OPEN_PAYMENT_STATUSES, {
                        "status": PaymentStatus.FAILED.value,
                        "failure_reason": reason,
                    })
                    db.commit()
                    logger.critical(f"🚨 PAYMENT_MISMATCH: ref={reference}: {reason}")
                    if closed:
                        self._release_coupon(reference, payment.coupon_code)
                    return ReconciliationResult(outcome=MISMATCH, reference=reference, provider_status=status)

                first = self._conditional_update(db, reference, OPEN_PAYMENT_STATUSES, {
                    "status": PaymentStatus.SUCCESS.value,
                    "paid_at": verified.paid_at or get_naive_utc_now(),
                })
                db.commit()
                if not first:
                    logger.info(f"✅ ALREADY_PROCESSED: ref={reference} confirmed concurrently")
                    return ReconciliationResult(outcome=ALREADY_PROCESSED, reference=reference, provider_status=status)

                logger.info(f"💰 PAYMENT_RECONCILE: ref={reference} marked success ({payment.amount} {payment.currency})")
                return _ConfirmedPayment(
                    reference=reference,
                    chat_id=payment.chat_id,
                    amount=expected_amount,
                    ticket_type=payment.ticket_type or verified.metadata.ticket_type,
                    payment_type=payment.payment_type or verified.metadata.payment_type,
                    installment_number=payment.installment_number or verified.metadata.installment_number,
                    previous_status=payment.status,
                )

            if status == PaymentStatus.FAILED.value:
                closed = self._conditional_update(db, reference, OPEN_PAYMENT_STATUSES, {"status": PaymentStatus.FAILED.value})
                db.commit()
                logger.info(f"❌ PAYMENT_RECONCILE: ref={reference} failed at provider")
                if closed:
                    self._release_coupon(reference, payment.coupon_code)
            elif status == PaymentStatus.ABANDONED.value:
                # Not terminal: the customer can still complete an abandoned checkout
                self._conditional_update(db, reference, (PaymentStatus.PENDING.value,), {"status": PaymentStatus.ABANDONED.value})
                db.commit()
                logger.info(f"⏸️ PAYMENT_RECONCILE: ref={reference} abandoned")
            else:
                logger.info(f"⏳ PAYMENT_RECONCILE: ref={reference} still {status!r} at provider")
            return ReconciliationResult(outcome=NOT_SUCCESSFUL, reference=reference, provider_status=status)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"❌ PAYMENT_RECONCILE: Database error for ref={reference}: {e}")
            raise BackendError("Payment reconciliation failed") from e
        finally:
            db.close()

    @staticmethod
    def _conditional_update(db: Session, reference: str, from_statuses, values: Dict[str, Any]) -> bool:
        result = db.execute(
            update(Payment)
            .where(Payment.reference == reference, Payment.status.in_(from_statuses))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _release_coupon(self, reference: str, code: Optional[str]) -> None:
        """A failed payment gives back the coupon use reserved for its link"""
        if not code or self.coupon_service is None:
            return
        logger.info(f"🎟️ PAYMENT_RECONCILE: Releasing coupon {code} held by failed ref={reference}")
        self.coupon_service.release(code)

    def _reopen_payment(self, confirmed: _ConfirmedPayment) -> None:
        db = self._session_factory()
        try:
            reopened = self._conditional_update(db, confirmed.reference, (PaymentStatus.SUCCESS.value,), {
                "status": confirmed.previous_status,
                "paid_at": None,
            })
            db.commit()
            if reopened:
                logger.warning(f"⚠️ PAYMENT_RECONCILE: ref={confirmed.reference} reopened as {confirmed.previous_status}")
        except SQLAlchemyError as e:
            db.rollback()
            logger.critical(f"🚨 PAYMENT_RECONCILE: Could not reopen ref={confirmed.reference}: {e}")
        finally:
            db.close()

    def _apply_to_session(self, confirmed: _ConfirmedPayment) -> Optional[UserSession]:
        """Field-level session update for a first-time success"""
        is_installment = confirmed.payment_type == PaymentType.INSTALLMENT.value

        def compute(current: UserSession) -> Dict[str, Any]:
            fields: Dict[str, Any] = {"state": SessionState.MAIN_MENU}
            if confirmed.ticket_type:
                fields["ticket_type"] = confirmed.ticket_type

            if not is_installment:
                fields.update({
                    "payment_type": PaymentType.FULL,
                    "amount_paid": confirmed.amount,
                    "total_price": confirmed.amount,
                    "remaining_balance": Decimal("0"),
                    "next_due_date": None,
                    "next_due_date_iso": None,
                })
                return fields

            total = current.total_price
            ticket = _ticket_for(confirmed.ticket_type)
            if total is None and ticket is not None:
                total = ticket.price
            if total is None:
                total = confirmed.amount
            paid = (current.amount_paid or Decimal("0")) + confirmed.amount
            remaining = max(total - paid, Decimal("0"))
            if current.ticket_id:
                # An issued ticket settles the purchase
                remaining = Decimal("0")
            number = confirmed.installment_number or current.installment_number or 1

            fields.update({
                "payment_type": PaymentType.INSTALLMENT,
                "amount_paid": paid,
                "total_price": total,
                "remaining_balance": remaining,
            })
            if remaining > 0:
                fields["installment_number"] = number + 1
                fields["next_due_date_iso"] = current.next_due_date_iso or Config.INSTALLMENT_DEADLINE
                fields["next_due_date"] = current.next_due_date or format_date(Config.INSTALLMENT_DEADLINE)
            else:
                fields["installment_number"] = number
                fields["next_due_date"] = None
                fields["next_due_date_iso"] = None
            return fields

        session = self.store.compare_and_set(confirmed.chat_id, compute)
        if session is None:
            logger.warning(f"⚠️ PAYMENT_RECONCILE: No session for chat {confirmed.chat_id}; creating one from payment")
            session = self.store.merge_update(confirmed.chat_id, {
                "state": SessionState.MAIN_MENU,
                "ticket_type": confirmed.ticket_type,
                "payment_type": confirmed.payment_type or PaymentType.FULL.value,
                "amount_paid": confirmed.amount,
                "total_price": confirmed.amount,
                "remaining_balance": Decimal("0"),
            })
        logger.info(
            f"✅ PAYMENT_RECONCILE: Session {confirmed.chat_id} updated "
            f"(paid={session.amount_paid}, remaining={session.remaining_balance})"
        )
        return session

    async def _notify(self, confirmed: _ConfirmedPayment, session: Optional[UserSession]) -> None:
        if self.notifier is None:
            logger.warning(f"⚠️ PAYMENT_RECONCILE: No notifier configured; confirmation for {confirmed.reference} not sent")
            return

        ticket = _ticket_for(confirmed.ticket_type)
        ticket_name = ticket.name if ticket else "AfroFuture Ticket"

        if confirmed.payment_type == PaymentType.INSTALLMENT.value and session is not None:
            remaining = session.remaining_balance or Decimal("0")
            number = session.installment_number if remaining <= 0 else (session.installment_number or 2) - 1
            text = TicketMessages.installment_confirmation(
                ticket_name, number or 1, session.total_installments, remaining, session.next_due_date
            )
        else:
            text = TicketMessages.payment_confirmed(ticket_name)

        try:
            await self.notifier.send_text(confirmed.chat_id, text)
            logger.info(f"📱 PAYMENT_RECONCILE: Confirmation sent to chat {confirmed.chat_id}")
        except TelegramError as e:
            logger.error(f"❌ PAYMENT_RECONCILE: Could not notify chat {confirmed.chat_id}: {e}")
