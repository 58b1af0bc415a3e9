"""
Session Store
=============

Per-chat conversation/purchase session backed by the ticket_sessions table.

Every write is a single UPDATE of only the changed columns with `version = version + 1`
(merge-update). Passing `expected_version` turns the write into a compare-and-swap that
raises SessionConflictError when another writer got there first.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional

from sqlalchemy import func, select, update, delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from database import SessionLocal
from models import (
    TicketSession, SessionState, TicketType, PaymentType, InstallmentPlan
)
from utils.constants import LEGACY_REMINDER_FLAGS
from utils.exception_handler import SessionError, SessionConflictError

logger = logging.getLogger(__name__)

# Snapshot field -> column, for everything callers may merge-update
MERGEABLE_FIELDS = (
    "user_name", "email", "state",
    "ticket_type", "payment_type", "installment_plan",
    "applied_coupon", "original_price", "discounted_price",
    "ticket_id", "amount_paid", "total_price", "remaining_balance",
    "installment_number", "total_installments", "next_due_date", "next_due_date_iso",
    "wallet_balance", "reminders", "deadline_processed_at", "deadline_outcome",
)

# In-flight purchase fields cleared by a hard reset
RESET_FIELDS = (
    "ticket_type", "payment_type", "installment_plan", "total_price",
    "applied_coupon", "original_price", "discounted_price",
)

# Kept on reset once money has been received for the purchase
PAID_PURCHASE_FIELDS = ("ticket_type", "payment_type", "installment_plan", "total_price")

MAX_CAS_RETRIES = 5

VALID_STATES = frozenset(state.value for state in SessionState)


def _enum_or_none(enum_cls, value):
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        logger.warning(f"⚠️ SESSION_STORE: Unknown {enum_cls.__name__} value {value!r}")
        return None


@dataclass(frozen=True)
class UserSession:
    """Immutable snapshot of one ticket_sessions row"""
    chat_id: str
    version: int
    raw_state: str
    state: Optional[SessionState]
    user_name: Optional[str] = None
    email: Optional[str] = None
    ticket_type: Optional[TicketType] = None
    payment_type: Optional[PaymentType] = None
    installment_plan: Optional[InstallmentPlan] = None
    applied_coupon: Optional[str] = None
    original_price: Optional[Decimal] = None
    discounted_price: Optional[Decimal] = None
    ticket_id: Optional[str] = None
    amount_paid: Optional[Decimal] = None
    total_price: Optional[Decimal] = None
    remaining_balance: Optional[Decimal] = None
    installment_number: Optional[int] = None
    total_installments: Optional[int] = None
    next_due_date: Optional[str] = None
    next_due_date_iso: Optional[str] = None
    wallet_balance: Optional[Decimal] = None
    reminders: Dict[str, bool] = field(default_factory=dict)
    deadline_processed_at: Optional[datetime] = None
    deadline_outcome: Optional[str] = None

    @classmethod
    def from_row(cls, row: TicketSession) -> "UserSession":
        return cls(
            chat_id=row.chat_id,
            version=row.version,
            raw_state=row.state,
            state=_enum_or_none(SessionState, row.state),
            user_name=row.user_name,
            email=row.email,
            ticket_type=_enum_or_none(TicketType, row.ticket_type),
            payment_type=_enum_or_none(PaymentType, row.payment_type),
            installment_plan=_enum_or_none(InstallmentPlan, row.installment_plan),
            applied_coupon=row.applied_coupon,
            original_price=row.original_price,
            discounted_price=row.discounted_price,
            ticket_id=row.ticket_id,
            amount_paid=row.amount_paid,
            total_price=row.total_price,
            remaining_balance=row.remaining_balance,
            installment_number=row.installment_number,
            total_installments=row.total_installments,
            next_due_date=row.next_due_date,
            next_due_date_iso=row.next_due_date_iso,
            wallet_balance=row.wallet_balance,
            reminders=dict(row.reminders or {}),
            deadline_processed_at=row.deadline_processed_at,
            deadline_outcome=row.deadline_outcome,
        )

    def has_reminder(self, key: str) -> bool:
        """Flag lookup that also honors the older fiveDaySent/oneDaySent names"""
        if self.reminders.get(key):
            return True
        legacy_key = LEGACY_REMINDER_FLAGS.get(key)
        return bool(legacy_key and self.reminders.get(legacy_key))

    @property
    def has_paid_something(self) -> bool:
        return bool(self.amount_paid and self.amount_paid > 0)


class SessionStore:
    """Get-or-create / merge-update / reset operations on per-chat sessions"""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self._session_factory = session_factory

    @contextmanager
    def _db(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except SessionError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"❌ SESSION_STORE: Database error: {e}")
            raise SessionError(f"Session store unavailable: {type(e).__name__}") from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @staticmethod
    def _normalize(fields: Dict[str, Any]) -> Dict[str, Any]:
        """Validate field names and convert enums to their stored values"""
        unknown = set(fields) - set(MERGEABLE_FIELDS)
        if unknown:
            raise SessionError(f"Unknown session fields: {', '.join(sorted(unknown))}", code="SESSION_INVALID_FIELD")

        values = {}
        for name, value in fields.items():
            if isinstance(value, Enum):
                value = value.value
            values[name] = value

        if "state" in values:
            state = values["state"]
            if state is None or state not in VALID_STATES:
                raise SessionError(f"Refusing to persist invalid session state {state!r}", code="SESSION_INVALID_STATE")
        if "reminders" in values and values["reminders"] is not None:
            values["reminders"] = dict(values["reminders"])
        return values

    # ==================== READS ====================

    def get(self, chat_id: str) -> Optional[UserSession]:
        with self._db() as db:
            row = db.get(TicketSession, chat_id)
            return UserSession.from_row(row) if row else None

    def get_or_create(self, chat_id: str, user_name: Optional[str] = None) -> UserSession:
        """Return the session, creating it in WELCOME on first contact"""
        existing = self.get(chat_id)
        if existing:
            if user_name and existing.user_name != user_name:
                return self.merge_update(chat_id, {"user_name": user_name})
            return existing

        try:
            with self._db() as db:
                db.add(TicketSession(
                    chat_id=chat_id,
                    user_name=user_name,
                    state=SessionState.WELCOME.value,
                    version=1,
                    reminders={},
                ))
            logger.info(f"🆕 SESSION_STORE: Created session for chat {chat_id}")
        except SessionError as e:
            if not isinstance(e.__cause__, IntegrityError):
                raise
            # Created concurrently by another handler
            logger.info(f"ℹ️ SESSION_STORE: Session for chat {chat_id} created concurrently")

        created = self.get(chat_id)
        if created is None:
            raise SessionError(f"Session for chat {chat_id} vanished after create")
        return created

    def iter_pending_installments(self) -> List[UserSession]:
        """Sessions owing a balance with a known due date and no issued ticket"""
        with self._db() as db:
            rows = db.execute(
                select(TicketSession).where(
                    TicketSession.remaining_balance > 0,
                    TicketSession.next_due_date_iso.is_not(None),
                    TicketSession.ticket_id.is_(None),
                ).order_by(TicketSession.chat_id)
            ).scalars().all()
            return [UserSession.from_row(row) for row in rows]

    def iter_deadline_candidates(self) -> List[UserSession]:
        """Partially paid, unticketed sessions the deadline sweep has not processed yet"""
        with self._db() as db:
            rows = db.execute(
                select(TicketSession).where(
                    TicketSession.ticket_id.is_(None),
                    TicketSession.deadline_processed_at.is_(None),
                    TicketSession.amount_paid > 0,
                    TicketSession.remaining_balance > 0,
                ).order_by(TicketSession.chat_id)
            ).scalars().all()
            return [UserSession.from_row(row) for row in rows]

    # ==================== WRITES ====================

    def merge_update(
        self,
        chat_id: str,
        fields: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> UserSession:
        """
        Write only `fields`, bumping the version, in one UPDATE statement.

        With expected_version the UPDATE is conditional on the version (CAS) and a lost race
        raises SessionConflictError. Without it a missing row is created with the fields applied.
        """
        values = self._normalize(fields)

        with self._db() as db:
            stmt = update(TicketSession).where(TicketSession.chat_id == chat_id)
            if expected_version is not None:
                stmt = stmt.where(TicketSession.version == expected_version)
            stmt = stmt.values(
                **values,
                version=TicketSession.version + 1,
                updated_at=func.now(),
            ).execution_options(synchronize_session=False)

            result = db.execute(stmt)
            if result.rowcount == 0:
                if expected_version is not None:
                    logger.warning(
                        f"🔒 SESSION_STORE: CAS conflict for chat {chat_id} at version {expected_version}"
                    )
                    raise SessionConflictError(chat_id, expected_version)

                logger.warning(f"⚠️ SESSION_STORE: No session for chat {chat_id} on update - creating it")
                values.setdefault("state", SessionState.WELCOME.value)
                values.setdefault("reminders", {})
                db.add(TicketSession(chat_id=chat_id, version=1, **values))
                db.flush()

            row = db.execute(
                select(TicketSession).where(TicketSession.chat_id == chat_id)
                .execution_options(populate_existing=True)
            ).scalar_one()
            snapshot = UserSession.from_row(row)

        logger.debug(f"✅ SESSION_STORE: chat {chat_id} -> v{snapshot.version} fields={sorted(values)}")
        return snapshot

    def compare_and_set(self, chat_id: str, compute: Callable[[UserSession], Optional[Dict[str, Any]]]) -> Optional[UserSession]:
        """Read, compute fields, CAS-write; retried on conflict. compute returns None to skip."""
        for attempt in range(1, MAX_CAS_RETRIES + 1):
            current = self.get(chat_id)
            if current is None:
                return None
            fields = compute(current)
            if fields is None:
                return current
            try:
                return self.merge_update(chat_id, fields, expected_version=current.version)
            except SessionConflictError:
                logger.info(f"🔁 SESSION_STORE: Retrying write for chat {chat_id} (attempt {attempt})")
        raise SessionError(f"Session {chat_id} kept changing; gave up after {MAX_CAS_RETRIES} attempts")

    def reset_to_main_menu(self, chat_id: str) -> UserSession:
        """
        Hard reset: state MAIN_MENU and in-flight selection/coupon fields cleared.

        The wallet, the e-mail and the ledger of a purchase that has received money
        (amount paid, balance, installments, reminders, ticket) are never cleared.
        """

        def compute(current: UserSession) -> Dict[str, Any]:
            fields: Dict[str, Any] = {"state": SessionState.MAIN_MENU}
            keep = PAID_PURCHASE_FIELDS if current.has_paid_something else ()
            for name in RESET_FIELDS:
                if name not in keep:
                    fields[name] = None
            return fields

        result = self.compare_and_set(chat_id, compute)
        if result is None:
            return self.merge_update(chat_id, {"state": SessionState.MAIN_MENU})
        logger.info(f"🔄 SESSION_STORE: Chat {chat_id} reset to main menu")
        return result

    def mark_reminder_sent(self, chat_id: str, key: str) -> bool:
        """Set a reminder flag; flags are monotone. Returns False if it was already set."""
        marked = {"value": False}

        def compute(current: UserSession) -> Optional[Dict[str, Any]]:
            marked["value"] = False
            if current.has_reminder(key):
                return None
            marked["value"] = True
            return {"reminders": {**current.reminders, key: True}}

        self.compare_and_set(chat_id, compute)
        return marked["value"]

    def record_ticket_issued(self, chat_id: str, ticket_id: str) -> UserSession:
        """Admin issued the ticket: purchase is settled, so the balance is zeroed with it"""
        if not ticket_id:
            raise SessionError("Ticket id is required", code="SESSION_INVALID_FIELD")
        snapshot = self.merge_update(chat_id, {"ticket_id": ticket_id, "remaining_balance": Decimal("0")})
        logger.info(f"🎫 SESSION_STORE: Ticket {ticket_id} recorded for chat {chat_id}")
        return snapshot

    def delete(self, chat_id: str) -> bool:
        with self._db() as db:
            result = db.execute(delete(TicketSession).where(TicketSession.chat_id == chat_id))
            deleted = result.rowcount > 0
        if deleted:
            logger.info(f"🗑️ SESSION_STORE: Deleted session for chat {chat_id}")
        return deleted
