"""
AfroFuture Ticket Sales - Database Schema
=========================================

Focused schema for the chat-driven ticket funnel:
- One conversation/purchase session per chat identity
- One payment record per payment-link attempt (Paystack reference)
- Coupons with an atomic usage ceiling
- Reminder templates and an append-only reminder audit log
- Wallet transfers created from deadline rollovers

Every session write bumps `version` so callers can do compare-and-swap updates.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from sqlalchemy import (
    Integer, String, Numeric, DateTime, Boolean, Text,
    Index, CheckConstraint, func, JSON
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# ============================================================================
# ENUMS - Business Logic Constants
# ============================================================================

class SessionState(Enum):
    """Conversation state machine nodes"""
    WELCOME = "WELCOME"
    MAIN_MENU = "MAIN_MENU"
    SELECT_TICKET = "SELECT_TICKET"
    AWAITING_EMAIL = "AWAITING_EMAIL"
    AWAITING_COUPON_ANSWER = "AWAITING_COUPON_ANSWER"
    AWAITING_COUPON_CODE = "AWAITING_COUPON_CODE"
    AWAITING_CONTINUE_ANSWER = "AWAITING_CONTINUE_ANSWER"
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    WALLET_TRANSFER = "WALLET_TRANSFER"
    # Older installment-plan design; only sessions persisted back then can be here
    SELECT_PAYMENT_TYPE = "SELECT_PAYMENT_TYPE"
    SELECT_INSTALLMENT_PLAN = "SELECT_INSTALLMENT_PLAN"


class TicketType(Enum):
    """Ticket tiers"""
    GA = "GA"
    VIP = "VIP"


class PaymentType(Enum):
    """How the ticket is being paid for"""
    FULL = "full"
    INSTALLMENT = "installment"


class InstallmentPlan(Enum):
    """Installment plan codes"""
    A = "A"
    B = "B"
    C = "C"


class PaymentStatus(Enum):
    """Provider-side payment status"""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    ABANDONED = "abandoned"


# A payment in one of these statuses is never re-processed
TERMINAL_PAYMENT_STATUSES = (PaymentStatus.SUCCESS.value, PaymentStatus.FAILED.value)
OPEN_PAYMENT_STATUSES = (PaymentStatus.PENDING.value, PaymentStatus.ABANDONED.value)


class DiscountType(Enum):
    """Coupon discount kinds"""
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class ReminderTemplateType(Enum):
    """Reminder template categories"""
    PAYMENT_DUE = "payment_due"
    CUSTOM = "custom"


class ReminderStatus(Enum):
    """Outcome of one reminder send attempt"""
    SENT = "sent"
    FAILED = "failed"


class TriggerType(Enum):
    """What caused a reminder send"""
    AUTOMATIC = "automatic"
    MANUAL = "manual"


class DeadlineOutcome(Enum):
    """Result recorded when the installment deadline sweep processes a session"""
    DOWNGRADED = "downgraded"
    ROLLED_OVER = "rolled_over"


# ============================================================================
# MODELS
# ============================================================================

class TicketSession(Base):
    """Per-chat conversation and purchase state"""

    __tablename__ = "ticket_sessions"

    chat_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)

    # State management
    state: Mapped[str] = mapped_column(String(40), default=SessionState.WELCOME.value, nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # Selection
    ticket_type: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    payment_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    installment_plan: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)

    # Coupon
    applied_coupon: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    original_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    discounted_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    # Payment ledger
    ticket_id: Mapped[Optional[str]] = mapped_column(String(40), nullable=True, unique=True)
    amount_paid: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    total_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    remaining_balance: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    installment_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    total_installments: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    next_due_date: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)  # display form
    next_due_date_iso: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)

    # Wallet credit from deadline rollovers
    wallet_balance: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    # Reminder flags, e.g. {"5DaySent": true}; flags only ever go from unset to true
    reminders: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    # Explicit deadline-sweep marker
    deadline_processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    deadline_outcome: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "ticket_id IS NULL OR remaining_balance IS NULL OR remaining_balance = 0",
            name="ck_ticket_sessions_issued_ticket_settled",
        ),
        CheckConstraint(
            "discounted_price IS NULL OR original_price IS NULL OR discounted_price <= original_price",
            name="ck_ticket_sessions_discount_not_above_original",
        ),
        Index("idx_ticket_sessions_pending", "remaining_balance", "next_due_date_iso"),
    )

    def __repr__(self):
        return f"<TicketSession(chat_id='{self.chat_id}', state='{self.state}', version={self.version})>"


class Payment(Base):
    """One payment-link attempt"""

    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    reference: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    chat_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False, default="GHS")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=PaymentStatus.PENDING.value, index=True)

    # Closed metadata, also kept as a versioned JSON copy of what was sent to the provider
    ticket_type: Mapped[Optional[str]] = mapped_column(String(10), nullable=True, index=True)
    payment_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    installment_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    coupon_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    payment_metadata: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    authorization_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    access_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        Index("idx_payments_ticket_status", "ticket_type", "status"),
    )

    def __repr__(self):
        return f"<Payment(reference='{self.reference}', status='{self.status}', amount={self.amount})>"


class Coupon(Base):
    """Discount coupon"""

    __tablename__ = "coupons"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True, index=True)  # upper-cased
    discount_type: Mapped[str] = mapped_column(String(20), nullable=False)
    discount_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_usage: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("discount_value >= 0", name="ck_coupons_discount_non_negative"),
        CheckConstraint("usage_count >= 0", name="ck_coupons_usage_non_negative"),
        CheckConstraint("max_usage IS NULL OR usage_count <= max_usage", name="ck_coupons_usage_ceiling"),
    )


class ReminderTemplate(Base):
    """Admin-managed reminder message template"""

    __tablename__ = "reminder_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    template_type: Mapped[str] = mapped_column(String(20), nullable=False, default=ReminderTemplateType.PAYMENT_DUE.value)
    trigger_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    message_template: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_reminder_templates_active", "template_type", "is_active"),
    )


class ReminderLog(Base):
    """Append-only audit entry, one per reminder send attempt"""

    __tablename__ = "reminder_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    template_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    template_name: Mapped[str] = mapped_column(String(100), nullable=False)
    chat_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(10), nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    trigger_type: Mapped[str] = mapped_column(String(20), nullable=False, default=TriggerType.AUTOMATIC.value)
    trigger_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    sent_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), nullable=False)


class WalletTransfer(Base):
    """Wallet balance moved to one of the fixed destinations"""

    __tablename__ = "wallet_transfers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chat_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    destination: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_wallet_transfers_amount_positive"),
    )


class SystemConfig(Base):
    """System configuration settings"""

    __tablename__ = "system_config"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    value_type: Mapped[str] = mapped_column(String(20), default="string", nullable=False)  # string, int, json
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)
