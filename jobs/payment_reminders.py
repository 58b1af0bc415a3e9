"""
Installment Payment Reminders

Runs every REMINDER_CHECK_INTERVAL_HOURS (and once shortly after start) via TicketScheduler.
For each session that owes a balance with a known due date and no issued ticket:
  - an active payment_due template whose trigger_days equals the days left wins
  - otherwise the fixed 5-day / 1-day reminders apply
Each threshold is sent at most once per session ({n}DaySent flags never reset).
Every reminder carries a freshly generated payment link for the remaining balance.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from telegram.error import TelegramError

from database import SessionLocal
from models import PaymentType, ReminderLog, ReminderStatus, ReminderTemplate, ReminderTemplateType, TriggerType
from services.chat_notifier import ChatNotifier
from services.payment_service import PaymentService
from services.paystack_service import PaymentMetadata
from services.session_store import SessionStore, UserSession
from utils.constants import FALLBACK_FIVE_DAY_THRESHOLD, FALLBACK_ONE_DAY_THRESHOLD, get_ticket, reminder_flag_key
from utils.datetime_helpers import days_until, format_date, get_naive_utc_now
from utils.exception_handler import BackendError
from utils.messages import TicketMessages
from utils.template_renderer import render_template

logger = logging.getLogger(__name__)

FIVE_DAY_TEMPLATE_NAME = "Default 5-day reminder"
ONE_DAY_TEMPLATE_NAME = "Default 1-day reminder"


class _PlannedReminder:
    """Which reminder a session should get this cycle"""

    def __init__(self, flag_key: str, trigger_days: int, template: Optional[ReminderTemplate] = None):
        self.flag_key = flag_key
        self.trigger_days = trigger_days
        self.template = template

    @property
    def name(self) -> str:
        if self.template is not None:
            return self.template.name
        if self.trigger_days == FALLBACK_ONE_DAY_THRESHOLD:
            return ONE_DAY_TEMPLATE_NAME
        return FIVE_DAY_TEMPLATE_NAME


def load_active_templates(session_factory: Callable[[], Session] = SessionLocal) -> List[ReminderTemplate]:
    """Active payment_due templates with a trigger day, highest trigger first"""
    db = session_factory()
    try:
        return list(db.execute(
            select(ReminderTemplate).where(
                ReminderTemplate.is_active.is_(True),
                ReminderTemplate.template_type == ReminderTemplateType.PAYMENT_DUE.value,
                ReminderTemplate.trigger_days.is_not(None),
            ).order_by(ReminderTemplate.trigger_days.desc(), ReminderTemplate.id)
        ).scalars().all())
    finally:
        db.close()


def plan_reminder(
    session: UserSession,
    days_left: int,
    templates: List[ReminderTemplate],
) -> Optional[_PlannedReminder]:
    """Pick the reminder due for this session, or None when nothing is due or it was already sent"""
    if days_left < 1:
        return None

    matching = [template for template in templates if template.trigger_days == days_left]
    if matching and not session.has_reminder(reminder_flag_key(days_left)):
        return _PlannedReminder(reminder_flag_key(days_left), days_left, matching[0])

    # A template already sent still leaves the fixed thresholds
    if days_left == FALLBACK_ONE_DAY_THRESHOLD:
        threshold = FALLBACK_ONE_DAY_THRESHOLD
    elif days_left <= FALLBACK_FIVE_DAY_THRESHOLD:
        threshold = FALLBACK_FIVE_DAY_THRESHOLD
    else:
        return None

    flag_key = reminder_flag_key(threshold)
    if session.has_reminder(flag_key):
        return None
    return _PlannedReminder(flag_key, threshold)


def _render(session: UserSession, plan: _PlannedReminder, days_left: int, amount: Decimal, link: str) -> str:
    due_display = format_date(session.next_due_date_iso)
    if plan.template is not None:
        ticket = get_ticket(session.ticket_type)
        return render_template(plan.template.message_template, {
            "amount": amount,
            "daysLeft": days_left,
            "paymentLink": link,
            "dueDate": session.next_due_date or due_display,
            "userName": session.user_name or "there",
            "ticketType": ticket.name if ticket else "",
        })
    if plan.trigger_days == FALLBACK_ONE_DAY_THRESHOLD:
        return TicketMessages.one_day_reminder(amount, link, session.next_due_date or due_display)
    return TicketMessages.five_day_reminder(amount, days_left, link)


def _write_log(
    session_factory: Callable[[], Session],
    session: UserSession,
    plan: _PlannedReminder,
    message: str,
    status: ReminderStatus,
    error: Optional[str] = None,
) -> None:
    db = session_factory()
    try:
        db.add(ReminderLog(
            template_id=plan.template.id if plan.template is not None else None,
            template_name=plan.name,
            chat_id=session.chat_id,
            user_name=session.user_name,
            message=message,
            status=status.value,
            error_message=error,
            trigger_type=TriggerType.AUTOMATIC.value,
            trigger_days=plan.trigger_days,
        ))
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"❌ REMINDER_LOG: Could not record reminder for chat {session.chat_id}: {e}")
    finally:
        db.close()


async def _send_one(
    session: UserSession,
    plan: _PlannedReminder,
    days_left: int,
    store: SessionStore,
    payment_service: PaymentService,
    notifier: ChatNotifier,
    session_factory: Callable[[], Session],
) -> bool:
    amount = session.remaining_balance
    ticket = get_ticket(session.ticket_type)
    metadata = PaymentMetadata(
        ticket_type=ticket.ticket_type.value if ticket else None,
        payment_type=PaymentType.INSTALLMENT.value,
        installment_number=session.installment_number,
    )
    link, reference = await payment_service.generate_payment_link(session.chat_id, amount, metadata)
    text = _render(session, plan, days_left, amount, link)

    try:
        await notifier.send_text(session.chat_id, text)
    except TelegramError as e:
        _write_log(session_factory, session, plan, text, ReminderStatus.FAILED, str(e))
        logger.error(f"❌ REMINDER_SEND: {plan.flag_key} to chat {session.chat_id} failed: {e}")
        return False

    _write_log(session_factory, session, plan, text, ReminderStatus.SENT)
    store.mark_reminder_sent(session.chat_id, plan.flag_key)
    logger.info(
        f"🔔 REMINDER_SENT: {plan.flag_key} ({plan.name}) to chat {session.chat_id}, "
        f"{days_left} days left, ref={reference}"
    )
    return True


async def run_payment_reminders(
    store: SessionStore,
    payment_service: PaymentService,
    notifier: ChatNotifier,
    session_factory: Callable[[], Session] = SessionLocal,
    now: Optional[datetime] = None,
) -> Dict[str, int]:
    """One reminder sweep; per-session failures are logged and retried next cycle"""
    now = now or get_naive_utc_now()
    stats = {"checked": 0, "sent": 0, "failed": 0, "skipped": 0}

    try:
        templates = load_active_templates(session_factory)
        sessions = store.iter_pending_installments()
    except Exception as e:
        logger.error(f"❌ REMINDER_JOB: Could not load reminder work: {e}", exc_info=True)
        return stats

    logger.info(f"🔔 REMINDER_JOB: Checking {len(sessions)} sessions against {len(templates)} active templates")

    work: List[Tuple[UserSession, _PlannedReminder, int]] = []
    for session in sessions:
        stats["checked"] += 1
        try:
            days_left = days_until(session.next_due_date_iso, now)
        except ValueError:
            logger.warning(f"⚠️ REMINDER_JOB: Bad due date {session.next_due_date_iso!r} for chat {session.chat_id}")
            stats["skipped"] += 1
            continue
        plan = plan_reminder(session, days_left, templates)
        if plan is None:
            stats["skipped"] += 1
            continue
        work.append((session, plan, days_left))

    for index, (session, plan, days_left) in enumerate(work):
        if index:
            await notifier.throttle()
        try:
            if await _send_one(session, plan, days_left, store, payment_service, notifier, session_factory):
                stats["sent"] += 1
            else:
                stats["failed"] += 1
        except BackendError as e:
            stats["failed"] += 1
            logger.error(f"❌ REMINDER_JOB: Payment link for chat {session.chat_id} unavailable: {e.message}")
        except Exception as e:
            stats["failed"] += 1
            logger.error(f"❌ REMINDER_JOB: Reminder for chat {session.chat_id} failed: {e}", exc_info=True)

    logger.info(
        f"✅ REMINDER_JOB: Complete - {stats['sent']} sent, {stats['failed']} failed, {stats['skipped']} skipped"
    )
    return stats
