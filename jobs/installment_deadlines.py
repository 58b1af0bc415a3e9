"""
Installment Deadline Sweep

Runs every DEADLINE_CHECK_INTERVAL_HOURS via TicketScheduler and does nothing before
Config.INSTALLMENT_DEADLINE. Afterwards every partially paid session without a ticket
is settled exactly once (deadline_processed_at marks it):
  - the paid amount covers a cheaper tier -> downgrade, the difference goes to the wallet
  - no tier is covered                     -> the whole amount rolls into the wallet
Either way the session moves to WALLET_TRANSFER so the next reply picks a destination.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from telegram.error import TelegramError

from config import Config
from models import DeadlineOutcome, SessionState
from services.chat_notifier import ChatNotifier
from services.session_store import SessionStore, UserSession
from utils.constants import PENDING_ADMIN_TICKET, TICKETS
from utils.datetime_helpers import get_naive_utc_now, is_past_date
from utils.messages import TicketMessages
from utils.tier import calculate_eligible_tier

logger = logging.getLogger(__name__)


def settle_session(current: UserSession, now: datetime) -> Optional[Dict[str, Any]]:
    """Fields that settle one session at the deadline; None when it needs nothing"""
    if current.ticket_id or current.deadline_processed_at is not None:
        return None
    paid = current.amount_paid or Decimal("0")
    if paid <= 0 or (current.remaining_balance or Decimal("0")) <= 0:
        return None

    existing_wallet = current.wallet_balance or Decimal("0")
    eligible = calculate_eligible_tier(current.ticket_type, paid) if current.ticket_type else None

    if eligible is not None:
        credit = paid - TICKETS[eligible].price
        return {
            "ticket_type": eligible,
            "total_price": TICKETS[eligible].price,
            "wallet_balance": existing_wallet + credit,
            "remaining_balance": Decimal("0"),
            "next_due_date": None,
            "next_due_date_iso": None,
            "deadline_outcome": DeadlineOutcome.DOWNGRADED,
            "deadline_processed_at": now,
            "state": SessionState.WALLET_TRANSFER,
        }

    return {
        "wallet_balance": existing_wallet + paid,
        "remaining_balance": Decimal("0"),
        "next_due_date": None,
        "next_due_date_iso": None,
        "deadline_outcome": DeadlineOutcome.ROLLED_OVER,
        "deadline_processed_at": now,
        "state": SessionState.WALLET_TRANSFER,
    }


def _deadline_message(before: UserSession, after: UserSession) -> str:
    paid = before.amount_paid or Decimal("0")
    original = TICKETS[before.ticket_type].price if before.ticket_type else (before.total_price or paid)
    wallet_credit = (after.wallet_balance or Decimal("0")) - (before.wallet_balance or Decimal("0"))

    if after.deadline_outcome == DeadlineOutcome.DOWNGRADED.value:
        return TicketMessages.deadline_downgrade(
            paid, original, TICKETS[after.ticket_type].name, PENDING_ADMIN_TICKET, wallet_credit
        )
    return TicketMessages.deadline_full_rollover(paid, original)


async def run_installment_deadlines(
    store: SessionStore,
    notifier: ChatNotifier,
    now: Optional[datetime] = None,
) -> Dict[str, int]:
    """One deadline sweep; each session is written before it is notified"""
    now = now or get_naive_utc_now()
    stats = {"processed": 0, "downgraded": 0, "rolled_over": 0, "failed": 0, "notify_failed": 0}

    if not is_past_date(Config.INSTALLMENT_DEADLINE, now):
        logger.debug(f"⏳ DEADLINE_JOB: Deadline {Config.INSTALLMENT_DEADLINE} not reached yet")
        return stats

    try:
        candidates = store.iter_deadline_candidates()
    except Exception as e:
        logger.error(f"❌ DEADLINE_JOB: Could not load sessions: {e}", exc_info=True)
        return stats

    logger.info(f"⏰ DEADLINE_JOB: Installment deadline passed, {len(candidates)} sessions to settle")

    sent_any = False
    for candidate in candidates:
        try:
            snapshot = {"before": None}

            def compute(current: UserSession) -> Optional[Dict[str, Any]]:
                snapshot["before"] = current
                return settle_session(current, now)

            after = store.compare_and_set(candidate.chat_id, compute)
            before = snapshot["before"]
            if after is None or before is None or after.deadline_processed_at is None or after is before:
                continue

            stats["processed"] += 1
            stats[after.deadline_outcome] += 1
            logger.info(
                f"💰 DEADLINE_JOB: Chat {after.chat_id} {after.deadline_outcome}, "
                f"paid={before.amount_paid}, wallet={after.wallet_balance}"
            )

            if sent_any:
                await notifier.throttle()
            sent_any = True
            try:
                await notifier.send_text(after.chat_id, _deadline_message(before, after))
            except TelegramError as e:
                stats["notify_failed"] += 1
                logger.error(f"❌ DEADLINE_JOB: Could not notify chat {after.chat_id}: {e}")
        except Exception as e:
            stats["failed"] += 1
            logger.error(f"❌ DEADLINE_JOB: Failed to settle chat {candidate.chat_id}: {e}", exc_info=True)

    logger.info(
        f"✅ DEADLINE_JOB: Complete - {stats['downgraded']} downgraded, "
        f"{stats['rolled_over']} rolled over, {stats['failed']} failed"
    )
    return stats
