"""Deadline sweep: downgrade to a covered tier or roll the payment into the wallet, once"""

from datetime import timedelta
from decimal import Decimal

import pytest
from telegram.error import TelegramError

from config import Config
from jobs.installment_deadlines import run_installment_deadlines, settle_session
from models import SessionState, TicketType
from utils.datetime_helpers import parse_iso_datetime

DEADLINE = parse_iso_datetime(Config.INSTALLMENT_DEADLINE)
AFTER_DEADLINE = DEADLINE + timedelta(hours=1)


def _partly_paid(store, chat_id, ticket_type, total, paid):
    store.get_or_create(chat_id, "Yaw")
    return store.merge_update(chat_id, {
        "ticket_type": ticket_type,
        "total_price": Decimal(total),
        "amount_paid": Decimal(paid),
        "remaining_balance": Decimal(total) - Decimal(paid),
        "next_due_date_iso": Config.INSTALLMENT_DEADLINE,
        "state": SessionState.MAIN_MENU,
    })


class TestInstallmentDeadlines:

    @pytest.mark.asyncio
    async def test_nothing_happens_before_deadline(self, store, notifier):
        _partly_paid(store, "4001", TicketType.VIP, "1617.50", "1000.00")

        stats = await run_installment_deadlines(store, notifier, now=DEADLINE - timedelta(minutes=1))

        assert stats["processed"] == 0
        session = store.get("4001")
        assert session.deadline_processed_at is None
        assert session.ticket_type == TicketType.VIP
        notifier.send_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_vip_downgraded_to_ga_with_difference_in_wallet(self, store, notifier):
        _partly_paid(store, "4002", TicketType.VIP, "1617.50", "1000.00")

        stats = await run_installment_deadlines(store, notifier, now=AFTER_DEADLINE)

        assert stats["downgraded"] == 1
        session = store.get("4002")
        assert session.ticket_type == TicketType.GA
        assert session.total_price == Decimal("918.75")
        assert session.wallet_balance == Decimal("81.25")
        assert session.remaining_balance == Decimal("0")
        assert session.next_due_date_iso is None
        assert session.state == SessionState.WALLET_TRANSFER
        assert session.deadline_outcome == "downgraded"
        assert session.deadline_processed_at == AFTER_DEADLINE

        text = notifier.send_text.await_args.args[1]
        assert "You qualify for *Wave 1: GA*" in text
        assert "GH₵81.25" in text

    @pytest.mark.asyncio
    async def test_uncovered_ga_payment_rolls_into_wallet(self, store, notifier):
        _partly_paid(store, "4003", TicketType.GA, "918.75", "400.00")

        stats = await run_installment_deadlines(store, notifier, now=AFTER_DEADLINE)

        assert stats["rolled_over"] == 1
        session = store.get("4003")
        assert session.ticket_type == TicketType.GA
        assert session.wallet_balance == Decimal("400.00")
        assert session.remaining_balance == Decimal("0")
        assert session.state == SessionState.WALLET_TRANSFER
        assert session.deadline_outcome == "rolled_over"
        assert "moved to your AfroFuture Wallet" in notifier.send_text.await_args.args[1]

    @pytest.mark.asyncio
    async def test_second_sweep_is_a_no_op(self, store, notifier):
        _partly_paid(store, "4004", TicketType.VIP, "1617.50", "1000.00")
        await run_installment_deadlines(store, notifier, now=AFTER_DEADLINE)
        settled = store.get("4004")

        stats = await run_installment_deadlines(store, notifier, now=AFTER_DEADLINE + timedelta(hours=6))

        assert stats["processed"] == 0
        assert store.get("4004").wallet_balance == settled.wallet_balance
        assert store.get("4004").version == settled.version
        assert notifier.send_text.await_count == 1

    @pytest.mark.asyncio
    async def test_sessions_not_owing_are_skipped(self, store, notifier):
        _partly_paid(store, "4005", TicketType.VIP, "1617.50", "1000.00")
        store.record_ticket_issued("4005", "AF000000040005")
        store.get_or_create("4006", "Esi")  # never paid
        _partly_paid(store, "4007", TicketType.GA, "918.75", "918.75")  # fully paid

        stats = await run_installment_deadlines(store, notifier, now=AFTER_DEADLINE)

        assert stats["processed"] == 0
        assert store.get("4005").ticket_type == TicketType.VIP
        assert store.get("4007").wallet_balance in (None, Decimal("0"))
        notifier.send_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_existing_wallet_balance_is_added_to(self, store, notifier):
        _partly_paid(store, "4008", TicketType.GA, "918.75", "300.00")
        store.merge_update("4008", {"wallet_balance": Decimal("50.00")})

        await run_installment_deadlines(store, notifier, now=AFTER_DEADLINE)

        assert store.get("4008").wallet_balance == Decimal("350.00")

    @pytest.mark.asyncio
    async def test_notification_failure_keeps_settlement(self, store, notifier):
        _partly_paid(store, "4009", TicketType.GA, "918.75", "400.00")
        notifier.send_text.side_effect = TelegramError("Chat not found")

        stats = await run_installment_deadlines(store, notifier, now=AFTER_DEADLINE)

        assert stats["notify_failed"] == 1
        assert store.get("4009").deadline_processed_at is not None

    def test_settle_session_ignores_processed_sessions(self, store):
        session = _partly_paid(store, "4010", TicketType.VIP, "1617.50", "1000.00")
        store.merge_update("4010", {"deadline_processed_at": AFTER_DEADLINE})

        assert settle_session(store.get("4010"), AFTER_DEADLINE) is None
        assert settle_session(session, AFTER_DEADLINE)["ticket_type"] == TicketType.GA
