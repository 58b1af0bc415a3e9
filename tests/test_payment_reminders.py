"""Reminder sweep: thresholds, templates, fresh links and once-only delivery"""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select
from telegram.error import TelegramError

from jobs.payment_reminders import plan_reminder, run_payment_reminders
from models import Payment, ReminderLog, ReminderStatus, ReminderTemplate, TicketType
from utils.datetime_helpers import get_naive_utc_now

CHAT = "2002"


def _owe(store, now, days_left, chat_id=CHAT, remaining="808.75"):
    due = now + timedelta(days=days_left)
    store.get_or_create(chat_id, "Kofi")
    return store.merge_update(chat_id, {
        "ticket_type": TicketType.VIP,
        "total_price": Decimal("1617.50"),
        "amount_paid": Decimal("808.75"),
        "remaining_balance": Decimal(remaining),
        "installment_number": 2,
        "total_installments": 2,
        "next_due_date_iso": due.strftime("%Y-%m-%dT%H:%M:%S"),
        "next_due_date": due.strftime("%B %d, %Y"),
    })


def _rows(session_factory, model):
    db = session_factory()
    try:
        return db.execute(select(model)).scalars().all()
    finally:
        db.close()


@pytest.fixture
def now():
    return get_naive_utc_now().replace(microsecond=0)


class TestFallbackReminders:

    @pytest.mark.asyncio
    async def test_five_day_reminder_sent_once(self, store, payment_service, notifier, session_factory, now):
        _owe(store, now, 5)

        stats = await run_payment_reminders(store, payment_service, notifier, session_factory, now=now)

        assert stats["sent"] == 1
        chat_id, text = notifier.send_text.await_args.args
        assert chat_id == CHAT
        assert "GH₵808.75 is due in 5 days" in text
        assert "https://checkout.paystack.com/" in text
        assert store.get(CHAT).has_reminder("5DaySent")

        # Later runs before the due date never resend the same threshold
        for hours in (6, 12, 18):
            again = await run_payment_reminders(store, payment_service, notifier, session_factory,
                                                now=now + timedelta(hours=hours))
            assert again["sent"] == 0
        assert notifier.send_text.await_count == 1

    @pytest.mark.asyncio
    async def test_one_day_reminder_after_five_day(self, store, payment_service, notifier, session_factory, now):
        _owe(store, now, 5)
        await run_payment_reminders(store, payment_service, notifier, session_factory, now=now)

        stats = await run_payment_reminders(store, payment_service, notifier, session_factory,
                                            now=now + timedelta(days=4))

        assert stats["sent"] == 1
        assert "due *tomorrow*" in notifier.send_text.await_args.args[1]
        session = store.get(CHAT)
        assert session.has_reminder("5DaySent")
        assert session.has_reminder("1DaySent")

    @pytest.mark.asyncio
    async def test_each_reminder_has_a_fresh_link(self, store, payment_service, notifier, session_factory, now):
        _owe(store, now, 5)
        await run_payment_reminders(store, payment_service, notifier, session_factory, now=now)
        await run_payment_reminders(store, payment_service, notifier, session_factory, now=now + timedelta(days=4))

        payments = _rows(session_factory, Payment)
        assert len(payments) == 2
        assert len({payment.reference for payment in payments}) == 2
        assert all(payment.amount == Decimal("808.75") for payment in payments)
        assert all(payment.payment_type == "installment" for payment in payments)

    @pytest.mark.asyncio
    async def test_nothing_sent_far_from_due_date(self, store, payment_service, notifier, session_factory, now):
        _owe(store, now, 12)
        stats = await run_payment_reminders(store, payment_service, notifier, session_factory, now=now)
        assert stats["sent"] == 0
        notifier.send_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ticketed_sessions_are_skipped(self, store, payment_service, notifier, session_factory, now):
        _owe(store, now, 5)
        store.record_ticket_issued(CHAT, "AF000000010001")

        stats = await run_payment_reminders(store, payment_service, notifier, session_factory, now=now)

        assert stats["checked"] == 0
        notifier.send_text.assert_not_awaited()


class TestTemplates:

    @pytest.mark.asyncio
    async def test_matching_template_is_rendered_and_logged(self, store, payment_service, notifier,
                                                            session_factory, now):
        db = session_factory()
        try:
            db.add(ReminderTemplate(
                name="Three days out",
                template_type="payment_due",
                trigger_days=3,
                message_template="Hi {{userName}}, {{amount}} for {{ticketType}} is due in {{daysLeft}} days: {{paymentLink}}",
                is_active=True,
            ))
            db.commit()
        finally:
            db.close()
        _owe(store, now, 3)

        await run_payment_reminders(store, payment_service, notifier, session_factory, now=now)

        text = notifier.send_text.await_args.args[1]
        assert text.startswith("Hi Kofi, 808.75 for Wave 1: VIP is due in 3 days: https://checkout.paystack.com/")
        assert store.get(CHAT).has_reminder("3DaySent")

        logs = _rows(session_factory, ReminderLog)
        assert len(logs) == 1
        assert logs[0].template_name == "Three days out"
        assert logs[0].status == ReminderStatus.SENT.value
        assert logs[0].trigger_days == 3

    def test_template_match_takes_priority_over_fallback(self, store, now):
        session = _owe(store, now, 4)
        template = ReminderTemplate(id=7, name="Four", template_type="payment_due", trigger_days=4,
                                    message_template="x", is_active=True)

        plan = plan_reminder(session, 4, [template])

        assert plan.flag_key == "4DaySent"
        assert plan.template is template

    def test_fallback_when_template_for_other_day(self, store, now):
        session = _owe(store, now, 4)
        template = ReminderTemplate(id=7, name="Ten", template_type="payment_due", trigger_days=10,
                                    message_template="x", is_active=True)

        plan = plan_reminder(session, 4, [template])

        assert plan.flag_key == "5DaySent"
        assert plan.template is None

    def test_sent_template_falls_back_to_five_day_reminder(self, store, now):
        _owe(store, now, 3)
        session = store.merge_update(CHAT, {"reminders": {"3DaySent": True}})
        template = ReminderTemplate(id=7, name="Three", template_type="payment_due", trigger_days=3,
                                    message_template="x", is_active=True)

        plan = plan_reminder(session, 3, [template])

        assert plan.flag_key == "5DaySent"
        assert plan.template is None

        session = store.merge_update(CHAT, {"reminders": {"3DaySent": True, "5DaySent": True}})
        assert plan_reminder(session, 3, [template]) is None


class TestFailures:

    @pytest.mark.asyncio
    async def test_send_failure_is_logged_and_retried_next_cycle(self, store, payment_service, notifier,
                                                                 session_factory, now):
        _owe(store, now, 5, chat_id="3003")
        _owe(store, now, 5, chat_id="3004")
        notifier.send_text.side_effect = [TelegramError("Forbidden: bot was blocked by the user"), None]

        stats = await run_payment_reminders(store, payment_service, notifier, session_factory, now=now)

        assert stats["sent"] == 1
        assert stats["failed"] == 1
        assert not store.get("3003").has_reminder("5DaySent")
        assert store.get("3004").has_reminder("5DaySent")
        statuses = sorted(log.status for log in _rows(session_factory, ReminderLog))
        assert statuses == ["failed", "sent"]
