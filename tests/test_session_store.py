"""Session store: get-or-create, merge-update, CAS, reset and reminder flags"""

from decimal import Decimal

import pytest

from models import SessionState, TicketType
from services.payment_service import PaymentService
from utils.exception_handler import SessionConflictError, SessionError


class TestSessionLifecycle:

    def test_first_contact_creates_welcome_session(self, store):
        session = store.get_or_create("1001", "Ama")

        assert session.state == SessionState.WELCOME
        assert session.version == 1
        assert session.user_name == "Ama"
        assert session.reminders == {}

    def test_get_or_create_returns_existing(self, store):
        store.get_or_create("1001", "Ama")
        again = store.get_or_create("1001", "Ama")
        assert again.version == 1

    def test_get_or_create_refreshes_user_name(self, store):
        store.get_or_create("1001", "Ama")
        renamed = store.get_or_create("1001", "Ama K.")
        assert renamed.user_name == "Ama K."
        assert renamed.version == 2

    def test_delete(self, store):
        store.get_or_create("1001", "Ama")
        assert store.delete("1001") is True
        assert store.get("1001") is None
        assert store.delete("1001") is False


class TestMergeUpdate:

    def test_only_given_fields_change_and_version_bumps(self, store):
        store.get_or_create("1001", "Ama")
        store.merge_update("1001", {"email": "ama@example.com"})
        updated = store.merge_update("1001", {"ticket_type": TicketType.GA, "total_price": Decimal("918.75")})

        assert updated.email == "ama@example.com"
        assert updated.ticket_type == TicketType.GA
        assert updated.total_price == Decimal("918.75")
        assert updated.version == 3

    def test_stale_version_raises_conflict(self, store):
        session = store.get_or_create("1001", "Ama")
        store.merge_update("1001", {"state": SessionState.MAIN_MENU})

        with pytest.raises(SessionConflictError):
            store.merge_update("1001", {"state": SessionState.SELECT_TICKET}, expected_version=session.version)

        assert store.get("1001").state == SessionState.MAIN_MENU

    def test_missing_row_is_created_without_cas(self, store):
        created = store.merge_update("2002", {"wallet_balance": Decimal("50")})
        assert created.wallet_balance == Decimal("50")
        assert created.state == SessionState.WELCOME

    def test_invalid_state_refused(self, store):
        store.get_or_create("1001", "Ama")
        with pytest.raises(SessionError):
            store.merge_update("1001", {"state": "NOT_A_STATE"})

    def test_unknown_field_refused(self, store):
        store.get_or_create("1001", "Ama")
        with pytest.raises(SessionError):
            store.merge_update("1001", {"favourite_colour": "gold"})

    def test_compare_and_set_retries_after_conflict(self, store):
        store.get_or_create("1001", "Ama")
        calls = []

        def compute(current):
            calls.append(current.version)
            if len(calls) == 1:
                # Another writer lands between read and write
                store.merge_update("1001", {"email": "other@example.com"})
            return {"state": SessionState.MAIN_MENU}

        result = store.compare_and_set("1001", compute)

        assert calls == [1, 2]
        assert result.state == SessionState.MAIN_MENU
        assert result.email == "other@example.com"


class TestReset:

    def test_reset_clears_purchase_but_keeps_wallet_and_email(self, store):
        store.get_or_create("1001", "Ama")
        store.merge_update("1001", {
            "email": "ama@example.com",
            "state": SessionState.AWAITING_PAYMENT,
            "ticket_type": TicketType.VIP,
            "total_price": Decimal("1455.75"),
            "applied_coupon": "AFRO10",
            "original_price": Decimal("1617.50"),
            "discounted_price": Decimal("1455.75"),
            "wallet_balance": Decimal("81.25"),
        })

        reset = store.reset_to_main_menu("1001")

        assert reset.state == SessionState.MAIN_MENU
        assert reset.ticket_type is None
        assert reset.total_price is None
        assert reset.applied_coupon is None
        assert reset.original_price is None
        assert reset.discounted_price is None
        assert reset.wallet_balance == Decimal("81.25")
        assert reset.email == "ama@example.com"

    def test_reset_keeps_paid_purchase(self, store):
        store.get_or_create("1001", "Ama")
        store.merge_update("1001", {
            "ticket_type": TicketType.VIP,
            "total_price": Decimal("1617.50"),
            "amount_paid": Decimal("808.75"),
            "remaining_balance": Decimal("808.75"),
        })

        reset = store.reset_to_main_menu("1001")

        assert reset.ticket_type == TicketType.VIP
        assert reset.amount_paid == Decimal("808.75")
        assert reset.remaining_balance == Decimal("808.75")


class TestReminderFlags:

    def test_flag_is_set_once(self, store):
        store.get_or_create("1001", "Ama")
        assert store.mark_reminder_sent("1001", "5DaySent") is True
        assert store.mark_reminder_sent("1001", "5DaySent") is False
        assert store.get("1001").has_reminder("5DaySent")

    def test_legacy_flag_names_are_honored(self, store):
        store.get_or_create("1001", "Ama")
        store.merge_update("1001", {"reminders": {"fiveDaySent": True}})
        session = store.get("1001")

        assert session.has_reminder("5DaySent")
        assert not session.has_reminder("1DaySent")
        assert store.mark_reminder_sent("1001", "5DaySent") is False

    def test_record_ticket_zeroes_balance(self, store):
        store.get_or_create("1001", "Ama")
        store.merge_update("1001", {"amount_paid": Decimal("918.75"), "remaining_balance": Decimal("10")})

        issued = store.record_ticket_issued("1001", "AF123456780001")

        assert issued.ticket_id == "AF123456780001"
        assert issued.remaining_balance == Decimal("0")

    def test_generated_ticket_id_is_recorded(self, store):
        ticket_id = PaymentService.generate_ticket_id()
        assert ticket_id.startswith("AF")
        assert len(ticket_id) == 14
        assert ticket_id[2:].isdigit()

        store.get_or_create("1001", "Ama")
        assert store.record_ticket_issued("1001", ticket_id).ticket_id == ticket_id

    def test_ticket_id_required(self, store):
        store.get_or_create("1001", "Ama")
        with pytest.raises(SessionError):
            store.record_ticket_issued("1001", "")
