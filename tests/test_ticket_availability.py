"""VIP soft cap: baseline persistence and boundary counts"""

import pytest

from models import PaymentStatus
from services.ticket_availability import TicketAvailabilityService
from utils.exception_handler import ValidationError
from utils.input_validation import InputValidator


def _sell_vip(add_payment, count, start=0):
    for index in range(start, start + count):
        add_payment(f"VIP-{index}", chat_id=str(5000 + index), amount="1617.50",
                    status=PaymentStatus.SUCCESS, ticket_type="VIP")


class TestTicketAvailability:

    def test_baseline_is_captured_once_and_persisted(self, payment_service, session_factory, add_payment):
        _sell_vip(add_payment, 7)
        first = TicketAvailabilityService(payment_service, additional_available=3, session_factory=session_factory)
        assert first.remaining_vip_tickets() == 3

        _sell_vip(add_payment, 1, start=7)
        # A restarted process reads the stored baseline instead of recounting
        restarted = TicketAvailabilityService(payment_service, additional_available=3, session_factory=session_factory)
        assert restarted.remaining_vip_tickets() == 2

    @pytest.mark.parametrize("new_sales, out_of_stock", [(2, False), (3, True), (4, True)])
    def test_boundary_counts(self, payment_service, session_factory, add_payment, new_sales, out_of_stock):
        baseline = 10
        allotment = 3
        _sell_vip(add_payment, baseline)
        gate = TicketAvailabilityService(payment_service, additional_available=allotment, session_factory=session_factory)
        gate.is_vip_out_of_stock()  # captures the baseline

        _sell_vip(add_payment, new_sales, start=baseline)

        assert gate.is_vip_out_of_stock() is out_of_stock
        if out_of_stock:
            with pytest.raises(ValidationError):
                InputValidator.validate_ticket_type("b", vip_out_of_stock=gate.is_vip_out_of_stock())
        else:
            assert InputValidator.validate_ticket_type("b", vip_out_of_stock=gate.is_vip_out_of_stock()).value == "VIP"

    def test_ga_sales_do_not_count(self, payment_service, session_factory, add_payment):
        gate = TicketAvailabilityService(payment_service, additional_available=1, session_factory=session_factory)
        gate.is_vip_out_of_stock()
        add_payment("GA-1", status=PaymentStatus.SUCCESS, ticket_type="GA")
        add_payment("VIP-pending", amount="1617.50", status=PaymentStatus.PENDING, ticket_type="VIP")

        assert gate.is_vip_out_of_stock() is False

    def test_errors_count_as_out_of_stock(self, session_factory):
        class BrokenPayments:
            def count_successful_payments(self, ticket_type):
                raise RuntimeError("database down")

        gate = TicketAvailabilityService(BrokenPayments(), additional_available=5, session_factory=session_factory)
        assert gate.is_vip_out_of_stock() is True
        assert gate.remaining_vip_tickets() == 0
