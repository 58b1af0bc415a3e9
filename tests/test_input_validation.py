"""Input validators for each conversation step"""

from decimal import Decimal

import pytest

from models import InstallmentPlan, PaymentType, TicketType
from utils.exception_handler import ValidationError
from utils.input_validation import InputValidator


class TestTicketTypeValidation:

    @pytest.mark.parametrize("text", ["a", "A", " a "])
    def test_a_selects_ga(self, text):
        assert InputValidator.validate_ticket_type(text) == TicketType.GA

    def test_b_selects_vip_when_available(self):
        assert InputValidator.validate_ticket_type("b", vip_out_of_stock=False) == TicketType.VIP

    def test_b_rejected_with_out_of_stock_message(self):
        with pytest.raises(ValidationError) as exc_info:
            InputValidator.validate_ticket_type("B", vip_out_of_stock=True)
        assert "out of stock" in exc_info.value.message

    def test_other_input_wording_depends_on_availability(self):
        with pytest.raises(ValidationError) as available:
            InputValidator.validate_ticket_type("c", vip_out_of_stock=False)
        with pytest.raises(ValidationError) as sold_out:
            InputValidator.validate_ticket_type("c", vip_out_of_stock=True)

        assert "*B* for VIP" in available.value.message
        assert "VIP" not in sold_out.value.message


class TestEmailValidation:

    def test_valid_email_is_trimmed_and_lowercased(self):
        assert InputValidator.validate_email("  Ama.Mensah@Example.COM ") == "ama.mensah@example.com"

    @pytest.mark.parametrize("text", ["", "ama", "ama@example", "ama @example.com", "@example.com"])
    def test_invalid_email_rejected(self, text):
        with pytest.raises(ValidationError):
            InputValidator.validate_email(text)


class TestOptionValidators:

    @pytest.mark.parametrize("text", ["1", "2", "3", "4"])
    def test_menu_options(self, text):
        assert InputValidator.validate_menu_option(f" {text} ") == text

    @pytest.mark.parametrize("text", ["0", "5", "buy", ""])
    def test_menu_rejects_unknown_option(self, text):
        with pytest.raises(ValidationError) as exc_info:
            InputValidator.validate_menu_option(text)
        assert "1-4" in exc_info.value.message

    def test_wallet_options(self):
        assert InputValidator.validate_wallet_option("3") == "3"
        with pytest.raises(ValidationError):
            InputValidator.validate_wallet_option("4")

    def test_yes_no(self):
        assert InputValidator.validate_yes_no("YES") is True
        assert InputValidator.validate_yes_no("y") is True
        assert InputValidator.validate_yes_no("No") is False
        with pytest.raises(ValidationError) as exc_info:
            InputValidator.validate_yes_no("maybe")
        assert exc_info.value.message == "Please reply with *YES* or *NO*."

    def test_legacy_payment_type_and_plan(self):
        assert InputValidator.validate_payment_type("1") == PaymentType.FULL
        assert InputValidator.validate_installment_plan("b") == InstallmentPlan.B
        with pytest.raises(ValidationError):
            InputValidator.validate_payment_type("2")
        with pytest.raises(ValidationError):
            InputValidator.validate_installment_plan("D")


class TestSanitizingAndCodes:

    def test_sanitize_strips_angle_brackets(self):
        assert InputValidator.sanitize_input("  <b>hello</b> ") == "bhello/b"

    def test_sanitize_empty(self):
        assert InputValidator.sanitize_input(None) == ""

    def test_coupon_code_normalized(self):
        assert InputValidator.validate_coupon_code(" afro 2025 ") == "AFRO2025"

    def test_coupon_code_rejects_symbols(self):
        with pytest.raises(ValidationError):
            InputValidator.validate_coupon_code("AFRO$$")

    def test_amount_must_be_positive(self):
        assert InputValidator.validate_amount("918.75") == Decimal("918.75")
        for bad in ("0", "-1", "abc", "NaN"):
            with pytest.raises(ValidationError):
                InputValidator.validate_amount(bad)
