"""
Input Validation Utilities
Chat input validation and sanitization for the ticket funnel
"""

import re
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Union
from models import TicketType, PaymentType, InstallmentPlan
from utils.exception_handler import ValidationError

logger = logging.getLogger(__name__)


class InputValidator:
    """Validators for each conversation step; all raise ValidationError with a user-facing message"""

    # Permissive local@domain.tld shape check
    EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
    COUPON_CODE_PATTERN = re.compile(r"^[A-Z0-9_-]{2,50}$")
    ANGLE_BRACKETS = re.compile(r"[<>]")

    MENU_OPTIONS = ("1", "2", "3", "4")
    WALLET_OPTIONS = ("1", "2", "3")
    YES_ANSWERS = ("yes", "y")
    NO_ANSWERS = ("no", "n")

    @classmethod
    def sanitize_input(cls, text: str) -> str:
        """Trim and strip angle brackets before the text is echoed anywhere"""
        if not text:
            return ""
        return cls.ANGLE_BRACKETS.sub("", text.strip())

    @classmethod
    def validate_ticket_type(cls, text: str, vip_out_of_stock: bool = False) -> TicketType:
        """Validate tier selection against live VIP availability"""
        normalized = (text or "").strip().lower()

        if normalized == "a":
            return TicketType.GA
        if normalized == "b":
            if vip_out_of_stock:
                raise ValidationError(
                    "❌ *VIP tickets are currently out of stock.*\n\n"
                    "Please select *A* for GA tickets, or type *menu* to return to the main menu."
                )
            return TicketType.VIP

        if vip_out_of_stock:
            raise ValidationError("Please reply with *A* to select GA tickets.")
        raise ValidationError("Please reply with *A* for GA or *B* for VIP.")

    @classmethod
    def validate_payment_type(cls, text: str) -> PaymentType:
        """Only full payment is offered"""
        if (text or "").strip() == "1":
            return PaymentType.FULL
        raise ValidationError("Please reply with *1* to pay in full.")

    @classmethod
    def validate_installment_plan(cls, text: str) -> InstallmentPlan:
        normalized = (text or "").strip().upper()
        try:
            return InstallmentPlan(normalized)
        except ValueError:
            raise ValidationError("Please reply with *A*, *B*, or *C* to select a plan.")

    @classmethod
    def validate_menu_option(cls, text: str) -> str:
        normalized = (text or "").strip()
        if normalized in cls.MENU_OPTIONS:
            return normalized
        raise ValidationError(
            "Please reply with a number 1-4 to select an option, or type *menu* to see options again."
        )

    @classmethod
    def validate_wallet_option(cls, text: str) -> str:
        normalized = (text or "").strip()
        if normalized in cls.WALLET_OPTIONS:
            return normalized
        raise ValidationError(
            "Please reply with *1*, *2*, or *3* to choose where to transfer your balance."
        )

    @classmethod
    def validate_email(cls, text: str) -> str:
        """Return the trimmed, lower-cased address"""
        trimmed = (text or "").strip()
        if not cls.EMAIL_PATTERN.match(trimmed):
            raise ValidationError(
                "That doesn't look like a valid email. Please reply with an email like *name@example.com*."
            )
        return trimmed.lower()

    @classmethod
    def validate_yes_no(cls, text: str) -> bool:
        normalized = (text or "").strip().lower()
        if normalized in cls.YES_ANSWERS:
            return True
        if normalized in cls.NO_ANSWERS:
            return False
        raise ValidationError("Please reply with *YES* or *NO*.")

    @classmethod
    def validate_coupon_code(cls, text: str) -> str:
        """Normalize a coupon code to its stored (upper-case) form"""
        normalized = re.sub(r"\s+", "", (text or "")).upper()
        if not cls.COUPON_CODE_PATTERN.match(normalized):
            raise ValidationError(
                "That doesn't look like a valid coupon code. Please reply with the code exactly as you received it."
            )
        return normalized

    @classmethod
    def validate_amount(cls, amount: Union[Decimal, int, float, str]) -> Decimal:
        """Monetary amount must be a positive decimal"""
        try:
            value = Decimal(str(amount))
        except (InvalidOperation, ValueError, TypeError):
            raise ValidationError("Invalid amount. Please try again.")
        if not value.is_finite() or value <= 0:
            raise ValidationError("Invalid amount. Please try again.")
        return value

    @classmethod
    def validate_session_for_payment(cls, session: Any) -> None:
        """A payment link needs a selected ticket and a known price"""
        if not getattr(session, "ticket_type", None):
            raise ValidationError(
                "Session error: No ticket type selected. Please start over by typing *menu*."
            )
        if not getattr(session, "total_price", None):
            raise ValidationError(
                "Session error: No ticket price found. Please start over by typing *menu*."
            )
