"""Ticket tier helpers used by the installment deadline sweep"""

from decimal import Decimal
from typing import Optional
from models import TicketType
from utils.constants import TICKETS


def calculate_eligible_tier(original_tier: TicketType, amount_paid: Decimal) -> Optional[TicketType]:
    """
    Highest tier the amount paid fully covers, never above the tier originally chosen.

    Returns None when no tier is covered (full rollover to wallet).
    """
    original_price = TICKETS[original_tier].price
    eligible = None
    for ticket_type, info in sorted(TICKETS.items(), key=lambda item: item[1].price):
        if info.price > original_price:
            break
        if amount_paid >= info.price:
            eligible = ticket_type
    return eligible
