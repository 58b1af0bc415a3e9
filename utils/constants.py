"""Constants for the AfroFuture ticket sales bot"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional
from config import Config
from models import TicketType, InstallmentPlan


@dataclass(frozen=True)
class TicketInfo:
    """Display name, price and description of one tier"""
    ticket_type: TicketType
    name: str
    price: Decimal
    description: str


@dataclass(frozen=True)
class WalletDestination:
    option: str
    name: str
    is_donation: bool = False


# ==================== TICKET TIERS ====================

# Ordered from lowest to highest price
TICKETS: Dict[TicketType, TicketInfo] = {
    TicketType.GA: TicketInfo(
        ticket_type=TicketType.GA,
        name="Wave 1: GA",
        price=Config.GA_PRICE,
        description="General Admission (Access to main festival zones)",
    ),
    TicketType.VIP: TicketInfo(
        ticket_type=TicketType.VIP,
        name="Wave 1: VIP",
        price=Config.VIP_PRICE,
        description="VIP Admission (Exclusive VIP section + VIP entry lanes)",
    ),
}

# Tier whose availability is capped by the soft inventory gate
CONSTRAINED_TICKET_TYPE = TicketType.VIP

# ==================== INSTALLMENT PLANS ====================

# Fixed schedules kept for sessions created by the older installment design; plan C is custom
INSTALLMENT_PLANS: Dict[TicketType, Dict[InstallmentPlan, List[Decimal]]] = {
    TicketType.GA: {
        InstallmentPlan.A: [Decimal("367.50"), Decimal("275.63"), Decimal("275.62")],
        InstallmentPlan.B: [Decimal("459.38"), Decimal("459.37")],
    },
    TicketType.VIP: {
        InstallmentPlan.A: [Decimal("647.00"), Decimal("485.25"), Decimal("485.25")],
        InstallmentPlan.B: [Decimal("808.75"), Decimal("808.75")],
    },
}

# ==================== WALLET ====================

WALLET_DESTINATIONS: Dict[str, WalletDestination] = {
    "1": WalletDestination(option="1", name="AfroFuture 2026"),
    "2": WalletDestination(option="2", name="AfroFuture Weekender"),
    "3": WalletDestination(option="3", name="AfroFuture Foundation", is_donation=True),
}

# ==================== REMINDERS ====================

# Fallback thresholds used when no reminder template matches
FALLBACK_FIVE_DAY_THRESHOLD = 5
FALLBACK_ONE_DAY_THRESHOLD = 1

# Flag names written by the older design, still honored when reading
LEGACY_REMINDER_FLAGS = {
    "5DaySent": "fiveDaySent",
    "1DaySent": "oneDaySent",
}

# ==================== PAYMENTS ====================

PAYSTACK_CHARGE_SUCCESS_EVENT = "charge.success"
PAYMENT_METADATA_VERSION = 1
VIP_BASELINE_CONFIG_KEY = "vip_availability_baseline"
TICKET_ID_PREFIX = "AF"
# Placeholder shown until an admin issues the real ticket
PENDING_ADMIN_TICKET = "PENDING_ADMIN_TICKET"

MENU_COMMANDS = ("menu", "start", "/menu", "/start")


def get_ticket(ticket_type: Optional[TicketType]) -> Optional[TicketInfo]:
    if ticket_type is None:
        return None
    return TICKETS.get(ticket_type)


def reminder_flag_key(days: int) -> str:
    return f"{days}DaySent"
