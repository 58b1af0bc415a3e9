"""Configuration management for the ticket sales bot"""

import os
import logging
from decimal import Decimal
from typing import List

logger = logging.getLogger(__name__)


def _decimal_env(name: str, default: str) -> Decimal:
    raw = os.getenv(name, default)
    try:
        return Decimal(str(raw).strip())
    except Exception:
        logger.warning(f"⚠️ CONFIG: Invalid decimal for {name}={raw!r}, using default {default}")
        return Decimal(default)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"⚠️ CONFIG: Invalid integer for {name}={raw!r}, using default {default}")
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"⚠️ CONFIG: Invalid float for {name}={raw!r}, using default {default}")
        return default


class Config:
    """Application configuration"""

    # Environment detection - ENVIRONMENT takes absolute priority
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower().strip()
    IS_PRODUCTION = ENVIRONMENT in ("production", "prod")
    CURRENT_ENVIRONMENT = "production" if IS_PRODUCTION else "development"
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # Bot Token Configuration
    # Priority: TELEGRAM_BOT_TOKEN > BOT_TOKEN (legacy fallback)
    TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN")
    GENERIC_BOT_TOKEN = os.getenv("BOT_TOKEN")
    BOT_TOKEN = TELEGRAM_BOT_TOKEN or GENERIC_BOT_TOKEN

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL") or os.getenv("DATABASE_URI")

    # Paystack
    PAYSTACK_SECRET_KEY = os.getenv("PAYSTACK_SECRET_KEY", "")
    PAYSTACK_BASE_URL = os.getenv("PAYSTACK_BASE_URL", "https://api.paystack.co").rstrip("/")
    PAYSTACK_TIMEOUT_SECONDS = _int_env("PAYSTACK_TIMEOUT_SECONDS", 30)
    PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "GHS").upper()
    PAYMENT_CHANNELS = [
        channel.strip()
        for channel in os.getenv("PAYMENT_CHANNELS", "mobile_money").split(",")
        if channel.strip()
    ]
    PAYMENT_REFERENCE_PREFIX = os.getenv("PAYMENT_REFERENCE_PREFIX", "AFROFUTURE")
    FALLBACK_EMAIL_DOMAIN = os.getenv("FALLBACK_EMAIL_DOMAIN", "afrofuture.local")

    # Public URL the provider redirects to after payment (callback route is appended)
    PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", os.getenv("BACKEND_API_URL", "http://localhost:8000"))
    PAYMENT_CALLBACK_PATH = "/api/payments/callback"

    # Event configuration
    EVENT_NAME = os.getenv("EVENT_NAME", "AfroFuture 2025")
    EVENT_DATES = os.getenv("EVENT_DATES", "December 28 & 29, 2025")
    EVENT_LOCATION = os.getenv("EVENT_LOCATION", "El-Wak Stadium, Accra")
    INSTALLMENT_DEADLINE = os.getenv("INSTALLMENT_DEADLINE", "2025-12-13T23:59:59")

    # Support configuration
    SUPPORT_PHONE = os.getenv("SUPPORT_PHONE", "+233 55 000 0000")
    SUPPORT_EMAIL = os.getenv("SUPPORT_EMAIL", "support@afrofuture.com")

    # Ticket pricing
    GA_PRICE = _decimal_env("GA_PRICE", "918.75")
    VIP_PRICE = _decimal_env("VIP_PRICE", "1617.50")

    # Soft inventory cap for the VIP tier (tickets sellable after the baseline)
    VIP_ADDITIONAL_AVAILABLE = _int_env("VIP_ADDITIONAL_AVAILABLE", 50)

    # Scheduler configuration
    REMINDER_CHECK_INTERVAL_HOURS = _float_env("REMINDER_CHECK_INTERVAL_HOURS", 6.0)
    DEADLINE_CHECK_INTERVAL_HOURS = _float_env("DEADLINE_CHECK_INTERVAL_HOURS", 24.0)
    SCHEDULER_INITIAL_DELAY_SECONDS = _int_env("SCHEDULER_INITIAL_DELAY_SECONDS", 5)

    # Constant inter-item delay for batch outbound sends (no transport backpressure)
    OUTBOUND_SEND_DELAY_SECONDS = _float_env("OUTBOUND_SEND_DELAY_SECONDS", 1.0)

    # Webhook server
    WEBHOOK_HOST = os.getenv("WEBHOOK_HOST", "0.0.0.0")
    WEBHOOK_PORT = _int_env("WEBHOOK_PORT", _int_env("PORT", 8000))

    @staticmethod
    def validate_required_config() -> List[str]:
        """Return a list of configuration problems (empty when valid)"""
        errors = []
        if not Config.DATABASE_URL:
            errors.append("DATABASE_URL is required")
        if not Config.PAYSTACK_SECRET_KEY:
            errors.append("PAYSTACK_SECRET_KEY is required")
        if not Config.BOT_TOKEN:
            errors.append("TELEGRAM_BOT_TOKEN (or BOT_TOKEN) is required")
        if Config.GA_PRICE <= 0 or Config.VIP_PRICE <= 0:
            errors.append("GA_PRICE and VIP_PRICE must be positive")
        if Config.VIP_ADDITIONAL_AVAILABLE < 0:
            errors.append("VIP_ADDITIONAL_AVAILABLE must not be negative")
        try:
            from utils.datetime_helpers import parse_iso_datetime
            parse_iso_datetime(Config.INSTALLMENT_DEADLINE)
        except ValueError:
            errors.append(f"INSTALLMENT_DEADLINE is not an ISO date-time: {Config.INSTALLMENT_DEADLINE!r}")
        return errors

    @staticmethod
    def log_environment_config():
        """Log current environment configuration for debugging"""
        logger.info("🔧 Bot Environment Configuration:")
        logger.info(f"   Environment: {Config.CURRENT_ENVIRONMENT.upper()}")
        logger.info(f"   Event: {Config.EVENT_NAME} ({Config.EVENT_DATES})")
        logger.info(f"   Prices: GA={Config.GA_PRICE} VIP={Config.VIP_PRICE} {Config.PAYMENT_CURRENCY}")
        logger.info(f"   Installment deadline: {Config.INSTALLMENT_DEADLINE}")
        logger.info(f"   Paystack: {'✅ Set' if Config.PAYSTACK_SECRET_KEY else '❌ Not set'} ({Config.PAYSTACK_BASE_URL})")
        logger.info(f"   Bot token: {'✅ Set' if Config.BOT_TOKEN else '❌ Not set'}")
        logger.info(
            f"   Schedulers: reminders every {Config.REMINDER_CHECK_INTERVAL_HOURS}h, "
            f"deadlines every {Config.DEADLINE_CHECK_INTERVAL_HOURS}h"
        )
