"""Paystack Payment API Service - mobile money checkout for ticket payments"""

import asyncio
import hashlib
import hmac
import json
import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

import aiohttp

from config import Config
from utils.constants import PAYMENT_METADATA_VERSION
from utils.datetime_helpers import parse_iso_datetime
from utils.exception_handler import BackendError, PaymentError

logger = logging.getLogger(__name__)

MINOR_UNITS_PER_MAJOR = Decimal("100")
TWO_PLACES = Decimal("0.01")


@dataclass
class PaymentMetadata:
    """Closed, versioned metadata sent to Paystack and echoed back on verification"""
    ticket_type: Optional[str] = None
    payment_type: Optional[str] = None
    installment_number: Optional[int] = None
    coupon_code: Optional[str] = None
    chat_id: Optional[str] = None
    version: int = PAYMENT_METADATA_VERSION

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "version": self.version,
            "ticket_type": self.ticket_type,
            "payment_type": self.payment_type,
            "installment_number": self.installment_number,
            "coupon_code": self.coupon_code,
            "chat_id": self.chat_id,
        }
        return {key: value for key, value in data.items() if value is not None}

    @classmethod
    def from_dict(cls, data: Optional[Any]) -> "PaymentMetadata":
        """Build from provider echo; unknown keys are ignored"""
        if isinstance(data, str):
            # Paystack sometimes echoes metadata back as a JSON string
            try:
                data = json.loads(data)
            except ValueError:
                data = None
        if not isinstance(data, dict):
            return cls()

        installment_number = data.get("installment_number")
        try:
            installment_number = int(installment_number) if installment_number is not None else None
        except (TypeError, ValueError):
            installment_number = None

        try:
            version = int(data.get("version", PAYMENT_METADATA_VERSION))
        except (TypeError, ValueError):
            version = PAYMENT_METADATA_VERSION

        return cls(
            ticket_type=data.get("ticket_type"),
            payment_type=data.get("payment_type"),
            installment_number=installment_number,
            coupon_code=data.get("coupon_code"),
            chat_id=str(data["chat_id"]) if data.get("chat_id") is not None else None,
            version=version,
        )


@dataclass
class InitializedPayment:
    authorization_url: str
    access_code: str
    reference: str


@dataclass
class VerifiedPayment:
    reference: str
    status: str
    amount: Decimal
    currency: str
    paid_at: Optional[datetime] = None
    metadata: PaymentMetadata = field(default_factory=PaymentMetadata)


class PaystackService:
    """Service for Paystack transaction initialize/verify and webhook signatures"""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[int] = None,
        currency: Optional[str] = None,
        channels: Optional[List[str]] = None,
        callback_url: Optional[str] = None,
    ):
        self.secret_key = secret_key if secret_key is not None else Config.PAYSTACK_SECRET_KEY
        self.base_url = (base_url or Config.PAYSTACK_BASE_URL).rstrip("/")
        self.timeout_seconds = timeout_seconds or Config.PAYSTACK_TIMEOUT_SECONDS
        self.currency = currency or Config.PAYMENT_CURRENCY
        self.channels = channels or list(Config.PAYMENT_CHANNELS)
        self.callback_url = callback_url or (
            f"{Config.PUBLIC_BASE_URL.rstrip('/')}{Config.PAYMENT_CALLBACK_PATH}"
        )

        if not self.secret_key:
            logger.warning("⚠️ PAYSTACK: Secret key not configured - payment links and webhooks will fail")

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    # ==================== AMOUNTS & REFERENCES ====================

    @staticmethod
    def to_minor_units(amount: Decimal) -> int:
        """GH₵ to pesewas"""
        return int((Decimal(str(amount)) * MINOR_UNITS_PER_MAJOR).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    @staticmethod
    def from_minor_units(amount: Any) -> Decimal:
        return (Decimal(str(amount)) / MINOR_UNITS_PER_MAJOR).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)

    @staticmethod
    def generate_reference(chat_id: str, timestamp_ms: Optional[int] = None) -> str:
        """Unique per attempt: PREFIX_<chat>_<ms timestamp><4 random digits>"""
        ts = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
        suffix = f"{random.randint(0, 9999):04d}"
        return f"{Config.PAYMENT_REFERENCE_PREFIX}_{chat_id}_{ts}{suffix}"

    # ==================== SIGNATURES ====================

    def compute_signature(self, raw_body: bytes) -> str:
        """HMAC-SHA512 hex digest of the raw webhook body"""
        if isinstance(raw_body, str):
            raw_body = raw_body.encode("utf-8")
        return hmac.new(self.secret_key.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()

    def verify_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        if not self.secret_key:
            logger.error("❌ PAYSTACK_SECURITY: Secret key not configured - rejecting webhook")
            return False
        if not signature:
            logger.warning("🚨 PAYSTACK_SECURITY: Webhook received without x-paystack-signature header")
            return False

        expected = self.compute_signature(raw_body)
        if hmac.compare_digest(expected, signature.strip().lower()):
            logger.info("✅ PAYSTACK_SECURITY: Webhook signature verified")
            return True

        logger.critical("🚨 PAYSTACK_SECURITY: Invalid webhook signature - possible spoofing attempt")
        return False

    # ==================== HTTP ====================

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Authenticated JSON request; every failure surfaces as BackendError/PaymentError"""
        if not self.secret_key:
            raise BackendError("Payment provider is not configured")

        url = f"{self.base_url}/{path.lstrip('/')}"
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(method, url, headers=self._get_headers(), json=payload) as response:
                    try:
                        data = await response.json(content_type=None)
                    except (aiohttp.ContentTypeError, ValueError):
                        data = None

                    if response.status >= 400 or not isinstance(data, dict):
                        message = data.get("message") if isinstance(data, dict) else None
                        logger.error(f"❌ PAYSTACK_API: {method} {path} failed with HTTP {response.status}: {message}")
                        raise PaymentError(message or f"Paystack HTTP {response.status}", status_code=response.status)

                    if not data.get("status"):
                        logger.error(f"❌ PAYSTACK_API: {method} {path} rejected: {data.get('message')}")
                        raise PaymentError(data.get("message") or "Paystack rejected the request", status_code=response.status)

                    return data
        except asyncio.TimeoutError:
            logger.error(f"⏰ PAYSTACK_API: Timeout after {self.timeout_seconds}s on {method} {path}")
            raise BackendError("Payment provider timed out", code="BACKEND_TIMEOUT")
        except aiohttp.ClientError as e:
            logger.error(f"❌ PAYSTACK_API: Network error on {method} {path}: {type(e).__name__}: {e}")
            raise BackendError(f"Network error contacting payment provider: {e}")

    async def initialize_payment(
        self,
        amount: Decimal,
        email: str,
        metadata: Optional[PaymentMetadata] = None,
        reference: Optional[str] = None,
    ) -> InitializedPayment:
        """Start a mobile money checkout; returns the hosted authorization URL"""
        amount = Decimal(str(amount))
        if amount <= 0:
            raise PaymentError(f"Invalid payment amount: {amount}")

        payload = {
            "amount": self.to_minor_units(amount),
            "email": email,
            "currency": self.currency,
            "channels": self.channels,
            "callback_url": self.callback_url,
            "metadata": (metadata or PaymentMetadata()).to_dict(),
        }
        if reference:
            payload["reference"] = reference

        logger.info(f"💳 PAYSTACK_INIT: Initializing {amount} {self.currency} (ref={reference})")
        data = await self._request("POST", "/transaction/initialize", payload)
        result = data.get("data") or {}

        if not result.get("authorization_url") or not result.get("reference"):
            logger.error(f"❌ PAYSTACK_INIT: Response missing authorization_url/reference: {data.get('message')}")
            raise PaymentError("Failed to initialize payment")

        logger.info(f"✅ PAYSTACK_INIT: Checkout ready for ref={result['reference']}")
        return InitializedPayment(
            authorization_url=result["authorization_url"],
            access_code=result.get("access_code", ""),
            reference=result["reference"],
        )

    def parse_transaction(self, transaction: Dict[str, Any]) -> VerifiedPayment:
        """Map a Paystack transaction object (verify response or webhook data) to VerifiedPayment"""
        paid_at = None
        raw_paid_at = transaction.get("paid_at") or transaction.get("paidAt")
        if raw_paid_at:
            try:
                paid_at = parse_iso_datetime(raw_paid_at)
            except ValueError:
                logger.warning(f"⚠️ PAYSTACK: Unparseable paid_at {raw_paid_at!r}")

        return VerifiedPayment(
            reference=str(transaction.get("reference", "")),
            status=str(transaction.get("status", "")).lower(),
            amount=self.from_minor_units(transaction.get("amount") or 0),
            currency=str(transaction.get("currency") or self.currency).upper(),
            paid_at=paid_at,
            metadata=PaymentMetadata.from_dict(transaction.get("metadata")),
        )

    async def verify_payment(self, reference: str) -> VerifiedPayment:
        """Ask Paystack for the authoritative status of a transaction"""
        if not reference:
            raise PaymentError("Payment reference is required")

        logger.info(f"🔍 PAYSTACK_VERIFY: Verifying ref={reference}")
        data = await self._request("GET", f"/transaction/verify/{reference}")
        verified = self.parse_transaction(data.get("data") or {})
        logger.info(f"📋 PAYSTACK_VERIFY: ref={reference} status={verified.status} amount={verified.amount} {verified.currency}")
        return verified


_paystack_service: Optional[PaystackService] = None


def get_paystack_service() -> PaystackService:
    """Get or create the shared Paystack service instance"""
    global _paystack_service
    if _paystack_service is None:
        _paystack_service = PaystackService()
    return _paystack_service
