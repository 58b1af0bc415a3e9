"""
Paystack Webhook Handler

Two routes feeding the same reconciliation routine:
    POST /api/payments/webhook   signed push (x-paystack-signature, HMAC-SHA512 of the raw body)
    GET  /api/payments/callback  browser redirect after checkout, re-verified with Paystack

The webhook is acknowledged with 200 for everything except a bad signature so Paystack
does not retry indefinitely; processing failures are logged for manual follow-up.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Query, Request

from services.payment_reconciliation import INVALID_SIGNATURE, MISMATCH, UNKNOWN_REFERENCE, PaymentReconciler
from utils.exception_handler import BackendError

logger = logging.getLogger(__name__)

# Create FastAPI router
router = APIRouter(prefix="/api/payments")


def _get_reconciler(request: Request) -> PaymentReconciler:
    reconciler = getattr(request.app.state, "reconciler", None)
    if reconciler is None:
        logger.error("❌ PAYSTACK_WEBHOOK: Reconciler not configured on app state")
        raise HTTPException(status_code=503, detail="Payment processing not ready")
    return reconciler


@router.post("/webhook")
async def paystack_webhook(
    request: Request,
    x_paystack_signature: Optional[str] = Header(None, alias="x-paystack-signature"),
):
    """Paystack push notification"""
    raw_body = await request.body()
    reconciler = _get_reconciler(request)

    try:
        result = await reconciler.handle_webhook_event(raw_body, x_paystack_signature)
    except Exception as e:
        # Acknowledge anyway; the payment row stays open and the callback or a replay can finish it
        logger.error(f"❌ PAYSTACK_WEBHOOK: Processing failed: {e}", exc_info=True)
        return {"status": "success", "message": "Received"}

    if result.outcome == INVALID_SIGNATURE:
        raise HTTPException(status_code=401, detail="Invalid signature")

    logger.info(f"✅ PAYSTACK_WEBHOOK: ref={result.reference} outcome={result.outcome}")
    return {"status": "success", "message": "Received", "outcome": result.outcome}


@router.get("/callback")
async def paystack_callback(request: Request, reference: Optional[str] = Query(None)):
    """Redirect target after checkout; never trusts the query string beyond the reference"""
    if not reference:
        raise HTTPException(status_code=400, detail="Missing payment reference")

    reconciler = _get_reconciler(request)
    try:
        result = await reconciler.handle_callback(reference)
    except BackendError as e:
        logger.error(f"❌ PAYSTACK_CALLBACK: Verification unavailable for ref={reference}: {e.message}")
        raise HTTPException(status_code=502, detail="Payment provider unavailable, please try again shortly")

    if result.provider_status != "success" or result.outcome in (MISMATCH, UNKNOWN_REFERENCE):
        raise HTTPException(status_code=400, detail=f"Payment not successful (status: {result.provider_status})")

    return {
        "status": "success",
        "message": "Payment verified. You can return to Telegram.",
        "reference": reference,
        "outcome": result.outcome,
    }
