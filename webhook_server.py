"""
FastAPI Webhook Server for the AfroFuture ticket bot
Hosts the Paystack webhook/callback routes and a health check
"""
from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import FastAPI

from handlers.paystack_webhook import router as paystack_router
from services.payment_reconciliation import PaymentReconciler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown logging; services are wired by main.py before serving"""
    if getattr(app.state, "reconciler", None) is None:
        logger.warning("⚠️ WEBHOOK_SERVER: Starting without a payment reconciler - payment routes will return 503")
    logger.info("🌐 WEBHOOK_SERVER: Ready to receive Paystack events")
    yield
    logger.info("🔄 WEBHOOK_SERVER: Shutting down")


def create_app(reconciler: Optional[PaymentReconciler] = None) -> FastAPI:
    """Build the HTTP app; the reconciler is shared with the routes through app.state"""
    application = FastAPI(
        title="AfroFuture Ticket Bot Webhook Server",
        description="Paystack payment webhook and callback endpoints",
        lifespan=lifespan,
    )
    application.state.reconciler = reconciler

    @application.get("/health")
    async def health_check():
        """Health check endpoint for the deployment probe"""
        return {
            "status": "ok",
            "service": "afrofuture-ticket-bot",
            "payments_ready": application.state.reconciler is not None,
        }

    application.include_router(paystack_router)
    return application


app = create_app()
