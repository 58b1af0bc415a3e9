#!/usr/bin/env python3
"""
Startup - AfroFuture ticket bot

Deterministic sequence:
    config -> database -> Telegram application -> services -> handlers
    -> schedulers -> HTTP server + polling

One process runs the Telegram poller, the Paystack webhook server and both schedulers
on the same event loop.
"""

import asyncio
import logging
import os
import sys
from typing import List, Optional

# Load .env before Config reads the environment
from dotenv import load_dotenv
load_dotenv(os.path.join(os.path.dirname(os.path.abspath(__file__)), '.env'))

import uvicorn
from telegram.ext import Application

from config import Config
from database import create_tables, test_connection

logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class StartupManager:
    """Builds and runs every component; no module-level service globals"""

    def __init__(self):
        self.application: Optional[Application] = None
        self.scheduler = None
        self.reconciler = None
        self.engine = None
        self.store = None
        self.payment_service = None
        self.notifier = None
        self.startup_errors: List[str] = []

    async def validate_config(self) -> bool:
        errors = Config.validate_required_config()
        for error in errors:
            logger.error(f"❌ CONFIG: {error}")
            self.startup_errors.append(f"Config: {error}")
        Config.log_environment_config()
        return not errors

    async def initialize_database(self) -> bool:
        try:
            logger.info("🗄️ Initializing database...")
            if not test_connection():
                raise RuntimeError("Database connection test failed")
            if not create_tables():
                raise RuntimeError("Table creation failed")
            logger.info("✅ Database initialization complete")
            return True
        except Exception as e:
            logger.error(f"❌ Database initialization failed: {e}")
            self.startup_errors.append(f"Database: {e}")
            return False

    async def create_application(self) -> bool:
        try:
            logger.info("🤖 Creating Telegram application...")
            self.application = Application.builder().token(Config.BOT_TOKEN).build()
            logger.info("✅ Telegram application created")
            return True
        except Exception as e:
            logger.error(f"❌ Application creation failed: {e}")
            self.startup_errors.append(f"Application: {e}")
            return False

    async def initialize_services(self) -> bool:
        """Wire services explicitly; each gets its collaborators through its constructor"""
        try:
            logger.info("⚙️ Initializing core services...")
            from handlers.conversation import ConversationEngine
            from handlers.telegram_router import register_handlers
            from services.chat_notifier import ChatNotifier
            from services.coupon_service import CouponService
            from services.payment_reconciliation import PaymentReconciler
            from services.payment_service import PaymentService
            from services.paystack_service import get_paystack_service
            from services.session_store import SessionStore
            from services.ticket_availability import TicketAvailabilityService

            paystack = get_paystack_service()
            store = SessionStore()
            notifier = ChatNotifier(self.application.bot)
            payment_service = PaymentService(paystack)
            availability = TicketAvailabilityService(payment_service)

            coupon_service = CouponService()

            self.engine = ConversationEngine(store, payment_service, coupon_service, availability, notifier)
            self.reconciler = PaymentReconciler(paystack, store, notifier, coupon_service=coupon_service)
            register_handlers(self.application, self.engine)

            self.store = store
            self.payment_service = payment_service
            self.notifier = notifier
            logger.info("✅ Services initialized: session store, Paystack, coupons, availability, notifier")
            return True
        except Exception as e:
            logger.error(f"❌ Service initialization failed: {e}", exc_info=True)
            self.startup_errors.append(f"Services: {e}")
            return False

    async def startup_sequence(self) -> bool:
        logger.info(f"🚀 Starting {Config.EVENT_NAME} ticket bot...")

        startup_steps = [
            ("Config", self.validate_config),
            ("Database", self.initialize_database),
            ("Application", self.create_application),
            ("Services", self.initialize_services),
        ]
        for step_name, step_func in startup_steps:
            logger.info(f"▶️ Executing step: {step_name}")
            if not await step_func():
                logger.error(f"🚨 Critical step '{step_name}' failed - cannot continue startup")
                return False

        logger.info("✅ Startup sequence completed successfully")
        return True

    async def run(self) -> None:
        from jobs.scheduler import start_schedulers
        from webhook_server import create_app

        server = uvicorn.Server(uvicorn.Config(
            create_app(self.reconciler),
            host=Config.WEBHOOK_HOST,
            port=Config.WEBHOOK_PORT,
            log_level=Config.LOG_LEVEL.lower(),
        ))

        await self.application.initialize()
        await self.application.start()
        await self.application.updater.start_polling()
        logger.info("📡 Telegram polling started")

        self.scheduler = start_schedulers(self.store, self.payment_service, self.notifier)
        try:
            logger.info(f"🌐 Webhook server listening on {Config.WEBHOOK_HOST}:{Config.WEBHOOK_PORT}")
            await server.serve()
        finally:
            logger.info("🔄 Shutting down...")
            self.scheduler.stop()
            await self.application.updater.stop()
            await self.application.stop()
            await self.application.shutdown()
            logger.info("👋 Shutdown complete")


async def main() -> None:
    manager = StartupManager()
    if not await manager.startup_sequence():
        for error in manager.startup_errors:
            logger.error(f"  - {error}")
        sys.exit(1)
    await manager.run()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("👋 Bot stopped by user")
