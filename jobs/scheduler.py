"""Background job scheduler for the AfroFuture ticket bot"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import Config
from jobs.installment_deadlines import run_installment_deadlines
from jobs.payment_reminders import run_payment_reminders
from services.chat_notifier import ChatNotifier
from services.payment_service import PaymentService
from services.session_store import SessionStore

logger = logging.getLogger(__name__)

REMINDER_JOB_ID = "payment_reminders"
DEADLINE_JOB_ID = "installment_deadlines"


class TicketScheduler:
    """Reminder and deadline sweeps on one AsyncIOScheduler"""

    def __init__(
        self,
        store: SessionStore,
        payment_service: PaymentService,
        notifier: ChatNotifier,
        reminder_interval_hours: Optional[float] = None,
        deadline_interval_hours: Optional[float] = None,
        initial_delay_seconds: Optional[int] = None,
    ):
        self.store = store
        self.payment_service = payment_service
        self.notifier = notifier
        self.reminder_interval_hours = reminder_interval_hours or Config.REMINDER_CHECK_INTERVAL_HOURS
        self.deadline_interval_hours = deadline_interval_hours or Config.DEADLINE_CHECK_INTERVAL_HOURS
        self.initial_delay_seconds = (
            initial_delay_seconds if initial_delay_seconds is not None else Config.SCHEDULER_INITIAL_DELAY_SECONDS
        )

        jobstores = {
            'default': MemoryJobStore()
        }
        executors = {
            'default': AsyncIOExecutor()
        }
        job_defaults = {
            'coalesce': True,  # Collapse missed runs into one
            'max_instances': 1,  # A sweep never overlaps itself
            'misfire_grace_time': 300
        }

        self.scheduler = AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone='UTC'
        )

    async def send_payment_reminders(self):
        await run_payment_reminders(self.store, self.payment_service, self.notifier)

    async def check_installment_deadlines(self):
        await run_installment_deadlines(self.store, self.notifier)

    def setup_jobs(self):
        """Register interval sweeps plus one early run of each shortly after start"""
        for job_id in (REMINDER_JOB_ID, DEADLINE_JOB_ID, f"{REMINDER_JOB_ID}_initial", f"{DEADLINE_JOB_ID}_initial"):
            if self.scheduler.get_job(job_id):
                self.scheduler.remove_job(job_id)

        self.scheduler.add_job(
            self.send_payment_reminders,
            trigger=IntervalTrigger(hours=self.reminder_interval_hours),
            id=REMINDER_JOB_ID,
            name="Send Installment Payment Reminders",
        )
        self.scheduler.add_job(
            self.check_installment_deadlines,
            trigger=IntervalTrigger(hours=self.deadline_interval_hours),
            id=DEADLINE_JOB_ID,
            name="Settle Missed Installment Deadlines",
        )

        first_run = datetime.now(timezone.utc) + timedelta(seconds=self.initial_delay_seconds)
        self.scheduler.add_job(
            self.send_payment_reminders,
            trigger=DateTrigger(run_date=first_run),
            id=f"{REMINDER_JOB_ID}_initial",
            name="Initial Payment Reminder Check",
        )
        self.scheduler.add_job(
            self.check_installment_deadlines,
            trigger=DateTrigger(run_date=first_run),
            id=f"{DEADLINE_JOB_ID}_initial",
            name="Initial Deadline Check",
        )

        logger.info(
            f"📅 SCHEDULER: Reminders every {self.reminder_interval_hours}h, "
            f"deadline sweep every {self.deadline_interval_hours}h, first run in {self.initial_delay_seconds}s"
        )

    def start(self):
        """Start the scheduler; must be called with a running event loop"""
        self.setup_jobs()
        self.scheduler.start()
        logger.info("✅ SCHEDULER: Ticket scheduler started")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("🛑 SCHEDULER: Ticket scheduler stopped")


def start_schedulers(
    store: SessionStore,
    payment_service: PaymentService,
    notifier: ChatNotifier,
) -> TicketScheduler:
    """Entry point used at startup: begins both periodic sweeps"""
    scheduler = TicketScheduler(store, payment_service, notifier)
    scheduler.start()
    return scheduler
