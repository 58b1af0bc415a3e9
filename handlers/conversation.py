"""
Conversation Engine - the ticket purchase state machine

WELCOME -> MAIN_MENU -> SELECT_TICKET -> AWAITING_EMAIL -> AWAITING_COUPON_ANSWER
    -> AWAITING_COUPON_CODE -> [AWAITING_CONTINUE_ANSWER] -> AWAITING_PAYMENT
plus WALLET_TRANSFER, reached from the menu or set by the deadline sweep.

State handlers raise and return (replies, field updates). The engine writes the updates
with one CAS merge-update after the handler returns, so a rejected or failed step never
leaves a partial transition behind. process_inbound_message is the only place errors are
caught and turned into replies.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional

from telegram.error import TelegramError

from config import Config
from models import InstallmentPlan, PaymentType, SessionState
from services.chat_notifier import ChatNotifier
from services.coupon_service import EXHAUSTED, NOT_FOUND, CouponCheck, CouponService
from services.payment_service import PaymentService
from services.paystack_service import PaymentMetadata
from services.session_store import SessionStore, UserSession
from services.ticket_availability import TicketAvailabilityService
from utils.constants import INSTALLMENT_PLANS, MENU_COMMANDS, TICKETS, WALLET_DESTINATIONS, get_ticket
from utils.datetime_helpers import format_date
from utils.exception_handler import BackendError, SessionError, ValidationError
from utils.input_validation import InputValidator
from utils.messages import TicketMessages

logger = logging.getLogger(__name__)

DEFAULT_TICKET_NAME = "AfroFuture Ticket"


@dataclass
class StepResult:
    """Replies to send and the session fields to write once the step succeeded"""
    replies: List[str] = field(default_factory=list)
    updates: Optional[Dict[str, Any]] = None
    # Payment whose coupon reservation is given back if the updates cannot be written
    coupon_reference: Optional[str] = None


StateHandler = Callable[[UserSession, str], Awaitable[StepResult]]


class ConversationEngine:
    """Routes one inbound chat message through the purchase flow"""

    def __init__(
        self,
        store: SessionStore,
        payment_service: PaymentService,
        coupon_service: CouponService,
        availability: TicketAvailabilityService,
        notifier: Optional[ChatNotifier] = None,
    ):
        self.store = store
        self.payment_service = payment_service
        self.coupon_service = coupon_service
        self.availability = availability
        self.notifier = notifier

        self._handlers: Dict[SessionState, StateHandler] = {
            SessionState.WELCOME: self._handle_welcome,
            SessionState.MAIN_MENU: self._handle_main_menu,
            SessionState.SELECT_TICKET: self._handle_select_ticket,
            SessionState.AWAITING_EMAIL: self._handle_email,
            SessionState.AWAITING_COUPON_ANSWER: self._handle_coupon_answer,
            SessionState.AWAITING_COUPON_CODE: self._handle_coupon_code,
            SessionState.AWAITING_CONTINUE_ANSWER: self._handle_continue_answer,
            SessionState.AWAITING_PAYMENT: self._handle_awaiting_payment,
            SessionState.WALLET_TRANSFER: self._handle_wallet_transfer,
            SessionState.SELECT_PAYMENT_TYPE: self._handle_legacy_payment_type,
            SessionState.SELECT_INSTALLMENT_PLAN: self._handle_legacy_installment_plan,
        }

    # ==================== ENTRY POINT ====================

    async def process_inbound_message(self, chat_id: str, user_name: Optional[str], text: Optional[str]) -> List[str]:
        """
        Handle one message from the chat transport.

        Always produces at least one reply (or logs why it could not be delivered).
        Returns the replies for callers that want to inspect them.
        """
        chat_id = str(chat_id)
        text = InputValidator.sanitize_input(text or "")
        replies: List[str] = []

        try:
            session = self.store.get_or_create(chat_id, user_name)
            logger.info(f"💬 CONVERSATION: chat={chat_id} state={session.raw_state} text={text[:30]!r}")

            if text.lower() in MENU_COMMANDS:
                session = self.store.reset_to_main_menu(chat_id)
                replies = [TicketMessages.welcome(user_name or session.user_name)]
            else:
                result = await self._dispatch(session, text)
                if result.updates:
                    self._write_updates(chat_id, session, result)
                replies = result.replies
        except ValidationError as e:
            logger.info(f"🚫 CONVERSATION: Rejected input from chat {chat_id}: {e.message[:60]!r}")
            replies = [e.message]
        except BackendError as e:
            logger.error(f"❌ CONVERSATION: Backend failure for chat {chat_id}: {e.message}")
            replies = [TicketMessages.backend_unavailable()]
        except SessionError as e:
            logger.error(f"❌ CONVERSATION: Session store failure for chat {chat_id}: {e.message}")
            replies = [TicketMessages.generic_error()]
        except Exception as e:
            logger.error(f"❌ CONVERSATION: Unexpected error for chat {chat_id}: {e}", exc_info=True)
            replies = [TicketMessages.generic_error()]

        if not replies:
            replies = [TicketMessages.generic_error()]
        await self._send_replies(chat_id, replies)
        return replies

    def _write_updates(self, chat_id: str, session: UserSession, result: StepResult) -> None:
        try:
            self.store.merge_update(chat_id, result.updates, expected_version=session.version)
        except SessionError:
            if result.coupon_reference:
                code = self.payment_service.detach_coupon(result.coupon_reference)
                if code:
                    logger.warning(f"↩️ CONVERSATION: Session write failed, releasing coupon {code} for chat {chat_id}")
                    self.coupon_service.release(code)
            raise

    async def _dispatch(self, session: UserSession, text: str) -> StepResult:
        handler = self._handlers.get(session.state) if session.state else None
        if handler is None:
            logger.warning(f"⚠️ CONVERSATION: Unknown state {session.raw_state!r} for chat {session.chat_id}")
            return StepResult(
                replies=[TicketMessages.welcome(session.user_name)],
                updates={"state": SessionState.MAIN_MENU},
            )
        return await handler(session, text)

    async def _send_replies(self, chat_id: str, replies: List[str]) -> None:
        if self.notifier is None:
            return
        for reply in replies:
            try:
                await self.notifier.send_text(chat_id, reply)
            except TelegramError as e:
                logger.error(f"❌ CONVERSATION: Failed to reply to chat {chat_id}: {e}")
                return

    # ==================== MENU ====================

    async def _handle_welcome(self, session: UserSession, text: str) -> StepResult:
        # Prior purchase fields are kept; only the menu framing changes
        return StepResult(
            replies=[TicketMessages.welcome(session.user_name)],
            updates={"state": SessionState.MAIN_MENU},
        )

    async def _handle_main_menu(self, session: UserSession, text: str) -> StepResult:
        option = InputValidator.validate_menu_option(text)

        if option == "1":
            out_of_stock = self.availability.is_vip_out_of_stock()
            return StepResult(
                replies=[TicketMessages.ticket_selection(out_of_stock)],
                updates={"state": SessionState.SELECT_TICKET},
            )
        if option == "2":
            return StepResult(replies=[self._payment_status(session)])
        if option == "3":
            balance = session.wallet_balance or Decimal("0")
            if balance > 0:
                return StepResult(
                    replies=[TicketMessages.wallet_balance(balance)],
                    updates={"state": SessionState.WALLET_TRANSFER},
                )
            return StepResult(replies=[TicketMessages.empty_wallet()])
        return StepResult(replies=[TicketMessages.help()])

    @staticmethod
    def _payment_status(session: UserSession) -> str:
        """Read-only status report; never creates a payment link"""
        ticket = get_ticket(session.ticket_type)
        ticket_name = ticket.name if ticket else DEFAULT_TICKET_NAME
        paid = session.amount_paid or Decimal("0")
        remaining = session.remaining_balance or Decimal("0")
        wallet = session.wallet_balance or Decimal("0")

        if session.ticket_id:
            return TicketMessages.status_completed(ticket_name, session.ticket_id, paid)
        if session.deadline_outcome and wallet > 0:
            return TicketMessages.status_rolled_over(wallet)
        if paid > 0 and remaining > 0:
            return TicketMessages.status_in_progress(ticket_name, paid, remaining, session.next_due_date)
        if paid > 0:
            return TicketMessages.status_awaiting_ticket(ticket_name, paid)
        if session.state == SessionState.AWAITING_PAYMENT and ticket:
            amount = session.discounted_price if session.applied_coupon else session.total_price
            return TicketMessages.status_pending_payment(ticket_name, amount or ticket.price)
        return TicketMessages.no_tickets()

    # ==================== TICKET SELECTION ====================

    async def _handle_select_ticket(self, session: UserSession, text: str) -> StepResult:
        out_of_stock = self.availability.is_vip_out_of_stock()
        ticket_type = InputValidator.validate_ticket_type(text, vip_out_of_stock=out_of_stock)
        ticket = TICKETS[ticket_type]
        return StepResult(
            replies=[TicketMessages.ticket_confirmation(ticket_type)],
            updates={
                "ticket_type": ticket_type,
                "total_price": ticket.price,
                "payment_type": PaymentType.FULL,
                "applied_coupon": None,
                "original_price": None,
                "discounted_price": None,
                "state": SessionState.AWAITING_EMAIL,
            },
        )

    async def _handle_email(self, session: UserSession, text: str) -> StepResult:
        email = InputValidator.validate_email(text)
        return StepResult(
            replies=[TicketMessages.coupon_question(email)],
            updates={"email": email, "state": SessionState.AWAITING_COUPON_ANSWER},
        )

    # ==================== COUPONS ====================

    async def _handle_coupon_answer(self, session: UserSession, text: str) -> StepResult:
        if InputValidator.validate_yes_no(text):
            return StepResult(
                replies=[TicketMessages.coupon_code_prompt()],
                updates={"state": SessionState.AWAITING_COUPON_CODE},
            )
        return await self._full_price_checkout(session)

    async def _handle_coupon_code(self, session: UserSession, text: str) -> StepResult:
        InputValidator.validate_session_for_payment(session)
        full_price = self._full_price(session)
        try:
            code = InputValidator.validate_coupon_code(text)
        except ValidationError:
            code = text.strip()
            check = CouponCheck(reason=NOT_FOUND)
        else:
            check = self.coupon_service.check(code)
        if not check.is_valid:
            logger.info(f"🏷️ CONVERSATION: Coupon {code} rejected for chat {session.chat_id} ({check.reason})")
            return StepResult(
                replies=[TicketMessages.coupon_rejected(check.reason, full_price)],
                updates={"state": SessionState.AWAITING_CONTINUE_ANSWER},
            )

        if not self.coupon_service.reserve(code):
            return StepResult(
                replies=[TicketMessages.coupon_rejected(EXHAUSTED, full_price)],
                updates={"state": SessionState.AWAITING_CONTINUE_ANSWER},
            )

        discounted = self.coupon_service.discounted_price(check.coupon, full_price)
        if discounted <= 0:
            self.coupon_service.release(code)
            raise ValidationError(TicketMessages.coupon_zero_price())

        metadata = PaymentMetadata(
            ticket_type=session.ticket_type.value,
            payment_type=PaymentType.FULL.value,
            coupon_code=code,
        )
        try:
            link, reference = await self.payment_service.generate_payment_link(session.chat_id, discounted, metadata)
        except BackendError:
            self.coupon_service.release(code)
            raise

        return StepResult(
            replies=[TicketMessages.coupon_payment(code, full_price, discounted, link)],
            updates={
                "applied_coupon": code,
                "original_price": full_price,
                "discounted_price": discounted,
                "total_price": discounted,
                "payment_type": PaymentType.FULL,
                "state": SessionState.AWAITING_PAYMENT,
            },
            coupon_reference=reference,
        )

    async def _handle_continue_answer(self, session: UserSession, text: str) -> StepResult:
        if InputValidator.validate_yes_no(text):
            return await self._full_price_checkout(session)

        reset = self.store.reset_to_main_menu(session.chat_id)
        return StepResult(replies=[TicketMessages.welcome(reset.user_name)])

    # ==================== PAYMENT ====================

    @staticmethod
    def _full_price(session: UserSession) -> Decimal:
        return TICKETS[session.ticket_type].price

    async def _full_price_checkout(self, session: UserSession) -> StepResult:
        InputValidator.validate_session_for_payment(session)
        price = self._full_price(session)
        metadata = PaymentMetadata(ticket_type=session.ticket_type.value, payment_type=PaymentType.FULL.value)
        link, _reference = await self.payment_service.generate_payment_link(session.chat_id, price, metadata)
        return StepResult(
            replies=[TicketMessages.full_payment(link)],
            updates={
                "applied_coupon": None,
                "original_price": None,
                "discounted_price": None,
                "total_price": price,
                "payment_type": PaymentType.FULL,
                "state": SessionState.AWAITING_PAYMENT,
            },
        )

    async def _handle_awaiting_payment(self, session: UserSession, text: str) -> StepResult:
        # Only the payment webhook moves a session out of this state
        return StepResult(replies=[TicketMessages.awaiting_payment()])

    # ==================== WALLET ====================

    async def _handle_wallet_transfer(self, session: UserSession, text: str) -> StepResult:
        option = InputValidator.validate_wallet_option(text)
        balance = session.wallet_balance or Decimal("0")
        if balance <= 0:
            return StepResult(
                replies=[TicketMessages.empty_wallet()],
                updates={"state": SessionState.MAIN_MENU},
            )

        destination = WALLET_DESTINATIONS[option]
        # Zeroes the wallet and returns the session to MAIN_MENU in the same transaction
        self.payment_service.process_wallet_transfer(
            session.chat_id, balance, destination.name, expected_version=session.version
        )
        return StepResult(
            replies=[TicketMessages.wallet_transfer_confirmation(balance, destination.name, destination.is_donation)]
        )

    # ==================== LEGACY STATES ====================

    async def _handle_legacy_payment_type(self, session: UserSession, text: str) -> StepResult:
        payment_type = InputValidator.validate_payment_type(text)
        InputValidator.validate_session_for_payment(session)
        return StepResult(
            replies=[TicketMessages.ticket_confirmation(session.ticket_type)],
            updates={"payment_type": payment_type, "state": SessionState.AWAITING_EMAIL},
        )

    async def _handle_legacy_installment_plan(self, session: UserSession, text: str) -> StepResult:
        plan = InputValidator.validate_installment_plan(text)
        InputValidator.validate_session_for_payment(session)

        if plan == InstallmentPlan.C:
            return StepResult(
                replies=[TicketMessages.custom_plan()],
                updates={"installment_plan": plan, "state": SessionState.MAIN_MENU},
            )

        schedule = INSTALLMENT_PLANS[session.ticket_type][plan]
        first_payment = schedule[0]
        metadata = PaymentMetadata(
            ticket_type=session.ticket_type.value,
            payment_type=PaymentType.INSTALLMENT.value,
            installment_number=1,
        )
        link, _reference = await self.payment_service.generate_payment_link(session.chat_id, first_payment, metadata)
        logger.info(
            f"💳 CONVERSATION: Legacy plan {plan.value} for chat {session.chat_id} "
            f"(first payment {first_payment}, deadline {format_date(Config.INSTALLMENT_DEADLINE)})"
        )
        return StepResult(
            replies=[TicketMessages.installment_payment(plan, first_payment, link)],
            updates={
                "installment_plan": plan,
                "payment_type": PaymentType.INSTALLMENT,
                "total_price": self._full_price(session),
                "total_installments": len(schedule),
                "installment_number": 1,
                "state": SessionState.AWAITING_PAYMENT,
            },
        )
