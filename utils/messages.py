"""Chat message texts for the ticket funnel (Telegram legacy Markdown)"""

from decimal import Decimal
from typing import Optional
from config import Config
from models import TicketType, InstallmentPlan
from utils.constants import TICKETS
from utils.markdown_escaping import escape_markdown


def money(amount) -> str:
    """GH₵ display form with two decimals"""
    return f"GH₵{Decimal(str(amount or 0)):.2f}"


WALLET_OPTIONS_BLOCK = (
    "1️⃣ AfroFuture 2026\n"
    "2️⃣ AfroFuture Weekender\n"
    "3️⃣ Donate to AfroFuture Foundation"
)


class TicketMessages:
    """Centralized user-facing texts"""

    # ==================== MENU ====================

    @staticmethod
    def welcome(user_name: str) -> str:
        name = escape_markdown(user_name or "there")
        return (
            f"👋🏾 Hi {name}! Welcome to *{Config.EVENT_NAME}*, Africa's biggest cultural celebration!\n\n"
            f"📍 *{Config.EVENT_LOCATION}*\n"
            f"📅 *{Config.EVENT_DATES}*\n\n"
            "What would you like to do today?\n\n"
            "1️⃣ Buy a Ticket\n"
            "2️⃣ Check My Payment Status\n"
            "3️⃣ Transfer / Use My Wallet Balance\n"
            "4️⃣ Help / Contact Support\n\n"
            "_Please keep this chat to receive your QR ticket, reminders & lineup announcements._"
        )

    @staticmethod
    def help() -> str:
        return (
            "💬 *Need assistance? Our team is here to help!*\n\n"
            f"📞 Phone: {Config.SUPPORT_PHONE}\n"
            f"📧 Email: {Config.SUPPORT_EMAIL}\n\n"
            "*Common Questions:*\n\n"
            "❓ How do I get my ticket?\n"
            "   → After payment, your QR code will be sent to this chat\n\n"
            "❓ Can I transfer my ticket?\n"
            "   → Contact support for ticket transfers\n\n"
            "❓ What if I miss an installment?\n"
            "   → Your balance moves to your AfroFuture Wallet\n\n"
            "❓ Refund policy?\n"
            "   → Contact support for refund requests\n\n"
            "Type *menu* to return to the main menu."
        )

    # ==================== TICKET SELECTION ====================

    @staticmethod
    def ticket_selection(vip_out_of_stock: bool) -> str:
        ga = TICKETS[TicketType.GA]
        vip = TICKETS[TicketType.VIP]
        lines = [
            "🎟️ *Choose your ticket type* (Both Days Included):\n",
            f"*A.* {ga.name} — {money(ga.price)}",
            f"   {ga.description}\n",
        ]
        if vip_out_of_stock:
            lines.append("⚠️ *VIP tickets are currently out of stock.*\n")
            lines.append("Reply with *A* to select.")
        else:
            lines.append(f"*B.* {vip.name} — {money(vip.price)}")
            lines.append(f"   {vip.description}\n")
            lines.append("Reply with *A* or *B* to select.")
        return "\n".join(lines)

    @staticmethod
    def ticket_confirmation(ticket_type: TicketType) -> str:
        ticket = TICKETS[ticket_type]
        return (
            f"✅ You selected *{ticket.name}* — {money(ticket.price)}\n\n"
            "📧 Before we generate your payment link, please reply with your *email address* "
            "(e.g. name@example.com). We'll send your receipt and ticket details there."
        )

    # ==================== COUPONS ====================

    @staticmethod
    def coupon_question(email: str) -> str:
        return (
            f"📧 Thanks! We'll send your receipt to *{escape_markdown(email)}*.\n\n"
            "🏷️ Do you have a coupon code?\n\n"
            "Reply *YES* or *NO*."
        )

    @staticmethod
    def coupon_code_prompt() -> str:
        return "🏷️ Please reply with your *coupon code*."

    @staticmethod
    def coupon_rejected(reason: str, full_price: Decimal) -> str:
        reasons = {
            "not_found": "❌ That coupon code was not found.",
            "inactive": "❌ That coupon is no longer active.",
            "expired": "❌ That coupon has expired.",
            "exhausted": "❌ That coupon has reached its usage limit.",
        }
        headline = reasons.get(reason, "❌ That coupon can't be applied.")
        return (
            f"{headline}\n\n"
            f"Would you like to continue at the full price of *{money(full_price)}*?\n\n"
            "Reply *YES* to continue or *NO* to return to the main menu."
        )

    @staticmethod
    def coupon_zero_price() -> str:
        return (
            "❌ That coupon can't be used for an online payment. "
            f"Please contact support at {Config.SUPPORT_EMAIL}, or reply with a different code."
        )

    @staticmethod
    def coupon_payment(code: str, original_price: Decimal, discounted_price: Decimal, payment_link: str) -> str:
        return (
            f"🏷️ *Coupon {escape_markdown(code)} applied!*\n\n"
            f"Price: {money(original_price)} → *{money(discounted_price)}*\n\n"
            f"Click to pay:\n{payment_link}\n\n"
            "Once payment is confirmed, you will receive your:\n"
            "✅ Payment confirmation\n"
            "🎫 Ticket ID\n"
            "🔳 Official QR Code Ticket (sent here in this chat)\n\n"
            "_The payment link is valid for 24 hours._"
        )

    # ==================== PAYMENTS ====================

    @staticmethod
    def full_payment(payment_link: str) -> str:
        return (
            "🎫 *Perfect, let's secure your spot!*\n\n"
            f"Click to pay:\n{payment_link}\n\n"
            "Once payment is confirmed, you will receive your:\n"
            "✅ Payment confirmation\n"
            "🎫 Ticket ID\n"
            "🔳 Official QR Code Ticket (sent here in this chat)\n\n"
            "_The payment link is valid for 24 hours._"
        )

    @staticmethod
    def awaiting_payment() -> str:
        return (
            "⏳ Please complete your payment using the link provided. "
            "Once confirmed, you'll receive your ticket automatically."
        )

    @staticmethod
    def payment_confirmed(ticket_name: str) -> str:
        return (
            "✅ Payment Confirmed!\n\n"
            f"🎫 Ticket: {ticket_name}\n\n"
            "👥 An AfroFuture admin will send your official ticket and QR code to this chat shortly.\n\n"
            "Thank you for your payment!"
        )

    @staticmethod
    def installment_confirmation(
        ticket_name: str,
        installment_number: int,
        total_installments: Optional[int],
        remaining_balance: Decimal,
        next_due_date: Optional[str],
    ) -> str:
        total = total_installments or installment_number
        text = (
            "✅ *Payment received!*\n\n"
            f"🎫 Ticket: {ticket_name}\n"
            f"💰 Installment: {installment_number}/{total}\n"
            f"💵 Remaining Balance: {money(remaining_balance)}\n"
        )
        if remaining_balance <= 0:
            return text + "\n🎉 *Fully Paid!* Your QR ticket will be sent shortly."
        return (
            text
            + f"📅 Next Due Date: {next_due_date or 'TBC'}\n\n"
            + "_A reminder will be sent 5 days before your next payment._"
        )

    @staticmethod
    def installment_payment(plan: InstallmentPlan, first_payment: Decimal, payment_link: str) -> str:
        return (
            f"💳 *Payment Plan {plan.value} Selected*\n\n"
            f"First payment: {money(first_payment)}\n\n"
            f"Click to pay:\n{payment_link}\n\n"
            "_You'll receive a confirmation once payment is processed._"
        )

    @staticmethod
    def custom_plan() -> str:
        return (
            "📞 *Custom Plan Selected*\n\n"
            "Our team will contact you within 24 hours to arrange a custom payment schedule.\n\n"
            f"Support: {Config.SUPPORT_PHONE}\n"
            f"Email: {Config.SUPPORT_EMAIL}"
        )

    # ==================== STATUS ====================

    @staticmethod
    def status_completed(ticket_name: str, ticket_id: str, amount_paid: Decimal) -> str:
        return (
            "✅ *Payment Status: COMPLETED*\n\n"
            f"🎫 Ticket: {ticket_name}\n"
            f"🆔 Ticket ID: #{ticket_id}\n"
            f"💰 Paid: {money(amount_paid)}\n"
            f"📅 Event: {Config.EVENT_DATES}\n\n"
            "Your QR ticket has been sent to this chat. 🎉"
        )

    @staticmethod
    def status_awaiting_ticket(ticket_name: str, amount_paid: Decimal) -> str:
        return (
            "✅ *Payment Status: PAID*\n\n"
            f"🎫 Ticket: {ticket_name}\n"
            f"💰 Paid: {money(amount_paid)}\n\n"
            "👥 An AfroFuture admin will send your official ticket and QR code to this chat shortly."
        )

    @staticmethod
    def status_in_progress(ticket_name: str, amount_paid: Decimal, balance: Decimal, next_due_date: Optional[str]) -> str:
        return (
            "💳 *Payment Status: IN PROGRESS*\n\n"
            f"🎫 Ticket: {ticket_name}\n"
            f"✅ Paid: {money(amount_paid)}\n"
            f"💵 Balance: {money(balance)}\n"
            f"📅 Next Payment Due: {next_due_date or 'TBC'}\n\n"
            "_A fresh payment link will be sent with your next reminder._"
        )

    @staticmethod
    def status_pending_payment(ticket_name: str, amount: Decimal) -> str:
        return (
            "⏳ *Payment Status: AWAITING PAYMENT*\n\n"
            f"🎫 Ticket: {ticket_name}\n"
            f"💵 Amount: {money(amount)}\n\n"
            "We haven't received your payment yet. Use the link we sent you to complete it."
        )

    @staticmethod
    def status_rolled_over(wallet_balance: Decimal) -> str:
        return (
            "📭 *Payment Status: INSTALLMENT WINDOW CLOSED*\n\n"
            f"💰 Wallet balance: {money(wallet_balance)}\n\n"
            "Reply *3* from the main menu to use your wallet balance."
        )

    @staticmethod
    def no_tickets() -> str:
        return "You don't have any tickets yet.\n\nType *1* to buy a ticket!"

    # ==================== WALLET ====================

    @staticmethod
    def wallet_balance(balance: Decimal) -> str:
        return (
            "💰 *AfroFuture Wallet Balance*\n\n"
            f"Your balance: {money(balance)}\n\n"
            "Choose how to use it:\n"
            f"{WALLET_OPTIONS_BLOCK}\n\n"
            "Reply 1, 2, or 3."
        )

    @staticmethod
    def wallet_transfer_confirmation(amount: Decimal, destination: str, is_donation: bool) -> str:
        if is_donation:
            thank_you = "🙏 Thank you for your generous donation to the AfroFuture Foundation!"
        else:
            thank_you = f"🎉 Your balance is reserved for {destination}. You'll be notified when tickets go on sale!"
        return (
            "✅ *Transfer Complete!*\n\n"
            f"💰 {money(amount)} has been transferred to *{destination}*\n\n"
            f"{thank_you}\n\n"
            "Type *menu* to return to main menu."
        )

    @staticmethod
    def empty_wallet() -> str:
        return "Your wallet balance is GH₵0.00\n\nType *menu* to see all options."

    # ==================== REMINDERS & DEADLINES ====================

    @staticmethod
    def five_day_reminder(amount: Decimal, days_left: int, payment_link: str) -> str:
        return (
            f"🔔 Hi there, your next AfroFuture payment of {money(amount)} is due in {days_left} days.\n\n"
            f"Pay now: {payment_link}\n\n"
            f"_Don't miss out on your spot at {Config.EVENT_LOCATION}!_"
        )

    @staticmethod
    def one_day_reminder(amount: Decimal, payment_link: str, due_date: Optional[str]) -> str:
        return (
            "⏰ *Reminder, final call!*\n\n"
            f"{money(amount)} due *tomorrow*.\n\n"
            f"Pay to keep your ticket confirmed: {payment_link}\n\n"
            f"⚠️ _Final deadline: {due_date or 'tomorrow'}_"
        )

    @staticmethod
    def deadline_downgrade(
        amount_paid: Decimal,
        original_price: Decimal,
        downgraded_ticket_name: str,
        ticket_id: str,
        wallet_amount: Decimal,
    ) -> str:
        return (
            "Hi there, your installment window closed.\n\n"
            f"You paid {money(amount_paid)} of {money(original_price)}.\n\n"
            f"✅ You qualify for *{downgraded_ticket_name}*\n"
            f"🆔 Ticket ID: #{ticket_id}\n\n"
            f"💰 Your remaining balance {money(wallet_amount)} has been added to your AfroFuture Wallet.\n\n"
            "*Options:*\n"
            "1️⃣ Transfer to AfroFuture 2026\n"
            "2️⃣ Use for AfroFuture Weekender\n"
            "3️⃣ Donate to AfroFuture Foundation\n\n"
            "Reply 1, 2, or 3 to choose."
        )

    @staticmethod
    def deadline_full_rollover(amount_paid: Decimal, original_price: Decimal) -> str:
        return (
            "Hi there, your installment window closed.\n\n"
            f"You paid {money(amount_paid)} of {money(original_price)}.\n\n"
            "💰 Your balance has been moved to your AfroFuture Wallet.\n\n"
            "*Choose how to use it:*\n"
            f"{WALLET_OPTIONS_BLOCK}\n\n"
            "Reply 1, 2, or 3."
        )

    # ==================== ERRORS ====================

    @staticmethod
    def backend_unavailable() -> str:
        return "⚠️ We couldn't reach our payment system just now. Please try again in a moment."

    @staticmethod
    def generic_error() -> str:
        return "😔 Sorry, something went wrong. Please try again, or type *menu* to start over."

