"""
Exception Handler Module
Provides custom exceptions and error handling decorators
"""

import logging
import functools
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base application error"""

    def __init__(self, message: str, code: str = "APP_ERROR", is_operational: bool = True):
        self.message = message
        self.code = code
        self.is_operational = is_operational
        super().__init__(message)


class ValidationError(AppError):
    """User input did not satisfy the current step; the message is shown to the user"""

    def __init__(self, message: str):
        super().__init__(message, code="VALIDATION_ERROR")


class BackendError(AppError):
    """A dependency (payment provider, wallet transfer) failed; retryable"""

    def __init__(self, message: str, code: str = "BACKEND_ERROR", status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message, code=code)


class PaymentError(BackendError):
    """Payment provider rejected or could not process a payment operation"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, code="PAYMENT_ERROR", status_code=status_code)


class SessionError(AppError):
    """The session store could not be read or written"""

    def __init__(self, message: str, code: str = "SESSION_ERROR"):
        super().__init__(message, code=code)


class SessionConflictError(SessionError):
    """Compare-and-swap write lost against a concurrent writer"""

    def __init__(self, chat_id: str, expected_version: int):
        self.chat_id = chat_id
        self.expected_version = expected_version
        super().__init__(
            f"Session {chat_id} changed concurrently (expected version {expected_version})",
            code="SESSION_CONFLICT",
        )


def safe_telegram_handler(func: Callable) -> Callable:
    """
    Decorator to safely handle telegram handler functions
    Catches exceptions and logs them without crashing the bot
    """

    @functools.wraps(func)
    async def wrapper(*args, **kwargs) -> Any:
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            logger.error(f"Error in telegram handler {func.__name__}: {type(e).__name__}: {e}", exc_info=True)
            # Don't re-raise to prevent bot crashes
            return None

    return wrapper
