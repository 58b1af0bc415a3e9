"""
Reminder template rendering

Templates use {{name}} placeholders. Supported variables: amount, daysLeft,
paymentLink, dueDate, userName, ticketType. Unknown or missing variables
are left as written so an admin can spot them in the reminder log.
"""

import re
import logging
from decimal import Decimal
from typing import Any, Dict

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def _format_value(name: str, value: Any) -> str:
    if name == "amount":
        return f"{Decimal(str(value)):.2f}"
    return str(value)


def render_template(template: str, variables: Dict[str, Any]) -> str:
    """Substitute {{var}} placeholders; None or empty values are not substituted"""

    def replace(match: "re.Match") -> str:
        name = match.group(1)
        value = variables.get(name)
        if value is None or value == "":
            return match.group(0)
        return _format_value(name, value)

    return PLACEHOLDER_PATTERN.sub(replace, template or "")
