"""
Markdown escaping utilities
Safe handling of user-supplied text echoed back in Telegram messages
"""

from typing import Any

# Characters that need escaping in legacy Markdown (parse_mode='Markdown')
MARKDOWN_ESCAPE_CHARS = r"_*`["


def escape_markdown(text: Any) -> str:
    """
    Escape special characters for Telegram legacy Markdown format
    Used for names, e-mails and codes typed by users
    """
    if text is None:
        return ""

    text = str(text)
    if not text:
        return ""

    for char in MARKDOWN_ESCAPE_CHARS:
        text = text.replace(char, f"\\{char}")

    return text
