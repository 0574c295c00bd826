"""Redaction helpers. Everything that reaches a log record goes through here.

Message bodies are never logged. Sender addresses are logged masked.
"""

import re
from decimal import Decimal
from enum import Enum
from typing import Any

_PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-()]{8,}\d")
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

_REDACTED = "[REDACTED]"


def redact_string(value: str) -> str:
    result = _PHONE_PATTERN.sub(_REDACTED, value)
    result = _EMAIL_PATTERN.sub(_REDACTED, result)
    return result


def mask_address(address: str | None) -> str:
    """Mask a sender address, keeping channel prefix and last 3 digits.

    "whatsapp:+256772123456" -> "whatsapp:***456"
    """
    if not address:
        return "null"
    prefix, _, number = address.rpartition(":")
    digits = re.sub(r"\D", "", number)
    tail = digits[-3:] if len(digits) >= 6 else ""
    masked = f"***{tail}"
    return f"{prefix}:{masked}" if prefix else masked


def redact_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, dict):
        # Keys only, never values
        return f"dict(keys={list(value.keys())})"
    if isinstance(value, (list, tuple)):
        return f"list(len={len(value)})"
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    return {k: redact_value(v) for k, v in kwargs.items()}
