import re
import time
import uuid
from typing import Any

SENSITIVE_FIELD_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"password", r"passcode", r"secret", r"token", r"auth",
        r"ssn", r"social", r"credit", r"card", r"cvv", r"cvc",
        r"pin\b", r"email", r"phone", r"\bmobile\b", r"user(name)?",
    )
]

REDACTED = "[REDACTED]"


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


def new_id() -> str:
    return str(uuid.uuid4())


def error_message(exc: BaseException) -> str:
    """
    Human-readable message for an exception.

    Falls back to the exception class name when the exception carries no text.
    """
    message = str(exc).strip()
    return message or type(exc).__name__


def is_sensitive_field(field_name: str) -> bool:
    """Whether values of a field with this name must not appear in logs."""
    return any(pattern.search(field_name or "") for pattern in SENSITIVE_FIELD_PATTERNS)


def redact_field_value(field_value: Any) -> str:
    if field_value is None or field_value == "":
        return ""
    return REDACTED
