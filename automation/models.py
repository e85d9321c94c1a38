from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional


@dataclass
class SubmissionResult:
    """Result of filling and submitting one form for one data row."""

    profile: str
    row: Any
    form: str
    filled: List[str] = field(default_factory=list)
    synthetic: bool = False
    status: str = "success"


@dataclass
class FallbackContext:
    """What the fallback handler may use when no form could be detected."""

    page: Any = None
    url: Optional[str] = None
    solve_captcha: Optional[Callable[[], Awaitable[bool]]] = None


class FormSubmissionError(Exception):
    """Raised when a row could not be filled into a form and submitted."""

    def __init__(self, message: str, url: Optional[str] = None):
        self.url = url
        self.message = f"{message} ({url})" if url else message
        super().__init__(self.message)


class FormNotFoundError(FormSubmissionError):
    """Raised when neither structural nor visual detection finds a form."""

    def __init__(self, url: Optional[str] = None):
        super().__init__("No form found", url)


class NoMatchingFieldsError(FormSubmissionError):
    """Raised when forms were found but none had a field matching the row."""

    def __init__(self, url: Optional[str] = None):
        super().__init__("No form fields matched data to fill", url)
