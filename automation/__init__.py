from .fallback import FallbackHandler
from .models import (
    FallbackContext,
    FormNotFoundError,
    FormSubmissionError,
    NoMatchingFieldsError,
    SubmissionResult,
)
from .submitter import FormSubmitter, detect_page_forms

__all__ = [
    "FallbackHandler",
    "FallbackContext",
    "FormNotFoundError",
    "FormSubmissionError",
    "NoMatchingFieldsError",
    "SubmissionResult",
    "FormSubmitter",
    "detect_page_forms",
]
