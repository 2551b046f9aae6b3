"""
Error taxonomy of the API gateway.

Callers decide between retry and abort from the category alone, so the
classification is exposed as plain functions as well as exception types.
Classification matches the error message against fixed keyword sets
(case-insensitive substring match), checking content safety first, then
rate limiting, then invalid requests.
"""

from enum import Enum
from typing import Optional, Dict, Any

from ..exceptions import TranslationError


CONTENT_SAFETY_PATTERNS = (
    'PROHIBITED_CONTENT',
    'SAFETY',
    'response was blocked',
    'BLOCKED_PROMPT',
    'SAFETY_BLOCKED',
    'blocked due to safety',
    'RECITATION',
    'HARM_CATEGORY',
)

RATE_LIMIT_PATTERNS = (
    'rateLimitExceeded',
    '429',
    'Too Many Requests',
    'QUOTA_EXCEEDED',
    'RESOURCE_EXHAUSTED',
    'overloaded',
)

INVALID_REQUEST_PATTERNS = (
    'Invalid API key',
    'API key not valid',
    'Permission denied',
    'Invalid model name',
    'model is not found',
    '400',
    'INVALID_ARGUMENT',
)


class ErrorCategory(Enum):
    CONTENT_SAFETY = "content_safety"
    RATE_LIMIT = "rate_limit"
    INVALID_REQUEST = "invalid_request"
    API = "api"


class ApiError(TranslationError):
    """Generic failure of the external translation capability."""

    category = ErrorCategory.API

    def __init__(self, message: str, original_error: Optional[Exception] = None,
                 context: Optional[Dict[str, Any]] = None, recoverable: bool = False):
        super().__init__(message, context, recoverable)
        self.original_error = original_error


class ContentSafetyError(ApiError):
    """The provider refused to answer because of its content policy.

    Recoverable by splitting the unit into smaller pieces.
    """

    category = ErrorCategory.CONTENT_SAFETY

    def __init__(self, message: str, original_error: Optional[Exception] = None,
                 context: Optional[Dict[str, Any]] = None):
        super().__init__(message, original_error, context, recoverable=True)


class RateLimitError(ApiError):
    """Quota exhausted or provider overloaded; stops the whole job."""

    category = ErrorCategory.RATE_LIMIT


class InvalidRequestError(ApiError):
    """Bad key, model name or arguments; not retried automatically."""

    category = ErrorCategory.INVALID_REQUEST


class TranslationCancelledError(TranslationError):
    """A user stop request abandoned the call."""

    def __init__(self, message: str = "Translation cancelled by user",
                 context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context, recoverable=True)


_CATEGORY_CLASSES = {
    ErrorCategory.CONTENT_SAFETY: ContentSafetyError,
    ErrorCategory.RATE_LIMIT: RateLimitError,
    ErrorCategory.INVALID_REQUEST: InvalidRequestError,
    ErrorCategory.API: ApiError,
}


def _matches(message: str, patterns) -> bool:
    return any(pattern.lower() in message for pattern in patterns)


def classify_error_message(message: str) -> ErrorCategory:
    """Map an error message to its category."""
    lowered = (message or '').lower()
    if _matches(lowered, CONTENT_SAFETY_PATTERNS):
        return ErrorCategory.CONTENT_SAFETY
    if _matches(lowered, RATE_LIMIT_PATTERNS):
        return ErrorCategory.RATE_LIMIT
    if _matches(lowered, INVALID_REQUEST_PATTERNS):
        return ErrorCategory.INVALID_REQUEST
    return ErrorCategory.API


def classify_error(error: Exception) -> ApiError:
    """
    Turn any provider error into the matching ApiError subclass.

    Errors that already carry a specific category are returned unchanged.
    """
    if isinstance(error, ApiError) and type(error) is not ApiError:
        return error

    message = error.message if isinstance(error, TranslationError) else str(error)
    category = classify_error_message(message)
    original = error.original_error if isinstance(error, ApiError) else error
    return _CATEGORY_CLASSES[category](message, original_error=original)


def is_content_safety_error(error: Exception) -> bool:
    return isinstance(classify_error(error), ContentSafetyError)


def is_rate_limit_error(error: Exception) -> bool:
    return isinstance(classify_error(error), RateLimitError)
