"""
Rate-limited access to the translation model.
"""

from .base import LLMProvider, LLMResponse, GenerationConfig
from .exceptions import (
    ErrorCategory,
    ApiError,
    ContentSafetyError,
    RateLimitError,
    InvalidRequestError,
    TranslationCancelledError,
    classify_error,
    classify_error_message,
    is_content_safety_error,
    is_rate_limit_error,
)
from .rate_limiter import RpmPacer
from .gateway import ApiGateway, race_cancellation

__all__ = [
    'LLMProvider',
    'LLMResponse',
    'GenerationConfig',
    'ErrorCategory',
    'ApiError',
    'ContentSafetyError',
    'RateLimitError',
    'InvalidRequestError',
    'TranslationCancelledError',
    'classify_error',
    'classify_error_message',
    'is_content_safety_error',
    'is_rate_limit_error',
    'RpmPacer',
    'ApiGateway',
    'race_cancellation',
]
