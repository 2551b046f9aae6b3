"""
LLM Provider Implementations

Providers:
    - gemini: Google Gemini API
"""

from .gemini import GeminiProvider

__all__ = ['GeminiProvider']
