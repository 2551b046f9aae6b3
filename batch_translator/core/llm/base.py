"""
Base classes and data structures for LLM providers.

This module defines the abstract base class that all LLM providers must implement,
as well as common data structures like LLMResponse.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional
import httpx

from batch_translator.config import REQUEST_TIMEOUT


@dataclass
class LLMResponse:
    """Response from LLM with token usage information"""
    content: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    finish_reason: Optional[str] = None


@dataclass
class GenerationConfig:
    """Sampling parameters sent with every request"""
    temperature: float = 0.7
    top_p: float = 0.9
    top_k: int = 40
    max_output_tokens: int = 8192
    stop_sequences: Optional[List[str]] = None


class LLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    Providers report every transport or API failure as an ``ApiError``
    (see ``exceptions``); the gateway classifies it further.
    """

    def __init__(self, model: str, timeout: int = REQUEST_TIMEOUT):
        """
        Initialize the LLM provider.

        Args:
            model: Default model name/identifier
            timeout: Request timeout in seconds
        """
        self.model = model
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create a persistent HTTP client with connection pooling"""
        if self._client is None:
            self._client = httpx.AsyncClient(
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
                timeout=httpx.Timeout(self.timeout),
            )
        return self._client

    async def close(self):
        """Close the HTTP client"""
        if self._client:
            await self._client.aclose()
            self._client = None

    @abstractmethod
    async def generate(self, prompt: str, model: Optional[str] = None,
                       system_instruction: Optional[str] = None,
                       generation_config: Optional[GenerationConfig] = None,
                       history: Optional[List[Dict[str, Any]]] = None) -> LLMResponse:
        """
        Generate text from prompt.

        Args:
            prompt: The user prompt
            model: Model override for this call
            system_instruction: Optional system instruction
            generation_config: Sampling parameters
            history: Earlier chat turns sent before the prompt

        Returns:
            LLMResponse with the generated text
        """

    @abstractmethod
    def stream(self, prompt: str, model: Optional[str] = None,
               system_instruction: Optional[str] = None,
               generation_config: Optional[GenerationConfig] = None,
               history: Optional[List[Dict[str, Any]]] = None) -> AsyncIterator[str]:
        """Yield text fragments as the model produces them."""

    async def list_models(self) -> List[str]:
        """Models usable with this provider; the configured model by default."""
        return [self.model]
