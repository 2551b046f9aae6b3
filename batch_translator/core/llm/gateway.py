"""
Rate-limited API gateway.

Wraps an ``LLMProvider`` with:

- RPM pacing (``RpmPacer``), applied before every request start;
- a ``should_send`` check made once the pacing slot is reached, so a
  caller that stopped meanwhile sends nothing;
- error classification into the gateway taxonomy;
- empty-answer detection (an empty reply to a non-empty prompt is a
  content-safety block);
- cooperative cancellation: the call is raced against a cancellation
  event and abandoned when the event fires first.
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from .base import LLMProvider, GenerationConfig
from .exceptions import (
    ApiError,
    ContentSafetyError,
    TranslationCancelledError,
    classify_error,
)
from .rate_limiter import RpmPacer

logger = logging.getLogger(__name__)

EMPTY_RESPONSE_MESSAGE = "API returned an empty response"


async def race_cancellation(awaitable: Awaitable, cancel_event: Optional[asyncio.Event]):
    """
    Await ``awaitable`` unless ``cancel_event`` fires first.

    When the event wins, the pending call is asked to cancel and
    TranslationCancelledError is raised without waiting for it to stop.
    """
    if cancel_event is None:
        return await awaitable

    call = asyncio.ensure_future(awaitable)
    if cancel_event.is_set():
        call.cancel()
        raise TranslationCancelledError()

    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _ = await asyncio.wait({call, waiter}, return_when=asyncio.FIRST_COMPLETED)
        if call in done:
            return call.result()
        raise TranslationCancelledError()
    finally:
        for task in (call, waiter):
            if not task.done():
                task.cancel()


class ApiGateway:
    """
    Single entry point for translation requests.

    One instance is shared by all workers of a job so that they share the
    pacer. The caller owns the instance and closes it with ``close()``.
    """

    def __init__(self, provider: LLMProvider, requests_per_minute: int = 0,
                 pacer: Optional[RpmPacer] = None,
                 default_generation_config: Optional[GenerationConfig] = None):
        self.provider = provider
        self.pacer = pacer or RpmPacer(requests_per_minute)
        self.default_generation_config = default_generation_config or GenerationConfig()
        self.call_count = 0

    def set_requests_per_minute(self, requests_per_minute: int) -> None:
        self.pacer.set_requests_per_minute(requests_per_minute)

    async def _wait_for_slot(self, should_send: Optional[Callable[[], bool]]) -> None:
        await self.pacer.acquire()
        if should_send is not None and not should_send():
            raise TranslationCancelledError("Request withdrawn while waiting for its rate-limit slot")
        self.call_count += 1

    @staticmethod
    def _reclassify(error: ApiError) -> ApiError:
        classified = classify_error(error)
        if classified is not error:
            logger.debug(f"Classified API error as {type(classified).__name__}: {error.message}")
        return classified

    async def generate(self, prompt: str, model: Optional[str] = None,
                       system_instruction: Optional[str] = None,
                       generation_config: Optional[GenerationConfig] = None,
                       history: Optional[List[Dict[str, Any]]] = None,
                       cancel_event: Optional[asyncio.Event] = None,
                       should_send: Optional[Callable[[], bool]] = None) -> str:
        """
        Send one prompt and return the generated text.

        Raises:
            ContentSafetyError, RateLimitError, InvalidRequestError, ApiError:
                classified provider failures
            TranslationCancelledError: if ``cancel_event`` fired first, or
                ``should_send`` returned False when the pacing slot came
        """
        async def call() -> str:
            await self._wait_for_slot(should_send)
            response = await self.provider.generate(
                prompt, model, system_instruction,
                generation_config or self.default_generation_config, history,
            )
            if not response.content and prompt.strip():
                raise ContentSafetyError(EMPTY_RESPONSE_MESSAGE)
            return response.content or ""

        try:
            return await race_cancellation(call(), cancel_event)
        except ApiError as e:
            classified = self._reclassify(e)
            if classified is e:
                raise
            raise classified from e

    async def stream(self, prompt: str, model: Optional[str] = None,
                     system_instruction: Optional[str] = None,
                     generation_config: Optional[GenerationConfig] = None,
                     history: Optional[List[Dict[str, Any]]] = None,
                     should_send: Optional[Callable[[], bool]] = None) -> AsyncIterator[str]:
        """Paced, classified stream of text fragments."""
        await self._wait_for_slot(should_send)
        received = False
        try:
            async for fragment in self.provider.stream(
                prompt, model, system_instruction,
                generation_config or self.default_generation_config, history,
            ):
                received = received or bool(fragment)
                yield fragment
        except ApiError as e:
            classified = self._reclassify(e)
            if classified is e:
                raise
            raise classified from e

        if not received and prompt.strip():
            raise ContentSafetyError(EMPTY_RESPONSE_MESSAGE)

    async def generate_stream(self, prompt: str, model: Optional[str] = None,
                              system_instruction: Optional[str] = None,
                              generation_config: Optional[GenerationConfig] = None,
                              history: Optional[List[Dict[str, Any]]] = None,
                              on_fragment: Optional[Callable[[str], None]] = None,
                              cancel_event: Optional[asyncio.Event] = None,
                              should_send: Optional[Callable[[], bool]] = None) -> str:
        """
        Streaming variant of ``generate``.

        ``on_fragment`` receives every fragment as it arrives; the full
        text is returned at the end.
        """
        async def consume() -> str:
            fragments = []
            async for fragment in self.stream(prompt, model, system_instruction,
                                              generation_config, history, should_send):
                fragments.append(fragment)
                if on_fragment:
                    on_fragment(fragment)
            return "".join(fragments)

        return await race_cancellation(consume(), cancel_event)

    async def list_models(self) -> List[str]:
        return await self.provider.list_models()

    async def close(self):
        await self.provider.close()
