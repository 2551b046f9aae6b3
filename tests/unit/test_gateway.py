"""
Tests for the rate-limited API gateway.
"""

import asyncio

import pytest

from batch_translator.core.llm.exceptions import (
    ApiError,
    ContentSafetyError,
    RateLimitError,
    TranslationCancelledError,
)
from batch_translator.core.llm.gateway import (
    EMPTY_RESPONSE_MESSAGE,
    ApiGateway,
    race_cancellation,
)
from batch_translator.core.llm.rate_limiter import RpmPacer
from conftest import FakeProvider


def raising(error):
    def handler(prompt):
        raise error
    return handler


class TestGenerate:

    @pytest.mark.asyncio
    async def test_returns_text(self):
        provider = FakeProvider(handler=lambda prompt: f"<{prompt}>")
        gateway = ApiGateway(provider)
        assert await gateway.generate("hello") == "<hello>"
        assert gateway.call_count == 1

    @pytest.mark.asyncio
    async def test_passes_system_instruction_and_history(self):
        provider = FakeProvider(handler=lambda prompt: "ok")
        gateway = ApiGateway(provider)
        history = [{"role": "user", "parts": ["hi"]}, {"role": "model", "parts": ["hello"]}]
        await gateway.generate("text", system_instruction="be precise", history=history)
        assert provider.system_instructions == ["be precise"]
        assert provider.histories == [history]

    @pytest.mark.asyncio
    async def test_empty_answer_is_content_safety(self):
        gateway = ApiGateway(FakeProvider(handler=lambda prompt: ""))
        with pytest.raises(ContentSafetyError) as exc_info:
            await gateway.generate("non-empty prompt")
        assert exc_info.value.message == EMPTY_RESPONSE_MESSAGE

    @pytest.mark.asyncio
    async def test_empty_answer_to_blank_prompt_is_accepted(self):
        gateway = ApiGateway(FakeProvider(handler=lambda prompt: ""))
        assert await gateway.generate("   ") == ""

    @pytest.mark.asyncio
    async def test_plain_api_error_is_classified(self):
        gateway = ApiGateway(FakeProvider(handler=raising(ApiError("HTTP 429: RESOURCE_EXHAUSTED"))))
        with pytest.raises(RateLimitError):
            await gateway.generate("text")

    @pytest.mark.asyncio
    async def test_specific_error_passes_through(self):
        error = ContentSafetyError("Prompt blocked: SAFETY")
        gateway = ApiGateway(FakeProvider(handler=raising(error)))
        with pytest.raises(ContentSafetyError) as exc_info:
            await gateway.generate("text")
        assert exc_info.value is error

    @pytest.mark.asyncio
    async def test_pacing_applies_before_each_call(self):
        waits = []

        async def fake_sleep(delay):
            waits.append(delay)

        clock_value = [0.0]
        pacer = RpmPacer(30, clock=lambda: clock_value[0], sleep=fake_sleep)
        gateway = ApiGateway(FakeProvider(), pacer=pacer)
        for _ in range(3):
            await gateway.generate("text")
        assert waits == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_set_requests_per_minute(self):
        gateway = ApiGateway(FakeProvider(), requests_per_minute=2)
        gateway.set_requests_per_minute(30)
        assert gateway.pacer.interval == 2.0


class TestCancellation:

    @pytest.mark.asyncio
    async def test_cancel_event_abandons_pending_call(self):
        provider = FakeProvider(delay=30)
        gateway = ApiGateway(provider)
        cancel_event = asyncio.Event()

        call = asyncio.ensure_future(gateway.generate("slow", cancel_event=cancel_event))
        await provider.started.wait()
        cancel_event.set()

        with pytest.raises(TranslationCancelledError):
            await asyncio.wait_for(call, timeout=2)

    @pytest.mark.asyncio
    async def test_already_set_event_never_calls_provider(self):
        provider = FakeProvider()
        gateway = ApiGateway(provider)
        cancel_event = asyncio.Event()
        cancel_event.set()

        with pytest.raises(TranslationCancelledError):
            await gateway.generate("text", cancel_event=cancel_event)
        await asyncio.sleep(0)
        assert provider.call_count == 0

    @pytest.mark.asyncio
    async def test_withdrawn_while_waiting_for_slot(self):
        allowed = [True]

        async def fake_sleep(delay):
            allowed[0] = False

        pacer = RpmPacer(30, clock=lambda: 0.0, sleep=fake_sleep)
        provider = FakeProvider()
        gateway = ApiGateway(provider, pacer=pacer)

        assert await gateway.generate("first", should_send=lambda: allowed[0]) == "T:first"
        with pytest.raises(TranslationCancelledError):
            await gateway.generate("second", should_send=lambda: allowed[0])
        assert provider.call_count == 1
        assert gateway.call_count == 1

    @pytest.mark.asyncio
    async def test_stream_withdrawn_before_sending(self):
        provider = FakeProvider()
        gateway = ApiGateway(provider)
        with pytest.raises(TranslationCancelledError):
            await gateway.generate_stream("text", should_send=lambda: False)
        assert provider.call_count == 0

    @pytest.mark.asyncio
    async def test_race_without_event(self):
        async def value():
            return 42
        assert await race_cancellation(value(), None) == 42

    @pytest.mark.asyncio
    async def test_race_completes_before_event(self):
        async def value():
            return "done"
        assert await race_cancellation(value(), asyncio.Event()) == "done"


class TestStreaming:

    @pytest.mark.asyncio
    async def test_generate_stream_reports_fragments(self):
        provider = FakeProvider(handler=lambda prompt: "abcdefghijkl")
        gateway = ApiGateway(provider)
        fragments = []
        text = await gateway.generate_stream("text", on_fragment=fragments.append)
        assert text == "abcdefghijkl"
        assert fragments == ["abcde", "fghij", "kl"]

    @pytest.mark.asyncio
    async def test_empty_stream_is_content_safety(self):
        gateway = ApiGateway(FakeProvider(handler=lambda prompt: ""))
        with pytest.raises(ContentSafetyError):
            await gateway.generate_stream("text")

    @pytest.mark.asyncio
    async def test_stream_errors_are_classified(self):
        gateway = ApiGateway(FakeProvider(handler=raising(ApiError("quota: Too Many Requests"))))
        with pytest.raises(RateLimitError):
            await gateway.generate_stream("text")
