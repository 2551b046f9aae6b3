"""
Tests for the Gemini provider, served by httpx.MockTransport.
"""

import json

import httpx
import pytest

from batch_translator.core.llm.base import GenerationConfig
from batch_translator.core.llm.exceptions import ApiError, ContentSafetyError, RateLimitError
from batch_translator.core.llm.gateway import ApiGateway
from batch_translator.core.llm.providers.gemini import FALLBACK_MODELS, GeminiProvider


def make_provider(handler) -> GeminiProvider:
    provider = GeminiProvider(api_key="test-key", model="gemini-test", api_base="https://example.test/models")
    provider._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return provider


def answer(text: str, finish_reason: str = "STOP") -> dict:
    return {
        "candidates": [{"content": {"parts": [{"text": text}]}, "finishReason": finish_reason}],
        "usageMetadata": {"promptTokenCount": 7, "candidatesTokenCount": 3},
    }


class TestBuildPayload:

    def test_payload_shape(self):
        provider = GeminiProvider(api_key="k")
        payload = provider.build_payload(
            "Translate this", system_instruction="You translate.",
            generation_config=GenerationConfig(temperature=0.2, top_p=0.5, top_k=10, max_output_tokens=100),
            history=[{"role": "user", "parts": ["earlier"]}, {"role": "model", "parts": [{"text": "reply"}]}],
        )
        assert payload["contents"][0] == {"role": "user", "parts": [{"text": "earlier"}]}
        assert payload["contents"][1] == {"role": "model", "parts": [{"text": "reply"}]}
        assert payload["contents"][-1] == {"role": "user", "parts": [{"text": "Translate this"}]}
        assert payload["generationConfig"] == {
            "temperature": 0.2, "topP": 0.5, "topK": 10, "maxOutputTokens": 100,
        }
        assert payload["systemInstruction"] == {"parts": [{"text": "You translate."}]}

    def test_no_system_instruction(self):
        payload = GeminiProvider(api_key="k").build_payload("x")
        assert "systemInstruction" not in payload


class TestGenerate:

    @pytest.mark.asyncio
    async def test_success(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen['url'] = str(request.url)
            seen['key'] = request.headers.get('x-goog-api-key')
            seen['body'] = json.loads(request.content)
            return httpx.Response(200, json=answer("Bonjour"))

        provider = make_provider(handler)
        response = await provider.generate("Hello")
        await provider.close()

        assert response.content == "Bonjour"
        assert response.prompt_tokens == 7
        assert response.completion_tokens == 3
        assert seen['url'] == "https://example.test/models/gemini-test:generateContent"
        assert seen['key'] == "test-key"
        assert seen['body']['contents'][-1]['parts'][0]['text'] == "Hello"

    @pytest.mark.asyncio
    async def test_thought_parts_are_skipped(self):
        body = {"candidates": [{"content": {"parts": [
            {"text": "thinking...", "thought": True},
            {"text": "Hola"},
        ]}, "finishReason": "STOP"}]}
        provider = make_provider(lambda request: httpx.Response(200, json=body))
        assert (await provider.generate("Hello")).content == "Hola"

    @pytest.mark.asyncio
    async def test_prompt_block(self):
        body = {"promptFeedback": {"blockReason": "PROHIBITED_CONTENT"}}
        provider = make_provider(lambda request: httpx.Response(200, json=body))
        with pytest.raises(ContentSafetyError):
            await provider.generate("bad")

    @pytest.mark.asyncio
    async def test_safety_finish_without_text(self):
        body = {"candidates": [{"finishReason": "SAFETY"}]}
        provider = make_provider(lambda request: httpx.Response(200, json=body))
        with pytest.raises(ContentSafetyError):
            await provider.generate("bad")

    @pytest.mark.asyncio
    async def test_http_error(self):
        provider = make_provider(lambda request: httpx.Response(500, text="internal"))
        with pytest.raises(ApiError) as exc_info:
            await provider.generate("x")
        assert "HTTP 500" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_429_becomes_rate_limit_through_gateway(self):
        body = {"error": {"code": 429, "status": "RESOURCE_EXHAUSTED"}}
        gateway = ApiGateway(make_provider(lambda request: httpx.Response(429, json=body)))
        with pytest.raises(RateLimitError):
            await gateway.generate("x")

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        provider = make_provider(handler)
        with pytest.raises(ApiError) as exc_info:
            await provider.generate("x")
        assert "connection error" in exc_info.value.message


class TestStream:

    @pytest.mark.asyncio
    async def test_sse_fragments(self):
        events = [answer("Bon"), answer("jour")]
        body = "".join(f"data: {json.dumps(event)}\n\n" for event in events)

        def handler(request):
            assert request.url.path.endswith(":streamGenerateContent")
            assert request.url.params["alt"] == "sse"
            return httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})

        provider = make_provider(handler)
        fragments = [fragment async for fragment in provider.stream("Hello")]
        assert fragments == ["Bon", "jour"]

    @pytest.mark.asyncio
    async def test_stream_http_error(self):
        provider = make_provider(lambda request: httpx.Response(403, text="Permission denied"))
        with pytest.raises(ApiError):
            async for _ in provider.stream("x"):
                pass


class TestListModels:

    @pytest.mark.asyncio
    async def test_lists_generate_content_models(self):
        body = {"models": [
            {"name": "models/gemini-2.5-flash", "supportedGenerationMethods": ["generateContent"]},
            {"name": "models/gemini-embedding", "supportedGenerationMethods": ["embedContent"]},
            {"name": "models/other-model", "supportedGenerationMethods": ["generateContent"]},
        ]}
        provider = make_provider(lambda request: httpx.Response(200, json=body))
        assert await provider.list_models() == ["gemini-2.5-flash"]

    @pytest.mark.asyncio
    async def test_fallback_on_error(self):
        provider = make_provider(lambda request: httpx.Response(401, text="no"))
        assert await provider.list_models() == FALLBACK_MODELS
