"""
Google Gemini provider implementation.

Talks to the Generative Language REST API with httpx:

- ``generateContent`` for single responses,
- ``streamGenerateContent?alt=sse`` for streamed fragments,
- ``models`` for listing available models.
"""

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from batch_translator.config import REQUEST_TIMEOUT
from ..base import LLMProvider, LLMResponse, GenerationConfig
from ..exceptions import ApiError, ContentSafetyError

logger = logging.getLogger(__name__)

API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"

FALLBACK_MODELS = [
    'gemini-2.0-flash',
    'gemini-2.0-flash-lite',
    'gemini-1.5-pro',
    'gemini-1.5-flash',
    'gemini-1.5-flash-8b',
]

# Finish reasons that mean the candidate was withheld by the provider
BLOCKING_FINISH_REASONS = {'SAFETY', 'RECITATION', 'PROHIBITED_CONTENT', 'BLOCKLIST', 'SPII'}


class GeminiProvider(LLMProvider):
    """
    Provider for Google Gemini API.

    Example:
        >>> provider = GeminiProvider(api_key="AI...", model="gemini-2.5-flash")
        >>> response = await provider.generate("Translate: Hello")
    """

    def __init__(self, api_key: str, model: str = "gemini-2.5-flash",
                 timeout: int = REQUEST_TIMEOUT, api_base: str = API_BASE):
        super().__init__(model, timeout)
        self.api_key = api_key
        self.api_base = api_base.rstrip('/')

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-goog-api-key": self.api_key,
        }

    @staticmethod
    def _history_to_contents(history: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
        contents = []
        for item in history or []:
            parts = []
            for part in item.get('parts', []):
                parts.append({"text": part} if isinstance(part, str) else part)
            if 'content' in item and not parts:
                parts.append({"text": item['content']})
            contents.append({"role": item.get('role', 'user'), "parts": parts})
        return contents

    def build_payload(self, prompt: str, system_instruction: Optional[str] = None,
                      generation_config: Optional[GenerationConfig] = None,
                      history: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        config = generation_config or GenerationConfig()
        payload = {
            "contents": self._history_to_contents(history) + [{
                "role": "user",
                "parts": [{"text": prompt}],
            }],
            "generationConfig": {
                "temperature": config.temperature,
                "topP": config.top_p,
                "topK": config.top_k,
                "maxOutputTokens": config.max_output_tokens,
            },
        }
        if config.stop_sequences:
            payload["generationConfig"]["stopSequences"] = config.stop_sequences

        if system_instruction:
            payload["systemInstruction"] = {"parts": [{"text": system_instruction}]}
        return payload

    @staticmethod
    def _check_blocked(response_json: Dict[str, Any]) -> None:
        """Raise ContentSafetyError when the prompt or candidate was blocked."""
        feedback = response_json.get("promptFeedback") or {}
        if feedback.get("blockReason"):
            raise ContentSafetyError(f"Prompt blocked: {feedback['blockReason']}")

        candidates = response_json.get("candidates") or []
        if candidates:
            finish_reason = candidates[0].get("finishReason")
            if finish_reason in BLOCKING_FINISH_REASONS and not GeminiProvider._extract_text(response_json):
                raise ContentSafetyError(f"Response was blocked (finishReason={finish_reason})")

    @staticmethod
    def _extract_text(response_json: Dict[str, Any]) -> str:
        candidates = response_json.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts if not part.get("thought"))

    @staticmethod
    def _http_error(status_code: int, body: str) -> ApiError:
        return ApiError(f"HTTP {status_code}: {body[:500]}")

    async def generate(self, prompt: str, model: Optional[str] = None,
                       system_instruction: Optional[str] = None,
                       generation_config: Optional[GenerationConfig] = None,
                       history: Optional[List[Dict[str, Any]]] = None) -> LLMResponse:
        """
        Generate text using Gemini API.

        Raises:
            ContentSafetyError: If the prompt or the answer was blocked
            ApiError: For any other HTTP or transport failure
        """
        endpoint = f"{self.api_base}/{model or self.model}:generateContent"
        payload = self.build_payload(prompt, system_instruction, generation_config, history)

        client = await self._get_client()
        try:
            response = await client.post(endpoint, headers=self._headers(), json=payload)
        except httpx.TimeoutException as e:
            raise ApiError(f"Gemini API timeout: {e}", original_error=e) from e
        except httpx.HTTPError as e:
            raise ApiError(f"Gemini API connection error: {e}", original_error=e) from e

        if response.status_code >= 400:
            raise self._http_error(response.status_code, response.text)

        try:
            response_json = response.json()
        except ValueError as e:
            raise ApiError(f"Gemini API returned invalid JSON: {e}", original_error=e) from e

        self._check_blocked(response_json)

        usage_metadata = response_json.get("usageMetadata", {})
        candidates = response_json.get("candidates") or [{}]
        return LLMResponse(
            content=self._extract_text(response_json),
            prompt_tokens=usage_metadata.get("promptTokenCount", 0),
            completion_tokens=usage_metadata.get("candidatesTokenCount", 0),
            finish_reason=candidates[0].get("finishReason"),
        )

    async def stream(self, prompt: str, model: Optional[str] = None,
                     system_instruction: Optional[str] = None,
                     generation_config: Optional[GenerationConfig] = None,
                     history: Optional[List[Dict[str, Any]]] = None) -> AsyncIterator[str]:
        """Yield text fragments from a server-sent-events stream."""
        endpoint = f"{self.api_base}/{model or self.model}:streamGenerateContent?alt=sse"
        payload = self.build_payload(prompt, system_instruction, generation_config, history)

        client = await self._get_client()
        try:
            async with client.stream("POST", endpoint, headers=self._headers(), json=payload) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode('utf-8', errors='replace')
                    raise self._http_error(response.status_code, body)

                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:"):].strip()
                    if not data:
                        continue
                    try:
                        event = json.loads(data)
                    except json.JSONDecodeError as e:
                        raise ApiError(f"Gemini stream returned invalid JSON: {e}", original_error=e) from e
                    self._check_blocked(event)
                    fragment = self._extract_text(event)
                    if fragment:
                        yield fragment
        except httpx.TimeoutException as e:
            raise ApiError(f"Gemini API timeout: {e}", original_error=e) from e
        except httpx.HTTPError as e:
            raise ApiError(f"Gemini API connection error: {e}", original_error=e) from e

    async def list_models(self) -> List[str]:
        """
        Names of the Gemini models that support generateContent.

        Falls back to a fixed list when the API cannot be reached.
        """
        client = await self._get_client()
        try:
            response = await client.get(self.api_base, headers=self._headers(), timeout=10)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Error fetching Gemini models, using fallback list: {e}")
            return list(FALLBACK_MODELS)

        models = []
        for model in data.get("models", []):
            name = model.get("name", "").replace("models/", "")
            if "gemini" not in name:
                continue
            if "generateContent" in model.get("supportedGenerationMethods", ["generateContent"]):
                models.append(name)
        return models or list(FALLBACK_MODELS)
