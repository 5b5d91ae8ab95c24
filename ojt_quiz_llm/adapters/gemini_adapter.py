from __future__ import annotations

import time
from typing import Union

import httpx

from ..core.types import GenerationRequest, ProviderConfig
from .base import (
    ProviderStatus,
    api_error_message,
    build_http_client,
    provider_errors,
    require_text,
    response_json,
    sampling,
)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
GEMINI_DEFAULT_MODEL = "gemini-2.0-flash"


class GeminiAdapter:
    id = "gemini"

    def __init__(
        self, config: ProviderConfig, client: Union[httpx.AsyncClient, None] = None
    ) -> None:
        self.config = config
        self.id = config.name
        self.model = config.model
        self.api_key = config.api_key
        self.client = client or build_http_client(config)

    async def check_status(self) -> ProviderStatus:
        if not self.api_key:
            return ProviderStatus(
                online=False, model=self.model, provider=self.id, error="API key not configured"
            )
        start = time.perf_counter()
        try:
            resp = await self.client.get(
                f"/models/{self.model}", params={"key": self.api_key}
            )
        except httpx.HTTPError as e:
            return ProviderStatus(
                online=False, model=self.model, provider=self.id, error=f"unreachable: {e}"
            )
        latency_ms = int((time.perf_counter() - start) * 1000)
        if resp.is_success:
            return ProviderStatus(
                online=True, model=self.model, provider=self.id, latency_ms=latency_ms
            )
        return ProviderStatus(
            online=False,
            model=self.model,
            provider=self.id,
            latency_ms=latency_ms,
            error=self._parse_api_error(resp),
        )

    async def generate(self, request: GenerationRequest) -> str:
        return await self._generate_content(self._payload(request, [{"text": request.prompt}]))

    async def generate_with_source_context(self, request: GenerationRequest) -> str:
        source = request.source
        if source is None:
            return await self.generate(request)
        if source.kind == "file":
            # Uploaded files are referenced by URI; the prompt follows the file part
            parts = [
                {
                    "file_data": {
                        "file_uri": source.uri,
                        "mime_type": source.mime_type or "application/pdf",
                    }
                },
                {"text": request.prompt},
            ]
            return await self._generate_content(self._payload(request, parts))
        if not self.config.supports_url_context:
            return await self.generate(request.with_embedded_source())
        parts = [{"text": f"{request.prompt}\n\nURL: {source.uri}"}]
        payload = self._payload(request, parts)
        # Tool use rejects a JSON response MIME type
        payload["generationConfig"].pop("responseMimeType", None)
        payload["tools"] = [{"url_context": {}}]
        return await self._generate_content(payload)

    def _payload(self, request: GenerationRequest, parts: list[dict]) -> dict:
        temperature, max_tokens = sampling(self.config, request)
        generation_config: dict = {
            "temperature": temperature,
            "maxOutputTokens": max_tokens,
            "candidateCount": 1,
        }
        if self.config.supports_json_mode:
            generation_config["responseMimeType"] = "application/json"
        return {"contents": [{"role": "user", "parts": parts}], "generationConfig": generation_config}

    async def _generate_content(self, payload: dict) -> str:
        url = f"/models/{self.model}:generateContent"
        with provider_errors(self.id, self._parse_api_error):
            response = await self.client.post(
                url,
                json=payload,
                headers={"Content-Type": "application/json"},
                params={"key": self.api_key},
            )
            response.raise_for_status()
        data = response_json(self.id, response)
        return require_text(self.id, self._extract_text(data))

    @staticmethod
    def _extract_text(data: dict) -> Union[str, None]:
        candidates = data.get("candidates") or []
        if not candidates:
            return None
        content = candidates[0].get("content") or {}
        parts = content.get("parts") or []
        if not parts:
            return None
        # url_context responses may split text over several parts
        texts = [part.get("text", "") for part in parts if isinstance(part, dict)]
        return "".join(texts)

    def _parse_api_error(self, response: httpx.Response) -> str:
        """Turn a Gemini error body into an actionable message."""
        message = api_error_message(response)
        status_code = response.status_code
        if status_code == 400:
            if "api key" in message.lower():
                return (
                    "❌ Invalid Gemini API key.\n"
                    "💡 Check the GEMINI_API_KEY environment variable.\n"
                    f"📋 Original error: {message}"
                )
            if "file" in message.lower():
                return (
                    "❌ Uploaded file expired or is not accessible; upload it again.\n"
                    f"📋 Original error: {message}"
                )
            return f"❌ Bad request to Gemini for model '{self.model}'.\n📋 Original error: {message}"
        if status_code in (401, 403):
            return (
                f"❌ Access denied for Gemini model '{self.model}'.\n"
                "💡 Check the API key, that the Generative Language API is enabled and billing.\n"
                f"📋 Original error: {message}"
            )
        if status_code == 404:
            return f"❌ Gemini model '{self.model}' not found.\n📋 Original error: {message}"
        if status_code == 429:
            return (
                "❌ Gemini quota exceeded.\n"
                "💡 Try again in a few moments.\n"
                f"📋 Original error: {message}"
            )
        return f"❌ Gemini API error ({status_code}) for model '{self.model}'.\n📋 Message: {message}"
