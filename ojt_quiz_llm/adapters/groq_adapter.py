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

GROQ_BASE_URL = "https://api.groq.com/openai/v1"
GROQ_DEFAULT_MODEL = "llama-3.3-70b-versatile"


class GroqAdapter:
    id = "groq"

    def __init__(
        self, config: ProviderConfig, client: Union[httpx.AsyncClient, None] = None
    ) -> None:
        self.config = config
        self.id = config.name
        self.model = config.model
        self.api_key = config.api_key
        self.client = client or build_http_client(config)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def check_status(self) -> ProviderStatus:
        if not self.api_key:
            return ProviderStatus(
                online=False, model=self.model, provider=self.id, error="API key not configured"
            )
        start = time.perf_counter()
        try:
            resp = await self.client.get("/models", headers=self._headers())
        except httpx.HTTPError as e:
            return ProviderStatus(
                online=False, model=self.model, provider=self.id, error=f"unreachable: {e}"
            )
        latency_ms = int((time.perf_counter() - start) * 1000)
        status = ProviderStatus(
            online=resp.is_success, model=self.model, provider=self.id, latency_ms=latency_ms
        )
        if not resp.is_success:
            status["error"] = self._parse_api_error(resp)
        return status

    async def generate(self, request: GenerationRequest) -> str:
        temperature, max_tokens = sampling(self.config, request)
        payload: dict = {
            "model": self.model,
            "messages": [{"role": "user", "content": request.prompt}],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if self.config.supports_json_mode:
            payload["response_format"] = {"type": "json_object"}

        with provider_errors(self.id, self._parse_api_error):
            resp = await self.client.post(
                "/chat/completions", json=payload, headers=self._headers()
            )
            resp.raise_for_status()
        data = response_json(self.id, resp)
        choices = data.get("choices") or [{}]
        text = (choices[0].get("message") or {}).get("content")
        return require_text(self.id, text)

    async def generate_with_source_context(self, request: GenerationRequest) -> str:
        # No native URL/file ingestion: the source travels inside the prompt
        return await self.generate(request.with_embedded_source())

    def _parse_api_error(self, response: httpx.Response) -> str:
        """Parse Groq API error response and provide actionable error message."""
        message = api_error_message(response)
        status_code = response.status_code
        if status_code == 401:
            return (
                "❌ Authentication failed for Groq API.\n"
                "💡 Check the GROQ_API_KEY environment variable.\n"
                f"📋 Original error: {message}"
            )
        if status_code == 404 and "model" in message.lower():
            return f"❌ Groq model '{self.model}' not found or not accessible.\n📋 Original error: {message}"
        if status_code == 429:
            return (
                "❌ Rate limit exceeded for Groq API.\n"
                "💡 Try again in a few moments or check your usage limits.\n"
                f"📋 Original error: {message}"
            )
        return f"❌ Groq API error ({status_code}) for model '{self.model}'.\n📋 Message: {message}"
