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

OLLAMA_BASE_URL = "http://localhost:11434"
OLLAMA_DEFAULT_MODEL = "qwen3:8b"


class OllamaAdapter:
    """Self-hosted Ollama server; needs no credential."""

    id = "ollama"

    def __init__(
        self, config: ProviderConfig, client: Union[httpx.AsyncClient, None] = None
    ) -> None:
        self.config = config
        self.id = config.name
        self.model = config.model
        self.client = client or build_http_client(config)

    async def check_status(self) -> ProviderStatus:
        start = time.perf_counter()
        try:
            resp = await self.client.get("/api/tags")
        except httpx.HTTPError:
            return ProviderStatus(
                online=False,
                model=self.model,
                provider=self.id,
                error="Ollama server not reachable",
            )
        latency_ms = int((time.perf_counter() - start) * 1000)
        if not resp.is_success:
            return ProviderStatus(
                online=False,
                model=self.model,
                provider=self.id,
                latency_ms=latency_ms,
                error=f"Ollama returned {resp.status_code}",
            )
        try:
            data = resp.json()
        except ValueError:
            data = {}
        models = data.get("models") if isinstance(data, dict) else None
        if not isinstance(models, list):
            models = []
        names = [m.get("name", "") for m in models if isinstance(m, dict)]
        status = ProviderStatus(
            online=True,
            model=self.model,
            provider=self.id,
            latency_ms=latency_ms,
            available_models=names,
        )
        if not any(name == self.model or name.startswith(self.model) for name in names):
            # Server is up but would fail generation with an unknown model
            status["online"] = False
            status["error"] = f"model '{self.model}' is not pulled"
        return status

    async def generate(self, request: GenerationRequest) -> str:
        temperature, max_tokens = sampling(self.config, request)
        payload: dict = {
            "model": self.model,
            "prompt": request.prompt,
            "stream": False,
            "options": {"temperature": temperature, "num_predict": max_tokens},
        }
        if self.config.supports_json_mode:
            payload["format"] = "json"

        with provider_errors(self.id, self._format_api_error):
            resp = await self.client.post("/api/generate", json=payload)
            resp.raise_for_status()
        data = response_json(self.id, resp)
        return require_text(self.id, data.get("response"))

    async def generate_with_source_context(self, request: GenerationRequest) -> str:
        return await self.generate(request.with_embedded_source())

    def _format_api_error(self, response: httpx.Response) -> str:
        message = api_error_message(response)
        if response.status_code == 404 and "model" in message.lower():
            return f"❌ Ollama model '{self.model}' not found. Run `ollama pull {self.model}`."
        return f"❌ Ollama error ({response.status_code}): {message}"
