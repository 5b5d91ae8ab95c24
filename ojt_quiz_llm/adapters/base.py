from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Callable, Iterator, Protocol, TypedDict, Union

import httpx

from ..core.errors import ProviderError, classify_status
from ..core.types import FailureKind, GenerationRequest, ProviderConfig


class ProviderStatus(TypedDict, total=False):
    online: bool
    model: str
    provider: str
    latency_ms: int
    error: str
    available_models: list[str]


class ProviderClient(Protocol):
    id: str
    config: ProviderConfig

    async def check_status(self) -> ProviderStatus: ...

    async def generate(self, request: GenerationRequest) -> str: ...

    async def generate_with_source_context(self, request: GenerationRequest) -> str: ...


def build_http_client(config: ProviderConfig) -> httpx.AsyncClient:
    proxy = os.environ.get("HTTPS_PROXY") or os.environ.get("HTTP_PROXY")
    if proxy:
        return httpx.AsyncClient(
            base_url=config.base_url, timeout=config.timeout_seconds, proxy=proxy
        )
    return httpx.AsyncClient(base_url=config.base_url, timeout=config.timeout_seconds)


def api_error_message(response: httpx.Response) -> str:
    """Best-effort extraction of the vendor error message from an error body."""
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        if payload.get("message"):
            return str(payload["message"])
    return response.text[:200]


@contextmanager
def provider_errors(
    provider: str, describe: Callable[[httpx.Response], str]
) -> Iterator[None]:
    """Translate httpx failures raised inside the block into ProviderError."""
    try:
        yield
    except httpx.HTTPStatusError as e:
        status = e.response.status_code
        raise ProviderError(
            provider, classify_status(status), describe(e.response), status_code=status
        ) from e
    except httpx.TimeoutException as e:
        raise ProviderError(provider, FailureKind.NETWORK, f"{provider} request timed out") from e
    except httpx.HTTPError as e:
        raise ProviderError(
            provider, FailureKind.NETWORK, f"{provider} request failed: {e}"
        ) from e


def response_json(provider: str, response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError as e:
        raise ProviderError(
            provider, FailureKind.EMPTY, f"{provider} returned a non-JSON body"
        ) from e
    return data if isinstance(data, dict) else {}


def require_text(provider: str, text: Union[str, None]) -> str:
    if not text or not text.strip():
        raise ProviderError(provider, FailureKind.EMPTY, f"{provider} returned an empty response")
    return text


def sampling(config: ProviderConfig, request: GenerationRequest) -> tuple[float, int]:
    temperature = config.temperature if request.temperature is None else request.temperature
    max_tokens = config.max_tokens if request.max_tokens is None else request.max_tokens
    return temperature, max_tokens
