"""Provider fallback chain with per-provider retry.

The orchestrator owns a fixed, ordered set of providers. A call tries the
active provider with retry-in-place, then walks the fallback chain once,
trying each healthy provider a single time. Nothing about the active
provider is stored on the instance, so concurrent calls stay independent.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Sequence, TypeVar, Union

from tenacity import RetryCallState

from ..adapters.base import ProviderClient, ProviderStatus
from .errors import (
    AllProvidersFailedError,
    GenerationCancelledError,
    ProviderError,
    UnknownProviderError,
    terminal_reason,
)
from .retry_policy import RetryPolicy
from .types import GenerationRequest, GenerationResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FallbackOrchestrator:
    def __init__(
        self,
        providers: Iterable[ProviderClient],
        fallback_chain: Union[Sequence[str], None] = None,
        default_provider: Union[str, None] = None,
        retry_policy: Union[RetryPolicy, None] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.providers: dict[str, ProviderClient] = {p.id: p for p in providers}
        if fallback_chain is None:
            fallback_chain = list(self.providers)
        unknown = [name for name in fallback_chain if name not in self.providers]
        if unknown:
            raise ValueError(f"Fallback chain names unknown providers: {', '.join(unknown)}")
        self.fallback_chain: tuple[str, ...] = tuple(fallback_chain)
        if default_provider is not None and default_provider not in self.providers:
            raise ValueError(f"Unknown default provider: {default_provider}")
        self.default_provider = default_provider or (
            self.fallback_chain[0] if self.fallback_chain else None
        )
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    def get_provider(self, name: str) -> ProviderClient:
        try:
            return self.providers[name]
        except KeyError:
            raise UnknownProviderError(f"Unknown provider: {name}") from None

    async def check_all_status(self) -> dict[str, ProviderStatus]:
        results: dict[str, ProviderStatus] = {}
        for name, provider in self.providers.items():
            results[name] = await provider.check_status()
        return results

    async def generate(
        self,
        request: GenerationRequest,
        *,
        use_fallback: bool = True,
        active: Union[str, None] = None,
        cancel: Union[asyncio.Event, None] = None,
    ) -> GenerationResult:
        attempts: list[tuple[str, str]] = []
        tried: set[str] = set()

        active_name = active or self.default_provider
        if active_name is not None:
            provider = self.get_provider(active_name)
            tried.add(active_name)
            try:
                text = await self._generate_with_retry(provider, request, cancel)
                return GenerationResult(text=text, provider=provider.id, fallback_used=False)
            except ProviderError as exc:
                attempts.append((provider.id, exc.reason))
                if not use_fallback:
                    raise

        for name in self.fallback_chain:
            if name in tried:
                continue
            tried.add(name)
            provider = self.providers[name]
            self._check_cancel(cancel)
            status = await self._run_cancellable(provider.check_status(), cancel)
            if not status.get("online"):
                reason = f"offline: {status.get('error', 'status check failed')}"
                logger.info("provider=%s attempt=fallback outcome=skipped (%s)", name, reason)
                attempts.append((name, reason))
                continue
            try:
                text = await self._call(provider, request, cancel, attempt=1)
            except ProviderError as exc:
                attempts.append((name, exc.reason))
                continue
            return GenerationResult(text=text, provider=provider.id, fallback_used=True)

        logger.error("all providers failed: %s", ", ".join(n for n, _ in attempts) or "none")
        raise AllProvidersFailedError(attempts)

    async def _generate_with_retry(
        self,
        provider: ProviderClient,
        request: GenerationRequest,
        cancel: Union[asyncio.Event, None],
    ) -> str:
        state = self.retry_policy.new_state()

        def _log_retry(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            delay_ms = state.delays_ms[-1] if state.delays_ms else 0
            logger.warning(
                "provider=%s retrying in %dms (%d/%d) after %s",
                provider.id,
                delay_ms,
                retry_state.attempt_number,
                state.max_retries,
                terminal_reason(exc) if exc else "failure",
            )

        async def _sleep(seconds: float) -> None:
            if cancel is None:
                await self._sleep(seconds)
                return
            try:
                await asyncio.wait_for(cancel.wait(), timeout=seconds)
            except asyncio.TimeoutError:
                return
            raise GenerationCancelledError("generation cancelled during backoff")

        async for attempt in self.retry_policy.retrying(state, _sleep, _log_retry):
            with attempt:
                return await self._call(
                    provider, request, cancel, attempt=attempt.retry_state.attempt_number
                )
        raise AssertionError("unreachable")  # pragma: no cover

    async def _call(
        self,
        provider: ProviderClient,
        request: GenerationRequest,
        cancel: Union[asyncio.Event, None],
        attempt: int,
    ) -> str:
        self._check_cancel(cancel)
        if request.source is not None:
            coro = provider.generate_with_source_context(request)
        else:
            coro = provider.generate(request)
        try:
            text = await self._run_cancellable(coro, cancel)
        except ProviderError as exc:
            logger.warning(
                "provider=%s attempt=%d outcome=failed %s", provider.id, attempt, exc.reason
            )
            raise
        logger.info("provider=%s attempt=%d outcome=ok chars=%d", provider.id, attempt, len(text))
        return text

    @staticmethod
    def _check_cancel(cancel: Union[asyncio.Event, None]) -> None:
        if cancel is not None and cancel.is_set():
            raise GenerationCancelledError("generation cancelled")

    @staticmethod
    async def _run_cancellable(
        coro: Awaitable[T], cancel: Union[asyncio.Event, None]
    ) -> T:
        if cancel is None:
            return await coro
        task = asyncio.ensure_future(coro)
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
        if task in done:
            return task.result()
        # partial results are discarded
        await asyncio.gather(task, return_exceptions=True)
        raise GenerationCancelledError("generation cancelled while a request was in flight")
