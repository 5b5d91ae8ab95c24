"""Retry-in-place rules for a single provider.

The policy is pure: it answers "retry?" and "how long to wait?" and builds
the tenacity strategies the orchestrator drives its attempt loop with.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Union

from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt

from .errors import TRANSIENT_KINDS, ProviderError
from .types import FailureKind, RetryState

MAX_RETRIES_CEILING = 5

DEFAULT_RETRYABLE = TRANSIENT_KINDS


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: Union[int, None] = None
    retryable: frozenset = DEFAULT_RETRYABLE

    def __post_init__(self) -> None:
        if self.max_retries < 0 or self.max_retries > MAX_RETRIES_CEILING:
            raise ValueError(
                f"max_retries must be between 0 and {MAX_RETRIES_CEILING}, got {self.max_retries}"
            )

    def should_retry(
        self, kind: FailureKind, attempt_index: int, max_retries: Union[int, None] = None
    ) -> bool:
        limit = self.max_retries if max_retries is None else max_retries
        return kind in self.retryable and attempt_index < limit

    def backoff_delay(self, attempt_index: int) -> int:
        delay = self.base_delay_ms * (2 ** attempt_index)
        if self.max_delay_ms is not None:
            return min(delay, self.max_delay_ms)
        return delay

    def new_state(self) -> RetryState:
        return RetryState(max_retries=self.max_retries)

    def retrying(
        self,
        state: RetryState,
        sleep: Callable[[float], Awaitable[None]],
        before_sleep: Union[Callable[[RetryCallState], None], None] = None,
    ) -> AsyncRetrying:
        """Build the tenacity loop for one provider; ``state`` records the schedule."""

        def _retry(retry_state: RetryCallState) -> bool:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            if not isinstance(exc, ProviderError):
                return False
            state.attempt_index = retry_state.attempt_number - 1
            return self.should_retry(exc.kind, state.attempt_index)

        def _wait(retry_state: RetryCallState) -> float:
            delay_ms = self.backoff_delay(retry_state.attempt_number - 1)
            state.delays_ms.append(delay_ms)
            return delay_ms / 1000

        kwargs = {}
        if before_sleep is not None:
            kwargs["before_sleep"] = before_sleep
        return AsyncRetrying(
            retry=_retry,
            wait=_wait,
            stop=stop_after_attempt(self.max_retries + 1),
            sleep=sleep,
            reraise=True,
            **kwargs,
        )
