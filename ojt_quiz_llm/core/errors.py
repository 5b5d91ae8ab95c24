from __future__ import annotations

from typing import Union

from .types import FailureKind

TRANSIENT_KINDS = frozenset(
    {FailureKind.RATE_LIMIT, FailureKind.UNAVAILABLE, FailureKind.NETWORK}
)


class QuizLLMError(Exception):
    """Base class for errors raised by the quiz generation core."""


class ProviderError(QuizLLMError):
    def __init__(
        self,
        provider: str,
        kind: FailureKind,
        message: str,
        status_code: Union[int, None] = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.kind = kind
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.kind in TRANSIENT_KINDS

    @property
    def reason(self) -> str:
        if self.status_code is not None:
            return f"{self.kind.value} ({self.status_code}): {self}"
        return f"{self.kind.value}: {self}"


class AllProvidersFailedError(QuizLLMError):
    def __init__(self, attempts: list[tuple[str, str]]) -> None:
        self.attempts = list(attempts)
        if self.attempts:
            detail = "; ".join(f"{name}: {reason}" for name, reason in self.attempts)
        else:
            detail = "no providers configured"
        super().__init__(f"All LLM providers failed ({detail})")

    @property
    def providers(self) -> list[str]:
        return [name for name, _ in self.attempts]


class UnknownProviderError(QuizLLMError, ValueError):
    pass


class GenerationCancelledError(QuizLLMError):
    pass


class SourceRejectedError(QuizLLMError):
    """URL refused before any outbound request was made."""


class BlockedTargetError(SourceRejectedError):
    """Well-formed URL whose host is loopback, private or a metadata service."""


class IngestError(QuizLLMError):
    pass


def classify_status(status_code: int) -> FailureKind:
    if status_code == 429:
        return FailureKind.RATE_LIMIT
    if status_code >= 500:
        return FailureKind.UNAVAILABLE
    if status_code in (401, 403):
        return FailureKind.AUTH
    return FailureKind.CLIENT


def terminal_reason(exc: BaseException) -> str:
    """Short reason string used in aggregate failures and log lines."""
    if isinstance(exc, ProviderError):
        return exc.reason
    return f"{type(exc).__name__}: {exc}"
