import sys, pathlib; sys.path.insert(0, str(pathlib.Path(__file__).resolve().parents[1]))
import asyncio

import pytest

from ojt_quiz_llm.adapters.mock_adapter import MockAdapter
from ojt_quiz_llm.core.errors import (
    AllProvidersFailedError,
    GenerationCancelledError,
    ProviderError,
    UnknownProviderError,
)
from ojt_quiz_llm.core.orchestrator import FallbackOrchestrator
from ojt_quiz_llm.core.retry_policy import RetryPolicy
from ojt_quiz_llm.core.types import FailureKind, GenerationRequest, SourceRef


def fail(name, kind=FailureKind.CLIENT, status=None):
    return ProviderError(name, kind, f"{name} failed", status_code=status)


def rate_limited(name):
    return fail(name, FailureKind.RATE_LIMIT, 429)


def make(providers, active="a", max_retries=3):
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    orchestrator = FallbackOrchestrator(
        providers,
        fallback_chain=[p.id for p in providers],
        default_provider=active,
        retry_policy=RetryPolicy(max_retries=max_retries),
        sleep=fake_sleep,
    )
    return orchestrator, sleeps


def test_active_provider_success_skips_chain():
    a, b = MockAdapter("a", ["ok-a"]), MockAdapter("b")
    orchestrator, sleeps = make([a, b])

    result = asyncio.run(orchestrator.generate(GenerationRequest(prompt="p")))

    assert result.text == "ok-a"
    assert result.provider == "a"
    assert result.fallback_used is False
    assert a.status_checks == 0
    assert b.requests == []
    assert sleeps == []


def test_permanent_failure_falls_back_without_retry():
    a = MockAdapter("a", [fail("a", FailureKind.CLIENT, 400)])
    b = MockAdapter("b", ["ok-b"])
    c = MockAdapter("c")
    orchestrator, sleeps = make([a, b, c])

    result = asyncio.run(orchestrator.generate(GenerationRequest(prompt="p")))

    assert result.provider == "b"
    assert result.text == "ok-b"
    assert result.fallback_used is True
    assert len(a.requests) == 1
    assert sleeps == []
    assert c.requests == []
    assert c.status_checks == 0


def test_transient_failure_retries_in_place_then_succeeds():
    a = MockAdapter("a", [rate_limited("a"), rate_limited("a"), "third time"])
    b = MockAdapter("b")
    orchestrator, sleeps = make([a, b])

    result = asyncio.run(orchestrator.generate(GenerationRequest(prompt="p")))

    assert result.provider == "a"
    assert result.fallback_used is False
    assert len(a.requests) == 3
    assert sleeps == [1.0, 2.0]
    assert b.requests == []


def test_all_providers_failing_reports_each_one():
    a = MockAdapter("a", [rate_limited("a")] * 4)
    b = MockAdapter("b", [fail("b", FailureKind.UNAVAILABLE, 503)])
    c = MockAdapter("c", [fail("c", FailureKind.NETWORK)])
    orchestrator, sleeps = make([a, b, c])

    with pytest.raises(AllProvidersFailedError) as exc:
        asyncio.run(orchestrator.generate(GenerationRequest(prompt="p")))

    assert exc.value.providers == ["a", "b", "c"]
    assert "transient-rate-limit" in exc.value.attempts[0][1]
    assert "transient-unavailable" in exc.value.attempts[1][1]
    assert "network-error" in exc.value.attempts[2][1]
    assert "All LLM providers failed" in str(exc.value)
    # active provider: 1 call + 3 retries; chain providers: one call each
    assert len(a.requests) == 4
    assert len(b.requests) == 1
    assert len(c.requests) == 1
    assert sleeps == [1.0, 2.0, 4.0]


def test_use_fallback_false_reraises_active_failure():
    a = MockAdapter("a", [fail("a", FailureKind.AUTH, 401)])
    b = MockAdapter("b")
    orchestrator, _ = make([a, b])

    with pytest.raises(ProviderError) as exc:
        asyncio.run(orchestrator.generate(GenerationRequest(prompt="p"), use_fallback=False))

    assert exc.value.kind is FailureKind.AUTH
    assert b.requests == []
    assert b.status_checks == 0


def test_offline_provider_is_skipped():
    a = MockAdapter("a", [fail("a")])
    b = MockAdapter("b", online=False)
    c = MockAdapter("c", ["ok-c"])
    orchestrator, _ = make([a, b, c])

    result = asyncio.run(orchestrator.generate(GenerationRequest(prompt="p")))

    assert result.provider == "c"
    assert result.fallback_used is True
    assert b.status_checks == 1
    assert b.requests == []


def test_offline_reason_is_reported():
    a = MockAdapter("a", [fail("a")])
    b = MockAdapter("b", online=False)
    orchestrator, _ = make([a, b])

    with pytest.raises(AllProvidersFailedError) as exc:
        asyncio.run(orchestrator.generate(GenerationRequest(prompt="p")))

    assert exc.value.attempts[1] == ("b", "offline: mock provider offline")


def test_active_override_and_independent_calls():
    a = MockAdapter("a", ["from-a"])
    b = MockAdapter("b", ["from-b"])
    orchestrator, _ = make([a, b])

    async def run():
        return await asyncio.gather(
            orchestrator.generate(GenerationRequest(prompt="1"), active="b"),
            orchestrator.generate(GenerationRequest(prompt="2")),
        )

    first, second = asyncio.run(run())
    assert (first.provider, first.text) == ("b", "from-b")
    assert (second.provider, second.text) == ("a", "from-a")
    assert orchestrator.default_provider == "a"


def test_no_providers_raises_aggregate():
    orchestrator = FallbackOrchestrator([])
    with pytest.raises(AllProvidersFailedError) as exc:
        asyncio.run(orchestrator.generate(GenerationRequest(prompt="p")))
    assert exc.value.attempts == []


def test_unknown_names_are_rejected():
    a = MockAdapter("a")
    with pytest.raises(ValueError):
        FallbackOrchestrator([a], fallback_chain=["a", "missing"])
    orchestrator = FallbackOrchestrator([a])
    with pytest.raises(UnknownProviderError):
        orchestrator.get_provider("missing")


def test_source_request_is_embedded_for_providers_without_url_context():
    a = MockAdapter("a", ["ok"])
    orchestrator, _ = make([a])
    source = SourceRef(kind="url", uri="https://example.com/onboarding")

    asyncio.run(orchestrator.generate(GenerationRequest(prompt="quiz", source=source)))

    sent = a.requests[0]
    assert sent.source is None
    assert "Source URL: https://example.com/onboarding" in sent.prompt


def test_check_all_status_covers_every_provider():
    a, b = MockAdapter("a"), MockAdapter("b", online=False)
    orchestrator, _ = make([a, b])
    statuses = asyncio.run(orchestrator.check_all_status())
    assert statuses["a"]["online"] is True
    assert statuses["b"]["online"] is False


def test_cancel_before_start():
    a = MockAdapter("a", ["never"])
    orchestrator, _ = make([a])

    async def run():
        cancel = asyncio.Event()
        cancel.set()
        await orchestrator.generate(GenerationRequest(prompt="p"), cancel=cancel)

    with pytest.raises(GenerationCancelledError):
        asyncio.run(run())
    assert a.requests == []


class CancellingAdapter(MockAdapter):
    """Fails with a rate limit and cancels the caller at the same time."""

    def __init__(self, name, cancel):
        super().__init__(name)
        self.cancel = cancel

    async def generate(self, request):
        self.requests.append(request)
        self.cancel.set()
        raise rate_limited(self.id)


def test_cancel_during_backoff_stops_retries():
    async def run():
        cancel = asyncio.Event()
        a = CancellingAdapter("a", cancel)
        b = MockAdapter("b")
        orchestrator = FallbackOrchestrator([a, b], default_provider="a")
        try:
            await orchestrator.generate(GenerationRequest(prompt="p"), cancel=cancel)
        finally:
            assert len(a.requests) == 1
            assert b.requests == []

    with pytest.raises(GenerationCancelledError):
        asyncio.run(run())


class SlowAdapter(MockAdapter):
    def __init__(self, name):
        super().__init__(name)
        self.cancelled = False

    async def generate(self, request):
        self.requests.append(request)
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return "late"


def test_cancel_in_flight_request():
    slow = SlowAdapter("slow")

    async def run():
        cancel = asyncio.Event()
        orchestrator = FallbackOrchestrator([slow])
        task = asyncio.ensure_future(
            orchestrator.generate(GenerationRequest(prompt="p"), cancel=cancel)
        )
        await asyncio.sleep(0.01)
        cancel.set()
        await task

    with pytest.raises(GenerationCancelledError):
        asyncio.run(run())
    assert slow.cancelled is True


def test_outer_cancellation_stops_in_flight_request():
    slow = SlowAdapter("slow")

    async def run():
        orchestrator = FallbackOrchestrator([slow])
        task = asyncio.ensure_future(
            orchestrator.generate(GenerationRequest(prompt="p"), cancel=asyncio.Event())
        )
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0.01)
        assert slow.cancelled is True

    asyncio.run(run())


class SlowStatusAdapter(MockAdapter):
    def __init__(self, name):
        super().__init__(name)
        self.status_cancelled = False

    async def check_status(self):
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            self.status_cancelled = True
            raise
        return await super().check_status()


def test_cancel_during_status_check():
    a = MockAdapter("a", [fail("a", FailureKind.AUTH, 401)])
    b = SlowStatusAdapter("b")

    async def run():
        cancel = asyncio.Event()
        orchestrator, _ = make([a, b])
        task = asyncio.ensure_future(
            orchestrator.generate(GenerationRequest(prompt="p"), cancel=cancel)
        )
        await asyncio.sleep(0.01)
        cancel.set()
        with pytest.raises(GenerationCancelledError):
            await asyncio.wait_for(task, timeout=1)
        assert b.status_cancelled is True
        assert b.requests == []

    asyncio.run(run())
