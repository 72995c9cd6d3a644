"""Tests for the concurrent scoring orchestrator."""

import asyncio

import pytest

from crai.chunker import Chunker
from crai.config import Config
from crai.errors import FailureKind
from crai.events import AnalysisComplete, ScoreUpdated
from crai.filter import VisibilityReason
from crai.models import ReviewRole, ScoreStatus
from crai.orchestrator import BackoffPolicy, Orchestrator, WorkState
from crai.providers.base import ScoringContext
from crai.router import SubagentRouter, WorkItem
from crai.session import RecordStatus, ReviewSession

from conftest import A_ID, B_ID, LOCK_ID, FakeProvider, make_chunk

PRIMARY = ReviewRole.PRIMARY
NO_BACKOFF = BackoffPolicy(base=0.0, maximum=0.0)


def primary_items(chunks):
    return [WorkItem(chunk, PRIMARY) for chunk in chunks]


def build(chunks, provider, config=None, **kwargs):
    session = ReviewSession(chunks, config or Config())
    kwargs.setdefault("backoff", NO_BACKOFF)
    return session, Orchestrator(provider, session, **kwargs)


async def wait_until(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


class TestBackoffPolicy:
    """Test the backoff curve."""

    def test_exponential_with_cap(self):
        policy = BackoffPolicy(base=0.5, maximum=8.0)
        assert [policy.delay(n) for n in range(1, 7)] == [0.5, 1.0, 2.0, 4.0, 8.0, 8.0]


class TestScenarios:
    """End-to-end scoring scenarios."""

    @pytest.mark.asyncio
    async def test_lock_file_filtered_without_call(self, three_chunk_diff, primary_only_config):
        """Lock-file chunk is never scored; A=0.1 hidden, B=0.6 visible."""
        chunks = Chunker(primary_only_config.filters).chunk_text(three_chunk_diff)
        provider = FakeProvider({A_ID: 0.1, B_ID: 0.6})
        session = ReviewSession(chunks, primary_only_config)
        items = SubagentRouter(primary_only_config).route_all(chunks)

        orchestrator = Orchestrator.from_config(provider, session, primary_only_config)
        await orchestrator.run(items)

        assert orchestrator.calls == 2
        assert sorted(provider.calls) == sorted([(A_ID, PRIMARY), (B_ID, PRIMARY)])
        assert [r.chunk.id for r in session.visible_records()] == [B_ID]
        assert session.record_for(LOCK_ID).visibility.reason is VisibilityReason.AUTO_FILTERED
        assert session.record_for(A_ID).visibility.reason is VisibilityReason.BELOW_THRESHOLD

    @pytest.mark.asyncio
    async def test_two_timeouts_then_success(self):
        chunk = make_chunk()
        provider = FakeProvider({chunk.id: [FailureKind.TIMEOUT, FailureKind.TIMEOUT, 0.8]})
        session, orchestrator = build([chunk], provider, max_attempts=3)

        await orchestrator.run(primary_items([chunk]))

        assert provider.calls == [(chunk.id, PRIMARY)] * 3
        result = session.record_for(chunk.id).result(PRIMARY)
        assert result.status is ScoreStatus.SUCCEEDED
        assert result.score == 0.8
        assert result.attempts == 3
        assert orchestrator.state_of(chunk.id, PRIMARY) is WorkState.SUCCEEDED

    @pytest.mark.asyncio
    async def test_concurrency_cap(self):
        chunks = [make_chunk(f"f{i}.py", i) for i in range(5)]
        provider = FakeProvider(delay=0.02)
        session, orchestrator = build(chunks, provider, concurrency=2)

        await orchestrator.run(primary_items(chunks))

        assert provider.max_in_flight == 2
        assert orchestrator.max_in_flight == 2
        assert orchestrator.in_flight == 0
        assert len(provider.calls) == 5


class TestRetries:
    """Test the per-item retry state machine."""

    @pytest.mark.asyncio
    async def test_exhaustion_records_failure(self):
        chunk = make_chunk()
        provider = FakeProvider({chunk.id: FailureKind.PROVIDER_UNAVAILABLE})
        session, orchestrator = build([chunk], provider, max_attempts=3)

        await orchestrator.run(primary_items([chunk]))

        assert len(provider.calls) == 3
        record = session.record_for(chunk.id)
        result = record.result(PRIMARY)
        assert result.status is ScoreStatus.FAILED
        assert result.failure is FailureKind.PROVIDER_UNAVAILABLE
        assert result.attempts == 3
        assert record.status is RecordStatus.FAILED
        assert record.visibility.reason is VisibilityReason.ANALYSIS_FAILED

    @pytest.mark.asyncio
    async def test_malformed_response_is_terminal(self):
        chunk = make_chunk()
        provider = FakeProvider({chunk.id: [FailureKind.MALFORMED_RESPONSE, 0.9]})
        session, orchestrator = build([chunk], provider)

        await orchestrator.run(primary_items([chunk]))

        assert len(provider.calls) == 1
        assert session.record_for(chunk.id).result(PRIMARY).failure is FailureKind.MALFORMED_RESPONSE

    @pytest.mark.asyncio
    async def test_rate_limited_is_retried(self):
        chunk = make_chunk()
        provider = FakeProvider({chunk.id: [FailureKind.RATE_LIMITED, 0.3]})
        session, orchestrator = build([chunk], provider)

        await orchestrator.run(primary_items([chunk]))

        assert len(provider.calls) == 2
        assert session.record_for(chunk.id).result(PRIMARY).score == 0.3

    @pytest.mark.asyncio
    async def test_retry_publishes_retrying_status(self):
        chunk = make_chunk()
        provider = FakeProvider({chunk.id: [FailureKind.TIMEOUT, 0.5]})
        session, orchestrator = build([chunk], provider)
        session.events.drain()

        await orchestrator.run(primary_items([chunk]))

        statuses = [e.result.status for e in session.events.drain() if isinstance(e, ScoreUpdated)]
        assert statuses == [ScoreStatus.PENDING, ScoreStatus.RETRYING, ScoreStatus.SUCCEEDED]

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_contained(self):
        chunks = [make_chunk("a.py", 0), make_chunk("b.py", 1)]
        provider = FakeProvider({"a.py": RuntimeError("boom")}, default=0.4)
        session, orchestrator = build(chunks, provider, max_attempts=2)

        await orchestrator.run(primary_items(chunks))

        assert session.record_for(chunks[0].id).result(PRIMARY).failure is FailureKind.PROVIDER_UNAVAILABLE
        assert session.record_for(chunks[1].id).result(PRIMARY).score == 0.4

    @pytest.mark.asyncio
    async def test_call_timeout_enforced(self):
        chunk = make_chunk()
        provider = FakeProvider(delay=1.0)
        session, orchestrator = build([chunk], provider, timeout=0.01, max_attempts=1)

        await orchestrator.run(primary_items([chunk]))

        assert session.record_for(chunk.id).result(PRIMARY).failure is FailureKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_backoff_does_not_hold_a_slot(self):
        """While one item waits to retry, the next item gets the only slot."""
        first, second = make_chunk("a.py", 0), make_chunk("b.py", 1)
        provider = FakeProvider({"a.py": [FailureKind.RATE_LIMITED, 0.5]}, default=0.5)
        session, orchestrator = build(
            [first, second], provider, concurrency=1, backoff=BackoffPolicy(base=0.05, maximum=0.05)
        )

        await orchestrator.run(primary_items([first, second]))

        assert [call[0] for call in provider.calls] == [first.id, second.id, first.id]


class TestDeduplication:
    """Test exactly-once scoring per (chunk, role)."""

    @pytest.mark.asyncio
    async def test_second_run_is_skipped(self):
        chunk = make_chunk()
        provider = FakeProvider()
        session, orchestrator = build([chunk], provider)
        items = primary_items([chunk])

        await orchestrator.run(items)
        second = Orchestrator(provider, session, backoff=NO_BACKOFF)
        await second.run(items)

        assert len(provider.calls) == 1
        assert second.state_of(chunk.id, PRIMARY) is WorkState.SKIPPED

    @pytest.mark.asyncio
    async def test_duplicate_items_in_one_run(self):
        chunk = make_chunk()
        provider = FakeProvider()
        _, orchestrator = build([chunk], provider)

        await orchestrator.run(primary_items([chunk]) * 3)

        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_invalidate_then_rescore(self):
        chunk = make_chunk()
        provider = FakeProvider({chunk.id: [0.9, 0.1]})
        session, orchestrator = build([chunk], provider)

        await orchestrator.run(primary_items([chunk]))
        session.invalidate(chunk.id)
        await Orchestrator(provider, session, backoff=NO_BACKOFF).run(primary_items([chunk]))

        assert len(provider.calls) == 2
        assert session.record_for(chunk.id).composite == 0.1

    @pytest.mark.asyncio
    async def test_same_orchestrator_rescores_after_invalidate(self):
        chunk = make_chunk()
        provider = FakeProvider({chunk.id: [0.9, 0.1]})
        session, orchestrator = build([chunk], provider)
        items = primary_items([chunk])

        await orchestrator.run(items)
        await orchestrator.run(items)
        assert len(provider.calls) == 1
        assert orchestrator.state_of(chunk.id, PRIMARY) is WorkState.SUCCEEDED

        session.invalidate(chunk.id)
        summary = await orchestrator.run(items)

        assert len(provider.calls) == 2
        assert summary.analyzing == 0
        record = session.record_for(chunk.id)
        assert record.status is RecordStatus.SCORED
        assert record.composite == 0.1


class TestCancellation:
    """Test cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_stops_issuance_and_releases_claims(self):
        chunks = [make_chunk(f"f{i}.py", i) for i in range(6)]
        provider = FakeProvider(delay=10)
        session, orchestrator = build(chunks, provider, concurrency=2)

        task = asyncio.create_task(orchestrator.run(primary_items(chunks)))
        await wait_until(lambda: provider.in_flight == 2)
        orchestrator.cancel()
        summary = await asyncio.wait_for(task, timeout=2)

        assert orchestrator.cancelled
        assert len(provider.calls) == 2
        assert summary.analyzing == 6
        for record in session.records():
            assert record.result(PRIMARY) is None
            assert record.visibility.reason is VisibilityReason.ANALYZING
        # Released pairs can be claimed again
        assert session.claim(chunks[0].id, PRIMARY)

        events = session.events.drain()
        assert isinstance(events[-1], AnalysisComplete)
        assert events[-1].cancelled

    @pytest.mark.asyncio
    async def test_late_result_is_discarded(self):
        """A provider that ignores cancellation still cannot write a result."""
        chunk = make_chunk()

        class StubbornProvider(FakeProvider):
            async def score(self, chunk, role, context, timeout):
                self.calls.append((chunk.id, role))
                self.in_flight += 1
                try:
                    await asyncio.sleep(10)
                except asyncio.CancelledError:
                    pass
                finally:
                    self.in_flight -= 1
                return await super().score(chunk, role, context, timeout)

        provider = StubbornProvider()
        session, orchestrator = build([chunk], provider)

        task = asyncio.create_task(orchestrator.run(primary_items([chunk])))
        await wait_until(lambda: provider.in_flight == 1)
        orchestrator.cancel()
        await asyncio.wait_for(task, timeout=2)

        assert session.record_for(chunk.id).result(PRIMARY) is None
        assert orchestrator.state_of(chunk.id, PRIMARY) is WorkState.CANCELLED

    @pytest.mark.asyncio
    async def test_outer_cancellation_propagates(self):
        chunks = [make_chunk(f"f{i}.py", i) for i in range(3)]
        provider = FakeProvider(delay=10)
        session, orchestrator = build(chunks, provider, concurrency=3)

        task = asyncio.create_task(orchestrator.run(primary_items(chunks)))
        await wait_until(lambda: provider.in_flight == 3)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert orchestrator.cancelled
        assert all(r.result(PRIMARY) is None for r in session.records())
        assert isinstance(session.events.drain()[-1], AnalysisComplete)

    @pytest.mark.asyncio
    async def test_run_after_cancel_issues_nothing(self):
        chunk = make_chunk()
        provider = FakeProvider()
        _, orchestrator = build([chunk], provider)
        orchestrator.cancel()

        summary = await orchestrator.run(primary_items([chunk]))

        assert provider.calls == []
        assert summary.analyzing == 1


class TestContext:
    """Test prompt context passed to the provider."""

    @pytest.mark.asyncio
    async def test_context_reaches_prompt(self):
        chunk = make_chunk()
        provider = FakeProvider()
        context = ScoringContext(
            description="Switch to parameterized queries",
            commit_messages=("Fix SQL injection",),
            custom_prompts={PRIMARY: "Focus on data access."},
        )
        _, orchestrator = build([chunk], provider, context=context)

        await orchestrator.run(primary_items([chunk]))

        prompt = provider.prompts[0]
        assert "Switch to parameterized queries" in prompt
        assert "- Fix SQL injection" in prompt
        assert "Focus on data access." in prompt
        assert chunk.file_path in prompt
