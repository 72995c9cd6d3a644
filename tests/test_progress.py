"""Tests for progress tracking."""

import io

import pytest

from crai.events import AnalysisComplete, EventStream, ScoreUpdated
from crai.errors import FailureKind
from crai.models import ReviewRole, ScoreResponse, ScoreResult
from crai.progress import AnalysisStats, ProgressDisplay
from crai.session import AnalysisSummary


def update(result: ScoreResult) -> ScoreUpdated:
    return ScoreUpdated(chunk_id=result.chunk_id, role=result.role, result=result, composite=result.score)


PENDING = ScoreResult.pending("c", ReviewRole.PRIMARY)
DONE = ScoreResult.succeeded("c", ReviewRole.PRIMARY, ScoreResponse(score=0.4, rationale=""), attempts=2)
RETRY = ScoreResult.retrying("c", ReviewRole.PRIMARY, FailureKind.TIMEOUT, "slow", attempts=1)


class TestAnalysisStats:
    """Test counters fed from score events."""

    def test_counts(self):
        stats = AnalysisStats(total_items=2)
        for result in (PENDING, RETRY, DONE):
            stats.apply(update(result))
        snapshot = stats.get_snapshot()
        assert snapshot["completed"] == 1
        assert snapshot["retries"] == 1
        assert snapshot["active"] == 0

    def test_format_time(self):
        stats = AnalysisStats()
        assert stats.format_time(12.34) == "12.3s"
        assert stats.format_time(90) == "1.5m"
        assert stats.format_time(7200) == "2.0h"


class TestProgressDisplay:
    """Test the event-driven display."""

    def test_truncate_label_keeps_tail(self):
        display = ProgressDisplay(AnalysisStats(), max_label_len=10, stream=io.StringIO())
        assert display._truncate_label("src/module.py@-1,3+1,4") == "...1,3+1,4"
        assert display._truncate_label("short") == "short"

    @pytest.mark.asyncio
    async def test_follow_until_complete(self):
        out = io.StringIO()
        stream = EventStream()
        display = ProgressDisplay(AnalysisStats(total_items=1), throttle_interval=0, stream=out)
        stream.publish(update(PENDING))
        stream.publish(update(DONE))
        stream.publish(AnalysisComplete(summary=AnalysisSummary(total=1, scored=1, visible=1)))

        final = await display.follow(stream)

        assert final.summary.scored == 1
        assert display.stats.completed == 1
        assert "1/1 scored" in out.getvalue()

    @pytest.mark.asyncio
    async def test_follow_logs_failed_results(self):
        out = io.StringIO()
        stream = EventStream()
        display = ProgressDisplay(AnalysisStats(total_items=1), throttle_interval=0, stream=out)
        failed = ScoreResult.failed("c", ReviewRole.SECURITY, FailureKind.TIMEOUT, "slow", attempts=3)
        stream.publish(update(PENDING))
        stream.publish(update(failed))
        stream.publish(AnalysisComplete(summary=AnalysisSummary(total=1, failed=1, visible=1)))

        await display.follow(stream)

        assert display.stats.failed == 1
        assert "Analysis failed for c [security]" in out.getvalue()
