"""Tests for the presenter event stream."""

import asyncio
import threading

import pytest

from crai.events import AnalysisComplete, ChunkVisibilityChanged, EventStream
from crai.filter import VisibilityReason
from crai.session import AnalysisSummary


def visibility_event(i: int) -> ChunkVisibilityChanged:
    return ChunkVisibilityChanged(chunk_id=f"c{i}", visible=True, reason=VisibilityReason.ANALYZING)


class TestEventStream:
    """Test bounded, drop-oldest buffering."""

    def test_drain_in_publish_order(self):
        stream = EventStream(maxsize=10)
        for i in range(3):
            stream.publish(visibility_event(i))
        assert [e.chunk_id for e in stream.drain()] == ["c0", "c1", "c2"]
        assert stream.drain() == []

    def test_drop_oldest_when_full(self):
        stream = EventStream(maxsize=2)
        for i in range(5):
            stream.publish(visibility_event(i))
        assert len(stream) == 2
        assert stream.dropped == 3
        assert stream.published == 5
        assert [e.chunk_id for e in stream.drain()] == ["c3", "c4"]

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            EventStream(maxsize=0)

    def test_events_are_frozen(self):
        event = visibility_event(0)
        with pytest.raises(AttributeError):
            event.visible = False

    @pytest.mark.asyncio
    async def test_get_waits_for_publish(self):
        stream = EventStream()

        async def publish_later():
            await asyncio.sleep(0.01)
            stream.publish(visibility_event(7))

        task = asyncio.create_task(publish_later())
        event = await asyncio.wait_for(stream.get(), timeout=1)
        await task
        assert event.chunk_id == "c7"

    @pytest.mark.asyncio
    async def test_get_wakes_on_publish_from_thread(self):
        stream = EventStream()
        thread = threading.Timer(0.01, stream.publish, args=(visibility_event(1),))
        thread.start()
        event = await asyncio.wait_for(stream.get(), timeout=1)
        thread.join()
        assert event.chunk_id == "c1"

    @pytest.mark.asyncio
    async def test_async_iteration_stops_at_complete(self):
        stream = EventStream()
        stream.publish(visibility_event(0))
        stream.publish(AnalysisComplete(summary=AnalysisSummary(total=1)))
        stream.publish(visibility_event(1))

        received = [event async for event in stream]
        assert isinstance(received[-1], AnalysisComplete)
        assert len(received) == 2
        assert [e.chunk_id for e in stream.drain()] == ["c1"]
