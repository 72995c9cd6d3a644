"""Event stream feeding the presenter.

The core never waits for the consumer: events go into a bounded buffer and,
when it is full, the oldest event is dropped. Visibility can always be
recomputed from the session, so a presenter that fell behind resyncs from
``ReviewSession.records()``.
"""

import asyncio
import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

from .constants import DEFAULT_EVENT_BUFFER
from .filter import VisibilityReason
from .models import ChunkId, ReviewRole, ScoreResult, StaticClass

if TYPE_CHECKING:
    from .session import AnalysisSummary

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChunkRegistered:
    chunk_id: ChunkId
    position: int
    file_path: str
    classification: StaticClass
    visible: bool
    reason: VisibilityReason


@dataclass(frozen=True)
class ScoreUpdated:
    chunk_id: ChunkId
    role: ReviewRole
    result: ScoreResult
    composite: float | None


@dataclass(frozen=True)
class ChunkVisibilityChanged:
    chunk_id: ChunkId
    visible: bool
    reason: VisibilityReason


@dataclass(frozen=True)
class AnalysisComplete:
    summary: "AnalysisSummary"
    cancelled: bool = False


Event = Union[ChunkRegistered, ScoreUpdated, ChunkVisibilityChanged, AnalysisComplete]


class EventStream:
    """Bounded, drop-oldest event buffer with a single pulling consumer.

    ``publish`` may be called from any thread; ``get`` and async iteration
    must run on one event loop.
    """

    def __init__(self, maxsize: int = DEFAULT_EVENT_BUFFER):
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")
        self.maxsize = maxsize
        self._buffer: deque[Event] = deque()
        self._lock = threading.Lock()
        self._dropped = 0
        self._published = 0
        self._loop: asyncio.AbstractEventLoop | None = None
        self._ready: asyncio.Event | None = None

    @property
    def dropped(self) -> int:
        """Number of events discarded because the buffer was full."""
        return self._dropped

    @property
    def published(self) -> int:
        return self._published

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)

    def publish(self, event: Event) -> None:
        """Append an event without blocking, dropping the oldest if full."""
        with self._lock:
            if len(self._buffer) >= self.maxsize:
                self._buffer.popleft()
                self._dropped += 1
                if self._dropped == 1:
                    logger.warning(f"Event buffer full ({self.maxsize}), dropping oldest events")
            self._buffer.append(event)
            self._published += 1
        self._wake()

    def drain(self) -> list[Event]:
        """Remove and return every buffered event."""
        with self._lock:
            events = list(self._buffer)
            self._buffer.clear()
        return events

    async def get(self) -> Event:
        """Wait for and return the next event."""
        while True:
            with self._lock:
                if self._buffer:
                    return self._buffer.popleft()
                if self._ready is None:
                    self._loop = asyncio.get_running_loop()
                    self._ready = asyncio.Event()
                self._ready.clear()
            await self._ready.wait()

    def _wake(self) -> None:
        if self._ready is None:
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._ready.set()
        elif self._loop.is_closed():
            self._loop = None
            self._ready = None
        else:
            self._loop.call_soon_threadsafe(self._ready.set)

    async def __aiter__(self):
        """Yield events until ``AnalysisComplete`` has been yielded."""
        while True:
            event = await self.get()
            yield event
            if isinstance(event, AnalysisComplete):
                return
