"""Progress tracking and display utilities."""

import asyncio
import sys
import time
from dataclasses import dataclass, field
from typing import TextIO

from .events import AnalysisComplete, Event, EventStream, ScoreUpdated
from .models import ScoreStatus

# Default throttle interval for UI updates (in seconds)
DEFAULT_THROTTLE_INTERVAL = 0.1  # 100ms


@dataclass
class AnalysisStats:
    """Statistics for a scoring run, fed from the event stream."""

    total_items: int = 0
    completed: int = 0
    failed: int = 0
    retries: int = 0
    active: int = 0
    start_time: float = field(default_factory=time.time)

    @property
    def elapsed_seconds(self) -> float:
        return time.time() - self.start_time

    @property
    def items_per_second(self) -> float:
        if self.elapsed_seconds == 0:
            return 0
        return (self.completed + self.failed) / self.elapsed_seconds

    @property
    def eta_seconds(self) -> float:
        if self.items_per_second == 0:
            return 0
        remaining = self.total_items - self.completed - self.failed
        return max(remaining, 0) / self.items_per_second

    def format_time(self, seconds: float) -> str:
        if seconds < 60:
            return f"{seconds:.1f}s"
        elif seconds < 3600:
            return f"{seconds / 60:.1f}m"
        else:
            return f"{seconds / 3600:.1f}h"

    def apply(self, event: Event) -> None:
        """Update counters from one event."""
        if not isinstance(event, ScoreUpdated):
            return
        status = event.result.status
        if status is ScoreStatus.PENDING:
            self.active += 1
        elif status is ScoreStatus.RETRYING:
            self.retries += 1
        elif status is ScoreStatus.SUCCEEDED:
            self.completed += 1
            self.active = max(self.active - 1, 0)
        elif status is ScoreStatus.FAILED:
            self.failed += 1
            self.active = max(self.active - 1, 0)

    def get_snapshot(self) -> dict:
        """Get a consistent snapshot of all stats for display."""
        return {
            "total_items": self.total_items,
            "completed": self.completed,
            "failed": self.failed,
            "retries": self.retries,
            "active": self.active,
            "elapsed_seconds": self.elapsed_seconds,
            "items_per_second": self.items_per_second,
            "eta_seconds": self.eta_seconds,
        }


class ProgressDisplay:
    """Throttled single-line progress display.

    Throttling keeps high-frequency score updates from flooding the terminal
    during concurrent analysis.
    """

    def __init__(
        self,
        stats: AnalysisStats,
        max_label_len: int = 30,
        throttle_interval: float = DEFAULT_THROTTLE_INTERVAL,
        stream: TextIO | None = None,
    ):
        self.stats = stats
        self._lock = asyncio.Lock()
        self._max_label_len = max_label_len
        self._throttle_interval = throttle_interval
        self._last_update_time: float = 0
        self._stream = stream or sys.stderr

    def _truncate_label(self, label: str) -> str:
        """Keep the tail of a chunk label, where the hunk range lives."""
        if len(label) <= self._max_label_len:
            return label
        return f"...{label[-(self._max_label_len - 3):]}"

    async def update(self, label: str, status: str, force: bool = False):
        """Update progress display with throttling.

        Args:
            label: Chunk being reported on
            status: Current status text (e.g., "scored", "retrying")
            force: If True, bypass throttling and update immediately
        """
        current_time = time.time()

        if not force and (current_time - self._last_update_time) < self._throttle_interval:
            return

        async with self._lock:
            self._last_update_time = current_time

            snapshot = self.stats.get_snapshot()
            total = snapshot["total_items"]
            done = snapshot["completed"] + snapshot["failed"]

            progress = (done / total * 100) if total > 0 else 100.0
            eta = self.stats.format_time(snapshot["eta_seconds"])
            elapsed = self.stats.format_time(snapshot["elapsed_seconds"])
            label = self._truncate_label(label)

            print(
                f"\r[{progress:5.1f}%] {done}/{total} scored | "
                f"{snapshot['active']} active | {snapshot['failed']} failed | "
                f"Elapsed: {elapsed} | ETA: {eta} | "
                f"{status}: {label:<{self._max_label_len}}",
                end="",
                flush=True,
                file=self._stream,
            )

    async def log(self, message: str):
        """Log a message to the console (bypasses throttling)."""
        async with self._lock:
            print(f"\n{message}", file=self._stream)

    async def follow(self, events: EventStream) -> AnalysisComplete | None:
        """Consume events until analysis completes.

        Returns:
            The final ``AnalysisComplete`` event
        """
        final = None
        async for event in events:
            self.stats.apply(event)
            if isinstance(event, ScoreUpdated):
                await self.update(event.chunk_id, event.result.status.value)
                if event.result.status is ScoreStatus.FAILED:
                    await self.log(f"Analysis failed for {event.chunk_id} [{event.result.role.value}]")
            elif isinstance(event, AnalysisComplete):
                final = event
                await self.update("", "done", force=True)
                print(file=self._stream)
        return final
