"""Review session: per-chunk aggregation of score results.

The session is the single owner of mutable review state. Every mutation runs
under one lock and swaps in a new immutable :class:`ChunkRecord`, so readers
on any thread always see a record whose composite score and visibility match
its results.
"""

import logging
import threading
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType

from .config import Config
from .errors import FailureKind, ParseFailure
from .events import ChunkRegistered, ChunkVisibilityChanged, EventStream, ScoreUpdated
from .filter import ChunkFilter, SortMode, Visibility
from .models import Chunk, ChunkId, ReviewRole, ScoreResult, ScoreStatus, StaticClass

logger = logging.getLogger(__name__)


class RecordStatus(str, Enum):
    UNSCORED = "unscored"
    ANALYZING = "analyzing"
    SCORED = "scored"
    PARTIAL = "partial"
    FAILED = "failed"
    FILTERED = "filtered"


def composite_score(
    results: Iterable[ScoreResult],
    policy: str = "max",
    weights: Mapping[ReviewRole, float] | None = None,
) -> float | None:
    """Combine succeeded role scores into one chunk score.

    Args:
        results: Score results for a single chunk
        policy: ``max`` or ``weighted`` (role-weighted mean)
        weights: Per-role weights for the ``weighted`` policy; missing roles weigh 1.0

    Returns:
        The composite score, or None when no role has succeeded
    """
    scored = [r for r in results if r.status is ScoreStatus.SUCCEEDED and r.score is not None]
    if not scored:
        return None
    if policy == "weighted":
        weights = weights or {}
        total = sum(weights.get(r.role, 1.0) for r in scored)
        if total > 0:
            return sum(weights.get(r.role, 1.0) * r.score for r in scored) / total
    return max(r.score for r in scored)


@dataclass(frozen=True)
class ChunkRecord:
    """Immutable snapshot of everything known about one chunk."""

    chunk: Chunk
    expected_roles: tuple[ReviewRole, ...] = ()
    results: Mapping[ReviewRole, ScoreResult] = field(default_factory=lambda: MappingProxyType({}))
    composite: float | None = None
    status: RecordStatus = RecordStatus.UNSCORED
    visibility: Visibility | None = None

    @property
    def chunk_id(self) -> ChunkId:
        return self.chunk.id

    @property
    def visible(self) -> bool:
        return bool(self.visibility and self.visibility.visible)

    def result(self, role: ReviewRole) -> ScoreResult | None:
        return self.results.get(role)

    @property
    def pending_roles(self) -> tuple[ReviewRole, ...]:
        """Expected roles without a terminal result (queued, in flight or retrying)."""
        return tuple(
            role
            for role in self.expected_roles
            if role not in self.results or not self.results[role].status.terminal
        )

    @property
    def succeeded_roles(self) -> tuple[ReviewRole, ...]:
        return tuple(role for role, r in self.results.items() if r.status is ScoreStatus.SUCCEEDED)

    @property
    def failed_roles(self) -> tuple[ReviewRole, ...]:
        return tuple(role for role, r in self.results.items() if r.status is ScoreStatus.FAILED)

    def to_dict(self) -> dict:
        return {
            "id": self.chunk.id,
            "position": self.chunk.position,
            "file": self.chunk.file_path,
            "old_range": str(self.chunk.old_range),
            "new_range": str(self.chunk.new_range),
            "classification": self.chunk.classification.value,
            "auto_filtered": self.chunk.auto_filtered,
            "status": self.status.value,
            "composite": self.composite,
            "visible": self.visible,
            "reason": self.visibility.reason.value if self.visibility else None,
            "results": [self.results[role].to_dict() for role in ReviewRole if role in self.results],
        }


@dataclass(frozen=True)
class AnalysisSummary:
    total: int = 0
    analyzing: int = 0
    scored: int = 0
    failed: int = 0
    unscored: int = 0
    visible: int = 0
    hidden: int = 0
    filtered: int = 0
    # Changed lines held back by auto-filtering, by classification
    whitespace_lines: int = 0
    import_lines: int = 0
    generated_lines: int = 0
    rename_lines: int = 0
    total_lines: int = 0

    @property
    def complete(self) -> bool:
        return self.analyzing == 0

    @property
    def filtered_lines(self) -> int:
        return self.whitespace_lines + self.import_lines + self.generated_lines + self.rename_lines

    @property
    def filtered_percentage(self) -> float:
        if not self.total_lines:
            return 0.0
        return 100.0 * self.filtered_lines / self.total_lines

    def describe(self) -> str:
        parts = [f"{self.total} chunks", f"{self.visible} shown", f"{self.hidden} hidden"]
        if self.analyzing:
            parts.append(f"{self.analyzing} still analyzing")
        if self.failed:
            parts.append(f"{self.failed} failed")
        if self.filtered_lines:
            parts.append(f"{self.filtered_lines} lines filtered ({self.filtered_percentage:.1f}%)")
        return ", ".join(parts)


class ReviewSession:
    """Ordered chunk records plus the (chunk, role) deduplication state.

    A pair may be claimed for scoring only when it has neither an active
    claim nor a terminal result; a terminal result is recorded at most once
    until the pair is explicitly invalidated.
    """

    def __init__(
        self,
        chunks: Sequence[Chunk],
        config: Config | None = None,
        events: EventStream | None = None,
    ):
        self.config = config or Config()
        self.events = events or EventStream(self.config.events.buffer_size)
        self.filter = ChunkFilter(self.config.filters.controversiality_threshold)
        self._lock = threading.Lock()
        self._override = False
        self._claims: set[tuple[ChunkId, ReviewRole]] = set()
        self._weights = {role: settings.weight for role, settings in self.config.roles.items()}

        self._chunks: dict[ChunkId, Chunk] = {}
        self._records: dict[ChunkId, ChunkRecord] = {}
        for chunk in chunks:
            if chunk.id in self._chunks:
                raise ParseFailure(f"Duplicate chunk {chunk.id}", chunk.file_path)
            self._chunks[chunk.id] = chunk
            record = self._build(chunk, (), {})
            self._records[chunk.id] = record
            self.events.publish(
                ChunkRegistered(
                    chunk_id=chunk.id,
                    position=chunk.position,
                    file_path=chunk.file_path,
                    classification=chunk.classification,
                    visible=record.visibility.visible,
                    reason=record.visibility.reason,
                )
            )

    @property
    def chunks(self) -> list[Chunk]:
        return list(self._chunks.values())

    @property
    def auto_filter_override(self) -> bool:
        return self._override

    def _build(
        self,
        chunk: Chunk,
        expected: tuple[ReviewRole, ...],
        results: dict[ReviewRole, ScoreResult],
    ) -> ChunkRecord:
        """Derive a complete record from its inputs. Caller holds the lock."""
        composite = composite_score(
            results.values(), self.config.filters.composite_policy, self._weights
        )
        record = ChunkRecord(
            chunk=chunk,
            expected_roles=expected,
            results=MappingProxyType(dict(results)),
            composite=composite,
        )
        if chunk.auto_filtered and not self._override:
            status = RecordStatus.FILTERED
        elif record.pending_roles:
            status = RecordStatus.ANALYZING
        elif expected and len(record.failed_roles) == len(expected):
            status = RecordStatus.FAILED
        elif composite is None:
            status = RecordStatus.UNSCORED
        elif record.failed_roles:
            status = RecordStatus.PARTIAL
        else:
            status = RecordStatus.SCORED
        record = replace(record, status=status)
        return replace(record, visibility=self.filter.evaluate(record, self._override))

    def _swap(
        self,
        chunk_id: ChunkId,
        expected: tuple[ReviewRole, ...],
        results: dict[ReviewRole, ScoreResult],
        updated: ScoreResult | None = None,
    ) -> ChunkRecord:
        """Replace a record and publish what changed. Caller holds the lock."""
        old = self._records[chunk_id]
        new = self._build(old.chunk, expected, results)
        self._records[chunk_id] = new

        if updated is not None:
            self.events.publish(
                ScoreUpdated(chunk_id=chunk_id, role=updated.role, result=updated, composite=new.composite)
            )
        if old.visibility.visible != new.visibility.visible:
            self.events.publish(
                ChunkVisibilityChanged(chunk_id=chunk_id, visible=new.visibility.visible, reason=new.visibility.reason)
            )
        return new

    def _record_or_raise(self, chunk_id: ChunkId) -> ChunkRecord:
        try:
            return self._records[chunk_id]
        except KeyError:
            raise KeyError(f"Unknown chunk: {chunk_id}") from None

    def expect(self, chunk_id: ChunkId, roles: Iterable[ReviewRole]) -> ChunkRecord:
        """Declare roles that are going to score a chunk."""
        with self._lock:
            record = self._record_or_raise(chunk_id)
            expected = list(record.expected_roles)
            expected.extend(role for role in roles if role not in expected)
            if tuple(expected) == record.expected_roles:
                return record
            return self._swap(chunk_id, tuple(expected), dict(record.results))

    def claim(self, chunk_id: ChunkId, role: ReviewRole) -> bool:
        """Reserve a (chunk, role) pair for scoring.

        Returns:
            False if the pair is already claimed or has a terminal result
        """
        with self._lock:
            record = self._record_or_raise(chunk_id)
            key = (chunk_id, role)
            if key in self._claims or role in record.results:
                return False
            self._claims.add(key)

            expected = record.expected_roles
            if role not in expected:
                expected = expected + (role,)
            results = dict(record.results)
            pending = ScoreResult.pending(chunk_id, role)
            results[role] = pending
            self._swap(chunk_id, expected, results, updated=pending)
            return True

    def mark_retrying(
        self, chunk_id: ChunkId, role: ReviewRole, attempts: int, kind: FailureKind, message: str = ""
    ) -> bool:
        """Note that a claimed pair failed transiently and will be retried."""
        with self._lock:
            if (chunk_id, role) not in self._claims:
                return False
            record = self._records[chunk_id]
            retrying = ScoreResult.retrying(chunk_id, role, kind, message, attempts)
            results = dict(record.results)
            results[role] = retrying
            self._swap(chunk_id, record.expected_roles, results, updated=retrying)
            return True

    def record(self, result: ScoreResult) -> bool:
        """Store the terminal result of a claimed pair.

        Returns:
            False, leaving the session unchanged, if the pair is not claimed
            (never claimed, released after cancellation, or already final)
        """
        if not result.status.terminal:
            raise ValueError(f"record() needs a terminal result, got {result.status.value}")

        with self._lock:
            key = (result.chunk_id, result.role)
            if key not in self._claims:
                logger.debug(f"Discarding result for unclaimed pair {result.chunk_id} [{result.role.value}]")
                return False
            self._claims.discard(key)

            record = self._records[result.chunk_id]
            results = dict(record.results)
            results[result.role] = result
            self._swap(result.chunk_id, record.expected_roles, results, updated=result)
            return True

    def release(self, chunk_id: ChunkId, role: ReviewRole) -> bool:
        """Drop an unfinished claim so the pair can be scheduled again."""
        with self._lock:
            key = (chunk_id, role)
            if key not in self._claims:
                return False
            self._claims.discard(key)

            record = self._records[chunk_id]
            results = dict(record.results)
            results.pop(role, None)
            self._swap(chunk_id, record.expected_roles, results)
            return True

    def invalidate(self, chunk_id: ChunkId, roles: Iterable[ReviewRole] | None = None) -> list[ReviewRole]:
        """Clear terminal results so the pairs may be scored again.

        In-flight pairs are left alone.

        Returns:
            The roles whose results were cleared
        """
        with self._lock:
            record = self._record_or_raise(chunk_id)
            targets = list(roles) if roles is not None else list(record.results)
            results = dict(record.results)
            cleared = []
            for role in targets:
                result = results.get(role)
                if result is not None and result.status.terminal:
                    del results[role]
                    cleared.append(role)
            if cleared:
                self._swap(chunk_id, record.expected_roles, results)
                logger.debug(f"Invalidated {chunk_id}: {', '.join(r.value for r in cleared)}")
            return cleared

    def set_auto_filter_override(self, enabled: bool) -> None:
        """Show (and allow scoring of) statically noisy chunks."""
        with self._lock:
            if enabled == self._override:
                return
            self._override = enabled
            for chunk_id, record in list(self._records.items()):
                self._swap(chunk_id, record.expected_roles, dict(record.results))

    def record_for(self, chunk_id: ChunkId) -> ChunkRecord:
        with self._lock:
            return self._record_or_raise(chunk_id)

    def records(self) -> list[ChunkRecord]:
        """All records in diff order."""
        with self._lock:
            return list(self._records.values())

    def visible_records(self, sort: SortMode = SortMode.SCORE) -> list[ChunkRecord]:
        return self.filter.sort((r for r in self.records() if r.visible), sort)

    def summary(self) -> AnalysisSummary:
        records = self.records()
        counts = {status: 0 for status in RecordStatus}
        lines = {cls: 0 for cls in StaticClass}
        for record in records:
            counts[record.status] += 1
            if record.status is RecordStatus.FILTERED:
                lines[record.chunk.classification] += record.chunk.changes
        visible = sum(1 for r in records if r.visible)
        return AnalysisSummary(
            total=len(records),
            analyzing=counts[RecordStatus.ANALYZING],
            scored=counts[RecordStatus.SCORED] + counts[RecordStatus.PARTIAL],
            failed=counts[RecordStatus.FAILED],
            unscored=counts[RecordStatus.UNSCORED],
            visible=visible,
            hidden=len(records) - visible,
            filtered=counts[RecordStatus.FILTERED],
            whitespace_lines=lines[StaticClass.WHITESPACE],
            import_lines=lines[StaticClass.IMPORT_ONLY],
            generated_lines=lines[StaticClass.GENERATED] + lines[StaticClass.LOCK_FILE],
            rename_lines=lines[StaticClass.RENAME],
            total_lines=sum(r.chunk.changes for r in records),
        )
