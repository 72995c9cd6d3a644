"""Visibility and ordering of chunk records."""

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .session import ChunkRecord


class VisibilityReason(str, Enum):
    AUTO_FILTERED = "auto_filtered"
    ANALYZING = "analyzing"
    ANALYSIS_FAILED = "analysis_failed"
    UNSCORED = "unscored"
    ABOVE_THRESHOLD = "above_threshold"
    BELOW_THRESHOLD = "below_threshold"


@dataclass(frozen=True)
class Visibility:
    visible: bool
    reason: VisibilityReason


class SortMode(str, Enum):
    SCORE = "score"
    DIFF = "diff"


class ChunkFilter:
    """Decide whether a chunk record is shown.

    Content the system has not finished evaluating is never hidden: chunks
    still analyzing, chunks whose analysis failed and unscored chunks stay
    visible. Only statically noisy chunks and chunks scored below the
    threshold are hidden.
    """

    def __init__(self, threshold: float):
        self.threshold = threshold

    def evaluate(self, record: "ChunkRecord", override: bool = False) -> Visibility:
        if record.chunk.auto_filtered and not override:
            return Visibility(False, VisibilityReason.AUTO_FILTERED)
        if record.pending_roles:
            return Visibility(True, VisibilityReason.ANALYZING)
        if record.expected_roles and len(record.failed_roles) == len(record.expected_roles):
            return Visibility(True, VisibilityReason.ANALYSIS_FAILED)
        if record.composite is None:
            return Visibility(True, VisibilityReason.UNSCORED)
        if record.composite >= self.threshold:
            return Visibility(True, VisibilityReason.ABOVE_THRESHOLD)
        return Visibility(False, VisibilityReason.BELOW_THRESHOLD)

    @staticmethod
    def sort(records: Iterable["ChunkRecord"], mode: SortMode = SortMode.SCORE) -> list["ChunkRecord"]:
        """Order records by composite score (highest first) or by diff position.

        Unscored records sort after scored ones; ties keep diff order.
        """
        if mode is SortMode.DIFF:
            return sorted(records, key=lambda r: r.chunk.position)
        return sorted(
            records,
            key=lambda r: (r.composite is None, -(r.composite or 0.0), r.chunk.position),
        )
