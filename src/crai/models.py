"""Core data types shared by the chunker, orchestrator and session."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import PurePosixPath

from .errors import FailureKind

ChunkId = str

_EXTENSION_LANGUAGES = {
    "rs": "rust",
    "py": "python",
    "js": "javascript",
    "mjs": "javascript",
    "cjs": "javascript",
    "jsx": "javascript",
    "ts": "typescript",
    "tsx": "typescript",
    "go": "go",
    "java": "java",
    "cs": "csharp",
    "cpp": "cpp",
    "cc": "cpp",
    "cxx": "cpp",
    "hpp": "cpp",
    "c": "c",
    "h": "c",
    "rb": "ruby",
    "kt": "kotlin",
    "kts": "kotlin",
    "swift": "swift",
    "yaml": "yaml",
    "yml": "yaml",
    "json": "json",
    "toml": "toml",
    "md": "markdown",
    "markdown": "markdown",
    "sh": "shell",
    "bash": "shell",
    "zsh": "shell",
}


def language_for_path(path: str) -> str:
    """Guess the language of a file from its extension."""
    suffix = PurePosixPath(path).suffix.lstrip(".").lower()
    return _EXTENSION_LANGUAGES.get(suffix, "unknown")


class LineKind(str, Enum):
    CONTEXT = "context"
    ADD = "add"
    REMOVE = "remove"

    @property
    def prefix(self) -> str:
        return {LineKind.CONTEXT: " ", LineKind.ADD: "+", LineKind.REMOVE: "-"}[self]


class FileStatus(str, Enum):
    ADDED = "added"
    DELETED = "deleted"
    MODIFIED = "modified"
    RENAMED = "renamed"
    COPIED = "copied"


@dataclass(frozen=True)
class LineRange:
    start: int
    count: int

    @property
    def end(self) -> int:
        return self.start + max(self.count - 1, 0)

    def __str__(self) -> str:
        return f"{self.start},{self.count}"


@dataclass(frozen=True)
class DiffLine:
    kind: LineKind
    content: str
    old_line: int | None = None
    new_line: int | None = None


@dataclass(frozen=True)
class Hunk:
    """One `@@` section of a unified diff."""

    old_range: LineRange
    new_range: LineRange
    header: str
    lines: tuple[DiffLine, ...]

    @property
    def additions(self) -> int:
        return sum(1 for line in self.lines if line.kind is LineKind.ADD)

    @property
    def deletions(self) -> int:
        return sum(1 for line in self.lines if line.kind is LineKind.REMOVE)


@dataclass(frozen=True)
class FileDiff:
    path: str
    status: FileStatus = FileStatus.MODIFIED
    hunks: tuple[Hunk, ...] = ()
    old_path: str | None = None
    is_binary: bool = False

    @property
    def language(self) -> str:
        return language_for_path(self.path)


class StaticClass(str, Enum):
    """Cheap, non-AI classification of a chunk."""

    NORMAL = "normal"
    WHITESPACE = "whitespace"
    IMPORT_ONLY = "import_only"
    RENAME = "rename"
    GENERATED = "generated"
    LOCK_FILE = "lock_file"

    @property
    def is_noise(self) -> bool:
        return self is not StaticClass.NORMAL


@dataclass(frozen=True)
class Chunk:
    """An independently reviewable unit of a diff: exactly one hunk.

    Immutable once created by the chunker.
    """

    id: ChunkId
    position: int
    file_path: str
    file_index: int
    hunk_index: int
    old_range: LineRange
    new_range: LineRange
    header: str
    lines: tuple[DiffLine, ...]
    language: str = "unknown"
    classification: StaticClass = StaticClass.NORMAL
    auto_filtered: bool = False

    @staticmethod
    def make_id(file_path: str, old_range: LineRange, new_range: LineRange) -> ChunkId:
        return f"{file_path}@-{old_range}+{new_range}"

    @property
    def content(self) -> str:
        """Diff text of the chunk, one prefixed line per diff line."""
        return "\n".join(f"{line.kind.prefix}{line.content}" for line in self.lines)

    @property
    def changes(self) -> int:
        return sum(1 for line in self.lines if line.kind is not LineKind.CONTEXT)


class ReviewRole(str, Enum):
    """Reviewer perspectives; each is a separate provider invocation."""

    PRIMARY = "primary"
    SECURITY = "security"
    PERFORMANCE = "performance"
    USABILITY = "usability"

    @property
    def label(self) -> str:
        return self.value.capitalize()


class ScoreStatus(str, Enum):
    PENDING = "pending"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (ScoreStatus.SUCCEEDED, ScoreStatus.FAILED)


@dataclass(frozen=True)
class Concern:
    category: str
    description: str
    severity: str = "medium"


@dataclass(frozen=True)
class ScoreResponse:
    """Validated payload of a successful provider call."""

    score: float
    rationale: str
    classification: str | None = None
    concerns: tuple[Concern, ...] = ()


@dataclass(frozen=True)
class ScoreResult:
    """Outcome for one (chunk, role) pair."""

    chunk_id: ChunkId
    role: ReviewRole
    status: ScoreStatus
    score: float | None = None
    rationale: str = ""
    failure: FailureKind | None = None
    attempts: int = 0
    classification: str | None = None
    concerns: tuple[Concern, ...] = ()
    timestamp: datetime = field(default_factory=datetime.now)

    @classmethod
    def pending(cls, chunk_id: ChunkId, role: ReviewRole) -> "ScoreResult":
        return cls(chunk_id=chunk_id, role=role, status=ScoreStatus.PENDING)

    @classmethod
    def succeeded(
        cls, chunk_id: ChunkId, role: ReviewRole, response: ScoreResponse, attempts: int
    ) -> "ScoreResult":
        return cls(
            chunk_id=chunk_id,
            role=role,
            status=ScoreStatus.SUCCEEDED,
            score=response.score,
            rationale=response.rationale,
            attempts=attempts,
            classification=response.classification,
            concerns=response.concerns,
        )

    @classmethod
    def retrying(
        cls, chunk_id: ChunkId, role: ReviewRole, kind: FailureKind, message: str, attempts: int
    ) -> "ScoreResult":
        return cls(
            chunk_id=chunk_id,
            role=role,
            status=ScoreStatus.RETRYING,
            rationale=message,
            failure=kind,
            attempts=attempts,
        )

    @classmethod
    def failed(
        cls, chunk_id: ChunkId, role: ReviewRole, kind: FailureKind, message: str, attempts: int
    ) -> "ScoreResult":
        return cls(
            chunk_id=chunk_id,
            role=role,
            status=ScoreStatus.FAILED,
            rationale=message,
            failure=kind,
            attempts=attempts,
        )

    def to_dict(self) -> dict:
        return {
            "role": self.role.value,
            "status": self.status.value,
            "score": self.score,
            "rationale": self.rationale,
            "failure": self.failure.value if self.failure else None,
            "attempts": self.attempts,
            "classification": self.classification,
            "concerns": [
                {"category": c.category, "description": c.description, "severity": c.severity}
                for c in self.concerns
            ],
            "timestamp": self.timestamp.isoformat(),
        }


class ImpactLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class KeyChange:
    description: str
    affected_files: tuple[str, ...] = ()
    impact: ImpactLevel = ImpactLevel.MEDIUM


@dataclass(frozen=True)
class RiskFactor:
    factor: str
    contribution: float = 0.0


@dataclass(frozen=True)
class SummaryResponse:
    """Whole-diff overview produced by one provider call."""

    overview: str
    key_changes: tuple[KeyChange, ...] = ()
    overall_risk: RiskLevel = RiskLevel.LOW
    risk_factors: tuple[RiskFactor, ...] = ()

    def to_dict(self) -> dict:
        return {
            "overview": self.overview,
            "key_changes": [
                {"description": c.description, "affected_files": list(c.affected_files), "impact_level": c.impact.value}
                for c in self.key_changes
            ],
            "risk_assessment": {
                "overall_risk": self.overall_risk.value,
                "factors": [{"factor": f.factor, "contribution": f.contribution} for f in self.risk_factors],
            },
        }
