"""crai - concurrent AI scoring of code review diffs."""

__version__ = "0.1.0"

from .chunker import Chunker, StaticClassifier
from .config import Config, load_config
from .errors import (
    ConfigurationError,
    CraiError,
    FailureKind,
    GitError,
    ParseFailure,
    ProviderFailure,
)
from .events import (
    AnalysisComplete,
    ChunkRegistered,
    ChunkVisibilityChanged,
    EventStream,
    ScoreUpdated,
)
from .filter import ChunkFilter, SortMode, Visibility, VisibilityReason
from .models import Chunk, ReviewRole, ScoreResult, ScoreStatus, StaticClass, SummaryResponse
from .orchestrator import BackoffPolicy, Orchestrator, WorkState
from .providers import ScoringContext, ScoringProvider, create_provider
from .reviewer import CodeReviewer, ReviewOutcome
from .router import SubagentRouter, WorkItem
from .session import AnalysisSummary, ChunkRecord, RecordStatus, ReviewSession, composite_score

__all__ = [
    "AnalysisComplete",
    "AnalysisSummary",
    "BackoffPolicy",
    "Chunk",
    "ChunkFilter",
    "ChunkRecord",
    "ChunkRegistered",
    "ChunkVisibilityChanged",
    "Chunker",
    "CodeReviewer",
    "Config",
    "ConfigurationError",
    "CraiError",
    "EventStream",
    "FailureKind",
    "GitError",
    "Orchestrator",
    "ParseFailure",
    "ProviderFailure",
    "RecordStatus",
    "ReviewOutcome",
    "ReviewRole",
    "ReviewSession",
    "ScoreResult",
    "ScoreStatus",
    "ScoreUpdated",
    "ScoringContext",
    "ScoringProvider",
    "SortMode",
    "StaticClass",
    "StaticClassifier",
    "SubagentRouter",
    "SummaryResponse",
    "Visibility",
    "VisibilityReason",
    "WorkItem",
    "WorkState",
    "composite_score",
    "create_provider",
    "load_config",
]
