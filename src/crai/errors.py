"""Exception hierarchy for crai."""

from enum import Enum


class CraiError(Exception):
    """Base class for all crai errors."""


class ParseFailure(CraiError):
    """Raised when diff input is malformed. Fatal to session creation."""

    def __init__(self, message: str, file_path: str | None = None, line: int | None = None):
        self.file_path = file_path
        self.line = line
        location = ""
        if file_path:
            location = f" in {file_path}"
        if line is not None:
            location += f" (line {line})"
        super().__init__(f"{message}{location}")


class ConfigurationError(CraiError):
    """Raised for invalid thresholds, roles or provider settings."""


class GitError(CraiError):
    """Raised when the git diff source cannot produce a diff."""


class FailureKind(str, Enum):
    """Typed failure kinds a provider may report."""

    TIMEOUT = "timeout"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    MALFORMED_RESPONSE = "malformed_response"
    RATE_LIMITED = "rate_limited"

    @property
    def retryable(self) -> bool:
        return self is not FailureKind.MALFORMED_RESPONSE


class ProviderFailure(CraiError):
    """A single provider call failed.

    Contained per work item by the orchestrator: retried when the kind is
    retryable, otherwise recorded as a failed score result.
    """

    def __init__(self, kind: FailureKind, message: str = ""):
        self.kind = kind
        self.message = message or kind.value
        super().__init__(f"{kind.value}: {self.message}")

    @property
    def retryable(self) -> bool:
        return self.kind.retryable
