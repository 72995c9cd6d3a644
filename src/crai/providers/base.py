"""Base class for scoring providers."""

import json
import math
import re
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..errors import FailureKind, ProviderFailure
from ..models import (
    Chunk,
    Concern,
    ImpactLevel,
    KeyChange,
    ReviewRole,
    RiskFactor,
    RiskLevel,
    ScoreResponse,
    SummaryResponse,
)
from .prompts import build_prompt, build_summary_prompt

_ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[a-zA-Z]|\x1b\][^\x07]*\x07")
_RATE_LIMIT_RE = re.compile(r"rate[ _-]?limit|too many requests|\b429\b|quota", re.IGNORECASE)


@dataclass(frozen=True)
class ScoringContext:
    """Prompt context shared by every request of a session."""

    description: str | None = None
    commit_messages: tuple[str, ...] = ()
    custom_prompts: Mapping[ReviewRole, str] = field(default_factory=dict)

    def prompt_for(self, chunk: Chunk, role: ReviewRole) -> str:
        return build_prompt(
            chunk,
            role,
            description=self.description,
            commit_messages=self.commit_messages,
            custom_prompt=self.custom_prompts.get(role),
        )

    def summary_prompt(self, chunks: Sequence[Chunk]) -> str:
        return build_summary_prompt(chunks, description=self.description, commit_messages=self.commit_messages)


@dataclass(frozen=True)
class ProviderHealth:
    is_available: bool
    version: str | None = None
    detail: str = ""


class ScoringProvider(ABC):
    """Abstract base class for scoring providers.

    Implementations make exactly one outbound request per call and never
    retry; retry policy belongs to the orchestrator.
    """

    @abstractmethod
    async def score(
        self,
        chunk: Chunk,
        role: ReviewRole,
        context: ScoringContext,
        timeout: float,
    ) -> ScoreResponse:
        """Score one chunk from the perspective of one role.

        Args:
            chunk: The chunk to score
            role: The reviewer role that was requested
            context: Shared prompt context
            timeout: Seconds the call may take before it must fail

        Returns:
            A validated response with a score in [0, 1]

        Raises:
            ProviderFailure: With kind timeout, provider_unavailable,
                malformed_response or rate_limited.
        """
        pass

    @abstractmethod
    async def summarize(
        self,
        chunks: Sequence[Chunk],
        context: ScoringContext,
        timeout: float,
    ) -> SummaryResponse:
        """Describe the whole change set in one request.

        Raises:
            ProviderFailure: With the same kinds as :meth:`score`.
        """
        pass

    @abstractmethod
    async def health_check(self) -> ProviderHealth:
        """Check that the backend is installed and reachable."""
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the name of the provider."""
        pass


def strip_ansi_codes(text: str) -> str:
    return _ANSI_RE.sub("", text)


def extract_json(text: str) -> str | None:
    """Return the first balanced ``{...}`` object in ``text``, if any."""
    clean = strip_ansi_codes(text)
    start = None
    depth = 0
    in_string = False
    escape_next = False

    for i, c in enumerate(clean):
        if escape_next:
            escape_next = False
            continue
        if c == "\\" and in_string:
            escape_next = True
        elif c == '"':
            in_string = not in_string
        elif c == "{" and not in_string:
            if depth == 0:
                start = i
            depth += 1
        elif c == "}" and not in_string and depth > 0:
            depth -= 1
            if depth == 0 and start is not None:
                return clean[start : i + 1]
    return None


def classify_error_text(text: str) -> FailureKind:
    """Map backend error output to a failure kind."""
    if _RATE_LIMIT_RE.search(text or ""):
        return FailureKind.RATE_LIMITED
    return FailureKind.PROVIDER_UNAVAILABLE


def _parse_concerns(raw: Any) -> tuple[Concern, ...]:
    if not isinstance(raw, list):
        return ()
    concerns = []
    for item in raw:
        if isinstance(item, dict) and item.get("description"):
            concerns.append(
                Concern(
                    category=str(item.get("category", "general")),
                    description=str(item["description"]),
                    severity=str(item.get("severity", "medium")),
                )
            )
    return tuple(concerns)


def _load_payload(payload: str | dict) -> dict:
    if isinstance(payload, dict):
        return payload
    json_text = extract_json(payload or "")
    if json_text is None:
        raise ProviderFailure(FailureKind.MALFORMED_RESPONSE, "No JSON object in response")
    try:
        data = json.loads(json_text)
    except json.JSONDecodeError as e:
        raise ProviderFailure(FailureKind.MALFORMED_RESPONSE, f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ProviderFailure(FailureKind.MALFORMED_RESPONSE, "Response is not a JSON object")
    return data


def parse_score_response(payload: str | dict, role: ReviewRole) -> ScoreResponse:
    """Validate a provider payload.

    Scores outside [0, 1] are rejected rather than clamped.

    Raises:
        ProviderFailure: ``malformed_response`` if the payload has no JSON
            object, no numeric score, an out-of-range score, or names a
            different role.
    """
    data = _load_payload(payload)

    reported_role = data.get("role")
    if reported_role is not None and str(reported_role).lower() != role.value:
        raise ProviderFailure(
            FailureKind.MALFORMED_RESPONSE,
            f"Response is for role '{reported_role}', expected '{role.value}'",
        )

    score = data.get("score")
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        raise ProviderFailure(FailureKind.MALFORMED_RESPONSE, f"Missing or non-numeric score: {score!r}")
    score = float(score)
    if not math.isfinite(score) or not 0.0 <= score <= 1.0:
        raise ProviderFailure(FailureKind.MALFORMED_RESPONSE, f"Score {score} outside [0, 1]")

    rationale = data.get("reasoning") or data.get("rationale") or ""
    classification = data.get("classification")
    return ScoreResponse(
        score=score,
        rationale=str(rationale),
        classification=str(classification) if classification else None,
        concerns=_parse_concerns(data.get("concerns")),
    )


def _enum_value(enum_cls, raw: Any, default):
    try:
        return enum_cls(str(raw).lower())
    except ValueError:
        return default


def parse_summary_response(payload: str | dict) -> SummaryResponse:
    """Validate a summary payload.

    Only ``overview`` is required; malformed key changes and risk factors
    are dropped and unknown levels fall back to medium impact and low risk.

    Raises:
        ProviderFailure: ``malformed_response`` if there is no JSON object
            or no overview.
    """
    data = _load_payload(payload)

    overview = data.get("overview")
    if not isinstance(overview, str) or not overview.strip():
        raise ProviderFailure(FailureKind.MALFORMED_RESPONSE, "Summary has no overview")

    key_changes = []
    raw_changes = data.get("key_changes")
    for item in raw_changes if isinstance(raw_changes, list) else ():
        if not isinstance(item, dict) or not item.get("description"):
            continue
        files = item.get("affected_files")
        key_changes.append(
            KeyChange(
                description=str(item["description"]),
                affected_files=tuple(str(f) for f in files) if isinstance(files, list) else (),
                impact=_enum_value(ImpactLevel, item.get("impact_level"), ImpactLevel.MEDIUM),
            )
        )

    risk = data.get("risk_assessment")
    if not isinstance(risk, dict):
        risk = {}
    factors = []
    raw_factors = risk.get("factors")
    for item in raw_factors if isinstance(raw_factors, list) else ():
        if not isinstance(item, dict) or not item.get("factor"):
            continue
        contribution = item.get("contribution")
        if isinstance(contribution, bool) or not isinstance(contribution, (int, float)):
            contribution = 0.0
        factors.append(RiskFactor(factor=str(item["factor"]), contribution=float(contribution)))

    return SummaryResponse(
        overview=overview.strip(),
        key_changes=tuple(key_changes),
        overall_risk=_enum_value(RiskLevel, risk.get("overall_risk"), RiskLevel.LOW),
        risk_factors=tuple(factors),
    )
