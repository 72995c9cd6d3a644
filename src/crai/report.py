"""Text and JSON rendering of review results."""

import json
import textwrap
from collections.abc import Sequence
from dataclasses import asdict

from .models import ReviewRole, ScoreStatus, SummaryResponse
from .session import AnalysisSummary, ChunkRecord

_STATUS_MARKERS = {
    "analyzing": "analyzing...",
    "failed": "analysis failed",
    "unscored": "unscored",
    "filtered": "auto-filtered",
}


def _format_score(score: float | None) -> str:
    return "  -  " if score is None else f"{score:.2f} "


def _render_record(record: ChunkRecord, show_diff: bool) -> list[str]:
    chunk = record.chunk
    header = f" {chunk.header}" if chunk.header else ""
    marker = _STATUS_MARKERS.get(record.status.value, "")
    if chunk.classification.is_noise:
        marker = f"{marker}, {chunk.classification.value}" if marker else chunk.classification.value

    score = _format_score(record.composite).strip()
    lines = [f"[{score:>4}] {chunk.file_path} @@ -{chunk.old_range} +{chunk.new_range} @@{header}"]
    if marker:
        lines[0] += f"  ({marker})"

    for role in ReviewRole:
        result = record.result(role)
        if result is None:
            continue
        if result.status is ScoreStatus.SUCCEEDED:
            detail = result.rationale
        elif result.status is ScoreStatus.FAILED:
            detail = f"failed ({result.failure.value}) after {result.attempts} attempt(s): {result.rationale}"
        else:
            detail = result.status.value
        wrapped = textwrap.shorten(detail, width=100, placeholder="...") if detail else ""
        lines.append(f"    {role.value:<12} {_format_score(result.score)} {wrapped}".rstrip())
        for concern in result.concerns:
            lines.append(f"      ! {concern.category}/{concern.severity}: {concern.description}")

    if show_diff:
        lines.append("")
        lines.extend(f"    {line}" for line in chunk.content.split("\n"))
    return lines


def render_text(
    records: Sequence[ChunkRecord],
    summary: AnalysisSummary,
    title: str = "",
    threshold: float | None = None,
    show_diff: bool = False,
) -> str:
    """Render records as a plain-text report."""
    out = []
    if title:
        out.append(title)
        out.append("=" * len(title))
    line = summary.describe()
    if threshold is not None:
        line += f" (threshold {threshold:.2f})"
    out.append(line)
    out.append("")

    if not records:
        out.append("No chunks to show.")
    for record in records:
        out.extend(_render_record(record, show_diff))
        out.append("")
    return "\n".join(out).rstrip() + "\n"


def render_json(
    records: Sequence[ChunkRecord],
    summary: AnalysisSummary,
    title: str = "",
    threshold: float | None = None,
) -> str:
    """Render records as a JSON document."""
    data = {
        "target": title,
        "threshold": threshold,
        "summary": asdict(summary),
        "chunks": [record.to_dict() for record in records],
    }
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


def _filter_lines(summary: AnalysisSummary) -> list[str]:
    lines = [f"Filtered lines: {summary.filtered_lines} of {summary.total_lines} ({summary.filtered_percentage:.1f}%)"]
    for label, count in (
        ("whitespace", summary.whitespace_lines),
        ("imports", summary.import_lines),
        ("generated", summary.generated_lines),
        ("renames", summary.rename_lines),
    ):
        if count:
            lines.append(f"  {label:<11} {count}")
    return lines


def render_summary_text(
    response: SummaryResponse | None,
    summary: AnalysisSummary,
    title: str = "",
    files: int = 0,
    skipped_files: Sequence[str] = (),
) -> str:
    """Render a change summary as plain text."""
    out = []
    if title:
        out.append(title)
        out.append("=" * len(title))
    out.append(f"Files changed: {files}")
    out.append(f"Total chunks: {summary.total} ({summary.filtered} auto-filtered)")
    out.extend(_filter_lines(summary))
    if skipped_files:
        out.append(f"Skipped (too large): {', '.join(skipped_files)}")

    if response is not None:
        out.append("")
        out.append(textwrap.fill(response.overview, width=100))
        if response.key_changes:
            out.append("")
            out.append("Key changes:")
            for change in response.key_changes:
                files_note = f" [{', '.join(change.affected_files)}]" if change.affected_files else ""
                out.append(f"  - ({change.impact.value}) {change.description}{files_note}")
        out.append("")
        out.append(f"Overall risk: {response.overall_risk.value}")
        for factor in response.risk_factors:
            out.append(f"  {factor.contribution:.2f}  {factor.factor}")
    return "\n".join(out).rstrip() + "\n"


def render_summary_json(
    response: SummaryResponse | None,
    summary: AnalysisSummary,
    target: str = "",
    files: int = 0,
    skipped_files: Sequence[str] = (),
) -> str:
    data = {
        "target": target,
        "files_changed": files,
        "skipped_files": list(skipped_files),
        "stats": asdict(summary),
        "summary": response.to_dict() if response is not None else None,
    }
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"
