"""Prompt templates for each review role and for change summaries."""

from collections.abc import Sequence

from ..constants import SUMMARY_MAX_DIFF_CHARS
from ..models import Chunk, ReviewRole

PRIMARY_PROMPT = """You are an experienced code reviewer triaging a change set.
Score how much human review attention each diff chunk deserves.
0.0 means trivial and auto-approvable; 1.0 means critical and needing deep review.
Consider security implications, correctness risks, architectural impact and maintainability."""

SECURITY_PROMPT = """You are a security-focused code reviewer. Analyze the provided code changes for:
- Authentication and authorization vulnerabilities
- Injection vulnerabilities (SQL, command, XSS)
- Data exposure and privacy issues
- Cryptographic weaknesses
- Input validation gaps
- Security misconfigurations
Focus only on security-relevant findings. Score 0.0 when the change has no security impact."""

PERFORMANCE_PROMPT = """You are a performance-focused code reviewer. Analyze the provided code changes for:
- Algorithm complexity issues (O(n^2) or worse in hot paths)
- Unnecessary allocations or copies
- Missing caching opportunities
- I/O inefficiencies
- Database query patterns
- Memory leaks or resource exhaustion
Focus only on performance-relevant findings. Score 0.0 when the change has no performance impact."""

USABILITY_PROMPT = """You are a usability-focused code reviewer. Analyze the provided code changes for:
- API design clarity and consistency
- Error message quality and helpfulness
- Documentation completeness
- Breaking changes impact
- Developer experience concerns
- Configuration complexity
Focus only on usability and developer experience findings. Score 0.0 when there is nothing to flag."""

SYSTEM_PROMPTS = {
    ReviewRole.PRIMARY: PRIMARY_PROMPT,
    ReviewRole.SECURITY: SECURITY_PROMPT,
    ReviewRole.PERFORMANCE: PERFORMANCE_PROMPT,
    ReviewRole.USABILITY: USABILITY_PROMPT,
}

RESPONSE_FORMAT = """Respond with ONLY a JSON object in this exact format, no other text:
{
  "role": "<the role you were asked to review as>",
  "score": <number between 0.0 and 1.0>,
  "classification": "trivial" | "routine" | "notable" | "significant" | "critical",
  "reasoning": "<one or two sentences explaining the score>",
  "concerns": [
    {"category": "security" | "performance" | "correctness" | "maintainability" | "readability" | "testing" | "documentation" | "architecture",
     "description": "<short description>",
     "severity": "low" | "medium" | "high" | "critical"}
  ]
}"""


def system_prompt(role: ReviewRole) -> str:
    return SYSTEM_PROMPTS[role]


def build_prompt(
    chunk: Chunk,
    role: ReviewRole,
    description: str | None = None,
    commit_messages: tuple[str, ...] = (),
    custom_prompt: str | None = None,
) -> str:
    """Build the user prompt asking ``role`` to score ``chunk``."""
    header = f" {chunk.header}" if chunk.header else ""
    prompt = f"""Review this code diff as the {role.value} reviewer and score it.

## Diff Content
```{chunk.language}
@@ -{chunk.old_range} +{chunk.new_range} @@{header}
{chunk.content}
```

## Context
- File: {chunk.file_path}
- Language: {chunk.language}
- Lines: {chunk.new_range.start}-{chunk.new_range.end}
"""

    if description:
        prompt += f"\n## Change Description\n{description}\n"

    if commit_messages:
        prompt += "\n## Related Commits\n"
        prompt += "".join(f"- {msg}\n" for msg in commit_messages)

    if custom_prompt:
        prompt += f"\n## Additional Instructions\n{custom_prompt}\n"

    prompt += f"\n{RESPONSE_FORMAT}"
    return prompt


SUMMARY_PROMPT = """You are an experienced code reviewer writing a briefing for a change set.
Summarize what the change does as a whole, list the key changes with the files they touch,
and assess the overall risk of merging it."""

SUMMARY_RESPONSE_FORMAT = """Respond with ONLY a JSON object in this exact format, no other text:
{
  "overview": "<two to four sentences describing the change as a whole>",
  "key_changes": [
    {"description": "<what changed>",
     "affected_files": ["<path>"],
     "impact_level": "low" | "medium" | "high"}
  ],
  "risk_assessment": {
    "overall_risk": "low" | "medium" | "high" | "critical",
    "factors": [{"factor": "<risk factor>", "contribution": <number between 0.0 and 1.0>}]
  }
}"""


def build_summary_prompt(
    chunks: Sequence[Chunk],
    description: str | None = None,
    commit_messages: tuple[str, ...] = (),
    max_diff_chars: int = SUMMARY_MAX_DIFF_CHARS,
) -> str:
    """Build the user prompt asking for an overview of every chunk at once.

    Chunks are included in diff order until ``max_diff_chars`` is reached;
    the remainder is only counted.
    """
    files = list(dict.fromkeys(chunk.file_path for chunk in chunks))
    prompt = "Summarize this change set.\n\n## Files Changed\n"
    prompt += "".join(f"- {path}\n" for path in files)

    prompt += "\n## Diff\n"
    used = 0
    omitted = 0
    for chunk in chunks:
        section = f"### {chunk.file_path}\n```{chunk.language}\n{chunk.content}\n```\n"
        if used + len(section) > max_diff_chars:
            omitted += 1
            continue
        prompt += section
        used += len(section)
    if omitted:
        prompt += f"\n({omitted} more chunks omitted for length)\n"

    if description:
        prompt += f"\n## Change Description\n{description}\n"

    if commit_messages:
        prompt += "\n## Related Commits\n"
        prompt += "".join(f"- {msg}\n" for msg in commit_messages)

    prompt += f"\n{SUMMARY_RESPONSE_FORMAT}"
    return prompt
