"""Kiro provider using the kiro-cli chat command."""

import logging
import shutil
from collections.abc import Sequence

from ..errors import FailureKind, ProviderFailure
from ..models import Chunk, ReviewRole, ScoreResponse, SummaryResponse
from .base import ProviderHealth, ScoringContext, ScoringProvider, parse_score_response, parse_summary_response
from .cli import run_cli
from .prompts import SUMMARY_PROMPT, system_prompt

logger = logging.getLogger(__name__)


class KiroProvider(ScoringProvider):
    """Kiro-based scoring provider.

    kiro-cli decorates its output with ANSI codes and prose, so the first
    balanced JSON object in stdout is taken as the response.
    """

    def __init__(
        self,
        model: str | None = None,
        cli_path: str | None = None,
        env: dict[str, str] | None = None,
    ):
        self._kiro_path = cli_path or shutil.which("kiro-cli")
        self._model = model
        self._env = env or {}

    @property
    def name(self) -> str:
        return "Kiro"

    def _command(self, prompt: str) -> list[str]:
        cmd = [self._kiro_path, "chat", "--no-interactive", "--wrap", "never"]
        if self._model:
            cmd.extend(["--model", self._model])
        cmd.append(prompt)
        return cmd

    async def _complete(self, system: str, prompt: str, timeout: float) -> str:
        if not self._kiro_path:
            raise ProviderFailure(FailureKind.PROVIDER_UNAVAILABLE, "kiro-cli not found on PATH")
        output = await run_cli(self._command(f"{system}\n\n{prompt}"), timeout=timeout, env=self._env)
        return output.stdout

    async def score(
        self,
        chunk: Chunk,
        role: ReviewRole,
        context: ScoringContext,
        timeout: float,
    ) -> ScoreResponse:
        text = await self._complete(system_prompt(role), context.prompt_for(chunk, role), timeout)
        return parse_score_response(text, role)

    async def summarize(
        self,
        chunks: Sequence[Chunk],
        context: ScoringContext,
        timeout: float,
    ) -> SummaryResponse:
        text = await self._complete(SUMMARY_PROMPT, context.summary_prompt(chunks), timeout)
        return parse_summary_response(text)

    async def health_check(self) -> ProviderHealth:
        if not self._kiro_path:
            return ProviderHealth(is_available=False, detail="kiro-cli executable not found")
        try:
            output = await run_cli([self._kiro_path, "--version"], timeout=30, env=self._env)
        except ProviderFailure as e:
            return ProviderHealth(is_available=False, detail=e.message)
        return ProviderHealth(is_available=True, version=output.stdout.strip())
