"""Gemini provider using Gemini CLI headless mode."""

import json
import logging
import shutil
from collections.abc import Sequence

from ..errors import FailureKind, ProviderFailure
from ..models import Chunk, ReviewRole, ScoreResponse, SummaryResponse
from .base import ProviderHealth, ScoringContext, ScoringProvider, parse_score_response, parse_summary_response
from .cli import run_cli
from .prompts import SUMMARY_PROMPT, system_prompt

logger = logging.getLogger(__name__)


class GeminiProvider(ScoringProvider):
    """Gemini-based scoring provider using Gemini CLI headless mode.

    Requires Gemini CLI to be installed:
        npm install -g @google/gemini-cli
        gemini auth  # Login to authorize
    """

    def __init__(
        self,
        model: str | None = None,
        cli_path: str | None = None,
        env: dict[str, str] | None = None,
    ):
        self._gemini_path = cli_path or shutil.which("gemini")
        self._model = model
        self._env = env or {}

    @property
    def name(self) -> str:
        return "Gemini"

    def _command(self, prompt: str) -> list[str]:
        cmd = [self._gemini_path, "-p", prompt, "--output-format", "json"]
        if self._model:
            cmd.extend(["-m", self._model])
        return cmd

    async def _complete(self, system: str, prompt: str, timeout: float) -> str:
        if not self._gemini_path:
            raise ProviderFailure(
                FailureKind.PROVIDER_UNAVAILABLE,
                "Gemini CLI not found. Please install it with: npm install -g @google/gemini-cli",
            )

        # Gemini CLI has no separate system prompt flag
        output = await run_cli(self._command(f"{system}\n\n{prompt}"), timeout=timeout, env=self._env)

        try:
            result = json.loads(output.stdout)
            return result.get("response", "") if isinstance(result, dict) else output.stdout
        except json.JSONDecodeError:
            logger.warning("Gemini CLI returned non-JSON output, parsing raw text")
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
        if not self._gemini_path:
            return ProviderHealth(is_available=False, detail="gemini executable not found")
        try:
            output = await run_cli([self._gemini_path, "--version"], timeout=30, env=self._env)
        except ProviderFailure as e:
            return ProviderHealth(is_available=False, detail=e.message)
        return ProviderHealth(is_available=True, version=output.stdout.strip())
