"""Claude provider using claude_agent_sdk."""

import asyncio
import logging
import shutil
from collections.abc import Sequence

from claude_agent_sdk import (
    query,
    ClaudeAgentOptions,
    AssistantMessage,
    ResultMessage,
    TextBlock,
    ClaudeSDKError,
    CLIConnectionError,
    CLINotFoundError,
)

from ..errors import FailureKind, ProviderFailure
from ..models import Chunk, ReviewRole, ScoreResponse, SummaryResponse
from .base import (
    ProviderHealth,
    ScoringContext,
    ScoringProvider,
    classify_error_text,
    parse_score_response,
    parse_summary_response,
)
from .cli import run_cli
from .prompts import SUMMARY_PROMPT, system_prompt

logger = logging.getLogger(__name__)


class ClaudeProvider(ScoringProvider):
    """Claude-based scoring provider using claude_agent_sdk.

    Each call is a single tool-less turn; the model only reads the diff
    embedded in the prompt.
    """

    def __init__(
        self,
        model: str | None = None,
        cli_path: str | None = None,
        env: dict[str, str] | None = None,
    ):
        """Initialize Claude provider.

        Args:
            model: Model name passed to the SDK, or None for its default
            cli_path: Explicit path to the claude executable
            env: Environment variables to pass to the agent
        """
        self._model = model
        self._cli_path = cli_path
        self._env = env or {}

    @property
    def name(self) -> str:
        return "Claude"

    def _options(self, system: str) -> ClaudeAgentOptions:
        return ClaudeAgentOptions(
            allowed_tools=[],
            system_prompt=system,
            max_turns=1,
            model=self._model,
            cli_path=self._cli_path,
            env=self._env,
        )

    async def _complete(self, system: str, prompt: str, timeout: float, label: str) -> str:
        """Run one tool-less query and return the concatenated text."""
        options = self._options(system)

        result_parts: list[str] = []
        try:
            async def _query():
                async for message in query(prompt=prompt, options=options):
                    if isinstance(message, AssistantMessage):
                        for block in message.content:
                            if isinstance(block, TextBlock):
                                result_parts.append(block.text)
                    elif isinstance(message, ResultMessage):
                        if message.is_error:
                            raise ClaudeSDKError(str(message.result or "Claude returned an error result"))
                        if message.result is not None and not result_parts:
                            result_parts.append(str(message.result))

            await asyncio.wait_for(_query(), timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.debug(f"Claude query for {label} timed out after {timeout}s")
            raise ProviderFailure(FailureKind.TIMEOUT, f"Claude query timed out after {timeout} seconds") from e
        except asyncio.CancelledError:
            logger.debug(f"Claude query for {label} was cancelled")
            raise
        except (CLINotFoundError, CLIConnectionError) as e:
            raise ProviderFailure(FailureKind.PROVIDER_UNAVAILABLE, f"Claude CLI unavailable: {e}") from e
        except ClaudeSDKError as e:
            raise ProviderFailure(classify_error_text(str(e)), f"Claude query failed: {e}") from e

        return "\n".join(result_parts)

    async def score(
        self,
        chunk: Chunk,
        role: ReviewRole,
        context: ScoringContext,
        timeout: float,
    ) -> ScoreResponse:
        text = await self._complete(
            system_prompt(role), context.prompt_for(chunk, role), timeout, f"{chunk.id} ({role.value})"
        )
        return parse_score_response(text, role)

    async def summarize(
        self,
        chunks: Sequence[Chunk],
        context: ScoringContext,
        timeout: float,
    ) -> SummaryResponse:
        text = await self._complete(SUMMARY_PROMPT, context.summary_prompt(chunks), timeout, "summary")
        return parse_summary_response(text)

    async def health_check(self) -> ProviderHealth:
        claude_path = self._cli_path or shutil.which("claude")
        if not claude_path:
            return ProviderHealth(is_available=False, detail="claude executable not found")
        try:
            output = await run_cli([claude_path, "--version"], timeout=30, env=self._env)
        except ProviderFailure as e:
            return ProviderHealth(is_available=False, detail=e.message)
        return ProviderHealth(is_available=True, version=output.stdout.strip())
