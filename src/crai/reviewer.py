"""Code reviewer: diff loading, analysis and reporting in one place."""

import asyncio
import logging
import sys
from dataclasses import dataclass
from pathlib import Path

import aiofiles

from .chunker import Chunker
from .config import Config, get_api_env_vars
from .diff import STAGED, UNSTAGED, DiffTarget, GitDiffSource
from .events import AnalysisComplete
from .filter import ChunkFilter, SortMode
from .orchestrator import Orchestrator
from .progress import AnalysisStats, ProgressDisplay
from .providers import ScoringContext, ScoringProvider, create_provider
from .models import SummaryResponse
from .report import render_json, render_summary_json, render_summary_text, render_text
from .router import SubagentRouter
from .session import AnalysisSummary, ReviewSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReviewOutcome:
    session: ReviewSession
    summary: AnalysisSummary
    target: str
    cancelled: bool = False


class CodeReviewer:
    """Review a diff: chunk it, score chunks concurrently and report.

    Supports:
    - Diffs from git (unstaged, staged or between two revisions) or a file
    - Static auto-filtering of noisy chunks, with an override
    - Running without AI, which still chunks and classifies
    """

    def __init__(
        self,
        config: Config,
        repo_path: str | Path = ".",
        provider: ScoringProvider | None = None,
        use_ai: bool = True,
        auto_filter_override: bool = False,
        show_progress: bool = True,
        description: str | None = None,
    ):
        """Initialize the reviewer.

        Args:
            config: Immutable configuration snapshot for the session
            repo_path: Git repository to read diffs from
            provider: Scoring backend; created from ``config.ai`` when omitted
            use_ai: If False, only chunk and classify
            auto_filter_override: Score and show statically noisy chunks too
            show_progress: Print a live progress line while scoring
            description: Change description added to every prompt
        """
        self.config = config
        self.repo_path = Path(repo_path)
        self.use_ai = use_ai
        self.auto_filter_override = auto_filter_override
        self.show_progress = show_progress
        self.description = description

        self.git = GitDiffSource(self.repo_path, config.diff.context_lines, config.diff.ignore_whitespace)
        self.chunker = Chunker(config.filters, config.diff.max_file_size_bytes)
        self.router = SubagentRouter(config)
        self._provider = provider
        self._commit_messages: tuple[str, ...] = ()
        self.orchestrator: Orchestrator | None = None

    @property
    def provider(self) -> ScoringProvider:
        if self._provider is None:
            self._provider = create_provider(self.config.ai, env=get_api_env_vars())
        return self._provider

    async def read_diff_file(self, path: str | Path) -> str:
        """Read diff text from a file, or from stdin when ``path`` is ``-``."""
        if str(path) == "-":
            return sys.stdin.read()
        async with aiofiles.open(path, encoding="utf-8", errors="replace") as f:
            return await f.read()

    async def load_diff(
        self,
        base: str | None = None,
        compare: str | None = None,
        staged: bool = False,
        diff_file: str | Path | None = None,
    ) -> tuple[str, str]:
        """Load diff text.

        Returns:
            The diff text and a description of what it compares

        Raises:
            GitError: If git cannot produce the diff
        """
        if diff_file is not None:
            name = "stdin" if str(diff_file) == "-" else str(diff_file)
            return await self.read_diff_file(diff_file), name

        await self.git.verify_repository()
        if base is not None or compare is not None:
            target = DiffTarget(base or self.config.diff.default_base_branch, compare or "HEAD")
            text = await self.git.between(target.base, target.compare)
            self._commit_messages = tuple(await self.git.commit_messages(target.base, target.compare))
        elif staged:
            target = STAGED
            text = await self.git.staged()
        else:
            target = UNSTAGED
            text = await self.git.unstaged()
        return text, target.describe()

    def create_session(self, diff_text: str) -> ReviewSession:
        """Chunk a diff and register every chunk in a new session.

        Raises:
            ParseFailure: If the diff is malformed
        """
        chunks = self.chunker.chunk_text(diff_text)
        session = ReviewSession(chunks, self.config)
        if self.auto_filter_override:
            session.set_auto_filter_override(True)
        return session

    def _context(self) -> ScoringContext:
        custom_prompts = {
            role: settings.custom_prompt
            for role, settings in self.config.roles.items()
            if settings.custom_prompt
        }
        return ScoringContext(
            description=self.description,
            commit_messages=self._commit_messages,
            custom_prompts=custom_prompts,
        )

    async def analyze(self, session: ReviewSession) -> AnalysisSummary:
        """Score every routed (chunk, role) pair of the session."""
        if not self.use_ai:
            summary = session.summary()
            session.events.publish(AnalysisComplete(summary=summary))
            return summary

        items = self.router.route_all(session.chunks, session.auto_filter_override)
        self.orchestrator = Orchestrator.from_config(self.provider, session, self.config, self._context())

        consumer = None
        if self.show_progress and items:
            display = ProgressDisplay(AnalysisStats(total_items=len(items)))
            consumer = asyncio.create_task(display.follow(session.events))

        try:
            summary = await self.orchestrator.run(items)
        except BaseException:
            if consumer:
                consumer.cancel()
            raise
        if consumer:
            await consumer
        return summary

    async def run(
        self,
        base: str | None = None,
        compare: str | None = None,
        staged: bool = False,
        diff_file: str | Path | None = None,
    ) -> ReviewOutcome:
        """Run the complete review: load, chunk, score."""
        diff_text, target = await self.load_diff(base, compare, staged, diff_file)
        session = self.create_session(diff_text)
        logger.info(f"Reviewing {target}: {len(session.chunks)} chunks")

        summary = await self.analyze(session)
        cancelled = bool(self.orchestrator and self.orchestrator.cancelled)
        return ReviewOutcome(session=session, summary=summary, target=target, cancelled=cancelled)

    async def summarize(self, session: ReviewSession) -> SummaryResponse | None:
        """Ask the provider for an overview of the chunks a reviewer would see.

        Returns None when AI is disabled or every chunk is auto-filtered.

        Raises:
            ProviderFailure: If the single summary request fails
        """
        if not self.use_ai:
            return None
        chunks = [c for c in session.chunks if session.auto_filter_override or not c.auto_filtered]
        if not chunks:
            return None
        logger.info(f"Summarizing {len(chunks)} chunks with {self.provider.name}")
        return await self.provider.summarize(chunks, self._context(), self.config.ai.timeout_seconds)

    async def run_summary(
        self,
        base: str | None = None,
        compare: str | None = None,
        staged: bool = False,
        diff_file: str | Path | None = None,
    ) -> tuple[ReviewOutcome, SummaryResponse | None]:
        """Load and chunk a diff, then summarize it without scoring chunks."""
        diff_text, target = await self.load_diff(base, compare, staged, diff_file)
        session = self.create_session(diff_text)
        response = await self.summarize(session)
        return ReviewOutcome(session=session, summary=session.summary(), target=target), response

    def render_summary(
        self,
        outcome: ReviewOutcome,
        response: SummaryResponse | None,
        output_format: str = "text",
    ) -> str:
        files = len(dict.fromkeys(chunk.file_path for chunk in outcome.session.chunks))
        skipped = tuple(self.chunker.skipped_files)
        if output_format == "json":
            return render_summary_json(response, outcome.summary, outcome.target, files, skipped)
        return render_summary_text(response, outcome.summary, f"crai summary: {outcome.target}", files, skipped)

    def cancel(self) -> None:
        if self.orchestrator:
            self.orchestrator.cancel()

    def render(
        self,
        outcome: ReviewOutcome,
        output_format: str = "text",
        sort: SortMode = SortMode.SCORE,
        show_all: bool = False,
        show_diff: bool = False,
    ) -> str:
        session = outcome.session
        if show_all:
            records = ChunkFilter.sort(session.records(), sort)
        else:
            records = session.visible_records(sort)
        threshold = self.config.filters.controversiality_threshold
        if output_format == "json":
            return render_json(records, outcome.summary, outcome.target, threshold)
        return render_text(records, outcome.summary, f"crai review: {outcome.target}", threshold, show_diff=show_diff)

    async def write_output(self, text: str, path: str | Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(text)
        return path
