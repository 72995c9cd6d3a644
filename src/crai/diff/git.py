"""Git diff source.

Produces unified diff text for the working tree, the index, or a range between
two revisions. Every call is an async ``git`` subprocess.
"""

import asyncio
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from ..errors import GitError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiffTarget:
    """What to compare; ``describe()`` is used in report headers."""

    base: str
    compare: str

    def describe(self) -> str:
        return f"{self.base} -> {self.compare}"


UNSTAGED = DiffTarget("(index)", "(working directory)")
STAGED = DiffTarget("HEAD", "(staged)")


class GitDiffSource:
    """Read diffs from a git repository."""

    def __init__(self, repo_path: str | Path = ".", context_lines: int = 3, ignore_whitespace: bool = False):
        self.repo_path = Path(repo_path)
        self.context_lines = context_lines
        self.ignore_whitespace = ignore_whitespace
        self._git = shutil.which("git")

    async def _run(self, *args: str) -> str:
        if not self._git:
            raise GitError("git executable not found on PATH")

        cmd = [self._git, "-C", str(self.repo_path), *args]
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await proc.communicate()
        except OSError as e:
            raise GitError(f"Failed to run git: {e}") from e

        if proc.returncode != 0:
            message = stderr.decode(errors="replace").strip() or f"exit status {proc.returncode}"
            raise GitError(f"git {args[0]} failed: {message}")
        return stdout.decode("utf-8", errors="replace")

    def _diff_args(self) -> list[str]:
        args = ["diff", "--no-ext-diff", "--no-color", f"-U{self.context_lines}"]
        if self.ignore_whitespace:
            args.append("--ignore-all-space")
        return args

    async def version(self) -> str:
        return (await self._run("--version")).strip()

    async def verify_repository(self) -> None:
        try:
            await self._run("rev-parse", "--git-dir")
        except GitError as e:
            raise GitError(f"Not a git repository: {self.repo_path}") from e

    async def verify_branch(self, ref: str) -> None:
        try:
            await self._run("rev-parse", "--verify", "--quiet", ref)
        except GitError as e:
            raise GitError(f"Unknown revision: {ref}") from e

    async def unstaged(self) -> str:
        """Working directory against the index."""
        return await self._run(*self._diff_args())

    async def staged(self) -> str:
        """Index against HEAD."""
        return await self._run(*self._diff_args(), "--cached")

    async def between(self, base: str, compare: str = "HEAD") -> str:
        """Changes on ``compare`` since it diverged from ``base``."""
        await self.verify_branch(base)
        await self.verify_branch(compare)
        return await self._run(*self._diff_args(), f"{base}...{compare}")

    async def commit_messages(self, base: str, compare: str = "HEAD", limit: int = 20) -> list[str]:
        """Subjects of the commits in ``base..compare``, newest first."""
        output = await self._run("log", f"--max-count={limit}", "--format=%s", f"{base}..{compare}")
        return [line for line in output.split("\n") if line.strip()]
