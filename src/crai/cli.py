"""CLI entry point for crai."""

import asyncio
import logging
import sys
import traceback
from pathlib import Path

import click

from . import __version__
from .config import PROVIDERS, Config, load_config, write_default_config
from .constants import DEFAULT_CONFIG_FILE
from .diff import GitDiffSource
from .errors import CraiError
from .filter import SortMode
from .providers import create_provider
from .reviewer import CodeReviewer

logger = logging.getLogger(__name__)


def setup_logging(level: str, debug: bool = False) -> None:
    """Configure the root logger; log records go to stderr."""
    log_level = logging.DEBUG if debug else getattr(logging, level.upper(), logging.WARNING)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)-8s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
        force=True,
    )


@click.group()
@click.version_option(version=__version__, prog_name="crai")
def main() -> None:
    """crai - AI-assisted triage of code review diffs.

    Splits a diff into hunks, scores each one for how much review attention
    it deserves, and shows the ones worth a human's time first.
    """


@main.command()
@click.option(
    "--repo",
    type=click.Path(exists=True, file_okay=False, dir_okay=True, path_type=Path),
    default=".",
    help="Git repository to review (default: current directory)",
)
@click.option("--base", default=None, help="Base revision; compares BASE...COMPARE")
@click.option("--compare", default=None, help="Revision to compare against the base (default: HEAD)")
@click.option("--staged/--unstaged", default=False, help="Review staged changes instead of the working tree")
@click.option(
    "--diff-file",
    default=None,
    help="Read a unified diff from FILE instead of git ('-' for stdin)",
)
@click.option(
    "--config",
    "config_path",
    default=DEFAULT_CONFIG_FILE,
    help=f"Configuration file (default: {DEFAULT_CONFIG_FILE})",
)
@click.option("--no-ai", is_flag=True, help="Only chunk and classify, do not call the AI provider")
@click.option("--no-auto-filter", is_flag=True, help="Score and show whitespace, import and generated chunks too")
@click.option(
    "-t", "--threshold",
    type=click.FloatRange(0.0, 1.0),
    default=None,
    help="Controversiality threshold for showing a chunk",
)
@click.option(
    "-c", "--concurrency",
    type=click.IntRange(min=1),
    default=None,
    help="Maximum provider calls in flight",
)
@click.option(
    "-p", "--provider",
    type=click.Choice(PROVIDERS, case_sensitive=False),
    default=None,
    help="AI provider to use for scoring",
)
@click.option(
    "--sort",
    type=click.Choice([m.value for m in SortMode]),
    default=SortMode.SCORE.value,
    help="Order chunks by score or by position in the diff (default: score)",
)
@click.option("--all", "show_all", is_flag=True, help="Show hidden chunks too")
@click.option("--show-diff", is_flag=True, help="Include each chunk's diff lines in the text report")
@click.option(
    "-f", "--format", "output_format",
    type=click.Choice(["text", "json"]),
    default="text",
    help="Report format (default: text)",
)
@click.option("-o", "--output", default=None, help="Write the report to a file instead of stdout")
@click.option("--description", default=None, help="Short description of the change, added to every prompt")
@click.option(
    "--debug",
    is_flag=True,
    help="Enable debug mode with full stack traces"
)
def review(
    repo: Path,
    base: str | None,
    compare: str | None,
    staged: bool,
    diff_file: str | None,
    config_path: str,
    no_ai: bool,
    no_auto_filter: bool,
    threshold: float | None,
    concurrency: int | None,
    provider: str | None,
    sort: str,
    show_all: bool,
    show_diff: bool,
    output_format: str,
    output: str | None,
    description: str | None,
    debug: bool,
) -> None:
    """Score the chunks of a diff and report the ones worth reviewing."""
    try:
        config = load_config(
            _resolve_config_path(repo, config_path),
            cli_overrides={
                "filters.controversiality_threshold": threshold,
                "ai.concurrent_requests": concurrency,
                "ai.provider": provider.lower() if provider else None,
            },
        )
        setup_logging(config.log_level, debug)

        success = asyncio.run(
            async_review(
                config=config,
                repo=repo,
                base=base,
                compare=compare,
                staged=staged,
                diff_file=diff_file,
                use_ai=not no_ai,
                auto_filter_override=no_auto_filter,
                sort=SortMode(sort),
                show_all=show_all,
                show_diff=show_diff,
                output_format=output_format,
                output=output,
                description=description,
            )
        )
        sys.exit(0 if success else 1)

    except KeyboardInterrupt:
        click.echo("\n\nInterrupted by user", err=True)
        sys.exit(130)
    except click.ClickException:
        raise
    except Exception as e:
        click.echo(f"\nError: {e}", err=True)
        if debug:
            traceback.print_exc()
        sys.exit(1)


def _resolve_config_path(repo: Path, config_path: str) -> Path:
    """Relative config paths that do not exist here are looked up in the repository."""
    path = Path(config_path)
    if not path.is_absolute() and not path.exists():
        return repo / path
    return path


async def async_review(
    config: Config,
    repo: Path,
    base: str | None,
    compare: str | None,
    staged: bool,
    diff_file: str | None,
    use_ai: bool,
    auto_filter_override: bool,
    sort: SortMode,
    show_all: bool,
    show_diff: bool,
    output_format: str,
    output: str | None,
    description: str | None,
) -> bool:
    """Async body of ``crai review``.

    Returns:
        True if the analysis ran to completion, False if it was cancelled.
    """
    reviewer = CodeReviewer(
        config=config,
        repo_path=repo,
        use_ai=use_ai,
        auto_filter_override=auto_filter_override,
        show_progress=sys.stderr.isatty(),
        description=description,
    )
    outcome = await reviewer.run(base=base, compare=compare, staged=staged, diff_file=diff_file)
    report = reviewer.render(
        outcome, output_format=output_format, sort=sort, show_all=show_all, show_diff=show_diff
    )

    if output:
        path = await reviewer.write_output(report, output)
        click.echo(f"Report written to {path}", err=True)
    else:
        click.echo(report, nl=False)

    _report_skipped(reviewer)
    if outcome.summary.failed:
        click.echo(f"{outcome.summary.failed} chunk(s) could not be analyzed", err=True)
    return not outcome.cancelled


def _report_skipped(reviewer: CodeReviewer) -> None:
    skipped = reviewer.chunker.skipped_files
    if skipped:
        click.echo(
            f"Skipped {len(skipped)} file(s) over diff.max_file_size_bytes: {', '.join(skipped)}",
            err=True,
        )


@main.command()
@click.option(
    "--repo",
    type=click.Path(exists=True, file_okay=False, dir_okay=True, path_type=Path),
    default=".",
    help="Git repository to summarize (default: current directory)",
)
@click.option("--base", default=None, help="Base revision; compares BASE...COMPARE")
@click.option("--compare", default=None, help="Revision to compare against the base (default: HEAD)")
@click.option("--staged/--unstaged", default=False, help="Summarize staged changes instead of the working tree")
@click.option(
    "--diff-file",
    default=None,
    help="Read a unified diff from FILE instead of git ('-' for stdin)",
)
@click.option(
    "--config",
    "config_path",
    default=DEFAULT_CONFIG_FILE,
    help=f"Configuration file (default: {DEFAULT_CONFIG_FILE})",
)
@click.option("--no-ai", is_flag=True, help="Only report chunk and filter statistics")
@click.option("--no-auto-filter", is_flag=True, help="Include whitespace, import and generated chunks in the summary")
@click.option(
    "-p", "--provider",
    type=click.Choice(PROVIDERS, case_sensitive=False),
    default=None,
    help="AI provider to use for the summary",
)
@click.option(
    "-f", "--format", "output_format",
    type=click.Choice(["text", "json"]),
    default="text",
    help="Output format (default: text)",
)
@click.option("-o", "--output", default=None, help="Write the summary to a file instead of stdout")
@click.option("--description", default=None, help="Short description of the change, added to the prompt")
@click.option(
    "--debug",
    is_flag=True,
    help="Enable debug mode with full stack traces"
)
def summary(
    repo: Path,
    base: str | None,
    compare: str | None,
    staged: bool,
    diff_file: str | None,
    config_path: str,
    no_ai: bool,
    no_auto_filter: bool,
    provider: str | None,
    output_format: str,
    output: str | None,
    description: str | None,
    debug: bool,
) -> None:
    """Summarize a diff as a whole: overview, key changes and risk."""
    try:
        config = load_config(
            _resolve_config_path(repo, config_path),
            cli_overrides={"ai.provider": provider.lower() if provider else None},
        )
        setup_logging(config.log_level, debug)

        asyncio.run(
            async_summary(
                config=config,
                repo=repo,
                base=base,
                compare=compare,
                staged=staged,
                diff_file=diff_file,
                use_ai=not no_ai,
                auto_filter_override=no_auto_filter,
                output_format=output_format,
                output=output,
                description=description,
            )
        )

    except KeyboardInterrupt:
        click.echo("\n\nInterrupted by user", err=True)
        sys.exit(130)
    except click.ClickException:
        raise
    except Exception as e:
        click.echo(f"\nError: {e}", err=True)
        if debug:
            traceback.print_exc()
        sys.exit(1)


async def async_summary(
    config: Config,
    repo: Path,
    base: str | None,
    compare: str | None,
    staged: bool,
    diff_file: str | None,
    use_ai: bool,
    auto_filter_override: bool,
    output_format: str,
    output: str | None,
    description: str | None,
) -> None:
    """Async body of ``crai summary``."""
    reviewer = CodeReviewer(
        config=config,
        repo_path=repo,
        use_ai=use_ai,
        auto_filter_override=auto_filter_override,
        show_progress=False,
        description=description,
    )
    outcome, response = await reviewer.run_summary(base=base, compare=compare, staged=staged, diff_file=diff_file)
    text = reviewer.render_summary(outcome, response, output_format=output_format)

    if output:
        path = await reviewer.write_output(text, output)
        click.echo(f"Summary written to {path}", err=True)
    else:
        click.echo(text, nl=False)
    _report_skipped(reviewer)


@main.command()
@click.option(
    "-o", "--output",
    default=DEFAULT_CONFIG_FILE,
    help=f"Where to write the configuration (default: {DEFAULT_CONFIG_FILE})",
)
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def init(output: str, force: bool) -> None:
    """Write a configuration file with the default settings."""
    path = Path(output)
    if path.exists() and not force:
        raise click.ClickException(f"{path} already exists (use --force to overwrite)")
    write_default_config(path)
    click.echo(f"Wrote default configuration to {path}")


@main.command()
@click.option(
    "--config",
    "config_path",
    default=DEFAULT_CONFIG_FILE,
    help=f"Configuration file (default: {DEFAULT_CONFIG_FILE})",
)
@click.option(
    "--repo",
    type=click.Path(exists=True, file_okay=False, dir_okay=True, path_type=Path),
    default=".",
    help="Git repository to check (default: current directory)",
)
def doctor(config_path: str, repo: Path) -> None:
    """Check that git, the configuration and the AI provider are usable."""
    try:
        ok = asyncio.run(async_doctor(_resolve_config_path(repo, config_path), repo))
    except KeyboardInterrupt:
        click.echo("\n\nInterrupted by user", err=True)
        sys.exit(130)
    sys.exit(0 if ok else 1)


async def async_doctor(config_path: Path, repo: Path) -> bool:
    """Run the environment checks and print one line per check."""
    ok = True

    try:
        config = load_config(config_path)
        source = "defaults" if not config_path.exists() else str(config_path)
        click.echo(f"[ OK ] configuration ({source})")
    except CraiError as e:
        click.echo(f"[FAIL] configuration: {e}")
        return False

    git = GitDiffSource(repo, config.diff.context_lines)
    try:
        click.echo(f"[ OK ] {await git.version()}")
        await git.verify_repository()
        click.echo(f"[ OK ] git repository at {repo}")
    except CraiError as e:
        click.echo(f"[FAIL] git: {e}")
        ok = False

    provider = create_provider(config.ai)
    health = await provider.health_check()
    if health.is_available:
        click.echo(f"[ OK ] provider {provider.name} {health.version or ''}".rstrip())
    else:
        click.echo(f"[FAIL] provider {provider.name}: {health.detail}")
        ok = False

    roles = ", ".join(role.value for role in config.enabled_roles) or "none"
    click.echo(f"       enabled roles: {roles}")
    return ok


if __name__ == "__main__":
    main()
