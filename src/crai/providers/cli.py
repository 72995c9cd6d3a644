"""Subprocess runner shared by CLI-based providers."""

import asyncio
import logging
import os
from dataclasses import dataclass

from ..constants import PROCESS_TERMINATE_GRACE
from ..errors import FailureKind, ProviderFailure
from .base import classify_error_text

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CliOutput:
    returncode: int
    stdout: str
    stderr: str


async def terminate_process(proc: asyncio.subprocess.Process) -> None:
    """Safely terminate a subprocess.

    Attempts graceful termination first, then forces kill if needed.
    """
    if proc.returncode is not None:
        return  # Process already finished

    try:
        proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), timeout=PROCESS_TERMINATE_GRACE)
        except asyncio.TimeoutError:
            logger.warning("Process did not terminate, forcing kill")
            proc.kill()
            await proc.wait()
    except ProcessLookupError:
        pass


async def run_cli(
    cmd: list[str],
    timeout: float,
    env: dict[str, str] | None = None,
    cwd: str | None = None,
) -> CliOutput:
    """Run a provider CLI and capture its output.

    Raises:
        ProviderFailure: ``timeout`` when the deadline passes,
            ``provider_unavailable`` when the executable cannot be started,
            ``rate_limited``/``provider_unavailable`` on a non-zero exit.
        asyncio.CancelledError: After terminating the child process.
    """
    subprocess_env = os.environ.copy()
    subprocess_env.update(env or {})

    proc = None
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=cwd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=subprocess_env,
        )
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError as e:
        logger.debug(f"{cmd[0]} timed out after {timeout}s")
        if proc:
            await terminate_process(proc)
        raise ProviderFailure(FailureKind.TIMEOUT, f"{cmd[0]} timed out after {timeout} seconds") from e
    except asyncio.CancelledError:
        logger.debug(f"{cmd[0]} call was cancelled")
        if proc:
            await terminate_process(proc)
        raise
    except OSError as e:
        raise ProviderFailure(FailureKind.PROVIDER_UNAVAILABLE, f"Failed to execute {cmd[0]}: {e}") from e

    output = CliOutput(
        returncode=proc.returncode,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
    if output.returncode != 0:
        message = output.stderr.strip() or output.stdout.strip() or f"exit status {output.returncode}"
        raise ProviderFailure(classify_error_text(message), f"{cmd[0]} failed: {message[:500]}")
    return output
