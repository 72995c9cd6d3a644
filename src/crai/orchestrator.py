"""Bounded-parallel scoring of (chunk, role) work items.

Each work item runs its own small state machine::

    pending -> in_flight -> succeeded
                         -> retry_scheduled -> in_flight ...
                         -> failed

A semaphore caps the number of provider calls in flight. Backoff sleeps
happen outside the semaphore, so a waiting retry never holds a slot. Results
are recorded into the session the moment each item finishes.
"""

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from .config import Config
from .constants import (
    DEFAULT_BACKOFF_BASE,
    DEFAULT_BACKOFF_MAX,
    DEFAULT_CONCURRENCY,
    DEFAULT_LLM_TIMEOUT,
    DEFAULT_MAX_ATTEMPTS,
)
from .errors import FailureKind, ProviderFailure
from .events import AnalysisComplete
from .models import ChunkId, ReviewRole, ScoreResult
from .providers.base import ScoringContext, ScoringProvider
from .router import WorkItem
from .session import AnalysisSummary, ReviewSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff: ``min(base * 2**(attempt - 1), maximum)``."""

    base: float = DEFAULT_BACKOFF_BASE
    maximum: float = DEFAULT_BACKOFF_MAX

    def delay(self, attempt: int) -> float:
        return min(self.base * 2 ** (attempt - 1), self.maximum)


class WorkState(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    RETRY_SCHEDULED = "retry_scheduled"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


_ACTIVE_STATES = (WorkState.PENDING, WorkState.IN_FLIGHT, WorkState.RETRY_SCHEDULED)


class _Job:
    """Mutable progress of one work item."""

    def __init__(self, item: WorkItem):
        self.item = item
        self.state = WorkState.PENDING
        self.attempts = 0


class Orchestrator:
    """Drive work items to a terminal state through a scoring provider."""

    def __init__(
        self,
        provider: ScoringProvider,
        session: ReviewSession,
        concurrency: int = DEFAULT_CONCURRENCY,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        timeout: float = DEFAULT_LLM_TIMEOUT,
        backoff: BackoffPolicy | None = None,
        context: ScoringContext | None = None,
    ):
        """Initialize the orchestrator.

        Args:
            provider: Backend that scores one (chunk, role) per call
            session: Session receiving claims and results
            concurrency: Maximum provider calls in flight
            max_attempts: Total calls allowed per work item, retries included
            timeout: Seconds allowed per provider call
            backoff: Delay curve between attempts
            context: Prompt context shared by every call
        """
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        self.provider = provider
        self.session = session
        self.concurrency = concurrency
        self.max_attempts = max_attempts
        self.timeout = timeout
        self.backoff = backoff or BackoffPolicy()
        self.context = context or ScoringContext()

        self._semaphore = asyncio.Semaphore(concurrency)
        self._jobs: dict[tuple[ChunkId, ReviewRole], _Job] = {}
        self._tasks: list[asyncio.Task] = []
        self._cancelled = False
        self._in_flight = 0
        self._max_in_flight = 0
        self._calls = 0

    @classmethod
    def from_config(
        cls,
        provider: ScoringProvider,
        session: ReviewSession,
        config: Config,
        context: ScoringContext | None = None,
    ) -> "Orchestrator":
        ai = config.ai
        return cls(
            provider=provider,
            session=session,
            concurrency=ai.concurrent_requests,
            max_attempts=ai.max_retries,
            timeout=ai.timeout_seconds,
            backoff=BackoffPolicy(ai.backoff_base_seconds, ai.backoff_max_seconds),
            context=context,
        )

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def max_in_flight(self) -> int:
        return self._max_in_flight

    @property
    def calls(self) -> int:
        """Provider calls issued so far, retries included."""
        return self._calls

    def state_of(self, chunk_id: ChunkId, role: ReviewRole) -> WorkState | None:
        job = self._jobs.get((chunk_id, role))
        return job.state if job else None

    def cancel(self) -> None:
        """Stop issuing calls and abandon in-flight ones."""
        if self._cancelled:
            return
        self._cancelled = True
        logger.warning("Analysis cancelled, abandoning in-flight requests")
        for task in self._tasks:
            if not task.done():
                task.cancel()

    async def run(self, items: Iterable[WorkItem]) -> AnalysisSummary:
        """Score every work item and publish ``AnalysisComplete``.

        Items are issued in the given order. Provider failures are contained
        per item and never abort sibling work.
        Items already finished by an earlier run are skipped unless their
        results have since been invalidated in the session.

        Returns:
            The session summary once every item is terminal or cancelled
        """
        jobs = []
        batch = set()
        for item in items:
            if item.key in batch:
                continue
            batch.add(item.key)
            previous = self._jobs.get(item.key)
            if previous is not None and (previous.state in _ACTIVE_STATES or self._has_result(item)):
                continue
            job = _Job(item)
            self._jobs[item.key] = job
            jobs.append(job)

        expected: dict[ChunkId, list[ReviewRole]] = {}
        for job in jobs:
            expected.setdefault(job.item.chunk.id, []).append(job.item.role)
        for chunk_id, roles in expected.items():
            self.session.expect(chunk_id, roles)

        logger.info(f"Scoring {len(jobs)} work items with {self.provider.name}, concurrency {self.concurrency}")

        self._tasks = [asyncio.create_task(self._drive(job)) for job in jobs]
        try:
            results = await asyncio.gather(*self._tasks, return_exceptions=True)
        except asyncio.CancelledError:
            self.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._finish()
            raise

        for job, result in zip(jobs, results):
            if isinstance(result, Exception):
                logger.error(f"Unexpected error scoring {job.item}: {result}")
                self.session.release(*job.item.key)

        return self._finish()

    def _has_result(self, item: WorkItem) -> bool:
        result = self.session.record_for(item.chunk.id).result(item.role)
        return result is not None and result.status.terminal

    def _finish(self) -> AnalysisSummary:
        summary = self.session.summary()
        self.session.events.publish(AnalysisComplete(summary=summary, cancelled=self._cancelled))
        logger.info(f"Analysis {'cancelled' if self._cancelled else 'complete'}: {summary.describe()}")
        return summary

    async def _drive(self, job: _Job) -> None:
        item = job.item
        chunk, role = item.chunk, item.role

        if self._cancelled:
            job.state = WorkState.CANCELLED
            return
        if not self.session.claim(chunk.id, role):
            logger.debug(f"Skipping {item}: already claimed or scored")
            job.state = WorkState.SKIPPED
            return

        try:
            while True:
                async with self._semaphore:
                    if self._cancelled:
                        raise asyncio.CancelledError()
                    failure = None
                    response = None
                    job.attempts += 1
                    job.state = WorkState.IN_FLIGHT
                    self._in_flight += 1
                    self._max_in_flight = max(self._max_in_flight, self._in_flight)
                    self._calls += 1
                    logger.debug(f"Scoring {item}, attempt {job.attempts}/{self.max_attempts}")
                    try:
                        response = await asyncio.wait_for(
                            self.provider.score(chunk, role, self.context, self.timeout),
                            timeout=self.timeout,
                        )
                    except asyncio.TimeoutError:
                        failure = ProviderFailure(FailureKind.TIMEOUT, f"No response within {self.timeout} seconds")
                    except ProviderFailure as e:
                        failure = e
                    except Exception as e:
                        logger.exception(f"Provider raised unexpectedly for {item}")
                        failure = ProviderFailure(FailureKind.PROVIDER_UNAVAILABLE, str(e))
                    finally:
                        self._in_flight -= 1

                if self._cancelled:
                    # The call outlived cancellation; its result is stale
                    raise asyncio.CancelledError()

                if failure is None:
                    job.state = WorkState.SUCCEEDED
                    self.session.record(ScoreResult.succeeded(chunk.id, role, response, job.attempts))
                    return

                if failure.retryable and job.attempts < self.max_attempts:
                    delay = self.backoff.delay(job.attempts)
                    job.state = WorkState.RETRY_SCHEDULED
                    self.session.mark_retrying(chunk.id, role, job.attempts, failure.kind, failure.message)
                    logger.warning(f"{item} failed ({failure.kind.value}), retrying in {delay:.1f}s")
                    await asyncio.sleep(delay)
                    if self._cancelled:
                        raise asyncio.CancelledError()
                    continue

                job.state = WorkState.FAILED
                logger.error(f"{item} failed after {job.attempts} attempt(s): {failure}")
                self.session.record(
                    ScoreResult.failed(chunk.id, role, failure.kind, failure.message, job.attempts)
                )
                return
        except asyncio.CancelledError:
            job.state = WorkState.CANCELLED
            self.session.release(chunk.id, role)
            raise
