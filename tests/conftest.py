"""Shared fixtures: a deterministic scoring provider and sample diffs."""

import asyncio

import pytest

from crai.config import config_from_dict
from crai.errors import FailureKind, ProviderFailure
from crai.models import (
    Chunk,
    DiffLine,
    LineKind,
    LineRange,
    ReviewRole,
    ScoreResponse,
    StaticClass,
    SummaryResponse,
)
from crai.providers.base import ProviderHealth, ScoringProvider

THREE_CHUNK_DIFF = """\
diff --git a/Cargo.lock b/Cargo.lock
index 1111111..2222222 100644
--- a/Cargo.lock
+++ b/Cargo.lock
@@ -10,3 +10,3 @@ name = "serde"
 [[package]]
-version = "1.0.1"
+version = "1.0.2"
 source = "registry"
diff --git a/src/a.py b/src/a.py
index 3333333..4444444 100644
--- a/src/a.py
+++ b/src/a.py
@@ -1,3 +1,4 @@
 def greet(name):
-    return "hi " + name
+    greeting = "hello"
+    return f"{greeting} {name}"
 # end
diff --git a/src/b.py b/src/b.py
index 5555555..6666666 100644
--- a/src/b.py
+++ b/src/b.py
@@ -20,3 +20,3 @@ def query(db, user_id):
     cursor = db.cursor()
-    cursor.execute("SELECT * FROM users WHERE id = ?", (user_id,))
+    cursor.execute(f"SELECT * FROM users WHERE id = {user_id}")
     return cursor.fetchone()
"""

LOCK_ID = "Cargo.lock@-10,3+10,3"
A_ID = "src/a.py@-1,3+1,4"
B_ID = "src/b.py@-20,3+20,3"


class FakeProvider(ScoringProvider):
    """Scripted provider for tests.

    Outcomes are looked up by ``(chunk_id, role)``, then ``(file_path, role)``,
    then ``chunk_id`` and finally ``file_path``. A list of outcomes is consumed
    one per call, repeating the last one. An outcome is a score, a
    ``FailureKind`` to raise, or an exception instance to raise.
    """

    def __init__(self, scripts: dict | None = None, default=0.5, delay: float = 0.0, summary=None):
        self.scripts = {key: list(v) if isinstance(v, list) else [v] for key, v in (scripts or {}).items()}
        self.default = default
        self.delay = delay
        self.calls: list[tuple[str, ReviewRole]] = []
        self.prompts: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.summary = summary
        self.summarized: list[list[str]] = []

    @property
    def name(self) -> str:
        return "Fake"

    def _next_outcome(self, chunk: Chunk, role: ReviewRole):
        for key in ((chunk.id, role), (chunk.file_path, role), chunk.id, chunk.file_path):
            outcomes = self.scripts.get(key)
            if outcomes:
                return outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        return self.default

    async def score(self, chunk, role, context, timeout):
        self.calls.append((chunk.id, role))
        self.prompts.append(context.prompt_for(chunk, role))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            outcome = self._next_outcome(chunk, role)
            if isinstance(outcome, FailureKind):
                raise ProviderFailure(outcome, f"scripted {outcome.value}")
            if isinstance(outcome, BaseException):
                raise outcome
            return ScoreResponse(score=outcome, rationale=f"fake {role.value} score")
        finally:
            self.in_flight -= 1

    async def summarize(self, chunks, context, timeout):
        self.summarized.append([chunk.id for chunk in chunks])
        if isinstance(self.summary, FailureKind):
            raise ProviderFailure(self.summary, f"scripted {self.summary.value}")
        return self.summary or SummaryResponse(overview=f"{len(chunks)} chunks changed")

    async def health_check(self) -> ProviderHealth:
        return ProviderHealth(is_available=True, version="fake 1.0")


def make_chunk(
    path: str = "src/app.py",
    position: int = 0,
    classification: StaticClass = StaticClass.NORMAL,
    auto_filtered: bool = False,
    start: int | None = None,
) -> Chunk:
    """Build a one-line chunk without going through the parser."""
    start = start if start is not None else position * 10 + 1
    old_range = LineRange(start, 1)
    new_range = LineRange(start, 1)
    return Chunk(
        id=Chunk.make_id(path, old_range, new_range),
        position=position,
        file_path=path,
        file_index=position,
        hunk_index=0,
        old_range=old_range,
        new_range=new_range,
        header="",
        lines=(
            DiffLine(LineKind.REMOVE, "x = 1", start, None),
            DiffLine(LineKind.ADD, "x = 2", None, start),
        ),
        language="python",
        classification=classification,
        auto_filtered=auto_filtered,
    )


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def primary_only_config():
    """Only the primary reviewer enabled, so one call per scored chunk."""
    return config_from_dict({
        "roles": {
            "security": {"enabled": False},
            "performance": {"enabled": False},
            "usability": {"enabled": False},
        },
        "filters": {"controversiality_threshold": 0.3},
    })


@pytest.fixture
def three_chunk_diff():
    return THREE_CHUNK_DIFF
