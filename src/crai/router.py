"""Route chunks to reviewer roles."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from .config import Config
from .models import Chunk, ChunkId, ReviewRole, StaticClass

logger = logging.getLogger(__name__)

# How relevant each role is to a chunk of a given static classification.
RELEVANCE: dict[StaticClass, dict[ReviewRole, float]] = {
    StaticClass.NORMAL: {
        ReviewRole.PRIMARY: 1.0,
        ReviewRole.SECURITY: 1.0,
        ReviewRole.PERFORMANCE: 1.0,
        ReviewRole.USABILITY: 1.0,
    },
    StaticClass.IMPORT_ONLY: {
        ReviewRole.PRIMARY: 0.4,
        ReviewRole.SECURITY: 0.5,
        ReviewRole.PERFORMANCE: 0.2,
        ReviewRole.USABILITY: 0.1,
    },
    StaticClass.WHITESPACE: {
        ReviewRole.PRIMARY: 0.1,
    },
    # Edits that only follow a file rename (module names, include guards)
    StaticClass.RENAME: {
        ReviewRole.PRIMARY: 0.2,
    },
    StaticClass.GENERATED: {
        ReviewRole.PRIMARY: 0.3,
        ReviewRole.SECURITY: 0.2,
        ReviewRole.PERFORMANCE: 0.1,
    },
    # Dependency bumps in lock files are mostly a supply-chain question
    StaticClass.LOCK_FILE: {
        ReviewRole.PRIMARY: 0.3,
        ReviewRole.SECURITY: 0.6,
    },
}


@dataclass(frozen=True)
class WorkItem:
    """One (chunk, role) scoring request."""

    chunk: Chunk
    role: ReviewRole

    @property
    def key(self) -> tuple[ChunkId, ReviewRole]:
        return (self.chunk.id, self.role)

    def __str__(self) -> str:
        return f"{self.chunk.id} [{self.role.value}]"


def relevance(classification: StaticClass, role: ReviewRole) -> float:
    return RELEVANCE.get(classification, {}).get(role, 0.0)


class SubagentRouter:
    """Decide which reviewer roles score a chunk.

    A role is scheduled when it is enabled and its relevance for the chunk's
    classification is non-zero and at least the role's priority threshold.
    Auto-filtered chunks are only routed when the override is on.
    """

    def __init__(self, config: Config):
        self.config = config

    def roles_for(self, chunk: Chunk, override: bool = False) -> list[ReviewRole]:
        if chunk.auto_filtered and not override:
            return []

        roles = []
        for role in self.config.enabled_roles:
            score = relevance(chunk.classification, role)
            if score > 0 and score >= self.config.role(role).priority_threshold:
                roles.append(role)
        return roles

    def route(self, chunk: Chunk, override: bool = False) -> list[WorkItem]:
        return [WorkItem(chunk=chunk, role=role) for role in self.roles_for(chunk, override)]

    def route_all(self, chunks: Iterable[Chunk], override: bool = False) -> list[WorkItem]:
        """Work items for every chunk, in diff order."""
        items = []
        for chunk in chunks:
            items.extend(self.route(chunk, override))
        logger.debug(f"Routed {len(items)} work items")
        return items
