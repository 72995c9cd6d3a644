"""Diff chunking and static classification.

Splits parsed file diffs into one :class:`Chunk` per hunk, preserving file and
hunk order, and tags each chunk with a cheap classification that lets noisy
chunks skip AI scoring entirely.
"""

import logging
import re
from collections.abc import Sequence
from pathlib import PurePosixPath

from pathspec import PathSpec
from pathspec.patterns.gitwildmatch import GitWildMatchPattern

from .config import FilterConfig
from .constants import GENERATED_MARKERS, IMPORT_BLOCK_CLOSER, IMPORT_BLOCK_OPENERS
from .diff.parser import parse_unified_diff
from .errors import ParseFailure
from .models import Chunk, FileDiff, FileStatus, Hunk, LineKind, StaticClass

logger = logging.getLogger(__name__)

# Generator markers only count near the top of the file
_MARKER_MAX_LINE = 10

_WHITESPACE_RE = re.compile(r"\s+")
_BLOCK_CLOSER_RE = re.compile(IMPORT_BLOCK_CLOSER)
_BLOCK_OPENER_RES = {lang: re.compile(p) for lang, p in IMPORT_BLOCK_OPENERS.items()}


def diff_size(file_diff: FileDiff) -> int:
    """Size in bytes of the file's hunk lines as they appear in the diff."""
    return sum(len(line.content.encode("utf-8")) + 2 for hunk in file_diff.hunks for line in hunk.lines)


class StaticClassifier:
    """Classify hunks with path patterns and content heuristics.

    Path patterns use git wildmatch semantics (``*.lock`` matches at any
    depth, ``**/vendor/**`` matches any vendored path).
    """

    def __init__(self, filters: FilterConfig):
        self._lock_spec = PathSpec.from_lines(GitWildMatchPattern, filters.lock_file_patterns)
        self._generated_spec = PathSpec.from_lines(GitWildMatchPattern, filters.generated_file_patterns)
        self._import_patterns = {
            lang: [re.compile(p) for p in patterns] for lang, patterns in filters.import_patterns.items()
        }

    def classify_path(self, path: str) -> StaticClass | None:
        """Classification implied by the path alone, if any."""
        if self._lock_spec.match_file(path):
            return StaticClass.LOCK_FILE
        if self._generated_spec.match_file(path):
            return StaticClass.GENERATED
        return None

    def classify(self, file_diff: FileDiff, hunk: Hunk) -> StaticClass:
        by_path = self.classify_path(file_diff.path)
        if by_path is not None:
            return by_path
        if self._has_generated_marker(hunk):
            return StaticClass.GENERATED
        if self._is_whitespace_only(hunk):
            return StaticClass.WHITESPACE
        if self._is_rename_only(file_diff, hunk):
            return StaticClass.RENAME
        if self._is_import_only(hunk, file_diff.language):
            return StaticClass.IMPORT_ONLY
        return StaticClass.NORMAL

    @staticmethod
    def _has_generated_marker(hunk: Hunk) -> bool:
        for line in hunk.lines:
            if line.kind is LineKind.REMOVE or line.new_line is None or line.new_line > _MARKER_MAX_LINE:
                continue
            if any(marker in line.content for marker in GENERATED_MARKERS):
                return True
        return False

    @staticmethod
    def _is_whitespace_only(hunk: Hunk) -> bool:
        """True when removed and added lines differ only in whitespace."""

        def normalized(kind: LineKind) -> list[str]:
            stripped = (_WHITESPACE_RE.sub("", line.content) for line in hunk.lines if line.kind is kind)
            return [s for s in stripped if s]

        return normalized(LineKind.REMOVE) == normalized(LineKind.ADD)

    @staticmethod
    def _is_rename_only(file_diff: FileDiff, hunk: Hunk) -> bool:
        """True when a renamed file's edits only swap the old file name for the new one.

        Covers module names in self-references, include guards and the like.
        """
        if file_diff.status is not FileStatus.RENAMED or not file_diff.old_path:
            return False
        old_stem = PurePosixPath(file_diff.old_path).stem
        new_stem = PurePosixPath(file_diff.path).stem
        if not old_stem or old_stem == new_stem:
            return False

        removed = [line.content for line in hunk.lines if line.kind is LineKind.REMOVE]
        added = [line.content for line in hunk.lines if line.kind is LineKind.ADD]
        if not removed or len(removed) != len(added):
            return False
        for old, new in zip(removed, added):
            renamed = old.replace(old_stem, new_stem).replace(old_stem.upper(), new_stem.upper())
            if renamed == old or renamed != new:
                return False
        return True

    def _is_import_only(self, hunk: Hunk, language: str) -> bool:
        patterns = self._import_patterns.get(language)
        if not patterns:
            return False
        opener = _BLOCK_OPENER_RES.get(language)

        in_block = False
        changed = 0
        for line in hunk.lines:
            content = line.content
            # Grouped imports only count once the hunk shows the opening line
            if in_block and _BLOCK_CLOSER_RE.match(content):
                in_block = False
                is_import = True
            elif opener is not None and opener.match(content):
                in_block = True
                is_import = True
            else:
                is_import = in_block or any(p.search(content) for p in patterns)

            if line.kind is LineKind.CONTEXT or not content.strip():
                continue
            changed += 1
            if not is_import:
                return False
        return changed > 0


class Chunker:
    """Split file diffs into ordered, classified chunks."""

    def __init__(self, filters: FilterConfig | None = None, max_file_size_bytes: int = 0):
        self.filters = filters or FilterConfig()
        self.classifier = StaticClassifier(self.filters)
        self.max_file_size_bytes = max_file_size_bytes
        self.skipped_files: list[str] = []

    def chunk(self, files: Sequence[FileDiff]) -> list[Chunk]:
        """Return one chunk per hunk in file/hunk order.

        Files whose diff is larger than ``max_file_size_bytes`` produce no
        chunks and are listed in ``skipped_files``.

        Raises:
            ParseFailure: If two hunks would share an identity. Nothing is
                returned in that case.
        """
        chunks: list[Chunk] = []
        seen: set[str] = set()
        skipped: list[str] = []

        for file_index, file_diff in enumerate(files):
            if self.max_file_size_bytes and diff_size(file_diff) > self.max_file_size_bytes:
                logger.warning(f"Skipping {file_diff.path}: diff exceeds {self.max_file_size_bytes} bytes")
                skipped.append(file_diff.path)
                continue

            for hunk_index, hunk in enumerate(file_diff.hunks):
                chunk_id = Chunk.make_id(file_diff.path, hunk.old_range, hunk.new_range)
                if chunk_id in seen:
                    raise ParseFailure(f"Duplicate hunk {chunk_id}", file_diff.path)
                seen.add(chunk_id)

                classification = self.classifier.classify(file_diff, hunk)
                chunks.append(
                    Chunk(
                        id=chunk_id,
                        position=len(chunks),
                        file_path=file_diff.path,
                        file_index=file_index,
                        hunk_index=hunk_index,
                        old_range=hunk.old_range,
                        new_range=hunk.new_range,
                        header=hunk.header,
                        lines=hunk.lines,
                        language=file_diff.language,
                        classification=classification,
                        auto_filtered=self.filters.auto_filters(classification),
                    )
                )

        self.skipped_files = skipped
        noisy = sum(1 for c in chunks if c.auto_filtered)
        logger.info(f"Chunked {len(files)} files into {len(chunks)} chunks ({noisy} auto-filtered)")
        return chunks

    def chunk_text(self, diff_text: str) -> list[Chunk]:
        """Parse unified diff text and chunk it."""
        return self.chunk(parse_unified_diff(diff_text))
