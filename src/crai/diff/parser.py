"""Unified diff parsing.

Parses the output of ``git diff`` (or plain ``diff -u``) into :class:`FileDiff`
objects. Hunk bodies are consumed by the line counts in their ``@@`` header, so
a removed line that happens to start with ``--`` is never mistaken for a file
header. Any inconsistency fails fast with :class:`ParseFailure`.
"""

import logging
import re

from ..errors import ParseFailure
from ..models import DiffLine, FileDiff, FileStatus, Hunk, LineKind, LineRange

logger = logging.getLogger(__name__)

_HUNK_HEADER_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@ ?(.*)$")
_GIT_HEADER_RE = re.compile(r"^diff --git a/(.+) b/(.+)$")

# Extended git header lines that carry no information we need
_IGNORED_PREFIXES = (
    "index ",
    "similarity index ",
    "dissimilarity index ",
    "old mode ",
    "new mode ",
)


def _strip_path(raw: str, prefix: str) -> str:
    path = raw.split("\t", 1)[0].strip()
    if path.startswith('"') and path.endswith('"'):
        path = path[1:-1]
    if path.startswith(prefix):
        path = path[len(prefix):]
    return path


class _FileBuilder:
    def __init__(self, path: str):
        self.path = path
        self.old_path: str | None = None
        self.status = FileStatus.MODIFIED
        self.hunks: list[Hunk] = []
        self.is_binary = False
        self.seen_old_header = False

    def build(self) -> FileDiff:
        return FileDiff(
            path=self.path,
            status=self.status,
            hunks=tuple(self.hunks),
            old_path=self.old_path,
            is_binary=self.is_binary,
        )


class _HunkBuilder:
    def __init__(self, old_range: LineRange, new_range: LineRange, header: str):
        self.old_range = old_range
        self.new_range = new_range
        self.header = header
        self.remaining_old = old_range.count
        self.remaining_new = new_range.count
        self.old_line = old_range.start
        self.new_line = new_range.start
        self.lines: list[DiffLine] = []

    @property
    def open(self) -> bool:
        return self.remaining_old > 0 or self.remaining_new > 0

    def add(self, kind: LineKind, content: str) -> bool:
        """Append a line. Returns False if the header counts do not allow it."""
        if kind is LineKind.CONTEXT:
            if self.remaining_old <= 0 or self.remaining_new <= 0:
                return False
            self.lines.append(DiffLine(kind, content, self.old_line, self.new_line))
            self.old_line += 1
            self.new_line += 1
            self.remaining_old -= 1
            self.remaining_new -= 1
        elif kind is LineKind.ADD:
            if self.remaining_new <= 0:
                return False
            self.lines.append(DiffLine(kind, content, None, self.new_line))
            self.new_line += 1
            self.remaining_new -= 1
        else:
            if self.remaining_old <= 0:
                return False
            self.lines.append(DiffLine(kind, content, self.old_line, None))
            self.old_line += 1
            self.remaining_old -= 1
        return True

    def build(self) -> Hunk:
        return Hunk(self.old_range, self.new_range, self.header, tuple(self.lines))


def split_diff_lines(text: str) -> list[str]:
    """Split on LF only; form feeds and Unicode line separators are content."""
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


def parse_hunk_header(line: str) -> tuple[LineRange, LineRange, str] | None:
    """Parse ``@@ -a,b +c,d @@ context``; a missing count means 1."""
    match = _HUNK_HEADER_RE.match(line)
    if not match:
        return None
    old_start, old_count, new_start, new_count, header = match.groups()
    old_range = LineRange(int(old_start), int(old_count) if old_count is not None else 1)
    new_range = LineRange(int(new_start), int(new_count) if new_count is not None else 1)
    return old_range, new_range, header.strip()


def parse_unified_diff(text: str) -> list[FileDiff]:
    """Parse unified diff text into file diffs, in input order.

    Raises:
        ParseFailure: On a malformed hunk header, a hunk whose body does not
            match its header counts, or diff lines outside any hunk.
    """
    files: list[FileDiff] = []
    current: _FileBuilder | None = None
    hunk: _HunkBuilder | None = None

    def finish_file() -> None:
        nonlocal current
        if current is not None:
            files.append(current.build())
            current = None

    for lineno, line in enumerate(split_diff_lines(text), 1):
        if hunk is not None and hunk.open:
            if line.startswith("\\"):
                continue
            if line == "" or line.startswith(" "):
                kind, content = LineKind.CONTEXT, line[1:]
            elif line.startswith("+"):
                kind, content = LineKind.ADD, line[1:]
            elif line.startswith("-"):
                kind, content = LineKind.REMOVE, line[1:]
            else:
                raise ParseFailure("Hunk ended before its header line counts were satisfied", current.path, lineno)
            if not hunk.add(kind, content):
                raise ParseFailure("Hunk body does not match its header line counts", current.path, lineno)
            if not hunk.open:
                current.hunks.append(hunk.build())
                hunk = None
            continue

        if line.startswith("\\") or line == "":
            continue

        if line.startswith("diff --git "):
            finish_file()
            match = _GIT_HEADER_RE.match(line)
            current = _FileBuilder(match.group(2) if match else "unknown")
        elif line.startswith("--- "):
            if current is None or current.hunks or current.seen_old_header:
                finish_file()
                current = _FileBuilder("unknown")
            current.seen_old_header = True
            old_path = _strip_path(line[4:], "a/")
            if old_path == "/dev/null":
                current.status = FileStatus.ADDED
            else:
                if current.status is not FileStatus.RENAMED and current.status is not FileStatus.COPIED:
                    current.old_path = current.old_path or old_path
                if current.path == "unknown":
                    current.path = old_path
        elif line.startswith("+++ "):
            if current is None:
                raise ParseFailure("'+++' header without a preceding file header", line=lineno)
            new_path = _strip_path(line[4:], "b/")
            if new_path == "/dev/null":
                current.status = FileStatus.DELETED
            else:
                current.path = new_path
        elif line.startswith("@@"):
            if current is None:
                raise ParseFailure("Hunk header outside of a file", line=lineno)
            parsed = parse_hunk_header(line)
            if parsed is None:
                raise ParseFailure(f"Malformed hunk header: {line!r}", current.path, lineno)
            hunk = _HunkBuilder(*parsed)
            if not hunk.open:
                current.hunks.append(hunk.build())
                hunk = None
        elif current is None:
            # Preamble such as commit metadata from `git show`
            continue
        elif line.startswith("new file mode"):
            current.status = FileStatus.ADDED
        elif line.startswith("deleted file mode"):
            current.status = FileStatus.DELETED
        elif line.startswith("rename from "):
            current.status = FileStatus.RENAMED
            current.old_path = line[len("rename from "):]
        elif line.startswith("rename to "):
            current.path = line[len("rename to "):]
        elif line.startswith("copy from "):
            current.status = FileStatus.COPIED
            current.old_path = line[len("copy from "):]
        elif line.startswith("copy to "):
            current.path = line[len("copy to "):]
        elif line.startswith("Binary files ") or line.startswith("GIT binary patch"):
            current.is_binary = True
        elif line.startswith(_IGNORED_PREFIXES):
            continue
        elif line[0] in "+- ":
            raise ParseFailure("Diff line outside of any hunk", current.path, lineno)
        else:
            logger.debug(f"Ignoring unrecognized diff line {lineno}: {line[:60]!r}")

    if hunk is not None and hunk.open:
        raise ParseFailure("Unexpected end of diff inside a hunk", current.path if current else None)
    finish_file()
    return files
