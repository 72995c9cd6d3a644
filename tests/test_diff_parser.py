"""Tests for unified diff parsing."""

import pytest

from crai.diff.parser import parse_hunk_header, parse_unified_diff
from crai.errors import ParseFailure
from crai.models import FileStatus, LineKind, LineRange


class TestParseHunkHeader:
    """Test @@ header parsing."""

    def test_full_header(self):
        old, new, header = parse_hunk_header("@@ -10,4 +10,6 @@ def foo():")
        assert old == LineRange(10, 4)
        assert new == LineRange(10, 6)
        assert header == "def foo():"

    def test_missing_counts_default_to_one(self):
        old, new, header = parse_hunk_header("@@ -3 +3 @@")
        assert old == LineRange(3, 1)
        assert new == LineRange(3, 1)
        assert header == ""

    def test_not_a_header(self):
        assert parse_hunk_header("@@ bogus @@") is None


class TestParseUnifiedDiff:
    """Test whole-diff parsing."""

    def test_three_files_in_order(self, three_chunk_diff):
        files = parse_unified_diff(three_chunk_diff)
        assert [f.path for f in files] == ["Cargo.lock", "src/a.py", "src/b.py"]
        assert all(len(f.hunks) == 1 for f in files)

    def test_line_numbers(self, three_chunk_diff):
        hunk = parse_unified_diff(three_chunk_diff)[1].hunks[0]
        kinds = [line.kind for line in hunk.lines]
        assert kinds == [LineKind.CONTEXT, LineKind.REMOVE, LineKind.ADD, LineKind.ADD, LineKind.CONTEXT]
        assert hunk.lines[1].old_line == 2 and hunk.lines[1].new_line is None
        assert hunk.lines[2].new_line == 2 and hunk.lines[2].old_line is None
        assert hunk.lines[4].old_line == 3 and hunk.lines[4].new_line == 4
        assert hunk.additions == 2
        assert hunk.deletions == 1

    def test_multiple_hunks_per_file(self):
        diff = (
            "--- a/app.py\n"
            "+++ b/app.py\n"
            "@@ -1,2 +1,2 @@\n"
            "-a = 1\n"
            "+a = 2\n"
            " b = 1\n"
            "@@ -50,1 +50,2 @@ class Foo:\n"
            " pass\n"
            "+pass\n"
        )
        files = parse_unified_diff(diff)
        assert len(files) == 1
        assert [h.new_range for h in files[0].hunks] == [LineRange(1, 2), LineRange(50, 2)]
        assert files[0].hunks[1].header == "class Foo:"

    def test_removed_line_starting_with_dashes(self):
        """A removed '-- comment' line inside a hunk is not a file header."""
        diff = (
            "--- a/schema.sql\n"
            "+++ b/schema.sql\n"
            "@@ -1,2 +1,1 @@\n"
            "--- old comment\n"
            " SELECT 1;\n"
        )
        hunk = parse_unified_diff(diff)[0].hunks[0]
        assert hunk.lines[0].kind is LineKind.REMOVE
        assert hunk.lines[0].content == "-- old comment"

    def test_new_deleted_and_renamed_files(self):
        diff = (
            "diff --git a/new.py b/new.py\n"
            "new file mode 100644\n"
            "--- /dev/null\n"
            "+++ b/new.py\n"
            "@@ -0,0 +1 @@\n"
            "+print('hi')\n"
            "diff --git a/old.py b/old.py\n"
            "deleted file mode 100644\n"
            "--- a/old.py\n"
            "+++ /dev/null\n"
            "@@ -1 +0,0 @@\n"
            "-print('bye')\n"
            "diff --git a/before.py b/after.py\n"
            "similarity index 100%\n"
            "rename from before.py\n"
            "rename to after.py\n"
        )
        added, deleted, renamed = parse_unified_diff(diff)
        assert added.status is FileStatus.ADDED and added.path == "new.py"
        assert deleted.status is FileStatus.DELETED and deleted.path == "old.py"
        assert renamed.status is FileStatus.RENAMED
        assert renamed.path == "after.py" and renamed.old_path == "before.py"
        assert renamed.hunks == ()

    def test_binary_file_has_no_hunks(self):
        diff = (
            "diff --git a/logo.png b/logo.png\n"
            "index 1111111..2222222 100644\n"
            "Binary files a/logo.png and b/logo.png differ\n"
        )
        [logo] = parse_unified_diff(diff)
        assert logo.is_binary
        assert logo.hunks == ()

    def test_no_newline_marker_is_ignored(self):
        diff = (
            "--- a/x.txt\n"
            "+++ b/x.txt\n"
            "@@ -1 +1 @@\n"
            "-old\n"
            "\\ No newline at end of file\n"
            "+new\n"
            "\\ No newline at end of file\n"
        )
        hunk = parse_unified_diff(diff)[0].hunks[0]
        assert [line.content for line in hunk.lines] == ["old", "new"]

    def test_empty_input(self):
        assert parse_unified_diff("") == []

    def test_malformed_hunk_header(self):
        diff = "--- a/x.py\n+++ b/x.py\n@@ -a,b +c,d @@\n"
        with pytest.raises(ParseFailure) as exc_info:
            parse_unified_diff(diff)
        assert exc_info.value.file_path == "x.py"
        assert exc_info.value.line == 3

    def test_truncated_hunk(self):
        diff = "--- a/x.py\n+++ b/x.py\n@@ -1,3 +1,3 @@\n a\n"
        with pytest.raises(ParseFailure, match="end of diff"):
            parse_unified_diff(diff)

    def test_body_longer_than_header(self):
        diff = "--- a/x.py\n+++ b/x.py\n@@ -1,1 +1,1 @@\n-a\n+b\n+c\n"
        with pytest.raises(ParseFailure, match="outside of any hunk"):
            parse_unified_diff(diff)

    def test_hunk_outside_file(self):
        with pytest.raises(ParseFailure):
            parse_unified_diff("@@ -1 +1 @@\n-a\n+b\n")

    def test_form_feed_and_unicode_separators_are_content(self):
        diff = (
            "--- a/src/a.py\n"
            "+++ b/src/a.py\n"
            "@@ -1,3 +1,3 @@\n"
            " x = 1\x0c# page\n"
            "-y = 'a b'\n"
            "+y = 'a\x0bb\x85c'\n"
            " z = 3\u2028# end\n"
        )
        hunk = parse_unified_diff(diff)[0].hunks[0]
        assert [line.content for line in hunk.lines] == [
            "x = 1\x0c# page",
            "y = 'a b'",
            "y = 'a\x0bb\x85c'",
            "z = 3\u2028# end",
        ]

    def test_crlf_line_endings(self):
        diff = "--- a/x.py\r\n+++ b/x.py\r\n@@ -1 +1 @@\r\n-a\r\n+b\r\n"
        files = parse_unified_diff(diff)
        assert files[0].path == "x.py"
        assert [line.content for line in files[0].hunks[0].lines] == ["a", "b"]
