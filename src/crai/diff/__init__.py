"""Diff acquisition and parsing."""

from .git import STAGED, UNSTAGED, DiffTarget, GitDiffSource
from .parser import parse_hunk_header, parse_unified_diff

__all__ = [
    "DiffTarget",
    "GitDiffSource",
    "STAGED",
    "UNSTAGED",
    "parse_hunk_header",
    "parse_unified_diff",
]
