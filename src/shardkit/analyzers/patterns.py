"""Test pattern parsing and expansion against the test inventory.

A pattern selects test files in one of four ways:

- ``RunAll``: every test (written ``@all`` in mapping files)
- ``TagRef``: tests carrying a tag (``@smoke``)
- ``Glob``: paths matching a ``*`` / ``**`` glob
- ``Literal``: one concrete path, passed through unchanged

Both the shard tag filter and change-based selection resolve patterns
through :func:`matches` / :func:`expand_patterns`, so the two commands
always agree on what a pattern means.  Everything here is pure.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from shardkit.models.inventory import TestInventory, TestRecord

logger = logging.getLogger(__name__)

RUN_ALL_SENTINEL = "@all"
TAG_PREFIX = "@"

# ── Pattern variants ─────────────────────────────────────────────


@dataclass(frozen=True)
class RunAll:
    """No safe mapping exists; every test must run."""

    def __str__(self) -> str:
        return RUN_ALL_SENTINEL


@dataclass(frozen=True)
class TagRef:
    """Tests whose tag set contains ``tag``."""

    tag: str

    def __str__(self) -> str:
        return self.tag


@dataclass(frozen=True)
class Glob:
    """Tests whose file path matches a glob."""

    pattern: str

    def __str__(self) -> str:
        return self.pattern


@dataclass(frozen=True)
class Literal:
    """A concrete test file path."""

    path: str

    def __str__(self) -> str:
        return self.path


Pattern = RunAll | TagRef | Glob | Literal


def parse_pattern(raw: str) -> Pattern:
    """Classify a raw pattern string.

    ``@all`` becomes :class:`RunAll`, any other ``@``-prefixed string a
    :class:`TagRef`, strings containing ``*`` a :class:`Glob`, and
    everything else a :class:`Literal`.
    """
    text = raw.strip()
    if text == RUN_ALL_SENTINEL:
        return RunAll()
    if text.startswith(TAG_PREFIX):
        return TagRef(text)
    if "*" in text:
        return Glob(text)
    return Literal(text)


def parse_patterns(raw: Iterable[str]) -> list[Pattern]:
    """Parse each non-blank string in *raw*."""
    return [parse_pattern(item) for item in raw if item.strip()]


# ── Glob translation ─────────────────────────────────────────────


@lru_cache(maxsize=256)
def glob_to_regex(glob: str) -> re.Pattern[str]:
    """Translate a path glob into an anchored regular expression.

    ``**`` matches any sequence including ``/`` (a ``**/`` segment may also
    match no directories at all), ``*`` matches any sequence without ``/``.
    All other characters match literally.
    """
    parts: list[str] = []
    i = 0
    while i < len(glob):
        if glob.startswith("**/", i):
            parts.append("(?:.*/)?")
            i += 3
        elif glob.startswith("**", i):
            parts.append(".*")
            i += 2
        elif glob[i] == "*":
            parts.append("[^/]*")
            i += 1
        else:
            parts.append(re.escape(glob[i]))
            i += 1
    return re.compile("^" + "".join(parts) + "$")


# ── Matching and expansion ───────────────────────────────────────


def matches(pattern: Pattern, record: TestRecord) -> bool:
    """Return True when *record* is selected by *pattern*."""
    if isinstance(pattern, RunAll):
        return True
    if isinstance(pattern, TagRef):
        return record.has_tag(pattern.tag)
    if isinstance(pattern, Glob):
        return glob_to_regex(pattern.pattern).match(record.file) is not None
    return record.file == pattern.path


def filter_records(records: Sequence[TestRecord], pattern: Pattern) -> list[TestRecord]:
    """Return the records selected by *pattern*, preserving order."""
    return [r for r in records if matches(pattern, r)]


def expand_pattern(pattern: Pattern, inventory: TestInventory) -> list[str]:
    """Resolve one pattern to test file identifiers.

    Literal paths pass through unchanged whether or not the inventory
    knows them; all other variants are matched against the inventory.
    """
    if isinstance(pattern, Literal):
        return [pattern.path]
    return [r.file for r in filter_records(inventory.tests, pattern)]


@dataclass
class PatternExpansion:
    """Result of expanding a list of patterns."""

    files: list[str] = field(default_factory=list)
    """Matched test files, de-duplicated, in first-match order."""

    unmatched: list[Pattern] = field(default_factory=list)
    """Patterns that selected no tests."""


def expand_patterns(patterns: Iterable[Pattern], inventory: TestInventory) -> PatternExpansion:
    """Resolve several patterns to the union of their test files.

    A pattern that matches nothing is not an error; it is listed in
    ``unmatched`` so callers can report it.
    """
    result = PatternExpansion()
    seen: set[str] = set()
    for pattern in patterns:
        files = expand_pattern(pattern, inventory)
        logger.debug("Pattern %s matched %d tests", pattern, len(files))
        if not files:
            result.unmatched.append(pattern)
            continue
        for file in files:
            if file not in seen:
                seen.add(file)
                result.files.append(file)
    return result
