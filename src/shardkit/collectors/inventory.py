"""Test collection: scan test files and build the inventory.

Each matching file is read once; tags, type, test count and a duration
estimate are derived from its text with simple heuristics.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from shardkit.models.inventory import TestInventory, TestRecord, TestType

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_TEST_PATTERNS: tuple[str, ...] = (
    "cypress/e2e/**/*.cy.js",
    "src/tests/features/**/*.feature",
)

_TAG_LIST_RE = re.compile(r"tags:\s*\[(.*?)\]")
_QUOTED_TAG_RE = re.compile(r"""['"](@[\w-]+)['"]""")
_GHERKIN_TAG_RE = re.compile(r"^@[\w-]+", re.MULTILINE)
_INLINE_TAG_RE = re.compile(r"\[(@[\w-]+)\]")

# Heuristic cost per test case and per framework command, in seconds.
_SECONDS_PER_TEST = 5
_SECONDS_PER_STEP = 0.5


@dataclass(frozen=True)
class CollectedFile:
    """A test record plus the collection-only metadata kept in the inventory."""

    record: TestRecord
    hash: str
    """md5 of the relative path."""

    size: int
    """Length of the file's text."""


def extract_tags(content: str) -> list[str]:
    """Return the tags a test file declares, in first-seen order.

    Recognizes ``tags: ['@a', "@b"]`` option lists, Gherkin ``@tag``
    tokens at the start of a line, and ``[@tag]`` markers in test titles.
    """
    tags: dict[str, None] = {}
    for tag_list in _TAG_LIST_RE.findall(content):
        for tag in _QUOTED_TAG_RE.findall(tag_list):
            tags[tag] = None
    for tag in _GHERKIN_TAG_RE.findall(content):
        tags[tag] = None
    for tag in _INLINE_TAG_RE.findall(content):
        tags[tag] = None
    return list(tags)


def detect_test_type(file: str, content: str) -> TestType:
    """Classify a test file by extension and the commands it uses."""
    if file.endswith(".feature"):
        return TestType.BDD
    if "cy.request(" in content or "cy.api(" in content:
        return TestType.API
    if "cy.intercept(" in content or "cy.route(" in content:
        return TestType.INTEGRATION
    return TestType.E2E


def estimate_duration(content: str) -> float:
    """Estimate run time in milliseconds from test and command counts."""
    tests = content.count("it(")
    steps = content.count("cy.")
    return (tests * _SECONDS_PER_TEST + steps * _SECONDS_PER_STEP) * 1000


def count_tests(test_type: TestType, content: str) -> int:
    """Count test cases: scenarios for BDD files, ``it(`` blocks otherwise."""
    if test_type is TestType.BDD:
        return content.count("Scenario:")
    return content.count("it(")


def analyze_test_file(root: Path, path: Path) -> CollectedFile:
    """Build the inventory entry for one test file."""
    content = path.read_text(encoding="utf-8", errors="replace")
    relative = path.relative_to(root).as_posix()
    test_type = detect_test_type(relative, content)

    record = TestRecord(
        file=relative,
        type=test_type,
        tags=tuple(extract_tags(content)),
        test_count=count_tests(test_type, content),
        estimated_duration=estimate_duration(content),
    )
    return CollectedFile(
        record=record,
        hash=hashlib.md5(relative.encode("utf-8"), usedforsecurity=False).hexdigest(),
        size=len(content),
    )


def find_test_files(root: Path, patterns: Sequence[str]) -> list[Path]:
    """Return files under *root* matching any glob, de-duplicated and sorted."""
    found: set[Path] = set()
    for pattern in patterns:
        matched = [p for p in root.glob(pattern) if p.is_file()]
        logger.debug("Pattern %s matched %d files", pattern, len(matched))
        found.update(matched)
    return sorted(found)


def collect_tests(
    root: Path,
    patterns: Sequence[str] = DEFAULT_TEST_PATTERNS,
    tag: str | None = None,
) -> TestInventory:
    """Scan *root* and build a fresh inventory.

    Args:
        root: Project root; record paths are relative to it.
        patterns: Glob patterns selecting test files.
        tag: If set, keep only files carrying this tag.

    Returns:
        Inventory sorted by estimated duration, longest first.
    """
    collected = [analyze_test_file(root, path) for path in find_test_files(root, patterns)]
    logger.info("Found %d test files", len(collected))

    if tag:
        collected = [c for c in collected if c.record.has_tag(tag)]
        logger.info("Filtered to %d files with tag %s", len(collected), tag)

    collected.sort(key=lambda c: (-c.record.estimated_duration, c.record.file))

    inventory = TestInventory.from_records(c.record for c in collected)
    for item in collected:
        inventory.extra[item.record.file] = {"hash": item.hash, "size": item.size}
    return inventory
