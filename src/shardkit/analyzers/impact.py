"""Change-impact analysis: map changed files to the tests they affect.

Each changed file is matched against an ordered list of mapping rules;
the first matching rule wins.  A rule produces test patterns (see
:mod:`shardkit.analyzers.patterns`).  Any file that no rule matches, or
any rule yielding ``@all``, forces the whole suite to run: incomplete
mapping coverage must never silently skip tests.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from shardkit.analyzers.patterns import (
    Pattern,
    RunAll,
    expand_patterns,
    glob_to_regex,
    parse_patterns,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from pathlib import Path

    from shardkit.models.inventory import TestInventory

logger = logging.getLogger(__name__)

Mapper = Callable[[str, re.Match[str]], list[str]]
"""Produces raw test patterns for a changed file and its rule match."""

SMOKE_TAG = "@smoke"


class MappingFileError(Exception):
    """Raised when a custom mapping file cannot be parsed."""


# ── Mapping rules ─────────────────────────────────────────────────


@dataclass(frozen=True)
class MappingRule:
    """Associates changed-file paths with the tests they affect."""

    matcher: re.Pattern[str]
    """Regular expression searched against the changed file path."""

    mapper: Mapper
    """Builds test patterns from the file and its match."""

    description: str = ""
    """Human-readable label shown in verbose output."""

    def match(self, file: str) -> re.Match[str] | None:
        """Return the match of this rule against *file*, or None."""
        return self.matcher.search(file)

    def resolve(self, file: str, match: re.Match[str]) -> list[Pattern]:
        """Apply the mapper and parse its output."""
        return parse_patterns(self.mapper(file, match))

    @classmethod
    def from_glob(cls, source: str, tests: Sequence[str], description: str = "") -> MappingRule:
        """Create a rule mapping a source glob to a fixed list of test patterns."""
        fixed = list(tests)
        return cls(
            matcher=glob_to_regex(source),
            mapper=lambda _file, _match: list(fixed),
            description=description or source,
        )

    @classmethod
    def from_regex(cls, pattern: str, tests: Sequence[str], description: str = "") -> MappingRule:
        """Create a rule from a regular expression.

        Test patterns may reference capture groups with ``{1}``, ``{2}``...
        """
        templates = list(tests)

        def _mapper(file: str, match: re.Match[str]) -> list[str]:
            groups = [file, *(g or "" for g in match.groups())]
            return [t.format(*groups) for t in templates]

        return cls(
            matcher=re.compile(pattern),
            mapper=_mapper,
            description=description or pattern,
        )


def _page_object_tests(_file: str, match: re.Match[str]) -> list[str]:
    return [f"cypress/e2e/**/*{match.group(1)}*.cy.js"]


DEFAULT_RULES: tuple[MappingRule, ...] = (
    MappingRule(
        matcher=re.compile(r"^(cypress|src/tests)/.+\.(cy\.js|feature)$"),
        mapper=lambda file, _match: [file],
        description="Direct test file changes",
    ),
    MappingRule(
        matcher=re.compile(r"^src/pages/(.+)\.js$"),
        mapper=_page_object_tests,
        description="Page object changes",
    ),
    MappingRule(
        matcher=re.compile(r"^(cypress/fixtures|src/fixtures)/(.+)\.json$"),
        mapper=lambda _file, _match: ["cypress/e2e/**/*.cy.js"],
        description="Fixture changes",
    ),
    MappingRule(
        matcher=re.compile(r"^(cypress/support|src/utils)/.+\.js$"),
        mapper=lambda _file, _match: ["@all"],
        description="Support/utility changes (run all)",
    ),
    MappingRule(
        matcher=re.compile(r"^(cypress\.config\.js|\.env.*|package\.json)$"),
        mapper=lambda _file, _match: ["@all"],
        description="Configuration changes (run all)",
    ),
)
"""Built-in rules, used when no custom mapping file supplies its own."""

DEFAULT_ALWAYS_RUN: tuple[str, ...] = (SMOKE_TAG,)


@dataclass
class MappingConfig:
    """Ordered rules plus the always-run patterns."""

    rules: list[MappingRule] = field(default_factory=lambda: list(DEFAULT_RULES))
    always_run: list[Pattern] = field(
        default_factory=lambda: parse_patterns(DEFAULT_ALWAYS_RUN),
    )
    custom: bool = False
    """True when any part came from a custom mapping file."""


def _parse_rule(raw: Any, position: int) -> MappingRule:
    if not isinstance(raw, dict):
        raise MappingFileError(f"rules[{position}] must be an object")

    tests = raw.get("tests", [])
    if isinstance(tests, str):
        tests = [tests]
    if not isinstance(tests, list) or not all(isinstance(t, str) for t in tests):
        raise MappingFileError(f"rules[{position}].tests must be a list of strings")

    description = str(raw.get("description", ""))
    if isinstance(raw.get("source"), str):
        return MappingRule.from_glob(raw["source"], tests, description)
    if isinstance(raw.get("pattern"), str):
        try:
            return MappingRule.from_regex(raw["pattern"], tests, description)
        except re.error as exc:
            raise MappingFileError(f"rules[{position}].pattern is not a valid regex: {exc}") from exc
    raise MappingFileError(f"rules[{position}] needs a 'source' glob or a 'pattern' regex")


def parse_mapping_config(data: Any) -> MappingConfig:
    """Build a mapping config from a parsed mapping file.

    ``rules`` and ``alwaysRun`` each replace the built-in value when
    present; an absent key keeps the default.

    Raises:
        MappingFileError: If the data is structurally invalid.
    """
    if not isinstance(data, dict):
        raise MappingFileError("Mapping file must contain a JSON object")

    config = MappingConfig(custom=True)

    raw_rules = data.get("rules")
    if raw_rules:
        if not isinstance(raw_rules, list):
            raise MappingFileError("'rules' must be a list")
        config.rules = [_parse_rule(rule, i) for i, rule in enumerate(raw_rules)]

    raw_always = data.get("alwaysRun")
    if raw_always:
        if not isinstance(raw_always, list) or not all(isinstance(p, str) for p in raw_always):
            raise MappingFileError("'alwaysRun' must be a list of strings")
        config.always_run = parse_patterns(raw_always)

    return config


def load_mapping_config(path: Path | None) -> MappingConfig:
    """Load custom mapping rules, or the defaults when *path* does not exist.

    Raises:
        MappingFileError: If the file exists but cannot be parsed.
    """
    if path is None or not path.is_file():
        logger.debug("No custom mapping file found, using default rules")
        return MappingConfig()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise MappingFileError(f"Error loading mapping file {path}: {exc}") from exc

    config = parse_mapping_config(data)
    logger.info("Loaded %d custom mapping rules from %s", len(config.rules), path)
    return config


# ── Resolution ────────────────────────────────────────────────────


@dataclass
class FileResolution:
    """How one changed file was mapped."""

    file: str
    """The changed file."""

    rule: MappingRule | None = None
    """First matching rule, or None when unmapped."""

    patterns: list[Pattern] = field(default_factory=list)
    """Patterns the rule produced."""

    @property
    def mapped(self) -> bool:
        return self.rule is not None

    @property
    def requires_all(self) -> bool:
        return any(isinstance(p, RunAll) for p in self.patterns)


@dataclass
class ImpactResult:
    """Outcome of mapping a set of changed files."""

    run_all: bool = False
    """True when the full suite must run."""

    patterns: list[Pattern] = field(default_factory=list)
    """Affected test patterns plus the always-run patterns, de-duplicated."""

    always_run: list[Pattern] = field(default_factory=list)
    """Always-run patterns that were unioned in."""

    resolutions: list[FileResolution] = field(default_factory=list)
    """Per-file mapping details, in input order."""

    @property
    def unmapped_files(self) -> list[str]:
        return [r.file for r in self.resolutions if not r.mapped]

    @property
    def run_all_files(self) -> list[str]:
        """Files whose rule demanded the full suite."""
        return [r.file for r in self.resolutions if r.requires_all]


def match_rule(file: str, rules: Sequence[MappingRule]) -> tuple[MappingRule, re.Match[str]] | None:
    """Return the first rule matching *file* together with its match."""
    for rule in rules:
        match = rule.match(file)
        if match:
            return rule, match
    return None


def resolve_impact(changed_files: Iterable[str], mapping: MappingConfig) -> ImpactResult:
    """Map changed files to affected test patterns.

    Every file is scanned even after the full suite is already required,
    so the per-file report stays complete.
    """
    result = ImpactResult()
    seen: set[Pattern] = set()

    def _add(pattern: Pattern) -> None:
        if pattern not in seen:
            seen.add(pattern)
            result.patterns.append(pattern)

    for file in changed_files:
        found = match_rule(file, mapping.rules)
        if found is None:
            logger.debug("%s -> no mapping (will be conservative)", file)
            result.resolutions.append(FileResolution(file=file))
            continue

        rule, match = found
        patterns = rule.resolve(file, match)
        logger.debug("%s -> %s", file, rule.description)
        result.resolutions.append(FileResolution(file=file, rule=rule, patterns=patterns))

        for pattern in patterns:
            if isinstance(pattern, RunAll):
                result.run_all = True
                logger.info("%s requires running all tests", file)
            else:
                _add(pattern)

    result.always_run = list(mapping.always_run)
    for pattern in result.always_run:
        _add(pattern)

    unmapped = result.unmapped_files
    if unmapped:
        logger.warning("%d files have no mapping rules; running all tests", len(unmapped))
        result.run_all = True

    return result


# ── Selection ─────────────────────────────────────────────────────


class SelectionMode(Enum):
    """What the test runner should execute."""

    ALL = "ALL"
    SMOKE = "SMOKE"
    FILES = "FILES"


@dataclass
class Selection:
    """Final, runner-facing test selection."""

    mode: SelectionMode
    """Selection kind."""

    files: list[str] = field(default_factory=list)
    """Selected test files (``FILES`` mode only)."""

    reason: str = ""
    """Why this selection was made."""

    impact: ImpactResult | None = None
    """Mapping details, when changed files were analyzed."""

    unmatched: list[Pattern] = field(default_factory=list)
    """Patterns that expanded to no tests."""

    def format(self) -> str:
        """Render as ``ALL``, ``SMOKE`` or a comma-joined file list."""
        if self.mode is SelectionMode.FILES:
            return ",".join(self.files)
        return self.mode.value


@dataclass(frozen=True)
class SelectionOptions:
    """Parameters for one selection run."""

    base_ref: str = "origin/main"
    """Git ref the working branch is compared against."""

    changed_files: tuple[str, ...] | None = None
    """Explicit changed files; skips git when set."""

    tag: str | None = None
    """Keep only selected tests carrying this tag."""

    run_all: bool = False
    """Skip analysis and run the whole suite."""


def select_tests(
    changed_files: Sequence[str],
    inventory: TestInventory | None,
    mapping: MappingConfig,
    options: SelectionOptions,
) -> Selection:
    """Decide which tests to run for a set of changed files.

    Args:
        changed_files: Changed file paths (empty when none were detected
            or the diff could not be read).
        inventory: Test inventory, or None when it could not be loaded.
        mapping: Mapping rules to apply.
        options: Selection options.

    Returns:
        ``ALL`` when forced or when any change needs the full suite,
        ``SMOKE`` when nothing can be mapped safely, else the expanded files.
    """
    if options.run_all:
        return Selection(mode=SelectionMode.ALL, reason="--run-all requested")

    if not changed_files:
        return Selection(mode=SelectionMode.SMOKE, reason="No changed files detected")

    impact = resolve_impact(changed_files, mapping)

    if impact.run_all:
        if impact.unmapped_files:
            reason = f"{len(impact.unmapped_files)} changed files have no mapping rules"
        else:
            reason = f"Changes require all tests: {', '.join(impact.run_all_files)}"
        return Selection(mode=SelectionMode.ALL, reason=reason, impact=impact)

    if not impact.patterns:
        return Selection(
            mode=SelectionMode.SMOKE, reason="No affected tests identified", impact=impact
        )

    if inventory is None:
        return Selection(
            mode=SelectionMode.SMOKE,
            reason="Test inventory unavailable; cannot expand patterns",
            impact=impact,
        )

    expansion = expand_patterns(impact.patterns, inventory)
    for pattern in expansion.unmatched:
        logger.warning("Pattern %s matched no tests", pattern)

    files = expansion.files
    if options.tag:
        tagged = {r.file for r in inventory.with_tag(options.tag)}
        files = [f for f in files if f in tagged]
        logger.info("Filtered by tag %s: %d tests", options.tag, len(files))

    return Selection(
        mode=SelectionMode.FILES,
        files=files,
        reason=f"{len(files)} tests affected by {len(changed_files)} changed files",
        impact=impact,
        unmatched=expansion.unmatched,
    )
