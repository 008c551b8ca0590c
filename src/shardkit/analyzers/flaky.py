"""Flaky-test detection over a window of archived test results.

A test is flaky when, across enough runs, it sometimes passes and
sometimes fails.  Tests that always fail are broken rather than flaky
and are never reported here.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from shardkit.models.results import RunStatus, TestRunResult, TestStats

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

_TIMESTAMP_RE = re.compile(r"(\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2})")


class FlakySeverity(Enum):
    """Fixed severity bands, independent of the inclusion threshold."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


SEVERITY_ORDER: tuple[FlakySeverity, ...] = (
    FlakySeverity.CRITICAL,
    FlakySeverity.HIGH,
    FlakySeverity.MEDIUM,
    FlakySeverity.LOW,
)


def severity_for(rate: float) -> FlakySeverity:
    """Classify a failure rate: >=0.5 critical, >=0.3 high, >=0.2 medium, else low."""
    if rate >= 0.5:
        return FlakySeverity.CRITICAL
    if rate >= 0.3:
        return FlakySeverity.HIGH
    if rate >= 0.2:
        return FlakySeverity.MEDIUM
    return FlakySeverity.LOW


@dataclass(frozen=True)
class FlakyOptions:
    """Parameters for one flaky-detection run."""

    results_dir: Path = Path("cypress/results")
    """Directory holding one JSON archive per run."""

    history_size: int = 50
    """Number of most recent archives to analyze."""

    threshold: float = 0.2
    """Minimum failure rate for a test to be reported."""

    min_runs: int = 10
    """Minimum number of runs before a test can be judged."""

    output: Path = Path("flaky-tests.json")
    """Report destination."""


@dataclass
class FlakyTest:
    """One test identity classified as flaky."""

    identity: str
    name: str
    suite: str
    total_runs: int
    passes: int
    failures: int
    flaky_rate: float
    """failures / total_runs, strictly between 0 and 1."""

    severity: FlakySeverity

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": self.identity,
            "name": self.name,
            "suite": self.suite,
            "totalRuns": self.total_runs,
            "passes": self.passes,
            "failures": self.failures,
            "flakyRate": round(self.flaky_rate, 4),
            "severity": self.severity.value,
        }


@dataclass
class FlakyReport:
    """Structured result of a detection run."""

    tests: list[FlakyTest] = field(default_factory=list)
    threshold: float = 0.2
    min_runs: int = 10
    history_size: int = 50
    archives: int = 0
    """Number of archives actually read."""

    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def count(self, severity: FlakySeverity) -> int:
        return sum(1 for t in self.tests if t.severity is severity)

    @property
    def has_critical(self) -> bool:
        """True when any reported test is in the critical band."""
        return self.count(FlakySeverity.CRITICAL) > 0

    def summary(self) -> dict[str, int]:
        summary = {"totalFlakyTests": len(self.tests)}
        for severity in SEVERITY_ORDER:
            summary[severity.value] = self.count(severity)
        return summary

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "config": {
                "threshold": self.threshold,
                "minRuns": self.min_runs,
                "historySize": self.history_size,
            },
            "summary": self.summary(),
            "tests": [t.to_dict() for t in self.tests],
        }


# ── Archive parsing ───────────────────────────────────────────────


def extract_timestamp(file_name: str) -> str:
    """Return the ``YYYY-MM-DDTHH-MM-SS`` fragment of an archive name, if any."""
    match = _TIMESTAMP_RE.search(file_name)
    return match.group(1) if match else ""


def _parse_nodes(nodes: list[Any], source: str, timestamp: str, parent: str = "") -> list[TestRunResult]:
    results: list[TestRunResult] = []
    for node in nodes:
        if not isinstance(node, dict):
            continue

        if isinstance(node.get("suites"), list):
            results.extend(_parse_nodes(node["suites"], source, timestamp, parent))

        if isinstance(node.get("tests"), list):
            results.extend(
                _parse_nodes(node["tests"], source, timestamp, str(node.get("title") or parent))
            )

        title = node.get("title")
        if title and "tests" not in node and "suites" not in node:
            suite_name = node.get("suite") or node.get("parent") or parent
            results.append(
                TestRunResult(
                    name=str(node.get("fullTitle") or title),
                    suite=str(suite_name or ""),
                    status=RunStatus.parse(node.get("state") or node.get("status")),
                    duration=float(node.get("duration") or 0),
                    timestamp=timestamp,
                    source_file=source,
                )
            )
    return results


def parse_archive(data: Any, file_name: str) -> list[TestRunResult]:
    """Extract test outcomes from one archive.

    Accepts a top-level ``results`` list (mochawesome) or ``tests`` list;
    nested ``suites`` and ``tests`` are walked recursively.  Any other
    shape yields no results.
    """
    if not isinstance(data, dict):
        return []
    timestamp = extract_timestamp(file_name)
    for key in ("results", "tests"):
        if isinstance(data.get(key), list):
            return _parse_nodes(data[key], file_name, timestamp)
    return []


def select_archives(results_dir: Path, history_size: int) -> list[Path]:
    """Return the last *history_size* ``.json`` files in name order."""
    archives = sorted(p for p in results_dir.iterdir() if p.is_file() and p.suffix == ".json")
    return archives[-history_size:] if history_size > 0 else []


def load_results(results_dir: Path, history_size: int) -> tuple[list[TestRunResult], int]:
    """Read the most recent archives in *results_dir*.

    Unreadable archives are skipped with a warning.

    Returns:
        Tuple of (parsed results, number of archives parsed).
    """
    if not results_dir.is_dir():
        logger.warning("Results directory not found: %s", results_dir)
        return [], 0

    results: list[TestRunResult] = []
    parsed = 0
    for path in select_archives(results_dir, history_size):
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Failed to parse %s: %s", path.name, exc)
            continue
        results.extend(parse_archive(data, path.name))
        parsed += 1

    logger.info("Parsed %d test results from %d archives", len(results), parsed)
    return results, parsed


# ── Analysis ──────────────────────────────────────────────────────


def accumulate(results: Iterable[TestRunResult]) -> dict[str, TestStats]:
    """Group outcomes by test identity."""
    stats: dict[str, TestStats] = {}
    for result in results:
        entry = stats.get(result.identity)
        if entry is None:
            entry = TestStats(identity=result.identity, name=result.name, suite=result.suite)
            stats[result.identity] = entry
        entry.record(result.status)
    return stats


def analyze_flakiness(
    results: Iterable[TestRunResult],
    threshold: float = 0.2,
    min_runs: int = 10,
) -> list[FlakyTest]:
    """Classify flaky tests.

    A test qualifies when ``total_runs >= min_runs`` and its failure rate
    is strictly between 0 and 1 and at least *threshold*.

    Returns:
        Flaky tests, highest rate first (ties by identity).
    """
    flaky: list[FlakyTest] = []
    for stats in accumulate(results).values():
        if stats.total_runs < min_runs:
            continue
        rate = stats.failure_rate
        if 0 < rate < 1 and rate >= threshold:
            flaky.append(
                FlakyTest(
                    identity=stats.identity,
                    name=stats.name,
                    suite=stats.suite,
                    total_runs=stats.total_runs,
                    passes=stats.passes,
                    failures=stats.failures,
                    flaky_rate=rate,
                    severity=severity_for(rate),
                )
            )

    flaky.sort(key=lambda t: (-t.flaky_rate, t.identity))
    return flaky


def detect_flaky(options: FlakyOptions) -> FlakyReport | None:
    """Load archives and build a report.

    Returns:
        The report, or None when no results were found.
    """
    results, archives = load_results(options.results_dir, options.history_size)
    if not results:
        return None

    return FlakyReport(
        tests=analyze_flakiness(results, options.threshold, options.min_runs),
        threshold=options.threshold,
        min_runs=options.min_runs,
        history_size=options.history_size,
        archives=archives,
    )


def write_report(report: FlakyReport, output_path: Path) -> None:
    """Write the report as indented JSON."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(report.to_dict(), indent=2), encoding="utf-8")
    logger.info("Flaky report written to %s", output_path)
