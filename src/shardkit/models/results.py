"""Historical test outcome models used by flaky-test detection."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class RunStatus(Enum):
    """Outcome of a single test execution."""

    PASSED = "passed"
    FAILED = "failed"
    PENDING = "pending"
    SKIPPED = "skipped"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: object) -> RunStatus:
        """Map a raw status string to a member, defaulting to ``UNKNOWN``."""
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                return cls.UNKNOWN
        return cls.UNKNOWN


@dataclass(frozen=True)
class TestRunResult:
    """One test outcome from one archived run."""

    __test__ = False

    name: str
    """Test title (full title when the archive provides one)."""

    suite: str = ""
    """Enclosing suite title."""

    status: RunStatus = RunStatus.UNKNOWN
    """Execution outcome."""

    duration: float = 0.0
    """Duration in milliseconds."""

    timestamp: str = ""
    """Run timestamp, taken from the archive file name."""

    source_file: str = ""
    """Archive file the result was read from."""

    @property
    def identity(self) -> str:
        """Composite ``suite::name`` key used to group repeated runs."""
        if self.suite:
            return f"{self.suite}::{self.name}"
        return self.name


@dataclass
class TestStats:
    """Accumulated outcomes for one test identity."""

    __test__ = False

    identity: str
    name: str
    suite: str = ""
    total_runs: int = 0
    passes: int = 0
    failures: int = 0

    def record(self, status: RunStatus) -> None:
        """Count one more run with the given outcome."""
        self.total_runs += 1
        if status is RunStatus.PASSED:
            self.passes += 1
        elif status is RunStatus.FAILED:
            self.failures += 1

    @property
    def failure_rate(self) -> float:
        """Fraction of runs that failed (0.0 when there are no runs)."""
        if self.total_runs == 0:
            return 0.0
        return self.failures / self.total_runs
