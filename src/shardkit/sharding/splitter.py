"""Shard splitting: deterministic partitioning of the test inventory.

Two strategies are supported:

- ``duration`` (default): greedy longest-first bin balancing on the
  estimated duration of each test file.
- ``hash``: a stable string hash of the file path, modulo the shard count.

Both are pure functions of (inventory, shard count), so parallel CI
runners that each compute their own shard need no coordination.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from shardkit.analyzers.patterns import TagRef, filter_records

if TYPE_CHECKING:
    from collections.abc import Sequence

    from shardkit.models.inventory import TestInventory, TestRecord

logger = logging.getLogger(__name__)

_INT32_MASK = 0xFFFFFFFF
_INT32_SIGN = 0x80000000


class ShardStrategy(Enum):
    """How tests are assigned to shards."""

    DURATION = "duration"
    HASH = "hash"


class InvalidShardIndexError(ValueError):
    """Raised when the shard index or shard count is out of range."""


# ── Data models ───────────────────────────────────────────────────


@dataclass
class ShardBin:
    """Tests assigned to one shard during a single partitioning run."""

    index: int
    """Zero-based shard index."""

    tests: list[TestRecord] = field(default_factory=list)
    """Assigned tests, in assignment order."""

    total_duration: float = 0.0
    """Sum of the assigned tests' estimated durations (ms)."""

    def add(self, record: TestRecord) -> None:
        """Assign *record* to this bin."""
        self.tests.append(record)
        self.total_duration += record.estimated_duration


@dataclass(frozen=True)
class ShardOptions:
    """Parameters for one sharding invocation."""

    total: int = 1
    """Number of shards (>= 1)."""

    index: int = 0
    """Shard to extract, in ``[0, total)``."""

    tag: str | None = None
    """Only shard tests carrying this tag."""

    strategy: ShardStrategy = ShardStrategy.DURATION
    """Partitioning strategy."""


@dataclass
class ShardPlan:
    """Full partition of the (filtered) inventory plus the requested shard."""

    options: ShardOptions
    """Options the plan was computed with."""

    inventory_size: int
    """Number of tests in the inventory before tag filtering."""

    candidates: int
    """Number of tests left after tag filtering."""

    bins: list[ShardBin] = field(default_factory=list)
    """One bin per shard."""

    @property
    def tests(self) -> list[TestRecord]:
        """Tests in the requested shard."""
        return self.bins[self.options.index].tests

    @property
    def files(self) -> list[str]:
        """File identifiers in the requested shard."""
        return [t.file for t in self.tests]


# ── Hashing ───────────────────────────────────────────────────────


def hash_code(value: str) -> int:
    """Return a non-negative, platform-independent 32-bit string hash.

    Computes ``h = h * 31 + unit`` over the UTF-16 code units of *value*
    with signed 32-bit wrap-around, then takes the absolute value.
    """
    h = 0
    data = value.encode("utf-16-le")
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = (h * 31 + unit) & _INT32_MASK
    if h & _INT32_SIGN:
        h -= _INT32_MASK + 1
    return abs(h)


# ── Partitioning ──────────────────────────────────────────────────


def validate_shard_args(shard_index: int, shard_count: int) -> None:
    """Check shard arguments.

    Raises:
        InvalidShardIndexError: If shard_count < 1 or shard_index is
            outside ``[0, shard_count)``.
    """
    if shard_count < 1:
        msg = f"shard_count must be >= 1, got {shard_count}"
        raise InvalidShardIndexError(msg)
    if shard_index < 0 or shard_index >= shard_count:
        msg = f"shard_index must be in [0, {shard_count}), got {shard_index}"
        raise InvalidShardIndexError(msg)


def hash_partition(tests: Sequence[TestRecord], shard_count: int) -> list[ShardBin]:
    """Assign each test to ``hash_code(file) % shard_count``.

    Tests keep their input order within each bin.
    """
    bins = [ShardBin(index=i) for i in range(shard_count)]
    for record in tests:
        bins[hash_code(record.file) % shard_count].add(record)
    return bins


def duration_partition(tests: Sequence[TestRecord], shard_count: int) -> list[ShardBin]:
    """Greedy longest-processing-time assignment.

    Tests are sorted by estimated duration (longest first, ties by file
    path) and each goes to the bin with the smallest running total; ties
    between bins go to the lowest index.  No bin ends up heavier than
    ``total / shard_count + longest``.
    """
    bins = [ShardBin(index=i) for i in range(shard_count)]
    ordered = sorted(tests, key=lambda t: (-t.estimated_duration, t.file))
    for record in ordered:
        lightest = min(bins, key=lambda b: (b.total_duration, b.index))
        lightest.add(record)
    return bins


def partition(
    tests: Sequence[TestRecord],
    shard_count: int,
    strategy: ShardStrategy = ShardStrategy.DURATION,
) -> list[ShardBin]:
    """Partition *tests* into ``shard_count`` disjoint bins."""
    if shard_count < 1:
        msg = f"shard_count must be >= 1, got {shard_count}"
        raise InvalidShardIndexError(msg)
    if strategy is ShardStrategy.HASH:
        return hash_partition(tests, shard_count)
    return duration_partition(tests, shard_count)


def split_into_shards(
    tests: Sequence[TestRecord],
    shard_index: int,
    shard_count: int,
    strategy: ShardStrategy = ShardStrategy.DURATION,
) -> list[TestRecord]:
    """Return the tests assigned to one shard.

    Args:
        tests: Candidate tests (already tag-filtered).
        shard_index: Zero-based index of this shard.
        shard_count: Total number of shards.
        strategy: Partitioning strategy.

    Returns:
        Tests assigned to ``shard_index``.

    Raises:
        InvalidShardIndexError: If shard_index or shard_count is invalid.
    """
    validate_shard_args(shard_index, shard_count)
    return partition(tests, shard_count, strategy)[shard_index].tests


def plan_shards(inventory: TestInventory, options: ShardOptions) -> ShardPlan:
    """Filter the inventory by tag and partition it.

    An empty candidate set yields empty bins, not an error.

    Raises:
        InvalidShardIndexError: If the options name an invalid shard.
    """
    validate_shard_args(options.index, options.total)

    candidates = inventory.tests
    if options.tag:
        candidates = filter_records(candidates, TagRef(options.tag))
        logger.info("Tests after filtering by %s: %d", options.tag, len(candidates))

    bins = partition(candidates, options.total, options.strategy)
    for shard_bin in bins:
        logger.debug(
            "Shard %d: %d tests, ~%.2fs",
            shard_bin.index,
            len(shard_bin.tests),
            shard_bin.total_duration / 1000,
        )

    return ShardPlan(
        options=options,
        inventory_size=len(inventory),
        candidates=len(candidates),
        bins=bins,
    )
