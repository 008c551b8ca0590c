"""Tests for shardkit.sharding.splitter."""

from __future__ import annotations

import random

import pytest

from shardkit.models.inventory import TestInventory, TestRecord
from shardkit.sharding.splitter import (
    InvalidShardIndexError,
    ShardOptions,
    ShardStrategy,
    duration_partition,
    hash_code,
    hash_partition,
    partition,
    plan_shards,
    split_into_shards,
)


def _records(durations: list[float], prefix: str = "t") -> list[TestRecord]:
    return [
        TestRecord(file=f"{prefix}{i}.cy.js", estimated_duration=d) for i, d in enumerate(durations)
    ]


def _random_records(seed: int) -> list[TestRecord]:
    rng = random.Random(seed)
    tags = ["@smoke", "@regression", "@api"]
    return [
        TestRecord(
            file=f"cypress/e2e/{rng.choice(['auth', 'cart', 'admin'])}/spec-{i}.cy.js",
            tags=(rng.choice(tags),),
            estimated_duration=float(rng.randint(0, 120_000)),
        )
        for i in range(rng.randint(0, 60))
    ]


class TestHashCode:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("", 0),
            ("a", 97),
            ("abc", 96354),
            ("hello", 99162322),
            # 32-bit wrap to the minimum int; absolute value stays positive
            ("polygenelubricants", 2147483648),
            # surrogate pair hashed as two UTF-16 code units
            ("\U0001f600", 0xD83D * 31 + 0xDE00),
        ],
    )
    def test_known_values(self, value: str, expected: int) -> None:
        assert hash_code(value) == expected

    def test_never_negative(self) -> None:
        rng = random.Random(7)
        for _ in range(200):
            value = "".join(rng.choice("abcdefghijklmnop/._-") for _ in range(rng.randint(1, 40)))
            assert hash_code(value) >= 0


class TestDurationPartition:
    def test_longest_first_greedy(self) -> None:
        tests = _records([10, 10, 10, 10, 60])
        bins = duration_partition(tests, 2)
        assert [t.file for t in bins[0].tests] == ["t4.cy.js"]
        assert [t.file for t in bins[1].tests] == ["t0.cy.js", "t1.cy.js", "t2.cy.js", "t3.cy.js"]
        assert bins[0].total_duration == 60
        assert bins[1].total_duration == 40

    def test_ties_go_to_lowest_index(self) -> None:
        bins = duration_partition(_records([5, 5, 5]), 3)
        assert [len(b.tests) for b in bins] == [1, 1, 1]
        assert bins[0].tests[0].file == "t0.cy.js"

    def test_more_shards_than_tests(self) -> None:
        bins = duration_partition(_records([1, 2]), 5)
        assert [len(b.tests) for b in bins] == [1, 1, 0, 0, 0]

    def test_zero_durations_still_distributed(self) -> None:
        bins = duration_partition(_records([0, 0, 0, 0]), 2)
        assert sorted(len(b.tests) for b in bins) == [2, 2]


class TestHashPartition:
    def test_assignment_follows_hash(self) -> None:
        tests = _records([1] * 20)
        bins = hash_partition(tests, 3)
        for shard_bin in bins:
            for record in shard_bin.tests:
                assert hash_code(record.file) % 3 == shard_bin.index

    def test_independent_of_other_tests(self) -> None:
        target = TestRecord(file="cypress/e2e/login.cy.js")
        alone = hash_partition([target], 4)
        crowded = hash_partition([*_records([1] * 10), target], 4)
        index_alone = next(b.index for b in alone if target in b.tests)
        index_crowded = next(b.index for b in crowded if target in b.tests)
        assert index_alone == index_crowded


class TestPartitionProperties:
    @pytest.mark.parametrize("seed", range(12))
    @pytest.mark.parametrize("strategy", list(ShardStrategy))
    def test_totality_and_disjointness(self, seed: int, strategy: ShardStrategy) -> None:
        tests = _random_records(seed)
        shard_count = random.Random(seed).randint(1, 8)
        bins = partition(tests, shard_count, strategy)

        assigned = [t.file for b in bins for t in b.tests]
        assert len(bins) == shard_count
        assert sorted(assigned) == sorted(t.file for t in tests)
        assert len(set(assigned)) == len(assigned)

    @pytest.mark.parametrize("seed", range(12))
    @pytest.mark.parametrize("strategy", list(ShardStrategy))
    def test_deterministic(self, seed: int, strategy: ShardStrategy) -> None:
        tests = _random_records(seed)
        first = [[t.file for t in b.tests] for b in partition(tests, 4, strategy)]
        second = [[t.file for t in b.tests] for b in partition(list(tests), 4, strategy)]
        assert first == second

    @pytest.mark.parametrize("seed", range(12))
    def test_duration_balance_bound(self, seed: int) -> None:
        tests = _random_records(seed)
        if not tests:
            return
        shard_count = random.Random(seed).randint(1, 8)
        total = sum(t.estimated_duration for t in tests)
        longest = max(t.estimated_duration for t in tests)

        bins = duration_partition(tests, shard_count)
        for shard_bin in bins:
            assert shard_bin.total_duration <= total / shard_count + longest


class TestSplitIntoShards:
    def test_single_shard_returns_all(self) -> None:
        tests = _records([3, 2, 1])
        assert split_into_shards(tests, 0, 1) == tests

    def test_empty_list(self) -> None:
        assert split_into_shards([], 0, 3) == []

    def test_invalid_shard_count_zero(self) -> None:
        with pytest.raises(ValueError, match="shard_count must be >= 1"):
            split_into_shards([], 0, 0)

    def test_invalid_shard_index_negative(self) -> None:
        with pytest.raises(InvalidShardIndexError, match="shard_index must be in"):
            split_into_shards([], -1, 2)

    def test_index_equal_to_total_is_out_of_range(self) -> None:
        with pytest.raises(InvalidShardIndexError, match=r"\[0, 4\), got 4"):
            split_into_shards(_records([1, 2, 3, 4]), 4, 4)


class TestPlanShards:
    def _inventory(self) -> TestInventory:
        return TestInventory.from_records(
            [
                TestRecord(file="a.cy.js", tags=("@smoke",), estimated_duration=30),
                TestRecord(file="b.cy.js", tags=("@regression",), estimated_duration=20),
                TestRecord(file="c.cy.js", tags=("@smoke",), estimated_duration=10),
            ]
        )

    def test_tag_filter_applies_before_partitioning(self) -> None:
        plan = plan_shards(self._inventory(), ShardOptions(total=2, index=1, tag="@smoke"))
        assert plan.inventory_size == 3
        assert plan.candidates == 2
        assert plan.files == ["c.cy.js"]
        assert [t.file for t in plan.bins[0].tests] == ["a.cy.js"]

    def test_empty_candidates_is_not_an_error(self) -> None:
        plan = plan_shards(self._inventory(), ShardOptions(total=3, index=2, tag="@missing"))
        assert plan.candidates == 0
        assert plan.tests == []

    def test_out_of_range_index(self) -> None:
        with pytest.raises(InvalidShardIndexError):
            plan_shards(self._inventory(), ShardOptions(total=4, index=4))

    def test_hash_strategy(self) -> None:
        plan = plan_shards(self._inventory(), ShardOptions(total=1, strategy=ShardStrategy.HASH))
        assert plan.files == ["a.cy.js", "b.cy.js", "c.cy.js"]
