"""Tests for shardkit.sharding.manifest."""

from __future__ import annotations

import json
from pathlib import Path

from shardkit.models.inventory import TestInventory, TestRecord, TestType
from shardkit.sharding.manifest import (
    build_manifest,
    format_spec_list,
    summarize,
    write_manifest,
    write_spec_list,
)
from shardkit.sharding.splitter import ShardOptions, ShardPlan, plan_shards


def _plan() -> ShardPlan:
    inventory = TestInventory.from_records(
        [
            TestRecord(file="a.cy.js", tags=("@smoke", "@auth"), estimated_duration=6000),
            TestRecord(file="b.cy.js", type=TestType.API, tags=("@smoke",), estimated_duration=1000),
            TestRecord(file="c.feature", type=TestType.BDD, tags=("@bdd",), estimated_duration=500),
        ]
    )
    return plan_shards(inventory, ShardOptions(total=2, index=1))


def test_format_spec_list() -> None:
    assert format_spec_list(["a.cy.js", "b.cy.js"]) == "a.cy.js,b.cy.js"
    assert format_spec_list([]) == ""


def test_summarize_orders_tags_by_count() -> None:
    summary = summarize(
        [
            TestRecord(file="a", tags=("@auth", "@smoke")),
            TestRecord(file="b", tags=("@smoke",)),
        ]
    )
    assert summary.test_count == 2
    assert list(summary.by_tag) == ["@smoke", "@auth"]
    assert summary.by_type == {"e2e": 2}


def test_build_manifest() -> None:
    manifest = build_manifest(_plan())
    assert manifest["shard"] == 1
    assert manifest["totalShards"] == 2
    assert manifest["strategy"] == "duration"
    assert manifest["specs"] == ["b.cy.js", "c.feature"]
    assert manifest["testCount"] == 2
    assert manifest["estimatedDuration"] == 1500
    assert manifest["byType"] == {"api": 1, "bdd": 1}


def test_write_outputs(tmp_path: Path) -> None:
    plan = _plan()
    spec_path = tmp_path / "out" / "specs.txt"
    manifest_path = tmp_path / "out" / "shard-1-manifest.json"

    write_spec_list(plan, spec_path)
    write_manifest(plan, manifest_path)

    assert spec_path.read_text() == "b.cy.js,c.feature"
    assert json.loads(manifest_path.read_text())["specs"] == ["b.cy.js", "c.feature"]
