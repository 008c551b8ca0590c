"""Tests for shardkit.models.inventory."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from shardkit.models.inventory import (
    UNTAGGED_TAG,
    InventoryError,
    TestInventory,
    TestRecord,
    TestType,
    load_inventory,
    save_inventory,
)


class TestTestRecord:
    def test_empty_tags_become_untagged(self) -> None:
        record = TestRecord(file="a.cy.js", tags=())
        assert record.tags == (UNTAGGED_TAG,)

    def test_rejects_negative_duration(self) -> None:
        with pytest.raises(InventoryError, match="estimatedDuration"):
            TestRecord(file="a.cy.js", estimated_duration=-1)

    def test_rejects_missing_file(self) -> None:
        with pytest.raises(InventoryError):
            TestRecord(file="")

    def test_from_dict_reads_json_shape(self) -> None:
        record = TestRecord.from_dict(
            {
                "file": "cypress/e2e/login.cy.js",
                "type": "api",
                "tags": ["@smoke", "@auth"],
                "testCount": 3,
                "estimatedDuration": 16500,
            }
        )
        assert record.type is TestType.API
        assert record.has_tag("@smoke")
        assert not record.has_tag("@regression")
        assert record.test_count == 3
        assert record.estimated_duration == 16500.0

    def test_from_dict_unknown_type(self) -> None:
        with pytest.raises(InventoryError, match="unknown test type"):
            TestRecord.from_dict({"file": "a.cy.js", "type": "unit"})

    def test_to_dict_round_trips_fields(self) -> None:
        record = TestRecord(file="a.feature", type=TestType.BDD, tags=("@smoke",), test_count=2)
        assert TestRecord.from_dict(record.to_dict()) == record


class TestTestInventory:
    def test_duplicate_files_rejected(self) -> None:
        with pytest.raises(InventoryError, match="Duplicate"):
            TestInventory.from_records([TestRecord(file="a"), TestRecord(file="a")])

    def test_with_tag_and_totals(self) -> None:
        inventory = TestInventory.from_records(
            [
                TestRecord(file="a", tags=("@smoke",), estimated_duration=100),
                TestRecord(file="b", tags=("@regression",), estimated_duration=50),
            ]
        )
        assert [r.file for r in inventory.with_tag("@smoke")] == ["a"]
        assert inventory.total_duration == 150
        assert inventory.get("b") is not None
        assert inventory.get("missing") is None

    def test_to_dict_aggregates(self) -> None:
        inventory = TestInventory.from_records(
            [
                TestRecord(file="a", tags=("@smoke",), test_count=2),
                TestRecord(file="b", tags=("@smoke", "@api"), type=TestType.API, test_count=1),
            ],
            timestamp="2024-01-01T00:00:00+00:00",
        )
        data = inventory.to_dict()
        assert data["totalTests"] == 3
        assert data["byTag"]["@smoke"] == {"count": 3, "files": ["a", "b"]}
        assert data["byType"]["api"]["files"] == ["b"]


class TestLoadInventory:
    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(InventoryError, match="not found"):
            load_inventory(tmp_path / "test-collection.json")

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "inv.json"
        path.write_text("{not json")
        with pytest.raises(InventoryError, match="Error parsing"):
            load_inventory(path)

    def test_missing_tests_list(self, tmp_path: Path) -> None:
        path = tmp_path / "inv.json"
        path.write_text(json.dumps({"timestamp": "x"}))
        with pytest.raises(InventoryError, match="no 'tests' list"):
            load_inventory(path)

    def test_preserves_extra_fields(self, tmp_path: Path) -> None:
        path = tmp_path / "inv.json"
        path.write_text(
            json.dumps(
                {
                    "timestamp": "2024-01-01",
                    "tests": [
                        {
                            "file": "a.cy.js",
                            "tags": ["@smoke"],
                            "estimatedDuration": 5000,
                            "hash": "abc",
                            "size": 10,
                        }
                    ],
                }
            )
        )
        inventory = load_inventory(path)
        assert inventory.files == ["a.cy.js"]
        assert inventory.extra["a.cy.js"] == {"hash": "abc", "size": 10}

    def test_save_then_load(self, tmp_path: Path) -> None:
        inventory = TestInventory.from_records(
            [TestRecord(file="a.cy.js", tags=("@smoke",), test_count=1, estimated_duration=5500)]
        )
        path = tmp_path / "out" / "inv.json"
        save_inventory(inventory, path)

        loaded = load_inventory(path)
        assert loaded.tests == inventory.tests
        assert loaded.timestamp == inventory.timestamp
