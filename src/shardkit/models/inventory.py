"""Test inventory models.

The inventory is a point-in-time snapshot of every discoverable test file,
written by ``shardkit collect`` and read by the sharding and selection
commands.  Records are immutable; a new collection run replaces the file.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

logger = logging.getLogger(__name__)

UNTAGGED_TAG = "@untagged"
"""Sentinel tag given to test files that declare no tags."""


class InventoryError(Exception):
    """Raised when the test inventory cannot be read or is malformed."""


class TestType(Enum):
    """Classification of a test file, derived at collection time."""

    __test__ = False

    BDD = "bdd"
    API = "api"
    INTEGRATION = "integration"
    E2E = "e2e"


@dataclass(frozen=True)
class TestRecord:
    """One discoverable test file."""

    __test__ = False

    file: str
    """Relative path of the test file; unique within an inventory."""

    type: TestType = TestType.E2E
    """Test classification."""

    tags: tuple[str, ...] = (UNTAGGED_TAG,)
    """Tag labels (e.g. ``@smoke``); never empty."""

    test_count: int = 0
    """Number of individual test cases in the file."""

    estimated_duration: float = 0.0
    """Heuristic execution time estimate in milliseconds."""

    def __post_init__(self) -> None:
        if not self.file:
            raise InventoryError("Test record is missing a file path")
        if self.test_count < 0:
            raise InventoryError(f"{self.file}: testCount must be non-negative")
        if self.estimated_duration < 0:
            raise InventoryError(f"{self.file}: estimatedDuration must be non-negative")
        if not self.tags:
            object.__setattr__(self, "tags", (UNTAGGED_TAG,))

    def has_tag(self, tag: str) -> bool:
        """Return True when *tag* is one of this record's tags."""
        return tag in self.tags

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TestRecord:
        """Build a record from an inventory JSON entry.

        Raises:
            InventoryError: If a required field is missing or has the wrong type.
        """
        if not isinstance(data, dict):
            raise InventoryError(f"Inventory entry must be an object, got {type(data).__name__}")

        file = data.get("file")
        if not isinstance(file, str):
            raise InventoryError("Inventory entry is missing a string 'file' field")

        raw_tags = data.get("tags", [])
        if not isinstance(raw_tags, list):
            raise InventoryError(f"{file}: 'tags' must be a list")

        try:
            test_type = TestType(data.get("type", TestType.E2E.value))
        except ValueError as exc:
            raise InventoryError(f"{file}: unknown test type {data.get('type')!r}") from exc

        try:
            test_count = int(data.get("testCount", 0))
            estimated_duration = float(data.get("estimatedDuration", 0))
        except (TypeError, ValueError) as exc:
            raise InventoryError(f"{file}: invalid numeric field: {exc}") from exc

        return cls(
            file=file,
            type=test_type,
            tags=tuple(str(tag) for tag in raw_tags),
            test_count=test_count,
            estimated_duration=estimated_duration,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the inventory JSON shape."""
        return {
            "file": self.file,
            "type": self.type.value,
            "tags": list(self.tags),
            "testCount": self.test_count,
            "estimatedDuration": self.estimated_duration,
        }


@dataclass
class TestInventory:
    """Snapshot of all collected test files."""

    __test__ = False

    tests: list[TestRecord] = field(default_factory=list)
    """Test records in collection order."""

    timestamp: str = ""
    """ISO-8601 time the snapshot was taken."""

    extra: dict[str, dict[str, Any]] = field(default_factory=dict)
    """Per-file fields carried through from the JSON file (hash, size, ...)."""

    def __len__(self) -> int:
        return len(self.tests)

    @property
    def files(self) -> list[str]:
        """File identifiers in inventory order."""
        return [t.file for t in self.tests]

    @property
    def total_duration(self) -> float:
        """Sum of estimated durations in milliseconds."""
        return sum(t.estimated_duration for t in self.tests)

    def get(self, file: str) -> TestRecord | None:
        """Return the record for *file*, or None."""
        for record in self.tests:
            if record.file == file:
                return record
        return None

    def with_tag(self, tag: str) -> list[TestRecord]:
        """Return records carrying *tag*, in inventory order."""
        return [t for t in self.tests if t.has_tag(tag)]

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the inventory JSON shape, with tag/type aggregates."""
        by_tag: dict[str, dict[str, Any]] = {}
        by_type: dict[str, dict[str, Any]] = {}
        for record in self.tests:
            for tag in record.tags:
                bucket = by_tag.setdefault(tag, {"count": 0, "files": []})
                bucket["count"] += record.test_count
                bucket["files"].append(record.file)
            type_bucket = by_type.setdefault(record.type.value, {"count": 0, "files": []})
            type_bucket["count"] += record.test_count
            type_bucket["files"].append(record.file)

        return {
            "timestamp": self.timestamp,
            "totalTests": sum(t.test_count for t in self.tests),
            "byTag": by_tag,
            "byType": by_type,
            "tests": [{**t.to_dict(), **self.extra.get(t.file, {})} for t in self.tests],
        }

    @classmethod
    def from_records(cls, records: Iterable[TestRecord], timestamp: str = "") -> TestInventory:
        """Create an inventory, rejecting duplicate file identifiers."""
        tests = list(records)
        seen: set[str] = set()
        for record in tests:
            if record.file in seen:
                raise InventoryError(f"Duplicate test file in inventory: {record.file}")
            seen.add(record.file)
        return cls(tests=tests, timestamp=timestamp or datetime.now(UTC).isoformat())


_KNOWN_FIELDS = frozenset({"file", "type", "tags", "testCount", "estimatedDuration"})


def load_inventory(path: Path) -> TestInventory:
    """Read a test inventory JSON file.

    Args:
        path: Path to the inventory file (``{"tests": [...]}``).

    Returns:
        The parsed inventory.

    Raises:
        InventoryError: If the file is missing, is not valid JSON, or has
            malformed entries.
    """
    if not path.is_file():
        raise InventoryError(f"Test inventory not found at {path}")

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise InventoryError(f"Error parsing test inventory {path}: {exc}") from exc

    if not isinstance(data, dict) or not isinstance(data.get("tests"), list):
        raise InventoryError(f"Test inventory {path} has no 'tests' list")

    inventory = TestInventory.from_records(
        (TestRecord.from_dict(entry) for entry in data["tests"]),
        timestamp=str(data.get("timestamp", "")),
    )
    for entry in data["tests"]:
        extra = {k: v for k, v in entry.items() if k not in _KNOWN_FIELDS}
        if extra:
            inventory.extra[entry["file"]] = extra

    logger.debug("Loaded %d test records from %s", len(inventory), path)
    return inventory


def save_inventory(inventory: TestInventory, path: Path) -> None:
    """Write *inventory* to *path*, replacing any previous snapshot."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(inventory.to_dict(), indent=2), encoding="utf-8")
    logger.info("Wrote %d test records to %s", len(inventory), path)
