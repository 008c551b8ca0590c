"""Data models for shardkit."""

from shardkit.models.inventory import (
    UNTAGGED_TAG,
    InventoryError,
    TestInventory,
    TestRecord,
    TestType,
    load_inventory,
    save_inventory,
)
from shardkit.models.results import RunStatus, TestRunResult, TestStats

__all__ = [
    "UNTAGGED_TAG",
    "InventoryError",
    "RunStatus",
    "TestInventory",
    "TestRecord",
    "TestRunResult",
    "TestStats",
    "TestType",
    "load_inventory",
    "save_inventory",
]
