"""Shard output: spec lists, summaries and JSON manifests."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pathlib import Path

    from shardkit.models.inventory import TestRecord
    from shardkit.sharding.splitter import ShardPlan

logger = logging.getLogger(__name__)


@dataclass
class ShardSummary:
    """Observability breakdown of one shard's contents."""

    test_count: int = 0
    estimated_duration: float = 0.0
    by_type: dict[str, int] = field(default_factory=dict)
    by_tag: dict[str, int] = field(default_factory=dict)
    """Tag counts, most frequent first."""


def summarize(tests: list[TestRecord]) -> ShardSummary:
    """Count tests per type and per tag and total their durations."""
    by_type: dict[str, int] = {}
    by_tag: dict[str, int] = {}
    for record in tests:
        by_type[record.type.value] = by_type.get(record.type.value, 0) + 1
        for tag in record.tags:
            by_tag[tag] = by_tag.get(tag, 0) + 1

    return ShardSummary(
        test_count=len(tests),
        estimated_duration=sum(t.estimated_duration for t in tests),
        by_type=by_type,
        by_tag=dict(sorted(by_tag.items(), key=lambda kv: -kv[1])),
    )


def format_spec_list(files: list[str]) -> str:
    """Join file paths for a test runner's ``--spec`` argument."""
    return ",".join(files)


def build_manifest(plan: ShardPlan) -> dict[str, Any]:
    """Build the JSON manifest for the requested shard."""
    summary = summarize(plan.tests)
    return {
        "shard": plan.options.index,
        "totalShards": plan.options.total,
        "strategy": plan.options.strategy.value,
        "tag": plan.options.tag,
        "testCount": summary.test_count,
        "estimatedDuration": summary.estimated_duration,
        "specs": plan.files,
        "byType": summary.by_type,
        "byTag": summary.by_tag,
    }


def write_spec_list(plan: ShardPlan, output_path: Path) -> None:
    """Write the comma-joined spec list for the requested shard."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(format_spec_list(plan.files), encoding="utf-8")
    logger.info("Spec list written to %s", output_path)


def write_manifest(plan: ShardPlan, output_path: Path) -> None:
    """Write the JSON manifest for the requested shard."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(build_manifest(plan), indent=2), encoding="utf-8")
    logger.info("Shard manifest written to %s", output_path)
