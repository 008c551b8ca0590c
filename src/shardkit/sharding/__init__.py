"""Test sharding for parallel CI runners."""

from shardkit.sharding.manifest import (
    ShardSummary,
    build_manifest,
    format_spec_list,
    summarize,
    write_manifest,
    write_spec_list,
)
from shardkit.sharding.splitter import (
    InvalidShardIndexError,
    ShardBin,
    ShardOptions,
    ShardPlan,
    ShardStrategy,
    hash_code,
    plan_shards,
    split_into_shards,
)

__all__ = [
    "InvalidShardIndexError",
    "ShardBin",
    "ShardOptions",
    "ShardPlan",
    "ShardStrategy",
    "ShardSummary",
    "build_manifest",
    "format_spec_list",
    "hash_code",
    "plan_shards",
    "split_into_shards",
    "summarize",
    "write_manifest",
    "write_spec_list",
]
