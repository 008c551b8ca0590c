"""Collectors that build the test inventory from the project tree."""

from shardkit.collectors.inventory import (
    DEFAULT_TEST_PATTERNS,
    collect_tests,
    detect_test_type,
    estimate_duration,
    extract_tags,
)

__all__ = [
    "DEFAULT_TEST_PATTERNS",
    "collect_tests",
    "detect_test_type",
    "estimate_duration",
    "extract_tags",
]
