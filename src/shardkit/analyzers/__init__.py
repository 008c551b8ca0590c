"""Analyzers: pattern expansion, change impact and flaky-test detection."""

from shardkit.analyzers.flaky import (
    FlakyOptions,
    FlakyReport,
    FlakySeverity,
    FlakyTest,
    analyze_flakiness,
    detect_flaky,
    load_results,
    parse_archive,
    severity_for,
    write_report,
)
from shardkit.analyzers.impact import (
    DEFAULT_RULES,
    ImpactResult,
    MappingConfig,
    MappingFileError,
    MappingRule,
    Selection,
    SelectionMode,
    SelectionOptions,
    load_mapping_config,
    resolve_impact,
    select_tests,
)
from shardkit.analyzers.patterns import (
    Glob,
    Literal,
    Pattern,
    RunAll,
    TagRef,
    expand_patterns,
    parse_pattern,
)

__all__ = [
    "DEFAULT_RULES",
    "FlakyOptions",
    "FlakyReport",
    "FlakySeverity",
    "FlakyTest",
    "Glob",
    "ImpactResult",
    "Literal",
    "MappingConfig",
    "MappingFileError",
    "MappingRule",
    "Pattern",
    "RunAll",
    "Selection",
    "SelectionMode",
    "SelectionOptions",
    "TagRef",
    "analyze_flakiness",
    "detect_flaky",
    "expand_patterns",
    "load_mapping_config",
    "load_results",
    "parse_archive",
    "parse_pattern",
    "resolve_impact",
    "select_tests",
    "severity_for",
    "write_report",
]
