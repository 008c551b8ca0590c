"""Parse and validate the ``.shardkit.yml`` configuration file."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

from shardkit.collectors.inventory import DEFAULT_TEST_PATTERNS
from shardkit.sharding.splitter import ShardStrategy

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = ".shardkit.yml"
BASE_REF_ENV_VAR = "SHARDKIT_BASE_REF"

_ENV_VAR_RE = re.compile(r"\$\{(\w+)\}")


class ConfigError(Exception):
    """Raised when ``.shardkit.yml`` cannot be parsed."""


def _resolve_env_vars(value: str) -> str:
    """Replace ``${VAR_NAME}`` placeholders with environment variable values."""

    def _replace(match: re.Match[str]) -> str:
        var = match.group(1)
        resolved = os.environ.get(var)
        if resolved is None:
            logger.warning("Environment variable %s is not set (referenced in config)", var)
            return ""
        return resolved

    return _ENV_VAR_RE.sub(_replace, value)


def _resolve_value(value: Any) -> Any:
    if isinstance(value, str):
        return _resolve_env_vars(value)
    if isinstance(value, dict):
        return {key: _resolve_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_resolve_value(item) for item in value]
    return value


@dataclass
class InventoryConfig:
    """Where the test inventory lives."""

    path: str = "test-collection.json"
    """Inventory file, relative to the project root."""


@dataclass
class CollectionConfig:
    """Test collection settings."""

    patterns: list[str] = field(default_factory=lambda: list(DEFAULT_TEST_PATTERNS))
    """Glob patterns selecting test files."""


@dataclass
class ShardingConfig:
    """Sharding defaults."""

    total: int = 1
    """Number of shards."""

    strategy: str = ShardStrategy.DURATION.value
    """``duration`` or ``hash``."""


@dataclass
class SelectionConfig:
    """Change-based selection settings."""

    base_ref: str = ""
    """Ref to diff against; empty means auto-detect (see :func:`effective_base_ref`)."""

    mapping_file: str = "test-mapping.json"
    """Custom mapping rules, relative to the project root."""

    fetch: bool = True
    """Run ``git fetch origin`` before diffing."""


@dataclass
class FlakyConfig:
    """Flaky-test detection settings."""

    results_dir: str = "cypress/results"
    history_size: int = 50
    threshold: float = 0.2
    min_runs: int = 10
    output: str = "flaky-tests.json"


@dataclass
class ShardkitConfig:
    """Complete project configuration."""

    root: Path = field(default_factory=Path.cwd)
    inventory: InventoryConfig = field(default_factory=InventoryConfig)
    collection: CollectionConfig = field(default_factory=CollectionConfig)
    sharding: ShardingConfig = field(default_factory=ShardingConfig)
    selection: SelectionConfig = field(default_factory=SelectionConfig)
    flaky: FlakyConfig = field(default_factory=FlakyConfig)

    def resolve(self, relative: str) -> Path:
        """Resolve a configured path against the project root."""
        path = Path(relative)
        return path if path.is_absolute() else self.root / path

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["root"] = str(self.root)
        return data


# ── Parsing ───────────────────────────────────────────────────────


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name, {})
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' section must be a mapping")
    return value


def _parse_collection(raw: dict[str, Any]) -> CollectionConfig:
    patterns = raw.get("patterns")
    if patterns is None:
        return CollectionConfig()
    if isinstance(patterns, str):
        patterns = [patterns]
    if not isinstance(patterns, list):
        raise ConfigError("'collection.patterns' must be a list")
    return CollectionConfig(patterns=[str(p) for p in patterns])


def _parse_sharding(raw: dict[str, Any]) -> ShardingConfig:
    return ShardingConfig(
        total=int(raw.get("total", 1)),
        strategy=str(raw.get("strategy", ShardStrategy.DURATION.value)),
    )


def _parse_selection(raw: dict[str, Any]) -> SelectionConfig:
    return SelectionConfig(
        base_ref=str(raw.get("base_ref", "") or ""),
        mapping_file=str(raw.get("mapping_file", "test-mapping.json")),
        fetch=bool(raw.get("fetch", True)),
    )


def _parse_flaky(raw: dict[str, Any]) -> FlakyConfig:
    return FlakyConfig(
        results_dir=str(raw.get("results_dir", "cypress/results")),
        history_size=int(raw.get("history_size", 50)),
        threshold=float(raw.get("threshold", 0.2)),
        min_runs=int(raw.get("min_runs", 10)),
        output=str(raw.get("output", "flaky-tests.json")),
    )


def load_config(root: str | Path) -> ShardkitConfig:
    """Load ``.shardkit.yml`` from *root*, falling back to defaults.

    Raises:
        ConfigError: If the file is not valid YAML or a section has the
            wrong shape.
    """
    root_path = Path(root).resolve()
    config_path = root_path / CONFIG_FILE_NAME

    raw: dict[str, Any] = {}
    if config_path.is_file():
        try:
            parsed = yaml.safe_load(config_path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc
        if parsed is not None and not isinstance(parsed, dict):
            raise ConfigError(f"{config_path} must contain a mapping")
        raw = _resolve_value(parsed or {})
        logger.debug("Loaded configuration from %s", config_path)

    try:
        return ShardkitConfig(
            root=root_path,
            inventory=InventoryConfig(
                path=str(_section(raw, "inventory").get("path", "test-collection.json"))
            ),
            collection=_parse_collection(_section(raw, "collection")),
            sharding=_parse_sharding(_section(raw, "sharding")),
            selection=_parse_selection(_section(raw, "selection")),
            flaky=_parse_flaky(_section(raw, "flaky")),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value in {config_path}: {exc}") from exc


def effective_base_ref(config: ShardkitConfig, ci_base_ref: str | None = None) -> str:
    """Pick the base ref: env override, then config, then CI PR target, then ``origin/main``."""
    env_ref = os.environ.get(BASE_REF_ENV_VAR)
    if env_ref:
        return env_ref
    if config.selection.base_ref:
        return config.selection.base_ref
    if ci_base_ref:
        return ci_base_ref
    return "origin/main"


# ── Validation ────────────────────────────────────────────────────


def _validate_sharding(sharding: ShardingConfig) -> list[str]:
    errors: list[str] = []
    if sharding.total < 1:
        errors.append(f"sharding.total must be >= 1, got {sharding.total}")
    valid = {s.value for s in ShardStrategy}
    if sharding.strategy not in valid:
        errors.append(
            f"sharding.strategy must be one of {sorted(valid)}, got {sharding.strategy!r}"
        )
    return errors


def _validate_flaky(flaky: FlakyConfig) -> list[str]:
    errors: list[str] = []
    if flaky.history_size < 1:
        errors.append(f"flaky.history_size must be >= 1, got {flaky.history_size}")
    if flaky.min_runs < 1:
        errors.append(f"flaky.min_runs must be >= 1, got {flaky.min_runs}")
    if not 0 <= flaky.threshold <= 1:
        errors.append(f"flaky.threshold must be between 0 and 1, got {flaky.threshold}")
    return errors


def validate_config(config: ShardkitConfig) -> list[str]:
    """Return a list of configuration problems (empty when valid)."""
    errors = _validate_sharding(config.sharding)
    errors.extend(_validate_flaky(config.flaky))
    if not config.collection.patterns:
        errors.append("collection.patterns must not be empty")
    return errors
