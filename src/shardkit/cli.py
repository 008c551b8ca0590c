"""shardkit CLI — top-level command group."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TypedDict, Unpack

import click
import yaml
from rich.console import Console
from rich.logging import RichHandler

from shardkit import __version__
from shardkit.analyzers.flaky import FlakyOptions, detect_flaky, write_report
from shardkit.analyzers.impact import (
    MappingConfig,
    MappingFileError,
    Selection,
    SelectionOptions,
    load_mapping_config,
    select_tests,
)
from shardkit.collectors.inventory import collect_tests
from shardkit.config import ConfigError, ShardkitConfig, effective_base_ref, load_config, validate_config
from shardkit.models.inventory import InventoryError, TestInventory, load_inventory, save_inventory
from shardkit.reporters.github_comment import post_flaky_report_from_env
from shardkit.reporters.terminal import console, reporter
from shardkit.sharding.manifest import format_spec_list, write_manifest, write_spec_list
from shardkit.sharding.splitter import (
    InvalidShardIndexError,
    ShardOptions,
    ShardStrategy,
    plan_shards,
)
from shardkit.utils.ci_context import detect_ci_context
from shardkit.utils.git import GitOperationError, get_changed_files

logger = logging.getLogger(__name__)

SPEC_LIST_START = "--- SPEC LIST START ---"
SPEC_LIST_END = "--- SPEC LIST END ---"
SELECTION_START = "--- SELECTIVE SPEC LIST START ---"
SELECTION_END = "--- SELECTIVE SPEC LIST END ---"

_path_option = click.option(
    "--path",
    default=".",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    help="Project root directory.",
)


class _ShardKwargs(TypedDict):
    """Keyword arguments for the shard CLI command."""

    path: str
    total: int | None
    index: int
    tag: str | None
    strategy: str | None
    no_balance: bool
    collection: str | None
    output: str | None
    manifest: str | None


class _SelectKwargs(TypedDict):
    """Keyword arguments for the select CLI command."""

    path: str
    base: str | None
    changed_files: str | None
    tag: str | None
    output: str | None
    mapping: str | None
    collection: str | None
    run_all: bool
    no_fetch: bool


class _FlakyKwargs(TypedDict):
    """Keyword arguments for the flaky CLI command."""

    path: str
    results_dir: str | None
    history_size: int | None
    threshold: float | None
    min_runs: int | None
    output: str | None
    pr_comment: bool


def setup_logging(*, verbose: bool) -> None:
    """Route log records to stderr through rich."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _is_verbose() -> bool:
    ctx = click.get_current_context()
    return bool(ctx.obj.get("verbose", False)) if ctx.obj else False


def _load_config_or_abort(path: str) -> ShardkitConfig:
    try:
        return load_config(path)
    except ConfigError as e:
        reporter.print_error(f"Failed to load configuration: {e}")
        raise click.Abort from e


def _resolve_path(config: ShardkitConfig, value: str | None, default: str) -> Path:
    return config.resolve(value or default)


def _echo_block(start: str, body: str, end: str) -> None:
    """Print machine-readable output between sentinel lines on stdout."""
    click.echo()
    click.echo(start)
    click.echo(body)
    click.echo(end)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging and detailed output.")
@click.version_option(version=__version__, prog_name="shardkit")
@click.pass_context
def cli(ctx: click.Context, *, verbose: bool) -> None:
    """shardkit — test sharding, change-based selection and flaky-test detection."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    setup_logging(verbose=verbose)


# ── collect ───────────────────────────────────────────────────────


@cli.command()
@_path_option
@click.option("--output", default=None, help="Inventory file to write (default: inventory.path).")
@click.option("--tag", default=None, help="Only keep test files carrying this tag.")
@click.option(
    "--pattern",
    "patterns",
    multiple=True,
    help="Glob selecting test files; repeatable (default: collection.patterns).",
)
def collect(path: str, output: str | None, tag: str | None, patterns: tuple[str, ...]) -> None:
    """Scan test files and write the test inventory.

    Example:
      shardkit collect --tag @smoke
    """
    config = _load_config_or_abort(path)
    reporter.print_header("Collecting Tests")

    inventory = collect_tests(config.root, list(patterns) or config.collection.patterns, tag=tag)
    if not inventory.tests:
        reporter.print_warning("No test files found")

    output_path = _resolve_path(config, output, config.inventory.path)
    save_inventory(inventory, output_path)

    reporter.print_inventory_summary(inventory)
    reporter.print_success(f"Test collection saved to {output_path}")


# ── shard ─────────────────────────────────────────────────────────


@cli.command()
@_path_option
@click.option("--total", "-t", type=int, default=None, help="Number of shards (default: sharding.total).")
@click.option("--index", "-i", type=int, default=0, show_default=True, help="Zero-based shard index.")
@click.option("--tag", default=None, help="Only shard tests carrying this tag.")
@click.option(
    "--strategy",
    type=click.Choice([s.value for s in ShardStrategy]),
    default=None,
    help="Partitioning strategy (default: sharding.strategy).",
)
@click.option("--no-balance", is_flag=True, help="Shorthand for --strategy hash.")
@click.option("--collection", default=None, help="Inventory file (default: inventory.path).")
@click.option("--output", default=None, help="Write the comma-joined spec list to this file.")
@click.option("--manifest", default=None, help="Write a JSON manifest for this shard.")
def shard(**kwargs: Unpack[_ShardKwargs]) -> None:
    """Compute one shard's spec list.

    Every runner computes the same partition independently, so shard
    commands can run in parallel with no coordination.

    Example:
      shardkit shard --total 4 --index 1 --tag @smoke
    """
    config = _load_config_or_abort(kwargs["path"])
    verbose = _is_verbose()

    strategy_name = kwargs["strategy"] or config.sharding.strategy
    if kwargs["no_balance"]:
        strategy_name = ShardStrategy.HASH.value
    try:
        strategy = ShardStrategy(strategy_name)
    except ValueError as e:
        reporter.print_error(f"Unknown sharding strategy: {strategy_name}")
        raise click.Abort from e

    options = ShardOptions(
        total=kwargs["total"] if kwargs["total"] is not None else config.sharding.total,
        index=kwargs["index"],
        tag=kwargs["tag"],
        strategy=strategy,
    )

    inventory_path = _resolve_path(config, kwargs["collection"], config.inventory.path)
    try:
        inventory = load_inventory(inventory_path)
        plan = plan_shards(inventory, options)
    except (InventoryError, InvalidShardIndexError) as e:
        reporter.print_error(str(e))
        if isinstance(e, InventoryError):
            reporter.print_info("Run 'shardkit collect' first.")
        raise click.Abort from e

    reporter.print_header("Test Sharding")
    reporter.print_shard_plan(plan)
    if verbose:
        reporter.print_shard_distribution(plan)
    if not plan.tests:
        reporter.print_warning("No tests in this shard")

    if kwargs["output"]:
        output_path = config.resolve(kwargs["output"])
        write_spec_list(plan, output_path)
        reporter.print_success(f"Spec list saved to {output_path}")

    manifest_paths: list[Path] = []
    if kwargs["manifest"]:
        manifest_paths.append(config.resolve(kwargs["manifest"]))
    if verbose:
        manifest_paths.append(config.root / f"shard-{options.index}-manifest.json")
    for manifest_path in manifest_paths:
        write_manifest(plan, manifest_path)
        reporter.print_success(f"Shard manifest saved to {manifest_path}")

    _echo_block(SPEC_LIST_START, format_spec_list(plan.files), SPEC_LIST_END)


# ── select ────────────────────────────────────────────────────────


def _load_optional_inventory(path: Path) -> TestInventory | None:
    try:
        return load_inventory(path)
    except InventoryError as e:
        logger.warning("Could not load test inventory: %s", e)
        reporter.print_warning(f"{e}; patterns cannot be expanded")
        return None


def _load_mapping_or_default(path: Path) -> MappingConfig:
    try:
        return load_mapping_config(path)
    except MappingFileError as e:
        logger.warning("%s", e)
        reporter.print_warning(f"{e}; using default mapping rules")
        return MappingConfig()


def _detect_changed_files(root: Path, base_ref: str, *, fetch: bool) -> list[str]:
    try:
        return get_changed_files(root, base_ref, fetch=fetch)
    except GitOperationError as e:
        logger.warning("Could not read changed files: %s", e)
        reporter.print_warning(f"Error getting changed files: {e}")
        return []


def _run_selection(config: ShardkitConfig, kwargs: _SelectKwargs) -> Selection:
    changed_arg = kwargs["changed_files"]
    ci = detect_ci_context()
    if ci.is_ci:
        logger.debug("Detected %s CI, PR target: %s", ci.provider, ci.base_branch or "none")
    options = SelectionOptions(
        base_ref=kwargs["base"] or effective_base_ref(config, ci.base_ref),
        changed_files=(
            tuple(f.strip() for f in changed_arg.split(",") if f.strip())
            if changed_arg is not None
            else None
        ),
        tag=kwargs["tag"],
        run_all=kwargs["run_all"],
    )
    if options.run_all:
        return select_tests([], None, MappingConfig(), options)

    if options.changed_files is not None:
        changed = list(options.changed_files)
    else:
        reporter.print_info(f"Comparing against {options.base_ref}")
        fetch = config.selection.fetch and not kwargs["no_fetch"]
        changed = _detect_changed_files(config.root, options.base_ref, fetch=fetch)
    reporter.print_info(f"Found {len(changed)} changed files")

    inventory = _load_optional_inventory(
        _resolve_path(config, kwargs["collection"], config.inventory.path)
    )
    mapping = _load_mapping_or_default(
        _resolve_path(config, kwargs["mapping"], config.selection.mapping_file)
    )
    return select_tests(changed, inventory, mapping, options)


@cli.command("select")
@_path_option
@click.option("--base", default=None, help="Base ref to diff against (default: auto-detected).")
@click.option("--changed-files", default=None, help="Comma-separated changed files; skips git.")
@click.option("--tag", default=None, help="Only keep selected tests carrying this tag.")
@click.option("--output", default=None, help="Write the selection to this file.")
@click.option("--mapping", default=None, help="Custom mapping file (default: selection.mapping_file).")
@click.option("--collection", default=None, help="Inventory file (default: inventory.path).")
@click.option("--run-all", is_flag=True, help="Skip analysis and run every test.")
@click.option("--no-fetch", is_flag=True, help="Do not run 'git fetch' before diffing.")
def select_cmd(**kwargs: Unpack[_SelectKwargs]) -> None:
    """Select the tests affected by the current branch's changes.

    Prints ALL, SMOKE, or a comma-joined list of test files.  When
    impact is uncertain the selection errs toward running more tests.

    Example:
      shardkit select --base origin/develop
    """
    config = _load_config_or_abort(kwargs["path"])
    reporter.print_header("Selective Test Runner")

    selection = _run_selection(config, kwargs)
    for pattern in selection.unmatched:
        reporter.print_warning(f"Pattern {pattern} matched no tests")
    reporter.print_selection(selection)

    output = selection.format()
    if kwargs["output"]:
        output_path = config.resolve(kwargs["output"])
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(output, encoding="utf-8")
        reporter.print_success(f"Output saved to {output_path}")

    _echo_block(SELECTION_START, output, SELECTION_END)


# ── flaky ─────────────────────────────────────────────────────────


@cli.command()
@_path_option
@click.option("--results-dir", default=None, help="Directory of result archives (default: flaky.results_dir).")
@click.option("--history-size", type=click.IntRange(min=1), default=None, help="Number of recent runs to analyze.")
@click.option("--threshold", type=click.FloatRange(0, 1), default=None, help="Flakiness threshold, 0-1.")
@click.option("--min-runs", type=click.IntRange(min=1), default=None, help="Minimum runs before judging a test.")
@click.option("--output", default=None, help="Report file (default: flaky.output).")
@click.option("--pr-comment", is_flag=True, help="Post the report to the current GitHub PR.")
def flaky(**kwargs: Unpack[_FlakyKwargs]) -> None:
    """Detect flaky tests from archived results.

    Exits with status 1 when any critical flaky test is found.

    Example:
      shardkit flaky --threshold 0.3 --pr-comment
    """
    config = _load_config_or_abort(kwargs["path"])
    settings = config.flaky

    options = FlakyOptions(
        results_dir=_resolve_path(config, kwargs["results_dir"], settings.results_dir),
        history_size=kwargs["history_size"] or settings.history_size,
        threshold=kwargs["threshold"] if kwargs["threshold"] is not None else settings.threshold,
        min_runs=kwargs["min_runs"] or settings.min_runs,
        output=_resolve_path(config, kwargs["output"], settings.output),
    )

    reporter.print_header("Flaky Test Detection")
    report = detect_flaky(options)
    if report is None:
        reporter.print_info(f"No test results found in {options.results_dir}")
        return

    write_report(report, options.output)
    reporter.print_success(f"Report saved to {options.output}")
    reporter.print_flaky_report(report)

    if kwargs["pr_comment"] and not post_flaky_report_from_env(report):
        reporter.print_warning("Could not post the flaky test report to the PR")

    if report.has_critical:
        reporter.print_error("Critical flaky tests detected!")
        raise SystemExit(1)


# ── config ────────────────────────────────────────────────────────


@cli.group("config")
def config_group() -> None:
    """Inspect `.shardkit.yml` configuration."""


@config_group.command("show")
@_path_option
@click.option("--json-output", "as_json", is_flag=True, help="Output as JSON instead of YAML.")
def config_show(path: str, *, as_json: bool) -> None:
    """Display the effective configuration."""
    config_dict = _load_config_or_abort(path).to_dict()
    if as_json:
        click.echo(json.dumps(config_dict, indent=2))
        return
    console.print("[bold cyan]Configuration:[/bold cyan]")
    click.echo(yaml.safe_dump(config_dict, sort_keys=False, default_flow_style=False))


@config_group.command("validate")
@_path_option
def config_validate(path: str) -> None:
    """Validate `.shardkit.yml` values."""
    errors = validate_config(_load_config_or_abort(path))
    if not errors:
        reporter.print_success("Configuration is valid!")
        return

    reporter.print_error(f"Found {len(errors)} configuration error(s):")
    for idx, error in enumerate(errors, start=1):
        console.print(f"  {idx}. [red]{error}[/red]")
    raise click.Abort
