"""Terminal reporter with rich output formatting."""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.table import Table

from shardkit.analyzers.flaky import SEVERITY_ORDER, FlakySeverity

if TYPE_CHECKING:
    from shardkit.analyzers.flaky import FlakyReport
    from shardkit.analyzers.impact import Selection
    from shardkit.models.inventory import TestInventory
    from shardkit.sharding.splitter import ShardPlan

console = Console()

_SECONDS_PER_MINUTE = 60.0
_MAX_TOP_FLAKY = 5
_MAX_FILES_DISPLAY = 20

SEVERITY_COLORS: dict[FlakySeverity, str] = {
    FlakySeverity.CRITICAL: "red",
    FlakySeverity.HIGH: "dark_orange",
    FlakySeverity.MEDIUM: "yellow",
    FlakySeverity.LOW: "green",
}


def _format_duration(milliseconds: float) -> str:
    """Format a duration in milliseconds to a human-readable string."""
    seconds = milliseconds / 1000
    if seconds >= _SECONDS_PER_MINUTE:
        return f"{seconds / _SECONDS_PER_MINUTE:.1f}m"
    return f"{seconds:.1f}s"


class CLIReporter:
    """Rich terminal output for the shardkit commands."""

    def __init__(self) -> None:
        """Initialize the CLI reporter."""
        self.console = console

    def print_header(self, title: str) -> None:
        """Print a bold header."""
        self.console.print(f"\n[bold cyan]{title}[/bold cyan]\n")

    def print_success(self, message: str) -> None:
        """Print a success message."""
        self.console.print(f"[green]✓[/green] {message}")

    def print_error(self, message: str) -> None:
        """Print an error message."""
        self.console.print(f"[red]✗[/red] {message}")

    def print_warning(self, message: str) -> None:
        """Print a warning message."""
        self.console.print(f"[yellow]⚠[/yellow] {message}")

    def print_info(self, message: str) -> None:
        """Print an info message."""
        self.console.print(f"[dim]{message}[/dim]")

    # ── Collection ──────────────────────────────────────────────────

    def print_inventory_summary(self, inventory: TestInventory) -> None:
        """Print test counts per type and per tag."""
        data = inventory.to_dict()
        self.console.print(
            f"  [bold]{len(inventory)}[/bold] files, "
            f"[bold]{data['totalTests']}[/bold] tests, "
            f"~{_format_duration(inventory.total_duration)} estimated"
        )

        table = Table(title="By Type", title_style="bold cyan")
        table.add_column("Type", style="bold")
        table.add_column("Files", justify="right")
        table.add_column("Tests", justify="right")
        for test_type, bucket in data["byType"].items():
            table.add_row(test_type, str(len(bucket["files"])), str(bucket["count"]))
        self.console.print(table)

        table = Table(title="By Tag", title_style="bold cyan")
        table.add_column("Tag", style="bold")
        table.add_column("Files", justify="right")
        table.add_column("Tests", justify="right")
        for tag, bucket in sorted(data["byTag"].items(), key=lambda kv: -kv[1]["count"]):
            table.add_row(tag, str(len(bucket["files"])), str(bucket["count"]))
        self.console.print(table)

    # ── Sharding ────────────────────────────────────────────────────

    def print_shard_plan(self, plan: ShardPlan) -> None:
        """Print the requested shard's size and duration."""
        requested = plan.bins[plan.options.index]
        self.console.print(
            f"  Shard [bold]{plan.options.index + 1}/{plan.options.total}[/bold] "
            f"({plan.options.strategy.value}): "
            f"[bold]{len(requested.tests)}[/bold] of {plan.candidates} tests, "
            f"~{_format_duration(requested.total_duration)}"
        )

    def print_shard_distribution(self, plan: ShardPlan) -> None:
        """Print every shard's test count and estimated duration."""
        table = Table(title="Shard Distribution", title_style="bold cyan")
        table.add_column("Shard", justify="right")
        table.add_column("Tests", justify="right")
        table.add_column("Estimated", justify="right")
        for shard_bin in plan.bins:
            style = "bold green" if shard_bin.index == plan.options.index else ""
            table.add_row(
                str(shard_bin.index),
                str(len(shard_bin.tests)),
                _format_duration(shard_bin.total_duration),
                style=style,
            )
        self.console.print(table)

    # ── Selection ───────────────────────────────────────────────────

    def print_selection(self, selection: Selection) -> None:
        """Print how each changed file mapped and the final selection."""
        impact = selection.impact
        if impact is not None and impact.resolutions:
            table = Table(title="Changed Files", title_style="bold cyan")
            table.add_column("File", style="bold")
            table.add_column("Rule")
            table.add_column("Tests")
            for resolution in impact.resolutions:
                if resolution.rule is None:
                    table.add_row(resolution.file, "[yellow]no mapping[/yellow]", "@all")
                else:
                    table.add_row(
                        resolution.file,
                        resolution.rule.description,
                        ", ".join(str(p) for p in resolution.patterns),
                    )
            self.console.print(table)

        self.console.print(f"  Mode: [bold]{selection.mode.value}[/bold]  [dim]{selection.reason}[/dim]")
        for file in selection.files[:_MAX_FILES_DISPLAY]:
            self.console.print(f"    • {file}")
        hidden = len(selection.files) - _MAX_FILES_DISPLAY
        if hidden > 0:
            self.console.print(f"    [dim]... and {hidden} more[/dim]")

    # ── Flaky detection ─────────────────────────────────────────────

    def print_flaky_report(self, report: FlakyReport) -> None:
        """Print severity counts and the top flaky tests."""
        summary = report.summary()
        self.console.print(f"  Total flaky tests: [bold]{summary['totalFlakyTests']}[/bold]")
        for severity in SEVERITY_ORDER:
            color = SEVERITY_COLORS[severity]
            self.console.print(
                f"  [{color}]●[/{color}] {severity.value.capitalize()}: {summary[severity.value]}"
            )

        if not report.tests:
            return

        table = Table(title="Top Flaky Tests", title_style="bold cyan")
        table.add_column("Test", style="bold")
        table.add_column("Rate", justify="right")
        table.add_column("Failures", justify="right")
        table.add_column("Severity", justify="center")
        for test in report.tests[:_MAX_TOP_FLAKY]:
            color = SEVERITY_COLORS[test.severity]
            table.add_row(
                test.identity,
                f"{test.flaky_rate * 100:.1f}%",
                f"{test.failures}/{test.total_runs}",
                f"[{color}]{test.severity.value}[/{color}]",
            )
        self.console.print(table)


# Singleton instance for easy import
reporter = CLIReporter()
