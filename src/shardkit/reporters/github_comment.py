"""GitHub comment reporter for posting flaky-test reports to PRs.

The comment is upserted by a hidden marker, so repeated runs on the same
pull request edit one comment instead of adding new ones.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from shardkit.analyzers.flaky import SEVERITY_ORDER, FlakySeverity
from shardkit.utils.git import (
    GitHubAPI,
    GitHubAPIError,
    compute_comment_marker,
    get_pr_info_from_env,
)

if TYPE_CHECKING:
    from shardkit.analyzers.flaky import FlakyReport
    from shardkit.utils.git import GitHubPRInfo

logger = logging.getLogger(__name__)

COMMENT_MARKER_PREFIX = "shardkit:flaky"
_MAX_TABLE_ROWS = 10

SEVERITY_ICONS: dict[FlakySeverity, str] = {
    FlakySeverity.CRITICAL: "🔴",
    FlakySeverity.HIGH: "🟠",
    FlakySeverity.MEDIUM: "🟡",
    FlakySeverity.LOW: "🟢",
}


def _escape_cell(text: str) -> str:
    return text.replace("|", "\\|").replace("\n", " ")


def render_flaky_comment(report: FlakyReport) -> str:
    """Render a flaky report as markdown."""
    if not report.tests:
        return "✅ No flaky tests detected!"

    summary = report.summary()
    lines = [
        "⚠️ **Flaky Tests Detected**",
        "",
        f"Found {summary['totalFlakyTests']} flaky test(s) "
        f"(threshold: {report.threshold * 100:.0f}%)",
        "",
        "| Severity | Count |",
        "|----------|-------|",
    ]
    for severity in SEVERITY_ORDER:
        lines.append(
            f"| {SEVERITY_ICONS[severity]} {severity.value.capitalize()} | {summary[severity.value]} |"
        )

    lines.extend(
        [
            "",
            "### Top Flaky Tests",
            "",
            "| Test | Suite | Flaky Rate | Runs | Severity |",
            "|------|-------|------------|------|----------|",
        ]
    )
    for test in report.tests[:_MAX_TABLE_ROWS]:
        lines.append(
            f"| {_escape_cell(test.name)} | {_escape_cell(test.suite)} "
            f"| {test.flaky_rate * 100:.2f}% | {test.total_runs} "
            f"| {SEVERITY_ICONS[test.severity]} {test.severity.value} |"
        )

    lines.extend(["", "---", f"*Analyzed {report.archives} recent test runs*"])
    return "\n".join(lines) + "\n"


class FlakyCommentReporter:
    """Posts flaky-test reports as GitHub PR comments."""

    def __init__(self, github_token: str | None = None) -> None:
        """Initialize the reporter.

        Raises:
            GitHubAPIError: If no token is available.
        """
        self._api = GitHubAPI(token=github_token)
        self._marker = compute_comment_marker(COMMENT_MARKER_PREFIX)

    def post(self, pr_info: GitHubPRInfo, report: FlakyReport) -> str:
        """Create or update the flaky report comment.

        Returns:
            URL of the comment.

        Raises:
            GitHubAPIError: If posting fails.
        """
        logger.info(
            "Posting flaky report to PR #%d in %s/%s",
            pr_info.pr_number,
            pr_info.owner,
            pr_info.repo,
        )
        body = f"{self._marker}\n{render_flaky_comment(report)}"
        result = self._api.upsert_comment(pr_info, body, self._marker)
        return str(result.get("html_url", ""))


def post_flaky_report_from_env(report: FlakyReport) -> bool:
    """Post *report* to the PR described by the CI environment.

    Returns:
        True if the comment was posted, False when not in a PR context or
        when posting failed.
    """
    pr_info = get_pr_info_from_env()
    if pr_info is None:
        logger.warning("GitHub PR context not found (GITHUB_REPOSITORY / GITHUB_PR_NUMBER)")
        return False

    try:
        url = FlakyCommentReporter().post(pr_info, report)
    except GitHubAPIError as exc:
        logger.error("Failed to post PR comment: %s", exc)
        return False

    logger.info("Posted flaky test report: %s", url)
    return True
