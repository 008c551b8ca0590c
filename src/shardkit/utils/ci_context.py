"""CI environment detection.

Selection compares the working branch against a base ref; in a pull
request build the PR's target branch is the natural base.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass

_PR_REF_RE = re.compile(r"^refs/pull/(\d+)/")


@dataclass
class CIContext:
    """What is known about the CI run from its environment."""

    is_ci: bool = False
    """Running in a CI environment."""

    provider: str | None = None
    """``github``, ``gitlab`` or ``generic``."""

    base_branch: str | None = None
    """Target branch of the pull/merge request."""

    @property
    def base_ref(self) -> str | None:
        """Remote-tracking ref for the PR target branch, e.g. ``origin/main``."""
        if not self.base_branch:
            return None
        return f"origin/{self.base_branch}"


def _parse_int(value: str | None) -> int | None:
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def github_pr_number() -> int | None:
    """PR number from ``GITHUB_PR_NUMBER`` or a ``refs/pull/<n>/merge`` ref."""
    explicit = _parse_int(os.getenv("GITHUB_PR_NUMBER"))
    if explicit is not None:
        return explicit
    match = _PR_REF_RE.match(os.getenv("GITHUB_REF", ""))
    return int(match.group(1)) if match else None


def _github_context() -> CIContext:
    return CIContext(
        is_ci=True,
        provider="github",
        base_branch=os.getenv("GITHUB_BASE_REF") or None,
    )


def _gitlab_context() -> CIContext:
    return CIContext(
        is_ci=True,
        provider="gitlab",
        base_branch=os.getenv("CI_MERGE_REQUEST_TARGET_BRANCH_NAME") or None,
    )


def detect_ci_context() -> CIContext:
    """Detect the CI provider and pull request target branch from the environment."""
    if os.getenv("GITHUB_ACTIONS") == "true":
        return _github_context()
    if os.getenv("GITLAB_CI") == "true":
        return _gitlab_context()
    if os.getenv("CI") == "true":
        return CIContext(is_ci=True, provider="generic")
    return CIContext()
