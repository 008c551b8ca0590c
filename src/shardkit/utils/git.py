"""Git and GitHub API helpers.

Changed files come from ``git diff --name-only <base>...HEAD``; PR
comments go through the GitHub REST API.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import shutil
import subprocess
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import requests

from shardkit.utils.ci_context import github_pr_number

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"
_GITHUB_AUTH_ENV_KEY = "GITHUB_" + "TOKEN"
_REQUEST_TIMEOUT = 30
_OWNER_REPO_PARTS = 2

_GIT_REF_MAX_LENGTH = 255
_GIT_REF_UNSAFE = re.compile(r"[\x00-\x1f\x7f :\?\*\[\]\\;|&$`()<>{}!#'\"]")


def _git_executable() -> str:
    """Resolve the full path to the ``git`` executable."""
    return shutil.which("git") or "git"


# ── Git ───────────────────────────────────────────────────────────


class GitOperationError(Exception):
    """Raised when a git command fails or a ref is unsafe."""


def validate_git_ref(ref: str) -> None:
    """Reject refs that are empty, oversized, or could be read as options.

    Raises:
        GitOperationError: If the ref is invalid.
    """
    if not ref:
        raise GitOperationError("Git ref must not be empty")
    if len(ref) > _GIT_REF_MAX_LENGTH:
        raise GitOperationError(f"Git ref exceeds {_GIT_REF_MAX_LENGTH} characters")
    if ref.startswith("-"):
        raise GitOperationError("Git ref must not start with a dash")
    if ".." in ref:
        raise GitOperationError("Git ref must not contain '..'")
    if _GIT_REF_UNSAFE.search(ref):
        raise GitOperationError(f"Git ref contains unsafe characters: {ref!r}")


def fetch_origin(repo_path: Path) -> bool:
    """Run ``git fetch origin --quiet``; return False instead of raising."""
    try:
        subprocess.run(
            [_git_executable(), "fetch", "origin", "--quiet"],
            cwd=repo_path,
            capture_output=True,
            text=True,
            check=True,
        )
    except (subprocess.CalledProcessError, OSError) as exc:
        logger.debug("git fetch failed, continuing with local refs: %s", exc)
        return False
    return True


def get_changed_files(repo_path: Path, base_ref: str, *, fetch: bool = False) -> list[str]:
    """List files changed between *base_ref* and HEAD.

    Uses the three-dot form, so only changes made on the current branch
    since it diverged from *base_ref* are reported.

    Args:
        repo_path: Path to the git repository.
        base_ref: Ref to compare against (e.g. ``origin/main``).
        fetch: Try ``git fetch origin`` first; a failed fetch is ignored.

    Returns:
        Repository-relative paths, in git's output order.

    Raises:
        GitOperationError: If the ref is unsafe or ``git diff`` fails.
    """
    validate_git_ref(base_ref)
    if fetch:
        fetch_origin(repo_path)

    try:
        result = subprocess.run(
            [_git_executable(), "diff", "--name-only", f"{base_ref}...HEAD"],
            cwd=repo_path,
            capture_output=True,
            text=True,
            check=True,
        )
    except subprocess.CalledProcessError as exc:
        detail = (exc.stderr or "").strip() or str(exc)
        raise GitOperationError(f"git diff against {base_ref} failed: {detail}") from exc
    except OSError as exc:
        raise GitOperationError(f"Could not run git: {exc}") from exc

    files = [line.strip() for line in result.stdout.splitlines() if line.strip()]
    logger.debug("%d files changed relative to %s", len(files), base_ref)
    return files


# ── GitHub API ────────────────────────────────────────────────────


class GitHubAPIError(Exception):
    """Raised when a GitHub API request fails."""


@dataclass
class GitHubPRInfo:
    """Identifies a pull request."""

    owner: str
    repo: str
    pr_number: int


def get_pr_info_from_env() -> GitHubPRInfo | None:
    """Resolve the current PR from GitHub Actions variables.

    Needs ``GITHUB_REPOSITORY`` plus either ``GITHUB_PR_NUMBER`` or a
    ``refs/pull/<n>/merge`` ``GITHUB_REF``.
    """
    parts = os.environ.get("GITHUB_REPOSITORY", "").split("/")
    if len(parts) != _OWNER_REPO_PARTS or not all(parts):
        return None

    pr_number = github_pr_number()
    if pr_number is None:
        return None

    owner, repo = parts
    return GitHubPRInfo(owner=owner, repo=repo, pr_number=pr_number)


def compute_comment_marker(prefix: str) -> str:
    """Return a hidden HTML marker identifying one kind of bot comment."""
    digest = hashlib.sha256(prefix.encode()).hexdigest()[:8]
    return f"<!-- {prefix}:{digest} -->"


class GitHubAPI:
    """Minimal GitHub REST client for pull request comments."""

    def __init__(self, token: str | None = None) -> None:
        """Initialize the client.

        Args:
            token: Access token; defaults to the ``GITHUB_TOKEN`` variable.

        Raises:
            GitHubAPIError: If no token is available.
        """
        token = token or os.environ.get(_GITHUB_AUTH_ENV_KEY)
        if not token:
            raise GitHubAPIError(f"GitHub token required. Set {_GITHUB_AUTH_ENV_KEY}.")

        self._headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def _comments_url(self, pr_info: GitHubPRInfo) -> str:
        return (
            f"{GITHUB_API_BASE}/repos/{pr_info.owner}/{pr_info.repo}/"
            f"issues/{pr_info.pr_number}/comments"
        )

    def _request(self, method: str, url: str, data: dict[str, Any] | None = None) -> Any:
        try:
            response = requests.request(
                method, url, json=data, headers=self._headers, timeout=_REQUEST_TIMEOUT
            )
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as exc:
            raise GitHubAPIError(f"{method} request failed: {exc}") from exc

    def find_comment_by_marker(self, pr_info: GitHubPRInfo, marker: str) -> dict[str, Any] | None:
        """Return the first PR comment whose body contains *marker*."""
        comments: list[dict[str, Any]] = self._request("GET", self._comments_url(pr_info))
        for comment in comments:
            if marker in comment.get("body", ""):
                return comment
        return None

    def upsert_comment(self, pr_info: GitHubPRInfo, body: str, marker: str) -> dict[str, Any]:
        """Update the comment carrying *marker*, or create one.

        Raises:
            GitHubAPIError: If any request fails.
        """
        if marker not in body:
            body = f"{marker}\n{body}"

        existing = self.find_comment_by_marker(pr_info, marker)
        if existing:
            logger.info("Updating existing comment %d", existing["id"])
            url = (
                f"{GITHUB_API_BASE}/repos/{pr_info.owner}/{pr_info.repo}/"
                f"issues/comments/{existing['id']}"
            )
            result: dict[str, Any] = self._request("PATCH", url, {"body": body})
            return result

        logger.info("Creating new comment on PR #%d", pr_info.pr_number)
        created: dict[str, Any] = self._request("POST", self._comments_url(pr_info), {"body": body})
        return created
