"""Tests for CI context detection."""

from __future__ import annotations

import json
import os
from pathlib import Path
from unittest.mock import patch

from click.testing import CliRunner

from shardkit.cli import cli
from shardkit.utils.ci_context import detect_ci_context, github_pr_number


def test_detect_github_actions_pr_context() -> None:
    env = {
        "GITHUB_ACTIONS": "true",
        "GITHUB_PR_NUMBER": "123",
        "GITHUB_BASE_REF": "develop",
        "GITHUB_REPOSITORY": "owner/repo",
    }

    with patch.dict(os.environ, env, clear=True):
        context = detect_ci_context()

    assert context.is_ci
    assert context.provider == "github"
    assert context.base_branch == "develop"
    assert context.base_ref == "origin/develop"


def test_github_pr_number_sources() -> None:
    with patch.dict(os.environ, {"GITHUB_PR_NUMBER": "12"}, clear=True):
        assert github_pr_number() == 12
    with patch.dict(os.environ, {"GITHUB_REF": "refs/pull/77/merge"}, clear=True):
        assert github_pr_number() == 77
    with patch.dict(os.environ, {"GITHUB_REF": "refs/heads/main"}, clear=True):
        assert github_pr_number() is None


def test_detect_github_push_has_no_base() -> None:
    env = {"GITHUB_ACTIONS": "true", "GITHUB_REF": "refs/heads/main", "GITHUB_BASE_REF": ""}

    with patch.dict(os.environ, env, clear=True):
        context = detect_ci_context()

    assert context.is_ci
    assert context.base_ref is None


def test_detect_gitlab_merge_request() -> None:
    env = {
        "GITLAB_CI": "true",
        "CI_MERGE_REQUEST_IID": "9",
        "CI_MERGE_REQUEST_TARGET_BRANCH_NAME": "main",
    }

    with patch.dict(os.environ, env, clear=True):
        context = detect_ci_context()

    assert context.provider == "gitlab"
    assert context.base_ref == "origin/main"


def test_detect_generic_ci() -> None:
    with patch.dict(os.environ, {"CI": "true"}, clear=True):
        context = detect_ci_context()

    assert context.is_ci
    assert context.provider == "generic"
    assert context.base_ref is None


def test_detect_local() -> None:
    with patch.dict(os.environ, {}, clear=True):
        context = detect_ci_context()

    assert not context.is_ci
    assert context.provider is None


def test_select_diffs_against_pr_target_branch(tmp_path: Path) -> None:
    (tmp_path / "test-collection.json").write_text(json.dumps({"tests": []}))
    env = {"GITHUB_ACTIONS": "true", "GITHUB_BASE_REF": "release"}

    with (
        patch.dict(os.environ, env, clear=True),
        patch("shardkit.cli.get_changed_files", return_value=[]) as mock_diff,
    ):
        result = CliRunner().invoke(cli, ["select", "--path", str(tmp_path), "--no-fetch"])

    assert result.exit_code == 0, result.output
    assert mock_diff.call_args[0][1] == "origin/release"
