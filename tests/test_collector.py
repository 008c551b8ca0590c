"""Tests for shardkit.collectors.inventory."""

from __future__ import annotations

import hashlib
from pathlib import Path

from shardkit.collectors.inventory import (
    collect_tests,
    count_tests,
    detect_test_type,
    estimate_duration,
    extract_tags,
    find_test_files,
)
from shardkit.models.inventory import UNTAGGED_TAG, TestType

_LOGIN_SPEC = """\
describe('Login', { tags: ['@smoke', "@auth"] }, () => {
  it('logs in', () => {
    cy.visit('/login');
    cy.get('#user').type('demo');
  });
  it('rejects bad password [@negative]', () => {
    cy.visit('/login');
  });
});
"""

_API_SPEC = """\
describe('Orders API', () => {
  it('creates an order', () => {
    cy.request('POST', '/api/orders');
  });
});
"""

_FEATURE = """\
@smoke @bdd
Feature: Purchase

  Scenario: Buy one item
    Given I am logged in

  Scenario: Buy two items
    Given I am logged in
"""


def _project(tmp_path: Path) -> Path:
    e2e = tmp_path / "cypress" / "e2e"
    (e2e / "api").mkdir(parents=True)
    (e2e / "login.cy.js").write_text(_LOGIN_SPEC)
    (e2e / "api" / "orders.cy.js").write_text(_API_SPEC)
    (e2e / "helpers.js").write_text("export const x = 1;")
    features = tmp_path / "src" / "tests" / "features"
    features.mkdir(parents=True)
    (features / "purchase.feature").write_text(_FEATURE)
    return tmp_path


class TestExtractTags:
    def test_cypress_tag_list_and_inline(self) -> None:
        assert extract_tags(_LOGIN_SPEC) == ["@smoke", "@auth", "@negative"]

    def test_gherkin_line_start_tags(self) -> None:
        # only the first tag on a line starts the line
        assert extract_tags(_FEATURE) == ["@smoke"]

    def test_no_tags(self) -> None:
        assert extract_tags(_API_SPEC) == []


class TestDetectTestType:
    def test_feature_is_bdd(self) -> None:
        assert detect_test_type("a.feature", "cy.request(") is TestType.BDD

    def test_api(self) -> None:
        assert detect_test_type("a.cy.js", _API_SPEC) is TestType.API

    def test_integration(self) -> None:
        assert detect_test_type("a.cy.js", "cy.intercept('GET', '/x')") is TestType.INTEGRATION

    def test_default_e2e(self) -> None:
        assert detect_test_type("a.cy.js", _LOGIN_SPEC) is TestType.E2E


class TestHeuristics:
    def test_estimate_duration(self) -> None:
        # 2 tests * 5s + 3 commands * 0.5s
        assert estimate_duration(_LOGIN_SPEC) == 11_500

    def test_count_tests(self) -> None:
        assert count_tests(TestType.E2E, _LOGIN_SPEC) == 2
        assert count_tests(TestType.BDD, _FEATURE) == 2


class TestCollectTests:
    def test_find_test_files(self, tmp_path: Path) -> None:
        root = _project(tmp_path)
        files = find_test_files(root, ["cypress/e2e/**/*.cy.js"])
        assert [f.relative_to(root).as_posix() for f in files] == [
            "cypress/e2e/api/orders.cy.js",
            "cypress/e2e/login.cy.js",
        ]

    def test_builds_inventory(self, tmp_path: Path) -> None:
        root = _project(tmp_path)
        inventory = collect_tests(root)

        assert inventory.files == [
            "cypress/e2e/login.cy.js",
            "cypress/e2e/api/orders.cy.js",
            "src/tests/features/purchase.feature",
        ]
        orders = inventory.get("cypress/e2e/api/orders.cy.js")
        assert orders is not None
        assert orders.type is TestType.API
        assert orders.tags == (UNTAGGED_TAG,)

        feature = inventory.get("src/tests/features/purchase.feature")
        assert feature is not None
        assert feature.test_count == 2
        assert feature.estimated_duration == 0

        extra = inventory.extra["cypress/e2e/login.cy.js"]
        assert extra["hash"] == hashlib.md5(b"cypress/e2e/login.cy.js").hexdigest()
        assert extra["size"] == len(_LOGIN_SPEC)

    def test_tag_filter(self, tmp_path: Path) -> None:
        inventory = collect_tests(_project(tmp_path), tag="@smoke")
        assert inventory.files == ["cypress/e2e/login.cy.js", "src/tests/features/purchase.feature"]

    def test_empty_project(self, tmp_path: Path) -> None:
        assert len(collect_tests(tmp_path)) == 0
