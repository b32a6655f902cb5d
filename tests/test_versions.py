"""Tests for version-aware ordering."""

import pytest

from chartmuseum_mcp.chart_tools.versions import latest_matching, version_ordinal


@pytest.mark.parametrize(
    "newer, older",
    [
        ("10.0.0", "9.3.4"),
        ("2.0", "1.99"),
        ("1.10", "1.9"),
        ("17.0.1", "16.4.0"),
        ("8.8.26", "8.8.19"),
        ("1.0.10-rc1", "1.0.9-rc2"),
        ("v12", "v3"),
    ],
)
def test_numeric_runs_compare_by_magnitude(newer: str, older: str) -> None:
    assert version_ordinal(newer) > version_ordinal(older)


def test_leading_zeros_are_ignored() -> None:
    assert version_ordinal("1.007") == version_ordinal("1.7")
    assert version_ordinal("0.0") == version_ordinal("00.000")


def test_sorting_with_ordinal_key() -> None:
    versions = ["9.3.4", "10.0.0", "8.8.19", "9.10.0", "9.3.10"]

    assert sorted(versions, key=version_ordinal) == ["8.8.19", "9.3.4", "9.3.10", "9.10.0", "10.0.0"]


def test_latest_matching_filters_by_pattern() -> None:
    versions = ["8.8.19", "9.3.4", "8.8.26", "10.1.0-beta"]

    assert latest_matching(versions, r"^8\.") == "8.8.26"
    assert latest_matching(versions, r"^\d+\.\d+\.\d+$") == "9.3.4"
    assert latest_matching(versions, "beta") == "10.1.0-beta"


def test_latest_matching_returns_empty_without_match() -> None:
    assert latest_matching(["1.0.0", "2.0.0"], r"^3\.") == ""
    assert latest_matching([], ".*") == ""
