"""Tests for chart operations against a fake ChartMuseum."""

import asyncio

import pytest
from aiohttp import web

from chartmuseum_mcp.chart_tools.exceptions import (
    DeadlineExceededError,
    ErrorResponse,
    InvalidChartError,
    InvalidChartReferenceError,
    RequestBuildError,
)
from chartmuseum_mcp.chart_tools.request_builder import with_timeout

from conftest import SEED_CHARTS, build_package, last_request, write_package


async def test_list_charts(client) -> None:
    charts = await client.charts.list_charts("test")

    assert set(charts) == {"mysql", "redis", "postgresql"}
    assert len(charts["mysql"]) == 3
    assert len(charts["redis"]) == 5
    assert len(charts["postgresql"]) == 2
    assert charts["mysql"][0].name == "mysql"


async def test_repo_path_is_normalized(client, chartmuseum) -> None:
    charts = await client.charts.list_charts("/test/")

    assert len(charts) == 3
    assert last_request(chartmuseum).path == "/api/test/charts"


async def test_list_versions(client) -> None:
    versions = await client.charts.list_versions("test", "redis")

    assert sorted(v.version for v in versions) == sorted(SEED_CHARTS["test"]["redis"])
    assert all(v.urls for v in versions)


async def test_get_version(client) -> None:
    chart_version = await client.charts.get_version("test", "mysql", "9.3.4")

    assert chart_version.name == "mysql"
    assert chart_version.version == "9.3.4"
    assert chart_version.digest


async def test_get_missing_version(client) -> None:
    with pytest.raises(ErrorResponse) as exc_info:
        await client.charts.get_version("test", "mysql", "10.0.0")

    assert exc_info.value.status == 404


async def test_chart_exists(client, chartmuseum) -> None:
    assert await client.charts.exists("test", "mysql")
    assert await client.charts.version_exists("test", "mysql", "8.8.19")
    assert last_request(chartmuseum).method == "HEAD"


async def test_missing_chart_does_not_exist(client) -> None:
    for _ in range(3):
        found, error = await client.charts.exists_with_error("test", "nonexistent")

        assert found is False
        assert isinstance(error, ErrorResponse)
        assert error.status == 404

    assert not await client.charts.version_exists("test", "mysql", "10.0.0")


async def test_exists_takes_options_before_version(client, chartmuseum) -> None:
    found, error = await client.charts.exists_with_error("test", "mysql", with_timeout(5))

    assert found is True
    assert error is None
    assert last_request(chartmuseum).path == "/api/test/charts/mysql"

    found, _ = await client.charts.exists_with_error("test", "mysql", with_timeout(5), version="8.8.26")

    assert found is True
    assert last_request(chartmuseum).path == "/api/test/charts/mysql/8.8.26"


async def test_malformed_chart_name_is_rejected(client, chartmuseum) -> None:
    with pytest.raises(InvalidChartReferenceError):
        await client.charts.exists_with_error("test", {"name": "mysql"})

    assert chartmuseum.requests == []


@pytest.mark.parametrize("repo", ["test", "org/team"])
async def test_upload_and_delete_round_trip(client, repo: str, tmp_path) -> None:
    package = write_package(tmp_path, "nginx", "1.2.3")

    uploaded = await client.charts.upload(repo, package)

    assert uploaded.status == 201
    assert uploaded.saved is True
    charts = await client.charts.list_charts(repo)
    assert [v.version for v in charts["nginx"]] == ["1.2.3"]

    deleted = await client.charts.delete(repo, "nginx", "1.2.3")

    assert deleted.deleted is True
    assert not await client.charts.exists(repo, "nginx")


async def test_upload_sends_gzip_package(client, chartmuseum, tmp_path) -> None:
    package = write_package(tmp_path, "nginx", "1.2.3")

    await client.charts.upload("test", package)

    request = last_request(chartmuseum, "POST")
    assert request.headers["Content-Type"] == "application/x-gzip"
    assert request.headers["Content-Length"] == str(package.stat().st_size)


async def test_duplicate_upload_conflicts(client, tmp_path) -> None:
    package = write_package(tmp_path, "mysql", "9.3.4")

    with pytest.raises(ErrorResponse) as exc_info:
        await client.charts.upload("test", package)

    assert exc_info.value.status == 409


async def test_upload_rejects_directory(client, chartmuseum, tmp_path) -> None:
    with pytest.raises(InvalidChartError):
        await client.charts.upload("test", tmp_path)

    assert chartmuseum.requests == []


async def test_upload_rejects_missing_file(client, chartmuseum, tmp_path) -> None:
    with pytest.raises(InvalidChartError):
        await client.charts.upload("test", tmp_path / "missing-0.1.0.tgz")

    assert chartmuseum.requests == []


async def test_empty_chart_name_is_rejected(client, chartmuseum) -> None:
    with pytest.raises(InvalidChartReferenceError):
        await client.charts.list_versions("test", "")
    with pytest.raises(InvalidChartReferenceError):
        await client.charts.delete("test", "mysql", "")
    with pytest.raises(InvalidChartReferenceError):
        await client.charts.list_charts("/")

    assert chartmuseum.requests == []


async def test_download(client, tmp_path) -> None:
    path = await client.charts.download("test", "mysql", "9.3.4", tmp_path)

    assert path == tmp_path / "mysql-9.3.4.tgz"
    assert path.read_bytes() == build_package("mysql", "9.3.4")
    assert [p.name for p in tmp_path.iterdir()] == ["mysql-9.3.4.tgz"]


async def test_failed_download_keeps_existing_file(client, tmp_path) -> None:
    existing = tmp_path / "mysql-0.0.1.tgz"
    existing.write_bytes(b"previous")

    with pytest.raises(ErrorResponse):
        await client.charts.download("test", "mysql", "0.0.1", tmp_path)

    assert existing.read_bytes() == b"previous"
    assert [p.name for p in tmp_path.iterdir()] == ["mysql-0.0.1.tgz"]


async def test_interrupted_download_leaves_no_partial_file(client, chartmuseum, tmp_path) -> None:
    release = asyncio.Event()

    async def truncated(request: web.Request) -> web.StreamResponse:
        response = web.StreamResponse(headers={"Content-Type": "application/x-tar"})
        response.content_length = 1024
        await response.prepare(request)
        await response.write(b"x" * 100)
        await asyncio.wait_for(release.wait(), timeout=5)
        return response

    chartmuseum.route("GET", "/test/charts/mysql-9.3.4.tgz", truncated)
    existing = tmp_path / "mysql-9.3.4.tgz"
    existing.write_bytes(b"previous")

    with pytest.raises(DeadlineExceededError):
        await client.charts.download("test", "mysql", "9.3.4", tmp_path, with_timeout(0.3))
    release.set()

    assert existing.read_bytes() == b"previous"
    assert [p.name for p in tmp_path.iterdir()] == ["mysql-9.3.4.tgz"]


@pytest.mark.parametrize(
    "name, pattern, expected",
    [
        ("mysql", r"^8\.", "8.8.26"),
        ("mysql", ".*", "9.3.4"),
        ("redis", ".*", "17.0.1"),
        ("redis", r"^9\.", "9.5.0"),
        ("postgresql", r"^12\.", ""),
    ],
)
async def test_latest_version(client, name: str, pattern: str, expected: str) -> None:
    assert await client.charts.latest_version("test", name, pattern) == expected


async def test_latest_version_rejects_bad_pattern(client, chartmuseum) -> None:
    with pytest.raises(RequestBuildError):
        await client.charts.latest_version("test", "mysql", "[unclosed")

    assert chartmuseum.requests == []


async def test_get_index(client) -> None:
    index = await client.charts.get_index("test")

    assert index.api_version == "v1"
    assert index.generated
    assert set(index.entries) == {"mysql", "redis", "postgresql"}
    assert {v.version for v in index.entries["postgresql"]} == {"10.16.2", "11.0.0"}
