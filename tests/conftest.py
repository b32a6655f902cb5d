"""Shared fixtures: an in-process fake ChartMuseum server."""

import hashlib
import io
import json
import tarfile
from collections import defaultdict, deque
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, Tuple

import pytest
import yaml
from aiohttp import web
from aiohttp.test_utils import TestServer

from chartmuseum_mcp.chart_tools.client import ChartMuseumClient

SEED_CHARTS = {
    "test": {
        "mysql": ["8.8.19", "9.3.4", "8.8.26"],
        "redis": ["15.7.6", "16.0.0", "16.4.0", "17.0.1", "9.5.0"],
        "postgresql": ["10.16.2", "11.0.0"],
    }
}

ScriptedResponse = Tuple[int, Dict[str, str], bytes]


def build_package(name: str, version: str) -> bytes:
    """Build a minimal chart package (.tgz) in memory."""
    chart_yaml = yaml.safe_dump(
        {"apiVersion": "v2", "name": name, "version": version, "description": f"{name} chart"}
    ).encode()
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        info = tarfile.TarInfo(f"{name}/Chart.yaml")
        info.size = len(chart_yaml)
        tar.addfile(info, io.BytesIO(chart_yaml))
    return buffer.getvalue()


def write_package(directory: Path, name: str, version: str) -> Path:
    path = directory / f"{name}-{version}.tgz"
    path.write_bytes(build_package(name, version))
    return path


def _read_chart_yaml(package: bytes) -> Dict[str, Any]:
    with tarfile.open(fileobj=io.BytesIO(package), mode="r:gz") as tar:
        for member in tar.getmembers():
            if member.name.endswith("/Chart.yaml"):
                return yaml.safe_load(tar.extractfile(member).read())
    raise ValueError("no Chart.yaml in package")


class FakeChartMuseum:
    """Just enough of the ChartMuseum API for client tests."""

    def __init__(self) -> None:
        self.packages: Dict[str, Dict[str, Dict[str, bytes]]] = defaultdict(lambda: defaultdict(dict))
        self.requests: List[web.Request] = []
        self.bodies: List[bytes] = []
        self.scripted: Dict[Tuple[str, str], Deque[ScriptedResponse]] = defaultdict(deque)
        self.handlers: Dict[Tuple[str, str], Any] = {}
        self.base_url = ""

        for repo, charts in SEED_CHARTS.items():
            for name, versions in charts.items():
                for version in versions:
                    self.packages[repo][name][version] = build_package(name, version)

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_route("*", "/{tail:.*}", self.handle)
        return app

    def script(self, method: str, path: str, *responses: ScriptedResponse) -> None:
        """Serve canned responses for ``method path`` before normal handling."""
        self.scripted[(method, path)].extend(responses)

    def route(self, method: str, path: str, handler) -> None:
        """Replace normal handling of ``method path`` with a custom handler."""
        self.handlers[(method, path)] = handler

    def record(self, repo: str, name: str, version: str) -> Dict[str, Any]:
        package = self.packages[repo][name][version]
        return {
            "apiVersion": "v2",
            "name": name,
            "version": version,
            "description": f"{name} chart",
            "urls": [f"charts/{name}-{version}.tgz"],
            "created": "2022-01-11T09:13:48.123456789Z",
            "digest": hashlib.sha256(package).hexdigest(),
        }

    def versions(self, repo: str, name: str) -> List[Dict[str, Any]]:
        return [self.record(repo, name, version) for version in self.packages[repo][name]]

    async def handle(self, request: web.Request) -> web.StreamResponse:
        self.requests.append(request)
        self.bodies.append(await request.read())
        key = (request.method, request.path)

        if self.scripted.get(key):
            status, headers, body = self.scripted[key].popleft()
            return web.Response(status=status, headers=headers, body=body)
        if key in self.handlers:
            return await self.handlers[key](request)

        return self.dispatch(request, self.bodies[-1])

    def dispatch(self, request: web.Request, body: bytes) -> web.StreamResponse:
        path = request.path.strip("/")
        method = request.method

        if path == "" and method == "GET":
            return web.Response(text="<html><body>Welcome to ChartMuseum!</body></html>", content_type="text/html")
        if path == "health":
            return web.json_response({"healthy": True})
        if path == "info":
            return web.json_response({"version": "v0.16.2"})

        if path.startswith("api/") and "/charts" in path:
            repo, _, rest = path[len("api/"):].partition("/charts")
            parts = [part for part in rest.split("/") if part]
            return self.api(method, repo, parts, body)

        if path.endswith("/index.yaml"):
            repo = path[: -len("/index.yaml")]
            entries = {name: self.versions(repo, name) for name in self.packages.get(repo, {})}
            index = {"apiVersion": "v1", "generated": "2022-01-11T09:13:48Z", "entries": entries}
            return web.Response(text=yaml.safe_dump(index), content_type="application/x-yaml")

        if "/charts/" in path and path.endswith(".tgz") and method == "GET":
            repo, _, filename = path.rpartition("/charts/")
            for name, versions in self.packages.get(repo, {}).items():
                for version, package in versions.items():
                    if filename == f"{name}-{version}.tgz":
                        return web.Response(body=package, content_type="application/x-tar")
            return web.json_response({"error": "not found"}, status=404)

        return web.json_response({"error": "not found"}, status=404)

    def api(self, method: str, repo: str, parts: List[str], body: bytes) -> web.StreamResponse:
        charts = self.packages.get(repo, {})

        if not parts:
            if method == "GET":
                return web.json_response({name: self.versions(repo, name) for name in charts})
            if method == "POST":
                try:
                    metadata = _read_chart_yaml(body)
                except (tarfile.TarError, ValueError):
                    return web.json_response({"error": "invalid chart package"}, status=500)
                name, version = metadata["name"], str(metadata["version"])
                if version in self.packages[repo][name]:
                    return web.json_response({"error": "file already exists"}, status=409)
                self.packages[repo][name][version] = body
                return web.json_response({"saved": True}, status=201)

        if len(parts) == 1 and method in ("GET", "HEAD"):
            name = parts[0]
            if not charts.get(name):
                return web.json_response({"error": "chart not found"}, status=404)
            return web.json_response(self.versions(repo, name))

        if len(parts) == 2:
            name, version = parts
            if version not in charts.get(name, {}):
                return web.json_response({"error": "improper constraint: " + version}, status=404)
            if method in ("GET", "HEAD"):
                return web.json_response(self.record(repo, name, version))
            if method == "DELETE":
                del self.packages[repo][name][version]
                if not self.packages[repo][name]:
                    del self.packages[repo][name]
                return web.json_response({"deleted": True})

        return web.json_response({"error": "method not allowed"}, status=405)


class SleepRecorder:
    """Stands in for asyncio.sleep and records requested waits."""

    def __init__(self) -> None:
        self.waits: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.waits.append(seconds)


@pytest.fixture
async def chartmuseum():
    fake = FakeChartMuseum()
    server = TestServer(fake.app())
    await server.start_server()
    fake.base_url = str(server.make_url("/"))
    yield fake
    await server.close()


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
async def client(chartmuseum: FakeChartMuseum, sleeps: SleepRecorder):
    async with ChartMuseumClient(base_url=chartmuseum.base_url, sleep=sleeps) as client:
        yield client


def json_body(data: Any) -> bytes:
    return json.dumps(data).encode()


def last_request(fake: FakeChartMuseum, method: Optional[str] = None) -> web.Request:
    for request in reversed(fake.requests):
        if method is None or request.method == method:
            return request
    raise AssertionError(f"no {method or ''} request recorded")
