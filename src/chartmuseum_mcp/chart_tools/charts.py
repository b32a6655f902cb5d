"""Chart operations against the ChartMuseum API."""

from __future__ import annotations

import io
import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Tuple, Union
from urllib.parse import quote

import yaml
from pydantic import ValidationError

from .exceptions import (
    AcceptedError,
    ChartMuseumError,
    DeadlineExceededError,
    DecodeError,
    ErrorResponse,
    InvalidChartError,
    RequestBuildError,
    TransportError,
)
from .files import AtomicFileWriter
from .models import ChartRef, ChartVersion, RepositoryIndex, Response
from .request_builder import RequestOption
from .responses import DecodeJSON, RawBody
from .versions import latest_matching

if TYPE_CHECKING:
    from .client import ChartMuseumClient

logger = logging.getLogger(__name__)

REPO_URL_TPL = "api/{repo}/charts"
CHART_URL_TPL = "api/{repo}/charts/{name}"
CHART_VERSION_URL_TPL = "api/{repo}/charts/{name}/{version}"
DOWNLOAD_URL_TPL = "{repo}/charts/{filename}"
INDEX_URL_TPL = "{repo}/index.yaml"

RepoPath = Union[str, Sequence[str]]


def chart_filename(name: str, version: str) -> str:
    return f"{name}-{version}.tgz"


def _segment(value: str) -> str:
    return quote(value, safe="")


def _repo(ref: ChartRef) -> str:
    return quote(ref.repo, safe="/")


class ChartService:
    """Lists, fetches, uploads, deletes and downloads charts."""

    def __init__(self, client: "ChartMuseumClient") -> None:
        self.client = client

    def _chart_path(self, ref: ChartRef) -> str:
        return CHART_URL_TPL.format(repo=_repo(ref), name=_segment(ref.require_name()))

    def _version_path(self, ref: ChartRef) -> str:
        version = ref.require_version()
        return CHART_VERSION_URL_TPL.format(
            repo=_repo(ref), name=_segment(ref.name), version=_segment(version)
        )

    async def list_charts(
        self, repo: RepoPath, *options: RequestOption
    ) -> Dict[str, List[ChartVersion]]:
        """List every chart in a repository, keyed by chart name."""
        ref = ChartRef.of(repo)
        request = self.client.new_request(
            "GET", REPO_URL_TPL.format(repo=_repo(ref)), options=options
        )
        _, charts = await self.client.do(request, DecodeJSON(Dict[str, List[ChartVersion]]))
        return charts or {}

    async def list_versions(
        self, repo: RepoPath, name: str, *options: RequestOption
    ) -> List[ChartVersion]:
        """List all versions of one chart."""
        ref = ChartRef.of(repo, name)
        request = self.client.new_request("GET", self._chart_path(ref), options=options)
        _, versions = await self.client.do(request, DecodeJSON(List[ChartVersion]))
        return versions or []

    async def get_version(
        self, repo: RepoPath, name: str, version: str, *options: RequestOption
    ) -> Optional[ChartVersion]:
        """Get a single chart version.

        Returns:
            The chart version, or None if the server sent an empty body

        Raises:
            ErrorResponse: If the chart version does not exist
        """
        ref = ChartRef.of(repo, name, version)
        request = self.client.new_request("GET", self._version_path(ref), options=options)
        _, chart_version = await self.client.do(request, DecodeJSON(ChartVersion))
        return chart_version

    async def exists_with_error(
        self,
        repo: RepoPath,
        name: str,
        *options: RequestOption,
        version: Optional[str] = None,
    ) -> Tuple[bool, Optional[ChartMuseumError]]:
        """Probe a chart, or a chart version, with a HEAD request.

        Any successful status means the chart exists. Server and transport
        errors mean it does not and are returned alongside ``False``.
        """
        ref = ChartRef.of(repo, name, version)
        path = self._version_path(ref) if version is not None else self._chart_path(ref)
        request = self.client.new_request("HEAD", path, options=options)

        try:
            await self.client.do(request)
        except AcceptedError:
            return True, None
        except (ErrorResponse, TransportError, DeadlineExceededError) as e:
            logger.debug(f"Chart {ref} not found: {e}")
            return False, e
        return True, None

    async def exists(self, repo: RepoPath, name: str, *options: RequestOption) -> bool:
        found, _ = await self.exists_with_error(repo, name, *options)
        return found

    async def version_exists(
        self, repo: RepoPath, name: str, version: str, *options: RequestOption
    ) -> bool:
        found, _ = await self.exists_with_error(repo, name, *options, version=version)
        return found

    async def upload(
        self, repo: RepoPath, chart_path: Union[str, Path], *options: RequestOption
    ) -> Response:
        """Upload a packaged chart.

        Args:
            repo: Repository path
            chart_path: Path to the ``.tgz`` package

        Returns:
            The response envelope; ``saved`` is set when the server confirms

        Raises:
            InvalidChartError: If the path is a directory or cannot be read
        """
        ref = ChartRef.of(repo)
        chart_path = Path(chart_path)
        if chart_path.is_dir():
            raise InvalidChartError(f"chart to upload can't be a directory: {chart_path}")

        try:
            chart_file = open(chart_path, "rb")
        except OSError as e:
            raise InvalidChartError(f"unable to access chart file {chart_path}: {e}") from e

        with chart_file:
            request = self.client.new_request(
                "POST", REPO_URL_TPL.format(repo=_repo(ref)), body=chart_file, options=options
            )
            response, _ = await self.client.do(request)

        logger.info(f"Uploaded {chart_path.name} to {ref.repo}")
        return response

    async def delete(
        self, repo: RepoPath, name: str, version: str, *options: RequestOption
    ) -> Response:
        """Delete one chart version."""
        ref = ChartRef.of(repo, name, version)
        request = self.client.new_request("DELETE", self._version_path(ref), options=options)
        response, _ = await self.client.do(request)
        logger.info(f"Deleted chart {ref}")
        return response

    async def download(
        self,
        repo: RepoPath,
        name: str,
        version: str,
        dest_dir: Union[str, Path],
        *options: RequestOption,
    ) -> Path:
        """Download a chart package into ``dest_dir``.

        The package is written to a temporary file and renamed into place,
        so an interrupted download never leaves a partial file behind.

        Returns:
            Path to the downloaded ``<name>-<version>.tgz``
        """
        ref = ChartRef.of(repo, name, version)
        filename = chart_filename(ref.require_name(), ref.require_version())
        request = self.client.new_request(
            "GET",
            DOWNLOAD_URL_TPL.format(repo=_repo(ref), filename=_segment(filename)),
            options=options,
        )

        destination = Path(dest_dir) / filename
        async with AtomicFileWriter(destination) as writer:
            await self.client.do(request, RawBody(writer))

        logger.info(f"Downloaded chart {ref} to {destination}")
        return destination

    async def latest_version(
        self, repo: RepoPath, name: str, pattern: str, *options: RequestOption
    ) -> str:
        """Return the highest version of a chart matching ``pattern``, or ``""``."""
        try:
            regex = re.compile(pattern)
        except re.error as e:
            raise RequestBuildError(f"invalid version pattern {pattern!r}: {e}") from e

        versions = await self.list_versions(repo, name, *options)
        return latest_matching((v.version for v in versions), regex)

    async def get_index(self, repo: RepoPath, *options: RequestOption) -> RepositoryIndex:
        """Fetch and parse the repository index.yaml."""
        ref = ChartRef.of(repo)
        request = self.client.new_request(
            "GET", INDEX_URL_TPL.format(repo=_repo(ref)), options=options
        )

        buffer = io.BytesIO()
        response, _ = await self.client.do(request, RawBody(buffer))

        try:
            index_data = yaml.safe_load(buffer.getvalue()) or {}
            return RepositoryIndex.model_validate(index_data)
        except (yaml.YAMLError, ValidationError) as e:
            raise DecodeError(f"GET {response.url}: invalid repository index: {e}") from e
