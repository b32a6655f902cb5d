"""Server information endpoints."""

from __future__ import annotations

import io
from typing import TYPE_CHECKING

from .models import Healthy, VersionInfo
from .request_builder import RequestOption
from .responses import DecodeJSON, RawBody

if TYPE_CHECKING:
    from .client import ChartMuseumClient

INDEX_PATH = ""
HEALTH_PATH = "health"
INFO_PATH = "info"


class InfoService:
    """Index, health and version queries."""

    def __init__(self, client: "ChartMuseumClient") -> None:
        self.client = client

    async def index(self, *options: RequestOption) -> str:
        """Fetch the server welcome page as text."""
        request = self.client.new_request("GET", INDEX_PATH, options=options)
        buffer = io.BytesIO()
        await self.client.do(request, RawBody(buffer))
        return buffer.getvalue().decode("utf-8", errors="replace")

    async def health(self, *options: RequestOption) -> Healthy:
        request = self.client.new_request("GET", HEALTH_PATH, options=options)
        _, healthy = await self.client.do(request, DecodeJSON(Healthy))
        return healthy or Healthy()

    async def info(self, *options: RequestOption) -> VersionInfo:
        request = self.client.new_request("GET", INFO_PATH, options=options)
        _, version = await self.client.do(request, DecodeJSON(VersionInfo))
        return version or VersionInfo()
