"""ChartMuseum API client."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional, Tuple

import aiohttp
from pydantic import ValidationError

from .charts import ChartService
from .config import ClientConfig
from .exceptions import ConfigurationError, DeadlineExceededError
from .info import InfoService
from .models import Response
from .request_builder import PreparedRequest, RequestBuilder, RequestOption
from .responses import Destination, Discard, decode
from .transport import RetryPolicy, Transport, basic_auth

logger = logging.getLogger(__name__)


def _build_config(config: Optional[ClientConfig], overrides: dict) -> ClientConfig:
    try:
        if config is None:
            return ClientConfig(**overrides)
        if overrides:
            return ClientConfig.model_validate({**config.model_dump(), **overrides})
        return config
    except ValidationError as e:
        raise ConfigurationError(f"invalid client configuration: {e}") from e


class ChartMuseumClient:
    """Async client for a ChartMuseum server.

    The client owns a pooled aiohttp session unless one is supplied, and is
    meant to be used as an async context manager::

        async with ChartMuseumClient(base_url="https://charts.example.com") as client:
            charts = await client.charts.list_charts("org/team")

    Configuration is immutable; use ``reconfigure`` to swap it explicitly.
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        **overrides: Any,
    ):
        self.config = _build_config(config, overrides)
        self.session = session
        self._owns_session = session is None
        self._custom_policy = policy
        self._sleep = sleep

        self.builder = RequestBuilder(self.config.base_url, self.config.user_agent)
        self.transport: Optional[Transport] = None
        if session is not None:
            self._build_transport()

        self.charts = ChartService(self)
        self.info = InfoService(self)

    @classmethod
    def with_basic_auth(
        cls, username: str, password: str, config: Optional[ClientConfig] = None, **kwargs: Any
    ) -> "ChartMuseumClient":
        """Create a client that authenticates every request with basic auth."""
        return cls(config, username=username, password=password, **kwargs)

    async def __aenter__(self) -> "ChartMuseumClient":
        """Async context manager entry."""
        if self.session is None:
            self.session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(),
                timeout=aiohttp.ClientTimeout(total=self.config.timeout),
            )
            self._owns_session = True
        self._build_transport()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        if self.session is not None and self._owns_session:
            await self.session.close()
            self.session = None
            self.transport = None

    def _build_transport(self) -> None:
        policy = self._custom_policy or RetryPolicy.from_config(self.config)
        self.transport = Transport(
            self.session, policy=policy, auth=basic_auth(self.config), sleep=self._sleep
        )

    @property
    def base_url(self) -> str:
        return self.config.base_url

    def reconfigure(self, **changes: Any) -> ClientConfig:
        """Replace the configuration, e.g. to point at another server.

        Raises:
            ConfigurationError: If the new configuration is invalid
        """
        self.config = _build_config(self.config, changes)
        self.builder = RequestBuilder(self.config.base_url, self.config.user_agent)
        if self.session is not None:
            self._build_transport()
        logger.info(f"Client reconfigured for {self.config.base_url}")
        return self.config

    def new_request(
        self,
        method: str,
        path: str,
        body: Any = None,
        options: Iterable[Optional[RequestOption]] = (),
    ) -> PreparedRequest:
        return self.builder.build(method, path, body, options)

    async def do(
        self, request: PreparedRequest, destination: Optional[Destination] = None
    ) -> Tuple[Response, Any]:
        """Send a request and decode the response into ``destination``.

        Returns:
            The response envelope and the decoded value, if any

        Raises:
            DeadlineExceededError: If a ``with_timeout`` deadline elapsed
            TransportError: If the server could not be reached
            ErrorResponse: If the server answered with an error status
        """
        if self.transport is None:
            raise ConfigurationError(
                "HTTP session not initialized, use the client as an async context manager"
            )

        transport = self.transport
        destination = destination or Discard()

        async def send_and_decode() -> Tuple[Response, Any]:
            response = await transport.send(request)
            return await decode(response, destination, request.method)

        if request.timeout is None:
            return await send_and_decode()

        try:
            return await asyncio.wait_for(send_and_decode(), timeout=request.timeout)
        except asyncio.TimeoutError as e:
            raise DeadlineExceededError(request.method, request.safe_url, request.timeout) from e
