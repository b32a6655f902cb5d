"""HTTP transport with authentication and retry/backoff."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import AsyncIterator, Awaitable, BinaryIO, Callable, Mapping, Optional

import aiohttp

from .config import HEADER_RATE_RESET, AuthType, ClientConfig
from .exceptions import TransportError
from .request_builder import PreparedRequest

logger = logging.getLogger(__name__)

STREAM_CHUNK_SIZE = 64 * 1024

TRANSIENT_ERRORS = (aiohttp.ClientConnectionError, asyncio.TimeoutError)


class RetryPolicy:
    """Decides whether and how long to wait before retrying a request.

    Rate limited responses (429) wait until the ``RateLimit-Reset`` deadline
    plus some jitter. Other retryable conditions use a linear backoff with
    jitter inside a sub-second window.
    """

    def __init__(
        self,
        max_retries: int = 3,
        disable_retries: bool = False,
        rate_limit_wait_min: float = 1.0,
        rate_limit_wait_max: float = 30.0,
        rate_limit_jitter: float = 0.5,
        retry_wait_min: float = 0.7,
        retry_wait_max: float = 0.9,
        clock: Callable[[], float] = time.time,
        rng: Callable[[], float] = random.random,
    ):
        self.max_retries = max_retries
        self.disable_retries = disable_retries
        self.rate_limit_wait_min = rate_limit_wait_min
        self.rate_limit_wait_max = rate_limit_wait_max
        self.rate_limit_jitter = rate_limit_jitter
        self.retry_wait_min = retry_wait_min
        self.retry_wait_max = retry_wait_max
        self.clock = clock
        self.rng = rng

    @classmethod
    def from_config(cls, config: ClientConfig) -> "RetryPolicy":
        return cls(
            max_retries=config.max_retries,
            disable_retries=config.disable_retries,
            rate_limit_wait_min=config.rate_limit_wait_min,
            rate_limit_wait_max=config.rate_limit_wait_max,
            rate_limit_jitter=config.rate_limit_jitter,
            retry_wait_min=config.retry_wait_min,
            retry_wait_max=config.retry_wait_max,
        )

    @property
    def attempts(self) -> int:
        if self.disable_retries:
            return 1
        return self.max_retries + 1

    def should_retry(
        self, status: Optional[int] = None, error: Optional[BaseException] = None
    ) -> bool:
        """Retry rate limits (429), server errors (>= 500) and transient network errors."""
        if self.disable_retries:
            return False
        if error is not None:
            return isinstance(error, TRANSIENT_ERRORS)
        return status is not None and (status == 429 or status >= 500)

    def backoff(
        self,
        attempt: int,
        status: Optional[int] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> float:
        """Seconds to wait after the given zero-based attempt."""
        if status == 429:
            return self._rate_limit_backoff(headers)
        return self._linear_jitter_backoff(attempt)

    def _rate_limit_backoff(self, headers: Optional[Mapping[str, str]]) -> float:
        wait = self.rate_limit_wait_min

        reset = headers.get(HEADER_RATE_RESET) if headers else None
        if reset:
            try:
                reset_at = int(reset)
            except ValueError:
                reset_at = 0
            if reset_at > 0:
                # Only wait longer than the floor, never beyond the ceiling
                until_reset = reset_at - self.clock()
                if until_reset > wait:
                    wait = min(until_reset, self.rate_limit_wait_max)

        return wait + self.rng() * self.rate_limit_jitter

    def _linear_jitter_backoff(self, attempt: int) -> float:
        multiplier = attempt + 1
        if self.retry_wait_max <= self.retry_wait_min:
            return self.retry_wait_min * multiplier
        jitter = self.rng() * (self.retry_wait_max - self.retry_wait_min)
        return (self.retry_wait_min + jitter) * multiplier


async def _stream_file(stream: BinaryIO) -> AsyncIterator[bytes]:
    while True:
        chunk = await asyncio.to_thread(stream.read, STREAM_CHUNK_SIZE)
        if not chunk:
            break
        yield chunk


def basic_auth(config: ClientConfig) -> Optional[aiohttp.BasicAuth]:
    """Build the basic auth credentials for a config, if it uses basic auth."""
    if config.auth_type is AuthType.BASIC:
        return aiohttp.BasicAuth(config.username, config.password.get_secret_value())
    return None


class Transport:
    """Sends prepared requests over a pooled aiohttp session."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        policy: Optional[RetryPolicy] = None,
        auth: Optional[aiohttp.BasicAuth] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.session = session
        self.policy = policy or RetryPolicy()
        self.auth = auth
        self.sleep = sleep

    def _body(self, request: PreparedRequest):
        if request.body is None or isinstance(request.body, bytes):
            return request.body
        return _stream_file(request.body)

    async def send(self, request: PreparedRequest) -> aiohttp.ClientResponse:
        """Send a request, retrying per the retry policy.

        Once retries are exhausted the last response is returned as is, so the
        caller decodes it into an API error.

        Returns:
            The raw response; the caller owns releasing it

        Raises:
            TransportError: If no response could be obtained
        """
        attempts = self.policy.attempts

        for attempt in range(attempts):
            request.rewind()
            headers = dict(request.headers)
            if self.auth is not None:
                headers["Authorization"] = self.auth.encode()

            logger.debug(
                f"{request.method} {request.safe_url} (attempt {attempt + 1}/{attempts})"
            )

            try:
                response = await self.session.request(
                    request.method,
                    request.url,
                    params=request.params or None,
                    data=self._body(request),
                    headers=headers,
                )
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                reason = str(e) or type(e).__name__
                if attempt + 1 >= attempts or not self.policy.should_retry(error=e):
                    raise TransportError(request.method, request.safe_url, reason) from e

                wait = self.policy.backoff(attempt)
                logger.warning(
                    f"{request.method} {request.safe_url} failed: {reason}, "
                    f"retrying in {wait:.2f}s ({attempt + 1}/{attempts - 1})"
                )
                await self.sleep(wait)
                continue

            if attempt + 1 < attempts and self.policy.should_retry(status=response.status):
                wait = self.policy.backoff(attempt, response.status, response.headers)
                logger.warning(
                    f"{request.method} {request.safe_url} returned HTTP {response.status}, "
                    f"retrying in {wait:.2f}s ({attempt + 1}/{attempts - 1})"
                )
                response.close()
                await self.sleep(wait)
                continue

            return response

        # Unreachable: the final attempt always returns or raises
        raise TransportError(request.method, request.safe_url, "no attempts made")
