"""Custom exceptions for the ChartMuseum client."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .models import Response


class ChartMuseumError(Exception):
    """Base exception for ChartMuseum client errors."""

    pass


class ConfigurationError(ChartMuseumError):
    """Raised when the client configuration is blank or malformed."""

    pass


class RequestBuildError(ChartMuseumError):
    """Raised when a request cannot be constructed."""

    pass


class InvalidChartReferenceError(RequestBuildError):
    """Raised when a repository, chart name or version is missing."""

    pass


class InvalidChartError(RequestBuildError):
    """Raised when a chart package to upload is unreadable or a directory."""

    pass


class TransportError(ChartMuseumError):
    """Raised when the request never produced an HTTP response."""

    def __init__(self, method: str, url: str, message: str) -> None:
        super().__init__(f"{method} {url}: {message}")
        self.method = method
        self.url = url


class DeadlineExceededError(ChartMuseumError):
    """Raised when a request option deadline elapses before completion."""

    def __init__(self, method: str, url: str, timeout: float) -> None:
        super().__init__(f"{method} {url}: deadline of {timeout}s exceeded")
        self.method = method
        self.url = url
        self.timeout = timeout


class DecodeError(ChartMuseumError):
    """Raised when a successful response body does not match its destination."""

    pass


class ErrorResponse(ChartMuseumError):
    """Reports an API error returned by the server.

    The URL is sanitized before being stored, so the string form is safe to
    log.
    """

    def __init__(
        self,
        method: str,
        url: str,
        status: int,
        message: str,
        body: bytes = b"",
        response: Optional["Response"] = None,
    ) -> None:
        super().__init__(f"{method} {url}: {status} {message}")
        self.method = method
        self.url = url
        self.status = status
        self.message = message
        self.body = body
        self.response = response


class TwoFactorRequiredError(ErrorResponse):
    """Raised on 401 responses that ask for a one-time password."""

    pass


class AcceptedError(ChartMuseumError):
    """Signals a 202 response: the server scheduled the work for later.

    This is not an API failure. The raw body is kept for inspection.
    """

    def __init__(self, response: "Response", raw: bytes = b"") -> None:
        super().__init__(f"{response.method} {response.url}: job scheduled on the server")
        self.response = response
        self.raw = raw
