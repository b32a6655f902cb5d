"""Turns operation calls into fully formed HTTP requests."""

from __future__ import annotations

import io
import json
import logging
import os
import stat
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

from pydantic import BaseModel

from .config import MEDIA_TYPE
from .exceptions import ConfigurationError, InvalidChartError, RequestBuildError
from .files import detect_content_type, sniff_file

logger = logging.getLogger(__name__)

READ_METHODS = ("GET", "HEAD")

SENSITIVE_QUERY_KEYS = frozenset(
    {"password", "token", "private_token", "access_token", "secret", "client_secret", "key", "otp"}
)


def sanitize_url(url: str) -> str:
    """Strip credentials and secret query values from a URL."""
    parts = urlsplit(url)
    netloc = parts.netloc.rsplit("@", 1)[-1]
    query = urlencode(
        [
            (key, "REDACTED" if key.lower() in SENSITIVE_QUERY_KEYS else value)
            for key, value in parse_qsl(parts.query, keep_blank_values=True)
        ]
    )
    return urlunsplit((parts.scheme, netloc, parts.path, query, ""))


@dataclass
class PreparedRequest:
    """A request ready to hand to the transport."""

    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    params: List[Tuple[str, str]] = field(default_factory=list)
    body: Optional[Union[bytes, BinaryIO]] = None
    timeout: Optional[float] = None
    body_start: int = 0

    @property
    def full_url(self) -> str:
        if not self.params:
            return self.url
        return f"{self.url}?{urlencode(self.params)}"

    @property
    def safe_url(self) -> str:
        return sanitize_url(self.full_url)

    def rewind(self) -> None:
        """Reset a streamed body so the request can be sent again."""
        if self.body is not None and hasattr(self.body, "seek"):
            self.body.seek(self.body_start)


RequestOption = Callable[[PreparedRequest], None]


def with_timeout(seconds: float) -> RequestOption:
    """Bound the whole call, retries included, by a deadline."""

    def apply(request: PreparedRequest) -> None:
        if seconds <= 0:
            raise RequestBuildError(f"timeout must be positive, got {seconds}")
        request.timeout = seconds

    return apply


def with_content_type(content_type: str) -> RequestOption:
    def apply(request: PreparedRequest) -> None:
        request.headers["Content-Type"] = content_type

    return apply


def with_content_length(size: int) -> RequestOption:
    def apply(request: PreparedRequest) -> None:
        request.headers["Content-Length"] = str(size)

    return apply


def with_upload(media_type: str, size: int) -> RequestOption:
    """Set both content type and length for an uploaded package."""

    def apply(request: PreparedRequest) -> None:
        request.headers["Content-Type"] = media_type
        request.headers["Content-Length"] = str(size)

    return apply


def with_headers(headers: Mapping[str, str]) -> RequestOption:
    def apply(request: PreparedRequest) -> None:
        request.headers.update(headers)

    return apply


def with_params(params: Mapping[str, Any]) -> RequestOption:
    def apply(request: PreparedRequest) -> None:
        request.params.extend(_query_pairs(params))

    return apply


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _query_pairs(data: Mapping[str, Any]) -> List[Tuple[str, str]]:
    pairs: List[Tuple[str, str]] = []
    for key, value in data.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple, set)):
            pairs.extend((key, _query_value(item)) for item in value)
        else:
            pairs.append((key, _query_value(value)))
    return pairs


class RequestBuilder:
    """Builds requests relative to a base URL."""

    def __init__(self, base_url: str, user_agent: Optional[str] = None) -> None:
        self.base_url = base_url
        self.user_agent = user_agent

    def build(
        self,
        method: str,
        path: str,
        body: Any = None,
        options: Iterable[Optional[RequestOption]] = (),
    ) -> PreparedRequest:
        """Create a new API request.

        Args:
            method: HTTP method
            path: Path relative to the base URL; a leading slash is ignored
            body: None, a structured value (model or mapping), bytes, or an
                open binary file to stream
            options: Request options applied in order after the base request

        Returns:
            The prepared request

        Raises:
            ConfigurationError: If the base URL lacks a trailing slash
            RequestBuildError: If the body cannot be encoded
        """
        if not self.base_url.endswith("/"):
            raise ConfigurationError(
                f"base URL must have a trailing slash, but {self.base_url!r} does not"
            )

        method = method.upper()
        url = urljoin(self.base_url, path.lstrip("/"))

        headers = {"Accept": MEDIA_TYPE}
        if self.user_agent:
            headers["User-Agent"] = self.user_agent

        request = PreparedRequest(method=method, url=url, headers=headers)

        if body is None:
            pass
        elif isinstance(body, (BaseModel, Mapping)):
            self._attach_structured(request, body)
        elif isinstance(body, (bytes, bytearray)):
            request.body = bytes(body)
            request.headers["Content-Type"] = detect_content_type(request.body)
        elif hasattr(body, "read"):
            self._attach_stream(request, body)
        else:
            raise RequestBuildError(f"unsupported request body type: {type(body).__name__}")

        for option in options:
            if option is None:
                continue
            option(request)

        return request

    def _attach_structured(self, request: PreparedRequest, body: Any) -> None:
        if isinstance(body, BaseModel):
            data = body.model_dump(mode="json", by_alias=True, exclude_none=True)
        else:
            data = dict(body)

        if request.method in READ_METHODS:
            request.params.extend(_query_pairs(data))
            return

        try:
            request.body = json.dumps(data, ensure_ascii=False).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise RequestBuildError(f"failed to encode request body: {e}") from e
        request.headers["Content-Type"] = "application/json"

    def _attach_stream(self, request: PreparedRequest, stream: BinaryIO) -> None:
        if isinstance(stream, io.TextIOBase):
            raise RequestBuildError("upload streams must be opened in binary mode")

        try:
            file_stat = os.fstat(stream.fileno())
        except (AttributeError, OSError):
            file_stat = None

        if file_stat is not None and stat.S_ISDIR(file_stat.st_mode):
            raise InvalidChartError("chart to upload can't be a directory")

        try:
            position = stream.tell()
            if file_stat is not None:
                size = file_stat.st_size - position
            else:
                size = stream.seek(0, io.SEEK_END) - position
                stream.seek(position)
        except OSError as e:
            raise InvalidChartError(f"unable to access chart file: {e}") from e

        request.body = stream
        request.body_start = position
        request.headers["Content-Type"] = sniff_file(stream)
        request.headers["Content-Length"] = str(size)
