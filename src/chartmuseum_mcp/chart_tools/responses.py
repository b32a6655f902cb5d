"""Response classification and body decoding."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Tuple, Union

import aiohttp
from pydantic import TypeAdapter, ValidationError

from .config import HEADER_OTP
from .exceptions import (
    AcceptedError,
    DecodeError,
    ErrorResponse,
    TransportError,
    TwoFactorRequiredError,
)
from .models import Response
from .request_builder import sanitize_url

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 8192

UNKNOWN_ERROR_FORMAT = "failed to parse unknown error format"

ENVELOPE_FIELDS = ("message", "error", "saved", "deleted", "healthy")


@dataclass(frozen=True)
class Discard:
    """Ignore the body, apart from filling in the response envelope."""


@dataclass(frozen=True)
class DecodeJSON:
    """Decode the JSON body into ``target`` (a model or any pydantic-supported type)."""

    target: Any


@dataclass(frozen=True)
class RawBody:
    """Copy the body verbatim into ``sink.write``, which may be sync or async."""

    sink: Any


Destination = Union[Discard, DecodeJSON, RawBody]


def flatten_error(raw: Any) -> str:
    """Flatten a decoded JSON error body into one readable string.

    Object keys are sorted so the result does not depend on key order.
    """
    if isinstance(raw, str):
        return raw
    if isinstance(raw, list):
        return "[" + ", ".join(flatten_error(item) for item in raw) + "]"
    if isinstance(raw, dict):
        errors = sorted(f"{{{key}: {flatten_error(value)}}}" for key, value in raw.items())
        return ", ".join(errors)
    return f"failed to parse unexpected error type: {type(raw).__name__}"


def parse_error_body(body: bytes) -> str:
    try:
        raw = json.loads(body)
    except ValueError:
        return UNKNOWN_ERROR_FORMAT
    return flatten_error(raw)


def new_envelope(response: aiohttp.ClientResponse, method: str) -> Response:
    return Response(
        method=method,
        url=sanitize_url(str(response.url)),
        status=response.status,
        headers={key: value for key, value in response.headers.items()},
    )


def _fill_envelope(envelope: Response, data: Any) -> Response:
    if not isinstance(data, dict):
        return envelope

    updates = {key: data[key] for key in ENVELOPE_FIELDS if key in data}
    if not updates:
        return envelope
    try:
        return Response.model_validate({**envelope.model_dump(), **updates})
    except ValidationError:
        logger.debug(f"Response body for {envelope.url} does not match the envelope shape")
        return envelope


def _is_success(status: int) -> bool:
    return 200 <= status <= 299 or status == 304


async def check_response(response: aiohttp.ClientResponse, envelope: Response) -> None:
    """Raise the matching error for anything but a plain success.

    Raises:
        AcceptedError: On 202, carrying the raw body
        TwoFactorRequiredError: On 401 asking for a one-time password
        ErrorResponse: On any other non-success status
    """
    status = response.status
    if status == 202:
        raise AcceptedError(envelope, await response.read())
    if _is_success(status):
        return

    body = await response.read()
    message = parse_error_body(body) if body else UNKNOWN_ERROR_FORMAT
    try:
        envelope = _fill_envelope(envelope, json.loads(body))
    except ValueError:
        pass

    error_class = ErrorResponse
    if status == 401 and response.headers.get(HEADER_OTP, "").lower().startswith("required"):
        error_class = TwoFactorRequiredError

    raise error_class(
        envelope.method, envelope.url, status, message, body=body, response=envelope
    )


async def decode(
    response: aiohttp.ClientResponse, destination: Destination, method: str
) -> Tuple[Response, Any]:
    """Classify a response and decode its body into the destination.

    Args:
        response: Raw response from the transport; released on return
        destination: Where the body goes
        method: Request method, for error context

    Returns:
        The response envelope and the decoded value (``None`` unless the
        destination is ``DecodeJSON`` and the body was non-empty)
    """
    envelope = new_envelope(response, method)

    async with response:
        try:
            await check_response(response, envelope)

            if isinstance(destination, RawBody):
                async for chunk in response.content.iter_chunked(DOWNLOAD_CHUNK_SIZE):
                    result = destination.sink.write(chunk)
                    if inspect.isawaitable(result):
                        await result
                return envelope, None

            data = await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(method, envelope.url, str(e) or type(e).__name__) from e

    if not data.strip():
        # An empty body is a valid answer for any destination
        return envelope, None

    try:
        parsed = json.loads(data)
    except ValueError as e:
        if isinstance(destination, DecodeJSON):
            raise DecodeError(f"{method} {envelope.url}: invalid JSON body: {e}") from e
        return envelope, None

    envelope = _fill_envelope(envelope, parsed)

    if not isinstance(destination, DecodeJSON):
        return envelope, None

    try:
        value = TypeAdapter(destination.target).validate_python(parsed)
    except ValidationError as e:
        raise DecodeError(f"{method} {envelope.url}: unexpected response body: {e}") from e
    return envelope, value
