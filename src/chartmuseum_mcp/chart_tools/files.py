"""File helpers for chart uploads and downloads."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import BinaryIO, Optional

import aiofiles

logger = logging.getLogger(__name__)

SNIFF_LENGTH = 512
DEFAULT_CONTENT_TYPE = "application/octet-stream"

# (signature, content type) pairs checked against the start of the content
_SIGNATURES = (
    (b"\x1f\x8b\x08", "application/x-gzip"),
    (b"PK\x03\x04", "application/zip"),
    (b"%PDF-", "application/pdf"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"BZh", "application/x-bzip2"),
    (b"\xfd7zXZ\x00", "application/x-xz"),
)

_BINARY_BYTES = frozenset(
    list(range(0x00, 0x09)) + [0x0B] + list(range(0x0E, 0x1B)) + list(range(0x1C, 0x20))
)


def detect_content_type(data: bytes) -> str:
    """Guess a content type from the leading bytes of some content.

    Falls back to ``application/octet-stream`` when nothing matches.
    """
    data = data[:SNIFF_LENGTH]
    if not data:
        return "text/plain; charset=utf-8"

    for signature, content_type in _SIGNATURES:
        if data.startswith(signature):
            return content_type

    stripped = data.lstrip(b"\t\n\x0c\r ")
    if stripped[:5].lower() == b"<?xml":
        return "text/xml; charset=utf-8"

    if any(byte in _BINARY_BYTES for byte in data):
        return DEFAULT_CONTENT_TYPE
    return "text/plain; charset=utf-8"


def sniff_file(file: BinaryIO) -> str:
    """Detect the content type of an open binary file.

    Reads at most 512 bytes and restores the read position afterwards.
    """
    position = file.tell()
    try:
        head = file.read(SNIFF_LENGTH)
    except OSError as e:
        logger.debug(f"Could not sniff content type: {e}")
        return DEFAULT_CONTENT_TYPE
    finally:
        file.seek(position)
    return detect_content_type(head)


class AtomicFileWriter:
    """Writes a file through a temporary sibling and renames it into place.

    A failure or cancellation while writing removes the temporary file and
    leaves any existing destination untouched.
    """

    def __init__(self, destination: Path, mode: int = 0o644) -> None:
        self.destination = Path(destination)
        self.mode = mode
        self._tmp_path: Optional[Path] = None
        self._file = None

    async def __aenter__(self) -> "AtomicFileWriter":
        self.destination.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self.destination.parent,
            prefix=f".{self.destination.name}.",
            suffix=".tmp",
        )
        os.close(fd)
        self._tmp_path = Path(tmp_name)
        self._file = await aiofiles.open(self._tmp_path, "wb")
        return self

    async def write(self, chunk: bytes) -> None:
        await self._file.write(chunk)

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        committed = False
        try:
            await self._file.close()
            if exc_type is None:
                os.chmod(self._tmp_path, self.mode)
                os.replace(self._tmp_path, self.destination)
                committed = True
                logger.debug(f"Wrote {self.destination}")
        finally:
            if not committed:
                self._tmp_path.unlink(missing_ok=True)
                logger.debug(f"Discarded partial write to {self.destination}")
        return False
