"""Version-aware ordering for chart version strings."""

from __future__ import annotations

import re
from typing import Iterable, Pattern, Union

_DIGIT_RUN = re.compile(r"([0-9]+)")


def version_ordinal(version: str) -> str:
    """Build a sort key where digit runs compare by numeric magnitude.

    Each run of ASCII digits loses its leading zeros and is prefixed with a
    character encoding its length, so ``"10.0.0"`` sorts after ``"9.3.4"``
    under plain string comparison.
    """
    parts = []
    for token in _DIGIT_RUN.split(version):
        if token and token[0].isascii() and token[0].isdigit():
            digits = token.lstrip("0") or "0"
            if len(digits) > 0xFF:
                raise ValueError(f"invalid version: {version!r}")
            parts.append(chr(len(digits)) + digits)
        else:
            parts.append(token)
    return "".join(parts)


def latest_matching(versions: Iterable[str], pattern: Union[str, Pattern[str]]) -> str:
    """Return the highest version that matches ``pattern``, or ``""``.

    ``pattern`` is searched anywhere in each version string.
    """
    regex = re.compile(pattern) if isinstance(pattern, str) else pattern

    latest = ""
    for candidate in versions:
        if not regex.search(candidate):
            continue
        if not latest or version_ordinal(latest) < version_ordinal(candidate):
            latest = candidate
    return latest
