"""Parsing of dotted host application version strings."""

from __future__ import annotations

import re

_NUMBER = re.compile(r"\s*([+-]?\d+)")
_LONG_MIN = -(2**63)
_LONG_MAX = 2**63 - 1


def extract_version_quad(string: str) -> tuple[int, int, int, int]:
    """Parse up to four dot-separated integers, e.g. ``"7.1.431.0"``.

    Each component is read as a leading decimal number; one separator
    character is skipped after it. Missing or unparsable components are 0.
    """
    quad: list[int] = []
    pos = 0
    for _ in range(4):
        match = _NUMBER.match(string, pos)
        if match:
            value = int(match.group(1))
            quad.append(min(max(value, _LONG_MIN), _LONG_MAX))
            pos = match.end()
        else:
            quad.append(0)
        # Skip the separator while input remains; later components then
        # come out as zero once the string is exhausted.
        if pos < len(string):
            pos += 1
    return quad[0], quad[1], quad[2], quad[3]