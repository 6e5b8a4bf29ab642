"""Canonical JSON bytes for delegation signing and event digests.

Keys sorted, no insignificant whitespace, UTF-8. Integers, strings,
booleans, null, lists and objects pass through; bytes become lowercase
hex. Floats and any other type are refused so two encoders can never
disagree on the bytes behind a signature.
"""

from __future__ import annotations

import json
from typing import Any


def _plain(value: Any) -> Any:
    if value is None or isinstance(value, (str, bool, int)):
        return value
    if isinstance(value, float):
        raise ValueError("floats are not allowed in canonical JSON; use integers or strings")
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    raise TypeError(f"cannot canonicalize {type(value).__name__}")


def jcs_canonicalize(obj: Any) -> bytes:
    """Encode `obj` as canonical JSON bytes (RFC 8785 subset without floats)."""
    return json.dumps(_plain(obj), sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
