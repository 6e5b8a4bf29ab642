from datetime import datetime, timezone

import pytest

from stakereg.canonical import jcs_canonicalize


def test_sorted_compact_utf8():
    assert jcs_canonicalize({"b": 1, "a": "é"}) == '{"a":"é","b":1}'.encode("utf-8")


def test_bytes_become_hex():
    assert jcs_canonicalize({"k": b"\xab\x01", "m": bytearray(b"")}) == b'{"k":"ab01","m":""}'


def test_floats_rejected():
    with pytest.raises(ValueError):
        jcs_canonicalize({"amount": 1.5})


def test_unknown_types_rejected():
    with pytest.raises(TypeError):
        jcs_canonicalize({"t": datetime(2026, 1, 2, tzinfo=timezone.utc)})


def test_nested_structures_are_order_independent():
    a = {"outer": {"y": [1, 2], "x": None}}
    b = {"outer": {"x": None, "y": (1, 2)}}
    assert jcs_canonicalize(a) == jcs_canonicalize(b)
