"""Property-based tests for bencode encoding/decoding.

Tests invariants of the codec using Hypothesis for automatic test case
generation.
"""

from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

pytestmark = [pytest.mark.property, pytest.mark.core]

from minibt.core.bencode import decode, decode_prefix, encode

int64 = st.integers(min_value=-(2**63), max_value=2**63 - 1)

values = st.recursive(
    int64 | st.binary(max_size=64),
    lambda children: st.lists(children, max_size=5)
    | st.dictionaries(st.binary(max_size=16), children, max_size=5),
    max_leaves=20,
)


class TestBencodeProperties:
    """Property-based tests for bencode operations."""

    @given(values)
    def test_roundtrip(self, value):
        """Test decode(encode(v)) == v for any value tree."""
        assert decode(encode(value)) == value

    @given(values)
    def test_encoding_is_canonical(self, value):
        """Test re-encoding a decoded buffer reproduces it byte for byte."""
        encoded = encode(value)
        assert encode(decode(encoded)) == encoded

    @given(values, st.binary(max_size=32))
    def test_prefix_consumes_exactly_one_value(self, value, trailer):
        """Test decode_prefix stops at the end of the first value."""
        encoded = encode(value)
        decoded, consumed = decode_prefix(encoded + trailer)
        assert decoded == value
        assert consumed == len(encoded)

    @given(st.dictionaries(st.binary(max_size=16), int64, max_size=10))
    def test_dict_keys_sorted(self, dct):
        """Test decoded dictionaries iterate in ascending key order."""
        assert list(decode(encode(dct))) == sorted(dct)

    @given(st.text())
    def test_text_encodes_as_utf8(self, text):
        """Test text values encode as their UTF-8 bytes."""
        assert decode(encode(text)) == text.encode("utf-8")
