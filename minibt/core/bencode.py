"""Bencode encoding and decoding for the BitTorrent protocol.

Values map onto Python's native types:

- byte string -> ``bytes`` (never assumed to be UTF-8)
- integer -> ``int``
- list -> ``list``
- dictionary -> ``dict[bytes, Any]`` whose iteration order is the ascending
  byte order of its keys

Dictionary ordering is load-bearing: the info hash of a torrent is the SHA-1
of the re-encoded ``info`` dictionary, so decoded dictionaries are always
rebuilt in canonical order.
"""

from __future__ import annotations

from typing import Any

from minibt.utils.exceptions import (
    BencodeDecodeError,
    BencodeEncodeError,
    FormatError,
)

__all__ = [
    "BencodeDecodeError",
    "BencodeDecoder",
    "BencodeEncodeError",
    "BencodeEncoder",
    "decode",
    "decode_prefix",
    "encode",
    "expect_bytes",
    "expect_dict",
    "expect_int",
    "expect_list",
    "expect_str",
    "to_jsonable",
]

_DIGITS = b"0123456789"

INT_MIN = -(2**63)
INT_MAX = 2**63 - 1
MAX_DEPTH = 256


class BencodeDecoder:
    """Decoder for bencoded data."""

    def __init__(self, data: bytes, max_depth: int = MAX_DEPTH) -> None:
        """Initialize decoder with the buffer to decode.

        Args:
            data: Bencoded bytes
            max_depth: Maximum nesting of lists and dictionaries

        """
        if not isinstance(data, (bytes, bytearray, memoryview)):
            msg = f"Expected bytes, got {type(data).__name__}"
            raise BencodeDecodeError(msg)
        self.data = bytes(data)
        self.pos = 0
        self.max_depth = max_depth
        self._depth = 0

    def decode(self) -> Any:
        """Decode the next value starting at the current position.

        After the call, ``pos`` is the number of bytes consumed so far.

        Raises:
            BencodeDecodeError: If the data is not valid bencode

        """
        if self.pos >= len(self.data):
            msg = "Unexpected end of data"
            raise BencodeDecodeError(msg, {"position": self.pos})

        lead = self.data[self.pos : self.pos + 1]
        if lead == b"i":
            return self._decode_int()
        if lead == b"l":
            return self._decode_list()
        if lead == b"d":
            return self._decode_dict()
        if lead in (b"0", b"1", b"2", b"3", b"4", b"5", b"6", b"7", b"8", b"9"):
            return self._decode_bytes()

        msg = f"Invalid bencode prefix {lead!r}"
        raise BencodeDecodeError(msg, {"position": self.pos})

    def _decode_int(self) -> int:
        end = self.data.find(b"e", self.pos + 1)
        if end == -1:
            msg = "Unterminated integer"
            raise BencodeDecodeError(msg, {"position": self.pos})

        digits = self.data[self.pos + 1 : end]
        negative = digits.startswith(b"-")
        magnitude = digits[1:] if negative else digits
        if not magnitude or any(b not in _DIGITS for b in magnitude):
            msg = f"Invalid integer {digits!r}"
            raise BencodeDecodeError(msg, {"position": self.pos})
        if magnitude.startswith(b"0") and (len(magnitude) > 1 or negative):
            msg = f"Non-canonical integer {digits!r}"
            raise BencodeDecodeError(msg, {"position": self.pos})

        value = int(digits)
        if not INT_MIN <= value <= INT_MAX:
            msg = f"Integer {digits!r} is outside the signed 64-bit range"
            raise BencodeDecodeError(msg, {"position": self.pos})

        self.pos = end + 1
        return value

    def _decode_bytes(self) -> bytes:
        colon = self.data.find(b":", self.pos)
        if colon == -1:
            msg = "Missing ':' in byte string length"
            raise BencodeDecodeError(msg, {"position": self.pos})

        length_text = self.data[self.pos : colon]
        if any(b not in _DIGITS for b in length_text):
            msg = f"Invalid byte string length {length_text!r}"
            raise BencodeDecodeError(msg, {"position": self.pos})
        if length_text.startswith(b"0") and len(length_text) > 1:
            msg = f"Non-canonical byte string length {length_text!r}"
            raise BencodeDecodeError(msg, {"position": self.pos})

        length = int(length_text)
        start = colon + 1
        end = start + length
        if end > len(self.data):
            msg = f"Byte string declares {length} bytes, only {len(self.data) - start} remain"
            raise BencodeDecodeError(msg, {"position": self.pos})

        self.pos = end
        return self.data[start:end]

    def _enter_container(self) -> None:
        if self._depth >= self.max_depth:
            msg = f"Nesting deeper than {self.max_depth} levels"
            raise BencodeDecodeError(msg, {"position": self.pos})
        self._depth += 1
        self.pos += 1

    def _decode_list(self) -> list[Any]:
        start = self.pos
        self._enter_container()
        items: list[Any] = []
        while True:
            if self.pos >= len(self.data):
                msg = "Unterminated list"
                raise BencodeDecodeError(msg, {"position": start})
            if self.data[self.pos] == ord("e"):
                self.pos += 1
                self._depth -= 1
                return items
            items.append(self.decode())

    def _decode_dict(self) -> dict[bytes, Any]:
        start = self.pos
        self._enter_container()
        items: dict[bytes, Any] = {}
        while True:
            if self.pos >= len(self.data):
                msg = "Unterminated dictionary"
                raise BencodeDecodeError(msg, {"position": start})
            if self.data[self.pos] == ord("e"):
                self.pos += 1
                self._depth -= 1
                # Rebuild in canonical key order whatever order keys arrived in
                return dict(sorted(items.items()))

            key_pos = self.pos
            key = self.decode()
            if not isinstance(key, bytes):
                msg = f"Dictionary key must be a byte string, got {type(key).__name__}"
                raise BencodeDecodeError(msg, {"position": key_pos})
            if key in items:
                msg = f"Duplicate dictionary key {key!r}"
                raise BencodeDecodeError(msg, {"position": key_pos})
            items[key] = self.decode()


class BencodeEncoder:
    """Encoder producing canonical bencode."""

    def encode(self, value: Any) -> bytes:
        """Encode a value to bencoded bytes.

        Args:
            value: bytes, str, int, list/tuple or dict

        Raises:
            BencodeEncodeError: If the value (or a nested value) is unsupported

        """
        out: list[bytes] = []
        self._encode_into(value, out)
        return b"".join(out)

    def _encode_into(self, value: Any, out: list[bytes]) -> None:
        # bool is an int subclass but has no bencode representation
        if isinstance(value, bool):
            msg = "Cannot encode bool"
            raise BencodeEncodeError(msg)
        if isinstance(value, int):
            if not INT_MIN <= value <= INT_MAX:
                msg = f"Integer {value} is outside the signed 64-bit range"
                raise BencodeEncodeError(msg)
            out.append(b"i%de" % value)
        elif isinstance(value, (bytes, bytearray, memoryview)):
            raw = bytes(value)
            out.append(b"%d:" % len(raw))
            out.append(raw)
        elif isinstance(value, str):
            self._encode_into(value.encode("utf-8"), out)
        elif isinstance(value, (list, tuple)):
            out.append(b"l")
            for item in value:
                self._encode_into(item, out)
            out.append(b"e")
        elif isinstance(value, dict):
            out.append(b"d")
            for key, item in sorted(self._dict_items(value)):
                self._encode_into(key, out)
                self._encode_into(item, out)
            out.append(b"e")
        else:
            msg = f"Cannot encode type {type(value).__name__}"
            raise BencodeEncodeError(msg)

    def _dict_items(self, value: dict[Any, Any]) -> list[tuple[bytes, Any]]:
        items: list[tuple[bytes, Any]] = []
        seen: set[bytes] = set()
        for key, item in value.items():
            if isinstance(key, str):
                key = key.encode("utf-8")
            elif isinstance(key, (bytearray, memoryview)):
                key = bytes(key)
            if not isinstance(key, bytes):
                msg = f"Dictionary key must be bytes or str, got {type(key).__name__}"
                raise BencodeEncodeError(msg)
            if key in seen:
                msg = f"Duplicate dictionary key {key!r}"
                raise BencodeEncodeError(msg)
            seen.add(key)
            items.append((key, item))
        return items


def decode_prefix(data: bytes) -> tuple[Any, int]:
    """Decode the first value in ``data``.

    Returns:
        Tuple of (value, number of bytes consumed)

    """
    decoder = BencodeDecoder(data)
    value = decoder.decode()
    return value, decoder.pos


def decode(data: bytes) -> Any:
    """Decode a buffer holding exactly one bencoded value."""
    value, consumed = decode_prefix(data)
    if consumed != len(data):
        msg = f"Trailing data after bencoded value ({len(data) - consumed} bytes)"
        raise BencodeDecodeError(msg, {"position": consumed})
    return value


def encode(value: Any) -> bytes:
    """Encode a value to bencoded bytes."""
    return BencodeEncoder().encode(value)


def expect_dict(value: Any, field: str) -> dict[bytes, Any]:
    """Return ``value`` if it is a dictionary, else raise FormatError."""
    if not isinstance(value, dict):
        msg = f"Field '{field}' must be a dictionary, got {type(value).__name__}"
        raise FormatError(msg)
    return value


def expect_list(value: Any, field: str) -> list[Any]:
    """Return ``value`` if it is a list, else raise FormatError."""
    if not isinstance(value, list):
        msg = f"Field '{field}' must be a list, got {type(value).__name__}"
        raise FormatError(msg)
    return value


def expect_bytes(value: Any, field: str) -> bytes:
    """Return ``value`` if it is a byte string, else raise FormatError."""
    if not isinstance(value, bytes):
        msg = f"Field '{field}' must be a byte string, got {type(value).__name__}"
        raise FormatError(msg)
    return value


def expect_int(value: Any, field: str) -> int:
    """Return ``value`` if it is an integer, else raise FormatError."""
    if isinstance(value, bool) or not isinstance(value, int):
        msg = f"Field '{field}' must be an integer, got {type(value).__name__}"
        raise FormatError(msg)
    return value


def expect_str(value: Any, field: str) -> str:
    """Return a byte string field decoded as UTF-8, else raise FormatError."""
    raw = expect_bytes(value, field)
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        msg = f"Field '{field}' is not valid UTF-8"
        raise FormatError(msg) from e


def to_jsonable(value: Any) -> Any:
    """Convert a decoded value tree into JSON-serializable Python objects.

    Byte strings become text (invalid UTF-8 is replaced), dictionary keys
    become text keys in the same canonical order.
    """
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, list):
        return [to_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {
            key.decode("utf-8", errors="replace"): to_jsonable(item)
            for key, item in value.items()
        }
    return value
