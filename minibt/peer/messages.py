"""Peer wire message framing.

Every message after the handshake is framed as a 4-byte big-endian length
followed by that many bytes: one id byte and the payload. A zero length is a
keep-alive with neither id nor payload.
"""

from __future__ import annotations

import asyncio
import struct
from dataclasses import dataclass

from minibt.models import MessageType
from minibt.utils.exceptions import MessageError, PeerIOError

LENGTH_PREFIX = struct.Struct("!I")
BLOCK_HEADER = struct.Struct("!II")
BLOCK_REQUEST = struct.Struct("!III")

# 1 MiB block + 8-byte piece header + id byte
DEFAULT_MAX_MESSAGE_LENGTH = (1 << 20) + 9


@dataclass(frozen=True)
class PeerMessage:
    """A framed peer message.

    ``message_id`` is ``None`` only for keep-alives. Any byte value is
    accepted so ids this client does not know still parse.
    """

    message_id: int | None
    payload: bytes = b""

    def __post_init__(self) -> None:
        """Validate id range and keep-alive shape."""
        if self.message_id is None:
            if self.payload:
                msg = "Keep-alive cannot carry a payload"
                raise MessageError(msg)
        elif not 0 <= self.message_id <= 255:
            msg = f"Message id must fit in one byte, got {self.message_id}"
            raise MessageError(msg)

    @property
    def is_keep_alive(self) -> bool:
        """Whether this is the zero-length keep-alive."""
        return self.message_id is None

    @property
    def message_type(self) -> MessageType | None:
        """Known message type, or None for keep-alives and unknown ids."""
        if self.message_id is None:
            return None
        try:
            return MessageType(self.message_id)
        except ValueError:
            return None

    @property
    def name(self) -> str:
        """Human-readable message name for logs and errors."""
        if self.message_id is None:
            return "keep-alive"
        message_type = self.message_type
        return message_type.name.lower() if message_type else f"id {self.message_id}"

    def encode(self) -> bytes:
        """Encode the message including its length prefix."""
        return encode_message(self)


KEEP_ALIVE = PeerMessage(None)


@dataclass(frozen=True)
class BlockRequest:
    """Payload of Request and Cancel messages."""

    piece_index: int
    begin: int
    length: int

    def to_payload(self) -> bytes:
        """Pack as three big-endian 32-bit integers."""
        return BLOCK_REQUEST.pack(self.piece_index, self.begin, self.length)

    @classmethod
    def from_payload(cls, payload: bytes) -> BlockRequest:
        """Unpack a 12-byte Request/Cancel payload."""
        if len(payload) != BLOCK_REQUEST.size:
            msg = f"Request payload must be {BLOCK_REQUEST.size} bytes, got {len(payload)}"
            raise MessageError(msg)
        return cls(*BLOCK_REQUEST.unpack(payload))


@dataclass(frozen=True)
class BlockResponse:
    """Payload of a Piece message."""

    piece_index: int
    begin: int
    block: bytes

    def to_payload(self) -> bytes:
        """Pack index and begin followed by the block bytes."""
        return BLOCK_HEADER.pack(self.piece_index, self.begin) + self.block

    @classmethod
    def from_payload(cls, payload: bytes) -> BlockResponse:
        """Unpack a Piece payload; the block is everything after 8 bytes."""
        if len(payload) < BLOCK_HEADER.size:
            msg = f"Piece payload too short: {len(payload)} bytes"
            raise MessageError(msg)
        piece_index, begin = BLOCK_HEADER.unpack_from(payload)
        return cls(piece_index, begin, payload[BLOCK_HEADER.size :])


def choke() -> PeerMessage:
    """Build a Choke message."""
    return PeerMessage(MessageType.CHOKE)


def unchoke() -> PeerMessage:
    """Build an Unchoke message."""
    return PeerMessage(MessageType.UNCHOKE)


def interested() -> PeerMessage:
    """Build an Interested message."""
    return PeerMessage(MessageType.INTERESTED)


def not_interested() -> PeerMessage:
    """Build a NotInterested message."""
    return PeerMessage(MessageType.NOT_INTERESTED)


def have(piece_index: int) -> PeerMessage:
    """Build a Have message."""
    return PeerMessage(MessageType.HAVE, LENGTH_PREFIX.pack(piece_index))


def bitfield(data: bytes) -> PeerMessage:
    """Build a Bitfield message."""
    return PeerMessage(MessageType.BITFIELD, bytes(data))


def request(piece_index: int, begin: int, length: int) -> PeerMessage:
    """Build a Request message."""
    return PeerMessage(
        MessageType.REQUEST, BlockRequest(piece_index, begin, length).to_payload()
    )


def piece(piece_index: int, begin: int, block: bytes) -> PeerMessage:
    """Build a Piece message."""
    return PeerMessage(
        MessageType.PIECE, BlockResponse(piece_index, begin, block).to_payload()
    )


def cancel(piece_index: int, begin: int, length: int) -> PeerMessage:
    """Build a Cancel message."""
    return PeerMessage(
        MessageType.CANCEL, BlockRequest(piece_index, begin, length).to_payload()
    )


def decode_have(payload: bytes) -> int:
    """Return the piece index carried by a Have payload."""
    if len(payload) != LENGTH_PREFIX.size:
        msg = f"Have payload must be 4 bytes, got {len(payload)}"
        raise MessageError(msg)
    return LENGTH_PREFIX.unpack(payload)[0]


def bitfield_has_piece(data: bytes, piece_index: int) -> bool:
    """Check a bitfield bit; the high bit of byte 0 is piece 0."""
    byte_index, bit_index = divmod(piece_index, 8)
    if piece_index < 0 or byte_index >= len(data):
        return False
    return bool(data[byte_index] & (0x80 >> bit_index))


def encode_message(message: PeerMessage) -> bytes:
    """Encode a message as <length><id><payload>."""
    if message.message_id is None:
        return LENGTH_PREFIX.pack(0)
    return (
        LENGTH_PREFIX.pack(1 + len(message.payload))
        + struct.pack("B", message.message_id)
        + message.payload
    )


def decode_frame(
    data: bytes, max_length: int = DEFAULT_MAX_MESSAGE_LENGTH
) -> PeerMessage:
    """Decode one complete frame (length prefix included).

    Raises:
        MessageError: If the frame is truncated, has trailing bytes or is
            longer than ``max_length``

    """
    if len(data) < LENGTH_PREFIX.size:
        msg = f"Frame too short: {len(data)} bytes"
        raise MessageError(msg)
    (length,) = LENGTH_PREFIX.unpack_from(data)
    _check_length(length, max_length)
    if len(data) != LENGTH_PREFIX.size + length:
        msg = f"Frame length mismatch: header says {length}, got {len(data) - LENGTH_PREFIX.size}"
        raise MessageError(msg)
    if length == 0:
        return KEEP_ALIVE
    return PeerMessage(data[4], data[5:])


def _check_length(length: int, max_length: int) -> None:
    if length > max_length:
        msg = f"Message length {length} exceeds maximum {max_length}"
        raise MessageError(msg, {"length": length, "max_length": max_length})


async def read_message(
    reader: asyncio.StreamReader, max_length: int = DEFAULT_MAX_MESSAGE_LENGTH
) -> PeerMessage:
    """Read one framed message from a stream.

    The length is checked against ``max_length`` before any payload buffer
    is allocated.

    Raises:
        MessageError: If the frame is longer than ``max_length``
        PeerIOError: If the connection closes mid-frame

    """
    try:
        header = await reader.readexactly(LENGTH_PREFIX.size)
        (length,) = LENGTH_PREFIX.unpack(header)
        if length == 0:
            return KEEP_ALIVE
        _check_length(length, max_length)
        body = await reader.readexactly(length)
    except asyncio.IncompleteReadError as e:
        msg = f"Connection closed mid-frame ({len(e.partial)} bytes of {e.expected} read)"
        raise PeerIOError(msg) from e
    except (ConnectionError, OSError) as e:
        msg = f"Failed to read message: {e}"
        raise PeerIOError(msg) from e
    return PeerMessage(body[0], body[1:])


async def write_message(writer: asyncio.StreamWriter, message: PeerMessage) -> None:
    """Write one framed message and drain the transport."""
    try:
        writer.write(encode_message(message))
        await writer.drain()
    except (ConnectionError, OSError) as e:
        msg = f"Failed to send {message.name}: {e}"
        raise PeerIOError(msg) from e
