"""BitTorrent handshake protocol.

Both sides exchange a fixed 68-byte frame before any other peer message:
<pstrlen=19><"BitTorrent protocol"><8 reserved><20 info hash><20 peer id>
"""

from __future__ import annotations

import asyncio
import logging
import struct

from minibt.utils.exceptions import HandshakeError, PeerIOError

logger = logging.getLogger(__name__)

HANDSHAKE_LENGTH = 68


class Handshake:
    """BitTorrent handshake message."""

    PROTOCOL_STRING: bytes = b"BitTorrent protocol"
    RESERVED_BYTES: bytes = b"\x00" * 8

    def __init__(
        self, info_hash: bytes, peer_id: bytes, reserved: bytes = RESERVED_BYTES
    ) -> None:
        """Initialize handshake.

        Args:
            info_hash: 20-byte SHA-1 hash of info dictionary
            peer_id: 20-byte peer ID
            reserved: 8 reserved bytes (all zero when we send)

        """
        if len(info_hash) != 20:
            msg = f"Info hash must be 20 bytes, got {len(info_hash)}"
            raise HandshakeError(msg)
        if len(peer_id) != 20:
            msg = f"Peer ID must be 20 bytes, got {len(peer_id)}"
            raise HandshakeError(msg)
        if len(reserved) != 8:
            msg = f"Reserved must be 8 bytes, got {len(reserved)}"
            raise HandshakeError(msg)

        self.info_hash: bytes = info_hash
        self.peer_id: bytes = peer_id
        self.reserved: bytes = reserved

    def __repr__(self) -> str:
        """Return a readable representation."""
        return f"Handshake(info_hash={self.info_hash.hex()}, peer_id={self.peer_id.hex()})"

    def encode(self) -> bytes:
        """Encode handshake to bytes.

        Format: <protocol len><protocol><reserved><info_hash><peer_id>
        Total: 1 + 19 + 8 + 20 + 20 = 68 bytes
        """
        return (
            struct.pack("B", len(self.PROTOCOL_STRING))
            + self.PROTOCOL_STRING
            + self.reserved
            + self.info_hash
            + self.peer_id
        )

    @classmethod
    def decode(cls, data: bytes) -> Handshake:
        """Decode handshake from bytes.

        Reserved bytes are passed through without validation.

        Raises:
            HandshakeError: If the frame size, length byte or literal is wrong

        """
        if len(data) != HANDSHAKE_LENGTH:
            msg = f"Handshake must be {HANDSHAKE_LENGTH} bytes, got {len(data)}"
            raise HandshakeError(msg)

        protocol_len = data[0]
        if protocol_len != len(cls.PROTOCOL_STRING):
            msg = f"Invalid protocol length: {protocol_len}"
            raise HandshakeError(msg)

        protocol_string = data[1:20]
        if protocol_string != cls.PROTOCOL_STRING:
            msg = f"Invalid protocol string: {protocol_string!r}"
            raise HandshakeError(msg)

        return cls(info_hash=data[28:48], peer_id=data[48:68], reserved=data[20:28])


async def send_handshake(writer: asyncio.StreamWriter, handshake: Handshake) -> None:
    """Write the 68-byte frame and wait until it has left the local buffer."""
    try:
        writer.write(handshake.encode())
        await writer.drain()
    except (ConnectionError, OSError) as e:
        msg = f"Failed to send handshake: {e}"
        raise PeerIOError(msg) from e


async def receive_handshake(reader: asyncio.StreamReader) -> Handshake:
    """Read exactly one 68-byte handshake frame.

    Raises:
        PeerIOError: If the connection closes before 68 bytes arrive
        HandshakeError: If the frame is not a BitTorrent handshake

    """
    try:
        data = await reader.readexactly(HANDSHAKE_LENGTH)
    except asyncio.IncompleteReadError as e:
        msg = f"Connection closed during handshake ({len(e.partial)} of {HANDSHAKE_LENGTH} bytes)"
        raise PeerIOError(msg) from e
    except (ConnectionError, OSError) as e:
        msg = f"Failed to receive handshake: {e}"
        raise PeerIOError(msg) from e

    handshake = Handshake.decode(data)
    logger.debug("Received handshake from peer %s", handshake.peer_id.hex())
    return handshake
