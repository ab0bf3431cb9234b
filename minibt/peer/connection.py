"""Async TCP connection to a single peer.

Wraps an asyncio stream pair: establishes the connection, runs the
handshake, then sends and receives framed peer messages with bounded reads.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from enum import Enum

from minibt.config import get_config
from minibt.models import NetworkConfig, PeerInfo
from minibt.peer.handshake import Handshake, receive_handshake, send_handshake
from minibt.peer.messages import PeerMessage, read_message, write_message
from minibt.utils.exceptions import (
    HandshakeError,
    MiniBTError,
    PeerIOError,
    PeerTimeoutError,
)

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """States of a peer connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    HANDSHAKE_SENT = "handshake_sent"
    CONNECTED = "connected"
    CLOSED = "closed"


class PeerConnection:
    """A handshaken connection to one peer."""

    def __init__(
        self,
        peer_info: PeerInfo,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        config: NetworkConfig | None = None,
    ) -> None:
        """Wrap an already-open stream pair.

        Args:
            peer_info: Remote address
            reader: Stream reader of the TCP connection
            writer: Stream writer of the TCP connection
            config: Network configuration (defaults to the global config)

        """
        self.peer_info = peer_info
        self.reader = reader
        self.writer = writer
        self.config = config or get_config().network
        self.state = ConnectionState.CONNECTING
        self.remote_handshake: Handshake | None = None
        self._pending_read: asyncio.Future[PeerMessage] | None = None

    def __str__(self) -> str:
        """Return string representation of the connection."""
        return f"PeerConnection({self.peer_info}, state={self.state.value})"

    @property
    def remote_peer_id(self) -> bytes | None:
        """Peer id announced by the remote side, once handshaken."""
        if self.remote_handshake is None:
            return None
        return self.remote_handshake.peer_id

    @classmethod
    async def open(
        cls,
        peer_info: PeerInfo,
        info_hash: bytes,
        peer_id: bytes,
        config: NetworkConfig | None = None,
    ) -> PeerConnection:
        """Connect to a peer and complete the handshake.

        Raises:
            PeerIOError: If the TCP connection cannot be established
            PeerTimeoutError: If connecting or the handshake times out
            HandshakeError: If the peer answers with a bad handshake

        """
        config = config or get_config().network
        logger.info("Connecting to peer %s", peer_info)
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(peer_info.ip, peer_info.port),
                timeout=config.connection_timeout,
            )
        except asyncio.TimeoutError as e:
            msg = f"Timed out connecting to {peer_info}"
            raise PeerTimeoutError(msg) from e
        except OSError as e:
            msg = f"Failed to connect to {peer_info}: {e}"
            raise PeerIOError(msg) from e

        connection = cls(peer_info, reader, writer, config)
        try:
            await connection.handshake(info_hash, peer_id)
        except BaseException:
            await connection.close()
            raise
        return connection

    async def handshake(self, info_hash: bytes, peer_id: bytes) -> Handshake:
        """Exchange handshakes and check the remote info hash."""
        await send_handshake(self.writer, Handshake(info_hash, peer_id))
        self.state = ConnectionState.HANDSHAKE_SENT

        remote = await self._with_timeout(receive_handshake(self.reader), "handshake")
        if remote.info_hash != info_hash:
            msg = (
                f"Info hash mismatch: expected {info_hash.hex()}, "
                f"got {remote.info_hash.hex()}"
            )
            raise HandshakeError(msg)

        self.remote_handshake = remote
        self.state = ConnectionState.CONNECTED
        logger.info("Handshake complete with %s (peer id %s)", self.peer_info, remote.peer_id.hex())
        return remote

    async def send(self, message: PeerMessage) -> None:
        """Send one message and wait for the write buffer to drain."""
        self._ensure_open()
        await write_message(self.writer, message)
        logger.debug("Sent %s to %s", message.name, self.peer_info)

    async def receive(self) -> PeerMessage:
        """Receive one message, bounded by the read timeout.

        A timeout does not abandon the frame being read: the read keeps
        running and the next call picks it up, so the stream never loses its
        framing when a slow peer stalls mid-message.

        Raises:
            PeerTimeoutError: If no complete message arrives in time
            PeerIOError: If the connection fails or is closed
            MessageError: If the frame is malformed or too long

        """
        self._ensure_open()
        if self._pending_read is None:
            self._pending_read = asyncio.ensure_future(
                read_message(self.reader, self.config.max_message_length)
            )
        try:
            message = await self._with_timeout(
                asyncio.shield(self._pending_read), "message"
            )
        finally:
            if self._pending_read is not None and self._pending_read.done():
                self._pending_read = None
        logger.debug(
            "Received %s (%d bytes) from %s",
            message.name,
            len(message.payload),
            self.peer_info,
        )
        return message

    async def close(self) -> None:
        """Close the connection; safe to call more than once."""
        if self.state is ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSED
        if self._pending_read is not None:
            self._pending_read.cancel()
            with contextlib.suppress(asyncio.CancelledError, MiniBTError):
                await self._pending_read
            self._pending_read = None
        self.writer.close()
        with contextlib.suppress(ConnectionError, OSError):
            await self.writer.wait_closed()
        logger.debug("Closed connection to %s", self.peer_info)

    async def __aenter__(self) -> PeerConnection:
        """Return the open connection."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Close the connection on context exit."""
        await self.close()

    def _ensure_open(self) -> None:
        if self.state is ConnectionState.CLOSED:
            msg = f"Connection to {self.peer_info} is closed"
            raise PeerIOError(msg)

    async def _with_timeout(self, awaitable, what: str):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.config.read_timeout)
        except asyncio.TimeoutError as e:
            msg = f"Timed out waiting for {what} from {self.peer_info}"
            raise PeerTimeoutError(msg) from e
