"""Tests for PeerConnection over loopback TCP."""

from __future__ import annotations

import asyncio
import socket

import pytest

pytestmark = [pytest.mark.unit, pytest.mark.peer]

from minibt.models import MessageType, NetworkConfig, PeerInfo
from minibt.peer import messages
from minibt.peer.connection import ConnectionState, PeerConnection
from minibt.peer.handshake import Handshake, receive_handshake, send_handshake
from minibt.peer.messages import read_message, write_message
from minibt.utils.exceptions import HandshakeError, PeerIOError, PeerTimeoutError

INFO_HASH = b"\xab" * 20
PEER_ID = b"-MB0100-localpeer001"
REMOTE_ID = b"-XX0001-remotepeer01"


def _free_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def network_config():
    """Network config with short timeouts."""
    return NetworkConfig(connection_timeout=2.0, read_timeout=0.5)


async def _serve(handler):
    server = await asyncio.start_server(handler, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    return server, PeerInfo(ip="127.0.0.1", port=port)


class TestPeerConnection:
    """Test cases for opening and using a peer connection."""

    @pytest.mark.asyncio
    async def test_open_and_exchange(self, network_config):
        """Test handshake, then messages in both directions."""
        received = asyncio.get_running_loop().create_future()

        async def handle(reader, writer):
            await receive_handshake(reader)
            await send_handshake(writer, Handshake(INFO_HASH, REMOTE_ID))
            await write_message(writer, messages.bitfield(b"\x80"))
            received.set_result(await read_message(reader))
            writer.close()

        server, peer = await _serve(handle)
        async with server:
            async with await PeerConnection.open(
                peer, INFO_HASH, PEER_ID, network_config
            ) as connection:
                assert connection.state is ConnectionState.CONNECTED
                assert connection.remote_peer_id == REMOTE_ID
                message = await connection.receive()
                assert message.message_type is MessageType.BITFIELD
                await connection.send(messages.interested())
                sent = await asyncio.wait_for(received, timeout=5)
            assert connection.state is ConnectionState.CLOSED

        assert sent.message_type is MessageType.INTERESTED

    @pytest.mark.asyncio
    async def test_info_hash_mismatch(self, network_config):
        """Test a peer answering for another torrent is rejected."""

        async def handle(reader, writer):
            await receive_handshake(reader)
            await send_handshake(writer, Handshake(b"\x00" * 20, REMOTE_ID))
            writer.close()

        server, peer = await _serve(handle)
        async with server:
            with pytest.raises(HandshakeError, match="Info hash mismatch"):
                await PeerConnection.open(peer, INFO_HASH, PEER_ID, network_config)

    @pytest.mark.asyncio
    async def test_peer_closes_during_handshake(self, network_config):
        """Test EOF during the handshake raises PeerIOError."""

        async def handle(reader, writer):
            await receive_handshake(reader)
            writer.close()

        server, peer = await _serve(handle)
        async with server:
            with pytest.raises(PeerIOError):
                await PeerConnection.open(peer, INFO_HASH, PEER_ID, network_config)

    @pytest.mark.asyncio
    async def test_receive_timeout(self, network_config):
        """Test a silent peer raises PeerTimeoutError."""
        release = asyncio.Event()

        async def handle(reader, writer):
            await receive_handshake(reader)
            await send_handshake(writer, Handshake(INFO_HASH, REMOTE_ID))
            await release.wait()
            writer.close()

        server, peer = await _serve(handle)
        async with server:
            async with await PeerConnection.open(
                peer, INFO_HASH, PEER_ID, network_config
            ) as connection:
                with pytest.raises(PeerTimeoutError):
                    await connection.receive()
            release.set()

    @pytest.mark.asyncio
    async def test_timeout_mid_frame_keeps_framing(self):
        """Test a peer stalling between header and body is read intact later."""
        config = NetworkConfig(connection_timeout=2.0, read_timeout=0.2)
        frame = messages.encode_message(messages.piece(0, 0, b"\x00" * 8 + b"\x07" * 64))
        release = asyncio.Event()

        async def handle(reader, writer):
            await receive_handshake(reader)
            await send_handshake(writer, Handshake(INFO_HASH, REMOTE_ID))
            writer.write(frame[:4])
            await writer.drain()
            await release.wait()
            writer.write(frame[4:])
            await write_message(writer, messages.unchoke())
            await writer.drain()
            await reader.read()
            writer.close()

        server, peer = await _serve(handle)
        async with server:
            async with await PeerConnection.open(peer, INFO_HASH, PEER_ID, config) as connection:
                with pytest.raises(PeerTimeoutError):
                    await connection.receive()
                release.set()
                message = await connection.receive()
                assert message.message_type is MessageType.PIECE
                assert message.payload[8:] == b"\x00" * 8 + b"\x07" * 64
                follow_up = await connection.receive()
                assert follow_up.message_type is MessageType.UNCHOKE

    @pytest.mark.asyncio
    async def test_close_with_read_in_flight(self, network_config):
        """Test closing after a timed-out read cancels it cleanly."""
        release = asyncio.Event()

        async def handle(reader, writer):
            await receive_handshake(reader)
            await send_handshake(writer, Handshake(INFO_HASH, REMOTE_ID))
            await release.wait()
            writer.close()

        server, peer = await _serve(handle)
        async with server:
            connection = await PeerConnection.open(peer, INFO_HASH, PEER_ID, network_config)
            with pytest.raises(PeerTimeoutError):
                await connection.receive()
            await connection.close()
            assert connection.state is ConnectionState.CLOSED
            with pytest.raises(PeerIOError, match="closed"):
                await connection.receive()
            release.set()

    @pytest.mark.asyncio
    async def test_connection_refused(self, network_config):
        """Test an unreachable peer raises PeerIOError."""
        peer = PeerInfo(ip="127.0.0.1", port=_free_port())
        with pytest.raises(PeerIOError, match="Failed to connect"):
            await PeerConnection.open(peer, INFO_HASH, PEER_ID, network_config)

    @pytest.mark.asyncio
    async def test_send_after_close(self, network_config):
        """Test using a closed connection raises PeerIOError."""

        async def handle(reader, writer):
            await receive_handshake(reader)
            await send_handshake(writer, Handshake(INFO_HASH, REMOTE_ID))
            writer.close()

        server, peer = await _serve(handle)
        async with server:
            connection = await PeerConnection.open(
                peer, INFO_HASH, PEER_ID, network_config
            )
            await connection.close()
            await connection.close()
            with pytest.raises(PeerIOError, match="closed"):
                await connection.send(messages.interested())
