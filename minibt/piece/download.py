"""Single-piece download over one peer connection.

The peer is driven through a fixed sequence: wait for its bitfield, declare
interest, wait to be unchoked, then request the piece one block at a time and
verify the assembled bytes against the torrent's SHA-1 digest.
"""

from __future__ import annotations

import hashlib
import logging
from enum import Enum
from typing import TYPE_CHECKING

from minibt.config import get_config
from minibt.models import DownloadConfig, Info, MessageType
from minibt.peer.messages import (
    BlockResponse,
    PeerMessage,
    bitfield_has_piece,
    interested,
    request,
)
from minibt.utils.exceptions import (
    IntegrityError,
    MiniBTError,
    PeerTimeoutError,
    ProtocolError,
)

if TYPE_CHECKING:
    from minibt.peer.connection import PeerConnection

logger = logging.getLogger(__name__)


class DownloadState(Enum):
    """States of a piece download."""

    AWAIT_BITFIELD = "await_bitfield"
    SEND_INTERESTED = "send_interested"
    AWAIT_UNCHOKE = "await_unchoke"
    REQUESTING = "requesting"
    ASSEMBLING = "assembling"
    COMPLETE = "complete"
    FAILED = "failed"


def block_layout(piece_size: int, block_size: int) -> list[tuple[int, int]]:
    """Return ``(begin, length)`` for each block of a piece, in order.

    Every block is ``block_size`` long except the last, which holds the
    remainder.
    """
    return [
        (begin, min(block_size, piece_size - begin))
        for begin in range(0, piece_size, block_size)
    ]


class PieceDownloader:
    """Downloads and verifies one piece from an unchoking peer.

    One request is outstanding at a time. A downloader is single-use: once it
    reaches COMPLETE or FAILED, create a new one for the next piece.
    """

    def __init__(
        self,
        connection: PeerConnection,
        info: Info,
        config: DownloadConfig | None = None,
    ) -> None:
        """Initialize the downloader.

        Args:
            connection: Handshaken peer connection
            info: Info dictionary of the torrent being downloaded
            config: Download configuration (defaults to the global config)

        """
        self.connection = connection
        self.info = info
        self.config = config or get_config().download
        self.state = DownloadState.AWAIT_BITFIELD
        self.peer_bitfield: bytes | None = None
        self._received: set[tuple[int, int]] = set()

    def _set_state(self, state: DownloadState) -> None:
        logger.debug("Piece download state %s -> %s", self.state.name, state.name)
        self.state = state

    async def download(self, index: int) -> bytes:
        """Download piece ``index`` and return its verified bytes.

        Args:
            index: Zero-based piece index

        Returns:
            The complete piece, whose SHA-1 matches the torrent

        Raises:
            FormatError: If ``index`` is outside the torrent
            ProtocolError: If the peer breaks the expected message order
            IntegrityError: If a block or the piece digest does not match
            PeerIOError: If the connection fails or times out

        """
        if self.state is not DownloadState.AWAIT_BITFIELD:
            msg = f"Downloader already used (state {self.state.name})"
            raise ProtocolError(msg)

        try:
            piece_size = self.info.piece_size(index)
            await self._await_bitfield(index)
            self._set_state(DownloadState.SEND_INTERESTED)
            await self.connection.send(interested())
            self._set_state(DownloadState.AWAIT_UNCHOKE)
            await self._await_unchoke()
            self._set_state(DownloadState.REQUESTING)
            blocks = await self._request_blocks(index, piece_size)
            self._set_state(DownloadState.ASSEMBLING)
            data = self._assemble(index, blocks)
        except MiniBTError:
            self._set_state(DownloadState.FAILED)
            raise

        self._set_state(DownloadState.COMPLETE)
        logger.info("Downloaded piece %d (%d bytes)", index, len(data))
        return data

    async def _next_message(self) -> PeerMessage:
        """Receive the next message that is not a keep-alive."""
        while True:
            message = await self.connection.receive()
            if not message.is_keep_alive:
                return message

    async def _await_bitfield(self, index: int) -> None:
        message = await self._next_message()
        if message.message_id != MessageType.BITFIELD:
            msg = f"Expected bitfield, got {message.name}"
            raise ProtocolError(msg)
        self.peer_bitfield = message.payload
        if not bitfield_has_piece(message.payload, index):
            msg = f"Peer does not have piece {index}"
            raise ProtocolError(msg)

    async def _await_unchoke(self) -> None:
        message = await self._next_message()
        if message.message_id != MessageType.UNCHOKE:
            msg = f"Expected unchoke, got {message.name}"
            raise ProtocolError(msg)

    async def _wait_while_choked(self) -> None:
        """Drop everything until the peer unchokes us again."""
        while True:
            message = await self._next_message()
            if message.message_id == MessageType.UNCHOKE:
                return
            logger.debug("Ignoring %s while choked", message.name)

    async def _request_blocks(self, index: int, piece_size: int) -> list[bytes]:
        blocks = []
        for begin, length in block_layout(piece_size, self.config.block_size):
            blocks.append(await self._fetch_block(index, begin, length))
            self._received.add((index, begin))
        return blocks

    async def _fetch_block(self, index: int, begin: int, length: int) -> bytes:
        """Request one block, retrying on mismatch or timeout."""
        attempt = 0
        while True:
            await self.connection.send(request(index, begin, length))
            try:
                block = await self._await_block(index, begin, length)
            except (IntegrityError, PeerTimeoutError) as e:
                attempt += 1
                if attempt > self.config.max_block_retries:
                    raise
                logger.warning(
                    "Retrying block %d:%d (attempt %d/%d): %s",
                    index,
                    begin,
                    attempt,
                    self.config.max_block_retries,
                    e,
                )
                continue
            if block is not None:
                return block
            # Choked and unchoked again; request the same block once more

    async def _await_block(self, index: int, begin: int, length: int) -> bytes | None:
        """Wait for the Piece answering one request.

        Returns None if the peer choked us before answering.
        """
        while True:
            message = await self._next_message()
            message_type = message.message_type

            if message_type is MessageType.PIECE:
                response = BlockResponse.from_payload(message.payload)
                if (response.piece_index, response.begin) in self._received:
                    # Late answer to a request that was retried
                    logger.debug(
                        "Ignoring duplicate block %d:%d",
                        response.piece_index,
                        response.begin,
                    )
                    continue
                self._check_block(response, index, begin, length)
                return response.block
            if message_type is MessageType.CHOKE:
                logger.info("Choked by %s, waiting for unchoke", self.connection.peer_info)
                await self._wait_while_choked()
                return None
            if message_type is MessageType.BITFIELD:
                msg = "Bitfield is only valid as the first message"
                raise ProtocolError(msg)
            logger.debug("Ignoring %s while requesting", message.name)

    @staticmethod
    def _check_block(
        response: BlockResponse, index: int, begin: int, length: int
    ) -> None:
        if response.piece_index != index or response.begin != begin:
            msg = (
                f"Unexpected block {response.piece_index}:{response.begin}, "
                f"requested {index}:{begin}"
            )
            raise IntegrityError(
                msg, {"piece_index": response.piece_index, "begin": response.begin}
            )
        if len(response.block) != length:
            msg = f"Block {index}:{begin} is {len(response.block)} bytes, requested {length}"
            raise IntegrityError(msg, {"length": len(response.block)})

    def _assemble(self, index: int, blocks: list[bytes]) -> bytes:
        data = b"".join(blocks)
        expected = self.info.piece_hash(index)
        actual = hashlib.sha1(data).digest()  # nosec B324 - SHA-1 is required by the protocol
        if actual != expected:
            msg = f"Piece {index} hash mismatch"
            raise IntegrityError(
                msg, {"expected": expected.hex(), "actual": actual.hex()}
            )
        return data
