"""Command-level entry points for the BitTorrent client.

Each method is one user-facing operation. The CLI is a thin rendering layer
on top of ``TorrentClient``; every failure surfaces as a typed ``MiniBTError``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from minibt.config import get_config
from minibt.core.bencode import decode
from minibt.core.torrent import TorrentParser
from minibt.discovery.tracker import AsyncTrackerClient, TrackerRequest, generate_peer_id
from minibt.models import Config, Metainfo, PeerInfo
from minibt.peer.connection import PeerConnection
from minibt.piece.download import PieceDownloader
from minibt.storage.sink import PieceSink
from minibt.utils.exceptions import IntegrityError, NetworkError, ProtocolError, TrackerError
from minibt.utils.logging_config import LoggingContext

logger = logging.getLogger(__name__)


class TorrentClient:
    """Single-torrent client operations."""

    def __init__(self, config: Config | None = None, peer_id: bytes | None = None):
        """Initialize the client.

        Args:
            config: Configuration (defaults to the global config)
            peer_id: Our 20-byte peer id (generated when omitted)

        """
        self.config = config or get_config()
        self.peer_id = peer_id or generate_peer_id(self.config.network.peer_id_prefix)
        self.parser = TorrentParser()

    def decode_value(self, text: str | bytes) -> Any:
        """Decode one complete bencoded value."""
        data = text.encode("utf-8") if isinstance(text, str) else text
        return decode(data)

    def load(self, torrent_path: str | Path) -> Metainfo:
        """Read and parse a torrent file."""
        return self.parser.parse(torrent_path)

    def info(self, metainfo: Metainfo) -> dict[str, Any]:
        """Summarize a torrent for display."""
        info = metainfo.info
        return {
            "tracker_url": metainfo.announce,
            "name": info.name,
            "length": info.length,
            "info_hash": info.info_hash.hex(),
            "piece_length": info.piece_length,
            "num_pieces": info.num_pieces,
            "piece_hashes": [digest.hex() for digest in info.piece_hashes],
        }

    def _tracker_request(self, metainfo: Metainfo) -> TrackerRequest:
        return TrackerRequest(
            info_hash=metainfo.info_hash,
            peer_id=self.peer_id,
            port=self.config.network.listen_port,
            left=metainfo.info.length,
        )

    async def peers(self, metainfo: Metainfo) -> list[PeerInfo]:
        """Announce to the tracker and return the peer list."""
        with LoggingContext("announce", tracker=metainfo.announce):
            async with AsyncTrackerClient() as tracker:
                response = await tracker.announce(
                    metainfo, self._tracker_request(metainfo)
                )
        return response.peers

    async def handshake(self, metainfo: Metainfo, peer: PeerInfo) -> bytes:
        """Handshake with ``peer`` and return its peer id."""
        with LoggingContext("handshake", peer=str(peer)):
            async with await PeerConnection.open(
                peer, metainfo.info_hash, self.peer_id, self.config.network
            ) as connection:
                return connection.remote_peer_id

    async def download_piece(
        self,
        metainfo: Metainfo,
        index: int,
        output: str | Path,
        peers: list[PeerInfo] | None = None,
        in_place: bool = False,
    ) -> bytes:
        """Download one verified piece and write it to ``output``.

        Peers are tried in order until one delivers the piece. The piece is
        written at the start of ``output``, or at its absolute offset in the
        torrent's payload when ``in_place`` is set.

        Args:
            metainfo: Parsed torrent
            index: Zero-based piece index
            output: Output file path
            peers: Peers to try (announces to the tracker when omitted)
            in_place: Write at the piece's offset within the whole payload

        Returns:
            The verified piece bytes

        Raises:
            FormatError: If ``index`` is outside the torrent
            TrackerError: If the tracker returned no peers
            NetworkError, ProtocolError, IntegrityError: Error from the last
                peer tried when every peer failed

        """
        info = metainfo.info
        # Rejects a bad index before touching the network
        info.piece_size(index)

        if peers is None:
            peers = await self.peers(metainfo)
        if not peers:
            msg = "Tracker returned no peers"
            raise TrackerError(msg)

        with LoggingContext("download_piece", piece_index=index):
            data = await self._download_from_any(metainfo, index, peers)
            offset = index * info.piece_length if in_place else 0
            await PieceSink(output, truncate=not in_place).write(offset, data)
        return data

    async def _download_from_any(
        self, metainfo: Metainfo, index: int, peers: list[PeerInfo]
    ) -> bytes:
        last_error: Exception | None = None
        for peer in peers:
            try:
                async with await PeerConnection.open(
                    peer, metainfo.info_hash, self.peer_id, self.config.network
                ) as connection:
                    downloader = PieceDownloader(
                        connection, metainfo.info, self.config.download
                    )
                    return await downloader.download(index)
            except (NetworkError, ProtocolError, IntegrityError) as e:
                logger.warning("Piece %d failed from %s: %s", index, peer, e)
                last_error = e
        raise last_error
