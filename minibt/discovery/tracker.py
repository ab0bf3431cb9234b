"""HTTP tracker announce protocol for the BitTorrent client.

Builds announce URLs, interprets compact tracker responses and performs the
HTTP exchange with aiohttp.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass
from typing import Any

import aiohttp
from yarl import URL

from minibt.config import get_config
from minibt.core.bencode import decode, expect_bytes, expect_dict, expect_int, expect_str
from minibt.models import SHA1_LENGTH, Metainfo, PeerInfo, TrackerResponse
from minibt.utils.exceptions import FormatError, TrackerError

logger = logging.getLogger(__name__)

COMPACT_PEER_LENGTH = 6


@dataclass(frozen=True)
class TrackerRequest:
    """Parameters of a single announce."""

    info_hash: bytes
    peer_id: bytes
    port: int = 6881
    uploaded: int = 0
    downloaded: int = 0
    left: int = 0
    compact: bool = True

    def __post_init__(self) -> None:
        """Validate binary field lengths."""
        if len(self.info_hash) != SHA1_LENGTH:
            msg = f"Info hash must be {SHA1_LENGTH} bytes, got {len(self.info_hash)}"
            raise FormatError(msg)
        if len(self.peer_id) != 20:
            msg = f"Peer ID must be 20 bytes, got {len(self.peer_id)}"
            raise FormatError(msg)


def generate_peer_id(prefix: str | None = None) -> bytes:
    """Generate a peer ID: Azureus-style prefix followed by random bytes."""
    if prefix is None:
        prefix = get_config().network.peer_id_prefix
    raw_prefix = prefix.encode("utf-8")[:20]
    return raw_prefix + secrets.token_bytes(20 - len(raw_prefix))


def percent_encode_bytes(data: bytes) -> str:
    """Percent-encode every byte of ``data``, unreserved characters included."""
    return "".join(f"%{b:02X}" for b in data)


def build_announce_url(metainfo: Metainfo, request: TrackerRequest) -> str:
    """Build the complete tracker URL with all required parameters.

    Parameters are emitted in a fixed order: info_hash, peer_id, port,
    uploaded, downloaded, left, compact.

    Args:
        metainfo: Parsed torrent
        request: Announce parameters

    Returns:
        Complete tracker URL with query string

    """
    params = [
        ("info_hash", percent_encode_bytes(request.info_hash)),
        ("peer_id", percent_encode_bytes(request.peer_id)),
        ("port", str(request.port)),
        ("uploaded", str(request.uploaded)),
        ("downloaded", str(request.downloaded)),
        ("left", str(request.left)),
        ("compact", "1" if request.compact else "0"),
    ]
    base_url = metainfo.announce
    separator = "&" if "?" in base_url else "?"
    query_string = "&".join(f"{key}={value}" for key, value in params)
    return f"{base_url}{separator}{query_string}"


def parse_compact_peers(peers_data: bytes) -> list[PeerInfo]:
    """Parse compact peer format.

    In compact format, peers are encoded as 6 bytes per peer:
    - 4 bytes: IPv4 address (network byte order)
    - 2 bytes: port (network byte order)

    Raises:
        FormatError: If the data length is not a multiple of 6

    """
    if len(peers_data) % COMPACT_PEER_LENGTH != 0:
        msg = f"Invalid compact peer data length: {len(peers_data)} bytes"
        raise FormatError(msg)

    peers = []
    for start in range(0, len(peers_data), COMPACT_PEER_LENGTH):
        chunk = peers_data[start : start + COMPACT_PEER_LENGTH]
        ip = ".".join(str(b) for b in chunk[0:4])
        port = int.from_bytes(chunk[4:6], byteorder="big")
        peers.append(PeerInfo(ip=ip, port=port))

    return peers


def parse_response(value: Any) -> TrackerResponse:
    """Interpret a decoded tracker response.

    Raises:
        TrackerError: If the tracker reported a failure reason
        FormatError: If a required field is missing or malformed

    """
    response = expect_dict(value, "tracker response")

    if b"failure reason" in response:
        reason = expect_bytes(response[b"failure reason"], "failure reason")
        msg = f"Tracker failure: {reason.decode('utf-8', errors='replace')}"
        raise TrackerError(msg)

    if b"interval" not in response:
        msg = "Missing interval in tracker response"
        raise FormatError(msg)
    if b"peers" not in response:
        msg = "Missing peers in tracker response"
        raise FormatError(msg)

    interval = expect_int(response[b"interval"], "interval")
    if interval < 0:
        msg = f"Field 'interval' must be >= 0, got {interval}"
        raise FormatError(msg)

    peers_data = response[b"peers"]
    if not isinstance(peers_data, bytes):
        msg = "Only the compact peer list format is supported"
        raise FormatError(msg)
    peers = parse_compact_peers(peers_data)

    complete = response.get(b"complete")
    incomplete = response.get(b"incomplete")
    warning = (
        expect_str(response[b"warning message"], "warning message")
        if b"warning message" in response
        else None
    )

    return TrackerResponse(
        interval=interval,
        peers=peers,
        complete=expect_int(complete, "complete") if complete is not None else None,
        incomplete=expect_int(incomplete, "incomplete")
        if incomplete is not None
        else None,
        warning_message=warning,
    )


class AsyncTrackerClient:
    """Async client for announcing to an HTTP tracker."""

    def __init__(self, user_agent: str = "minibt/0.1.0"):
        """Initialize the async tracker client."""
        self.config = get_config()
        self.user_agent = user_agent
        self.session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> AsyncTrackerClient:
        """Start the client on context entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Stop the client on context exit."""
        await self.stop()

    async def start(self) -> None:
        """Start the async tracker client."""
        timeout = aiohttp.ClientTimeout(
            total=self.config.network.connection_timeout,
            connect=self.config.network.connection_timeout,
        )
        self.session = aiohttp.ClientSession(
            timeout=timeout,
            headers={"User-Agent": self.user_agent},
        )
        logger.debug("Async tracker client started")

    async def stop(self) -> None:
        """Stop the async tracker client."""
        if self.session:
            await self.session.close()
            self.session = None
        logger.debug("Async tracker client stopped")

    async def announce(
        self, metainfo: Metainfo, request: TrackerRequest
    ) -> TrackerResponse:
        """Announce to the tracker and get the peer list.

        Args:
            metainfo: Parsed torrent
            request: Announce parameters

        Returns:
            TrackerResponse with the compact peer list decoded

        Raises:
            TrackerError: If the HTTP exchange fails or the tracker refuses
            FormatError: If the response body is malformed

        """
        url = build_announce_url(metainfo, request)
        logger.info("Announcing to %s", metainfo.announce)
        body = await self._make_request(url)
        response = parse_response(decode(body))
        if response.warning_message:
            logger.warning("Tracker warning: %s", response.warning_message)
        logger.info(
            "Tracker returned %d peers (interval %ds)",
            len(response.peers),
            response.interval,
        )
        return response

    async def _make_request(self, url: str) -> bytes:
        """Make async HTTP GET request to tracker."""
        if self.session is None:
            msg = "Tracker client not started"
            raise TrackerError(msg)
        try:
            # The query string is already percent-encoded byte by byte
            async with self.session.get(URL(url, encoded=True)) as response:
                if response.status != 200:
                    msg = f"HTTP {response.status}: {response.reason}"
                    raise TrackerError(msg)
                return await response.read()
        except aiohttp.ClientError as e:
            msg = f"Network error: {e}"
            raise TrackerError(msg) from e
        except asyncio.TimeoutError as e:
            msg = "Tracker request timed out"
            raise TrackerError(msg) from e
