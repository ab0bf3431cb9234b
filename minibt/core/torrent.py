"""Torrent file parsing for the BitTorrent client.

This module interprets a decoded bencode tree as single-file torrent
metainfo and calculates the info hash as required by the BitTorrent
protocol.
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from minibt.core.bencode import (
    decode,
    encode,
    expect_bytes,
    expect_dict,
    expect_int,
    expect_str,
)
from minibt.models import SHA1_LENGTH, Info, Metainfo
from minibt.utils.exceptions import FormatError, TorrentError

logger = logging.getLogger(__name__)


def _require(data: dict[bytes, Any], key: bytes, where: str) -> Any:
    if key not in data:
        msg = f"Missing required key '{key.decode()}' in {where}"
        raise FormatError(msg)
    return data[key]


def split_piece_hashes(pieces: bytes) -> tuple[bytes, ...]:
    """Split the concatenated ``pieces`` string into 20-byte digests."""
    if len(pieces) % SHA1_LENGTH != 0:
        msg = (
            f"Field 'pieces' length {len(pieces)} is not a multiple of {SHA1_LENGTH}"
        )
        raise FormatError(msg)
    return tuple(
        pieces[i : i + SHA1_LENGTH] for i in range(0, len(pieces), SHA1_LENGTH)
    )


def parse_info(value: Any) -> Info:
    """Interpret the ``info`` sub-value of a torrent.

    The info hash is the SHA-1 of the canonical encoding of the whole
    dictionary, unknown keys included.

    Raises:
        FormatError: On a missing key, wrong value kind or broken invariant

    """
    info = expect_dict(value, "info")
    info_hash = hashlib.sha1(encode(info)).digest()  # nosec B324 - protocol hash

    if b"files" in info:
        msg = "Multi-file torrents are not supported"
        raise TorrentError(msg)

    length = expect_int(_require(info, b"length", "info"), "length")
    if length < 0:
        msg = f"Field 'length' must be >= 0, got {length}"
        raise FormatError(msg)

    name = expect_str(_require(info, b"name", "info"), "name")

    piece_length = expect_int(_require(info, b"piece length", "info"), "piece length")
    if piece_length <= 0:
        msg = f"Field 'piece length' must be > 0, got {piece_length}"
        raise FormatError(msg)

    piece_hashes = split_piece_hashes(
        expect_bytes(_require(info, b"pieces", "info"), "pieces")
    )

    try:
        return Info(
            length=length,
            name=name,
            piece_length=piece_length,
            piece_hashes=piece_hashes,
            info_hash=info_hash,
        )
    except ValidationError as e:
        msg = f"Invalid info dictionary: {e.errors()[0]['msg']}"
        raise FormatError(msg) from e


def parse_metainfo(value: Any) -> Metainfo:
    """Interpret a decoded bencode tree as torrent metainfo.

    Args:
        value: Decoded root value of a .torrent file

    Returns:
        Immutable Metainfo

    Raises:
        FormatError: If a required field is missing or malformed

    """
    root = expect_dict(value, "root")
    announce = expect_str(_require(root, b"announce", "torrent"), "announce")
    info = parse_info(_require(root, b"info", "torrent"))

    comment = expect_str(root[b"comment"], "comment") if b"comment" in root else None
    created_by = (
        expect_str(root[b"created by"], "created by")
        if b"created by" in root
        else None
    )
    creation_date = (
        expect_int(root[b"creation date"], "creation date")
        if b"creation date" in root
        else None
    )

    return Metainfo(
        announce=announce,
        info=info,
        comment=comment,
        created_by=created_by,
        creation_date=creation_date,
    )


class TorrentParser:
    """Parser for BitTorrent torrent files."""

    def parse(self, torrent_path: str | Path) -> Metainfo:
        """Parse a torrent file from a local path.

        Args:
            torrent_path: Path to local torrent file

        Returns:
            Metainfo parsed from the file

        Raises:
            TorrentError: If the file is missing or parsing fails

        """
        path = Path(torrent_path)
        if not path.is_file():
            msg = f"Torrent file not found: {path}"
            raise TorrentError(msg)

        try:
            data = path.read_bytes()
        except OSError as e:
            msg = f"Failed to read torrent file {path}: {e}"
            raise TorrentError(msg) from e

        metainfo = self.parse_bytes(data)
        logger.debug(
            "Parsed torrent %s: %d pieces, info hash %s",
            path,
            metainfo.info.num_pieces,
            metainfo.info_hash.hex(),
        )
        return metainfo

    def parse_bytes(self, data: bytes) -> Metainfo:
        """Parse in-memory torrent data."""
        try:
            return parse_metainfo(decode(data))
        except TorrentError:
            raise
        except FormatError as e:
            msg = f"Failed to parse torrent: {e}"
            raise TorrentError(msg, e.details) from e
