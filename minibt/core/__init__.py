"""Core bencode codec and torrent metainfo parsing."""

from __future__ import annotations

from minibt.core.bencode import decode, decode_prefix, encode, to_jsonable
from minibt.core.torrent import TorrentParser, parse_metainfo

__all__ = [
    "TorrentParser",
    "decode",
    "decode_prefix",
    "encode",
    "parse_metainfo",
    "to_jsonable",
]
