"""Tests for torrent metainfo parsing."""

from __future__ import annotations

import hashlib

import pytest

pytestmark = [pytest.mark.unit, pytest.mark.core]

from minibt.core.bencode import decode, encode
from minibt.core.torrent import TorrentParser, parse_metainfo, split_piece_hashes
from minibt.utils.exceptions import FormatError, TorrentError


def _root(info_overrides=None):
    info = {
        b"length": 40,
        b"name": b"file.txt",
        b"piece length": 32,
        b"pieces": b"a" * 20 + b"b" * 20,
    }
    info.update(info_overrides or {})
    return {b"announce": b"http://tracker.test/announce", b"info": info}


class TestParseMetainfo:
    """Test cases for interpreting decoded metainfo."""

    def test_parse_fields(self):
        """Test all required fields are extracted."""
        metainfo = parse_metainfo(decode(encode(_root())))
        assert metainfo.announce == "http://tracker.test/announce"
        assert metainfo.info.length == 40
        assert metainfo.info.name == "file.txt"
        assert metainfo.info.piece_length == 32
        assert metainfo.info.piece_hashes == (b"a" * 20, b"b" * 20)
        assert metainfo.info.num_pieces == 2

    def test_info_hash_is_sha1_of_encoded_info(self):
        """Test the info hash is the SHA-1 of the canonical info encoding."""
        root = _root()
        metainfo = parse_metainfo(decode(encode(root)))
        assert metainfo.info_hash == hashlib.sha1(encode(root[b"info"])).digest()

    def test_info_hash_covers_unknown_keys(self):
        """Test unknown info keys take part in the info hash."""
        plain = parse_metainfo(decode(encode(_root())))
        private = parse_metainfo(decode(encode(_root({b"private": 1}))))
        assert plain.info_hash != private.info_hash

    def test_info_hash_independent_of_source_key_order(self):
        """Test a non-canonically ordered info dict hashes canonically."""
        canonical = encode(_root())
        info_start = canonical.index(b"4:infod") + len(b"4:info")
        shuffled_info = (
            b"d4:name8:file.txt6:lengthi40e6:pieces40:"
            + b"a" * 20
            + b"b" * 20
            + b"12:piece lengthi32ee"
        )
        shuffled = canonical[:info_start] + shuffled_info + b"e"
        assert parse_metainfo(decode(shuffled)).info_hash == parse_metainfo(
            decode(canonical)
        ).info_hash

    def test_optional_fields(self):
        """Test comment, created by and creation date are read when present."""
        root = _root()
        root[b"comment"] = b"hello"
        root[b"created by"] = b"mktorrent"
        root[b"creation date"] = 1700000000
        metainfo = parse_metainfo(root)
        assert metainfo.comment == "hello"
        assert metainfo.created_by == "mktorrent"
        assert metainfo.creation_date == 1700000000

    @pytest.mark.parametrize("key", [b"length", b"name", b"piece length", b"pieces"])
    def test_missing_info_key(self, key):
        """Test a missing info key raises FormatError."""
        root = _root()
        del root[b"info"][key]
        with pytest.raises(FormatError, match="Missing required key"):
            parse_metainfo(root)

    def test_missing_announce(self):
        """Test a missing announce raises FormatError."""
        root = _root()
        del root[b"announce"]
        with pytest.raises(FormatError, match="announce"):
            parse_metainfo(root)

    def test_wrong_kind(self):
        """Test a mistyped field raises FormatError."""
        with pytest.raises(FormatError, match="length"):
            parse_metainfo(_root({b"length": b"40"}))

    def test_pieces_not_multiple_of_20(self):
        """Test a pieces string of the wrong size is rejected."""
        with pytest.raises(FormatError, match="multiple of 20"):
            parse_metainfo(_root({b"pieces": b"a" * 21}))

    def test_piece_count_mismatch(self):
        """Test the hash count must match ceil(length / piece length)."""
        with pytest.raises(FormatError, match="requires 2"):
            parse_metainfo(_root({b"pieces": b"a" * 20}))

    def test_non_positive_piece_length(self):
        """Test piece length must be positive."""
        with pytest.raises(FormatError, match="piece length"):
            parse_metainfo(_root({b"piece length": 0}))

    def test_multi_file_rejected(self):
        """Test multi-file torrents are rejected."""
        with pytest.raises(TorrentError, match="Multi-file"):
            parse_metainfo(_root({b"files": []}))

    def test_root_not_dict(self):
        """Test the root value must be a dictionary."""
        with pytest.raises(FormatError):
            parse_metainfo([1, 2])


class TestInfo:
    """Test cases for piece geometry."""

    def test_piece_size_shrinks_last_piece(self):
        """Test only the final piece is shorter."""
        info = parse_metainfo(_root()).info
        assert info.piece_size(0) == 32
        assert info.piece_size(1) == 8

    def test_piece_size_exact_multiple(self):
        """Test the final piece is full when length divides evenly."""
        info = parse_metainfo(_root({b"length": 64})).info
        assert info.piece_size(1) == 32

    @pytest.mark.parametrize("index", [-1, 2])
    def test_invalid_index(self, index):
        """Test an out-of-range index raises FormatError."""
        info = parse_metainfo(_root()).info
        with pytest.raises(FormatError, match="Invalid piece index"):
            info.piece_size(index)
        with pytest.raises(FormatError, match="Invalid piece index"):
            info.piece_hash(index)

    def test_split_piece_hashes(self):
        """Test concatenated digests split into 20-byte chunks."""
        assert split_piece_hashes(b"x" * 40) == (b"x" * 20, b"x" * 20)
        assert split_piece_hashes(b"") == ()


class TestTorrentParser:
    """Test cases for reading torrent files."""

    def test_parse_file(self, sample_torrent_file, sample_payload, sample_piece_length):
        """Test parsing a torrent from disk."""
        metainfo = TorrentParser().parse(sample_torrent_file)
        assert metainfo.info.length == len(sample_payload)
        assert metainfo.info.piece_length == sample_piece_length
        assert metainfo.info.num_pieces == 51
        assert metainfo.info.piece_hash(0) == hashlib.sha1(
            sample_payload[:sample_piece_length]
        ).digest()

    def test_parse_missing_file(self, tmp_path):
        """Test a missing file raises TorrentError."""
        with pytest.raises(TorrentError, match="not found"):
            TorrentParser().parse(tmp_path / "missing.torrent")

    def test_parse_bytes_wraps_format_errors(self):
        """Test malformed torrent bytes raise TorrentError."""
        with pytest.raises(TorrentError, match="Failed to parse torrent"):
            TorrentParser().parse_bytes(b"d8:announce")

    def test_parse_bytes_rejects_trailing_data(self, sample_torrent_bytes):
        """Test a torrent must be exactly one bencoded value."""
        with pytest.raises(TorrentError):
            TorrentParser().parse_bytes(sample_torrent_bytes + b"junk")
