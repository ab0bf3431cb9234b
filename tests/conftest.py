"""Pytest configuration and shared fixtures for minibt tests."""

from __future__ import annotations

import hashlib
import logging
import math

import pytest

from minibt.config import reset_config
from minibt.config.config import ENV_MAPPINGS
from minibt.core.bencode import encode

ANNOUNCE_URL = "http://tracker.example.com/announce"


def pytest_configure(config):
    """Register all project markers to avoid warnings when ini isn't loaded."""
    markers = [
        ("unit", "marks tests as unit tests"),
        ("core", "marks tests as core functionality tests"),
        ("peer", "marks tests as peer protocol tests"),
        ("piece", "marks tests as piece download tests"),
        ("tracker", "marks tests as tracker tests"),
        ("storage", "marks tests as storage tests"),
        ("session", "marks tests as session tests"),
        ("config", "marks tests as configuration tests"),
        ("cli", "marks tests as CLI tests"),
        ("property", "marks tests as property-based tests"),
    ]
    for name, desc in markers:
        config.addinivalue_line("markers", f"{name}: {desc}")


@pytest.fixture(autouse=True)
def cleanup_logging():
    """Clean up logging handlers after each test to prevent closed file errors."""
    yield
    for logger_name in list(logging.Logger.manager.loggerDict.keys()):
        logger = logging.getLogger(logger_name)
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """Run every test against default configuration.

    Environment overrides are cleared and the working directory has no
    minibt.toml, so the global config always loads from defaults.
    """
    for env_name in ENV_MAPPINGS:
        monkeypatch.delenv(env_name, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    reset_config()
    yield
    reset_config()


def build_torrent(
    payload: bytes,
    piece_length: int,
    name: str = "sample.bin",
    announce: str = ANNOUNCE_URL,
    **extra,
) -> bytes:
    """Build a bencoded single-file torrent describing ``payload``."""
    num_pieces = math.ceil(len(payload) / piece_length)
    pieces = b"".join(
        hashlib.sha1(payload[i * piece_length : (i + 1) * piece_length]).digest()
        for i in range(num_pieces)
    )
    info = {
        b"length": len(payload),
        b"name": name.encode(),
        b"piece length": piece_length,
        b"pieces": pieces,
    }
    root = {b"announce": announce.encode(), b"info": info}
    root.update(extra)
    return encode(root)


@pytest.fixture
def sample_payload() -> bytes:
    """Payload of 1 MiB whose piece length is not a multiple of 16 KiB."""
    return bytes((i * 7 + i // 251) % 256 for i in range(1048576))


@pytest.fixture
def sample_piece_length() -> int:
    """Piece length of the sample torrent (20 KiB + 100 bytes)."""
    return 20580


@pytest.fixture
def sample_torrent_bytes(sample_payload, sample_piece_length) -> bytes:
    """Bencoded sample torrent."""
    return build_torrent(sample_payload, sample_piece_length)


@pytest.fixture
def sample_torrent_file(tmp_path, sample_torrent_bytes):
    """Sample torrent written to disk."""
    path = tmp_path / "sample.torrent"
    path.write_bytes(sample_torrent_bytes)
    return path


@pytest.fixture
def torrent_factory():
    """Return the torrent builder for tests that need custom torrents."""
    return build_torrent
