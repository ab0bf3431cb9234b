"""Exception hierarchy for minibt.

Every decode, parse and wire-protocol boundary raises one of these typed
errors instead of aborting, so callers can report which stage failed.
"""

from __future__ import annotations

from typing import Any


class MiniBTError(Exception):
    """Base exception for all minibt errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize minibt error."""
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class FormatError(MiniBTError):
    """Malformed bencode or a missing/mistyped metainfo or tracker field."""


class BencodeError(FormatError):
    """Bencode encoding/decoding errors."""


class BencodeDecodeError(BencodeError):
    """Raised when a byte buffer is not valid bencode."""


class BencodeEncodeError(BencodeError):
    """Raised when a value cannot be represented in bencode."""


class TorrentError(FormatError):
    """Torrent file validation errors."""


class ProtocolError(MiniBTError):
    """BitTorrent peer protocol errors."""


class HandshakeError(ProtocolError):
    """Handshake protocol errors."""


class MessageError(ProtocolError):
    """Message framing/parsing errors."""


class IntegrityError(MiniBTError):
    """Block offset/size mismatch or piece digest mismatch."""


class NetworkError(MiniBTError):
    """Network-related errors."""


class TrackerError(NetworkError):
    """Tracker communication errors."""


class PeerIOError(NetworkError):
    """Connection reset, EOF mid-frame or write failure."""


class PeerTimeoutError(PeerIOError):
    """A peer did not answer within the configured timeout."""


class ConfigurationError(MiniBTError):
    """Configuration validation errors."""


class StorageError(MiniBTError):
    """Output file write errors."""
