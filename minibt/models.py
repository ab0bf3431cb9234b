"""Pydantic models for minibt.

Provides validated data models for torrent metadata, tracker responses and
configuration.
"""

from __future__ import annotations

import math
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from minibt.utils.exceptions import FormatError

SHA1_LENGTH = 20
BLOCK_SIZE = 16384


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class MessageType(int, Enum):
    """BitTorrent message types.

    The wire id is an open enumeration; these are the ids this client acts on.
    """

    CHOKE = 0
    UNCHOKE = 1
    INTERESTED = 2
    NOT_INTERESTED = 3
    HAVE = 4
    BITFIELD = 5
    REQUEST = 6
    PIECE = 7
    CANCEL = 8


class PeerInfo(BaseModel):
    """Peer address as reported by a tracker."""

    ip: str = Field(..., description="Peer IPv4 address")
    port: int = Field(..., ge=0, le=65535, description="Peer port number")

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        """Return ``ip:port``."""
        return f"{self.ip}:{self.port}"


class TrackerResponse(BaseModel):
    """Tracker announce response."""

    interval: int = Field(..., ge=0, description="Announce interval in seconds")
    peers: list[PeerInfo] = Field(default_factory=list, description="List of peers")
    complete: int | None = Field(None, ge=0, description="Number of seeders")
    incomplete: int | None = Field(None, ge=0, description="Number of leechers")
    warning_message: str | None = Field(None, description="Warning message")


class Info(BaseModel):
    """The ``info`` dictionary of a single-file torrent."""

    length: int = Field(..., ge=0, description="Total file length in bytes")
    name: str = Field(..., description="Suggested file name")
    piece_length: int = Field(..., gt=0, description="Piece length in bytes")
    piece_hashes: tuple[bytes, ...] = Field(
        default_factory=tuple,
        description="SHA-1 digest of each piece",
    )
    info_hash: bytes = Field(
        ...,
        min_length=SHA1_LENGTH,
        max_length=SHA1_LENGTH,
        description="SHA-1 of the bencoded info dictionary",
    )

    model_config = ConfigDict(frozen=True)

    @field_validator("piece_hashes")
    @classmethod
    def validate_piece_hashes(cls, v: tuple[bytes, ...]) -> tuple[bytes, ...]:
        """Validate that every piece hash is a 20-byte SHA-1 digest."""
        for index, digest in enumerate(v):
            if len(digest) != SHA1_LENGTH:
                msg = f"piece hash {index} must be {SHA1_LENGTH} bytes, got {len(digest)}"
                raise ValueError(msg)
        return v

    @model_validator(mode="after")
    def validate_piece_count(self) -> Info:
        """Validate that there is exactly one hash per piece."""
        expected = math.ceil(self.length / self.piece_length)
        if len(self.piece_hashes) != expected:
            msg = (
                f"pieces holds {len(self.piece_hashes)} hashes, "
                f"length {self.length} / piece length {self.piece_length} "
                f"requires {expected}"
            )
            raise ValueError(msg)
        return self

    @property
    def num_pieces(self) -> int:
        """Number of pieces in the torrent."""
        return len(self.piece_hashes)

    def piece_size(self, index: int) -> int:
        """Length of piece ``index``; only the final piece may be shorter."""
        self._check_index(index)
        return min(self.piece_length, self.length - self.piece_length * index)

    def piece_hash(self, index: int) -> bytes:
        """Expected SHA-1 digest of piece ``index``."""
        self._check_index(index)
        return self.piece_hashes[index]

    def _check_index(self, index: int) -> None:
        if index < 0 or index >= self.num_pieces:
            msg = f"Invalid piece index {index} (torrent has {self.num_pieces} pieces)"
            raise FormatError(msg)


class Metainfo(BaseModel):
    """Parsed torrent metainfo."""

    announce: str = Field(..., description="Tracker announce URL")
    info: Info = Field(..., description="Info dictionary")
    comment: str | None = Field(None, description="Torrent comment")
    created_by: str | None = Field(None, description="Created by")
    creation_date: int | None = Field(None, description="Creation date (unix time)")

    model_config = ConfigDict(frozen=True)

    @property
    def info_hash(self) -> bytes:
        """Info hash of the torrent."""
        return self.info.info_hash


class NetworkConfig(BaseModel):
    """Network configuration."""

    listen_port: int = Field(
        default=6881,
        ge=1,
        le=65535,
        description="Port reported to the tracker",
    )
    connection_timeout: float = Field(
        default=10.0,
        gt=0.0,
        le=300.0,
        description="Timeout for establishing TCP and HTTP connections in seconds",
    )
    read_timeout: float = Field(
        default=30.0,
        gt=0.0,
        le=600.0,
        description="Timeout for a single peer read in seconds",
    )
    max_message_length: int = Field(
        default=(1 << 20) + 9,
        ge=BLOCK_SIZE + 9,
        le=1 << 26,
        description="Largest accepted peer frame length (id byte + payload)",
    )
    peer_id_prefix: str = Field(
        default="-MB0100-",
        min_length=1,
        max_length=20,
        description="Prefix for generated peer ids",
    )


class DownloadConfig(BaseModel):
    """Piece download configuration."""

    block_size: int = Field(
        default=BLOCK_SIZE,
        ge=1024,
        le=1 << 20,
        description="Block request size in bytes",
    )
    max_block_retries: int = Field(
        default=3,
        ge=0,
        le=20,
        description="Retries for a single block before the piece fails",
    )


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    log_level: LogLevel = Field(default=LogLevel.WARNING, description="Log level")
    log_file: str | None = Field(None, description="Log file path")
    structured_logging: bool = Field(
        default=False,
        description="Use structured JSON logging",
    )
    log_correlation_id: bool = Field(
        default=True,
        description="Include correlation IDs",
    )


class Config(BaseModel):
    """Main configuration model."""

    network: NetworkConfig = Field(
        default_factory=NetworkConfig,
        description="Network configuration",
    )
    download: DownloadConfig = Field(
        default_factory=DownloadConfig,
        description="Download configuration",
    )
    observability: ObservabilityConfig = Field(
        default_factory=ObservabilityConfig,
        description="Observability configuration",
    )

    @model_validator(mode="after")
    def validate_config(self) -> Config:
        """Validate that a full block fits in one peer frame."""
        # Piece frame: id byte + 8-byte index/begin header + block
        needed = self.download.block_size + 9
        if self.network.max_message_length < needed:
            msg = (
                f"network.max_message_length ({self.network.max_message_length}) "
                f"must be at least block_size + 9 ({needed})"
            )
            raise ValueError(msg)
        return self
