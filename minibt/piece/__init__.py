"""Piece download engine."""

from __future__ import annotations

from minibt.piece.download import DownloadState, PieceDownloader

__all__ = ["DownloadState", "PieceDownloader"]
