"""Client session entry points."""

from __future__ import annotations

from minibt.session.client import TorrentClient

__all__ = ["TorrentClient"]
