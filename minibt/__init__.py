"""minibt - A minimal BitTorrent client implementation."""

from __future__ import annotations

__version__ = "0.1.0"
