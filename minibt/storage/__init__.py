"""Output storage for downloaded pieces."""

from __future__ import annotations

from minibt.storage.sink import PieceSink

__all__ = ["PieceSink"]
