"""Output sink for verified piece data."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

from minibt.utils.exceptions import StorageError

logger = logging.getLogger(__name__)


class PieceSink:
    """Writes byte ranges into one output file at absolute offsets.

    Unless created with ``truncate``, writes never drop existing content, so
    pieces can be persisted in any order as long as their ranges do not overlap.
    """

    def __init__(self, path: str | Path, truncate: bool = False) -> None:
        """Initialize the sink.

        Args:
            path: Output file path
            truncate: Discard existing content on the first write

        """
        self.path = Path(path)
        self._truncate = truncate

    def __repr__(self) -> str:
        """Return a readable representation."""
        return f"PieceSink({str(self.path)!r})"

    async def write(self, offset: int, data: bytes) -> None:
        """Write ``data`` at ``offset`` without blocking the event loop.

        Raises:
            StorageError: If the offset is negative or the write fails

        """
        if offset < 0:
            msg = f"Write offset must be >= 0, got {offset}"
            raise StorageError(msg)
        await asyncio.get_running_loop().run_in_executor(
            None, self._write_sync, offset, data
        )
        logger.debug("Wrote %d bytes at offset %d to %s", len(data), offset, self.path)

    def _write_sync(self, offset: int, data: bytes) -> None:
        """Synchronous positioned write."""
        try:
            if self.path.parent != Path():
                os.makedirs(self.path.parent, exist_ok=True)
            mode = "r+b" if self.path.exists() and not self._truncate else "wb"
            with open(self.path, mode) as f:
                f.seek(offset)
                f.write(data)
            self._truncate = False
        except OSError as e:
            msg = f"Failed to write to {self.path}: {e}"
            raise StorageError(msg) from e
