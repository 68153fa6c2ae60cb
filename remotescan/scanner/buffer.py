"""
Per-scan buffer state.

A `BufferState` accumulates body bytes for exactly one scan. It keeps the bytes
in memory for the header parsers and, on request, mirrors them into a temp
"spill" file (mutagen reads from a file object; the decoder reuses header
spills as its initial block).

The spill file is always closed and unlinked by `close()` unless ownership
was handed over with `keep_spill()`.
"""

from __future__ import annotations

import logging
import os
import tempfile
from types import TracebackType
from typing import IO

logger = logging.getLogger(__name__)

SPILL_PREFIX = "remotescan-"


class BufferState:
    """
    Mutable accumulator owned by one in-flight scan.

    Attributes:
        buffer: Bytes received so far (header parsers index into this).
        remaining: Bytes still allowed by the current read budget (None = unbounded).
        first_chunk: True until the first chunk has been consumed.
        in_progress: False once the scan has finished with this state.
    """

    def __init__(self, budget: int | None = None, *, spill: bool = False) -> None:
        self.buffer = bytearray()
        self.remaining = budget
        self.first_chunk = True
        self.in_progress = True
        self._spill: IO[bytes] | None = None
        self._kept = False
        if spill:
            self.spill()

    def __enter__(self) -> BufferState:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    @property
    def spill_path(self) -> str | None:
        return self._spill.name if self._spill is not None else None

    def spill(self) -> IO[bytes]:
        """Return the spill file, creating it (with the bytes buffered so far) on first use."""
        if self._spill is None:
            self._spill = tempfile.NamedTemporaryFile(prefix=SPILL_PREFIX, delete=False)
            if self.buffer:
                self._spill.write(self.buffer)
            logger.debug("Buffering stream data to temp file %s", self._spill.name)
        return self._spill

    def append(self, chunk: bytes) -> None:
        """Add a chunk to the buffer (and the spill file, if there is one)."""
        self.buffer.extend(chunk)
        if self._spill is not None:
            self._spill.write(chunk)

    def consume_budget(self, length: int) -> None:
        if self.remaining is not None:
            self.remaining -= length

    def reset(self) -> None:
        """Drop buffered bytes (the spill file, if any, is truncated too)."""
        self.buffer.clear()
        if self._spill is not None:
            self._spill.seek(0)
            self._spill.truncate()

    def rewind(self) -> IO[bytes]:
        """Flush the spill file and position it at the start for reading."""
        fh = self.spill()
        fh.flush()
        fh.seek(0)
        return fh

    def write_spill(self, data: bytes) -> None:
        """Replace the spill file contents with `data`."""
        fh = self.spill()
        fh.seek(0)
        fh.truncate()
        fh.write(data)

    def keep_spill(self) -> str:
        """
        Hand the spill file over to the caller.

        The file is flushed and closed but not unlinked by `close()`.

        Returns:
            Path of the spill file.
        """
        fh = self.spill()
        fh.flush()
        fh.close()
        self._kept = True
        return fh.name

    def close(self) -> None:
        """Release the spill file (unlinking it unless it was kept) and the buffer."""
        self.in_progress = False
        self.buffer = bytearray()
        if self._spill is None:
            return
        name = self._spill.name
        if not self._spill.closed:
            self._spill.close()
        if not self._kept and os.path.exists(name):
            os.unlink(name)
        self._spill = None
