"""
Tests for remotescan.scanner.buffer (BufferState).
"""

from __future__ import annotations

import os

from remotescan.scanner.buffer import BufferState


class TestBufferState:
    """Tests for the per-scan buffer and its spill file."""

    def test_memory_only(self) -> None:
        with BufferState(budget=10) as state:
            state.append(b"abcd")
            state.consume_budget(4)
            assert state.buffer == b"abcd"
            assert state.remaining == 6
            assert state.spill_path is None
        assert not state.in_progress

    def test_spill_is_unlinked_on_close(self) -> None:
        with BufferState() as state:
            state.append(b"before")
            state.spill()
            state.append(b"after")
            path = state.spill_path
            assert path is not None
            assert state.rewind().read() == b"beforeafter"
        assert not os.path.exists(path)

    def test_keep_spill_hands_over_the_file(self) -> None:
        with BufferState(spill=True) as state:
            state.append(b"garbage")
            state.write_spill(b"header")
            path = state.keep_spill()
        try:
            with open(path, "rb") as f:
                assert f.read() == b"header"
        finally:
            os.unlink(path)

    def test_reset_truncates_spill(self) -> None:
        with BufferState(spill=True) as state:
            state.append(b"data")
            state.reset()
            state.append(b"new")
            assert state.buffer == b"new"
            assert state.rewind().read() == b"new"
