"""Throttled text rendering for streaming replies."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass

DEFAULT_FLUSH_INTERVAL_SECONDS = 0.03


@dataclass
class RenderBufferState:
    """Transient batching state of one reply."""

    accumulated: str = ""
    visible_length: int = 0
    last_flush_at: float | None = None
    timer: asyncio.TimerHandle | None = None


class RenderBuffer:
    """Coalesce text deltas into periodic writes of the full accumulated text.

    The first delta after a write arms a single timer; further deltas only
    accumulate until it fires. ``flush`` writes synchronously and disarms the
    timer. Every write hands the sink the whole text received so far, so
    the visible content after a flush always equals the concatenation of the
    appended deltas.
    """

    def __init__(
        self,
        sink: Callable[[str], None],
        *,
        interval: float = DEFAULT_FLUSH_INTERVAL_SECONDS,
    ) -> None:
        self._sink = sink
        self._interval = interval
        self._state = RenderBufferState()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._closed = False

    @property
    def text(self) -> str:
        return self._state.accumulated

    @property
    def state(self) -> RenderBufferState:
        return self._state

    @property
    def armed(self) -> bool:
        return self._state.timer is not None

    @property
    def dirty(self) -> bool:
        return len(self._state.accumulated) != self._state.visible_length

    def append(self, delta: str) -> None:
        if self._closed:
            raise RuntimeError("render buffer is closed")
        if not delta:
            return
        self._state.accumulated += delta
        if self._state.timer is None:
            loop = self._running_loop()
            self._state.timer = loop.call_later(self._interval, self._on_timer)

    def flush(self) -> str:
        self._disarm()
        self._write()
        return self._state.accumulated

    def close(self) -> None:
        """Disarm the timer; nothing is written after this point."""
        self._disarm()
        self._closed = True

    def _on_timer(self) -> None:
        self._state.timer = None
        if not self._closed:
            self._write()

    def _write(self) -> None:
        if not self.dirty:
            return
        self._sink(self._state.accumulated)
        self._state.visible_length = len(self._state.accumulated)
        if self._loop is not None:
            self._state.last_flush_at = self._loop.time()

    def _disarm(self) -> None:
        if self._state.timer is not None:
            self._state.timer.cancel()
            self._state.timer = None

    def _running_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop
