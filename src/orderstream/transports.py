"""Transport adapters that yield a turn's response body as raw bytes."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterable
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import httpx

from .errors import TransportError

if TYPE_CHECKING:
    from .config import Settings
    from .models import ConversationTurn

ERROR_BODY_LIMIT = 200


class StreamTransport(Protocol):
    """Opens the request for one turn and yields the body chunk by chunk."""

    def stream(self, turn: ConversationTurn) -> AsyncIterator[bytes]: ...


class HttpxStreamTransport:
    """POST the turn to a streaming chat endpoint with httpx."""

    def __init__(
        self,
        url: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.url = url
        self._client = client
        self._timeout = timeout
        self._headers = headers or {}

    @classmethod
    def from_settings(cls, settings: Settings, *, client: httpx.AsyncClient | None = None) -> HttpxStreamTransport:
        return cls(settings.require_endpoint(), client=client, timeout=settings.request_timeout_seconds)

    async def stream(self, turn: ConversationTurn) -> AsyncIterator[bytes]:
        client = self._client or httpx.AsyncClient(timeout=self._timeout)
        try:
            async with client.stream("POST", self.url, json=turn.to_request(), headers=self._headers) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise TransportError(
                        f"HTTP {response.status_code}: {body[:ERROR_BODY_LIMIT]}",
                        status_code=response.status_code,
                    )
                async for chunk in response.aiter_bytes():
                    yield chunk
        except httpx.HTTPError as exc:
            raise TransportError(f"{type(exc).__name__}: {exc}") from exc
        finally:
            if self._client is None:
                await client.aclose()


class ReplayTransport:
    """Replay a recorded response body in fixed-size chunks."""

    def __init__(self, body: bytes, *, chunk_size: int = 64, delay: float = 0.0) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._body = body
        self._chunk_size = chunk_size
        self._delay = delay

    @classmethod
    def from_file(cls, path: Path, *, chunk_size: int = 64, delay: float = 0.0) -> ReplayTransport:
        return cls(path.read_bytes(), chunk_size=chunk_size, delay=delay)

    async def stream(self, turn: ConversationTurn) -> AsyncIterator[bytes]:
        for offset in range(0, len(self._body), self._chunk_size):
            if self._delay:
                await asyncio.sleep(self._delay)
            yield self._body[offset : offset + self._chunk_size]


class ChunkedReplayTransport:
    """Replay an explicit sequence of chunks, boundaries included."""

    def __init__(self, chunks: Iterable[bytes | str], *, delay: float = 0.0) -> None:
        self._chunks = [chunk.encode("utf-8") if isinstance(chunk, str) else chunk for chunk in chunks]
        self._delay = delay
        self.requests: list[ConversationTurn] = []

    async def stream(self, turn: ConversationTurn) -> AsyncIterator[bytes]:
        self.requests.append(turn)
        for chunk in self._chunks:
            if self._delay:
                await asyncio.sleep(self._delay)
            yield chunk
