"""Envelope parsing for single wire lines."""

from __future__ import annotations

import json

from loguru import logger
from pydantic import ValidationError

from orderstream.protocol import StreamEnvelope

PREVIEW_LIMIT = 200


class EnvelopeParser:
    """Parse one complete line into a :class:`StreamEnvelope`.

    ``parse`` returns None in three situations the caller tells apart through
    the parser's state: blank lines (nothing changes), the end-of-stream
    sentinel (``end_of_stream`` becomes True), and malformed lines
    (``failures`` is incremented and the line is logged).
    """

    def __init__(self, *, frame_prefix: str = "data:", done_sentinel: str = "[DONE]") -> None:
        self._frame_prefix = frame_prefix
        self._done_sentinel = done_sentinel
        self.end_of_stream = False
        self.failures = 0

    def parse(self, line: str) -> StreamEnvelope | None:
        text = line.strip()
        if self._frame_prefix and text.startswith(self._frame_prefix):
            text = text[len(self._frame_prefix) :].strip()
        if not text:
            return None
        if text == self._done_sentinel:
            self.end_of_stream = True
            return None

        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            return self._reject(text, f"invalid json: {exc.msg}")
        if not isinstance(data, dict):
            return self._reject(text, "payload is not an object")
        kind = data.get("type") or data.get("kind")
        if not isinstance(kind, str) or not kind:
            return self._reject(text, "missing discriminant")
        try:
            return StreamEnvelope.model_validate(data)
        except ValidationError as exc:
            return self._reject(text, f"invalid envelope: {exc.error_count()} errors")

    def _reject(self, text: str, reason: str) -> None:
        self.failures += 1
        preview = text if len(text) <= PREVIEW_LIMIT else text[:PREVIEW_LIMIT] + "..."
        logger.warning("stream.frame_error reason={} line={}", reason, preview)
        return None
