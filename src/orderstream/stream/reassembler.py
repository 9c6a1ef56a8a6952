"""Line reassembly across arbitrary chunk boundaries."""

from __future__ import annotations

import codecs


class LineReassembler:
    """Turn a chunked byte stream into complete newline-terminated lines.

    Bytes are decoded incrementally, so a multibyte character split across two
    chunks is held back until its last byte arrives. The trailing fragment of
    every chunk is carried over to the next call and only surfaces once its
    newline is seen, or when :meth:`finish` is called at the end of the stream.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._carry = ""
        self._finished = False

    @property
    def pending(self) -> str:
        """Text received after the last newline."""
        return self._carry

    def feed(self, chunk: bytes) -> list[str]:
        if self._finished:
            raise RuntimeError("reassembler already finished")
        text = self._carry + self._decoder.decode(chunk)
        *lines, self._carry = text.split("\n")
        return [line.removesuffix("\r") for line in lines]

    def finish(self) -> list[str]:
        """Flush the decoder and return the final fragment as a complete line."""
        if self._finished:
            return []
        self._finished = True
        tail = (self._carry + self._decoder.decode(b"", final=True)).removesuffix("\r")
        self._carry = ""
        return [tail] if tail.strip() else []
