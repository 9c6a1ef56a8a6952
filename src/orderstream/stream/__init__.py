"""Byte stream to envelope pipeline."""

from .parser import EnvelopeParser
from .reassembler import LineReassembler
from .render_buffer import RenderBuffer, RenderBufferState

__all__ = ["EnvelopeParser", "LineReassembler", "RenderBuffer", "RenderBufferState"]
