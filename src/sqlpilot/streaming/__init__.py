"""Streamed model output reassembly."""

from sqlpilot.streaming.parser import StreamDelta, StreamParser, ToolCallDelta

__all__ = ["StreamDelta", "StreamParser", "ToolCallDelta"]
