"""
Streaming of assistant progress and results.
"""

from .emitter import StreamEmitter
from .events import StreamData, StreamEvent
from .response import build_response_data

__all__ = ["StreamEmitter", "StreamData", "StreamEvent", "build_response_data"]
