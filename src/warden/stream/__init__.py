"""
Live console stream over WebSockets.
"""

from .server import STREAM_PATH, ConsoleStreamServer

__all__ = ["STREAM_PATH", "ConsoleStreamServer"]
