"""panosweep codecs: frame storage."""

from .frame_sink import FrameSink

__all__ = ["FrameSink"]
