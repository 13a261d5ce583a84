"""panosweep generators: parallel frame extraction."""

from .frame_generator import (
    ExtractionResult,
    FrameClaims,
    FrameFailure,
    FrameGenerator,
    extract,
)

__all__ = ["ExtractionResult", "FrameClaims", "FrameFailure", "FrameGenerator", "extract"]
