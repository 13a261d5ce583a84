"""Error kinds raised while extracting flat frames from a panorama."""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Classification used in run summaries and failure records."""
    INVALID_SOURCE_ASPECT_RATIO = "InvalidSourceAspectRatio"
    SOURCE_LOAD_FAILURE = "SourceLoadFailure"
    INVALID_CONFIGURATION = "InvalidConfiguration"
    FRAME_PROJECTION_FAILURE = "FrameProjectionFailure"
    FRAME_WRITE_FAILURE = "FrameWriteFailure"

    @property
    def fatal(self) -> bool:
        return self not in (ErrorKind.FRAME_PROJECTION_FAILURE, ErrorKind.FRAME_WRITE_FAILURE)

    def __str__(self) -> str:
        return self.value


class PanosweepError(Exception):
    """Base class for all panosweep errors."""
    kind: Optional[ErrorKind] = None


class FatalError(PanosweepError):
    """Aborts the whole run before (or instead of) producing output."""


class InvalidSourceAspectRatioError(FatalError):
    kind = ErrorKind.INVALID_SOURCE_ASPECT_RATIO

    def __init__(self, width: int, height: int):
        super().__init__(
            f"Equirectangular source must be 2:1, got {width}x{height}"
        )
        self.width = width
        self.height = height


class SourceLoadError(FatalError):
    kind = ErrorKind.SOURCE_LOAD_FAILURE


class InvalidConfigurationError(FatalError, ValueError):
    kind = ErrorKind.INVALID_CONFIGURATION


class NoFramesExtractedError(FatalError):
    """Raised when a run finishes without a single usable frame."""

    def __init__(self, result):
        failed = len(result.failures)
        super().__init__(
            f"No frames were extracted ({failed} of {result.frame_count} failed"
            f"{', run cancelled' if result.cancelled else ''})"
        )
        self.result = result


class FrameError(PanosweepError):
    """Per-frame failure; recorded and skipped, never fatal on its own."""


class FrameProjectionError(FrameError):
    kind = ErrorKind.FRAME_PROJECTION_FAILURE


class FrameWriteError(FrameError):
    kind = ErrorKind.FRAME_WRITE_FAILURE
