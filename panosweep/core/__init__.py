"""panosweep core: sources, camera path and projection."""

from .camera import CameraPose, pose_for_frame, wrap_yaw
from .config import ExtractionConfig, PathConfig
from .errors import (
    ErrorKind,
    PanosweepError,
    FatalError,
    FrameError,
    InvalidSourceAspectRatioError,
    SourceLoadError,
    InvalidConfigurationError,
    NoFramesExtractedError,
    FrameProjectionError,
    FrameWriteError,
)
from .projection import (
    FrameTask,
    FrameResult,
    project,
    render,
    rotation_matrix,
    sampling_map,
    vertical_fov,
)
from .source import SourceImage

__all__ = [
    "CameraPose",
    "pose_for_frame",
    "wrap_yaw",
    "ExtractionConfig",
    "PathConfig",
    "ErrorKind",
    "PanosweepError",
    "FatalError",
    "FrameError",
    "InvalidSourceAspectRatioError",
    "SourceLoadError",
    "InvalidConfigurationError",
    "NoFramesExtractedError",
    "FrameProjectionError",
    "FrameWriteError",
    "FrameTask",
    "FrameResult",
    "project",
    "render",
    "rotation_matrix",
    "sampling_map",
    "vertical_fov",
    "SourceImage",
]
