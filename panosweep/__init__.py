"""panosweep: flat camera sweeps through equirectangular panoramas.

Main components:
- core: source image, camera path, projection (SourceImage, pose_for_frame, project)
- generators: parallel frame extraction (FrameGenerator, extract)
- codecs: frame storage (FrameSink)
"""

from .core import (
    CameraPose,
    ExtractionConfig,
    PathConfig,
    SourceImage,
    ErrorKind,
    PanosweepError,
    pose_for_frame,
    project,
)
from .generators import ExtractionResult, FrameFailure, FrameGenerator, extract
from .codecs import FrameSink

__version__ = "0.1.0"
__all__ = [
    # Core
    "CameraPose",
    "ExtractionConfig",
    "PathConfig",
    "SourceImage",
    "ErrorKind",
    "PanosweepError",
    "pose_for_frame",
    "project",
    # Generators
    "ExtractionResult",
    "FrameFailure",
    "FrameGenerator",
    "extract",
    # Codecs
    "FrameSink",
]
