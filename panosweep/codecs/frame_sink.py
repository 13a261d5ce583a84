"""Frame storage: one image file per frame index, committed atomically."""

import logging
import os
import tempfile
from pathlib import Path
from typing import List, Union

import numpy as np
from PIL import Image

from ..core.errors import FrameWriteError

logger = logging.getLogger(__name__)

_PIL_FORMATS = {"png": "PNG", "jpg": "JPEG"}
_TEMP_SUFFIX = ".partial"


class FrameSink:
    """Persist projected frames as ``{prefix}{index:0{pad}d}.{ext}``.

    Names sort lexicographically in frame order, so an encoder globbing the
    directory (or using ``pattern``) sees frames in sequence. Each write lands
    in a hidden temporary file and is renamed into place, so a frame file is
    either absent or complete. Re-storing a frame overwrites it with the same
    bytes when the pixels are the same.
    """

    def __init__(
        self,
        directory: Union[str, Path],
        prefix: str = "frame_",
        image_format: str = "png",
        pad_width: int = 8,
        jpeg_quality: int = 95,
    ):
        if image_format not in _PIL_FORMATS:
            raise ValueError(f"Unknown image format: {image_format}")
        self.directory = Path(directory)
        self.prefix = prefix
        self.image_format = image_format
        self.pad_width = pad_width
        self.jpeg_quality = jpeg_quality

    @property
    def extension(self) -> str:
        return self.image_format

    @property
    def pattern(self) -> str:
        """printf-style template, e.g. ``frame_%08d.png`` for ffmpeg's image2 demuxer."""
        return f"{self.prefix}%0{self.pad_width}d.{self.extension}"

    def name_for(self, frame_index: int) -> str:
        if frame_index < 0:
            raise ValueError(f"Frame index must be non-negative, got {frame_index}")
        return f"{self.prefix}{frame_index:0{self.pad_width}d}.{self.extension}"

    def path_for(self, frame_index: int) -> Path:
        return self.directory / self.name_for(frame_index)

    def exists(self, frame_index: int) -> bool:
        return self.path_for(frame_index).is_file()

    def frames(self) -> List[Path]:
        """Committed frame files in frame order."""
        return sorted(self.directory.glob(f"{self.prefix}*.{self.extension}"))

    def store(self, frame_index: int, pixels: np.ndarray) -> Path:
        """Write one frame; raises FrameWriteError on failure."""
        target = self.path_for(frame_index)
        tmp_path = None
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            image = self._to_image(pixels)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{target.name}.", suffix=_TEMP_SUFFIX, dir=self.directory
            )
            tmp_path = Path(tmp_name)
            with os.fdopen(fd, "wb") as f:
                image.save(f, format=_PIL_FORMATS[self.image_format], **self._save_options())
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, target)
            tmp_path = None
        except (OSError, ValueError, TypeError) as e:
            raise FrameWriteError(f"Failed to write frame {frame_index} to {target}: {e}") from e
        finally:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)
        logger.debug("Stored frame %d -> %s", frame_index, target)
        return target

    def remove_stale(self) -> int:
        """Delete temporary files left behind by an interrupted run."""
        removed = 0
        for path in self.directory.glob(f".{self.prefix}*{_TEMP_SUFFIX}"):
            path.unlink(missing_ok=True)
            removed += 1
        if removed:
            logger.info("Removed %d stale partial frame(s) from %s", removed, self.directory)
        return removed

    def _to_image(self, pixels: np.ndarray) -> Image.Image:
        # float images are [0, 1], as produced from normalized sources
        if np.issubdtype(pixels.dtype, np.floating):
            pixels = (np.clip(pixels, 0, 1) * 255).round().astype(np.uint8)
        elif pixels.dtype == np.uint16:
            pixels = (pixels >> 8).astype(np.uint8)
        elif pixels.dtype != np.uint8:
            raise TypeError(f"Unsupported pixel dtype {pixels.dtype}")
        if self.image_format == "jpg" and pixels.shape[-1] == 4:
            pixels = pixels[..., :3]
        return Image.fromarray(np.ascontiguousarray(pixels))

    def _save_options(self) -> dict:
        if self.image_format == "jpg":
            return {"quality": self.jpeg_quality}
        return {}
