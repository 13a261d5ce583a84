"""The equirectangular source image shared by every worker of a run."""

import logging
import threading
from pathlib import Path
from typing import Union

import numpy as np
from PIL import Image, UnidentifiedImageError

from .errors import InvalidSourceAspectRatioError, SourceLoadError

logger = logging.getLogger(__name__)


class SourceImage:
    """Immutable decoded panorama, [H, W, C] with C in {3, 4}.

    The pixel buffer is allocated once and exposed read-only; projections
    share it by reference and never copy or mutate it.
    """

    def __init__(self, pixels: np.ndarray):
        if pixels.ndim != 3 or pixels.shape[2] not in (3, 4):
            raise SourceLoadError(f"Expected an [H, W, 3|4] image, got shape {pixels.shape}")
        height, width = pixels.shape[:2]
        if height == 0 or width != 2 * height:
            raise InvalidSourceAspectRatioError(width, height)

        # one owned copy, so the caller's array can change without touching ours
        self.pixels = np.array(pixels, order="C", copy=True)
        self.pixels.flags.writeable = False
        self._tensor = None
        self._tensor_lock = threading.Lock()

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]

    @property
    def channels(self) -> int:
        return self.pixels.shape[2]

    @property
    def dtype(self) -> np.dtype:
        return self.pixels.dtype

    def as_tensor(self):
        """Float64 [1, C, H, W + 1] tensor for ``grid_sample``, built once per source.

        Column 0 is repeated after column W - 1 so bilinear sampling wraps
        across the longitude seam. The tensor is a separate buffer; writing
        to it never reaches ``pixels``.
        """
        with self._tensor_lock:
            if self._tensor is None:
                import torch
                src = torch.from_numpy(self.pixels.astype(np.float64))
                src = torch.cat([src, src[:, :1]], dim=1)
                self._tensor = src.permute(2, 0, 1).unsqueeze(0).contiguous()
            return self._tensor

    @classmethod
    def from_array(cls, pixels: np.ndarray) -> "SourceImage":
        return cls(np.asarray(pixels))

    @classmethod
    def load(cls, path: Union[str, Path]) -> "SourceImage":
        """Decode an image file with Pillow into RGB or RGBA."""
        path = Path(path)
        try:
            with Image.open(path) as img:
                mode = "RGBA" if img.mode in ("RGBA", "LA", "PA") or "transparency" in img.info else "RGB"
                pixels = np.array(img.convert(mode))
        except (OSError, UnidentifiedImageError, Image.DecompressionBombError) as e:
            raise SourceLoadError(f"Failed to load {path}: {e}") from e
        logger.debug("Loaded %s: %dx%d %s", path, pixels.shape[1], pixels.shape[0], mode)
        return cls(pixels)

    def __repr__(self) -> str:
        return f"SourceImage({self.width}x{self.height}x{self.channels}, {self.dtype})"
