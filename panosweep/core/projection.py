"""Equirectangular to rectilinear (gnomonic) projection."""

import math
from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .camera import CameraPose
from .errors import FrameProjectionError
from .source import SourceImage


@dataclass(frozen=True)
class FrameTask:
    """One claimed unit of work."""
    frame_index: int
    pose: CameraPose
    output_width: int
    output_height: int


@dataclass(frozen=True)
class FrameResult:
    """Projected pixels for one frame, [output_height, output_width, C]."""
    frame_index: int
    pixels: np.ndarray


def rotation_matrix(yaw: float, pitch: float) -> np.ndarray:
    """Camera-to-world rotation, R = R_yaw @ R_pitch.

    Pitch tilts the ray about the camera's horizontal axis first, then yaw
    turns it about the world vertical axis.
    """
    cy, sy = math.cos(yaw), math.sin(yaw)
    cp, sp = math.cos(pitch), math.sin(pitch)
    r_yaw = np.array([
        [cy, 0.0, sy],
        [0.0, 1.0, 0.0],
        [-sy, 0.0, cy],
    ])
    r_pitch = np.array([
        [1.0, 0.0, 0.0],
        [0.0, cp, sp],
        [0.0, -sp, cp],
    ])
    return r_yaw @ r_pitch


def vertical_fov(h_fov: float, width: int, height: int) -> float:
    """Vertical FOV implied by square pixels."""
    return 2.0 * math.atan(math.tan(h_fov / 2.0) * height / width)


def _check_size(width: int, height: int) -> None:
    if width <= 0 or height <= 0:
        raise ValueError(f"Output size must be positive, got {width}x{height}")


def sampling_map(
    pose: CameraPose,
    width: int,
    height: int,
    source_width: int,
    source_height: int,
) -> Tuple[np.ndarray, np.ndarray]:
    """Source coordinates (u, v) for every output pixel, each [height, width].

    u is wrapped into [0, source_width), v is clamped to [0, source_height - 1].
    """
    _check_size(width, height)
    pose.validate()

    scale = math.tan(pose.h_fov / 2.0) / (width / 2.0)
    xs = (np.arange(width, dtype=np.float64) - width / 2.0) * scale
    ys = -(np.arange(height, dtype=np.float64) - height / 2.0) * scale
    x, y = np.meshgrid(xs, ys)

    r = rotation_matrix(pose.yaw, pose.pitch)
    # ray (x, y, 1) rotated into world space
    wx = r[0, 0] * x + r[0, 1] * y + r[0, 2]
    wy = r[1, 0] * x + r[1, 1] * y + r[1, 2]
    wz = r[2, 0] * x + r[2, 1] * y + r[2, 2]

    bad = ~(np.isfinite(wx) & np.isfinite(wy) & np.isfinite(wz))
    if bad.any():
        # fall back to the optical axis
        wx[bad], wy[bad], wz[bad] = r[0, 2], r[1, 2], r[2, 2]

    norm = np.sqrt(wx * wx + wy * wy + wz * wz)
    lon = np.arctan2(wx, wz)
    lat = np.arcsin(np.clip(wy / norm, -1.0, 1.0))

    u = np.mod((lon / np.pi + 1.0) * 0.5 * source_width, source_width)
    v = np.clip((0.5 - lat / np.pi) * source_height, 0.0, source_height - 1)
    return u, v


def _to_dtype(values: np.ndarray, dtype: np.dtype) -> np.ndarray:
    if np.issubdtype(dtype, np.integer):
        info = np.iinfo(dtype)
        return np.clip(np.rint(values), info.min, info.max).astype(dtype)
    return values.astype(dtype)


def sample_bilinear(pixels: np.ndarray, u: np.ndarray, v: np.ndarray) -> np.ndarray:
    """Bilinear lookup with horizontal wraparound and clamped rows."""
    height, width = pixels.shape[:2]

    x0f = np.floor(u)
    y0f = np.floor(v)
    fx = (u - x0f)[..., None]
    fy = (v - y0f)[..., None]

    x0 = x0f.astype(np.intp) % width
    x1 = (x0 + 1) % width  # column W-1 neighbours column 0
    y0 = np.clip(y0f.astype(np.intp), 0, height - 1)
    y1 = np.minimum(y0 + 1, height - 1)

    p00 = pixels[y0, x0].astype(np.float64)
    p01 = pixels[y0, x1].astype(np.float64)
    p10 = pixels[y1, x0].astype(np.float64)
    p11 = pixels[y1, x1].astype(np.float64)

    top = p00 * (1.0 - fx) + p01 * fx
    bottom = p10 * (1.0 - fx) + p11 * fx
    return _to_dtype(top * (1.0 - fy) + bottom * fy, pixels.dtype)


def sample_nearest(pixels: np.ndarray, u: np.ndarray, v: np.ndarray) -> np.ndarray:
    height, width = pixels.shape[:2]
    x = np.floor(u + 0.5).astype(np.intp) % width
    y = np.clip(np.floor(v + 0.5).astype(np.intp), 0, height - 1)
    return pixels[y, x]


def _project_numpy(source: SourceImage, pose: CameraPose, width: int, height: int, interpolation: str) -> np.ndarray:
    u, v = sampling_map(pose, width, height, source.width, source.height)
    if interpolation == "nearest":
        return sample_nearest(source.pixels, u, v)
    return sample_bilinear(source.pixels, u, v)


def _project_torch(source: SourceImage, pose: CameraPose, width: int, height: int, interpolation: str) -> np.ndarray:
    """Resample with ``grid_sample`` over the seam-padded source tensor."""
    import torch
    import torch.nn.functional as F

    u, v = sampling_map(pose, width, height, source.width, source.height)
    src = source.as_tensor()

    # align_corners=True: -1 and 1 are the centres of the first and last column;
    # the padded tensor is W + 1 wide, so u = W lands on the repeated column 0
    gx = 2.0 * u / source.width - 1.0
    gy = 2.0 * v / (source.height - 1) - 1.0 if source.height > 1 else np.zeros_like(v)
    grid = torch.from_numpy(np.stack([gx, gy], axis=-1)).unsqueeze(0)

    with torch.no_grad():
        out = F.grid_sample(src, grid, mode=interpolation, padding_mode="border", align_corners=True)
    return _to_dtype(out[0].permute(1, 2, 0).numpy(), source.dtype)


_BACKENDS = {
    "numpy": _project_numpy,
    "torch": _project_torch,
}


def project(
    source: SourceImage,
    pose: CameraPose,
    width: int,
    height: int,
    interpolation: str = "bilinear",
    backend: str = "numpy",
) -> np.ndarray:
    """Render the rectilinear view of ``source`` seen from ``pose``.

    Args:
        source: equirectangular panorama (2:1)
        pose: camera orientation and horizontal FOV
        width, height: output size in pixels; vertical FOV follows from the
            aspect ratio
        interpolation: "bilinear" or "nearest"
        backend: "numpy" or "torch"

    Returns:
        [height, width, C] array in the source dtype.

    Raises:
        FrameProjectionError: the pose is invalid (non-finite, FOV outside
            (0, pi), pitch beyond +-pi/2).
    """
    try:
        fn = _BACKENDS[backend]
    except KeyError:
        raise ValueError(f"Unknown projection backend: {backend}") from None
    if interpolation not in ("bilinear", "nearest"):
        raise ValueError(f"Unknown interpolation: {interpolation}")
    return fn(source, pose, width, height, interpolation)


def render(
    source: SourceImage,
    task: FrameTask,
    interpolation: str = "bilinear",
    backend: str = "numpy",
) -> FrameResult:
    """Project one claimed frame."""
    try:
        pixels = project(source, task.pose, task.output_width, task.output_height, interpolation, backend)
    except FrameProjectionError:
        raise
    except (ValueError, ArithmeticError, MemoryError) as e:
        raise FrameProjectionError(f"Frame {task.frame_index}: {e}") from e
    return FrameResult(frame_index=task.frame_index, pixels=pixels)
