"""Virtual camera poses and the camera path evaluated per frame."""

import math
from dataclasses import dataclass, asdict
from typing import Dict, Any

from .errors import FrameProjectionError, InvalidConfigurationError

TWO_PI = 2.0 * math.pi
HALF_PI = 0.5 * math.pi


def wrap_yaw(yaw: float) -> float:
    """Wrap an angle in radians into [-pi, pi)."""
    wrapped = (yaw + math.pi) % TWO_PI - math.pi
    # float modulo can land exactly on +pi for inputs just below -pi
    if wrapped >= math.pi:
        wrapped -= TWO_PI
    return wrapped


@dataclass(frozen=True)
class CameraPose:
    """Orientation and lens of the virtual camera for one frame.

    All angles are radians. Positive pitch looks up, positive yaw turns
    toward increasing longitude.
    """
    yaw: float
    pitch: float
    h_fov: float

    def validate(self) -> "CameraPose":
        """Raise FrameProjectionError if the pose cannot be projected."""
        values = (self.yaw, self.pitch, self.h_fov)
        if not all(math.isfinite(v) for v in values):
            raise FrameProjectionError(f"Non-finite camera pose: {self}")
        if not -math.pi <= self.yaw < math.pi:
            raise FrameProjectionError(f"Yaw {self.yaw} outside [-pi, pi)")
        if abs(self.pitch) > HALF_PI:
            raise FrameProjectionError(f"Pitch {self.pitch} outside [-pi/2, pi/2]")
        if not 0.0 < self.h_fov < math.pi:
            raise FrameProjectionError(f"Horizontal FOV {self.h_fov} outside (0, pi)")
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_degrees(cls, yaw: float, pitch: float, h_fov: float) -> "CameraPose":
        return cls(
            yaw=wrap_yaw(math.radians(yaw)),
            pitch=math.radians(pitch),
            h_fov=math.radians(h_fov),
        )


def pose_for_frame(index: int, frame_count: int, config) -> CameraPose:
    """Evaluate the sweep path at a frame index.

    The path is a pure function of t = index / frame_count, so any worker can
    compute any frame in any order. ``config`` provides ``start_yaw``,
    ``angular_velocity`` (radians swept over the whole run), ``pitch`` and
    ``h_fov``.
    """
    if frame_count <= 0:
        raise InvalidConfigurationError(f"frame_count must be positive, got {frame_count}")
    if not 0 <= index < frame_count:
        raise ValueError(f"Frame index {index} outside [0, {frame_count})")

    t = index / frame_count
    return CameraPose(
        yaw=wrap_yaw(config.start_yaw + config.angular_velocity * t),
        pitch=config.pitch,
        h_fov=config.h_fov,
    )
