"""Extraction configuration."""

from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional, Dict, Any, Tuple, Union
import math
import yaml

from .camera import CameraPose, pose_for_frame
from .errors import InvalidConfigurationError

INTERPOLATIONS = ("bilinear", "nearest")
BACKENDS = ("numpy", "torch")
IMAGE_FORMATS = ("png", "jpg")


def _is_number(value: Any) -> bool:
    # bool is an int subclass, but `pitch: yes` in YAML is a typo, not 1.0
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass
class PathConfig:
    """Yaw sweep at fixed pitch and FOV.

    Angles are radians. ``angular_velocity`` is the yaw swept over the whole
    run, so the default turns once around without repeating the start frame.
    """
    start_yaw: float = -math.pi
    angular_velocity: float = 2 * math.pi
    pitch: float = 0.0
    h_fov: float = math.radians(60.0)

    def pose_for_frame(self, index: int, frame_count: int) -> CameraPose:
        return pose_for_frame(index, frame_count, self)

    def validate(self) -> None:
        for name in ("start_yaw", "angular_velocity", "pitch", "h_fov"):
            value = getattr(self, name)
            if not _is_number(value) or not math.isfinite(value):
                raise InvalidConfigurationError(f"{name} must be a finite number, got {value!r}")
        if abs(self.pitch) > math.pi / 2:
            raise InvalidConfigurationError(f"pitch {self.pitch} outside [-pi/2, pi/2]")
        if not 0.0 < self.h_fov < math.pi:
            raise InvalidConfigurationError(f"h_fov {self.h_fov} outside (0, pi)")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PathConfig":
        return cls(**d)


@dataclass
class ExtractionConfig:
    """Everything one extraction run needs besides the source and output dir.

    ``output_width`` / ``output_height`` may be left unset and are then derived
    from the source resolution, ``path.h_fov`` and ``v_fov``. ``v_fov`` is only
    used for that derivation; the projection itself always uses square pixels.
    """
    frame_count: int = 360
    output_width: Optional[int] = None
    output_height: Optional[int] = None
    concurrency: Optional[int] = None  # None -> os.cpu_count()
    path: PathConfig = field(default_factory=PathConfig)
    v_fov: float = math.radians(45.0)

    interpolation: str = "bilinear"  # "bilinear" | "nearest"
    backend: str = "numpy"  # "numpy" | "torch"

    # Output naming
    image_format: str = "png"  # "png" | "jpg"
    jpeg_quality: int = 95
    prefix: str = "frame_"
    pad_width: int = 8

    def validate(self) -> "ExtractionConfig":
        """Check every value eagerly; raises InvalidConfigurationError."""
        if not _is_int(self.frame_count) or self.frame_count <= 0:
            raise InvalidConfigurationError(f"frame_count must be a positive integer, got {self.frame_count!r}")
        if self.concurrency is not None and (not _is_int(self.concurrency) or self.concurrency <= 0):
            raise InvalidConfigurationError(f"concurrency must be a positive integer, got {self.concurrency!r}")
        for name in ("output_width", "output_height"):
            value = getattr(self, name)
            if value is not None and (not _is_int(value) or value <= 0):
                raise InvalidConfigurationError(f"{name} must be a positive integer, got {value!r}")
        if not (_is_number(self.v_fov) and math.isfinite(self.v_fov) and 0.0 < self.v_fov < math.pi):
            raise InvalidConfigurationError(f"v_fov {self.v_fov!r} outside (0, pi)")
        if not _is_int(self.jpeg_quality) or not 1 <= self.jpeg_quality <= 100:
            raise InvalidConfigurationError(f"jpeg_quality must be an integer in [1, 100], got {self.jpeg_quality!r}")
        if not _is_int(self.pad_width) or self.pad_width <= 0:
            raise InvalidConfigurationError(f"pad_width must be a positive integer, got {self.pad_width!r}")
        if not isinstance(self.prefix, str):
            raise InvalidConfigurationError(f"prefix must be a string, got {self.prefix!r}")
        if not isinstance(self.path, PathConfig):
            raise InvalidConfigurationError(f"path must be a PathConfig, got {self.path!r}")
        if self.interpolation not in INTERPOLATIONS:
            raise InvalidConfigurationError(f"Unknown interpolation: {self.interpolation}")
        if self.backend not in BACKENDS:
            raise InvalidConfigurationError(f"Unknown backend: {self.backend}")
        if self.image_format not in IMAGE_FORMATS:
            raise InvalidConfigurationError(f"Unknown image format: {self.image_format}")
        if len(str(self.frame_count - 1)) > self.pad_width:
            raise InvalidConfigurationError(
                f"pad_width {self.pad_width} too small for {self.frame_count} frames"
            )
        self.path.validate()
        return self

    def output_size(self, source_width: int, source_height: int) -> Tuple[int, int]:
        """Resolve (width, height), deriving missing values from the source.

        Keeps the source pixel density: a 60 degree view of a 3840 px wide
        panorama is 640 px wide.
        """
        width = self.output_width
        height = self.output_height
        if width is None:
            width = max(1, int(round(source_width * self.path.h_fov / (2 * math.pi))))
        if height is None:
            height = max(1, int(round(source_height * self.v_fov / math.pi)))
        return width, height

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ExtractionConfig":
        d = dict(d)
        path = d.pop("path", None) or {}
        valid_keys = {f for f in cls.__dataclass_fields__ if f != "path"}
        unknown = set(d) - valid_keys
        if unknown:
            raise InvalidConfigurationError(f"Unknown config keys: {sorted(unknown)}")
        try:
            path_cfg = path if isinstance(path, PathConfig) else PathConfig.from_dict(path)
        except TypeError as e:
            raise InvalidConfigurationError(f"Invalid path config: {e}") from e
        return cls(path=path_cfg, **d)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "ExtractionConfig":
        """Load a config written by ``to_yaml`` (angles in radians).

        ```yaml
        frame_count: 360
        output_width: 1280
        output_height: 720
        concurrency: 8
        path:
          start_yaw: -3.141592653589793
          angular_velocity: 6.283185307179586
          pitch: 0.0
          h_fov: 1.0471975511965976
        ```
        """
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise InvalidConfigurationError(f"Cannot read config {path}: {e}") from e
        if not isinstance(data, dict):
            raise InvalidConfigurationError(f"Config {path} must be a mapping")
        return cls.from_dict(data)

    def to_yaml(self, path: Union[str, Path]) -> None:
        with open(path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, sort_keys=False)
