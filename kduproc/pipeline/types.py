"""types.py.

Value types describing one decode request: the source, the requested region,
size, rotation and quality, and the records produced while serving it.
"""

from __future__ import annotations

import enum
import pathlib
from dataclasses import dataclass, field

from .formats import OutputFormat, SourceFormat

MAX_REDUCTION_FACTOR = 5


class ScaleMode(enum.Enum):
    """How the requested size relates to the source size."""

    FULL = "full"
    ASPECT_FIT_WIDTH = "fit_width"
    ASPECT_FIT_HEIGHT = "fit_height"
    ASPECT_FIT_INSIDE = "fit_inside"
    NON_ASPECT_FILL = "forced"
    PERCENT = "percent"


class Quality(enum.Enum):
    """Colour-space reduction applied during post-processing."""

    COLOR = "color"
    GRAY = "gray"
    BITONAL = "bitonal"
    DEFAULT = "default"


class ProcessorFeature(enum.Enum):
    MIRRORING = "mirroring"
    REGION_BY_PERCENT = "region_by_percent"
    REGION_BY_PIXELS = "region_by_pixels"
    ROTATION_ARBITRARY = "rotation_arbitrary"
    ROTATION_BY_90S = "rotation_by_90s"
    SIZE_ABOVE_FULL = "size_above_full"
    SIZE_BY_FORCED_WIDTH_HEIGHT = "size_by_forced_width_height"
    SIZE_BY_HEIGHT = "size_by_height"
    SIZE_BY_PERCENT = "size_by_percent"
    SIZE_BY_WIDTH = "size_by_width"
    SIZE_BY_WIDTH_HEIGHT = "size_by_width_height"


@dataclass(frozen=True)
class Dimensions:
    """Pixel dimensions of an image."""

    width: int
    height: int


@dataclass(frozen=True)
class SourceHandle:
    """An on-disk source image and its declared format."""

    path: pathlib.Path
    source_format: SourceFormat

    @classmethod
    def from_path(cls, path: str | pathlib.Path, source_format: SourceFormat | None = None) -> SourceHandle:
        path = pathlib.Path(path)
        return cls(path=path, source_format=source_format or SourceFormat.from_path(path.name))


@dataclass(frozen=True)
class RegionSpec:
    """Requested crop rectangle, in pixels or percent of the full image.

    ``RegionSpec.full()`` requests the whole image.
    """

    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0
    percent: bool = False
    is_full: bool = False

    @classmethod
    def full(cls) -> RegionSpec:
        return cls(is_full=True)

    def to_pixels(self, full_size: Dimensions) -> RegionSpec:
        """Return this region expressed in absolute pixels."""
        if self.is_full or not self.percent:
            return self
        return RegionSpec(
            x=self.x / 100.0 * full_size.width,
            y=self.y / 100.0 * full_size.height,
            width=self.width / 100.0 * full_size.width,
            height=self.height / 100.0 * full_size.height,
        )

    def extent(self, full_size: Dimensions) -> Dimensions:
        """Pixel dimensions of the area this region selects."""
        if self.is_full:
            return full_size
        pixels = self.to_pixels(full_size)
        return Dimensions(
            width=max(1, round(min(pixels.width, full_size.width - pixels.x))),
            height=max(1, round(min(pixels.height, full_size.height - pixels.y))),
        )


@dataclass(frozen=True)
class SizeSpec:
    """Requested output size.

    ``width`` / ``height`` are used by the fit and forced modes, ``percent``
    by PERCENT.
    """

    scale_mode: ScaleMode = ScaleMode.FULL
    width: int | None = None
    height: int | None = None
    percent: float | None = None

    def __post_init__(self) -> None:
        mode = self.scale_mode
        if mode in (ScaleMode.ASPECT_FIT_WIDTH, ScaleMode.ASPECT_FIT_INSIDE, ScaleMode.NON_ASPECT_FILL):
            if not self.width or self.width <= 0:
                raise ValueError(f"{mode.value} scaling requires a positive width")
        if mode in (ScaleMode.ASPECT_FIT_HEIGHT, ScaleMode.ASPECT_FIT_INSIDE, ScaleMode.NON_ASPECT_FILL):
            if not self.height or self.height <= 0:
                raise ValueError(f"{mode.value} scaling requires a positive height")
        if mode is ScaleMode.PERCENT and (self.percent is None or self.percent <= 0):
            raise ValueError("percent scaling requires a positive percent")


@dataclass(frozen=True)
class Rotation:
    """Clockwise rotation in degrees, optionally preceded by a horizontal flip."""

    degrees: float = 0.0
    mirror: bool = False

    @property
    def normalized_degrees(self) -> float:
        return self.degrees % 360.0


@dataclass(frozen=True)
class OperationParameters:
    """Everything a caller asks of one processing request."""

    output_format: OutputFormat
    region: RegionSpec = field(default_factory=RegionSpec.full)
    size: SizeSpec = field(default_factory=SizeSpec)
    rotation: Rotation = field(default_factory=Rotation)
    quality: Quality = Quality.DEFAULT


@dataclass(frozen=True)
class ProcessOutcome:
    """Exit status and captured output of one external process run."""

    exit_code: int
    stdout: bytes
    stderr: bytes

    @property
    def stderr_text(self) -> str:
        return self.stderr.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class DecodePlan:
    """Geometry plan for one kdu_expand run.

    Attributes:
        reduction_factor: Native 2^n downsampling applied by the decoder.
        region_argument: Fractional ``-region`` value, or None for the full image.
        command: The complete decoder argument list.
    """

    reduction_factor: int
    region_argument: str | None
    command: tuple[str, ...] = ()
