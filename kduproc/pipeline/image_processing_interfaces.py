"""image_processing_interfaces.py.

Defines the decoded raster container and the abstract post-processing
interface shared by the rendering-graph and direct-raster backends. Both
backends run the same fixed sequence (scale, rotate, filter, encode) so that
for identical inputs they produce images of identical pixel dimensions.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from PIL import Image

from kduproc.exceptions import PostProcessingError
from kduproc.utils.log import get_logger
from kduproc.utils.memory_manager import log_memory_usage

from .formats import OutputFormat
from .geometry import scaled_size
from .types import Dimensions, Quality, Rotation, SizeSpec

LOGGER = get_logger(__name__)

HandleT = TypeVar("HandleT")


@dataclass
class RasterImage:
    """A decoded raster and associated metadata.

    Attributes:
        image (Image.Image): The decoded pixels, in mode ``RGB`` or ``L``.
        reduction_factor (int): Native reduction the decoder already applied.
        metadata (Dict[str, Any]): Arbitrary metadata (source path, decoder
            command, processing history).
    """

    image: Image.Image
    reduction_factor: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    @property
    def dimensions(self) -> Dimensions:
        return Dimensions(width=self.image.width, height=self.image.height)

    def close(self) -> None:
        """Release the pixel buffer."""
        self.image.close()


class PostProcessor(abc.ABC, Generic[HandleT]):
    """Abstract base class for post-processing backends.

    A backend works on its own handle type (a Pillow image, a lazy render
    graph, ...). ``process`` drives the handle through scale, rotate and
    filter, then encodes it, and releases every buffer on every exit path.
    """

    name = "abstract"

    def __init__(self, jpg_quality: int = 80) -> None:
        self.jpg_quality = jpg_quality

    @abc.abstractmethod
    def open(self, raster: RasterImage) -> HandleT:
        """Wrap a decoded raster in the backend's handle type."""

    @abc.abstractmethod
    def scale(self, handle: HandleT, target: Dimensions) -> HandleT:
        """Resize to exactly ``target``."""

    @abc.abstractmethod
    def rotate(self, handle: HandleT, rotation: Rotation) -> HandleT:
        """Mirror (optionally) then rotate clockwise, expanding the canvas."""

    @abc.abstractmethod
    def filter(self, handle: HandleT, quality: Quality) -> HandleT:
        """Reduce the colour space for gray or bitonal quality."""

    @abc.abstractmethod
    def encode(self, handle: HandleT, output_format: OutputFormat) -> bytes:
        """Encode the handle's pixels in ``output_format``."""

    @abc.abstractmethod
    def release(self, handle: HandleT) -> None:
        """Free any buffer the handle still holds."""

    def process(
        self,
        raster: RasterImage,
        size: SizeSpec,
        reduction_factor: int,
        rotation: Rotation,
        quality: Quality,
        output_format: OutputFormat,
    ) -> bytes:
        """Transform and encode a decoded raster.

        Args:
            raster: The decoder's output. Closed before returning.
            size: The originally requested size.
            reduction_factor: Native reduction already applied to ``raster``.
            rotation: Requested rotation.
            quality: Requested quality.
            output_format: Format to encode to.

        Returns:
            The encoded image bytes.

        Raises:
            PostProcessingError: If any step fails. There is no fallback to
                another backend.
        """
        target = scaled_size(size, raster.dimensions, reduction_factor)
        LOGGER.debug(
            "%s post-processing %sx%s -> %sx%s, rotation %s, quality %s, format %s",
            self.name,
            raster.width,
            raster.height,
            target.width,
            target.height,
            rotation.degrees,
            quality.value,
            output_format.extension,
        )
        log_memory_usage(f"Before {self.name} post-processing")

        stage = "open"
        handle: HandleT | None = None
        try:
            handle = self.open(raster)
            stage = "scale"
            handle = self.scale(handle, target)
            stage = "rotate"
            handle = self.rotate(handle, rotation)
            stage = "filter"
            handle = self.filter(handle, quality)
            stage = "encode"
            return self.encode(handle, output_format)
        except PostProcessingError:
            raise
        except (OSError, ValueError, TypeError, MemoryError, Image.DecompressionBombError) as exc:
            LOGGER.exception("%s post-processing failed at %s", self.name, stage)
            raise PostProcessingError(str(exc), backend=self.name, stage=stage) from exc
        finally:
            if handle is not None:
                self.release(handle)
            raster.close()
            log_memory_usage(f"After {self.name} post-processing")
