"""raster_processor.py.

Direct-raster post-processing backend. Each step is applied eagerly to an
in-memory Pillow image and the previous image is closed as soon as its
successor exists.
"""

from PIL import Image

from .encode import write_image
from .formats import OutputFormat
from .geometry import rotation_affine
from .image_processing_interfaces import PostProcessor, RasterImage
from .types import Dimensions, Quality, Rotation


def _replace(old: Image.Image, new: Image.Image) -> Image.Image:
    if new is not old:
        old.close()
    return new


class RasterPostProcessor(PostProcessor[Image.Image]):
    """PostProcessor implementation working on Pillow images."""

    name = "raster"

    def open(self, raster: RasterImage) -> Image.Image:
        return raster.image.copy()

    def scale(self, handle: Image.Image, target: Dimensions) -> Image.Image:
        if handle.size == (target.width, target.height):
            return handle
        return _replace(handle, handle.resize((target.width, target.height), Image.Resampling.LANCZOS))

    def rotate(self, handle: Image.Image, rotation: Rotation) -> Image.Image:
        if rotation.mirror:
            handle = _replace(handle, handle.transpose(Image.Transpose.FLIP_LEFT_RIGHT))

        degrees = rotation.normalized_degrees
        if degrees == 0.0:
            return handle
        target, coefficients = rotation_affine(Dimensions(handle.width, handle.height), degrees)
        rotated = handle.transform(
            (target.width, target.height),
            Image.Transform.AFFINE,
            coefficients,
            resample=Image.Resampling.BICUBIC,
        )
        return _replace(handle, rotated)

    def filter(self, handle: Image.Image, quality: Quality) -> Image.Image:
        if quality is Quality.GRAY:
            if handle.mode == "L":
                return handle
            return _replace(handle, handle.convert("L"))
        if quality is Quality.BITONAL:
            if handle.mode != "L":
                handle = _replace(handle, handle.convert("L"))
            # Plain threshold at mid-gray, no dithering
            return _replace(handle, handle.convert("1", dither=Image.Dither.NONE))
        return handle

    def encode(self, handle: Image.Image, output_format: OutputFormat) -> bytes:
        return write_image(handle, output_format, self.jpg_quality)

    def release(self, handle: Image.Image) -> None:
        handle.close()
