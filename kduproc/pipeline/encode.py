"""Image encoding for the post-processing backends."""

import io

from PIL import Image

from kduproc.utils.log import get_logger

from .formats import OutputFormat

LOGGER = get_logger(__name__)

# Modes each codec writes without conversion
_NATIVE_MODES = {
    OutputFormat.JPG: ("RGB", "L"),
    OutputFormat.GIF: ("P", "L", "1"),
    OutputFormat.PNG: ("RGB", "RGBA", "L", "1", "P"),
    OutputFormat.TIF: ("RGB", "RGBA", "L", "1"),
    OutputFormat.WEBP: ("RGB", "RGBA"),
}


def _convert_for(image: Image.Image, output_format: OutputFormat) -> Image.Image:
    if image.mode in _NATIVE_MODES[output_format]:
        return image
    if output_format is OutputFormat.GIF:
        return image.convert("P", palette=Image.Palette.ADAPTIVE)
    if image.mode in ("1", "I", "I;16", "F") and "L" in _NATIVE_MODES[output_format]:
        return image.convert("L")
    return image.convert("RGB")


def write_image(image: Image.Image, output_format: OutputFormat, jpg_quality: int = 80) -> bytes:
    """Encode ``image`` with the Pillow codec for ``output_format``.

    Args:
        image: Image to encode. Not closed by this function.
        output_format: Target format.
        jpg_quality: JPEG quality, 1-100.

    Returns:
        The encoded bytes.
    """
    converted = _convert_for(image, output_format)
    options = {"quality": jpg_quality} if output_format is OutputFormat.JPG else {}
    buffer = io.BytesIO()
    try:
        converted.save(buffer, format=output_format.pil_format, **options)
    finally:
        if converted is not image:
            converted.close()
    LOGGER.debug(
        "Encoded %sx%s %s image as %s (%s bytes)",
        image.width,
        image.height,
        image.mode,
        output_format.pil_format,
        buffer.tell(),
    )
    return buffer.getvalue()
