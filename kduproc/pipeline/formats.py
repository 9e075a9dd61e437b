"""formats.py.

Source and output formats understood by the Kakadu processor, and the mapping
from a source format to the output formats that can be derived from it.
"""

from __future__ import annotations

import enum


class SourceFormat(enum.Enum):
    """Formats a source image may be stored in."""

    JP2 = "jp2"
    JPG = "jpg"
    PNG = "png"
    TIF = "tif"
    UNKNOWN = "unknown"

    @classmethod
    def from_path(cls, path: str) -> SourceFormat:
        """Guess the source format from a file name's extension."""
        suffix = path.rsplit(".", 1)[-1].lower() if "." in path else ""
        aliases = {"jpx": cls.JP2, "j2k": cls.JP2, "jpeg": cls.JPG, "tiff": cls.TIF}
        if suffix in aliases:
            return aliases[suffix]
        try:
            return cls(suffix)
        except ValueError:
            return cls.UNKNOWN


class OutputFormat(enum.Enum):
    """Encodable output formats.

    Each member carries its file extension, the Pillow codec used to write it
    and its media type.
    """

    GIF = ("gif", "GIF", "image/gif")
    JPG = ("jpg", "JPEG", "image/jpeg")
    PNG = ("png", "PNG", "image/png")
    TIF = ("tif", "TIFF", "image/tiff")
    # Encodable, but never offered for a JPEG2000 source
    WEBP = ("webp", "WEBP", "image/webp")

    def __init__(self, extension: str, pil_format: str, media_type: str) -> None:
        self.extension = extension
        self.pil_format = pil_format
        self.media_type = media_type

    @classmethod
    def from_extension(cls, extension: str) -> OutputFormat:
        ext = extension.lower().lstrip(".")
        if ext == "jpeg":
            ext = "jpg"
        elif ext == "tiff":
            ext = "tif"
        for member in cls:
            if member.extension == ext:
                return member
        raise ValueError(f"Unknown output format: {extension}")


# Formats the post-processing encoders can write for a decoded raster
RASTER_OUTPUT_FORMATS = frozenset({OutputFormat.GIF, OutputFormat.JPG, OutputFormat.PNG, OutputFormat.TIF})


def available_output_formats(source_format: SourceFormat) -> frozenset[OutputFormat]:
    """Return the output formats derivable from ``source_format``.

    Only JPEG2000 sources can be decoded by kdu_expand.
    """
    if source_format is SourceFormat.JP2:
        return RASTER_OUTPUT_FORMATS
    return frozenset()
