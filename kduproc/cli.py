"""Command-line entry point: render one image request to a file.

Region, size, rotation and quality take IIIF-style strings, e.g.::

    python -m kduproc map.jp2 out.jpg --region pct:10,10,50,50 --size 800, --rotation !90
"""

from __future__ import annotations

import argparse
import dataclasses
import pathlib
import sys
from typing import Sequence

from kduproc.exceptions import ConfigurationError, ProcessorError
from kduproc.pipeline.formats import OutputFormat
from kduproc.pipeline.post_processing import POST_PROCESSORS
from kduproc.pipeline.types import (
    OperationParameters,
    Quality,
    RegionSpec,
    Rotation,
    ScaleMode,
    SizeSpec,
    SourceHandle,
)
from kduproc.processor import KakaduProcessor, ProcessorSettings
from kduproc.utils import log

LOGGER = log.get_logger(__name__)


def _numbers(text: str, count: int) -> list[float]:
    parts = text.split(",")
    if len(parts) != count:
        raise ValueError(f"expected {count} comma-separated numbers, got {text!r}")
    return [float(part) for part in parts]


def parse_region(text: str) -> RegionSpec:
    """Parse ``full``, ``x,y,w,h`` or ``pct:x,y,w,h``."""
    if text == "full":
        return RegionSpec.full()
    percent = text.startswith("pct:")
    x, y, width, height = _numbers(text[4:] if percent else text, 4)
    if width <= 0 or height <= 0:
        raise ValueError(f"region width and height must be positive: {text!r}")
    return RegionSpec(x=x, y=y, width=width, height=height, percent=percent)


def parse_size(text: str) -> SizeSpec:
    """Parse ``full``, ``w,``, ``,h``, ``!w,h``, ``w,h`` or ``pct:n``."""
    if text in ("full", "max"):
        return SizeSpec()
    if text.startswith("pct:"):
        return SizeSpec(ScaleMode.PERCENT, percent=float(text[4:]))

    best_fit = text.startswith("!")
    width_text, sep, height_text = text.lstrip("!").partition(",")
    if not sep:
        raise ValueError(f"size must contain a comma: {text!r}")
    width = int(width_text) if width_text else None
    height = int(height_text) if height_text else None
    if (width is not None and width <= 0) or (height is not None and height <= 0):
        raise ValueError(f"size width and height must be positive: {text!r}")
    if width and height:
        mode = ScaleMode.ASPECT_FIT_INSIDE if best_fit else ScaleMode.NON_ASPECT_FILL
    elif width:
        mode = ScaleMode.ASPECT_FIT_WIDTH
    elif height:
        mode = ScaleMode.ASPECT_FIT_HEIGHT
    else:
        raise ValueError(f"size needs a width or a height: {text!r}")
    return SizeSpec(mode, width=width, height=height)


def parse_rotation(text: str) -> Rotation:
    """Parse ``[!]degrees``; a leading ``!`` mirrors before rotating."""
    mirror = text.startswith("!")
    return Rotation(degrees=float(text.lstrip("!")), mirror=mirror)


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="kduproc",
        description="Decode a region of a JPEG2000 image with Kakadu and write it in another format.",
    )
    parser.add_argument("source", type=pathlib.Path, help="Source JPEG2000 image.")
    parser.add_argument(
        "output",
        type=pathlib.Path,
        help="Output file. Its extension (gif, jpg, png, tif) selects the format.",
    )
    parser.add_argument("--region", default="full", help="full, x,y,w,h or pct:x,y,w,h. Defaults to full.")
    parser.add_argument("--size", default="full", help="full, w,  ,h  !w,h  w,h or pct:n. Defaults to full.")
    parser.add_argument("--rotation", default="0", help="Clockwise degrees; prefix ! to mirror first.")
    parser.add_argument(
        "--quality",
        choices=[quality.value for quality in Quality],
        default=Quality.DEFAULT.value,
        help="Colour quality of the output. Defaults to default.",
    )
    parser.add_argument(
        "--post-processor",
        choices=sorted(POST_PROCESSORS),
        default=None,
        help="Post-processing backend. Defaults to the configured one.",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    args = parser.parse_args(argv)

    try:
        args.params = OperationParameters(
            output_format=OutputFormat.from_extension(args.output.suffix),
            region=parse_region(args.region),
            size=parse_size(args.size),
            rotation=parse_rotation(args.rotation),
            quality=Quality(args.quality),
        )
    except ValueError as exc:
        parser.error(str(exc))
    return args


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    if args.debug:
        log.set_level(True)

    try:
        settings = ProcessorSettings.from_config()
        if args.post_processor:
            settings = dataclasses.replace(settings, post_processor=args.post_processor)
        processor = KakaduProcessor(settings)
        data = processor.render(args.params, SourceHandle.from_path(args.source))
    except ConfigurationError as exc:
        LOGGER.error("Configuration error: %s", exc)
        return 2
    except ProcessorError as exc:
        LOGGER.error("%s", exc)
        LOGGER.debug("Cause: %r", exc.__cause__)
        return 1

    try:
        args.output.write_bytes(data)
    except OSError as exc:
        LOGGER.error("Could not write %s: %s", args.output, exc)
        return 1
    LOGGER.info("Wrote %s", args.output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
