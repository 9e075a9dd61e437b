"""decode.py.

Plans and runs kdu_expand for one request and turns its raw PNM output into a
RasterImage for post-processing.
"""

from __future__ import annotations

import io
import os
import pathlib
import threading

from PIL import Image

from kduproc.exceptions import StreamIOError, UnsupportedSourceFormatError
from kduproc.utils.log import get_logger
from kduproc.utils.memory_manager import log_memory_usage

from .formats import available_output_formats
from .geometry import map_region, plan_reduction
from .image_processing_interfaces import RasterImage
from .kdu_builder import KDU_EXPAND, KduExpandCommandBuilder
from .run_process import DEFAULT_MAX_STDOUT_BYTES, check_outcome, run_process
from .types import MAX_REDUCTION_FACTOR, DecodePlan, Dimensions, OperationParameters, ScaleMode, SourceHandle

LOGGER = get_logger(__name__)

STDOUT_DEVICE = "/dev/stdout"

# Guards the temporary change to Pillow's process-wide pixel limit
_PIXEL_LIMIT_LOCK = threading.Lock()


def ensure_stdout_symlink(path: str | pathlib.Path) -> pathlib.Path:
    """Create ``path`` as a symlink to the process's stdout if it is missing.

    kdu_expand picks its output codec from the destination's extension, so it
    is pointed at a ``.ppm`` name that resolves to stdout.
    """
    link = pathlib.Path(path)
    if os.path.lexists(link):
        return link
    link.parent.mkdir(parents=True, exist_ok=True)
    os.symlink(STDOUT_DEVICE, link)
    LOGGER.info("Created stdout symlink %s -> %s", link, STDOUT_DEVICE)
    return link


def _open_trusted(data: bytes) -> Image.Image:
    """Open decoder output without Pillow's decompression-bomb limit.

    The raster comes from kdu_expand and is already bounded by the stdout
    sink, so its pixel count cannot exceed what was actually received.
    """
    with _PIXEL_LIMIT_LOCK:
        saved = Image.MAX_IMAGE_PIXELS
        Image.MAX_IMAGE_PIXELS = None
        try:
            return Image.open(io.BytesIO(data))
        finally:
            Image.MAX_IMAGE_PIXELS = saved


def read_raster(data: bytes, reduction_factor: int = 0) -> RasterImage:
    """Open the decoder's PNM output as an RGB or grayscale raster.

    Raises:
        StreamIOError: If the bytes are empty or not a readable image.
    """
    if not data:
        raise StreamIOError(f"{KDU_EXPAND} produced no output")
    try:
        image = _open_trusted(data)
        image.load()
    except (OSError, ValueError, Image.DecompressionBombError) as exc:
        raise StreamIOError(f"Could not read {KDU_EXPAND} output ({len(data)} bytes): {exc}") from exc

    if image.mode not in ("RGB", "L"):
        converted = image.convert("RGB")
        image.close()
        image = converted
    return RasterImage(image=image, reduction_factor=reduction_factor, metadata={"format": "PNM", "mode": image.mode})


class KakaduDecoder:
    """Runs kdu_expand for a planned region and reduction.

    Args:
        bin_dir: Directory of the kdu_* binaries, or None to use PATH.
        destination: ``-o`` destination that resolves to stdout.
        timeout: Seconds before a running decoder is killed; None waits forever.
        max_output_bytes: Capacity of the raster buffer.
        tolerate_silent_failure: Accept a nonzero exit that wrote no stderr.
        max_reduction_factor: Upper bound for native reduction.
    """

    def __init__(
        self,
        bin_dir: pathlib.Path | str | None,
        destination: str,
        timeout: float | None = None,
        max_output_bytes: int = DEFAULT_MAX_STDOUT_BYTES,
        tolerate_silent_failure: bool = True,
        max_reduction_factor: int = MAX_REDUCTION_FACTOR,
    ) -> None:
        self.bin_dir = bin_dir
        self.destination = destination
        self.timeout = timeout
        self.max_output_bytes = max_output_bytes
        self.tolerate_silent_failure = tolerate_silent_failure
        self.max_reduction_factor = max_reduction_factor

    def build_command(self, source: SourceHandle, region_argument: str | None, reduction_factor: int) -> list[str]:
        return (
            KduExpandCommandBuilder(self.bin_dir)
            .set_input(source.path)
            .set_region(region_argument)
            .set_reduction(reduction_factor)
            .set_output(self.destination)
            .build()
        )

    def plan(self, params: OperationParameters, full_size: Dimensions, source: SourceHandle) -> DecodePlan:
        """Translate a request into a region argument, reduction factor and command.

        Native reduction is only planned for scaled output, against the extent
        of the requested region, so the decoder never shrinks the raster below
        what the requested size needs.
        """
        region_argument = map_region(params.region, full_size)
        if params.size.scale_mode is ScaleMode.FULL:
            reduction_factor = 0
        else:
            extent = params.region.extent(full_size)
            reduction_factor = plan_reduction(params.size, extent, self.max_reduction_factor)

        command = self.build_command(source, region_argument, reduction_factor)
        LOGGER.debug("Decode plan: region=%s reduce=%s", region_argument, reduction_factor)
        return DecodePlan(
            reduction_factor=reduction_factor,
            region_argument=region_argument,
            command=tuple(command),
        )

    def invoke(self, source: SourceHandle, region_argument: str | None, reduction_factor: int) -> RasterImage:
        """Decode ``source`` and return the raw raster.

        Raises:
            UnsupportedSourceFormatError: If the source format cannot be decoded.
            ProcessStartError: If kdu_expand cannot be started.
            ProcessFailedError: If kdu_expand failed with error output.
            DecodeTimeoutError: If kdu_expand outlived the timeout.
            StreamIOError: If either stream or the raster could not be read.
        """
        if not available_output_formats(source.source_format):
            raise UnsupportedSourceFormatError(source.source_format)

        if self.destination != STDOUT_DEVICE:
            ensure_stdout_symlink(self.destination)

        command = self.build_command(source, region_argument, reduction_factor)
        outcome = run_process(
            command,
            tool_name=KDU_EXPAND,
            timeout=self.timeout,
            max_stdout_bytes=self.max_output_bytes,
        )
        check_outcome(outcome, KDU_EXPAND, self.tolerate_silent_failure)

        raster = read_raster(outcome.stdout, reduction_factor)
        raster.metadata["source_path"] = str(source.path)
        raster.metadata["command"] = command
        LOGGER.info(
            "Decoded %s: %sx%s (reduce %s)",
            source.path.name,
            raster.width,
            raster.height,
            reduction_factor,
        )
        log_memory_usage("After decode")
        return raster
