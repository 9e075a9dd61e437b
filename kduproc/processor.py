"""processor.py

Provides KakaduProcessor, which serves one image request end to end: format
negotiation, a single header probe, geometry planning, the kdu_expand run and
post-processing by the configured backend.
"""

from __future__ import annotations

import pathlib
from dataclasses import dataclass
from typing import BinaryIO

from kduproc.exceptions import (
    ProcessorError,
    StreamIOError,
    UnsupportedOutputFormatError,
    UnsupportedSourceFormatError,
)
from kduproc.pipeline.decode import KakaduDecoder
from kduproc.pipeline.formats import OutputFormat, SourceFormat, available_output_formats
from kduproc.pipeline.image_processing_interfaces import PostProcessor
from kduproc.pipeline.post_processing import create_post_processor
from kduproc.pipeline.probe import DimensionProbe
from kduproc.pipeline.run_process import DEFAULT_MAX_STDOUT_BYTES
from kduproc.pipeline.types import (
    MAX_REDUCTION_FACTOR,
    DecodePlan,
    Dimensions,
    OperationParameters,
    ProcessorFeature,
    Quality,
    SourceHandle,
)
from kduproc.utils import config
from kduproc.utils.log import get_logger

LOGGER = get_logger(__name__)

SUPPORTED_QUALITIES = frozenset({Quality.BITONAL, Quality.COLOR, Quality.DEFAULT, Quality.GRAY})
SUPPORTED_FEATURES = frozenset(ProcessorFeature)


@dataclass(frozen=True)
class ProcessorSettings:
    """Process-wide processor configuration, read once at startup."""

    bin_dir: pathlib.Path | None = None
    stdout_destination: str = "/dev/stdout"
    post_processor: str = "raster"
    decode_timeout: float | None = None
    max_output_bytes: int = DEFAULT_MAX_STDOUT_BYTES
    tolerate_silent_exit: bool = True
    max_reduction_factor: int = MAX_REDUCTION_FACTOR
    jpg_quality: int = 80

    @classmethod
    def from_config(cls) -> ProcessorSettings:
        return cls(
            bin_dir=config.get_binaries_dir(),
            stdout_destination=config.get_stdout_symlink_path(),
            post_processor=config.get_post_processor_name(),
            decode_timeout=config.get_decode_timeout(),
            max_output_bytes=config.get_max_output_bytes(),
            tolerate_silent_exit=config.get_tolerate_silent_exit(),
            max_reduction_factor=config.get_max_reduction_factor(),
            jpg_quality=config.get_jpg_quality(),
        )


class KakaduProcessor:
    """Processor using the Kakadu kdu_expand and kdu_jp2info command-line tools.

    Typical usage:
        processor = KakaduProcessor(ProcessorSettings.from_config())
        with open("out.jpg", "wb") as fp:
            processor.process(params, SourceHandle.from_path("image.jp2"), fp)
    """

    def __init__(
        self,
        settings: ProcessorSettings | None = None,
        probe: DimensionProbe | None = None,
        decoder: KakaduDecoder | None = None,
        post_processor: PostProcessor | None = None,
    ) -> None:
        self.settings = settings or ProcessorSettings()
        self.probe = probe or DimensionProbe(self.settings.bin_dir)
        self.decoder = decoder or KakaduDecoder(
            self.settings.bin_dir,
            self.settings.stdout_destination,
            timeout=self.settings.decode_timeout,
            max_output_bytes=self.settings.max_output_bytes,
            tolerate_silent_failure=self.settings.tolerate_silent_exit,
            max_reduction_factor=self.settings.max_reduction_factor,
        )
        self.post_processor = post_processor or create_post_processor(
            self.settings.post_processor, jpg_quality=self.settings.jpg_quality
        )

    @staticmethod
    def available_output_formats(source_format: SourceFormat) -> frozenset[OutputFormat]:
        return available_output_formats(source_format)

    def supported_features(self, source_format: SourceFormat) -> frozenset[ProcessorFeature]:
        if self.available_output_formats(source_format):
            return SUPPORTED_FEATURES
        return frozenset()

    def supported_qualities(self, source_format: SourceFormat) -> frozenset[Quality]:
        if self.available_output_formats(source_format):
            return SUPPORTED_QUALITIES
        return frozenset()

    def get_size(self, source: SourceHandle) -> Dimensions:
        """Full dimensions of the source, read from its codestream header."""
        return self.probe.probe(source)

    def plan_decode(self, params: OperationParameters, full_size: Dimensions, source: SourceHandle) -> DecodePlan:
        return self.decoder.plan(params, full_size, source)

    def _check_formats(self, params: OperationParameters, source: SourceHandle) -> None:
        output_formats = self.available_output_formats(source.source_format)
        if not output_formats:
            raise UnsupportedSourceFormatError(source.source_format)
        if params.output_format not in output_formats:
            raise UnsupportedOutputFormatError(params.output_format)

    def render(self, params: OperationParameters, source: SourceHandle) -> bytes:
        """Produce the encoded image for ``params`` without writing it anywhere.

        Raises:
            ProcessorError: Any failure, with the original cause chained.
        """
        self._check_formats(params, source)

        try:
            full_size = self.get_size(source)
            plan = self.plan_decode(params, full_size, source)
            raster = self.decoder.invoke(source, plan.region_argument, plan.reduction_factor)
            return self.post_processor.process(
                raster,
                params.size,
                plan.reduction_factor,
                params.rotation,
                params.quality,
                params.output_format,
            )
        except ProcessorError:
            raise
        except OSError as exc:
            LOGGER.exception("I/O error while processing %s", source.path)
            raise StreamIOError(str(exc)) from exc

    def process(self, params: OperationParameters, source: SourceHandle, output_stream: BinaryIO) -> None:
        """Render ``params`` for ``source`` and write the encoded bytes.

        Nothing is written unless every stage succeeded.
        """
        data = self.render(params, source)
        try:
            output_stream.write(data)
        except OSError as exc:
            raise StreamIOError(f"Error writing output: {exc}") from exc
        LOGGER.info(
            "Wrote %s bytes of %s for %s",
            len(data),
            params.output_format.media_type,
            source.path.name,
        )
