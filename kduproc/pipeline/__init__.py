"""Decode pipeline: header probe, geometry planning, kdu_expand invocation and
post-processing backends.
"""

from .decode import KakaduDecoder
from .formats import OutputFormat, SourceFormat, available_output_formats
from .post_processing import POST_PROCESSORS, create_post_processor
from .probe import DimensionProbe
from .types import (
    DecodePlan,
    Dimensions,
    OperationParameters,
    ProcessorFeature,
    Quality,
    RegionSpec,
    Rotation,
    ScaleMode,
    SizeSpec,
    SourceHandle,
)

__all__ = [
    "POST_PROCESSORS",
    "DecodePlan",
    "Dimensions",
    "DimensionProbe",
    "KakaduDecoder",
    "OperationParameters",
    "OutputFormat",
    "ProcessorFeature",
    "Quality",
    "RegionSpec",
    "Rotation",
    "ScaleMode",
    "SizeSpec",
    "SourceFormat",
    "SourceHandle",
    "available_output_formats",
    "create_post_processor",
]
