"""JPEG2000 image serving through the Kakadu command-line tools.

The processor probes a source with kdu_jp2info, decodes the requested region
at a native reduction with kdu_expand and finishes the image with one of two
interchangeable post-processing backends.
"""

from .exceptions import KduProcError, ProcessorError
from .processor import KakaduProcessor, ProcessorSettings

__all__ = [
    "KakaduProcessor",
    "KduProcError",
    "ProcessorError",
    "ProcessorSettings",
]
