"""post_processing.py.

Registry of post-processing backends, selected by name from configuration.
"""

from kduproc.exceptions import ConfigurationError
from kduproc.utils.log import get_logger

from .graph_processor import GraphPostProcessor
from .image_processing_interfaces import PostProcessor
from .raster_processor import RasterPostProcessor

LOGGER = get_logger(__name__)

POST_PROCESSORS: dict[str, type[PostProcessor]] = {
    RasterPostProcessor.name: RasterPostProcessor,
    GraphPostProcessor.name: GraphPostProcessor,
}


def create_post_processor(name: str, jpg_quality: int = 80) -> PostProcessor:
    """Instantiate the backend registered under ``name``.

    Raises:
        ConfigurationError: If no backend has that name.
    """
    try:
        backend = POST_PROCESSORS[name.lower()]
    except KeyError:
        raise ConfigurationError(
            f"Unknown post-processor {name!r}; expected one of {', '.join(sorted(POST_PROCESSORS))}"
        ) from None
    LOGGER.debug("Post-processing using %s", backend.name)
    return backend(jpg_quality=jpg_quality)
