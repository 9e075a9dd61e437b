"""graph_processor.py.

Rendering-graph post-processing backend. Scale, rotate and filter only append
nodes to a lazy :class:`RenderGraph`; the chain of numpy / scikit-image
operations runs once, when the graph is encoded.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import numpy as np
from PIL import Image
from skimage import color, transform
from skimage.util import img_as_float, img_as_ubyte

from kduproc.utils.log import get_logger

from .encode import write_image
from .formats import OutputFormat
from .geometry import rotated_size, rotation_affine
from .image_processing_interfaces import PostProcessor, RasterImage
from .types import Dimensions, Quality, Rotation

LOGGER = get_logger(__name__)

ArrayOp = Callable[[np.ndarray], np.ndarray]


@dataclass(frozen=True)
class RenderNode:
    """One deferred operation in a render graph."""

    operation: str
    function: ArrayOp
    params: dict[str, Any] = field(default_factory=dict)


class RenderGraph:
    """An immutable, lazily evaluated chain of array operations.

    ``then`` returns a new graph with one more node; nothing is computed until
    ``render`` is called. ``dimensions`` tracks the size the chain will produce.
    """

    def __init__(
        self,
        source: Callable[[], np.ndarray],
        dimensions: Dimensions,
        nodes: tuple[RenderNode, ...] = (),
    ) -> None:
        self._source = source
        self.dimensions = dimensions
        self.nodes = nodes

    def then(self, operation: str, function: ArrayOp, dimensions: Dimensions, **params: Any) -> RenderGraph:
        node = RenderNode(operation=operation, function=function, params=params)
        return RenderGraph(self._source, dimensions, self.nodes + (node,))

    @property
    def operations(self) -> list[str]:
        return [node.operation for node in self.nodes]

    def render(self) -> np.ndarray:
        array = self._source()
        for node in self.nodes:
            LOGGER.debug("Rendering %s %s", node.operation, node.params)
            array = node.function(array)
        return array


def _resize(target: Dimensions) -> ArrayOp:
    def run(array: np.ndarray) -> np.ndarray:
        shape = (target.height, target.width) + array.shape[2:]
        downscaling = target.height < array.shape[0] or target.width < array.shape[1]
        return transform.resize(array, shape, order=1, anti_aliasing=downscaling)

    return run


def _mirror(array: np.ndarray) -> np.ndarray:
    return array[:, ::-1]


def _rotate(degrees: float) -> ArrayOp:
    def run(array: np.ndarray) -> np.ndarray:
        source = Dimensions(width=array.shape[1], height=array.shape[0])
        target, (a, b, c, d, e, f) = rotation_affine(source, degrees, pixel_centers=True)
        inverse = transform.AffineTransform(matrix=np.array([[a, b, c], [d, e, f], [0.0, 0.0, 1.0]]))
        shape = (target.height, target.width) + array.shape[2:]
        return transform.warp(array, inverse, output_shape=shape, order=1, cval=0.0)

    return run


def _to_gray(array: np.ndarray) -> np.ndarray:
    if array.ndim == 3:
        return color.rgb2gray(array[..., :3])
    return array


def _to_bitonal(array: np.ndarray) -> np.ndarray:
    return _to_gray(array) > 0.5


class GraphPostProcessor(PostProcessor[RenderGraph]):
    """PostProcessor implementation building a lazy scikit-image render graph."""

    name = "graph"

    def open(self, raster: RasterImage) -> RenderGraph:
        image = raster.image

        def load() -> np.ndarray:
            return img_as_float(np.asarray(image))

        return RenderGraph(load, raster.dimensions)

    def scale(self, handle: RenderGraph, target: Dimensions) -> RenderGraph:
        if handle.dimensions == target:
            return handle
        return handle.then("scale", _resize(target), target, width=target.width, height=target.height)

    def rotate(self, handle: RenderGraph, rotation: Rotation) -> RenderGraph:
        if rotation.mirror:
            handle = handle.then("mirror", _mirror, handle.dimensions)
        degrees = rotation.normalized_degrees
        if degrees == 0.0:
            return handle
        return handle.then("rotate", _rotate(degrees), rotated_size(handle.dimensions, degrees), degrees=degrees)

    def filter(self, handle: RenderGraph, quality: Quality) -> RenderGraph:
        if quality is Quality.GRAY:
            return handle.then("gray", _to_gray, handle.dimensions)
        if quality is Quality.BITONAL:
            return handle.then("bitonal", _to_bitonal, handle.dimensions)
        return handle

    def encode(self, handle: RenderGraph, output_format: OutputFormat) -> bytes:
        LOGGER.debug("Evaluating render graph: %s", " -> ".join(handle.operations) or "(identity)")
        array = handle.render()
        if array.dtype == bool:
            image = Image.fromarray(img_as_ubyte(array)).convert("1", dither=Image.Dither.NONE)
        else:
            image = Image.fromarray(img_as_ubyte(np.clip(array, 0.0, 1.0)))
        try:
            return write_image(image, output_format, self.jpg_quality)
        finally:
            image.close()

    def release(self, handle: RenderGraph) -> None:
        """Nothing to free: the graph holds no pixels and the raster owns the source."""
