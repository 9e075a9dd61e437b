import io
from unittest.mock import MagicMock

import pytest
from PIL import Image

from kduproc.exceptions import ConfigurationError, PostProcessingError
from kduproc.pipeline.decode import read_raster
from kduproc.pipeline.formats import OutputFormat
from kduproc.pipeline.geometry import rotated_size
from kduproc.pipeline.graph_processor import GraphPostProcessor, RenderGraph
from kduproc.pipeline.image_processing_interfaces import RasterImage
from kduproc.pipeline.post_processing import POST_PROCESSORS, create_post_processor
from kduproc.pipeline.raster_processor import RasterPostProcessor
from kduproc.pipeline.types import Dimensions, Quality, Rotation, ScaleMode, SizeSpec
from tests.utils.mocks import create_test_ppm

BACKENDS = [RasterPostProcessor, GraphPostProcessor]

RED = (255, 0, 0)
BLUE = (0, 0, 255)


def _split_raster(width: int = 40, height: int = 20) -> RasterImage:
    """Left half red, right half blue."""
    image = Image.new("RGB", (width, height), RED)
    image.paste(BLUE, (width // 2, 0, width, height))
    return RasterImage(image=image)


def _decode(data: bytes) -> Image.Image:
    image = Image.open(io.BytesIO(data))
    image.load()
    return image


def _run(backend, raster=None, size=SizeSpec(), reduction=0, rotation=Rotation(), quality=Quality.DEFAULT, fmt=OutputFormat.PNG):
    raster = raster or read_raster(create_test_ppm(64, 48), reduction)
    return _decode(backend().process(raster, size, reduction, rotation, quality, fmt))


@pytest.mark.parametrize("backend", BACKENDS)
def test_full_request_keeps_dimensions(backend):
    image = _run(backend)
    assert image.size == (64, 48)
    assert image.mode == "RGB"


@pytest.mark.parametrize(
    "size, reduction, rotation",
    [
        (SizeSpec(ScaleMode.ASPECT_FIT_WIDTH, width=32), 0, Rotation()),
        (SizeSpec(ScaleMode.ASPECT_FIT_HEIGHT, height=20), 0, Rotation(90)),
        (SizeSpec(ScaleMode.ASPECT_FIT_INSIDE, width=50, height=50), 0, Rotation(30)),
        (SizeSpec(ScaleMode.NON_ASPECT_FILL, width=17, height=91), 0, Rotation(180, mirror=True)),
        (SizeSpec(ScaleMode.PERCENT, percent=25), 1, Rotation(270)),
        (SizeSpec(ScaleMode.ASPECT_FIT_WIDTH, width=150), 0, Rotation(45)),
        (SizeSpec(), 0, Rotation(359.5)),
    ],
)
def test_backends_agree_on_dimensions(size, reduction, rotation):
    sizes = {backend.name: _run(backend, size=size, reduction=reduction, rotation=rotation).size for backend in BACKENDS}
    assert sizes["raster"] == sizes["graph"]


@pytest.mark.parametrize("backend", BACKENDS)
def test_scale_and_rotate_dimensions(backend):
    image = _run(backend, size=SizeSpec(ScaleMode.ASPECT_FIT_WIDTH, width=32), rotation=Rotation(90))
    assert image.size == (24, 32)

    expected = rotated_size(Dimensions(64, 48), 45)
    image = _run(backend, rotation=Rotation(45))
    assert image.size == (expected.width, expected.height)


@pytest.mark.parametrize("backend", BACKENDS)
def test_percent_compensates_native_reduction(backend):
    # 50% of a 128x96 source decoded at reduce 1 (64x48) is 64x48
    image = _run(backend, size=SizeSpec(ScaleMode.PERCENT, percent=50), reduction=1)
    assert image.size == (64, 48)


@pytest.mark.parametrize("backend", BACKENDS)
def test_quarter_turn_is_clockwise(backend):
    image = _run(backend, raster=_split_raster(), rotation=Rotation(90)).convert("RGB")
    assert image.size == (20, 40)
    # Left half of the source ends up on top
    assert image.getpixel((10, 5)) == pytest.approx(RED, abs=8)
    assert image.getpixel((10, 34)) == pytest.approx(BLUE, abs=8)


@pytest.mark.parametrize("backend", BACKENDS)
def test_mirror(backend):
    image = _run(backend, raster=_split_raster(), rotation=Rotation(0, mirror=True)).convert("RGB")
    assert image.size == (40, 20)
    assert image.getpixel((5, 10)) == pytest.approx(BLUE, abs=8)
    assert image.getpixel((34, 10)) == pytest.approx(RED, abs=8)


@pytest.mark.parametrize("backend", BACKENDS)
def test_gray_quality(backend):
    image = _run(backend, quality=Quality.GRAY)
    assert image.mode == "L"
    assert image.size == (64, 48)


@pytest.mark.parametrize("backend", BACKENDS)
def test_bitonal_quality(backend):
    image = _run(backend, quality=Quality.BITONAL)
    assert image.mode == "1"
    assert set(image.convert("L").getdata()) <= {0, 255}


@pytest.mark.parametrize("backend", BACKENDS)
@pytest.mark.parametrize("fmt", [OutputFormat.GIF, OutputFormat.JPG, OutputFormat.PNG, OutputFormat.TIF])
def test_output_formats(backend, fmt):
    image = _run(backend, fmt=fmt)
    assert image.format == fmt.pil_format
    assert image.size == (64, 48)


@pytest.mark.parametrize("backend", BACKENDS)
def test_jpg_quality_setting(backend):
    raster_low = read_raster(create_test_ppm(64, 48))
    raster_high = read_raster(create_test_ppm(64, 48))
    low = backend(jpg_quality=5).process(raster_low, SizeSpec(), 0, Rotation(), Quality.COLOR, OutputFormat.JPG)
    high = backend(jpg_quality=95).process(raster_high, SizeSpec(), 0, Rotation(), Quality.COLOR, OutputFormat.JPG)
    assert len(low) < len(high)


@pytest.mark.parametrize("backend", BACKENDS)
def test_raster_released_after_success(backend):
    raster = read_raster(create_test_ppm())
    raster.close = MagicMock(wraps=raster.close)
    backend().process(raster, SizeSpec(), 0, Rotation(), Quality.DEFAULT, OutputFormat.PNG)
    raster.close.assert_called_once()


@pytest.mark.parametrize("backend", BACKENDS)
def test_failure_is_wrapped_and_releases(backend, monkeypatch):
    processor = backend()
    raster = read_raster(create_test_ppm())
    raster.close = MagicMock(wraps=raster.close)
    release = MagicMock(wraps=processor.release)
    monkeypatch.setattr(processor, "release", release)
    monkeypatch.setattr(processor, "rotate", MagicMock(side_effect=ValueError("bad angle")))

    with pytest.raises(PostProcessingError) as excinfo:
        processor.process(raster, SizeSpec(), 0, Rotation(90), Quality.DEFAULT, OutputFormat.PNG)

    assert excinfo.value.backend == backend.name
    assert excinfo.value.stage == "rotate"
    assert isinstance(excinfo.value.__cause__, ValueError)
    release.assert_called_once()
    raster.close.assert_called_once()


def test_graph_is_lazy_until_encode():
    processor = GraphPostProcessor()
    raster = read_raster(create_test_ppm())
    loads = []
    opened = processor.open(raster)
    graph = RenderGraph(lambda: loads.append(1) or opened.render(), opened.dimensions)

    graph = processor.scale(graph, Dimensions(32, 24))
    graph = processor.rotate(graph, Rotation(90, mirror=True))
    graph = processor.filter(graph, Quality.GRAY)
    assert loads == []
    assert graph.operations == ["scale", "mirror", "rotate", "gray"]
    assert graph.dimensions == Dimensions(24, 32)

    processor.encode(graph, OutputFormat.PNG)
    assert loads == [1]
    raster.close()


def test_graph_skips_identity_steps():
    processor = GraphPostProcessor()
    raster = read_raster(create_test_ppm())
    graph = processor.open(raster)
    graph = processor.filter(processor.rotate(processor.scale(graph, raster.dimensions), Rotation()), Quality.COLOR)
    assert graph.operations == []
    raster.close()


def test_create_post_processor():
    assert set(POST_PROCESSORS) == {"raster", "graph"}
    assert isinstance(create_post_processor("raster"), RasterPostProcessor)
    processor = create_post_processor("GRAPH", jpg_quality=60)
    assert isinstance(processor, GraphPostProcessor)
    assert processor.jpg_quality == 60
    with pytest.raises(ConfigurationError):
        create_post_processor("jai")


def test_graph_release_leaves_graph_intact():
    processor = GraphPostProcessor()
    raster = read_raster(create_test_ppm())
    graph = processor.scale(processor.open(raster), Dimensions(32, 24))
    nodes = graph.nodes

    processor.release(graph)

    assert graph.nodes is nodes
    assert graph.operations == ["scale"]
    assert graph.render().shape[:2] == (24, 32)
    raster.close()


@pytest.mark.parametrize("backend", BACKENDS)
def test_oversized_stage_output_is_wrapped(backend, monkeypatch):
    processor = backend()
    raster = read_raster(create_test_ppm())
    monkeypatch.setattr(processor, "scale", MagicMock(side_effect=Image.DecompressionBombError("too many pixels")))

    with pytest.raises(PostProcessingError) as excinfo:
        processor.process(raster, SizeSpec(ScaleMode.PERCENT, percent=50), 0, Rotation(), Quality.DEFAULT, OutputFormat.PNG)

    assert excinfo.value.stage == "scale"
    assert isinstance(excinfo.value.__cause__, Image.DecompressionBombError)
