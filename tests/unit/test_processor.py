import io
import subprocess
from unittest.mock import MagicMock

import pytest
from PIL import Image

from kduproc.exceptions import (
    ProcessFailedError,
    StreamIOError,
    UnsupportedOutputFormatError,
    UnsupportedSourceFormatError,
)
from kduproc.pipeline.formats import OutputFormat, SourceFormat
from kduproc.pipeline.graph_processor import GraphPostProcessor
from kduproc.pipeline.raster_processor import RasterPostProcessor
from kduproc.pipeline.types import (
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
from kduproc.processor import SUPPORTED_QUALITIES, KakaduProcessor, ProcessorSettings
from tests.utils.mocks import create_mock_popen, create_mock_subprocess_run, create_test_ppm


@pytest.fixture
def settings(temp_dir):
    return ProcessorSettings(bin_dir=None, stdout_destination=str(temp_dir / "stdout.ppm"))


@pytest.fixture
def kakadu(monkeypatch, jp2info_xml):
    """Patch both kdu tools; returns the recorded calls."""
    calls = {"run": [], "popen": []}

    def install(full=(128, 96), decoded=(32, 24), returncode=0, stderr=b""):
        run = create_mock_subprocess_run(stdout=jp2info_xml(*full))

        def recording_run(*args, **kwargs):
            calls["run"].append(list(args[0]))
            return run(*args, **kwargs)

        monkeypatch.setattr(subprocess, "run", recording_run)
        monkeypatch.setattr(
            subprocess,
            "Popen",
            create_mock_popen(
                returncode=returncode,
                stdout=create_test_ppm(*decoded),
                stderr=stderr,
                instances=calls["popen"],
            ),
        )
        return calls

    return install


def test_format_negotiation(settings):
    processor = KakaduProcessor(settings)
    assert processor.available_output_formats(SourceFormat.JP2) == {
        OutputFormat.GIF,
        OutputFormat.JPG,
        OutputFormat.PNG,
        OutputFormat.TIF,
    }
    assert processor.available_output_formats(SourceFormat.PNG) == frozenset()
    assert processor.supported_features(SourceFormat.JP2) == frozenset(ProcessorFeature)
    assert processor.supported_features(SourceFormat.TIF) == frozenset()
    assert processor.supported_qualities(SourceFormat.JP2) == SUPPORTED_QUALITIES
    assert processor.supported_qualities(SourceFormat.UNKNOWN) == frozenset()


def test_get_size(settings, kakadu, jp2_source):
    calls = kakadu(full=(5000, 4000))
    assert KakaduProcessor(settings).get_size(SourceHandle.from_path(jp2_source)) == Dimensions(5000, 4000)
    assert calls["run"][0][0] == "kdu_jp2info"


@pytest.mark.parametrize("backend", ["raster", "graph"])
def test_process_end_to_end(temp_dir, kakadu, jp2_source, backend):
    calls = kakadu(full=(128, 96), decoded=(32, 24))
    settings = ProcessorSettings(stdout_destination=str(temp_dir / "stdout.ppm"), post_processor=backend)
    params = OperationParameters(
        output_format=OutputFormat.PNG,
        size=SizeSpec(ScaleMode.ASPECT_FIT_WIDTH, width=32),
        rotation=Rotation(90),
        quality=Quality.GRAY,
    )
    out = io.BytesIO()

    KakaduProcessor(settings).process(params, SourceHandle.from_path(jp2_source), out)

    image = Image.open(io.BytesIO(out.getvalue()))
    assert image.size == (24, 32)
    assert image.mode == "L"
    assert len(calls["run"]) == 1
    command = calls["popen"][0].args
    assert command[command.index("-reduce") + 1] == "2"


def test_process_with_region(settings, kakadu, jp2_source):
    calls = kakadu(full=(1000, 500), decoded=(100, 50))
    params = OperationParameters(output_format=OutputFormat.JPG, region=RegionSpec(x=10, y=20, width=100, height=50))
    out = io.BytesIO()
    KakaduProcessor(settings).process(params, SourceHandle.from_path(jp2_source), out)

    command = calls["popen"][0].args
    assert command[command.index("-region") + 1] == "{0.0400000,0.0100000},{0.1000000,0.1000000}"
    assert "-reduce" not in command
    assert Image.open(io.BytesIO(out.getvalue())).size == (100, 50)


def test_unsupported_source_is_rejected_first(settings, kakadu, temp_dir):
    calls = kakadu()
    out = io.BytesIO()
    params = OperationParameters(output_format=OutputFormat.WEBP)
    with pytest.raises(UnsupportedSourceFormatError):
        KakaduProcessor(settings).process(params, SourceHandle.from_path(temp_dir / "a.tif"), out)
    assert out.getvalue() == b""
    assert calls["run"] == [] and calls["popen"] == []


def test_unsupported_output_format(settings, kakadu, jp2_source):
    calls = kakadu()
    params = OperationParameters(output_format=OutputFormat.WEBP)
    with pytest.raises(UnsupportedOutputFormatError):
        KakaduProcessor(settings).process(params, SourceHandle.from_path(jp2_source), io.BytesIO())
    assert calls["run"] == []


def test_decoder_failure_writes_nothing(settings, kakadu, jp2_source):
    kakadu(returncode=1, stderr=b"Kakadu Error: bad codestream")
    out = io.BytesIO()
    with pytest.raises(ProcessFailedError, match="bad codestream"):
        KakaduProcessor(settings).process(
            OperationParameters(output_format=OutputFormat.PNG), SourceHandle.from_path(jp2_source), out
        )
    assert out.getvalue() == b""


def test_write_failure_is_stream_error(settings, kakadu, jp2_source):
    kakadu()
    out = MagicMock()
    out.write.side_effect = BrokenPipeError("client went away")
    with pytest.raises(StreamIOError) as excinfo:
        KakaduProcessor(settings).process(
            OperationParameters(output_format=OutputFormat.PNG), SourceHandle.from_path(jp2_source), out
        )
    assert isinstance(excinfo.value.__cause__, BrokenPipeError)


def test_unexpected_os_error_is_wrapped(settings, jp2_source):
    probe = MagicMock()
    probe.probe.side_effect = PermissionError("denied")
    processor = KakaduProcessor(settings, probe=probe)
    with pytest.raises(StreamIOError) as excinfo:
        processor.render(OperationParameters(output_format=OutputFormat.PNG), SourceHandle.from_path(jp2_source))
    assert isinstance(excinfo.value.__cause__, PermissionError)


def test_backend_chosen_from_settings(settings):
    assert isinstance(KakaduProcessor(settings).post_processor, RasterPostProcessor)
    graph_settings = ProcessorSettings(post_processor="graph", jpg_quality=70)
    processor = KakaduProcessor(graph_settings)
    assert isinstance(processor.post_processor, GraphPostProcessor)
    assert processor.post_processor.jpg_quality == 70


def test_settings_from_config(monkeypatch, tmp_path):
    from kduproc.utils import config

    config_file = tmp_path / "config.toml"
    config_file.write_text(
        """
[kakadu]
path_to_binaries = "/opt/kakadu/bin"
path_to_stdout_symlink = "/var/run/kduproc/stdout.ppm"
post_processor = "graph"
decode_timeout = 0
tolerate_silent_exit = false

[encoding]
jpg_quality = 90
"""
    )
    monkeypatch.setenv("KDUPROC_CONFIG_FILE", str(config_file))
    config._load_config.cache_clear()

    settings = ProcessorSettings.from_config()
    assert str(settings.bin_dir) == "/opt/kakadu/bin"
    assert settings.stdout_destination == "/var/run/kduproc/stdout.ppm"
    assert settings.post_processor == "graph"
    assert settings.decode_timeout is None
    assert settings.tolerate_silent_exit is False
    assert settings.max_reduction_factor == 5
    assert settings.jpg_quality == 90
