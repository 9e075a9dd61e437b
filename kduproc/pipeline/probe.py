"""probe.py.

Reads the full pixel dimensions of a JPEG2000 source from the XML that
``kdu_jp2info`` prints.
"""

from __future__ import annotations

import pathlib
import subprocess

from defusedxml import DefusedXmlException
from defusedxml import ElementTree as ET

from kduproc.exceptions import HeaderToolError, MalformedHeaderError
from kduproc.utils.log import get_logger

from .kdu_builder import build_jp2info_command
from .types import Dimensions, SourceHandle

LOGGER = get_logger(__name__)

DEFAULT_PROBE_TIMEOUT = 30.0


def parse_dimensions(xml_text: str | bytes) -> Dimensions:
    """Extract the codestream width and height from kdu_jp2info output.

    The first ``width`` and ``height`` found anywhere below a ``codestream``
    element are used, rounded to the nearest integer.

    Raises:
        MalformedHeaderError: If the text is not XML or lacks either node.
    """
    try:
        root = ET.fromstring(xml_text)
    except (ET.ParseError, DefusedXmlException) as exc:
        raise MalformedHeaderError(f"Failed to parse kdu_jp2info output: {exc}") from exc

    width = _first_number(root, "width")
    height = _first_number(root, "height")
    if width is None or height is None:
        missing = "width" if width is None else "height"
        raise MalformedHeaderError(f"kdu_jp2info output has no codestream {missing}")
    return Dimensions(width=round(width), height=round(height))


def _first_number(root, tag: str) -> float | None:
    for codestream in root.iter("codestream"):
        node = codestream.find(f".//{tag}")
        if node is None:
            continue
        text = (node.text or "").strip()
        try:
            return float(text)
        except ValueError as exc:
            raise MalformedHeaderError(f"codestream {tag} is not a number: {text!r}") from exc
    return None


class DimensionProbe:
    """Queries kdu_jp2info for the size of a source image.

    A probe failure is final for the request; nothing is retried.
    """

    def __init__(self, bin_dir: pathlib.Path | str | None = None, timeout: float | None = DEFAULT_PROBE_TIMEOUT) -> None:
        self.bin_dir = bin_dir
        self.timeout = timeout

    def probe(self, source: SourceHandle) -> Dimensions:
        """Return the full dimensions of ``source``.

        Raises:
            HeaderToolError: If kdu_jp2info cannot be run.
            MalformedHeaderError: If its output has no usable dimensions.
        """
        cmd = build_jp2info_command(source.path, self.bin_dir)
        LOGGER.debug("Running kdu_jp2info: %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                check=False,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as exc:
            LOGGER.error("kdu_jp2info timed out for %s", source.path.name)
            raise HeaderToolError(f"kdu_jp2info timed out after {self.timeout}s") from exc
        except OSError as exc:
            LOGGER.error("kdu_jp2info could not be started: %s", exc)
            raise HeaderToolError(f"kdu_jp2info could not be started: {exc}") from exc

        if result.returncode != 0:
            LOGGER.warning("kdu_jp2info returned with code %s", result.returncode)
        if not result.stdout:
            raise HeaderToolError(f"kdu_jp2info produced no output (exit code {result.returncode})")

        try:
            dimensions = parse_dimensions(result.stdout)
        except MalformedHeaderError as exc:
            raise MalformedHeaderError(f"{exc}. Command: {' '.join(cmd)}") from exc

        LOGGER.debug("%s is %sx%s", source.path.name, dimensions.width, dimensions.height)
        return dimensions
