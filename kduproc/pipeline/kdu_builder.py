"""kdu_builder.py.

Provides the KduExpandCommandBuilder class for constructing kdu_expand
command-line arguments, and helpers for locating the kdu_* binaries.
"""

from __future__ import annotations

import os
import pathlib

from .types import MAX_REDUCTION_FACTOR

KDU_EXPAND = "kdu_expand"
KDU_JP2INFO = "kdu_jp2info"


def binary_path(binary_name: str, bin_dir: pathlib.Path | str | None = None) -> str:
    """Path of one of the kdu_* binaries.

    Args:
        binary_name: Name of the binary, e.g. ``kdu_expand``.
        bin_dir: Directory containing the binaries. When empty the bare name is
            returned and resolved through PATH.
    """
    if not bin_dir:
        return binary_name
    return str(bin_dir).rstrip(os.sep) + os.sep + binary_name


def quote_path(path: str) -> str:
    """Wrap a path in double quotes when it contains a space."""
    if " " in path:
        return f'"{path}"'
    return path


class KduExpandCommandBuilder:
    """Builder for kdu_expand command-line arguments.

    The argument order is fixed regardless of the order the setters are
    called in::

        kdu_expand -quiet -no_alpha -i <input> [-region r] [-reduce n] -o <out>

    Typical usage:
        cmd = (
            KduExpandCommandBuilder(bin_dir)
            .set_input(source_path)
            .set_region("{0.1000000,0.1000000},{0.5000000,0.5000000}")
            .set_reduction(2)
            .set_output("/tmp/stdout.ppm")
            .build()
        )
    """

    def __init__(self, bin_dir: pathlib.Path | str | None = None) -> None:
        """Initialize a new builder for the binary found in ``bin_dir``."""
        self._binary = binary_path(KDU_EXPAND, bin_dir)
        self._input_path: pathlib.Path | None = None
        self._region: str | None = None
        self._reduction_factor = 0
        self._output: str | None = None

    def set_input(self, input_path: pathlib.Path | str) -> KduExpandCommandBuilder:
        """Set the source image; the absolute path is used."""
        self._input_path = pathlib.Path(input_path).absolute()
        return self

    def set_region(self, region: str | None) -> KduExpandCommandBuilder:
        """Set the fractional ``-region`` argument, or None for the full image."""
        self._region = region
        return self

    def set_reduction(self, factor: int) -> KduExpandCommandBuilder:
        """Set the native ``-reduce`` factor; 0 omits the flag."""
        if not 0 <= factor <= MAX_REDUCTION_FACTOR:
            raise ValueError(f"Reduction factor must be between 0 and {MAX_REDUCTION_FACTOR}, got {factor}")
        self._reduction_factor = factor
        return self

    def set_output(self, destination: str) -> KduExpandCommandBuilder:
        """Set the ``-o`` destination the decoder writes its raster to."""
        self._output = destination
        return self

    def build(self) -> list[str]:
        """Build the argument list.

        Raises:
            ValueError: If the input or output has not been set.
        """
        if self._input_path is None:
            raise ValueError("Input path must be set")
        if not self._output:
            raise ValueError("Output destination must be set")

        command = [self._binary, "-quiet", "-no_alpha", "-i", str(self._input_path)]
        if self._region is not None:
            command.extend(["-region", self._region])
        if self._reduction_factor > 0:
            command.extend(["-reduce", str(self._reduction_factor)])
        command.extend(["-o", quote_path(self._output)])
        return command


def build_jp2info_command(input_path: pathlib.Path | str, bin_dir: pathlib.Path | str | None = None) -> list[str]:
    """Argument list for ``kdu_jp2info -i <input>``."""
    return [binary_path(KDU_JP2INFO, bin_dir), "-i", str(pathlib.Path(input_path).absolute())]
