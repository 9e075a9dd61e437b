"""exceptions.py

Defines custom exception classes for kduproc, providing clear error types for
format negotiation, header probing, decoder invocation and post-processing.

All exceptions inherit from KduProcError, allowing for unified error handling.
Every failure of a single processing request is a ProcessorError, with the
original cause chained through ``raise ... from``.
"""

from typing import Optional


class KduProcError(Exception):  # pylint: disable=too-few-public-methods
    """Base class for all kduproc application-specific errors."""


class ConfigurationError(KduProcError, ValueError):  # pylint: disable=too-few-public-methods
    """Exception raised for errors related to application configuration.

    This error is used when configuration values are missing, invalid, or inconsistent.
    """


class ProcessorError(KduProcError):  # pylint: disable=too-few-public-methods
    """Exception raised when a processing request cannot be completed."""


class UnsupportedSourceFormatError(ProcessorError):
    """Raised when no output format can be derived from the source format."""

    def __init__(self, source_format: object) -> None:
        self.source_format = source_format
        super().__init__(f"Unsupported source format: {source_format}")


class UnsupportedOutputFormatError(ProcessorError):
    """Raised when the requested output format is not derivable from the source."""

    def __init__(self, output_format: object) -> None:
        self.output_format = output_format
        super().__init__(f"Unsupported output format: {output_format}")


class HeaderToolError(ProcessorError):
    """Raised when the header inspection tool cannot be run."""


class MalformedHeaderError(ProcessorError):
    """Raised when header inspection output lacks usable dimensions."""


class ProcessStartError(ProcessorError):
    """Raised when an external binary cannot be started."""


class ProcessFailedError(ProcessorError):
    """Exception raised when an external tool ran but reported failure.

    The captured standard error text is kept verbatim for diagnostics.
    """

    def __init__(self, tool_name: str, exit_code: int, stderr: Optional[str] = None):
        """Initialize a ProcessFailedError.

        Args:
            tool_name (str): The name of the external tool that failed.
            exit_code (int): The exit status reported by the process.
            stderr (Optional[str]): The standard error output from the tool, if available.
        """
        self.tool_name = tool_name
        self.exit_code = exit_code
        self.stderr = stderr
        message = f"{tool_name} failed (exit code {exit_code})"
        if stderr:
            message = f"{message}: {stderr}"
        super().__init__(message)


class StreamIOError(ProcessorError):
    """Raised when reading a process stream or the decoded raster fails."""


class DecodeTimeoutError(StreamIOError):
    """Raised when a decoder outlives its timeout and has been killed."""

    def __init__(self, tool_name: str, timeout: float) -> None:
        self.tool_name = tool_name
        self.timeout = timeout
        super().__init__(f"{tool_name} did not finish within {timeout}s and was killed")


class PostProcessingError(ProcessorError):
    """Raised when a post-processing backend fails to transform or encode."""

    def __init__(self, message: str, backend: str = "", stage: str = "") -> None:
        self.backend = backend
        self.stage = stage
        if stage:
            message = f"{backend or 'post-processing'} failed at '{stage}': {message}"
        super().__init__(message)
