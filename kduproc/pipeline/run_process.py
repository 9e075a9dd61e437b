"""run_process.py.

Runs an external tool with both output pipes drained concurrently.

A child with two pipes stalls as soon as either OS pipe buffer fills, so the
stdout and stderr drain threads are always started before the parent waits
for the process to exit.
"""

from __future__ import annotations

import io
import pathlib
import subprocess
import threading
from typing import IO, Sequence

from kduproc.exceptions import (
    DecodeTimeoutError,
    ProcessFailedError,
    ProcessStartError,
    StreamIOError,
)
from kduproc.utils.log import get_logger

from .types import ProcessOutcome

LOGGER = get_logger(__name__)

CHUNK_SIZE = 64 * 1024
DEFAULT_MAX_STDOUT_BYTES = 1024 * 1024 * 1024
DEFAULT_MAX_STDERR_BYTES = 1024 * 1024
# Seconds to wait for a drain thread once the process is gone
JOIN_TIMEOUT = 5.0


class StreamDrainer(threading.Thread):
    """Copies one process pipe into an in-memory sink until EOF.

    Bytes past ``limit`` are read and discarded so the child never blocks on a
    full pipe; ``overflowed`` records that it happened.
    """

    def __init__(self, stream: IO[bytes], name: str, limit: int) -> None:
        super().__init__(name=name, daemon=True)
        self.stream = stream
        self.limit = limit
        self._sink = io.BytesIO()
        self.overflowed = False
        self.error: Exception | None = None

    def run(self) -> None:
        try:
            while True:
                chunk = self.stream.read(CHUNK_SIZE)
                if not chunk:
                    break
                room = self.limit - self._sink.tell()
                if room > 0:
                    self._sink.write(chunk[:room])
                if len(chunk) > room:
                    self.overflowed = True
        except (OSError, ValueError) as exc:
            # ValueError: the pipe was closed underneath us
            self.error = exc

    @property
    def data(self) -> bytes:
        return self._sink.getvalue()


def _release(proc: subprocess.Popen[bytes], drainers: Sequence[StreamDrainer]) -> None:
    """Kill the process if still running, then close all of its streams."""
    if proc.poll() is None:
        LOGGER.warning("Killing process %s", proc.pid)
        proc.kill()
        proc.wait()

    busy = set()
    for drainer in drainers:
        if drainer.is_alive():
            drainer.join(JOIN_TIMEOUT)
        if drainer.is_alive():
            # Closing a pipe another thread is reading from would block on its lock
            LOGGER.warning("Drain thread %s still running after process exit", drainer.name)
            busy.add(id(drainer.stream))

    for stream in (proc.stdin, proc.stdout, proc.stderr):
        if stream is not None and id(stream) not in busy:
            try:
                stream.close()
            except OSError as exc:
                LOGGER.debug("Error closing process stream: %s", exc)


def run_process(
    command: Sequence[str],
    *,
    tool_name: str | None = None,
    timeout: float | None = None,
    max_stdout_bytes: int = DEFAULT_MAX_STDOUT_BYTES,
    max_stderr_bytes: int = DEFAULT_MAX_STDERR_BYTES,
) -> ProcessOutcome:
    """Run ``command`` and capture both of its output streams.

    Args:
        command: Argument list; the first item is the executable.
        tool_name: Name used in logs and errors. Defaults to the executable name.
        timeout: Seconds to wait for exit before killing the process.
        max_stdout_bytes: Capacity of the stdout sink.
        max_stderr_bytes: Capacity of the stderr sink.

    Returns:
        The exit code and captured output. A nonzero exit is not an error here;
        see :func:`check_outcome`.

    Raises:
        ProcessStartError: If the executable is missing or not executable.
        DecodeTimeoutError: If ``timeout`` expired; the process has been killed.
        StreamIOError: If reading either pipe failed or a sink overflowed.
    """
    tool = tool_name or pathlib.Path(command[0]).name
    LOGGER.info("Running %s: %s", tool, " ".join(command))

    try:
        proc = subprocess.Popen(
            list(command),
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except OSError as exc:
        LOGGER.error("%s could not be started: %s", tool, exc)
        raise ProcessStartError(f"{tool} could not be started: {exc}") from exc

    assert proc.stdout is not None and proc.stderr is not None
    # The kdu tools take no input
    if proc.stdin is not None:
        proc.stdin.close()
    drainers = (
        StreamDrainer(proc.stdout, f"{tool}-stdout", max_stdout_bytes),
        StreamDrainer(proc.stderr, f"{tool}-stderr", max_stderr_bytes),
    )
    try:
        for drainer in drainers:
            drainer.start()

        try:
            exit_code = proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired as exc:
            LOGGER.error("%s timed out after %ss, killing it", tool, timeout)
            proc.kill()
            proc.wait()
            raise DecodeTimeoutError(tool, timeout or 0.0) from exc

        for drainer in drainers:
            # A grandchild can inherit the pipes and keep them open past our exit
            drainer.join(JOIN_TIMEOUT)
            if drainer.is_alive():
                LOGGER.error("%s stayed open after %s exited", drainer.name, tool)
                raise StreamIOError(f"{drainer.name} still open {JOIN_TIMEOUT}s after {tool} exited")
    finally:
        _release(proc, drainers)

    stdout_drain, stderr_drain = drainers
    for drainer in drainers:
        if drainer.error is not None:
            raise StreamIOError(f"Error reading {drainer.name}: {drainer.error}") from drainer.error
        if drainer.overflowed:
            raise StreamIOError(f"{drainer.name} exceeded its {drainer.limit} byte limit")

    LOGGER.debug(
        "%s exited with code %s (%s bytes stdout, %s bytes stderr)",
        tool,
        exit_code,
        len(stdout_drain.data),
        len(stderr_drain.data),
    )
    return ProcessOutcome(exit_code=exit_code, stdout=stdout_drain.data, stderr=stderr_drain.data)


def check_outcome(outcome: ProcessOutcome, tool_name: str, tolerate_silent_failure: bool = True) -> None:
    """Decide whether a finished process failed.

    A nonzero exit with error text is always a failure. A nonzero exit with an
    empty stderr is accepted with a warning when ``tolerate_silent_failure`` is
    set.

    Raises:
        ProcessFailedError: Carrying the exit code and the stderr text verbatim.
    """
    if outcome.exit_code == 0:
        return

    LOGGER.warning("%s returned with code %s", tool_name, outcome.exit_code)
    stderr_text = outcome.stderr_text
    if stderr_text:
        LOGGER.error("--> %s stderr:\n%s", tool_name, stderr_text)
        raise ProcessFailedError(tool_name, outcome.exit_code, stderr_text)
    if not tolerate_silent_failure:
        raise ProcessFailedError(tool_name, outcome.exit_code)
    LOGGER.warning("%s wrote nothing to stderr; treating its output as valid", tool_name)
