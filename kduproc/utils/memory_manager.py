"""Memory reporting utilities for kduproc.

Decoded rasters can be large; these helpers log system and process memory
around the decode and post-processing stages.
"""

from dataclasses import dataclass

import psutil

from kduproc.utils import log

LOGGER = log.get_logger(__name__)


@dataclass
class MemoryStats:
    """Container for memory statistics."""

    total_mb: int = 0
    available_mb: int = 0
    used_mb: int = 0
    percent_used: float = 0.0
    process_mb: int = 0

    @property
    def is_low_memory(self) -> bool:
        """Check if memory is running low."""
        return self.available_mb < 500 or self.percent_used > 85


def get_memory_stats() -> MemoryStats:
    """Get current memory statistics.

    Returns:
        MemoryStats object with current memory information
    """
    stats = MemoryStats()

    vm = psutil.virtual_memory()
    stats.total_mb = vm.total // (1024 * 1024)
    stats.available_mb = vm.available // (1024 * 1024)
    stats.used_mb = vm.used // (1024 * 1024)
    stats.percent_used = vm.percent

    try:
        stats.process_mb = psutil.Process().memory_info().rss // (1024 * 1024)
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        LOGGER.debug("Process memory unavailable")

    return stats


def log_memory_usage(context: str = "") -> None:
    """Log current memory usage at debug level.

    Args:
        context: Optional context string
    """
    stats = get_memory_stats()
    prefix = f"{context} - " if context else ""
    LOGGER.debug(
        "%sMemory: %sMB used (%s%%), %sMB available, process %sMB",
        prefix,
        stats.used_mb,
        round(stats.percent_used, 1),
        stats.available_mb,
        stats.process_mb,
    )
    if stats.is_low_memory:
        LOGGER.warning("%sLow memory: %sMB available", prefix, stats.available_mb)
