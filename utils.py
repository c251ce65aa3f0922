"""
Utility functions for the autocorrelation system.
"""
import logging
import math
import sys
from typing import Optional, Tuple

import numpy as np

from error_handler import InvalidInputError, UnsupportedWindowSizeError


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """
    Set up logging configuration.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path

    Returns:
        Configured root logger
    """
    logger = logging.getLogger()
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # Replace handlers from a previous call instead of stacking them
    for handler in list(logger.handlers):
        if getattr(handler, '_autocorrelation_handler', False):
            logger.removeHandler(handler)
            handler.close()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    console_handler._autocorrelation_handler = True
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        file_handler._autocorrelation_handler = True
        logger.addHandler(file_handler)

    return logger


def transform_size(count: int) -> Tuple[int, int, int]:
    """
    Derive the working transform size for a window of `count` samples.

    Returns:
        Tuple of (log2n, N, N/2) where N = 2**floor(log2(count))
    """
    if isinstance(count, bool) or not isinstance(count, (int, np.integer)):
        raise InvalidInputError(f"Window length must be an integer, got {type(count).__name__}")
    if count < 1:
        raise InvalidInputError(f"Window length must be at least 1, got {count}")

    log2n = int(count).bit_length() - 1
    n = 1 << log2n
    if n < 2:
        raise UnsupportedWindowSizeError(
            f"Window length {count} does not reduce to a power of two >= 2"
        )
    return log2n, n, n // 2


def is_power_of_two(value: int) -> bool:
    """Check whether value is a positive power of two."""
    return value > 0 and (value & (value - 1)) == 0


def next_power_of_two(value: int) -> int:
    """Smallest power of two >= value."""
    if value <= 1:
        return 1
    return 1 << (int(value) - 1).bit_length()


def as_sample_buffer(samples) -> np.ndarray:
    """
    Validate and convert a sample sequence to a 1-D float32 array.

    Raises:
        InvalidInputError: If the buffer is empty, not 1-D or not finite
    """
    try:
        buffer = np.asarray(samples, dtype=np.float32)
    except (TypeError, ValueError) as e:
        raise InvalidInputError(f"Samples are not numeric: {e}") from e

    if buffer.ndim != 1:
        raise InvalidInputError(f"Samples must be a 1-D sequence, got shape {buffer.shape}")
    if buffer.size == 0:
        raise InvalidInputError("Sample buffer is empty")
    if not np.all(np.isfinite(buffer)):
        raise InvalidInputError("Sample buffer contains NaN or infinite values")
    return buffer


def require_finite(name: str, value: float) -> float:
    """Return value as float, raising InvalidInputError if it is not a finite number."""
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise InvalidInputError(f"{name} must be a number, got {value!r}") from e
    if not math.isfinite(number):
        raise InvalidInputError(f"{name} must be finite, got {number}")
    return number


def format_seconds(seconds: float) -> str:
    """Format a lag or duration for display."""
    if abs(seconds) < 1.0:
        return f"{seconds * 1000:.1f} ms"
    return f"{seconds:.3f} s"
