"""Error types raised by the relief conversion pipeline.

All failures are deterministic for a given input, so none of them are
retried internally; callers decide how to present them.
"""

from __future__ import annotations


class ReliefError(Exception):
    """Base class for all conversion failures."""


class ConfigurationError(ReliefError, ValueError):
    """Raised for invalid conversion parameters (resolution, width, ...)."""


class BufferSizeMismatch(ReliefError, ValueError):
    """Raised when a sample buffer does not hold resolution^2 * channels bytes."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Sample buffer has {actual} bytes, expected {expected}"
        )


class InvalidGeometry(ReliefError):
    """Raised when a grid cannot be turned into a closed solid."""


class ConversionCancelled(ReliefError):
    """Raised when a cancel event is set while a conversion is running."""


class STLFormatError(ReliefError, ValueError):
    """Raised when ASCII STL text cannot be parsed."""

    def __init__(self, message: str, line_number: int = 0):
        self.line_number = line_number
        if line_number:
            message = f"line {line_number}: {message}"
        super().__init__(message)
