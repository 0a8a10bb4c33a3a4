"""Height field extraction from image samples.

This module turns interleaved 8-bit color samples into a normalized
elevation grid using the Rec. 601 luma weights, and provides the OpenCV
helpers that load an image file and resample it to the square sampling
resolution the mesh builder expects.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Union

import cv2
import numpy as np

from .errors import BufferSizeMismatch, ConfigurationError

logger = logging.getLogger(__name__)

# Rec. 601 luma coefficients for R, G, B
LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114])

INTERPOLATION_MODES = {
    "nearest": cv2.INTER_NEAREST,
    "linear": cv2.INTER_LINEAR,
    "area": cv2.INTER_AREA,
}

Samples = Union[bytes, bytearray, memoryview, np.ndarray]


def _as_uint8(samples: Samples) -> np.ndarray:
    """Flatten a sample buffer into a 1D uint8 array without copying bytes."""
    if isinstance(samples, (bytes, bytearray, memoryview)):
        return np.frombuffer(samples, dtype=np.uint8)

    data = np.asarray(samples).reshape(-1)
    if data.dtype == np.uint8:
        return data
    if data.dtype.kind == "f":
        if not np.all(np.isfinite(data)) or np.any(data != np.trunc(data)):
            raise ConfigurationError("Color samples must be whole numbers in [0, 255]")
    elif data.dtype.kind not in "iu":
        raise ConfigurationError(f"Unsupported sample dtype {data.dtype}")
    if data.size and (data.min() < 0 or data.max() > 255):
        raise ConfigurationError("Color samples must be 8-bit values in [0, 255]")
    return data.astype(np.uint8)


def extract_height_field(
    samples: Samples,
    resolution: int,
    channels: int = 4,
    invert: bool = False
) -> np.ndarray:
    """Convert interleaved color samples to a normalized elevation grid.

    Args:
        samples: Interleaved R,G,B[,A] bytes, row-major, resolution x resolution
        resolution: Side length of the square sample grid
        channels: Number of interleaved channels per pixel (3 or 4)
        invert: If True, dark pixels become high and bright pixels low

    Returns:
        Read-only (resolution, resolution) float64 array with values in [0, 1]

    Raises:
        ConfigurationError: If resolution < 1 or channels is not 3 or 4
        BufferSizeMismatch: If the buffer length does not match the grid
    """
    if resolution < 1:
        raise ConfigurationError(f"Resolution must be at least 1, got {resolution}")
    if channels not in (3, 4):
        raise ConfigurationError(f"Expected 3 or 4 channels, got {channels}")

    data = _as_uint8(samples)
    expected = resolution * resolution * channels
    if data.size != expected:
        raise BufferSizeMismatch(expected, data.size)

    pixels = data.reshape(resolution * resolution, channels)[:, :3]
    luminance = pixels.astype(np.float64) @ LUMA_WEIGHTS

    # Weights sum to one, clip only absorbs rounding at pure white
    grid = np.clip(luminance / 255.0, 0.0, 1.0).reshape(resolution, resolution)
    if invert:
        grid = 1.0 - grid

    grid.setflags(write=False)
    logger.debug(
        f"Extracted {resolution}x{resolution} height field "
        f"(min={grid.min():.3f}, max={grid.max():.3f}, invert={invert})"
    )
    return grid


def load_image(image_path: Union[str, Path]) -> np.ndarray:
    """Read an image file with OpenCV, keeping any alpha channel.

    Args:
        image_path: Path to a PNG, JPEG, BMP or other OpenCV-readable image

    Returns:
        Image as a numpy array (grayscale, BGR or BGRA)

    Raises:
        ConfigurationError: If the file does not exist or cannot be decoded
    """
    image_path = Path(image_path)
    if not image_path.is_file():
        raise ConfigurationError(f"Image not found: {image_path}")

    image = cv2.imread(str(image_path), cv2.IMREAD_UNCHANGED)
    if image is None:
        logger.error(f"Failed to read {image_path}")
        raise ConfigurationError(f"Could not decode image: {image_path}")

    logger.info(f"Loaded image {image_path.name} with shape {image.shape}")
    return image


def image_to_samples(
    image: np.ndarray,
    resolution: int,
    interpolation: str = "nearest"
) -> np.ndarray:
    """Resample an OpenCV image to a square grid of interleaved RGBA samples.

    The image is stretched to a square regardless of its aspect ratio.

    Args:
        image: Grayscale, BGR or BGRA image as returned by cv2.imread
        resolution: Target side length in pixels
        interpolation: One of "nearest", "linear" or "area"

    Returns:
        (resolution, resolution, 4) uint8 RGBA array
    """
    if resolution < 1:
        raise ConfigurationError(f"Resolution must be at least 1, got {resolution}")
    if interpolation not in INTERPOLATION_MODES:
        raise ConfigurationError(
            f"Unknown interpolation '{interpolation}', "
            f"expected one of {sorted(INTERPOLATION_MODES)}"
        )

    # 16-bit PNGs come back as uint16 with IMREAD_UNCHANGED
    if image.dtype == np.uint16:
        image = (image // 257).astype(np.uint8)
    elif image.dtype != np.uint8:
        raise ConfigurationError(f"Unsupported image dtype {image.dtype}")

    resized = cv2.resize(
        image, (resolution, resolution),
        interpolation=INTERPOLATION_MODES[interpolation]
    )

    if resized.ndim == 2:
        rgba = cv2.cvtColor(resized, cv2.COLOR_GRAY2RGBA)
    elif resized.shape[2] == 3:
        rgba = cv2.cvtColor(resized, cv2.COLOR_BGR2RGBA)
    elif resized.shape[2] == 4:
        rgba = cv2.cvtColor(resized, cv2.COLOR_BGRA2RGBA)
    else:
        raise ConfigurationError(f"Unsupported channel count {resized.shape[2]}")

    logger.debug(f"Resampled image {image.shape[:2]} -> {rgba.shape[:2]} ({interpolation})")
    return np.ascontiguousarray(rgba)
