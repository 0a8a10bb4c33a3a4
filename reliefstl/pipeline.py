"""Conversion pipeline from color samples to an STL document.

Each stage takes immutable inputs and returns a new value:

    samples -> extract_height_field -> grid -> build_mesh -> mesh
            -> serialize_stl -> bytes

Nothing is cached between calls, so independent conversions can run in
parallel threads without coordination.
"""

from __future__ import annotations

import logging
import math
from numbers import Integral, Real
from typing import Any, Mapping, NamedTuple, Tuple, Union

import numpy as np

from .errors import ConfigurationError
from .heightfield import Samples, extract_height_field
from .mesh import Mesh, build_mesh
from .stl import DEFAULT_SOLID_NAME, serialize_stl

logger = logging.getLogger(__name__)


class ConversionParameters(NamedTuple):
    """Geometric parameters of a relief conversion.

    Attributes:
        resolution: Side length of the square sampling grid (>= 2)
        width_mm: Footprint side length in millimetres (> 0)
        height_scale_mm: Relief height for a white (or inverted black) pixel (>= 0)
        base_thickness_mm: Solid base added under the relief (>= 0)
        invert: Make dark pixels high instead of bright ones
    """

    resolution: int = 100
    width_mm: float = 100.0
    height_scale_mm: float = 10.0
    base_thickness_mm: float = 2.0
    invert: bool = False


class ConversionResult(NamedTuple):
    """Outputs of a single conversion."""

    grid: np.ndarray
    mesh: Mesh
    stl: bytes


def _number(params: Mapping[str, Any], key: str, default: float) -> float:
    value = params.get(key, default)
    if isinstance(value, bool) or not isinstance(value, Real) or not math.isfinite(value):
        raise ConfigurationError(f"'{key}' must be a finite number, got {value!r}")
    return float(value)


def validate_parameters(
    params: Union[ConversionParameters, Mapping[str, Any], None] = None
) -> ConversionParameters:
    """Validate a parameter set and fill in defaults.

    Args:
        params: ConversionParameters, a mapping with the same keys, or None
            for the defaults

    Returns:
        Validated ConversionParameters

    Raises:
        ConfigurationError: If a value is missing a valid type or out of range
    """
    if params is None:
        params = {}
    elif isinstance(params, ConversionParameters):
        params = params._asdict()
    elif not isinstance(params, Mapping):
        raise ConfigurationError(f"Parameters must be a mapping, got {type(params).__name__}")

    defaults = ConversionParameters()
    unknown = set(params) - set(ConversionParameters._fields)
    if unknown:
        logger.warning(f"Ignoring unknown parameters: {sorted(unknown)}")

    resolution = params.get("resolution", defaults.resolution)
    if isinstance(resolution, float) and resolution.is_integer():
        resolution = int(resolution)
    if isinstance(resolution, bool) or not isinstance(resolution, Integral):
        raise ConfigurationError(f"'resolution' must be an integer, got {resolution!r}")
    resolution = int(resolution)
    if resolution < 2:
        raise ConfigurationError(f"'resolution' must be at least 2, got {resolution}")

    width = _number(params, "width_mm", defaults.width_mm)
    if width <= 0:
        raise ConfigurationError(f"'width_mm' must be > 0, got {width}")

    height_scale = _number(params, "height_scale_mm", defaults.height_scale_mm)
    if height_scale < 0:
        raise ConfigurationError(f"'height_scale_mm' must be >= 0, got {height_scale}")

    base = _number(params, "base_thickness_mm", defaults.base_thickness_mm)
    if base < 0:
        raise ConfigurationError(f"'base_thickness_mm' must be >= 0, got {base}")

    invert = params.get("invert", defaults.invert)
    if not isinstance(invert, (bool, np.bool_)):
        raise ConfigurationError(f"'invert' must be a boolean, got {invert!r}")

    return ConversionParameters(resolution, width, height_scale, base, bool(invert))


def build_from_samples(
    samples: Samples,
    params: Union[ConversionParameters, Mapping[str, Any], None] = None,
    channels: int = 4,
    cancel=None,
    progress: bool = False
) -> Tuple[np.ndarray, Mesh]:
    """Extract the elevation grid and build the solid, without serializing.

    Args:
        samples: Interleaved 8-bit R,G,B[,A] samples at params.resolution
        params: Conversion parameters (validated here)
        channels: Channels per pixel in the sample buffer
        cancel: Optional event polled between rows
        progress: Show tqdm progress bars

    Returns:
        Tuple of (elevation grid, mesh)
    """
    params = validate_parameters(params)
    grid = extract_height_field(samples, params.resolution, channels, params.invert)
    mesh = build_mesh(
        grid,
        params.width_mm,
        params.height_scale_mm,
        params.base_thickness_mm,
        cancel=cancel,
        progress=progress,
    )
    return grid, mesh


def convert(
    samples: Samples,
    params: Union[ConversionParameters, Mapping[str, Any], None] = None,
    channels: int = 4,
    name: str = DEFAULT_SOLID_NAME,
    cancel=None,
    progress: bool = False
) -> ConversionResult:
    """Run the full conversion from color samples to STL bytes.

    Args:
        samples: Interleaved 8-bit R,G,B[,A] samples at params.resolution
        params: Conversion parameters (validated here)
        channels: Channels per pixel in the sample buffer
        name: Solid name in the STL document
        cancel: Optional event polled between rows and facets
        progress: Show tqdm progress bars

    Returns:
        ConversionResult with the grid, the mesh and the STL document
    """
    grid, mesh = build_from_samples(samples, params, channels, cancel=cancel, progress=progress)
    stl = serialize_stl(mesh, name, cancel=cancel, progress=progress)
    return ConversionResult(grid, mesh, stl)
