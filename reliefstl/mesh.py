"""Relief mesh construction and topology diagnostics.

This module builds a closed solid from an elevation grid: a top surface
sampled from the grid, a flat bottom plate at z = 0 and four side walls
stitched between their boundaries. Vertices and faces are stored as flat
numpy arrays indexed row-major (``y * N + x``), with the bottom plate offset
by ``N * N``.

Every face is wound counter-clockwise when seen from outside, so
``(v2 - v1) x (v3 - v1)`` points away from the solid.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, NamedTuple, Optional, Tuple

import numpy as np
from tqdm import tqdm

from .errors import ConfigurationError, ConversionCancelled, InvalidGeometry

logger = logging.getLogger(__name__)

# Order in which the parts of the solid appear in the face array
FACE_GROUP_ORDER = ("top", "bottom", "front", "back", "left", "right")


class Mesh(NamedTuple):
    """Triangle mesh as flat vertex and face arrays.

    Attributes:
        vertices: (V, 3) float64 array of positions in millimetres
        faces: (F, 3) int64 array of vertex indices, outward CCW winding
    """

    vertices: np.ndarray
    faces: np.ndarray

    @property
    def vertex_count(self) -> int:
        return int(self.vertices.shape[0])

    @property
    def face_count(self) -> int:
        return int(self.faces.shape[0])

    @classmethod
    def from_arrays(cls, vertices, faces) -> "Mesh":
        """Create a read-only mesh from array-likes, checking shapes and indices.

        Args:
            vertices: Sequence of (x, y, z) positions
            faces: Sequence of (i, j, k) vertex indices

        Returns:
            Mesh with read-only copies of the input arrays
        """
        vertices = np.array(vertices, dtype=np.float64).reshape(-1, 3)
        faces = np.array(faces, dtype=np.int64).reshape(-1, 3)

        if faces.size and (faces.min() < 0 or faces.max() >= len(vertices)):
            raise InvalidGeometry(
                f"Face indices must lie in [0, {len(vertices) - 1}]"
            )

        vertices.setflags(write=False)
        faces.setflags(write=False)
        return cls(vertices, faces)

    @classmethod
    def empty(cls) -> "Mesh":
        """Mesh without vertices or faces."""
        return cls.from_arrays(np.empty((0, 3)), np.empty((0, 3)))


def expected_counts(resolution: int) -> Tuple[int, int]:
    """Return (vertex_count, face_count) of a relief solid.

    Args:
        resolution: Grid side length N >= 2

    Returns:
        Tuple of (2 * N^2, 4 * (N - 1)^2 + 8 * (N - 1))
    """
    cells = resolution - 1
    return 2 * resolution * resolution, 4 * cells * cells + 8 * cells


def face_groups(resolution: int) -> Dict[str, slice]:
    """Map each part of a relief solid to its slice of the face array.

    Args:
        resolution: Grid side length N >= 2

    Returns:
        Ordered dictionary from part name (see FACE_GROUP_ORDER) to slice
    """
    cells = resolution - 1
    sizes = {
        "top": 2 * cells * cells,
        "bottom": 2 * cells * cells,
        "front": 2 * cells,
        "back": 2 * cells,
        "left": 2 * cells,
        "right": 2 * cells,
    }

    groups = {}
    start = 0
    for name in FACE_GROUP_ORDER:
        groups[name] = slice(start, start + sizes[name])
        start += sizes[name]
    return groups


def check_cancelled(cancel, stage: str) -> None:
    """Raise ConversionCancelled if the cancel event has been set.

    Args:
        cancel: Object with an ``is_set()`` method (e.g. threading.Event) or None
        stage: Name of the running stage, used in the error message
    """
    if cancel is not None and cancel.is_set():
        logger.info(f"Conversion cancelled during {stage}")
        raise ConversionCancelled(f"Cancelled during {stage}")


def _validate_dimensions(width: float, height_scale: float, base_thickness: float) -> None:
    if not (math.isfinite(width) and width > 0):
        raise ConfigurationError(f"Width must be a positive number, got {width}")
    if not (math.isfinite(height_scale) and height_scale >= 0):
        raise ConfigurationError(f"Height scale must be >= 0, got {height_scale}")
    if not (math.isfinite(base_thickness) and base_thickness >= 0):
        raise ConfigurationError(f"Base thickness must be >= 0, got {base_thickness}")


def _surface_row(y: int, n: int, offset: int, upward: bool) -> np.ndarray:
    """Two triangles for every cell in grid row y, interleaved per cell."""
    top_left = offset + y * n + np.arange(n - 1)
    top_right = top_left + 1
    bottom_left = top_left + n
    bottom_right = bottom_left + 1

    if upward:
        first = np.stack([top_left, top_right, bottom_left], axis=1)
        second = np.stack([top_right, bottom_right, bottom_left], axis=1)
    else:
        first = np.stack([top_left, bottom_left, top_right], axis=1)
        second = np.stack([top_right, bottom_left, bottom_right], axis=1)

    return np.stack([first, second], axis=1).reshape(-1, 3)


def _wall(start: np.ndarray, end: np.ndarray, offset: int, reverse: bool) -> np.ndarray:
    """Stitch a boundary strip of the top surface down to the bottom plate.

    Args:
        start: Top vertex index at the start of each boundary segment
        end: Top vertex index at the end of each boundary segment
        offset: Index offset of the bottom plate
        reverse: Flip the winding (walls facing +y or -x)

    Returns:
        (2 * len(start), 3) face array
    """
    start_low = start + offset
    end_low = end + offset

    first = np.stack([start, start_low, end], axis=1)
    second = np.stack([end, start_low, end_low], axis=1)
    faces = np.stack([first, second], axis=1).reshape(-1, 3)

    if reverse:
        faces = faces[:, [0, 2, 1]]
    return faces


def _side_faces(n: int) -> np.ndarray:
    """Faces of the four side walls in front, back, left, right order."""
    offset = n * n
    steps = np.arange(n - 1)
    last = n - 1

    front = _wall(steps, steps + 1, offset, reverse=False)
    back = _wall(last * n + steps, last * n + steps + 1, offset, reverse=True)
    left = _wall(steps * n, (steps + 1) * n, offset, reverse=True)
    right = _wall(steps * n + last, (steps + 1) * n + last, offset, reverse=False)

    return np.concatenate([front, back, left, right])


def build_mesh(
    grid: np.ndarray,
    width: float,
    height_scale: float,
    base_thickness: float,
    cancel=None,
    progress: bool = False
) -> Mesh:
    """Build a closed relief solid from an elevation grid.

    The footprint is a W x W square centered on the origin. The top surface
    sits at ``elevation * height_scale + base_thickness`` and the bottom plate
    at z = 0.

    Args:
        grid: (N, N) elevation grid with values in [0, 1], N >= 2
        width: Footprint side length in millimetres (> 0)
        height_scale: Millimetres of relief for an elevation of 1.0 (>= 0)
        base_thickness: Millimetres added under the relief (>= 0)
        cancel: Optional event polled between grid rows
        progress: Show a tqdm progress bar over the grid rows

    Returns:
        Read-only Mesh with 2 * N^2 vertices and 4 * (N-1)^2 + 8 * (N-1) faces

    Raises:
        InvalidGeometry: If the grid is not square, smaller than 2x2, or
            yields a non-finite coordinate
        ConfigurationError: If a dimension is out of range
        ConversionCancelled: If the cancel event is set
    """
    grid = np.asarray(grid, dtype=np.float64)
    if grid.ndim != 2 or grid.shape[0] != grid.shape[1]:
        raise InvalidGeometry(f"Elevation grid must be square, got shape {grid.shape}")

    n = grid.shape[0]
    if n < 2:
        raise InvalidGeometry(f"Elevation grid must be at least 2x2, got {n}x{n}")

    _validate_dimensions(width, height_scale, base_thickness)

    top_z = grid * height_scale + base_thickness
    bad = ~np.isfinite(top_z)
    if np.any(bad):
        y, x = np.argwhere(bad)[0]
        raise InvalidGeometry(
            f"Non-finite height at grid position ({x}, {y}) "
            f"({int(bad.sum())} invalid samples)"
        )

    # Square footprint: the depth reuses the width
    cell = width / (n - 1)
    coords = np.arange(n) * cell - width / 2
    xs, ys = np.meshgrid(coords, coords)

    plate = n * n
    vertices = np.empty((2 * plate, 3), dtype=np.float64)
    vertices[:plate, 0] = xs.ravel()
    vertices[:plate, 1] = ys.ravel()
    vertices[:plate, 2] = top_z.ravel()
    vertices[plate:, :2] = vertices[:plate, :2]
    vertices[plate:, 2] = 0.0

    n_vertices, n_faces = expected_counts(n)
    faces = np.empty((n_faces, 3), dtype=np.int64)
    groups = face_groups(n)
    row_size = 2 * (n - 1)

    for y in tqdm(range(n - 1), desc="Building mesh", disable=not progress):
        check_cancelled(cancel, "mesh construction")
        top_start = groups["top"].start + y * row_size
        bottom_start = groups["bottom"].start + y * row_size
        faces[top_start:top_start + row_size] = _surface_row(y, n, 0, upward=True)
        faces[bottom_start:bottom_start + row_size] = _surface_row(y, n, plate, upward=False)

    check_cancelled(cancel, "mesh construction")
    faces[groups["front"].start:] = _side_faces(n)

    vertices.setflags(write=False)
    faces.setflags(write=False)

    logger.info(
        f"Built relief mesh: {n}x{n} grid, {len(vertices)} vertices, {len(faces)} faces "
        f"(width={width} mm, height_scale={height_scale} mm, base={base_thickness} mm)"
    )
    return Mesh(vertices, faces)


def _directed_edges(faces: np.ndarray) -> np.ndarray:
    return np.concatenate([faces[:, [0, 1]], faces[:, [1, 2]], faces[:, [2, 0]]])


def edge_report(mesh: Mesh) -> Dict[str, int]:
    """Count edge defects that break the closed 2-manifold property.

    Args:
        mesh: Mesh to inspect

    Returns:
        Dictionary with the number of unique edges, boundary edges (one face),
        non-manifold edges (more than two faces) and inconsistent edges
        (traversed twice in the same direction)
    """
    if mesh.face_count == 0:
        return {"edges": 0, "boundary_edges": 0, "non_manifold_edges": 0, "inconsistent_edges": 0}

    directed = _directed_edges(mesh.faces)
    undirected = np.sort(directed, axis=1)

    _, undirected_counts = np.unique(undirected, axis=0, return_counts=True)
    _, directed_counts = np.unique(directed, axis=0, return_counts=True)

    return {
        "edges": int(len(undirected_counts)),
        "boundary_edges": int(np.sum(undirected_counts == 1)),
        "non_manifold_edges": int(np.sum(undirected_counts > 2)),
        "inconsistent_edges": int(np.sum(directed_counts > 1)),
    }


def is_closed_manifold(mesh: Mesh) -> bool:
    """Check that every edge is shared by exactly two oppositely wound faces."""
    if mesh.face_count == 0:
        return False

    report = edge_report(mesh)
    return (
        report["boundary_edges"] == 0
        and report["non_manifold_edges"] == 0
        and report["inconsistent_edges"] == 0
    )


def mesh_volume(mesh: Mesh) -> float:
    """Signed volume enclosed by the mesh (divergence theorem).

    Positive for a closed mesh with outward-facing normals.
    """
    if mesh.face_count == 0:
        return 0.0

    tri = mesh.vertices[mesh.faces]
    return float(np.einsum("ij,ij->i", tri[:, 0], np.cross(tri[:, 1], tri[:, 2])).sum() / 6.0)


def bounding_box(mesh: Mesh) -> Optional[Tuple[np.ndarray, np.ndarray]]:
    """Return (min_corner, max_corner) of the vertices, or None for an empty mesh."""
    if mesh.vertex_count == 0:
        return None
    return mesh.vertices.min(axis=0), mesh.vertices.max(axis=0)
