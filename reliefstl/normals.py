"""Per-face normal computation.

Normals are not stored on the mesh; they are derived from the face winding
whenever they are needed (serialization, checks).
"""

from __future__ import annotations

import logging

import numpy as np

from .errors import InvalidGeometry
from .mesh import Mesh

logger = logging.getLogger(__name__)


def _unit_normals(u: np.ndarray, w: np.ndarray) -> np.ndarray:
    """Unit normals of u x w row by row, zero rows for degenerate pairs.

    Each edge pair is divided by its largest component first, so the cross
    product of coordinates near the float limit does not overflow.
    """
    scale = np.maximum(np.abs(u).max(axis=1), np.abs(w).max(axis=1))
    if not np.all(np.isfinite(scale)):
        bad = int(np.argmin(np.isfinite(scale)))
        raise InvalidGeometry(f"Face {bad} has a non-finite edge, cannot compute its normal")

    scale = np.where(scale > 0, scale, 1.0)[:, None]
    normals = np.cross(u / scale, w / scale)
    lengths = np.linalg.norm(normals, axis=1)

    degenerate = lengths == 0
    if np.any(degenerate):
        logger.debug(f"{int(degenerate.sum())} degenerate faces get a zero normal")

    return normals / np.where(degenerate, 1.0, lengths)[:, None]


def face_normal(v1: np.ndarray, v2: np.ndarray, v3: np.ndarray) -> np.ndarray:
    """Compute the unit normal of a single triangle.

    Args:
        v1, v2, v3: Triangle corners in winding order

    Returns:
        Unit normal of (v2 - v1) x (v3 - v1), or the zero vector for a
        degenerate (zero-area) triangle

    Raises:
        InvalidGeometry: If an edge vector is not finite
    """
    v1 = np.asarray(v1, dtype=np.float64)
    u = np.subtract(np.asarray(v2, dtype=np.float64), v1).reshape(1, 3)
    w = np.subtract(np.asarray(v3, dtype=np.float64), v1).reshape(1, 3)
    return _unit_normals(u, w)[0]


def face_normals(mesh: Mesh) -> np.ndarray:
    """Compute unit normals for every face of a mesh.

    Degenerate faces get a zero normal, as permissive STL readers expect,
    instead of failing the conversion.

    Args:
        mesh: Mesh to evaluate

    Returns:
        (F, 3) float64 array of normals in face order

    Raises:
        InvalidGeometry: If an edge vector overflows to a non-finite value
    """
    if mesh.face_count == 0:
        return np.zeros((0, 3))

    tri = mesh.vertices[mesh.faces]
    return _unit_normals(tri[:, 1] - tri[:, 0], tri[:, 2] - tri[:, 0])
