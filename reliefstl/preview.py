"""Open3D interop for previewing and exporting the relief solid.

The solid is handed to Open3D unchanged (same vertex order and winding),
for an interactive preview window or for export to mesh formats other
than STL.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np
import open3d as o3d

from .mesh import Mesh

logger = logging.getLogger(__name__)

# Preview color of the solid, matches the web preview material
MESH_COLOR = (0.4, 0.494, 0.918)


def to_open3d(mesh: Mesh, color: Tuple[float, float, float] = MESH_COLOR) -> o3d.geometry.TriangleMesh:
    """Convert a Mesh to an Open3D triangle mesh with vertex normals.

    Args:
        mesh: Mesh to convert
        color: Uniform RGB color in [0, 1]

    Returns:
        Open3D TriangleMesh sharing the vertex order and winding of ``mesh``
    """
    o3d_mesh = o3d.geometry.TriangleMesh()
    o3d_mesh.vertices = o3d.utility.Vector3dVector(np.asarray(mesh.vertices, dtype=np.float64))
    o3d_mesh.triangles = o3d.utility.Vector3iVector(np.asarray(mesh.faces, dtype=np.int32))
    o3d_mesh.compute_vertex_normals()
    o3d_mesh.paint_uniform_color(list(color))
    return o3d_mesh


def save_mesh(mesh: Mesh, output_path: Union[str, Path]) -> bool:
    """Save a mesh in a format chosen by the file extension (ply, obj, off, ...).

    Args:
        mesh: Mesh to save
        output_path: Output file path

    Returns:
        True if successful, False otherwise
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    ok = o3d.io.write_triangle_mesh(str(output_path), to_open3d(mesh))
    if ok:
        logger.info(f"Mesh saved to {output_path}")
    else:
        logger.error(f"Failed to save mesh to {output_path}")
    return ok


def show(
    mesh: Mesh,
    save_path: Optional[Union[str, Path]] = None,
    window_size: Tuple[int, int] = (1280, 720)
) -> None:
    """Open an interactive Open3D window showing the solid.

    Args:
        mesh: Mesh to display
        save_path: Path to save a screenshot (optional)
        window_size: Visualization window size
    """
    vis = o3d.visualization.Visualizer()
    vis.create_window(window_name="Relief preview", width=window_size[0], height=window_size[1])

    extent = float(np.ptp(mesh.vertices[:, 0])) if mesh.vertex_count else 1.0
    vis.add_geometry(o3d.geometry.TriangleMesh.create_coordinate_frame(size=0.2 * extent))
    vis.add_geometry(to_open3d(mesh))

    opt = vis.get_render_option()
    opt.background_color = np.array([0.102, 0.125, 0.173])
    opt.mesh_show_back_face = False

    vis.poll_events()
    vis.update_renderer()

    if save_path is not None:
        vis.capture_screen_image(str(save_path))
        logger.info(f"Screenshot saved to {save_path}")

    vis.run()
    vis.destroy_window()
