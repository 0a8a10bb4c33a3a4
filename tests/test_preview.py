"""Tests for the Open3D preview and export helpers."""

import os
import shutil
import sys
import tempfile
import unittest
from pathlib import Path

import numpy as np
import pytest

o3d = pytest.importorskip("open3d")

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from reliefstl import mesh, preview


class TestOpen3DInterop(unittest.TestCase):
    """Test conversion of relief solids to Open3D meshes."""

    def setUp(self):
        grid = np.random.default_rng(3).random((5, 5))
        self.relief = mesh.build_mesh(grid, 20.0, 3.0, 1.0)
        self.test_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.test_dir)

    def test_to_open3d(self):
        """Vertex order and winding are kept."""
        o3d_mesh = preview.to_open3d(self.relief)

        np.testing.assert_allclose(np.asarray(o3d_mesh.vertices), self.relief.vertices)
        np.testing.assert_array_equal(np.asarray(o3d_mesh.triangles), self.relief.faces)
        self.assertTrue(o3d_mesh.has_vertex_normals())
        self.assertTrue(o3d_mesh.is_watertight())
        self.assertTrue(o3d_mesh.is_orientable())

    def test_save_mesh(self):
        """Export to PLY writes a file that loads back with the same counts."""
        path = os.path.join(self.test_dir, "relief.ply")

        self.assertTrue(preview.save_mesh(self.relief, path))

        loaded = o3d.io.read_triangle_mesh(path)
        self.assertEqual(len(loaded.vertices), self.relief.vertex_count)
        self.assertEqual(len(loaded.triangles), self.relief.face_count)


if __name__ == "__main__":
    unittest.main()
