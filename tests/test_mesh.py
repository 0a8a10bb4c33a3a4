"""Tests for mesh construction and normal computation.

This module checks that the relief solid is a closed, consistently wound
2-manifold with the expected counts, geometry and outward-facing normals.
"""

import sys
import threading
import unittest
from pathlib import Path

import numpy as np
import pytest

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from reliefstl import mesh, normals
from reliefstl.errors import ConfigurationError, ConversionCancelled, InvalidGeometry


def random_grid(n: int, seed: int = 0) -> np.ndarray:
    return np.random.default_rng(seed).random((n, n))


class TestMeshCounts(unittest.TestCase):
    """Test vertex and face counts."""

    def test_counts_for_resolutions(self):
        """2 N^2 vertices and 4 (N-1)^2 + 8 (N-1) faces."""
        for n in (2, 3, 4, 7, 16):
            relief = mesh.build_mesh(random_grid(n, n), 50.0, 5.0, 1.0)
            cells = n - 1

            self.assertEqual(relief.vertex_count, 2 * n * n)
            self.assertEqual(relief.face_count, 4 * cells * cells + 8 * cells)
            self.assertEqual((relief.vertex_count, relief.face_count), mesh.expected_counts(n))

    def test_face_groups_cover_all_faces(self):
        """Face groups are contiguous and in top, bottom, walls order."""
        groups = mesh.face_groups(5)

        self.assertEqual(list(groups), list(mesh.FACE_GROUP_ORDER))
        self.assertEqual(groups["top"].start, 0)
        for a, b in zip(mesh.FACE_GROUP_ORDER, mesh.FACE_GROUP_ORDER[1:]):
            self.assertEqual(groups[a].stop, groups[b].start)
        self.assertEqual(groups["right"].stop, mesh.expected_counts(5)[1])


class TestMinimalMesh(unittest.TestCase):
    """Test the 2x2 grid solid, verified by hand."""

    def setUp(self):
        self.grid = np.array([[0.0, 0.5], [1.0, 0.25]])
        self.relief = mesh.build_mesh(self.grid, width=10.0, height_scale=4.0, base_thickness=1.0)

    def test_vertices(self):
        """Top vertices follow the grid, bottom vertices sit at z = 0."""
        expected = np.array([
            [-5, -5, 1], [5, -5, 3], [-5, 5, 5], [5, 5, 2],
            [-5, -5, 0], [5, -5, 0], [-5, 5, 0], [5, 5, 0],
        ], dtype=float)

        np.testing.assert_allclose(self.relief.vertices, expected, atol=1e-12)

    def test_faces(self):
        """Faces in top, bottom, front, back, left, right order."""
        expected = np.array([
            [0, 1, 2], [1, 3, 2],  # top
            [4, 6, 5], [5, 6, 7],  # bottom
            [0, 4, 1], [1, 4, 5],  # front (y = 0)
            [2, 3, 6], [3, 7, 6],  # back (y = N-1)
            [0, 2, 4], [2, 6, 4],  # left (x = 0)
            [1, 5, 3], [3, 5, 7],  # right (x = N-1)
        ])

        np.testing.assert_array_equal(self.relief.faces, expected)

    def test_closed_manifold(self):
        self.assertTrue(mesh.is_closed_manifold(self.relief))


class TestManifold(unittest.TestCase):
    """Test the closed 2-manifold property."""

    def test_every_edge_shared_by_two_opposite_faces(self):
        """Each directed edge appears once and its reverse appears once."""
        relief = mesh.build_mesh(random_grid(9, 3), 30.0, 8.0, 2.0)

        directed = {}
        for face in relief.faces:
            for a, b in ((face[0], face[1]), (face[1], face[2]), (face[2], face[0])):
                directed[(int(a), int(b))] = directed.get((int(a), int(b)), 0) + 1

        for (a, b), count in directed.items():
            self.assertEqual(count, 1, f"Edge {a}->{b} traversed {count} times")
            self.assertIn((b, a), directed, f"Edge {a}->{b} has no opposite")

        report = mesh.edge_report(relief)
        self.assertEqual(report["boundary_edges"], 0)
        self.assertEqual(report["non_manifold_edges"], 0)
        self.assertEqual(report["inconsistent_edges"], 0)
        self.assertEqual(report["edges"], len(directed) // 2)

    def test_euler_characteristic(self):
        """A closed genus-0 solid has V - E + F = 2."""
        relief = mesh.build_mesh(random_grid(6), 10.0, 1.0, 0.5)
        report = mesh.edge_report(relief)

        self.assertEqual(relief.vertex_count - report["edges"] + relief.face_count, 2)

    def test_open_mesh_detected(self):
        """Removing a face leaves boundary edges."""
        relief = mesh.build_mesh(random_grid(4), 10.0, 1.0, 0.5)
        opened = mesh.Mesh.from_arrays(relief.vertices, relief.faces[1:])

        self.assertFalse(mesh.is_closed_manifold(opened))
        self.assertEqual(mesh.edge_report(opened)["boundary_edges"], 3)

    def test_flipped_face_detected(self):
        """A face with reversed winding is reported as inconsistent."""
        relief = mesh.build_mesh(random_grid(4), 10.0, 1.0, 0.5)
        faces = relief.faces.copy()
        faces[0] = faces[0, [0, 2, 1]]
        flipped = mesh.Mesh.from_arrays(relief.vertices, faces)

        self.assertFalse(mesh.is_closed_manifold(flipped))
        self.assertGreater(mesh.edge_report(flipped)["inconsistent_edges"], 0)

    def test_zero_height_walls_stay_manifold(self):
        """A black grid without base gives degenerate walls but closed topology."""
        relief = mesh.build_mesh(np.zeros((5, 5)), 10.0, 3.0, 0.0)

        self.assertTrue(mesh.is_closed_manifold(relief))
        self.assertAlmostEqual(mesh.mesh_volume(relief), 0.0, delta=1e-9)


class TestGeometry(unittest.TestCase):
    """Test positions, volume and extent."""

    def test_flat_grid_is_a_box(self):
        """A uniform 0.5 grid gives a W x W x (0.5 S + B) box."""
        width, scale, base = 20.0, 8.0, 3.0
        relief = mesh.build_mesh(np.full((6, 6), 0.5), width, scale, base)
        top_z = 0.5 * scale + base

        np.testing.assert_allclose(relief.vertices[:36, 2], top_z)
        np.testing.assert_allclose(relief.vertices[36:, 2], 0.0)

        low, high = mesh.bounding_box(relief)
        np.testing.assert_allclose(low, [-10, -10, 0])
        np.testing.assert_allclose(high, [10, 10, top_z])

        self.assertAlmostEqual(mesh.mesh_volume(relief), width * width * top_z, delta=1e-9)

    def test_volume_matches_prism_sum(self):
        """Volume equals the integral of the bilinear-split top surface."""
        n, width, scale, base = 5, 12.0, 6.0, 1.5
        grid = random_grid(n, 11)
        relief = mesh.build_mesh(grid, width, scale, base)

        z = grid * scale + base
        cell_area = (width / (n - 1)) ** 2
        # Each triangle is a prism with the mean height of its corners
        tl, tr, bl, br = z[:-1, :-1], z[:-1, 1:], z[1:, :-1], z[1:, 1:]
        expected = (cell_area / 2) * np.sum((tl + tr + bl) / 3 + (tr + br + bl) / 3)

        self.assertAlmostEqual(mesh.mesh_volume(relief), expected, delta=1e-9)

    def test_square_footprint(self):
        """Depth equals width regardless of anything else."""
        relief = mesh.build_mesh(random_grid(4), 37.0, 2.0, 0.0)
        extent = np.ptp(relief.vertices, axis=0)

        self.assertAlmostEqual(extent[0], 37.0)
        self.assertAlmostEqual(extent[1], 37.0)

    def test_arrays_are_read_only(self):
        relief = mesh.build_mesh(random_grid(3), 10.0, 1.0, 1.0)

        self.assertFalse(relief.vertices.flags.writeable)
        self.assertFalse(relief.faces.flags.writeable)


class TestMeshErrors(unittest.TestCase):
    """Test invalid input handling."""

    def test_grid_too_small(self):
        for grid in (np.zeros((1, 1)), np.zeros((0, 0))):
            with self.assertRaises(InvalidGeometry):
                mesh.build_mesh(grid, 10.0, 1.0, 1.0)

    def test_non_square_grid(self):
        with self.assertRaises(InvalidGeometry):
            mesh.build_mesh(np.zeros((3, 4)), 10.0, 1.0, 1.0)

    def test_non_finite_elevation(self):
        """NaN or infinite samples fail instead of producing a corrupt mesh."""
        for bad in (np.nan, np.inf, -np.inf):
            grid = np.full((4, 4), 0.5)
            grid[2, 1] = bad
            with self.assertRaises(InvalidGeometry):
                mesh.build_mesh(grid, 10.0, 1.0, 1.0)

    def test_invalid_dimensions(self):
        grid = np.zeros((3, 3))
        for width, scale, base in ((0.0, 1.0, 1.0), (-1.0, 1.0, 1.0), (10.0, -1.0, 1.0),
                                   (10.0, 1.0, -0.5), (float("nan"), 1.0, 1.0)):
            with self.assertRaises(ConfigurationError):
                mesh.build_mesh(grid, width, scale, base)

    def test_from_arrays_checks_indices(self):
        with self.assertRaises(InvalidGeometry):
            mesh.Mesh.from_arrays([[0, 0, 0], [1, 0, 0], [0, 1, 0]], [[0, 1, 3]])

    def test_cancel(self):
        """A set cancel event stops construction."""
        cancel = threading.Event()
        cancel.set()

        with self.assertRaises(ConversionCancelled):
            mesh.build_mesh(random_grid(8), 10.0, 1.0, 1.0, cancel=cancel)

    def test_unset_cancel_event(self):
        relief = mesh.build_mesh(random_grid(3), 10.0, 1.0, 1.0, cancel=threading.Event())
        self.assertEqual(relief.face_count, mesh.expected_counts(3)[1])


class TestNormals(unittest.TestCase):
    """Test per-face normals."""

    def setUp(self):
        self.n = 6
        self.relief = mesh.build_mesh(random_grid(self.n, 5), 40.0, 10.0, 2.0)
        self.normals = normals.face_normals(self.relief)
        self.groups = mesh.face_groups(self.n)

    def test_unit_length(self):
        np.testing.assert_allclose(np.linalg.norm(self.normals, axis=1), 1.0, atol=1e-12)

    def test_top_and_bottom_orientation(self):
        """Top faces point up, bottom faces point straight down."""
        self.assertTrue(np.all(self.normals[self.groups["top"], 2] > 0))
        np.testing.assert_allclose(
            self.normals[self.groups["bottom"]],
            np.tile([0.0, 0.0, -1.0], (self.groups["bottom"].stop - self.groups["bottom"].start, 1)),
            atol=1e-12
        )

    def test_side_faces_point_outward(self):
        """Wall normals point away from the footprint center."""
        centroids = self.relief.vertices[self.relief.faces].mean(axis=1)
        expected_direction = {
            "front": [0, -1, 0],
            "back": [0, 1, 0],
            "left": [-1, 0, 0],
            "right": [1, 0, 0],
        }

        for name, direction in expected_direction.items():
            part = self.groups[name]
            outward = centroids[part] * [1, 1, 0]
            dots = np.einsum("ij,ij->i", self.normals[part], outward)

            self.assertTrue(np.all(dots >= 0), f"{name} wall has inward normals")
            np.testing.assert_allclose(self.normals[part], np.tile(direction, (part.stop - part.start, 1)), atol=1e-12)

    def test_single_face_normal(self):
        n = normals.face_normal([0, 0, 0], [2, 0, 0], [0, 3, 0])
        np.testing.assert_allclose(n, [0, 0, 1])

    def test_degenerate_face(self):
        """Collinear triangles get a zero normal instead of an error."""
        n = normals.face_normal([0, 0, 0], [1, 1, 1], [2, 2, 2])
        np.testing.assert_array_equal(n, [0, 0, 0])

        degenerate = mesh.Mesh.from_arrays(
            [[0, 0, 0], [1, 0, 0], [2, 0, 0], [0, 1, 0]],
            [[0, 1, 2], [0, 1, 3]]
        )
        result = normals.face_normals(degenerate)
        np.testing.assert_array_equal(result[0], [0, 0, 0])
        np.testing.assert_allclose(result[1], [0, 0, 1])

    def test_empty_mesh(self):
        self.assertEqual(normals.face_normals(mesh.Mesh.empty()).shape, (0, 3))

    def test_huge_dimensions(self):
        """Coordinates near the float limit still give unit normals."""
        relief = mesh.build_mesh(np.full((3, 3), 0.5), 1e200, 1e200, 0.0)
        result = normals.face_normals(relief)
        groups = mesh.face_groups(3)

        self.assertTrue(np.all(np.isfinite(result)))
        np.testing.assert_allclose(np.linalg.norm(result, axis=1), 1.0, atol=1e-12)
        np.testing.assert_allclose(result[groups["top"]], [[0, 0, 1]] * 8, atol=1e-12)
        np.testing.assert_allclose(result[groups["front"]], [[0, -1, 0]] * 4, atol=1e-12)

    def test_overflowing_edge(self):
        """An edge that overflows to infinity is rejected."""
        huge = mesh.Mesh.from_arrays([[-1.7e308, 0, 0], [1.7e308, 0, 0], [0, 1, 0]], [[0, 1, 2]])

        with self.assertRaises(InvalidGeometry):
            normals.face_normals(huge)
        with self.assertRaises(InvalidGeometry):
            normals.face_normal([-1.7e308, 0, 0], [1.7e308, 0, 0], [0, 1, 0])


if __name__ == "__main__":
    unittest.main()
