"""Timing utilities and quality metrics for relief conversions.

This module measures how long each pipeline stage takes and summarizes the
produced solid: counts, manifold status, enclosed volume and extent.
"""

from __future__ import annotations

import logging
import time
from typing import Dict, Optional, Union

import numpy as np

from .mesh import Mesh, bounding_box, edge_report, mesh_volume

logger = logging.getLogger(__name__)


class Timer:
    """Wall-clock timer for pipeline stages.

    Used as a context manager around a whole run, with ``lap`` marking the
    end of each stage inside it.
    """

    def __init__(self, name: str = "Timer", logger: Optional[logging.Logger] = None):
        """Initialize timer.

        Args:
            name: Timer name for logging
            logger: Logger to use (if None, uses module logger)
        """
        self.name = name
        self.logger = logger or logging.getLogger(__name__)
        self.start_time = None
        self.end_time = None
        self._last_lap = None
        self._laps: Dict[str, float] = {}

    def start(self) -> None:
        """Start (or restart) the timer and clear recorded laps."""
        self.start_time = time.perf_counter()
        self.end_time = None
        self._last_lap = self.start_time
        self._laps = {}

    def stop(self) -> float:
        """Stop the timer.

        Returns:
            Total elapsed time in seconds
        """
        if self.start_time is None:
            self.logger.warning(f"{self.name}: Timer stopped without being started")
            return 0.0

        self.end_time = time.perf_counter()
        elapsed = self.end_time - self.start_time
        self.logger.debug(f"{self.name}: {elapsed:.4f}s")
        return elapsed

    def __enter__(self) -> "Timer":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    def lap(self, stage: str) -> float:
        """Record the time since the previous lap (or start) under ``stage``.

        Returns:
            Stage time in seconds
        """
        if self.start_time is None:
            self.start()

        now = time.perf_counter()
        lap_time = now - self._last_lap
        self._last_lap = now
        self._laps[stage] = lap_time

        self.logger.info(f"{self.name} - {stage}: {lap_time:.4f}s")
        return lap_time

    @property
    def laps(self) -> Dict[str, float]:
        """Stage times recorded with ``lap``, in recording order."""
        return dict(self._laps)

    @property
    def elapsed(self) -> float:
        """Elapsed time so far, or the total once stopped."""
        if self.start_time is None:
            return 0.0
        if self.end_time is not None:
            return self.end_time - self.start_time
        return time.perf_counter() - self.start_time


class ConversionMetrics:
    """Class for calculating and storing conversion metrics."""

    def __init__(self):
        self.metrics = {
            "resolution": 0,
            "n_vertices": 0,
            "n_faces": 0,
            "is_closed_manifold": False,
            "boundary_edges": 0,
            "non_manifold_edges": 0,
            "inconsistent_edges": 0,
            "volume_mm3": 0.0,
            "bbox_min": None,
            "bbox_max": None,
            "stl_bytes": 0,
            "runtime_s": 0.0,
            "stage_timings": {},
        }

    def update(self, metric_name: str, value: Union[int, float, bool, str, Dict]) -> None:
        self.metrics[metric_name] = value

    def update_stage_timing(self, stage_name: str, time_s: float) -> None:
        self.metrics["stage_timings"][stage_name] = time_s

    def compute_mesh_metrics(self, mesh: Mesh, resolution: Optional[int] = None) -> None:
        """Compute topology and size metrics of a mesh.

        Args:
            mesh: Mesh to evaluate
            resolution: Grid side length the mesh was built from
        """
        if resolution is not None:
            self.metrics["resolution"] = resolution
        self.metrics["n_vertices"] = mesh.vertex_count
        self.metrics["n_faces"] = mesh.face_count

        report = edge_report(mesh)
        self.metrics["boundary_edges"] = report["boundary_edges"]
        self.metrics["non_manifold_edges"] = report["non_manifold_edges"]
        self.metrics["inconsistent_edges"] = report["inconsistent_edges"]
        self.metrics["is_closed_manifold"] = mesh.face_count > 0 and not any(
            report[key] for key in ("boundary_edges", "non_manifold_edges", "inconsistent_edges")
        )

        self.metrics["volume_mm3"] = mesh_volume(mesh)

        bbox = bounding_box(mesh)
        if bbox is not None:
            self.metrics["bbox_min"] = np.round(bbox[0], 6).tolist()
            self.metrics["bbox_max"] = np.round(bbox[1], 6).tolist()

        if not self.metrics["is_closed_manifold"] and mesh.face_count > 0:
            logger.warning(f"Mesh is not a closed manifold: {report}")

    def to_dict(self) -> Dict:
        return self.metrics.copy()

    def summary(self) -> str:
        """Generate a human-readable summary of metrics.

        Returns:
            Summary string
        """
        lines = [
            "Conversion Metrics:",
            f"  Resolution: {self.metrics['resolution']}",
            f"  Vertices: {self.metrics['n_vertices']}",
            f"  Faces: {self.metrics['n_faces']}",
            f"  Closed manifold: {'yes' if self.metrics['is_closed_manifold'] else 'no'}",
            f"  Volume: {self.metrics['volume_mm3']:.2f} mm^3",
        ]

        if self.metrics["bbox_min"] is not None:
            extent = np.subtract(self.metrics["bbox_max"], self.metrics["bbox_min"])
            lines.append(f"  Size: {extent[0]:.2f} x {extent[1]:.2f} x {extent[2]:.2f} mm")

        if self.metrics["stl_bytes"]:
            lines.append(f"  STL size: {self.metrics['stl_bytes'] / 1024:.1f} KiB")

        lines.append(f"  Total runtime: {self.metrics['runtime_s']:.2f}s")

        if self.metrics["stage_timings"]:
            lines.append("  Stage timings:")
            for stage, time_s in self.metrics["stage_timings"].items():
                lines.append(f"    {stage}: {time_s:.2f}s")

        return "\n".join(lines)
