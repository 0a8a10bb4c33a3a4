"""Visualization utilities for relief conversion.

This module renders the elevation grid next to its source image so the
effect of resolution and inversion can be checked before printing.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

import cv2
import matplotlib.pyplot as plt
import numpy as np

logger = logging.getLogger(__name__)


def save_height_map_image(
    image: Optional[np.ndarray],
    grid: np.ndarray,
    output_path: Union[str, Path],
    colormap: str = "gray"
) -> None:
    """Save a figure of the source image next to its elevation grid.

    Args:
        image: Source image as returned by cv2.imread (optional)
        grid: Elevation grid with values in [0, 1]
        output_path: Path to save the figure
        colormap: Matplotlib colormap for the elevation values
    """
    n_axes = 2 if image is not None else 1
    fig, axs = plt.subplots(1, n_axes, figsize=(8 * n_axes, 8), squeeze=False)
    axs = axs[0]

    if image is not None:
        if image.ndim == 2:
            shown = image
        elif image.shape[2] == 4:
            shown = cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA)
        else:
            shown = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        axs[0].imshow(shown, cmap="gray" if image.ndim == 2 else None)
        axs[0].set_title("Source Image")
        axs[0].axis("off")

    # Nearest interpolation shows the actual sampling grid
    height_ax = axs[-1]
    im = height_ax.imshow(grid, cmap=colormap, vmin=0.0, vmax=1.0, interpolation="nearest")
    height_ax.set_title(
        f"Height Map {grid.shape[0]}x{grid.shape[1]} "
        f"(min: {np.min(grid):.2f}, max: {np.max(grid):.2f})"
    )
    height_ax.axis("off")

    cbar = plt.colorbar(im, ax=height_ax, fraction=0.046, pad=0.04)
    cbar.set_label("Elevation")

    plt.tight_layout()
    plt.savefig(str(output_path), dpi=150, bbox_inches="tight")
    plt.close(fig)

    logger.info(f"Height map visualization saved to {output_path}")
