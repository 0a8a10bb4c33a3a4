#!/usr/bin/env python3
"""
Image to Relief STL Pipeline

This script runs the complete conversion from an image file to a printable
relief solid: resample the image, extract the height field, build the
closed mesh and write it as an ASCII STL file together with a report.
"""

from __future__ import annotations

import argparse
import datetime
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np
import yaml

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from reliefstl import evaluate, heightfield, stl, visualise
from reliefstl.errors import ConfigurationError
from reliefstl.pipeline import build_from_samples, validate_parameters


# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
    handlers=[
        logging.StreamHandler(),
    ],
)
logger = logging.getLogger("pipeline")

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.yaml"


def load_config(config_path: Optional[str] = None) -> Dict:
    """Load configuration from YAML file.

    Args:
        config_path: Path to configuration file (defaults to config.yaml in
            the repository root)

    Returns:
        Configuration dictionary with image, model and output sections
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    try:
        with open(config_path, "r") as f:
            config = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {config_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(config, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping")

    for section in ("image", "model", "output"):
        config.setdefault(section, {})
        if not isinstance(config[section], dict):
            raise ConfigurationError(f"Config section '{section}' must be a mapping")

    return config


def conversion_parameters(config: Dict) -> Dict[str, Any]:
    """Collect the conversion parameter mapping from config sections."""
    params = {}
    for key in ("resolution", "invert"):
        if key in config["image"]:
            params[key] = config["image"][key]
    for key in ("width_mm", "height_scale_mm", "base_thickness_mm"):
        if key in config["model"]:
            params[key] = config["model"][key]
    return params


def save_results(
    output_dir: str,
    grid: np.ndarray,
    metrics: Optional[Dict] = None
) -> None:
    """Save the height grid and metrics to the output directory.

    Args:
        output_dir: Path to output directory
        grid: Elevation grid
        metrics: Conversion metrics (optional)
    """
    logger.info(f"Saving results to {output_dir}")

    grid_file = os.path.join(output_dir, "height_map.npy")
    with open(grid_file, "wb") as f:
        np.save(f, grid)

    if metrics is not None:
        metrics_file = os.path.join(output_dir, "report.json")
        with open(metrics_file, "w") as f:
            json.dump(metrics, f, indent=2)

    logger.info("Results saved successfully")


def run_pipeline(
    image_path: str,
    output_dir: str,
    overrides: Optional[Dict[str, Any]] = None,
    visualise_results: bool = False,
    config_path: Optional[str] = None,
    progress: bool = True,
    export_path: Optional[str] = None,
    cancel=None
) -> Dict:
    """Run the complete image to STL conversion.

    Args:
        image_path: Path to the source image
        output_dir: Path to output directory
        overrides: Conversion parameters or solid_name taking precedence
            over the config file
        visualise_results: Whether to open the interactive 3D preview
        config_path: Path to configuration file
        progress: Show progress bars
        export_path: Also write the mesh in another format (ply, obj, off)
        cancel: Optional event (e.g. threading.Event) that aborts the run

    Returns:
        Dictionary of conversion metrics
    """
    os.makedirs(output_dir, exist_ok=True)

    # Set up file logging
    file_handler = logging.FileHandler(os.path.join(output_dir, "log.txt"))
    file_handler.setFormatter(logging.Formatter("[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"))
    logging.getLogger().addHandler(file_handler)

    try:
        with evaluate.Timer("Pipeline", logger) as pipeline_timer:
            config = load_config(config_path)
            overrides = dict(overrides or {})
            solid_name = overrides.pop("solid_name", None) or config["output"].get("solid_name", stl.DEFAULT_SOLID_NAME)

            params = conversion_parameters(config)
            params.update({k: v for k, v in overrides.items() if v is not None})
            params = validate_parameters(params)
            logger.info(f"Conversion parameters: {params._asdict()}")

            metrics = evaluate.ConversionMetrics()

            # === Stage 1: Read and resample image ===
            image = heightfield.load_image(image_path)
            samples = heightfield.image_to_samples(
                image, params.resolution,
                interpolation=config["image"].get("interpolation", "nearest")
            )
            pipeline_timer.lap("read_image")

            # === Stage 2: Height field and mesh ===
            grid, relief = build_from_samples(samples, params, cancel=cancel, progress=progress)
            pipeline_timer.lap("build_mesh")
            metrics.compute_mesh_metrics(relief, params.resolution)

            # === Stage 3: STL export ===
            stl_path = os.path.join(output_dir, config["output"].get("stl_name", "model.stl"))
            n_bytes = stl.save_stl(relief, stl_path, solid_name, cancel=cancel, progress=progress)
            pipeline_timer.lap("write_stl")
            metrics.update("stl_bytes", n_bytes)

        # === Stage 4: Report ===
        for stage, time_s in pipeline_timer.laps.items():
            metrics.update_stage_timing(stage, time_s)
        metrics.update("runtime_s", pipeline_timer.elapsed)
        metrics_dict = metrics.to_dict()
        metrics_dict["parameters"] = params._asdict()
        metrics_dict["source_image"] = str(image_path)
        metrics_dict["datetime"] = datetime.datetime.now().isoformat()

        save_results(
            output_dir, grid,
            metrics_dict if config["output"].get("report", True) else None
        )

        if config["output"].get("save_height_map", True):
            visualise.save_height_map_image(image, grid, os.path.join(output_dir, "height_map.png"))

        logger.info("\n" + metrics.summary())

        # === Stage 5: Export and interactive preview (optional) ===
        if export_path or visualise_results:
            # Open3D is only needed for these extras
            from reliefstl import preview

            if export_path:
                preview.save_mesh(relief, export_path)
            if visualise_results:
                preview.show(relief, save_path=os.path.join(output_dir, "preview.png"))

        return metrics_dict
    finally:
        logging.getLogger().removeHandler(file_handler)
        file_handler.close()


def main():
    """Main function to parse arguments and run the pipeline."""
    parser = argparse.ArgumentParser(description="Convert an image into a printable relief STL")
    parser.add_argument(
        "--image", "-i", dest="image_path", required=True,
        help="Path to the source image"
    )
    parser.add_argument(
        "--output", "-o", dest="output_dir", default="results/run1",
        help="Path to output directory"
    )
    parser.add_argument(
        "--resolution", "-r", type=int, default=None,
        help="Samples per side of the height grid"
    )
    parser.add_argument(
        "--width", "-w", dest="width_mm", type=float, default=None,
        help="Footprint side length in mm"
    )
    parser.add_argument(
        "--height-scale", dest="height_scale_mm", type=float, default=None,
        help="Relief height in mm for a white pixel"
    )
    parser.add_argument(
        "--base", "-b", dest="base_thickness_mm", type=float, default=None,
        help="Base plate thickness in mm"
    )
    parser.add_argument(
        "--invert", action="store_true", default=None,
        help="Make dark pixels high"
    )
    parser.add_argument(
        "--name", "-n", dest="solid_name", default=None,
        help="Solid name written into the STL file"
    )
    parser.add_argument(
        "--visualise", "-v", dest="visualise", action="store_true",
        help="Open an interactive 3D preview"
    )
    parser.add_argument(
        "--export", "-e", dest="export_path", default=None,
        help="Also export the mesh for other tools (.ply, .obj, .off)"
    )
    parser.add_argument(
        "--config", "-c", dest="config_path", default=None,
        help="Path to configuration file"
    )

    args = parser.parse_args()

    overrides = {
        "resolution": args.resolution,
        "width_mm": args.width_mm,
        "height_scale_mm": args.height_scale_mm,
        "base_thickness_mm": args.base_thickness_mm,
        "invert": args.invert,
        "solid_name": args.solid_name,
    }

    try:
        run_pipeline(
            args.image_path,
            args.output_dir,
            overrides,
            args.visualise,
            args.config_path,
            export_path=args.export_path
        )
    except Exception as e:
        logger.exception(f"Error running pipeline: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
