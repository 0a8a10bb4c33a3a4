"""ASCII STL serialization and parsing.

This module writes a Mesh as an ASCII STL document with a fixed layout
(two-space indentation per nesting level, one facet per face in face
order) and reads such documents back with numpy-stl for verification.

Numbers are written in normalized scientific notation with explicit signs,
e.g. ``+1.25000000e+01``. Nine significant digits are enough for every
coordinate to round-trip exactly through single precision.
"""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Iterator, Tuple, Union

import numpy as np
from stl import mesh as stl_mesh
from stl.stl import Mode
from tqdm import tqdm

from .errors import ConfigurationError, STLFormatError
from .mesh import Mesh, check_cancelled
from .normals import face_normals

logger = logging.getLogger(__name__)

DEFAULT_SOLID_NAME = "model"
FLOAT_FORMAT = "{:+.8e}"


def format_float(value: float) -> str:
    """Format a coordinate in normalized scientific notation with explicit signs."""
    # Adding 0.0 turns -0.0 into +0.0
    return FLOAT_FORMAT.format(float(value) + 0.0)


def _check_name(name: str) -> str:
    if not isinstance(name, str) or "\n" in name or "\r" in name:
        raise ConfigurationError(f"Invalid solid name {name!r}")
    return name.strip() or DEFAULT_SOLID_NAME


def _triple(values) -> str:
    return " ".join(format_float(v) for v in values)


def iter_stl_lines(
    mesh: Mesh,
    name: str = DEFAULT_SOLID_NAME,
    cancel=None,
    progress: bool = False
) -> Iterator[str]:
    """Yield the lines of the ASCII STL document, without line terminators.

    Args:
        mesh: Mesh to serialize
        name: Solid name written after ``solid`` and ``endsolid``
        cancel: Optional event polled before every facet
        progress: Show a tqdm progress bar over the faces

    Yields:
        Document lines in output order
    """
    name = _check_name(name)
    normals = face_normals(mesh)
    triangles = mesh.vertices[mesh.faces] if mesh.face_count else np.zeros((0, 3, 3))

    yield f"solid {name}"
    for normal, triangle in tqdm(
        zip(normals, triangles), total=len(normals),
        desc="Writing STL", disable=not progress
    ):
        check_cancelled(cancel, "STL serialization")
        yield f"  facet normal {_triple(normal)}"
        yield "    outer loop"
        for vertex in triangle:
            yield f"      vertex {_triple(vertex)}"
        yield "    endloop"
        yield "  endfacet"
    yield f"endsolid {name}"


def serialize_stl(
    mesh: Mesh,
    name: str = DEFAULT_SOLID_NAME,
    cancel=None,
    progress: bool = False
) -> bytes:
    """Serialize a mesh as an ASCII STL document.

    An empty mesh produces a valid document with no facets.

    Args:
        mesh: Mesh to serialize
        name: Solid name (default "model")
        cancel: Optional event polled before every facet
        progress: Show a tqdm progress bar over the faces

    Returns:
        UTF-8 encoded document, newline terminated
    """
    if mesh.face_count == 0:
        logger.warning("Serializing an empty mesh, the STL document has no facets")

    text = "\n".join(iter_stl_lines(mesh, name, cancel=cancel, progress=progress)) + "\n"
    data = text.encode("utf-8")
    logger.debug(f"Serialized {mesh.face_count} facets into {len(data)} bytes")
    return data


def save_stl(
    mesh: Mesh,
    output_path: Union[str, Path],
    name: str = DEFAULT_SOLID_NAME,
    cancel=None,
    progress: bool = False
) -> int:
    """Write a mesh to an ASCII STL file.

    Args:
        mesh: Mesh to save
        output_path: Destination file, parent directories are created
        name: Solid name
        cancel: Optional event polled before every facet
        progress: Show a tqdm progress bar over the faces

    Returns:
        Number of bytes written
    """
    output_path = Path(output_path)
    data = serialize_stl(mesh, name, cancel=cancel, progress=progress)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "wb") as f:
        f.write(data)

    logger.info(f"STL saved to {output_path} ({len(data)} bytes, {mesh.face_count} facets)")
    return len(data)


def _check_framing(text: str) -> int:
    """Check the solid/endsolid framing and return the number of facet lines.

    The numpy-stl reader stops at the first ``endsolid`` and drops a facet
    cut short by it, so both are checked here with line numbers.
    """
    lines = [
        (number, line.strip().lower())
        for number, line in enumerate(text.splitlines(), start=1)
        if line.strip()
    ]
    if not lines or not lines[0][1].startswith("solid"):
        raise STLFormatError("document must start with 'solid'", lines[0][0] if lines else 0)

    ends = [index for index, (_, line) in enumerate(lines) if line.startswith("endsolid")]
    if not ends:
        raise STLFormatError("missing 'endsolid'")
    if ends[0] != len(lines) - 1:
        raise STLFormatError("content after 'endsolid'", lines[ends[0] + 1][0])

    return sum(1 for _, line in lines if line.startswith("facet"))


def parse_stl(data: Union[bytes, str]) -> Tuple[str, np.ndarray, np.ndarray]:
    """Parse an ASCII STL document with numpy-stl.

    Args:
        data: Document as bytes (UTF-8) or text

    Returns:
        Tuple of (solid name, (F, 3) normals, (F, 3, 3) triangle vertices)

    Raises:
        STLFormatError: If the document is not well-formed ASCII STL
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    try:
        text = bytes(data).decode("utf-8")
    except UnicodeDecodeError as e:
        raise STLFormatError("document is not UTF-8 text") from e

    n_facets = _check_framing(text)

    try:
        parsed = stl_mesh.Mesh.from_file(
            None,
            calculate_normals=False,
            fh=io.BytesIO(bytes(data)),
            mode=Mode.ASCII,
            speedups=False,
        )
    except (RuntimeError, ValueError, TypeError) as e:
        raise STLFormatError(f"malformed facet ({e})") from e

    if len(parsed.vectors) != n_facets:
        raise STLFormatError(
            f"document has {n_facets} facets but only {len(parsed.vectors)} are complete"
        )

    name = parsed.name.decode("utf-8") if isinstance(parsed.name, bytes) else str(parsed.name)
    logger.debug(f"Parsed STL solid '{name}' with {n_facets} facets")
    return (
        name,
        np.asarray(parsed.normals, dtype=np.float64).reshape(-1, 3),
        np.asarray(parsed.vectors, dtype=np.float64).reshape(-1, 3, 3),
    )
