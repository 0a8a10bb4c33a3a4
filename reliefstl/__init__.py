"""Image to printable relief STL conversion.

A Python project that turns a grayscale image into a closed, watertight
relief solid and writes it as an ASCII STL file ready for slicing software.
"""

from __future__ import annotations

__version__ = "0.1.0"
