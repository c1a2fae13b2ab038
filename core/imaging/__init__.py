"""
Whole-image post-processing and output encoding.

- rotation: Rotate an assembled canvas by the container's rotation angle
- encoding: Serialize a canvas as PNG or JPEG, chosen by file extension
"""

from core.imaging.encoding import (
    OutputFormat,
    PngCompression,
    encode_image,
    format_for_path,
    write_image,
)
from core.imaging.rotation import rotate_canvas

__all__ = [
    "OutputFormat",
    "PngCompression",
    "encode_image",
    "format_for_path",
    "rotate_canvas",
    "write_image",
]
