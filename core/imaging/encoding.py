"""
Output Encoding.

Serializes the final canvas as PNG or JPEG. The format is chosen from
the destination extension; unknown extensions are rejected before any
file is created.
"""

import io
import logging
from enum import Enum
from pathlib import Path
from typing import Union

from core.execution.compositor import Canvas
from core.execution.exceptions import OutputWriteError, UnsupportedFormatError

logger = logging.getLogger(__name__)


class OutputFormat(Enum):
    """Supported output formats."""

    PNG = "png"
    JPEG = "jpeg"


class PngCompression(Enum):
    """
    PNG compression effort.

    Values are the numeric levels accepted on the command line.
    """

    DEFAULT = 0
    NONE = 1
    FASTEST = 2
    SMALLEST = 3

    @property
    def compress_level(self) -> int:
        """zlib level passed to the PNG writer."""
        return _PNG_LEVELS[self]

    @classmethod
    def parse(cls, value: Union[int, str, "PngCompression"]) -> "PngCompression":
        """Accept an enum member, its number or its (case-insensitive) name."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str) and not value.strip().isdigit():
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise ValueError(f"Unknown PNG compression: {value!r}") from None
        return cls(int(value))


_PNG_LEVELS = {
    PngCompression.DEFAULT: 6,
    PngCompression.NONE: 0,
    PngCompression.FASTEST: 1,
    PngCompression.SMALLEST: 9,
}

EXTENSION_FORMATS = {
    ".png": OutputFormat.PNG,
    ".jpg": OutputFormat.JPEG,
    ".jpeg": OutputFormat.JPEG,
}

DEFAULT_JPEG_QUALITY = 90


def format_for_path(path: Union[str, Path]) -> OutputFormat:
    """
    Output format implied by a destination path.

    Raises:
        UnsupportedFormatError: If the extension is not .png, .jpg or .jpeg
    """
    ext = Path(path).suffix.lower()
    try:
        return EXTENSION_FORMATS[ext]
    except KeyError:
        raise UnsupportedFormatError(ext, sorted(EXTENSION_FORMATS)) from None


def encode_image(
    canvas: Canvas,
    fmt: OutputFormat,
    png_compression: PngCompression = PngCompression.DEFAULT,
    jpeg_quality: int = DEFAULT_JPEG_QUALITY,
) -> bytes:
    """
    Encode a canvas to bytes.

    Args:
        canvas: Image to encode
        fmt: Output format
        png_compression: PNG compression effort
        jpeg_quality: JPEG quality, 0 (worst) to 100 (best)

    Returns:
        Encoded image bytes
    """
    image = canvas.to_image()
    buffer = io.BytesIO()

    if fmt == OutputFormat.PNG:
        options = {"compress_level": png_compression.compress_level}
        if png_compression == PngCompression.SMALLEST:
            options["optimize"] = True
        image.save(buffer, format="PNG", **options)
    elif fmt == OutputFormat.JPEG:
        if not 0 <= jpeg_quality <= 100:
            raise ValueError(f"JPEG quality must be between 0 and 100, got {jpeg_quality}")
        # JPEG has no alpha channel
        image.convert("RGB").save(buffer, format="JPEG", quality=jpeg_quality)
    else:
        raise UnsupportedFormatError(str(fmt))

    return buffer.getvalue()


def write_image(
    canvas: Canvas,
    path: Union[str, Path],
    png_compression: PngCompression = PngCompression.DEFAULT,
    jpeg_quality: int = DEFAULT_JPEG_QUALITY,
) -> OutputFormat:
    """
    Encode a canvas and write it to `path`.

    The image is fully encoded before the destination is opened, so an
    unsupported extension or an encoding failure leaves no file behind.
    A failed write may leave a partial file.

    Returns:
        The format that was written

    Raises:
        UnsupportedFormatError: Unknown destination extension
        OutputWriteError: Destination could not be created or written
    """
    path = Path(path)
    fmt = format_for_path(path)
    data = encode_image(canvas, fmt, png_compression=png_compression, jpeg_quality=jpeg_quality)

    try:
        with open(path, "wb") as f:
            f.write(data)
    except OSError as e:
        raise OutputWriteError(str(path), e) from e

    logger.debug(f"Wrote {len(data)} bytes of {fmt.value} to {path}")
    return fmt
