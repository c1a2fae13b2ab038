"""
Tile Decoders.

Turn one encoded tile into an RGBA bitmap. The compositor only needs
`decode(source) -> DecodedTile` and treats any backend the same way.

Backends:
- FfmpegTileDecoder: pipes a raw HEVC bitstream through ffmpeg and reads
  back a PNG frame
- PillowTileDecoder: decodes any Pillow-readable image in-process
"""

import io
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

import numpy as np
from PIL import Image, UnidentifiedImageError

from core.execution.exceptions import DecodeError
from core.execution.tiling import TileSource, describe_source

logger = logging.getLogger(__name__)


@dataclass
class DecodedTile:
    """
    A decoded tile bitmap.

    Attributes:
        pixels: RGBA array of shape (height, width, 4), dtype uint8
    """

    pixels: np.ndarray

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self):
        """Size as (width, height)."""
        return (self.width, self.height)

    @classmethod
    def from_image(cls, image: Image.Image) -> "DecodedTile":
        """Build from a Pillow image, converting to RGBA."""
        if image.mode != "RGBA":
            image = image.convert("RGBA")
        return cls(pixels=np.asarray(image, dtype=np.uint8))


class TileDecoder(Protocol):
    """Protocol for tile decoders."""

    def decode(self, source: TileSource) -> DecodedTile:
        """Decode one tile, raising DecodeError on failure."""
        ...


def _read_source(source: TileSource) -> bytes:
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)
    try:
        return Path(source).read_bytes()
    except OSError as e:
        raise DecodeError(describe_source(source), f"cannot read tile: {e}") from e


def _decode_with_pillow(data: bytes, label: str, diagnostics: str = "") -> DecodedTile:
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            return DecodedTile.from_image(img)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as e:
        raise DecodeError(label, f"image decode failed: {e}", diagnostics) from e


class PillowTileDecoder:
    """
    Decode tiles in-process with Pillow.

    Suitable for tiles that are already in a still-image format
    (PNG, JPEG, ...), e.g. when the extraction step transcodes itself.
    """

    def decode(self, source: TileSource) -> DecodedTile:
        label = describe_source(source)
        return _decode_with_pillow(_read_source(source), label)


class FfmpegTileDecoder:
    """
    Decode raw HEVC tile bitstreams with an external ffmpeg process.

    ffmpeg is asked for a single PNG frame on stdout, which is then
    decoded with Pillow. In-memory sources are fed through stdin.

    Example:
        decoder = FfmpegTileDecoder(executable="/usr/bin/ffmpeg")
        tile = decoder.decode(Path("tile.hevc"))
    """

    def __init__(self, executable: str = "ffmpeg", input_format: str = "hevc"):
        """
        Initialize decoder.

        Args:
            executable: ffmpeg binary name or path
            input_format: Demuxer for the tile bitstream
        """
        self.executable = executable
        self.input_format = input_format

    def build_command(self, input_path: Optional[str] = None) -> list:
        """Command line for decoding `input_path` (or stdin when None)."""
        return [
            self.executable,
            "-hide_banner",
            "-f",
            self.input_format,
            "-i",
            input_path if input_path is not None else "-",
            "-f",
            "image2pipe",
            "-vcodec",
            "png",
            "-",
        ]

    def decode(self, source: TileSource) -> DecodedTile:
        label = describe_source(source)
        if isinstance(source, (bytes, bytearray)):
            cmd = self.build_command()
            stdin_data = bytes(source)
        else:
            cmd = self.build_command(str(source))
            stdin_data = None

        logger.debug(f"Decoding tile {label}: {' '.join(cmd)}")
        try:
            completed = subprocess.run(cmd, input=stdin_data, capture_output=True, check=False)
        except OSError as e:
            raise DecodeError(label, f"cannot run {self.executable}: {e}") from e

        stderr = completed.stderr.decode("utf-8", errors="replace") if completed.stderr else ""
        if completed.returncode != 0:
            logger.error(f"ffmpeg fail: {stderr.strip()}")
            raise DecodeError(label, f"ffmpeg exited with status {completed.returncode}", stderr)

        if not completed.stdout:
            raise DecodeError(label, "ffmpeg produced no output", stderr)

        try:
            return _decode_with_pillow(completed.stdout, label)
        except DecodeError as e:
            preview = completed.stdout[:512].decode("utf-8", errors="replace")
            logger.error(f"ffmpeg output is not a PNG: {preview}")
            e.diagnostics = preview
            e.details["diagnostics"] = preview.strip()
            raise
