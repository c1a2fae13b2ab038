"""
Conversion Pipeline.

Runs the full conversion of a tiled image:

    resolve grid -> extract tiles -> composite -> rotate -> encode

Example Usage:
    from core.execution.config import ConversionConfig
    from core.execution.pipeline import convert

    result = convert("photo.heic", "photo.png", ConversionConfig(threads=4))
    print(result.to_dict())

`assemble_image` runs the same steps on any metadata source / tile
extractor pair, e.g. an InMemoryTileSource.
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from core.data.heif import Heif2HevcTool, HeifContainer, MetadataSource, TileExtractor
from core.execution.compositor import Canvas, CompositeProgress, ProgressCallback, TileCompositor
from core.execution.config import ConversionConfig
from core.execution.decoders import FfmpegTileDecoder, TileDecoder
from core.execution.tiling import GridDescriptor
from core.imaging.encoding import OutputFormat, format_for_path, write_image
from core.imaging.rotation import rotate_canvas

logger = logging.getLogger(__name__)


@dataclass
class ConversionResult:
    """
    Summary of a finished conversion.

    Attributes:
        destination: Written file
        output_format: Format of the written file
        grid: Grid descriptor of the source image
        tile_count: Number of tiles composited
        output_size: Final image size (width, height) after rotation
        elapsed_seconds: Wall time of the whole conversion
        progress: Compositing progress of the run
    """

    destination: Path
    output_format: OutputFormat
    grid: GridDescriptor
    tile_count: int
    output_size: Tuple[int, int]
    elapsed_seconds: float = 0.0
    progress: Optional[CompositeProgress] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "destination": str(self.destination),
            "output_format": self.output_format.value,
            "grid": self.grid.to_dict(),
            "tile_count": self.tile_count,
            "output_size": list(self.output_size),
            "elapsed_seconds": self.elapsed_seconds,
            "metadata": self.metadata,
        }


def build_canvas(
    metadata_source: MetadataSource,
    tile_extractor: TileExtractor,
    decoder: TileDecoder,
    config: Optional[ConversionConfig] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> Tuple[Canvas, GridDescriptor, int, CompositeProgress]:
    """
    Resolve, extract, composite and rotate, without encoding.

    Returns:
        Tuple of (rotated canvas, grid, tile count, compositing progress)
    """
    config = config or ConversionConfig()

    grid = metadata_source.resolve()
    logger.info(
        f"Image {grid.width}x{grid.height}, {grid.tiles} tile(s) in "
        f"{grid.rows}x{grid.cols} grid, rotation {grid.rotation}"
    )

    sources = tile_extractor.extract()

    compositor = TileCompositor(
        decoder=decoder,
        max_workers=config.threads,
        strict=config.strict_grid,
    )
    canvas = compositor.composite(grid, sources, progress_callback=progress_callback)
    canvas = rotate_canvas(canvas, grid.rotation)
    return canvas, grid, len(sources), compositor.last_progress


def assemble_image(
    metadata_source: MetadataSource,
    tile_extractor: TileExtractor,
    destination: Union[str, Path],
    decoder: TileDecoder,
    config: Optional[ConversionConfig] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> ConversionResult:
    """
    Assemble an image from a source pair and write it to `destination`.

    The destination format is checked before any work is done.

    Raises:
        UnsupportedFormatError: Unknown destination extension
        ExternalToolError: Metadata or extraction failed
        GridValidationError: Unusable grid
        DecodeError: A tile failed to decode
        OutputWriteError: Destination could not be written
    """
    config = config or ConversionConfig()
    config.validate()
    destination = Path(destination)
    format_for_path(destination)

    start_time = time.time()
    canvas, grid, tile_count, progress = build_canvas(
        metadata_source, tile_extractor, decoder, config, progress_callback
    )

    fmt = write_image(
        canvas,
        destination,
        png_compression=config.png_compression,
        jpeg_quality=config.jpeg_quality,
    )
    elapsed = time.time() - start_time
    logger.info(f"Wrote {canvas.width}x{canvas.height} {fmt.value} to {destination} in {elapsed:.2f}s")

    return ConversionResult(
        destination=destination,
        output_format=fmt,
        grid=grid,
        tile_count=tile_count,
        output_size=canvas.size,
        elapsed_seconds=elapsed,
        progress=progress,
        metadata={"threads": config.threads},
    )


def convert(
    source: Union[str, Path],
    destination: Union[str, Path],
    config: Optional[ConversionConfig] = None,
    decoder: Optional[TileDecoder] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> ConversionResult:
    """
    Convert a HEIF file to PNG or JPEG.

    Tiles are extracted with heif2hevc and decoded with ffmpeg unless
    another decoder is given. Extracted tile files are always removed.

    Args:
        source: HEIF file
        destination: Output path (.png, .jpg or .jpeg)
        config: Conversion settings
        decoder: Tile decoder (default: ffmpeg at config.tools.ffmpeg)
        progress_callback: Compositing progress callback

    Returns:
        ConversionResult
    """
    config = config or ConversionConfig()
    config.validate()
    format_for_path(destination)

    decoder = decoder or FfmpegTileDecoder(executable=config.tools.ffmpeg)
    tool = Heif2HevcTool(executable=config.tools.heif2hevc)

    with HeifContainer(source, tool=tool, workdir=config.workdir) as container:
        return assemble_image(
            container,
            container,
            destination,
            decoder=decoder,
            config=config,
            progress_callback=progress_callback,
        )
