"""
Convert Command - Assemble a tiled HEIF image into PNG or JPEG.

Usage:
    heif2png convert --threads 4 photo.heic photo.png
"""

import logging
from pathlib import Path
from typing import Optional

import click

from core.execution.exceptions import AssemblyError
from core.execution.pipeline import convert as run_conversion

logger = logging.getLogger("heif2png.convert")


@click.command("convert")
@click.argument("source", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("destination", type=click.Path(dir_okay=False, path_type=Path))
@click.option(
    "--threads",
    "-t",
    type=click.IntRange(min=1),
    default=None,
    help="Thread pool size for tile decoding (default: 1).",
)
@click.option(
    "--png-compr",
    "png_compression",
    type=click.IntRange(0, 3),
    default=None,
    help="PNG compression (0 - default, 1 - no, 2 - best speed, 3 - best compression).",
)
@click.option(
    "--jpeg-qual",
    "jpeg_quality",
    type=click.IntRange(0, 100),
    default=None,
    help="JPEG quality (0 - worst, 100 - best; default: 90).",
)
@click.option(
    "--ffmpeg",
    "ffmpeg_path",
    type=str,
    default=None,
    help="Path to ffmpeg binary.",
)
@click.option(
    "--heif2hevc",
    "heif2hevc_path",
    type=str,
    default=None,
    help="Path to heif2hevc binary.",
)
@click.option(
    "--strict-grid/--trust-grid",
    default=None,
    help="Validate tile count and tile sizes against the grid (default: trust).",
)
@click.pass_obj
def convert(
    ctx,
    source: Path,
    destination: Path,
    threads: Optional[int],
    png_compression: Optional[int],
    jpeg_quality: Optional[int],
    ffmpeg_path: Optional[str],
    heif2hevc_path: Optional[str],
    strict_grid: Optional[bool],
):
    """
    Convert SOURCE (HEIF/HEIC) to DESTINATION (.png, .jpg or .jpeg).

    Tiles are extracted with heif2hevc, decoded with ffmpeg on a pool of
    threads and stitched into one image. The rotation stored in the file
    is applied before encoding.

    \b
    Examples:
        # Default PNG output
        heif2png convert photo.heic photo.png

        # Four decoding threads, fastest PNG compression
        heif2png convert --threads 4 --png-compr 2 photo.heic photo.png

        # JPEG at quality 80
        heif2png convert --jpeg-qual 80 photo.heic photo.jpg
    """
    config = ctx.config.merged(
        threads=threads,
        png_compression=png_compression,
        jpeg_quality=jpeg_quality,
        strict_grid=strict_grid,
        ffmpeg=ffmpeg_path,
        heif2hevc=heif2hevc_path,
    )

    logger.info(f"Converting {source} -> {destination} ({config.threads} thread(s))")

    try:
        result = run_conversion(source, destination, config)
    except AssemblyError as e:
        raise click.ClickException(str(e)) from e
    except ValueError as e:
        raise click.BadParameter(str(e)) from e

    width, height = result.output_size
    click.echo(
        f"{result.destination}: {width}x{height} {result.output_format.value}, "
        f"{result.tile_count} tile(s) in {result.elapsed_seconds:.2f}s"
    )
