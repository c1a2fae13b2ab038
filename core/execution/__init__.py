"""
Tile Assembly Engine for heif2png.

Decodes the tiles of an image concurrently and composites them into
one canvas.

Key Components:
- GridDescriptor / parse_grid_info: Tile layout from a key=value info dump
- TileJob: One tile to decode and place
- FfmpegTileDecoder / PillowTileDecoder: Tile decoder backends
- TileCompositor / Canvas: Worker pool and the shared RGBA canvas

The conversion pipeline (core.execution.pipeline) and its configuration
(core.execution.config) build on these and are imported separately.
"""

from core.execution.exceptions import (
    AssemblyError,
    DecodeError,
    ExternalToolError,
    GridValidationError,
    OutputWriteError,
    UnsupportedFormatError,
)
from core.execution.tiling import (
    GridDescriptor,
    PixelBounds,
    TileIndex,
    TileJob,
    TileSource,
    build_tile_jobs,
    describe_source,
    parse_grid_info,
)
from core.execution.decoders import (
    DecodedTile,
    FfmpegTileDecoder,
    PillowTileDecoder,
    TileDecoder,
)
from core.execution.compositor import (
    Canvas,
    CompositeProgress,
    TileCompositor,
    TileFailure,
    composite_tiles,
)

__all__ = [
    # Exceptions
    "AssemblyError",
    "DecodeError",
    "ExternalToolError",
    "GridValidationError",
    "OutputWriteError",
    "UnsupportedFormatError",
    # Grid model
    "GridDescriptor",
    "PixelBounds",
    "TileIndex",
    "TileJob",
    "TileSource",
    "build_tile_jobs",
    "describe_source",
    "parse_grid_info",
    # Decoders
    "DecodedTile",
    "FfmpegTileDecoder",
    "PillowTileDecoder",
    "TileDecoder",
    # Compositing
    "Canvas",
    "CompositeProgress",
    "TileCompositor",
    "TileFailure",
    "composite_tiles",
]
