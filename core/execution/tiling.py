"""
Tile Grid Model for Image Assembly.

Describes how a tiled image is laid out and how individual tiles map
onto the full canvas.

Key Components:
- GridDescriptor: Image size, rotation and tile layout (rows x cols)
- parse_grid_info: Build a GridDescriptor from a key=value info dump
- TileIndex / PixelBounds: Tile position in the grid and on the canvas
- TileJob: One unit of work for the compositor

Example Usage:
    from core.execution.tiling import parse_grid_info, build_tile_jobs

    grid = parse_grid_info(info_text)
    jobs = build_tile_jobs(tile_files, grid)
    for job in jobs:
        print(job.index, job.source_label)
"""

import logging
import re
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from core.execution.exceptions import GridValidationError

logger = logging.getLogger(__name__)

# Encoded tile data held in memory, or a path to a file holding it
TileSource = Union[bytes, bytearray, str, Path]

# Info dump values are parsed as signed 32-bit integers
_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1

_INT_PATTERN = re.compile(r"[+-]?[0-9]+")

GRID_FIELDS = ("width", "height", "rotation", "tiles", "rows", "cols")


def describe_source(source: TileSource) -> str:
    """Short human-readable label for a tile source (used in logs and errors)."""
    if isinstance(source, (bytes, bytearray)):
        return f"<{len(source)} bytes>"
    return str(source)


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class TileIndex:
    """
    Index of a tile within a grid.

    Attributes:
        col: Column index (x direction)
        row: Row index (y direction)
    """

    col: int
    row: int

    def __str__(self) -> str:
        return f"({self.col}, {self.row})"

    def to_tuple(self) -> Tuple[int, int]:
        """Return as tuple (col, row)."""
        return (self.col, self.row)

    def to_dict(self) -> Dict[str, int]:
        return {"col": self.col, "row": self.row}


@dataclass(frozen=True)
class PixelBounds:
    """
    Bounds in pixel coordinates.

    Attributes:
        col_start: Starting column (inclusive)
        row_start: Starting row (inclusive)
        col_end: Ending column (exclusive)
        row_end: Ending row (exclusive)
    """

    col_start: int
    row_start: int
    col_end: int
    row_end: int

    @property
    def width(self) -> int:
        """Width in pixels."""
        return self.col_end - self.col_start

    @property
    def height(self) -> int:
        """Height in pixels."""
        return self.row_end - self.row_start

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def clip(self, width: int, height: int) -> "PixelBounds":
        """Clip bounds to a canvas of the given size."""
        return PixelBounds(
            col_start=min(max(self.col_start, 0), width),
            row_start=min(max(self.row_start, 0), height),
            col_end=min(max(self.col_end, 0), width),
            row_end=min(max(self.row_end, 0), height),
        )

    def to_slice(self) -> Tuple[slice, slice]:
        """Convert to numpy slices (row_slice, col_slice)."""
        return (slice(self.row_start, self.row_end), slice(self.col_start, self.col_end))

    def to_dict(self) -> Dict[str, int]:
        return {
            "col_start": self.col_start,
            "row_start": self.row_start,
            "col_end": self.col_end,
            "row_end": self.row_end,
        }


@dataclass(frozen=True)
class GridDescriptor:
    """
    Layout of a tiled image.

    Attributes:
        width: Full image width in pixels
        height: Full image height in pixels
        rotation: Counter-clockwise rotation to apply after assembly (degrees)
        tiles: Number of tiles
        rows: Tile rows in the grid
        cols: Tile columns in the grid
    """

    width: int = 0
    height: int = 0
    rotation: int = 0
    tiles: int = 0
    rows: int = 0
    cols: int = 0

    def __post_init__(self):
        # A single-tile image is never split, whatever grid the tool reported
        if self.tiles == 1:
            object.__setattr__(self, "rows", 1)
            object.__setattr__(self, "cols", 1)

    @classmethod
    def create(
        cls,
        width: int = 0,
        height: int = 0,
        rotation: int = 0,
        tiles: int = 0,
        rows: int = 0,
        cols: int = 0,
    ) -> "GridDescriptor":
        """
        Create a descriptor from keyword values (missing fields are 0).

        The single-tile fixup is applied on construction.
        """
        return cls(width=width, height=height, rotation=rotation, tiles=tiles, rows=rows, cols=cols)

    @property
    def shape(self) -> Tuple[int, int]:
        """Grid shape as (rows, cols)."""
        return (self.rows, self.cols)

    def tile_index(self, position: int) -> TileIndex:
        """Column/row of the tile at `position` in the row-major source list."""
        return TileIndex(col=position % self.cols, row=position // self.cols)

    def check_usable(self) -> None:
        """
        Raise GridValidationError if no image can be assembled from this grid.

        Checked unconditionally before compositing.
        """
        if self.width < 1 or self.height < 1:
            raise GridValidationError(
                f"image size must be positive, got {self.width}x{self.height}", self.to_dict()
            )
        if self.cols < 1:
            raise GridValidationError(f"column count must be positive, got {self.cols}", self.to_dict())

    def check_consistent(self, n_sources: Optional[int] = None) -> None:
        """
        Raise GridValidationError if the tile count disagrees with the grid.

        Used only in strict mode; the default assembly trusts the descriptor.

        Args:
            n_sources: Number of tile sources actually available
        """
        self.check_usable()
        if self.tiles != self.rows * self.cols:
            raise GridValidationError(
                f"tile count {self.tiles} does not match {self.rows}x{self.cols} grid",
                self.to_dict(),
            )
        if n_sources is not None and n_sources != self.tiles:
            raise GridValidationError(
                f"expected {self.tiles} tile sources, got {n_sources}", self.to_dict()
            )

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class TileJob:
    """
    A single tile to decode and place on the canvas.

    Attributes:
        index: Position of the tile in the source list
        source: Encoded tile data or path
        tile_index: Column/row of the tile in the grid
    """

    index: int
    source: TileSource
    tile_index: TileIndex

    @property
    def col(self) -> int:
        return self.tile_index.col

    @property
    def row(self) -> int:
        return self.tile_index.row

    @property
    def source_label(self) -> str:
        return describe_source(self.source)

    def destination(self, tile_width: int, tile_height: int) -> PixelBounds:
        """
        Canvas rectangle for this tile, given the decoded tile size.

        Each tile supplies its own extent; neighbouring tiles do not
        overlap as long as the grid is uniform.
        """
        col_start = self.col * tile_width
        row_start = self.row * tile_height
        return PixelBounds(
            col_start=col_start,
            row_start=row_start,
            col_end=col_start + tile_width,
            row_end=row_start + tile_height,
        )


# =============================================================================
# Metadata Resolution
# =============================================================================


def _split_int(line: str) -> Tuple[Optional[str], int]:
    """Split a `name=value` line; return (None, 0) unless value is an int32."""
    name, sep, value = line.partition("=")
    if not sep:
        return None, 0
    value = value.strip()
    if not _INT_PATTERN.fullmatch(value):
        return None, 0
    parsed = int(value)
    if not _INT32_MIN <= parsed <= _INT32_MAX:
        return None, 0
    return name.strip(), parsed


def parse_grid_info(info: Union[str, bytes, Iterable[str]]) -> GridDescriptor:
    """
    Build a GridDescriptor from the output of the container info tool.

    Lines that are not `name=value` with an integer value, and names that
    are not grid fields, are ignored. Missing fields default to 0.

    Args:
        info: Whole info text, raw bytes or an iterable of lines

    Returns:
        GridDescriptor with the single-tile fixup applied
    """
    if isinstance(info, bytes):
        info = info.decode("utf-8", errors="replace")
    if isinstance(info, str):
        info = info.splitlines()

    values: Dict[str, int] = {}
    for line in info:
        name, value = _split_int(line)
        if name in GRID_FIELDS:
            values[name] = value

    grid = GridDescriptor.create(**values)
    logger.debug(f"Resolved grid {grid.to_dict()}")
    return grid


def build_tile_jobs(sources: Sequence[TileSource], grid: GridDescriptor) -> List[TileJob]:
    """
    Create one job per tile source, in source (row-major) order.

    Args:
        sources: Ordered tile sources
        grid: Grid descriptor providing the column count

    Returns:
        List of TileJob
    """
    return [
        TileJob(index=i, source=source, tile_index=grid.tile_index(i))
        for i, source in enumerate(sources)
    ]
