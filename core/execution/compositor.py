"""
Tile Compositor for Image Assembly.

Decodes tiles with a fixed pool of worker threads and writes each one
into its place on a shared RGBA canvas.

Key Components:
- Canvas: Full-size RGBA pixel buffer
- CompositeProgress: Progress and failure information for a run
- TileCompositor: Worker pool that decodes and places tiles

Example Usage:
    from core.execution.compositor import TileCompositor
    from core.execution.decoders import FfmpegTileDecoder

    compositor = TileCompositor(decoder=FfmpegTileDecoder(), max_workers=4)
    canvas = compositor.composite(grid, tile_files)
    image = canvas.to_image()

Tiles are placed by column/row, so the destination rectangles of
different jobs never overlap and workers write the canvas without
locking. Only the shared failure list is guarded.
"""

import concurrent.futures
import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
from PIL import Image

from core.execution.decoders import DecodedTile, TileDecoder
from core.execution.exceptions import AssemblyError, DecodeError, GridValidationError
from core.execution.tiling import (
    GridDescriptor,
    PixelBounds,
    TileJob,
    TileSource,
    build_tile_jobs,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Canvas
# =============================================================================


class Canvas:
    """
    Mutable RGBA raster sized to the full image.

    Attributes:
        pixels: Array of shape (height, width, 4), dtype uint8
    """

    def __init__(self, pixels: np.ndarray):
        if pixels.ndim != 3 or pixels.shape[2] != 4:
            raise ValueError(f"Canvas needs an (H, W, 4) array, got shape {pixels.shape}")
        if pixels.dtype != np.uint8:
            pixels = pixels.astype(np.uint8)
        self.pixels = pixels

    @classmethod
    def blank(cls, width: int, height: int) -> "Canvas":
        """Transparent black canvas."""
        return cls(np.zeros((height, width, 4), dtype=np.uint8))

    @classmethod
    def from_image(cls, image: Image.Image) -> "Canvas":
        if image.mode != "RGBA":
            image = image.convert("RGBA")
        return cls(np.array(image, dtype=np.uint8))

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self) -> Tuple[int, int]:
        """Size as (width, height)."""
        return (self.width, self.height)

    def paste(self, tile: np.ndarray, bounds: PixelBounds) -> PixelBounds:
        """
        Copy `tile` over the canvas at `bounds` (source replaces destination).

        The rectangle is clipped to the canvas; pixels falling outside are
        dropped.

        Returns:
            The rectangle actually written
        """
        clipped = bounds.clip(self.width, self.height)
        if clipped.is_empty:
            return clipped
        self.pixels[clipped.to_slice()] = tile[: clipped.height, : clipped.width]
        return clipped

    def to_image(self) -> Image.Image:
        return Image.fromarray(self.pixels, "RGBA")

    def tobytes(self) -> bytes:
        return self.pixels.tobytes()


# =============================================================================
# Progress
# =============================================================================


@dataclass
class TileFailure:
    """A tile that could not be composited."""

    index: int
    source: str
    error: AssemblyError

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "source": self.source, "error": str(self.error)}


@dataclass
class CompositeProgress:
    """
    Progress information for a compositing run.

    Attributes:
        total_tiles: Total number of tiles
        completed_tiles: Tiles decoded and placed
        failed_tiles: Tiles that failed
        elapsed_seconds: Time since the run started
        failures: Per-tile failures in the order they happened
    """

    total_tiles: int = 0
    completed_tiles: int = 0
    failed_tiles: int = 0
    elapsed_seconds: float = 0.0
    failures: List[TileFailure] = field(default_factory=list)

    @property
    def done_tiles(self) -> int:
        return self.completed_tiles + self.failed_tiles

    @property
    def progress_percent(self) -> float:
        """Progress as percentage."""
        if self.total_tiles == 0:
            return 0.0
        return (self.done_tiles / self.total_tiles) * 100

    def first_failure(self) -> Optional[TileFailure]:
        """Failure with the lowest tile index, independent of thread timing."""
        if not self.failures:
            return None
        return min(self.failures, key=lambda f: f.index)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_tiles": self.total_tiles,
            "completed_tiles": self.completed_tiles,
            "failed_tiles": self.failed_tiles,
            "progress_percent": self.progress_percent,
            "elapsed_seconds": self.elapsed_seconds,
            "failures": [f.to_dict() for f in self.failures],
        }


ProgressCallback = Callable[[CompositeProgress], None]


class _RunState:
    """Shared state of one compositing run; all mutation goes through the lock."""

    def __init__(self, total: int, callback: Optional[ProgressCallback]):
        self.progress = CompositeProgress(total_tiles=total)
        self._callback = callback
        self._lock = threading.Lock()
        self._start = time.time()
        self._reference_size: Optional[Tuple[int, int]] = None

    def claim_reference_size(self, size: Tuple[int, int]) -> Tuple[int, int]:
        """Return the first tile size seen in this run, recording `size` if none yet."""
        with self._lock:
            if self._reference_size is None:
                self._reference_size = size
            return self._reference_size

    def record_success(self) -> None:
        with self._lock:
            self.progress.completed_tiles += 1
            self._notify()

    def record_failure(self, job: TileJob, error: AssemblyError) -> None:
        with self._lock:
            self.progress.failed_tiles += 1
            self.progress.failures.append(
                TileFailure(index=job.index, source=job.source_label, error=error)
            )
            self._notify()

    def _notify(self) -> None:
        self.progress.elapsed_seconds = time.time() - self._start
        if self._callback:
            self._callback(self.progress)


# =============================================================================
# TileCompositor
# =============================================================================


class TileCompositor:
    """
    Decode tiles with a worker pool and composite them onto a canvas.

    All jobs are queued up front; each worker pulls jobs until the queue
    is empty. A failing tile does not stop other workers or other jobs:
    failures are collected and the one with the lowest tile index is
    raised after every worker has finished.

    Example:
        compositor = TileCompositor(decoder=PillowTileDecoder(), max_workers=4)
        canvas = compositor.composite(grid, [tile0_png, tile1_png])
    """

    def __init__(
        self,
        decoder: TileDecoder,
        max_workers: int = 1,
        strict: bool = False,
    ):
        """
        Initialize compositor.

        Args:
            decoder: Tile decoder backend
            max_workers: Worker thread count (values below 1 are treated as 1)
            strict: Validate the grid and tile sizes instead of trusting them
        """
        self.decoder = decoder
        if max_workers < 1:
            logger.warning(f"Worker count {max_workers} is below 1, using 1")
            max_workers = 1
        self.max_workers = max_workers
        self.strict = strict
        self.last_progress: Optional[CompositeProgress] = None

    def composite(
        self,
        grid: GridDescriptor,
        sources: Sequence[TileSource],
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Canvas:
        """
        Assemble the full image.

        Args:
            grid: Grid descriptor (size and column count)
            sources: Encoded tiles in row-major order
            progress_callback: Called from worker threads after each tile

        Returns:
            Canvas with every tile in place

        Raises:
            GridValidationError: If the grid cannot be used
            DecodeError: If any tile failed (raised after all tiles ran)
        """
        if self.strict:
            grid.check_consistent(len(sources))
        else:
            grid.check_usable()

        start_time = time.time()
        canvas = Canvas.blank(grid.width, grid.height)
        jobs = build_tile_jobs(sources, grid)

        work: "queue.Queue[TileJob]" = queue.Queue(maxsize=len(jobs))
        for job in jobs:
            work.put_nowait(job)

        state = _RunState(len(jobs), progress_callback)
        n_workers = min(self.max_workers, max(len(jobs), 1))
        logger.debug(
            f"Compositing {len(jobs)} tiles on {grid.cols}x{grid.rows} grid "
            f"into {grid.width}x{grid.height} canvas with {n_workers} worker(s)"
        )

        if n_workers == 1:
            self._drain(work, canvas, state)
        else:
            self._drain_parallel(work, canvas, state, n_workers)

        progress = state.progress
        progress.elapsed_seconds = time.time() - start_time
        self.last_progress = progress

        failure = progress.first_failure()
        if failure is not None:
            error = failure.error
            if progress.failed_tiles > 1:
                error.details["failed_tiles"] = progress.failed_tiles
            raise error

        logger.debug(f"Composited {progress.completed_tiles} tiles in {progress.elapsed_seconds:.2f}s")
        return canvas

    def _drain_parallel(
        self,
        work: "queue.Queue[TileJob]",
        canvas: Canvas,
        state: _RunState,
        n_workers: int,
    ) -> None:
        """Run `n_workers` drain loops and wait for all of them."""
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=n_workers, thread_name_prefix="tile-worker"
        ) as executor:
            futures = [executor.submit(self._drain, work, canvas, state) for _ in range(n_workers)]
            for future in futures:
                future.result()

    def _drain(self, work: "queue.Queue[TileJob]", canvas: Canvas, state: _RunState) -> None:
        """Worker loop: process jobs until the queue is empty."""
        while True:
            try:
                job = work.get_nowait()
            except queue.Empty:
                return
            self._process_job(job, canvas, state)

    def _process_job(self, job: TileJob, canvas: Canvas, state: _RunState) -> None:
        try:
            tile = self.decoder.decode(job.source)
            if self.strict:
                self._check_tile_size(tile, state)
        except AssemblyError as e:
            self._fail(job, e, state)
            return
        except Exception as e:
            error = DecodeError(job.source_label, f"unexpected decoder failure: {type(e).__name__}: {e}")
            error.__cause__ = e
            self._fail(job, error, state)
            return

        bounds = job.destination(tile.width, tile.height)
        canvas.paste(tile.pixels, bounds)
        state.record_success()

    def _fail(self, job: TileJob, error: AssemblyError, state: _RunState) -> None:
        if getattr(error, "tile_index", None) is None:
            error.tile_index = job.index
        logger.error(f"Error processing tile {job.index} {job.tile_index}: {error}")
        state.record_failure(job, error)

    def _check_tile_size(self, tile: DecodedTile, state: _RunState) -> None:
        reference = state.claim_reference_size(tile.size)
        if tile.size != reference:
            raise GridValidationError(
                f"tile size {tile.width}x{tile.height} differs from "
                f"{reference[0]}x{reference[1]}"
            )


def composite_tiles(
    grid: GridDescriptor,
    sources: Sequence[TileSource],
    decoder: TileDecoder,
    max_workers: int = 1,
    **kwargs,
) -> Canvas:
    """
    Convenience function to composite tiles in one call.

    Args:
        grid: Grid descriptor
        sources: Encoded tiles in row-major order
        decoder: Tile decoder backend
        max_workers: Worker thread count
        **kwargs: Additional TileCompositor arguments

    Returns:
        Composited Canvas
    """
    compositor = TileCompositor(decoder=decoder, max_workers=max_workers, **kwargs)
    return compositor.composite(grid, sources)
