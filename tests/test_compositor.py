"""
Tests for the tile compositor (core/execution/compositor.py).

Tiles are PNG bytes decoded in-process, so the worker pool, placement
and failure handling are exercised without external tools.
"""

import threading
from collections import Counter

import numpy as np
import pytest

from core.execution.compositor import Canvas, CompositeProgress, TileCompositor, composite_tiles
from core.execution.decoders import PillowTileDecoder
from core.execution.exceptions import DecodeError, GridValidationError
from core.execution.tiling import GridDescriptor, PixelBounds

RED = (255, 0, 0, 255)
BLUE = (0, 0, 255, 255)

BAD_TILE = b"corrupt tile"


class CountingDecoder:
    """Pillow decoder that records how often each tile was decoded."""

    def __init__(self):
        self._inner = PillowTileDecoder()
        self._lock = threading.Lock()
        self.calls = Counter()

    def decode(self, source):
        with self._lock:
            self.calls[bytes(source)] += 1
        return self._inner.decode(source)


@pytest.fixture
def grid_3x3():
    return GridDescriptor.create(width=24, height=18, tiles=9, rows=3, cols=3)


class TestCanvas:
    """Tests for Canvas."""

    def test_blank_is_transparent(self):
        canvas = Canvas.blank(4, 3)
        assert canvas.size == (4, 3)
        assert canvas.pixels.shape == (3, 4, 4)
        assert not canvas.pixels.any()

    def test_rejects_wrong_shape(self):
        with pytest.raises(ValueError):
            Canvas(np.zeros((3, 4), dtype=np.uint8))

    def test_paste_replaces_pixels(self):
        """Source replaces destination, including alpha."""
        canvas = Canvas(np.full((2, 2, 4), 200, dtype=np.uint8))
        tile = np.zeros((1, 1, 4), dtype=np.uint8)
        canvas.paste(tile, PixelBounds(col_start=1, row_start=1, col_end=2, row_end=2))
        assert tuple(canvas.pixels[1, 1]) == (0, 0, 0, 0)
        assert tuple(canvas.pixels[0, 0]) == (200, 200, 200, 200)

    def test_paste_clips_to_canvas(self):
        """Pixels falling outside the canvas are dropped."""
        canvas = Canvas.blank(5, 5)
        tile = np.full((4, 4, 4), 255, dtype=np.uint8)
        written = canvas.paste(tile, PixelBounds(col_start=3, row_start=3, col_end=7, row_end=7))

        assert written == PixelBounds(col_start=3, row_start=3, col_end=5, row_end=5)
        assert canvas.pixels[3:, 3:].all()
        assert not canvas.pixels[:3].any()

    def test_paste_outside_is_noop(self):
        canvas = Canvas.blank(2, 2)
        tile = np.full((2, 2, 4), 255, dtype=np.uint8)
        assert canvas.paste(tile, PixelBounds(col_start=4, row_start=0, col_end=6, row_end=2)).is_empty
        assert not canvas.pixels.any()


class TestTileCompositor:
    """Tests for TileCompositor."""

    def test_two_tiles_side_by_side(self, solid_tile):
        """A 1x2 grid puts the first tile left and the second right."""
        grid = GridDescriptor.create(width=4, height=2, tiles=2, rows=1, cols=2)
        canvas = composite_tiles(
            grid, [solid_tile(2, 2, RED), solid_tile(2, 2, BLUE)], PillowTileDecoder()
        )

        assert canvas.size == (4, 2)
        assert (canvas.pixels[:, :2] == RED).all()
        assert (canvas.pixels[:, 2:] == BLUE).all()

    def test_each_block_comes_from_its_tile(self, grid_3x3, pattern_tiles):
        """Block (r, c) equals tile r * cols + c."""
        canvas = TileCompositor(PillowTileDecoder(), max_workers=3).composite(grid_3x3, pattern_tiles)

        decoder = PillowTileDecoder()
        for position, data in enumerate(pattern_tiles):
            row, col = divmod(position, 3)
            expected = decoder.decode(data).pixels
            block = canvas.pixels[row * 6 : (row + 1) * 6, col * 8 : (col + 1) * 8]
            np.testing.assert_array_equal(block, expected)

    @pytest.mark.parametrize("workers", [2, 4, 9, 32])
    def test_worker_count_does_not_change_output(self, grid_3x3, pattern_tiles, workers):
        """Any pool size produces the same bytes as a single worker."""
        reference = TileCompositor(PillowTileDecoder(), max_workers=1).composite(grid_3x3, pattern_tiles)
        result = TileCompositor(PillowTileDecoder(), max_workers=workers).composite(grid_3x3, pattern_tiles)
        assert result.tobytes() == reference.tobytes()

    def test_every_tile_decoded_once(self, grid_3x3, pattern_tiles):
        decoder = CountingDecoder()
        TileCompositor(decoder, max_workers=4).composite(grid_3x3, pattern_tiles)
        assert sorted(decoder.calls.values()) == [1] * 9

    def test_failure_does_not_stop_other_tiles(self, grid_3x3, pattern_tiles):
        """A failing tile is reported after every other tile was decoded."""
        sources = list(pattern_tiles)
        sources[4] = BAD_TILE
        decoder = CountingDecoder()
        compositor = TileCompositor(decoder, max_workers=4)

        with pytest.raises(DecodeError) as exc_info:
            compositor.composite(grid_3x3, sources)

        assert exc_info.value.tile_index == 4
        assert sum(decoder.calls.values()) == 9
        assert compositor.last_progress.completed_tiles == 8
        assert compositor.last_progress.failed_tiles == 1

    def test_lowest_failing_index_is_raised(self, grid_3x3, pattern_tiles):
        """With several failures the one for the earliest tile wins."""
        sources = list(pattern_tiles)
        sources[7] = b"bad seven"
        sources[2] = b"bad two"
        sources[5] = b"bad five"

        with pytest.raises(DecodeError) as exc_info:
            TileCompositor(PillowTileDecoder(), max_workers=9).composite(grid_3x3, sources)

        assert exc_info.value.tile_index == 2
        assert exc_info.value.source == "<7 bytes>"
        assert exc_info.value.details["failed_tiles"] == 3

    def test_unusable_grid_rejected(self, solid_tile):
        grid = GridDescriptor(width=4, height=4, tiles=2, rows=1, cols=0)
        with pytest.raises(GridValidationError):
            TileCompositor(PillowTileDecoder()).composite(grid, [solid_tile(2, 2)])

    def test_inconsistent_grid_trusted_by_default(self, solid_tile):
        """Without strict mode a tile count mismatch is not an error."""
        grid = GridDescriptor.create(width=4, height=2, tiles=5, rows=1, cols=2)
        canvas = TileCompositor(PillowTileDecoder()).composite(grid, [solid_tile(2, 2, RED)])
        assert (canvas.pixels[:, :2] == RED).all()
        assert not canvas.pixels[:, 2:].any()

    def test_strict_rejects_tile_count_mismatch(self, solid_tile):
        grid = GridDescriptor.create(width=4, height=2, tiles=2, rows=1, cols=2)
        compositor = TileCompositor(PillowTileDecoder(), strict=True)
        with pytest.raises(GridValidationError):
            compositor.composite(grid, [solid_tile(2, 2)])

    def test_strict_rejects_tile_size_mismatch(self, solid_tile):
        grid = GridDescriptor.create(width=4, height=2, tiles=2, rows=1, cols=2)
        compositor = TileCompositor(PillowTileDecoder(), strict=True)
        with pytest.raises(GridValidationError, match="differs"):
            compositor.composite(grid, [solid_tile(2, 2), solid_tile(1, 2)])

    def test_oversized_tiles_are_clipped(self, solid_tile):
        """Tiles larger than the remaining canvas are cut at the edge."""
        grid = GridDescriptor.create(width=5, height=3, tiles=2, rows=1, cols=2)
        canvas = TileCompositor(PillowTileDecoder()).composite(
            grid, [solid_tile(4, 4, RED), solid_tile(4, 4, BLUE)]
        )
        assert canvas.size == (5, 3)
        assert (canvas.pixels[:, :4] == RED).all()
        assert (canvas.pixels[:, 4:] == BLUE).all()

    @pytest.mark.parametrize("workers", [0, -3])
    def test_worker_count_clamped(self, workers, solid_tile):
        compositor = TileCompositor(PillowTileDecoder(), max_workers=workers)
        assert compositor.max_workers == 1
        grid = GridDescriptor.create(width=2, height=2, tiles=1)
        assert compositor.composite(grid, [solid_tile(2, 2)]).size == (2, 2)

    def test_empty_source_list_gives_blank_canvas(self):
        grid = GridDescriptor.create(width=3, height=3, tiles=0, rows=1, cols=1)
        canvas = TileCompositor(PillowTileDecoder(), max_workers=4).composite(grid, [])
        assert canvas.size == (3, 3)
        assert not canvas.pixels.any()

    def test_progress_callback(self, grid_3x3, pattern_tiles):
        snapshots = []

        def on_progress(progress: CompositeProgress):
            snapshots.append(progress.done_tiles)

        compositor = TileCompositor(PillowTileDecoder(), max_workers=3)
        compositor.composite(grid_3x3, pattern_tiles, progress_callback=on_progress)

        assert sorted(snapshots) == list(range(1, 10))
        assert compositor.last_progress.progress_percent == 100.0
        assert compositor.last_progress.to_dict()["failures"] == []

    def test_large_grid_stress(self, solid_tile):
        """Many small tiles on many workers."""
        tiles = [solid_tile(4, 4, (i, 255 - i, 0, 255)) for i in range(64)]
        grid = GridDescriptor.create(width=32, height=32, tiles=64, rows=8, cols=8)
        canvas = TileCompositor(PillowTileDecoder(), max_workers=8).composite(grid, tiles)

        for i in range(64):
            row, col = divmod(i, 8)
            assert tuple(canvas.pixels[row * 4, col * 4]) == (i, 255 - i, 0, 255)


class TestUnexpectedDecoderErrors:
    """Non-assembly errors from a decoder stay contained to their tile."""

    def test_oversized_tile_does_not_stop_single_worker(self, solid_tile, oversized_tile):
        grid = GridDescriptor.create(width=6, height=2, tiles=3, rows=1, cols=3)
        decoder = CountingDecoder()
        compositor = TileCompositor(decoder, max_workers=1)

        with pytest.raises(DecodeError) as exc_info:
            compositor.composite(grid, [oversized_tile, solid_tile(2, 2), solid_tile(2, 2)])

        assert exc_info.value.tile_index == 0
        assert sum(decoder.calls.values()) == 3
        assert compositor.last_progress.completed_tiles == 2

    @pytest.mark.parametrize("workers", [1, 3])
    def test_arbitrary_exception_wrapped(self, solid_tile, workers):
        """Any exception from a decoder is recorded as a DecodeError."""

        class FlakyDecoder:
            def __init__(self):
                self._inner = PillowTileDecoder()

            def decode(self, source):
                if source == b"explode":
                    raise RuntimeError("decoder crashed")
                return self._inner.decode(source)

        grid = GridDescriptor.create(width=6, height=2, tiles=3, rows=1, cols=3)
        compositor = TileCompositor(FlakyDecoder(), max_workers=workers)

        with pytest.raises(DecodeError) as exc_info:
            compositor.composite(grid, [solid_tile(2, 2), b"explode", solid_tile(2, 2)])

        error = exc_info.value
        assert error.tile_index == 1
        assert "RuntimeError" in error.reason
        assert isinstance(error.__cause__, RuntimeError)
        assert compositor.last_progress.completed_tiles == 2

    def test_strict_single_tile_from_constructor(self, solid_tile):
        """A directly constructed single-tile grid is accepted in strict mode."""
        grid = GridDescriptor(width=2, height=2, tiles=1, rows=2, cols=2)
        canvas = TileCompositor(PillowTileDecoder(), strict=True).composite(grid, [solid_tile(2, 2, RED)])
        assert (canvas.pixels == RED).all()
