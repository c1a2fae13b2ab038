"""
Pytest configuration and fixtures for heif2png tests.

Markers:
    @pytest.mark.grid - Grid descriptor / metadata parsing tests
    @pytest.mark.compositor - Worker pool and canvas tests
    @pytest.mark.imaging - Rotation and encoding tests
    @pytest.mark.cli - Command line tests
    @pytest.mark.slow - Tests that take longer to run

Usage:
    pytest -m compositor         # Run only compositor tests
    pytest -m "not slow"         # Skip slow tests
"""

import io
import struct
import sys
import zlib
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

RED = (255, 0, 0, 255)
GREEN = (0, 255, 0, 255)
BLUE = (0, 0, 255, 255)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "grid: Grid descriptor and metadata parsing tests")
    config.addinivalue_line("markers", "compositor: Tile compositor tests")
    config.addinivalue_line("markers", "imaging: Rotation and encoding tests")
    config.addinivalue_line("markers", "cli: Command line tests")
    config.addinivalue_line("markers", "slow: Slow-running tests")


def pytest_collection_modifyitems(config, items):
    """Auto-apply markers based on test file names."""
    for item in items:
        name = item.fspath.basename
        if "grid" in name:
            item.add_marker(pytest.mark.grid)
        if "compositor" in name or "decoder" in name:
            item.add_marker(pytest.mark.compositor)
        if "rotation" in name or "encoding" in name:
            item.add_marker(pytest.mark.imaging)
        if "cli" in name:
            item.add_marker(pytest.mark.cli)

        test_name = item.name.lower()
        if "large" in test_name or "stress" in test_name:
            item.add_marker(pytest.mark.slow)


def png_bytes(width: int, height: int, color=RED) -> bytes:
    """Encode a solid-colour RGBA tile as PNG."""
    buffer = io.BytesIO()
    Image.new("RGBA", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def pattern_png(width: int, height: int, seed: int) -> bytes:
    """Encode a random RGBA tile as PNG (deterministic per seed)."""
    rng = np.random.default_rng(seed)
    pixels = rng.integers(0, 256, size=(height, width, 4), dtype=np.uint8)
    buffer = io.BytesIO()
    Image.fromarray(pixels, "RGBA").save(buffer, format="PNG")
    return buffer.getvalue()


def oversized_png(width: int = 30000, height: int = 30000) -> bytes:
    """PNG whose header declares a huge image; Pillow refuses to open it."""

    def chunk(kind: bytes, data: bytes) -> bytes:
        crc = zlib.crc32(kind + data) & 0xFFFFFFFF
        return struct.pack(">I", len(data)) + kind + data + struct.pack(">I", crc)

    header = struct.pack(">IIBBBBB", width, height, 8, 6, 0, 0, 0)
    return (
        b"\x89PNG\r\n\x1a\n"
        + chunk(b"IHDR", header)
        + chunk(b"IDAT", zlib.compress(b""))
        + chunk(b"IEND", b"")
    )


@pytest.fixture
def solid_tile():
    """Factory for solid-colour PNG tiles."""
    return png_bytes


@pytest.fixture
def oversized_tile():
    """Tile that trips Pillow's decompression bomb check."""
    return oversized_png()


@pytest.fixture
def pattern_tiles():
    """Nine distinct 8x6 random tiles for a 3x3 grid."""
    return [pattern_png(8, 6, seed) for seed in range(9)]


@pytest.fixture
def sample_info_text():
    """Info dump as printed by `heif2hevc -info` for a 2x2 tiled image."""
    return "\n".join(
        [
            "width=1024",
            "height=768",
            "rotation=90",
            "tiles=4",
            "rows=2",
            "cols=2",
            "",
        ]
    )
