"""
HEIF Container Sources.

Backends that supply the compositor with a grid descriptor and an
ordered list of encoded tiles.

Key Components:
- MetadataSource / TileExtractor: Capability protocols used by the pipeline
- Heif2HevcTool: Wrapper around the external `heif2hevc` tool
- HeifContainer: A HEIF file resolved and extracted through heif2hevc,
  with cleanup of the extracted tile files
- InMemoryTileSource: Grid and tiles already held in memory

Example Usage:
    with HeifContainer("photo.heic", tool=Heif2HevcTool("heif2hevc")) as container:
        grid = container.resolve()
        tiles = container.extract()
"""

import glob
import logging
import os
import re
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional, Protocol, Sequence, Union

from core.execution.exceptions import ExternalToolError
from core.execution.tiling import GridDescriptor, TileSource, parse_grid_info

logger = logging.getLogger(__name__)


class MetadataSource(Protocol):
    """Anything that can describe the tile grid of an image."""

    def resolve(self) -> GridDescriptor:
        ...


class TileExtractor(Protocol):
    """Anything that can supply the encoded tiles of an image, row-major."""

    def extract(self) -> List[TileSource]:
        ...


def _natural_key(path: Path) -> list:
    """Sort key that orders `tile2` before `tile10`."""
    return [int(part) if part.isdigit() else part for part in re.split(r"(\d+)", path.name)]


def _decode_output(data: Optional[bytes]) -> str:
    return data.decode("utf-8", errors="replace") if data else ""


class Heif2HevcTool:
    """
    Wrapper around the `heif2hevc` command line tool.

    `heif2hevc -info SRC` prints `name=value` lines describing the image;
    `heif2hevc SRC PREFIX` writes one raw HEVC file per tile, named
    with PREFIX.
    """

    def __init__(self, executable: str = "heif2hevc"):
        self.executable = executable

    def _run(self, cmd: List[str], merge_output: bool = False) -> subprocess.CompletedProcess:
        logger.debug(f"Running {' '.join(cmd)}")
        try:
            completed = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT if merge_output else subprocess.PIPE,
                check=False,
            )
        except OSError as e:
            raise ExternalToolError(cmd, reason=str(e)) from e

        if completed.returncode != 0:
            output = _decode_output(completed.stdout if merge_output else completed.stderr)
            logger.error(f"{' '.join(cmd[:2])} fail: {output.strip()}")
            raise ExternalToolError(cmd, returncode=completed.returncode, output=output)
        return completed

    def info(self, src: Union[str, Path]) -> str:
        """
        Container info dump for `src`.

        Raises:
            ExternalToolError: If the tool cannot be run or fails
        """
        completed = self._run([self.executable, "-info", str(src)])
        return _decode_output(completed.stdout)

    def extract(self, src: Union[str, Path], prefix: Union[str, Path]) -> List[Path]:
        """
        Extract the tile bitstreams of `src` to files starting with `prefix`.

        Returns:
            Tile files in natural name order

        Raises:
            ExternalToolError: If the tool cannot be run or fails
        """
        prefix = Path(prefix)
        cmd = [self.executable, str(src), str(prefix)]
        self._run(cmd, merge_output=True)
        files = self.list_outputs(prefix)
        if not files:
            raise ExternalToolError(cmd, returncode=0, reason=f"no tile files written for {prefix.name}")
        return files

    @staticmethod
    def list_outputs(prefix: Path) -> List[Path]:
        """Files written for `prefix`, in natural name order."""
        # The source name may contain glob metacharacters such as [ ]
        pattern = glob.escape(prefix.name) + "*"
        files = [p for p in prefix.parent.glob(pattern) if p.is_file()]
        return sorted(files, key=_natural_key)


class HeifContainer:
    """
    A HEIF file read through heif2hevc.

    Extracted tiles live in a private temporary directory that is removed
    by `cleanup()` (or on leaving the `with` block), whether or not the
    conversion succeeded.

    Attributes:
        path: Source HEIF file
        tool: heif2hevc wrapper
        workdir: Parent directory for the temporary tile directory
    """

    def __init__(
        self,
        path: Union[str, Path],
        tool: Optional[Heif2HevcTool] = None,
        workdir: Optional[Path] = None,
    ):
        self.path = Path(path)
        self.tool = tool or Heif2HevcTool()
        self.workdir = Path(workdir) if workdir else None
        self._tile_dir: Optional[Path] = None

    def __enter__(self) -> "HeifContainer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    def resolve(self) -> GridDescriptor:
        """Grid descriptor of the primary image."""
        return parse_grid_info(self.tool.info(self.path))

    def extract(self) -> List[Path]:
        """Extract the tiles to temporary files, row-major."""
        if self.workdir is not None:
            self.workdir.mkdir(parents=True, exist_ok=True)
        self._tile_dir = Path(tempfile.mkdtemp(prefix="heif2png-", dir=self.workdir))
        prefix = self._tile_dir / f"{self.path.stem}.{os.getpid()}.tmp"

        files = self.tool.extract(self.path, prefix)
        logger.debug(f"Extracted {len(files)} tiles from {self.path}")
        return files

    def cleanup(self) -> None:
        """Remove extracted tile files."""
        if self._tile_dir is None:
            return
        tile_dir, self._tile_dir = self._tile_dir, None
        try:
            shutil.rmtree(tile_dir)
        except OSError as e:
            logger.warning(f"Could not remove temporary tiles in {tile_dir}: {e}")


class InMemoryTileSource:
    """
    Grid descriptor and encoded tiles that are already available.

    Example:
        source = InMemoryTileSource(grid, [tile0_bytes, tile1_bytes])
        canvas = compositor.composite(source.resolve(), source.extract())
    """

    def __init__(self, grid: GridDescriptor, tiles: Sequence[TileSource]):
        self.grid = grid
        self.tiles = list(tiles)

    @classmethod
    def from_info(cls, info_text: str, tiles: Sequence[TileSource]) -> "InMemoryTileSource":
        """Build from an info dump and tiles."""
        return cls(parse_grid_info(info_text), tiles)

    def resolve(self) -> GridDescriptor:
        return self.grid

    def extract(self) -> List[TileSource]:
        return list(self.tiles)
