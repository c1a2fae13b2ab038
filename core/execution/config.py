"""
Configuration for Image Conversion.

Provides the settings that tune a conversion run: worker pool size,
output encoder options and the external tool locations.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from core.imaging.encoding import DEFAULT_JPEG_QUALITY, PngCompression

logger = logging.getLogger(__name__)

ENV_PREFIX = "HEIF2PNG_"


@dataclass
class ToolPaths:
    """
    Locations of the external tools.

    Attributes:
        ffmpeg: ffmpeg binary used to decode HEVC tiles
        heif2hevc: Tool that reports container info and extracts tiles
    """

    ffmpeg: str = "ffmpeg"
    heif2hevc: str = "heif2hevc"


@dataclass
class ConversionConfig:
    """
    Complete configuration for a conversion.

    Attributes:
        threads: Worker thread count for tile decoding
        png_compression: PNG compression effort
        jpeg_quality: JPEG quality (0 - worst, 100 - best)
        strict_grid: Validate tile count and tile sizes against the grid
        tools: External tool locations
        workdir: Directory for extracted tiles (default: a temporary directory)
    """

    threads: int = 1
    png_compression: PngCompression = PngCompression.DEFAULT
    jpeg_quality: int = DEFAULT_JPEG_QUALITY
    strict_grid: bool = False
    tools: ToolPaths = field(default_factory=ToolPaths)
    workdir: Optional[Path] = None

    def __post_init__(self):
        self.png_compression = PngCompression.parse(self.png_compression)
        if self.workdir is not None:
            self.workdir = Path(self.workdir)

    def validate(self) -> None:
        """
        Check value ranges.

        Raises:
            ValueError: If a setting is out of range
        """
        if self.threads < 1:
            raise ValueError(f"threads must be at least 1, got {self.threads}")
        if not 0 <= self.jpeg_quality <= 100:
            raise ValueError(f"jpeg_quality must be between 0 and 100, got {self.jpeg_quality}")

    def merged(self, **overrides: Any) -> "ConversionConfig":
        """
        Copy of this configuration with non-None overrides applied.

        Keys `ffmpeg` and `heif2hevc` update the tool paths.
        """
        data = self.to_dict()
        for key, value in overrides.items():
            if value is None:
                continue
            if key in ("ffmpeg", "heif2hevc"):
                data["tools"][key] = value
            else:
                data[key] = value
        return ConversionConfig.from_dict(data)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "ConversionConfig":
        """
        Create configuration from dictionary.

        Args:
            config_dict: Configuration dictionary

        Returns:
            ConversionConfig instance
        """
        tools_dict = dict(config_dict.get("tools") or {})
        workdir = config_dict.get("workdir")

        return cls(
            threads=int(config_dict.get("threads", 1)),
            png_compression=config_dict.get("png_compression", PngCompression.DEFAULT),
            jpeg_quality=int(config_dict.get("jpeg_quality", DEFAULT_JPEG_QUALITY)),
            strict_grid=bool(config_dict.get("strict_grid", False)),
            tools=ToolPaths(**tools_dict),
            workdir=Path(workdir).expanduser() if workdir else None,
        )

    @classmethod
    def from_yaml(cls, yaml_path: Union[str, Path]) -> "ConversionConfig":
        """
        Load configuration from YAML file.

        A top-level `convert` section is used when present.

        Args:
            yaml_path: Path to YAML configuration file

        Returns:
            ConversionConfig instance
        """
        path = Path(yaml_path).expanduser()
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        with open(path, "r") as f:
            config_dict = yaml.safe_load(f) or {}

        if "convert" in config_dict:
            config_dict = config_dict["convert"] or {}

        return cls.from_dict(config_dict)

    @classmethod
    def from_environment(cls, base: Optional["ConversionConfig"] = None) -> "ConversionConfig":
        """
        Apply environment variable overrides.

        Environment variables override values of `base` (or the defaults):
        - HEIF2PNG_THREADS
        - HEIF2PNG_PNG_COMPRESSION
        - HEIF2PNG_JPEG_QUALITY
        - HEIF2PNG_FFMPEG
        - HEIF2PNG_HEIF2HEVC

        Returns:
            ConversionConfig instance
        """
        config = base.merged() if base is not None else cls()

        if os.environ.get(f"{ENV_PREFIX}THREADS"):
            try:
                config.threads = int(os.environ[f"{ENV_PREFIX}THREADS"])
            except ValueError:
                logger.warning(f"Ignoring invalid {ENV_PREFIX}THREADS")

        if os.environ.get(f"{ENV_PREFIX}PNG_COMPRESSION"):
            try:
                config.png_compression = PngCompression.parse(os.environ[f"{ENV_PREFIX}PNG_COMPRESSION"])
            except ValueError:
                logger.warning(f"Ignoring invalid {ENV_PREFIX}PNG_COMPRESSION")

        if os.environ.get(f"{ENV_PREFIX}JPEG_QUALITY"):
            try:
                config.jpeg_quality = int(os.environ[f"{ENV_PREFIX}JPEG_QUALITY"])
            except ValueError:
                logger.warning(f"Ignoring invalid {ENV_PREFIX}JPEG_QUALITY")

        if os.environ.get(f"{ENV_PREFIX}FFMPEG"):
            config.tools.ffmpeg = os.environ[f"{ENV_PREFIX}FFMPEG"]

        if os.environ.get(f"{ENV_PREFIX}HEIF2HEVC"):
            config.tools.heif2hevc = os.environ[f"{ENV_PREFIX}HEIF2HEVC"]

        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "threads": self.threads,
            "png_compression": self.png_compression.name.lower(),
            "jpeg_quality": self.jpeg_quality,
            "strict_grid": self.strict_grid,
            "tools": {
                "ffmpeg": self.tools.ffmpeg,
                "heif2hevc": self.tools.heif2hevc,
            },
            "workdir": str(self.workdir) if self.workdir else None,
        }
