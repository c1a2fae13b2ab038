"""
heif2png CLI Package

Command-line interface for assembling tiled HEIF images.

Usage:
    heif2png convert --threads 4 photo.heic photo.png
    heif2png convert --jpeg-qual 85 photo.heic photo.jpg
    heif2png info
"""

__version__ = "0.1.0"

from cli.main import app

__all__ = ["app", "__version__"]
