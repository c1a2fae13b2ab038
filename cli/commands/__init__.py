"""
heif2png CLI Commands

This package contains the CLI subcommands for the heif2png tool.

Commands:
    convert - Assemble a tiled HEIF image and write PNG or JPEG
"""

from cli.commands import convert

__all__ = ["convert"]
