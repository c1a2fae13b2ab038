"""
heif2png CLI - Main Entry Point

Command-line interface for assembling tiled HEIF images into PNG/JPEG.
Global options (verbosity, config file) live on the group; subcommands
receive them through a shared context object.
"""

import functools
import logging
import os
import platform
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import click

from cli import __version__
from core.execution.config import ConversionConfig

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("heif2png")

DEFAULT_CONFIG_PATHS = [
    Path.cwd() / ".heif2png.yaml",
    Path.cwd() / "heif2png.yaml",
    Path.home() / ".heif2png" / "config.yaml",
]

HELP_EXAMPLES = [
    "# Convert with 4 decoding threads",
    "heif2png convert --threads 4 photo.heic photo.png",
    "",
    "# JPEG output at quality 85",
    "heif2png convert --jpeg-qual 85 photo.heic photo.jpg",
    "",
    "# Smallest PNG, custom tool locations",
    "heif2png convert --png-compr 3 --ffmpeg /opt/ffmpeg/bin/ffmpeg photo.heic photo.png",
]

REPORTED_PACKAGES = ("numpy", "Pillow", "click", "PyYAML")


@functools.lru_cache(maxsize=None)
def build_version() -> str:
    """
    Version banner, computed once per process.

    Build time and commit are injected at packaging time through the
    HEIF2PNG_BUILD_TIME and HEIF2PNG_BUILD_COMMIT environment variables.
    """
    build_time = os.environ.get("HEIF2PNG_BUILD_TIME", "unknown time")
    commit = os.environ.get("HEIF2PNG_BUILD_COMMIT", "unknown commit")
    uname = f"{platform.node()} {platform.machine()}".strip()
    return (
        f"heif2png {__version__} built at {build_time} by Python "
        f"{platform.python_version()} after {commit} on {uname}"
    )


def load_config(config_path: Optional[Path] = None) -> ConversionConfig:
    """
    Resolve the effective configuration.

    The first readable YAML file wins (the explicit path, or the default
    locations in order); environment variables are applied on top.
    """
    candidates = [config_path] if config_path else DEFAULT_CONFIG_PATHS
    config = ConversionConfig()

    for path in candidates:
        if not path.exists():
            continue
        try:
            config = ConversionConfig.from_yaml(path)
        except Exception as e:
            logger.warning(f"Skipping config {path}: {e}")
            continue
        logger.debug(f"Using config {path}")
        break

    return ConversionConfig.from_environment(config)


class Heif2PngContext:
    """Global options shared by all subcommands."""

    LOG_LEVELS = {
        (False, False): logging.INFO,
        (True, False): logging.DEBUG,
        (False, True): logging.WARNING,
    }

    def __init__(self, verbose: bool = False, quiet: bool = False, config_path: Optional[Path] = None):
        self.verbose = verbose
        self.quiet = quiet
        self.config_path = config_path
        self._config: Optional[ConversionConfig] = None

        level = self.LOG_LEVELS[(verbose, quiet)]
        logging.getLogger().setLevel(level)
        logger.setLevel(level)

    @property
    def config(self) -> ConversionConfig:
        """Configuration, loaded on first use."""
        if self._config is None:
            self._config = load_config(self.config_path)
        return self._config


class Heif2PngGroup(click.Group):
    """Click group whose help ends with usage examples."""

    def format_help(self, ctx, formatter):
        formatter.write_paragraph()
        formatter.write_text("heif2png - assemble tiled HEIF images into PNG or JPEG")
        super().format_help(ctx, formatter)

        formatter.write_paragraph()
        formatter.write_text("Examples:")
        with formatter.indentation():
            for line in HELP_EXAMPLES:
                formatter.write_text(line)


pass_context = click.make_pass_decorator(Heif2PngContext, ensure=True)


def _print_version(ctx, param, value):
    if not value or ctx.resilient_parsing:
        return
    click.echo(build_version(), err=True)
    ctx.exit()


@click.group(cls=Heif2PngGroup)
@click.option("-v", "--verbose", is_flag=True, help="Debug logging.")
@click.option("-q", "--quiet", is_flag=True, help="Only log warnings and errors.")
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="YAML configuration file.",
)
@click.option(
    "--version",
    is_flag=True,
    expose_value=False,
    is_eager=True,
    callback=_print_version,
    help="Show version and build information.",
)
@click.pass_context
def app(ctx, verbose: bool, quiet: bool, config_path: Optional[Path]):
    """
    heif2png - Tiled HEIF to PNG/JPEG converter

    Decodes the tiles of a HEIF image in parallel, stitches them into
    one picture, applies the stored rotation and writes PNG or JPEG.
    """
    if verbose and quiet:
        raise click.UsageError("Cannot use both --verbose and --quiet")
    ctx.obj = Heif2PngContext(verbose=verbose, quiet=quiet, config_path=config_path)


def _package_versions() -> List[Tuple[str, str]]:
    import importlib.metadata

    versions = []
    for pkg in REPORTED_PACKAGES:
        try:
            versions.append((pkg, importlib.metadata.version(pkg)))
        except importlib.metadata.PackageNotFoundError:
            versions.append((pkg, "not installed"))
    return versions


@app.command("info")
@pass_context
def info(ctx):
    """Show build, dependency, tool and configuration details."""
    import shutil

    config = ctx.config
    sections = [
        ("Build", [("version", build_version()), ("platform", f"{platform.system()} {platform.release()}")]),
        ("Packages", _package_versions()),
        (
            "External Tools",
            [
                (name, shutil.which(path) or f"{path} (not found)")
                for name, path in (("ffmpeg", config.tools.ffmpeg), ("heif2hevc", config.tools.heif2hevc))
            ],
        ),
        (
            "Configuration",
            [
                ("Threads", config.threads),
                ("PNG compression", config.png_compression.name.lower()),
                ("JPEG quality", config.jpeg_quality),
                ("Strict grid", config.strict_grid),
            ],
        ),
    ]

    for title, rows in sections:
        click.echo(f"\n--- {title} ---")
        for key, value in rows:
            click.echo(f"  {key}: {value}")
    click.echo()


def _register_commands():
    from cli.commands import convert

    app.add_command(convert.convert)


_register_commands()


def main():
    """Console script entry point."""
    try:
        app()
    except Exception as e:
        logger.error(f"Error: {e}")
        # -v lowers the root logger to DEBUG
        if logging.getLogger().isEnabledFor(logging.DEBUG):
            logger.exception("Traceback")
        sys.exit(1)


if __name__ == "__main__":
    main()
