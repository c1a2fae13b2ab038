"""
Canvas rotation.

Angles are counter-clockwise degrees, as recorded in the container.
The output canvas grows to hold the whole rotated image; corners that
are not covered by the source are transparent.
"""

import logging

import numpy as np
from PIL import Image

from core.execution.compositor import Canvas

logger = logging.getLogger(__name__)

TRANSPARENT = (0, 0, 0, 0)


def rotate_canvas(canvas: Canvas, degrees: int) -> Canvas:
    """
    Rotate a canvas counter-clockwise.

    Multiples of 90 degrees are exact pixel transpositions; any other
    angle is resampled bilinearly with transparent fill.

    Args:
        canvas: Assembled canvas
        degrees: Counter-clockwise angle

    Returns:
        The same canvas object when the angle is a multiple of 360,
        otherwise a new canvas
    """
    if degrees % 360 == 0:
        return canvas

    quarters, remainder = divmod(degrees, 90)
    if remainder == 0:
        logger.debug(f"Rotating {canvas.width}x{canvas.height} canvas by {degrees} degrees")
        return Canvas(np.ascontiguousarray(np.rot90(canvas.pixels, k=quarters % 4)))

    logger.debug(f"Resampling {canvas.width}x{canvas.height} canvas for {degrees} degree rotation")
    rotated = canvas.to_image().rotate(
        degrees,
        resample=Image.Resampling.BILINEAR,
        expand=True,
        fillcolor=TRANSPARENT,
    )
    return Canvas.from_image(rotated)
