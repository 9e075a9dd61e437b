"""geometry.py.

Pure geometry shared by the decoder and the post-processing backends:
translating a requested size into a kdu_expand reduction factor, a pixel
region into kdu_expand's fractional region syntax, and computing the output
dimensions of the scale and rotate steps so both backends agree on them.
"""

from __future__ import annotations

import math

from .types import MAX_REDUCTION_FACTOR, Dimensions, RegionSpec, ScaleMode, SizeSpec


def get_reduction_factor(scale: float, max_factor: int = MAX_REDUCTION_FACTOR) -> int:
    """Return the largest f <= max_factor such that 2^-f >= scale.

    Halving is used instead of ``log2`` so that exact powers of two
    (0.5, 0.25, ...) map to their own factor.
    """
    factor = 0
    next_scale = 0.5
    while scale <= next_scale and factor < max_factor:
        next_scale /= 2.0
        factor += 1
    return factor


def reduction_scale(reduction_factor: int) -> float:
    """Linear scale applied by a native reduction of ``reduction_factor``."""
    return 1.0 / (2**reduction_factor)


def plan_reduction(size: SizeSpec, full_size: Dimensions, max_factor: int = MAX_REDUCTION_FACTOR) -> int:
    """Compute the native reduction factor for a requested size.

    Args:
        size: The requested output size.
        full_size: Dimensions of the area being decoded.
        max_factor: Upper bound on the returned factor.

    Returns:
        An integer in ``[0, max_factor]``. FULL and NON_ASPECT_FILL always
        give 0; anisotropic scaling has no power-of-two equivalent.
    """
    mode = size.scale_mode
    if mode is ScaleMode.ASPECT_FIT_WIDTH:
        scale = size.width / full_size.width
    elif mode is ScaleMode.ASPECT_FIT_HEIGHT:
        scale = size.height / full_size.height
    elif mode is ScaleMode.ASPECT_FIT_INSIDE:
        scale = min(size.width / full_size.width, size.height / full_size.height)
    elif mode is ScaleMode.PERCENT:
        scale = size.percent / 100.0
    else:
        return 0
    return get_reduction_factor(scale, max_factor)


def map_region(region: RegionSpec, full_size: Dimensions) -> str | None:
    """Express a region in kdu_expand's ``-region`` syntax.

    The decoder takes ``{top,left},{height,width}`` as fractions of the full
    image, row before column, each with seven decimal places.

    Returns:
        The region argument, or None for the full image.
    """
    if region.is_full:
        return None
    pixels = region.to_pixels(full_size)
    x = pixels.x / full_size.width
    y = pixels.y / full_size.height
    width = pixels.width / full_size.width
    height = pixels.height / full_size.height
    return "{%.7f,%.7f},{%.7f,%.7f}" % (y, x, height, width)


def scaled_size(size: SizeSpec, source: Dimensions, reduction_factor: int = 0) -> Dimensions:
    """Target dimensions of the post-processing scale step.

    ``source`` is the raster as delivered by the decoder, i.e. already
    reduced by ``reduction_factor``. Width/height targets are absolute, so only
    PERCENT needs to compensate for the native reduction.
    """
    mode = size.scale_mode
    if mode is ScaleMode.FULL:
        return source
    if mode is ScaleMode.ASPECT_FIT_WIDTH:
        width = size.width
        height = source.height * width / source.width
    elif mode is ScaleMode.ASPECT_FIT_HEIGHT:
        height = size.height
        width = source.width * height / source.height
    elif mode is ScaleMode.ASPECT_FIT_INSIDE:
        scale = min(size.width / source.width, size.height / source.height)
        width = source.width * scale
        height = source.height * scale
    elif mode is ScaleMode.NON_ASPECT_FILL:
        width, height = size.width, size.height
    else:
        scale = (size.percent / 100.0) / reduction_scale(reduction_factor)
        width = source.width * scale
        height = source.height * scale
    return Dimensions(width=max(1, round(width)), height=max(1, round(height)))


def rotated_size(source: Dimensions, degrees: float) -> Dimensions:
    """Bounding box of ``source`` rotated by ``degrees``."""
    radians = math.radians(degrees % 360.0)
    cos = abs(math.cos(radians))
    sin = abs(math.sin(radians))
    return Dimensions(
        width=max(1, round(source.width * cos + source.height * sin)),
        height=max(1, round(source.width * sin + source.height * cos)),
    )


def rotation_affine(
    source: Dimensions, degrees: float, pixel_centers: bool = False
) -> tuple[Dimensions, tuple[float, float, float, float, float, float]]:
    """Inverse affine map for a clockwise rotation about the image centre.

    Args:
        source: Dimensions of the image being rotated.
        degrees: Clockwise rotation.
        pixel_centers: True when pixel (0, 0) is addressed at its centre
            (scikit-image); False when at its corner (Pillow).

    Returns:
        The expanded output dimensions and coefficients ``(a, b, c, d, e, f)``
        mapping an output point (x, y) to the input point
        ``(a*x + b*y + c, d*x + e*y + f)``.
    """
    target = rotated_size(source, degrees)
    radians = math.radians(degrees % 360.0)
    cos = math.cos(radians)
    sin = math.sin(radians)

    offset = 0.5 if pixel_centers else 0.0
    cx_in = source.width / 2.0 - offset
    cy_in = source.height / 2.0 - offset
    cx_out = target.width / 2.0 - offset
    cy_out = target.height / 2.0 - offset

    a, b = cos, sin
    d, e = -sin, cos
    c = cx_in - a * cx_out - b * cy_out
    f = cy_in - d * cx_out - e * cy_out
    return target, (a, b, c, d, e, f)
