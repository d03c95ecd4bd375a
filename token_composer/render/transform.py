from __future__ import annotations

import math

from token_composer.models.overlay import Bitmap, OverlaySpec, ScaleSpec
from token_composer.render.surface import Affine, Surface

PERCENT = "%"
PIXELS = "px"


def origin_offset(spec: OverlaySpec) -> tuple[float, float]:
    """parent_anchor_point + offset, each defaulting to (0, 0)."""
    x, y = 0.0, 0.0
    for point in (spec.parent_anchor_point, spec.offset):
        if point is not None:
            px, py = point.resolved()
            x += px
            y += py
    return x, y


def scale_factors(scale: ScaleSpec | None, width: int, height: int) -> tuple[float, float]:
    """
    Per-axis scale factors.

    ``%``: value / 100, a missing value is 100. ``px``: value / dimension, a
    missing value is the dimension itself. Unknown units leave the image
    unscaled.
    """
    if scale is None:
        return 1.0, 1.0

    unit = scale.unit or PERCENT
    if unit == PERCENT:
        sx = (scale.x if scale.x is not None else 100.0) / 100.0
        sy = (scale.y if scale.y is not None else 100.0) / 100.0
        return sx, sy
    if unit == PIXELS:
        sx = (scale.x if scale.x is not None else width) / width
        sy = (scale.y if scale.y is not None else height) / height
        return sx, sy
    return 1.0, 1.0


def overlay_transform(spec: OverlaySpec, width: int, height: int) -> Affine:
    """T(offset) · R(rotation) · S(scale) · T(-anchor), in that fixed order."""
    matrix = Affine.translation(*origin_offset(spec))

    if spec.rotation:
        matrix = matrix @ Affine.rotation(math.radians(spec.rotation))

    if spec.scale is not None:
        matrix = matrix @ Affine.scaling(*scale_factors(spec.scale, width, height))

    if spec.anchor_point is not None:
        ax, ay = spec.anchor_point.resolved()
        matrix = matrix @ Affine.translation(-ax, -ay)

    return matrix


def draw_with_overlay(surface: Surface, bitmap: Bitmap, spec: OverlaySpec) -> None:
    """Draw one layer; the surface's graphics state is restored afterwards."""
    with surface.saved_state():
        if spec.opacity is not None:
            surface.global_alpha = spec.opacity
        surface.transform(overlay_transform(spec, bitmap.width, bitmap.height))
        surface.draw_bitmap(bitmap)
