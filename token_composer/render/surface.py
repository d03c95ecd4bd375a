"""
Owned raster surface with 2D-canvas style graphics state.

Environment variables:
- COMPOSER_RESAMPLE: "nearest", "bilinear" or "bicubic" (default)
"""
from __future__ import annotations

import os
import math
import logging
from contextlib import contextmanager
from io import BytesIO
from typing import NamedTuple

from PIL import Image

from token_composer.errors import ExportBlockedError
from token_composer.models.overlay import Bitmap

RESAMPLE_FILTERS = {
    "nearest": Image.Resampling.NEAREST,
    "bilinear": Image.Resampling.BILINEAR,
    "bicubic": Image.Resampling.BICUBIC,
}
DEFAULT_RESAMPLE = os.getenv("COMPOSER_RESAMPLE", "bicubic").lower()

logger = logging.getLogger(__name__)


class Affine(NamedTuple):
    """
    2D affine matrix in canvas order::

        | a c e |
        | b d f |
        | 0 0 1 |
    """

    a: float = 1.0
    b: float = 0.0
    c: float = 0.0
    d: float = 1.0
    e: float = 0.0
    f: float = 0.0

    def __matmul__(self, other: "Affine") -> "Affine":
        return Affine(
            self.a * other.a + self.c * other.b,
            self.b * other.a + self.d * other.b,
            self.a * other.c + self.c * other.d,
            self.b * other.c + self.d * other.d,
            self.a * other.e + self.c * other.f + self.e,
            self.b * other.e + self.d * other.f + self.f,
        )

    @classmethod
    def translation(cls, tx: float, ty: float) -> "Affine":
        return cls(e=tx, f=ty)

    @classmethod
    def rotation(cls, radians: float) -> "Affine":
        cos, sin = math.cos(radians), math.sin(radians)
        return cls(cos, sin, -sin, cos)

    @classmethod
    def scaling(cls, sx: float, sy: float) -> "Affine":
        return cls(a=sx, d=sy)

    @property
    def determinant(self) -> float:
        return self.a * self.d - self.b * self.c

    def apply(self, x: float, y: float) -> tuple[float, float]:
        return (self.a * x + self.c * y + self.e,
                self.b * x + self.d * y + self.f)

    def inverse(self) -> "Affine":
        det = self.determinant
        if det == 0:
            raise ValueError("Affine matrix is singular")
        return Affine(
            self.d / det,
            -self.b / det,
            -self.c / det,
            self.a / det,
            (self.c * self.f - self.d * self.e) / det,
            (self.b * self.e - self.a * self.f) / det,
        )

    def integer_translation(self) -> tuple[int, int] | None:
        if (self.a, self.b, self.c, self.d) != (1.0, 0.0, 0.0, 1.0):
            return None
        if not (float(self.e).is_integer() and float(self.f).is_integer()):
            return None
        return int(self.e), int(self.f)


class _State(NamedTuple):
    matrix: Affine
    global_alpha: float


class Surface:
    """
    Mutable RGBA buffer owned by one composition.

    Drawing goes through ``matrix`` and ``global_alpha``; ``save()`` and
    ``restore()`` bracket changes so one layer's state never reaches the
    next.
    """

    def __init__(self, width: int, height: int, resample: str | None = None):
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid surface size {width}x{height}")
        name = (resample or DEFAULT_RESAMPLE).lower()
        if name not in RESAMPLE_FILTERS:
            raise ValueError(f"Unknown resample filter: {name}")

        self.image = Image.new("RGBA", (width, height), (0, 0, 0, 0))
        self.resample = RESAMPLE_FILTERS[name]
        self.matrix = Affine()
        self._global_alpha = 1.0
        self._stack: list[_State] = []
        self.tainted_by: list[str] = []

    @property
    def size(self) -> tuple[int, int]:
        return self.image.size

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    # graphics state

    @property
    def global_alpha(self) -> float:
        return self._global_alpha

    @global_alpha.setter
    def global_alpha(self, value: float) -> None:
        # Same as a 2D canvas: out-of-range values are ignored, not clamped
        try:
            value = float(value)
        except (TypeError, ValueError):
            return
        if not math.isfinite(value) or value < 0.0 or value > 1.0:
            logger.debug("Ignoring global alpha %r", value)
            return
        self._global_alpha = value

    def save(self) -> None:
        self._stack.append(_State(self.matrix, self._global_alpha))

    def restore(self) -> None:
        if not self._stack:
            return
        state = self._stack.pop()
        self.matrix = state.matrix
        self._global_alpha = state.global_alpha

    @contextmanager
    def saved_state(self):
        self.save()
        try:
            yield self
        finally:
            self.restore()

    def transform(self, matrix: Affine) -> None:
        self.matrix = self.matrix @ matrix

    def translate(self, tx: float, ty: float) -> None:
        self.transform(Affine.translation(tx, ty))

    def rotate(self, radians: float) -> None:
        self.transform(Affine.rotation(radians))

    def scale(self, sx: float, sy: float) -> None:
        self.transform(Affine.scaling(sx, sy))

    # drawing

    def fill(self, color=(255, 255, 255, 255)) -> None:
        self.image.paste(color, (0, 0, self.width, self.height))

    def draw_bitmap(self, bitmap: Bitmap) -> None:
        """Draw ``bitmap`` at local (0, 0) through the current state."""
        if not bitmap.cors_allowed:
            self.tainted_by.append(bitmap.url)

        src = bitmap.image
        alpha = self._global_alpha
        if alpha <= 0.0 or self.matrix.determinant == 0:
            return

        offset = self.matrix.integer_translation()
        if offset is not None:
            self._paste(_with_alpha(src, alpha), offset)
            return

        inv = self.matrix.inverse()
        premultiplied = src.convert("RGBa")
        warped = premultiplied.transform(
            self.size,
            Image.Transform.AFFINE,
            (inv.a, inv.c, inv.e, inv.b, inv.d, inv.f),
            resample=self.resample,
            fillcolor=(0, 0, 0, 0),
        ).convert("RGBA")
        self.image.alpha_composite(_with_alpha(warped, alpha))

    def _paste(self, src: Image.Image, offset: tuple[int, int]) -> None:
        ox, oy = offset
        left, top = max(0, -ox), max(0, -oy)
        right = min(src.width, self.width - ox)
        bottom = min(src.height, self.height - oy)
        if right <= left or bottom <= top:
            return
        self.image.alpha_composite(
            src, dest=(ox + left, oy + top), source=(left, top, right, bottom))

    # export

    def to_png(self, enforce_cors: bool = False) -> bytes:
        if enforce_cors and self.tainted_by:
            raise ExportBlockedError(list(self.tainted_by))
        buf = BytesIO()
        self.image.save(buf, "PNG")
        return buf.getvalue()


def _with_alpha(img: Image.Image, alpha: float) -> Image.Image:
    if alpha >= 1.0:
        return img
    out = img.copy()
    out.putalpha(img.getchannel("A").point(lambda v: round(v * alpha)))
    return out
