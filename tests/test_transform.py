"""
Tests for the overlay transform sequence and its rasterisation.
"""
import pytest
from PIL import Image

from token_composer.models.overlay import Bitmap, OverlaySpec, ScaleSpec
from token_composer.render.surface import Affine, Surface
from token_composer.render.transform import (
    draw_with_overlay,
    origin_offset,
    overlay_transform,
    scale_factors,
)


def _bitmap(size, color=(255, 0, 0, 255)):
    return Bitmap("test.png", Image.new("RGBA", size, color))


def _alpha_bbox(surface):
    return surface.image.getchannel("A").getbbox()


def test_empty_spec_is_pixel_identical_to_plain_draw():
    """No fields set: same pixels as compositing the bitmap at the origin."""
    src = Image.new("RGBA", (5, 4))
    src.putdata([(x * 40, y * 60, (x + y) * 20, 255 if x % 2 else 128)
                 for y in range(4) for x in range(5)])
    bitmap = Bitmap("test.png", src)

    surface = Surface(8, 6)
    surface.fill((255, 255, 255, 255))
    draw_with_overlay(surface, bitmap, OverlaySpec())

    expected = Image.new("RGBA", (8, 6), (255, 255, 255, 255))
    expected.alpha_composite(src)
    assert surface.image.tobytes() == expected.tobytes()


def test_empty_spec_gives_identity_matrix():
    assert overlay_transform(OverlaySpec(), 10, 10) == Affine()


def test_origin_offset_sums_parent_anchor_and_offset():
    spec = OverlaySpec.model_validate({
        "parent_anchor_point": {"x": 10, "y": 20},
        "offset": {"x": -3},
    })

    assert origin_offset(spec) == (7.0, 20.0)


def test_percent_scale_halves_footprint():
    spec = OverlaySpec(scale=ScaleSpec(x=50, y=50, unit="%"))

    assert overlay_transform(spec, 40, 20).apply(40, 20) == (20, 10)

    surface = Surface(100, 100, resample="nearest")
    draw_with_overlay(surface, _bitmap((40, 20)), spec)
    assert _alpha_bbox(surface) == (0, 0, 20, 10)


def test_px_scale_factor_is_target_over_dimension():
    assert scale_factors(ScaleSpec(x=20, unit="px"), 100, 50) == (0.2, 1.0)


def test_scale_defaults():
    assert scale_factors(None, 10, 10) == (1.0, 1.0)
    assert scale_factors(ScaleSpec(x=200), 10, 10) == (2.0, 1.0)
    assert scale_factors(ScaleSpec(y=30, unit="px"), 10, 60) == (1.0, 0.5)
    assert scale_factors(ScaleSpec(x=50, unit="em"), 10, 10) == (1.0, 1.0)


def test_rotation_turns_about_translated_origin():
    """rotation=90 with offset (10,10) pivots on (10,10), not the image centre."""
    spec = OverlaySpec.model_validate({"rotation": 90, "offset": {"x": 10, "y": 10}})
    matrix = overlay_transform(spec, 10, 10)

    assert matrix.apply(0, 0) == pytest.approx((10, 10))
    assert matrix.apply(10, 0) == pytest.approx((10, 20))
    assert matrix.apply(0, 10) == pytest.approx((0, 10))

    surface = Surface(30, 30, resample="nearest")
    draw_with_overlay(surface, _bitmap((10, 10)), spec)
    assert _alpha_bbox(surface) == (0, 10, 10, 20)


def test_anchor_point_lands_on_offset():
    spec = OverlaySpec.model_validate({
        "offset": {"x": 50, "y": 50},
        "anchor_point": {"x": 5, "y": 5},
        "scale": {"x": 200, "y": 200},
    })

    assert overlay_transform(spec, 10, 10).apply(5, 5) == (50, 50)

    surface = Surface(100, 100, resample="nearest")
    draw_with_overlay(surface, _bitmap((10, 10)), spec)
    assert _alpha_bbox(surface) == (40, 40, 60, 60)


def test_transform_order_is_translate_rotate_scale_anchor():
    spec = OverlaySpec.model_validate({
        "offset": {"x": 3, "y": 4},
        "rotation": 30,
        "scale": {"x": 150, "y": 50},
        "anchor_point": {"x": 2, "y": 1},
    })
    expected = (
        Affine.translation(3, 4)
        @ Affine.rotation(0.5235987755982988)
        @ Affine.scaling(1.5, 0.5)
        @ Affine.translation(-2, -1)
    )

    actual = overlay_transform(spec, 8, 8)

    assert tuple(actual) == pytest.approx(tuple(expected))


def test_opacity_blends_over_background():
    surface = Surface(2, 2)
    surface.fill((255, 255, 255, 255))

    draw_with_overlay(surface, _bitmap((2, 2)), OverlaySpec(opacity=0.5))

    r, g, b, a = surface.image.getpixel((0, 0))
    assert (r, a) == (255, 255)
    assert g == pytest.approx(127, abs=2)
    assert b == pytest.approx(127, abs=2)


def test_out_of_range_opacity_is_passed_through_and_ignored():
    surface = Surface(2, 2)
    surface.fill((255, 255, 255, 255))

    draw_with_overlay(surface, _bitmap((2, 2)), OverlaySpec(opacity=1.5))

    assert surface.image.getpixel((0, 0)) == (255, 0, 0, 255)


def test_layer_state_does_not_leak():
    surface = Surface(20, 20, resample="nearest")
    spec = OverlaySpec.model_validate({
        "opacity": 0.3,
        "rotation": 45,
        "offset": {"x": 10, "y": 10},
    })

    draw_with_overlay(surface, _bitmap((4, 4)), spec)

    assert surface.matrix == Affine()
    assert surface.global_alpha == 1.0
