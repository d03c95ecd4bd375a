"""
Composition pipeline: token tree -> layers -> bitmaps -> one PNG.

Environment variables:
- COMPOSER_CANVAS_POLICY: "first_sorted" (default) sizes the canvas from the
  first layer in paint order; "root" sizes it from the first extracted layer
- COMPOSER_ENFORCE_CORS: "true" makes export fail when any image host did
  not allow anonymous cross-origin use (default "false")
"""
from __future__ import annotations

import os
import logging
import time

from token_composer.errors import EmptyCompositionError
from token_composer.models.overlay import ImageLayer, LoadedLayer, OverlaySpec
from token_composer.render.image_loader import load_images
from token_composer.render.overlay_extract import extract_layers
from token_composer.render.surface import Surface
from token_composer.render.token_fetch import fetch_token_tree
from token_composer.render.transform import draw_with_overlay
from token_composer.utils.token_param import parse_token_param

CANVAS_FIRST_SORTED = "first_sorted"
CANVAS_ROOT = "root"
CANVAS_POLICIES = (CANVAS_FIRST_SORTED, CANVAS_ROOT)

CANVAS_POLICY = os.getenv("COMPOSER_CANVAS_POLICY", CANVAS_FIRST_SORTED)
ENFORCE_CORS = os.getenv("COMPOSER_ENFORCE_CORS", "false").lower().strip() in {
    "1", "true", "yes", "y", "on"}

OUTPUT_FILENAME = "composed-image.png"
BACKGROUND = (255, 255, 255, 255)

logger = logging.getLogger(__name__)


class Composition:
    """Finished surface plus the layers drawn on it, in paint order."""

    filename = OUTPUT_FILENAME
    media_type = "image/png"

    def __init__(self, surface: Surface, layers: list[LoadedLayer],
                 canvas_policy: str, enforce_cors: bool = False):
        self.surface = surface
        self.layers = layers
        self.canvas_policy = canvas_policy
        self.enforce_cors = enforce_cors

    @property
    def size(self) -> tuple[int, int]:
        return self.surface.size

    def to_png(self) -> bytes:
        return self.surface.to_png(enforce_cors=self.enforce_cors)

    def save(self, path) -> None:
        data = self.to_png()
        with open(path, "wb") as f:
            f.write(data)


def sort_layers(layers):
    """Paint order: layer, then order_in_layer, then extraction index."""
    return sorted(layers, key=lambda item: item.sort_key)


def _canvas_source(ordered: list[LoadedLayer], policy: str) -> LoadedLayer:
    if policy == CANVAS_ROOT:
        return min(ordered, key=lambda item: item.layer.index)
    return ordered[0]


def compose_layers(
    layers: list[ImageLayer],
    *,
    loader=load_images,
    canvas_policy: str | None = None,
    enforce_cors: bool | None = None,
    resample: str | None = None,
) -> Composition:
    policy = canvas_policy or CANVAS_POLICY
    if policy not in CANVAS_POLICIES:
        raise ValueError(f"Unknown canvas policy: {policy}")

    if not layers:
        raise EmptyCompositionError("No drawable images in token data")

    start = time.monotonic()
    bitmaps = loader([layer.image_ref for layer in layers])
    if len(bitmaps) != len(layers):
        raise RuntimeError(
            f"Loader returned {len(bitmaps)} bitmaps for {len(layers)} layers")

    loaded = [LoadedLayer(layer, bitmap) for layer, bitmap in zip(layers, bitmaps)]
    ordered = sort_layers(loaded)

    base = _canvas_source(ordered, policy)
    surface = Surface(base.bitmap.width, base.bitmap.height, resample=resample)
    surface.fill(BACKGROUND)

    for item in ordered:
        draw_with_overlay(surface, item.bitmap, item.layer.spec)

    logger.info(
        "✅ Composed %s layers on %sx%s canvas (%s) in %.2fs",
        len(ordered), surface.width, surface.height, policy,
        time.monotonic() - start,
    )
    return Composition(
        surface,
        ordered,
        canvas_policy=policy,
        enforce_cors=ENFORCE_CORS if enforce_cors is None else enforce_cors,
    )


def compose_tree(document: dict, **kwargs) -> Composition:
    return compose_layers(extract_layers(document), **kwargs)


def compose_urls(urls: list[str], **kwargs) -> Composition:
    """Compose explicit URLs, in list order, with no transforms."""
    layers = [
        ImageLayer(image_ref=url, spec=OverlaySpec(), index=i)
        for i, url in enumerate(urls)
    ]
    return compose_layers(layers, **kwargs)


def compose_token(collection_id: str, token_id: str, *, session=None, **kwargs) -> Composition:
    document = fetch_token_tree(collection_id, token_id, session=session)
    return compose_tree(document, **kwargs)


def compose_token_param(token: str | None, **kwargs) -> Composition:
    collection_id, token_id = parse_token_param(token)
    return compose_token(collection_id, token_id, **kwargs)
