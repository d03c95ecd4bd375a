from __future__ import annotations

import os
import logging

from pydantic import ValidationError

from token_composer.errors import DecodeError, MalformedTreeError
from token_composer.models.overlay import ImageLayer, OverlaySpec, TokenNode

MAX_TREE_DEPTH = int(os.getenv("COMPOSER_MAX_TREE_DEPTH", "64"))

logger = logging.getLogger(__name__)


def _node_layer(node: TokenNode, index: int) -> ImageLayer | None:
    custom_self = node.customizing.self_image if node.customizing else None

    if custom_self is not None:
        spec = custom_self.image_overlay_specs or OverlaySpec()
        return ImageLayer(
            image_ref=custom_self.url,
            spec=spec,
            layer=spec.layer if spec.layer is not None else 0,
            order_in_layer=(
                spec.order_in_layer if spec.order_in_layer is not None else 0),
            index=index,
        )

    if node.image:
        return ImageLayer(image_ref=node.image, spec=OverlaySpec(), index=index)

    return None


def _validate_node(raw, path: str) -> TokenNode:
    if not isinstance(raw, dict):
        raise DecodeError(
            f"Token node at {path} must be an object, got {type(raw).__name__}")
    try:
        return TokenNode.model_validate(raw)
    except ValidationError as exc:
        raise DecodeError(f"Invalid token node at {path}: {exc}") from exc


def extract_layers(document: dict, max_depth: int | None = None) -> list[ImageLayer]:
    """
    Flatten a token tree into image layers in document order.

    Depth-first, pre-order: a node's own image comes before its children's,
    children in array order. ``customizing.self`` wins over ``image``; a
    node with neither contributes nothing but its children are still walked.
    """
    limit = MAX_TREE_DEPTH if max_depth is None else max_depth
    layers: list[ImageLayer] = []

    # (raw node, depth, path); children pushed reversed to pop in order
    stack = [(document, 0, "$")]
    while stack:
        raw, depth, path = stack.pop()
        if depth > limit:
            raise MalformedTreeError(
                f"Token tree deeper than {limit} levels at {path}")

        node = _validate_node(raw, path)
        layer = _node_layer(node, len(layers))
        if layer is not None:
            layers.append(layer)

        for i in range(len(node.children) - 1, -1, -1):
            stack.append((node.children[i], depth + 1, f"{path}.children[{i}]"))

    logger.info("🧩 Extracted %s image layers", len(layers))
    return layers
