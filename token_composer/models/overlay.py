from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional

from PIL import Image
from pydantic import BaseModel, ConfigDict, Field, field_validator


class Point(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    x: Optional[float] = None
    y: Optional[float] = None

    def resolved(self) -> tuple[float, float]:
        return (self.x or 0.0, self.y or 0.0)


class ScaleSpec(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    x: Optional[float] = None
    y: Optional[float] = None
    unit: Optional[str] = None  # "%" when absent


class OverlaySpec(BaseModel):
    """Per-layer transform and blend metadata. Absent fields are no-ops."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    opacity: Optional[float] = None
    parent_anchor_point: Optional[Point] = None
    offset: Optional[Point] = None
    anchor_point: Optional[Point] = None
    rotation: Optional[float] = None
    scale: Optional[ScaleSpec] = None
    layer: Optional[int] = None
    order_in_layer: Optional[int] = None


class SelfImage(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    url: str
    image_overlay_specs: Optional[OverlaySpec] = None


class Customizing(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    self_image: Optional[SelfImage] = Field(default=None, alias="self")


class TokenNode(BaseModel):
    """
    One node of the token-data document.

    ``children`` stays as raw JSON objects; the extractor validates each
    child when it visits it, so building a node never recurses.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    image: Optional[str] = None
    customizing: Optional[Customizing] = None
    children: List[Any] = Field(default_factory=list)

    @field_validator("children", mode="before")
    @classmethod
    def _children_list(cls, value):
        if not isinstance(value, list):
            return []
        return value


@dataclass(frozen=True)
class ImageLayer:
    image_ref: str
    spec: OverlaySpec
    layer: int = 0
    order_in_layer: int = 0
    index: int = 0

    @property
    def sort_key(self) -> tuple[int, int, int]:
        return (self.layer, self.order_in_layer, self.index)

    def describe(self) -> dict:
        return {
            "index": self.index,
            "url": self.image_ref,
            "layer": self.layer,
            "order_in_layer": self.order_in_layer,
            "overlay_specs": self.spec.model_dump(exclude_none=True),
        }


class Bitmap:
    """Decoded RGBA image plus where it came from."""

    def __init__(self, url: str, image: Image.Image, cors_allowed: bool = True):
        if image.mode != "RGBA":
            image = image.convert("RGBA")
        self.url = url
        self.image = image
        self.cors_allowed = cors_allowed

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    @property
    def size(self) -> tuple[int, int]:
        return self.image.width, self.image.height


@dataclass(frozen=True)
class LoadedLayer:
    layer: ImageLayer
    bitmap: Bitmap

    @property
    def sort_key(self) -> tuple[int, int, int]:
        return self.layer.sort_key
