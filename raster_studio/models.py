"""
Data models and crop-geometry utilities.

``CropRect`` and ``ViewState`` are the core data structures shared across
the UI, the overlay engines and the export path.  Crop rectangles are kept
in original-pixel space as floats while editing and are rounded only when
an export actually slices pixels.  The helper functions handle aspect-ratio
fitting and boundary clamping.
"""

import uuid
from dataclasses import dataclass, field
from pathlib import Path

from raster_studio.config import DEFAULT_CROP_INSET, MIN_CROP_SIZE


# =============================================================================
# Data classes
# =============================================================================
@dataclass
class Rect:
    """Axis-aligned rectangle (x, y, w, h) in whichever space the caller uses."""
    x: float = 0.0
    y: float = 0.0
    w: float = 0.0
    h: float = 0.0

    @property
    def right(self) -> float:
        return self.x + self.w

    @property
    def bottom(self) -> float:
        return self.y + self.h

    def contains(self, px: float, py: float) -> bool:
        return self.x <= px <= self.right and self.y <= py <= self.bottom


@dataclass
class CropRect(Rect):
    """Crop rectangle in original image coordinates."""


@dataclass(frozen=True)
class ViewState:
    """Read-only snapshot of how one image is currently laid out on screen."""
    container_width: float
    container_height: float
    rotation: int
    image_width: int
    image_height: int
    effective_width: int
    effective_height: int
    box_x: float
    box_y: float
    box_w: float
    box_h: float
    flip_x: bool = False
    flip_y: bool = False

    @property
    def scale(self) -> float:
        """Screen pixels per effective image pixel."""
        if self.effective_width <= 0:
            return 0.0
        return self.box_w / self.effective_width

    def same_layout(self, other: "ViewState | None") -> bool:
        """True when box, rotation and flips are unchanged."""
        if other is None:
            return False
        return (
            self.box_x == other.box_x
            and self.box_y == other.box_y
            and self.box_w == other.box_w
            and self.box_h == other.box_h
            and self.rotation == other.rotation
            and self.flip_x == other.flip_x
            and self.flip_y == other.flip_y
            and self.container_width == other.container_width
            and self.container_height == other.container_height
        )


@dataclass
class ImageItem:
    """One imported image.  ``id`` keys every per-image cache."""
    path: Path = None
    width: int = 0
    height: int = 0
    format: str = ""
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def name(self) -> str:
        return self.path.name if self.path else ""

    @property
    def stem(self) -> str:
        return self.path.stem if self.path else "image"


# =============================================================================
# Crop math utilities
# =============================================================================
def normalize_rect(rect: Rect) -> Rect:
    """Return an equivalent rect with non-negative width and height."""
    x1 = min(rect.x, rect.x + rect.w)
    y1 = min(rect.y, rect.y + rect.h)
    x2 = max(rect.x, rect.x + rect.w)
    y2 = max(rect.y, rect.y + rect.h)
    return type(rect)(x1, y1, x2 - x1, y2 - y1)


def clamp_crop(crop: Rect, img_w: float, img_h: float, min_size: float = MIN_CROP_SIZE) -> CropRect:
    """Clamp a crop rectangle to image bounds and to the minimum size."""
    crop = normalize_rect(crop)
    w = max(min(min_size, img_w), min(crop.w, img_w))
    h = max(min(min_size, img_h), min(crop.h, img_h))
    x = max(0.0, min(crop.x, img_w - w))
    y = max(0.0, min(crop.y, img_h - h))
    return CropRect(x, y, w, h)


def default_crop(img_w: int, img_h: int) -> CropRect:
    """Centered rect covering 80% of each dimension."""
    w = max(MIN_CROP_SIZE * 2, round(img_w * (1 - DEFAULT_CROP_INSET * 2)))
    h = max(MIN_CROP_SIZE * 2, round(img_h * (1 - DEFAULT_CROP_INSET * 2)))
    x = round((img_w - w) / 2)
    y = round((img_h - h) / 2)
    return clamp_crop(CropRect(x, y, w, h), img_w, img_h)


def fit_rect_to_ratio(rect: Rect, ratio: float, img_w: int, img_h: int) -> CropRect:
    """Shrink *rect* around its centre until ``w / h == ratio``."""
    cx = rect.x + rect.w / 2
    cy = rect.y + rect.h / 2
    w, h = rect.w, rect.h
    if h > 0 and w / h > ratio:
        w = h * ratio
    else:
        h = w / ratio
    return clamp_crop(CropRect(cx - w / 2, cy - h / 2, w, h), img_w, img_h)
