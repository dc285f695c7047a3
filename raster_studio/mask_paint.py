"""
Privacy masking: paint an alpha mask, show an effect through it.

Two layers are kept apart:

* the **mask**: a single-channel uint8 buffer at the image's native size,
  painted with a round brush or committed rectangles
* the **effect**: a full-size mosaic or blurred copy of the base image,
  rebuilt only when the effect parameters change

The result is ``effect`` with its alpha multiplied by the mask, composited
over the untouched base.  Only the mask (plus the parameters) is cached
per image, so the effect can be changed after painting, and a mask can be
resampled onto another image when broadcast with "apply to all".

This module is Qt-free and safe for worker import.
"""

import logging
import math
from dataclasses import dataclass, field

import numpy as np
from PIL import Image, ImageChops, ImageDraw, ImageFilter

from raster_studio.config import (
    BLUR_RADIUS_DEFAULT, BLUR_RADIUS_MAX, BRUSH_SIZE_DEFAULT, BRUSH_SIZE_MAX, BRUSH_SIZE_MIN,
    MASK_EFFECTS, MASK_TOOLS, MOSAIC_STRENGTH_DEFAULT, MOSAIC_STRENGTH_MAX, MOSAIC_STRENGTH_MIN,
)
from raster_studio.errors import SurfaceUnavailableError
from raster_studio.models import ImageItem, Rect, normalize_rect
from raster_studio.rule_store import RuleStore

logger = logging.getLogger(__name__)


# =============================================================================
# Effect parameters
# =============================================================================
@dataclass(frozen=True)
class EffectParams:
    effect: str = "mosaic"
    strength: int = MOSAIC_STRENGTH_DEFAULT
    blur_radius: float = BLUR_RADIUS_DEFAULT

    def __post_init__(self):
        if self.effect not in MASK_EFFECTS:
            raise ValueError(f"effect must be one of {MASK_EFFECTS}, got {self.effect!r}")

    @property
    def block_size(self) -> int:
        """Mosaic cell size in image pixels for the current strength."""
        strength = max(MOSAIC_STRENGTH_MIN, min(MOSAIC_STRENGTH_MAX, self.strength))
        return max(4, round(strength / 2))

    @property
    def radius(self) -> int:
        return max(1, min(BLUR_RADIUS_MAX, round(self.blur_radius)))


def mosaic_effect(img: Image.Image, block_size: int) -> Image.Image:
    """Down- then up-sample with NEAREST so each cell becomes a flat block."""
    w, h = img.size
    small = img.resize(
        (max(1, math.ceil(w / block_size)), max(1, math.ceil(h / block_size))),
        Image.Resampling.NEAREST,
    )
    return small.resize((w, h), Image.Resampling.NEAREST)


def blur_effect(img: Image.Image, radius: float) -> Image.Image:
    return img.filter(ImageFilter.GaussianBlur(max(1, round(radius))))


def render_effect(img: Image.Image, params: EffectParams) -> Image.Image:
    base = img.convert("RGBA")
    if params.effect == "blur":
        return blur_effect(base, params.radius)
    return mosaic_effect(base, params.block_size)


# =============================================================================
# Mask state
# =============================================================================
@dataclass
class MaskState:
    """Cached mask of one image; ``buffer`` is None while nothing is painted."""
    width: int
    height: int
    buffer: np.ndarray | None = field(default=None, repr=False, compare=False)
    params: EffectParams = field(default_factory=EffectParams)
    tool: str = "brush"
    brush_size: float = BRUSH_SIZE_DEFAULT

    @property
    def is_empty(self) -> bool:
        return self.buffer is None or not self.buffer.any()


def resample_mask(buffer: np.ndarray, width: int, height: int) -> np.ndarray:
    """Scale a mask buffer to (width, height); same-size buffers are copied."""
    if buffer.shape == (height, width):
        return buffer.copy()
    img = Image.fromarray(buffer).resize((width, height), Image.Resampling.BILINEAR)
    return np.asarray(img, dtype=np.uint8).copy()


def apply_mask(base: Image.Image, effect: Image.Image, mask: np.ndarray | None) -> Image.Image:
    """Composite *effect* over *base* wherever *mask* is set."""
    out = base.convert("RGBA")
    if mask is None or not mask.any():
        return out
    mask_img = Image.fromarray(mask)
    if mask_img.size != out.size:
        mask_img = mask_img.resize(out.size, Image.Resampling.BILINEAR)
    layer = effect.convert("RGBA")
    layer.putalpha(ImageChops.multiply(layer.getchannel("A"), mask_img))
    out.alpha_composite(layer)
    return out


def composite_state(base: Image.Image, state: MaskState) -> Image.Image:
    """Export path: effect for *state* applied to *base* at *base*'s resolution."""
    if state.is_empty:
        return base.convert("RGBA")
    mask = resample_mask(state.buffer, base.width, base.height)
    return apply_mask(base, render_effect(base, state.params), mask)


# =============================================================================
# Engine (one image, interactive)
# =============================================================================
class MaskPaintEngine:
    """Brush / rectangle painting on the active image's mask."""

    def __init__(self, base: Image.Image, state: MaskState | None = None):
        try:
            self.base = base.convert("RGBA")
            self._mask = Image.new("L", base.size, 0)
        except (MemoryError, ValueError) as e:
            raise SurfaceUnavailableError(f"Cannot allocate {base.width}x{base.height} mask: {e}") from e
        self._draw = ImageDraw.Draw(self._mask)

        self.params = EffectParams()
        self.tool = "brush"
        self.brush_size: float = BRUSH_SIZE_DEFAULT
        self._effect: Image.Image | None = None
        self._effect_params: EffectParams | None = None

        self._painting = False
        self._last_point: tuple[float, float] | None = None
        self._rect_start: tuple[float, float] | None = None
        self.rect_preview: Rect | None = None

        if state is not None:
            self.load_state(state)

    @property
    def width(self) -> int:
        return self.base.width

    @property
    def height(self) -> int:
        return self.base.height

    @property
    def is_painting(self) -> bool:
        return self._painting

    def mask_buffer(self) -> np.ndarray:
        return np.asarray(self._mask, dtype=np.uint8).copy()

    def is_dirty(self) -> bool:
        return self._mask.getbbox() is not None

    # --- Parameters ---

    def set_tool(self, tool: str):
        if tool not in MASK_TOOLS:
            raise ValueError(f"tool must be one of {MASK_TOOLS}, got {tool!r}")
        self.tool = tool

    def set_brush_size(self, size: float):
        self.brush_size = max(BRUSH_SIZE_MIN, min(BRUSH_SIZE_MAX, size))

    def set_effect(self, params: EffectParams):
        self.params = params

    def effect_image(self) -> Image.Image:
        """Effect surface for the current params, rebuilt only when they change."""
        if self._effect is None or self._effect_params != self.params:
            logger.debug("Rebuilding %s effect for %dx%d", self.params.effect, self.width, self.height)
            self._effect = render_effect(self.base, self.params)
            self._effect_params = self.params
        return self._effect

    # --- Painting (original pixel coordinates) ---

    def brush_size_in_image(self, scale: float) -> float:
        """Brush diameter is set in screen pixels; convert with the view scale."""
        return max(1.0, self.brush_size / max(0.01, scale))

    def _stamp_segment(self, p0: tuple[float, float], p1: tuple[float, float], diameter: float):
        r = diameter / 2
        if p0 != p1:
            self._draw.line([p0, p1], fill=255, width=max(1, int(round(diameter))))
        # Round caps and joins
        for x, y in (p0, p1):
            self._draw.ellipse([x - r, y - r, x + r, y + r], fill=255)

    def paint_stroke(self, points: list[tuple[float, float]], diameter: float):
        """Paint a whole polyline at once (used by tests and scripted edits)."""
        if not points:
            return
        prev = points[0]
        self._stamp_segment(prev, prev, diameter)
        for p in points[1:]:
            self._stamp_segment(prev, p, diameter)
            prev = p

    def fill_rect(self, rect: Rect):
        r = normalize_rect(rect)
        if r.w <= 0 or r.h <= 0:
            return
        self._draw.rectangle([r.x, r.y, r.right - 1, r.bottom - 1], fill=255)

    def pointer_down(self, x: float, y: float, scale: float = 1.0):
        self._painting = True
        if self.tool == "brush":
            self._last_point = (x, y)
            self._stamp_segment((x, y), (x, y), self.brush_size_in_image(scale))
        else:
            self._rect_start = (x, y)
            self.rect_preview = Rect(x, y, 1, 1)

    def pointer_move(self, x: float, y: float, scale: float = 1.0):
        if not self._painting:
            return
        if self.tool == "brush":
            last = self._last_point or (x, y)
            self._stamp_segment(last, (x, y), self.brush_size_in_image(scale))
            self._last_point = (x, y)
        elif self._rect_start is not None:
            sx, sy = self._rect_start
            self.rect_preview = Rect(sx, sy, x - sx, y - sy)

    def pointer_up(self):
        """End a stroke; the rectangle tool commits its preview here."""
        if not self._painting:
            return
        self._painting = False
        self._last_point = None
        if self.tool == "rect" and self.rect_preview is not None:
            self.fill_rect(self.rect_preview)
        self.rect_preview = None
        self._rect_start = None

    def clear_mask(self):
        self._draw.rectangle([0, 0, self.width, self.height], fill=0)
        self.rect_preview = None

    # --- State ---

    def state(self) -> MaskState:
        return MaskState(
            self.width, self.height,
            self.mask_buffer() if self.is_dirty() else None,
            self.params, self.tool, self.brush_size,
        )

    def load_state(self, state: MaskState):
        self.params = state.params
        self.tool = state.tool
        self.brush_size = state.brush_size
        self._mask.paste(0, (0, 0, self.width, self.height))
        if state.buffer is not None:
            buffer = resample_mask(state.buffer, self.width, self.height)
            self._mask.paste(Image.fromarray(buffer))

    def composite(self) -> Image.Image:
        """Preview and export image: effect through mask over the base."""
        if not self.is_dirty():
            return self.base.copy()
        return apply_mask(self.base, self.effect_image(), self.mask_buffer())


# =============================================================================
# Session (multi-image)
# =============================================================================
class MaskSession:
    """Active mask engine plus per-image mask cache."""

    def __init__(self):
        self.params = EffectParams()
        self.tool = "brush"
        self.brush_size: float = BRUSH_SIZE_DEFAULT
        self.rules: RuleStore[MaskState] = RuleStore(name="mask")
        self.engine: MaskPaintEngine | None = None
        self._active_id: str | None = None

    @property
    def active_id(self) -> str | None:
        return self._active_id

    def _default_state(self, item: ImageItem) -> MaskState:
        return MaskState(item.width, item.height, None, self.params, self.tool, self.brush_size)

    def resolve(self, item: ImageItem) -> MaskState:
        return self.rules.resolve(item.id) or self._default_state(item)

    def activate(self, item: ImageItem, base: Image.Image) -> MaskPaintEngine:
        self.commit()
        self.engine = MaskPaintEngine(base, self.resolve(item))
        self.params = self.engine.params
        self.tool = self.engine.tool
        self.brush_size = self.engine.brush_size
        self._active_id = item.id
        return self.engine

    def set_effect(self, params: EffectParams):
        self.params = params
        if self.engine is not None:
            self.engine.set_effect(params)
            self.commit()

    def set_tool(self, tool: str):
        self.tool = tool
        if self.engine is not None:
            self.engine.set_tool(tool)

    def set_brush_size(self, size: float):
        if self.engine is not None:
            self.engine.set_brush_size(size)
            self.brush_size = self.engine.brush_size
        else:
            self.brush_size = max(BRUSH_SIZE_MIN, min(BRUSH_SIZE_MAX, size))

    def commit(self):
        if self.engine is not None and self._active_id is not None:
            self.rules.set(self._active_id, self.engine.state())

    def clear_mask(self):
        if self.engine is not None:
            self.engine.clear_mask()
            self.commit()

    def apply_to_all(self) -> MaskState | None:
        """Broadcast the active mask; other images get it resampled to their size."""
        if self.engine is None:
            return None
        state = self.engine.state()
        self.rules.apply_to_all(state)
        self.rules.set(self._active_id, state)
        logger.info("Mask applied to all images (%s)", state.params.effect)
        return state

    def export_state(self, item: ImageItem) -> MaskState:
        if item.id == self._active_id and self.engine is not None:
            return self.engine.state()
        return self.resolve(item)

    def remove(self, image_id: str):
        self.rules.remove(image_id)
        if image_id == self._active_id:
            self._active_id = None
            self.engine = None

    def clear(self):
        self.rules.clear()
        self.engine = None
        self._active_id = None
