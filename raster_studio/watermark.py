"""
Watermark layout and rendering.

A watermark is either one free-dragged stamp ("single") or a grid of
stamps ("tile").  A stamp is multi-line text (fill + optional stroke) or
a logo image, drawn with a global opacity and rotated about its own
centre.

Placement is stored as fractions of the image size in ``WatermarkRule``
so one rule can be re-applied to images of any resolution.  The live
preview and the export both go through ``render_watermark`` on the
native-resolution image, so what the user sees is what gets written.

This module is Qt-free and safe for worker import.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from functools import lru_cache
from pathlib import Path

from PIL import Image, ImageColor, ImageDraw, ImageFont

from raster_studio.config import (
    DEFAULT_BOLD_FONT_CANDIDATES, DEFAULT_FONT_CANDIDATES, LINE_HEIGHT_FACTOR,
    TILE_MAX, TILE_MIN, WATERMARK_FONT_SIZE_DEFAULT, WATERMARK_MARGIN_DEFAULT,
    WATERMARK_OPACITY_DEFAULT, WATERMARK_PRESETS,
)
from raster_studio.errors import SurfaceUnavailableError
from raster_studio.geometry import wrap_signed
from raster_studio.models import ImageItem, Rect
from raster_studio.rule_store import RuleStore

logger = logging.getLogger(__name__)


# =============================================================================
# Rule
# =============================================================================
@dataclass
class WatermarkRule:
    """Everything needed to stamp one image.  Offsets are size fractions."""
    kind: str = "text"                  # "text" | "image"
    opacity: int = WATERMARK_OPACITY_DEFAULT
    rotation: float = 0.0

    text: str = "Watermark"
    font_size: int = WATERMARK_FONT_SIZE_DEFAULT
    font_path: str | None = None
    bold: bool = False
    color: str = "#ffffff"
    align: str = "center"               # "left" | "center" | "right"
    stroke_enabled: bool = False
    stroke_width: int = 2
    stroke_color: str = "#111827"

    logo: Image.Image | None = field(default=None, repr=False, compare=False)
    logo_scale: float = 1.0

    margin: int = WATERMARK_MARGIN_DEFAULT

    mode: str = "single"                # "single" | "tile"
    tile_rows: int = 4
    tile_cols: int = 4
    tile_stagger: bool = True

    # None means "not placed yet": default to bottom-right at the margin
    offset_x: float | None = None
    offset_y: float | None = None
    tile_offset_x: float = 0.0
    tile_offset_y: float = 0.0

    def without_placement(self) -> "WatermarkRule":
        return replace(self, offset_x=None, offset_y=None, tile_offset_x=0.0, tile_offset_y=0.0)


def clamp_int(value: float, lo: int, hi: int) -> int:
    return max(lo, min(hi, int(round(value))))


def tile_grid(rule: WatermarkRule) -> tuple[int, int]:
    """(rows, cols) clamped to the supported range."""
    return clamp_int(rule.tile_rows, TILE_MIN, TILE_MAX), clamp_int(rule.tile_cols, TILE_MIN, TILE_MAX)


# =============================================================================
# Text metrics
# =============================================================================
def normalize_lines(text: str | None) -> list[str]:
    """Split on any newline style; blank lines become a single space."""
    raw = (text or "").replace("\r\n", "\n").replace("\r", "\n")
    return [line if line.strip() else " " for line in raw.split("\n")]


@lru_cache(maxsize=32)
def load_font(size: int, bold: bool = False, font_path: str | None = None):
    """Load a TrueType font, falling back through the candidate list."""
    size = max(4, int(size))
    candidates = []
    if font_path:
        candidates.append(font_path)
    if bold:
        candidates.extend(DEFAULT_BOLD_FONT_CANDIDATES)
    candidates.extend(DEFAULT_FONT_CANDIDATES)

    for path in candidates:
        if not Path(path).exists():
            continue
        try:
            return ImageFont.truetype(path, size=size)
        except OSError as e:
            logger.warning("Could not load font %s: %s", path, e)
    logger.warning("No TrueType font found, using Pillow's default font")
    return ImageFont.load_default(size=size)


@dataclass(frozen=True)
class TextMetrics:
    width: float
    height: float
    line_height: int


def text_metrics(lines: list[str], font, font_size: int) -> TextMetrics:
    line_height = max(1, round(font_size * LINE_HEIGHT_FACTOR))
    width = max([1.0] + [font.getlength(line) for line in lines])
    return TextMetrics(width, max(1, line_height * len(lines)), line_height)


def stamp_size(rule: WatermarkRule) -> tuple[float, float] | None:
    """Unrotated stamp size in image pixels, or None when there is nothing to draw."""
    if rule.kind == "text":
        lines = normalize_lines(rule.text)
        font = load_font(rule.font_size, rule.bold, rule.font_path)
        metrics = text_metrics(lines, font, rule.font_size)
        pad = max(0, rule.stroke_width) * 2 if rule.stroke_enabled else 0
        return metrics.width + pad, metrics.height + pad
    if rule.logo is None:
        return None
    return max(1.0, rule.logo.width * rule.logo_scale), max(1.0, rule.logo.height * rule.logo_scale)


# =============================================================================
# Stamp rendering
# =============================================================================
def _with_opacity(img: Image.Image, opacity: int) -> Image.Image:
    factor = max(0, min(100, opacity)) / 100.0
    if factor >= 1.0:
        return img
    alpha = img.getchannel("A").point(lambda p: int(round(p * factor)))
    img.putalpha(alpha)
    return img


def render_stamp(rule: WatermarkRule) -> Image.Image | None:
    """One stamp as RGBA, opacity applied and rotated (canvas grows to fit)."""
    size = stamp_size(rule)
    if size is None:
        return None
    w, h = size
    canvas_w, canvas_h = max(1, math.ceil(w)), max(1, math.ceil(h))

    if rule.kind == "text":
        stamp = Image.new("RGBA", (canvas_w, canvas_h), (0, 0, 0, 0))
        draw = ImageDraw.Draw(stamp)
        lines = normalize_lines(rule.text)
        font = load_font(rule.font_size, rule.bold, rule.font_path)
        metrics = text_metrics(lines, font, rule.font_size)
        pad = max(0, rule.stroke_width) if rule.stroke_enabled else 0
        # Pillow strokes outward only, a canvas stroke straddles the outline
        stroke = max(1, round(rule.stroke_width / 2)) if rule.stroke_enabled else 0
        fill = ImageColor.getrgb(rule.color)
        stroke_fill = ImageColor.getrgb(rule.stroke_color) if stroke else None

        cx, cy = canvas_w / 2, canvas_h / 2
        if rule.align == "left":
            x0, anchor = cx - w / 2 + pad, "lm"
        elif rule.align == "right":
            x0, anchor = cx + w / 2 - pad, "rm"
        else:
            x0, anchor = cx, "mm"
        start_y = cy - metrics.line_height * len(lines) / 2 + metrics.line_height / 2
        for i, line in enumerate(lines):
            draw.text(
                (x0, start_y + i * metrics.line_height), line, font=font, fill=fill,
                anchor=anchor, stroke_width=stroke, stroke_fill=stroke_fill,
            )
    else:
        stamp = rule.logo.convert("RGBA").resize((canvas_w, canvas_h), Image.Resampling.LANCZOS)

    stamp = _with_opacity(stamp, rule.opacity)
    if rule.rotation % 360:
        # Image.rotate turns counter-clockwise; positive angles turn clockwise on screen
        stamp = stamp.rotate(-rule.rotation, resample=Image.Resampling.BICUBIC, expand=True)
    return stamp


def _composite_clipped(dst: Image.Image, src: Image.Image, x: int, y: int):
    """alpha_composite that tolerates *src* hanging over any edge of *dst*."""
    left, top = max(0, x), max(0, y)
    right, bottom = min(dst.width, x + src.width), min(dst.height, y + src.height)
    if right <= left or bottom <= top:
        return
    dst.alpha_composite(src, dest=(left, top), source=(left - x, top - y, right - x, bottom - y))


# =============================================================================
# Layout
# =============================================================================
def preset_position(preset: str, img_w: float, img_h: float, w: float, h: float,
                    margin: float) -> tuple[float, float]:
    """Top-left of a stamp anchored at one of the 9 preset positions."""
    if preset not in WATERMARK_PRESETS:
        raise ValueError(f"unknown watermark preset {preset!r}")
    right = max(margin, img_w - w - margin)
    bottom = max(margin, img_h - h - margin)
    hcenter = max(0.0, (img_w - w) / 2)
    vcenter = max(0.0, (img_h - h) / 2)

    if preset in ("lt", "l", "lb"):
        x = margin
    elif preset in ("rt", "r", "rb"):
        x = right
    else:
        x = hcenter
    if preset in ("lt", "t", "rt"):
        y = margin
    elif preset in ("lb", "b", "rb"):
        y = bottom
    else:
        y = vcenter
    return x, y


def clamp_position(x: float, y: float, img_w: float, img_h: float, w: float, h: float) -> tuple[float, float]:
    return (
        max(0.0, min(x, max(0.0, img_w - w))),
        max(0.0, min(y, max(0.0, img_h - h))),
    )


def tile_centers(img_w: float, img_h: float, rows: int, cols: int,
                 offset_x: float, offset_y: float, stagger: bool,
                 stamp_w: float, stamp_h: float) -> list[tuple[float, float]]:
    """
    Stamp centres for the tiled layout.

    One extra ring of cells (index -1..N) is laid out so a wrapped offset
    never exposes a seam; centres far outside the image are dropped.
    """
    step_x = img_w / cols
    step_y = img_h / rows
    ox = wrap_signed(offset_x, step_x)
    oy = wrap_signed(offset_y, step_y)
    centers = []
    for rr in range(-1, rows + 1):
        shift = step_x / 2 if stagger and rr % 2 != 0 else 0.0
        for cc in range(-1, cols + 1):
            cx = (cc + 0.5) * step_x + ox + shift
            cy = (rr + 0.5) * step_y + oy
            if cx < -stamp_w or cx > img_w + stamp_w or cy < -stamp_h or cy > img_h + stamp_h:
                continue
            centers.append((cx, cy))
    return centers


def single_position(rule: WatermarkRule, img_w: int, img_h: int, w: float, h: float) -> tuple[float, float]:
    """Resolved top-left for single mode; unplaced rules sit bottom-right."""
    if rule.offset_x is None or rule.offset_y is None:
        return preset_position("rb", img_w, img_h, w, h, rule.margin)
    return clamp_position(rule.offset_x * img_w, rule.offset_y * img_h, img_w, img_h, w, h)


def stamp_centers(rule: WatermarkRule, img_w: int, img_h: int) -> list[tuple[float, float]]:
    size = stamp_size(rule)
    if size is None:
        return []
    w, h = size
    if rule.mode == "tile":
        rows, cols = tile_grid(rule)
        return tile_centers(
            img_w, img_h, rows, cols,
            rule.tile_offset_x * img_w, rule.tile_offset_y * img_h,
            rule.tile_stagger, w, h,
        )
    x, y = single_position(rule, img_w, img_h, w, h)
    return [(x + w / 2, y + h / 2)]


def render_watermark(base: Image.Image, rule: WatermarkRule) -> Image.Image:
    """Return *base* (as RGBA) with the watermark applied at native resolution."""
    try:
        out = base.convert("RGBA")
    except (MemoryError, ValueError) as e:
        raise SurfaceUnavailableError(f"Cannot allocate {base.width}x{base.height} surface: {e}") from e
    stamp = render_stamp(rule)
    if stamp is None:
        return out
    for cx, cy in stamp_centers(rule, out.width, out.height):
        _composite_clipped(out, stamp, int(round(cx - stamp.width / 2)), int(round(cy - stamp.height / 2)))
    return out


# =============================================================================
# Placement (one image, interactive)
# =============================================================================
class WatermarkPlacement:
    """
    Drag state for the watermark on the active image.

    Positions here are in original pixels; ``snapshot()`` converts them to
    the fractional rule stored in the caches.
    """

    def __init__(self, img_w: int, img_h: int, rule: WatermarkRule):
        self.img_w = img_w
        self.img_h = img_h
        self.rule = rule
        self.position: tuple[float, float] | None = None
        self.tile_offset = (rule.tile_offset_x * img_w, rule.tile_offset_y * img_h)
        self._drag_anchor: tuple[float, float] | None = None

        size = stamp_size(rule)
        if size is not None and rule.offset_x is not None and rule.offset_y is not None:
            self.position = single_position(rule, img_w, img_h, *size)
        self.ensure_position()

    @property
    def is_dragging(self) -> bool:
        return self._drag_anchor is not None

    def set_rule(self, rule: WatermarkRule):
        """Swap style settings; placement in pixels is kept."""
        self.rule = rule
        self.ensure_position()

    def ensure_position(self):
        """Place an unplaced stamp bottom-right, otherwise keep it in bounds."""
        size = stamp_size(self.rule)
        if size is None:
            return
        w, h = size
        if self.position is None:
            self.position = preset_position("rb", self.img_w, self.img_h, w, h, self.rule.margin)
        else:
            self.position = clamp_position(*self.position, self.img_w, self.img_h, w, h)

    def rect(self) -> Rect | None:
        """Hit rect of the single stamp (unrotated)."""
        size = stamp_size(self.rule)
        if size is None or self.position is None:
            return None
        return Rect(self.position[0], self.position[1], size[0], size[1])

    def set_preset(self, preset: str):
        size = stamp_size(self.rule)
        if size is None:
            return
        self.position = preset_position(preset, self.img_w, self.img_h, *size, self.rule.margin)

    def begin_drag(self, x: float, y: float) -> bool:
        """Start a drag at original point (x, y); single mode must hit the stamp."""
        if self.rule.mode == "tile":
            self._drag_anchor = (x - self.tile_offset[0], y - self.tile_offset[1])
            return True
        rect = self.rect()
        if rect is None or not rect.contains(x, y):
            return False
        self._drag_anchor = (x - rect.x, y - rect.y)
        return True

    def drag_to(self, x: float, y: float):
        if self._drag_anchor is None:
            return
        raw_x = x - self._drag_anchor[0]
        raw_y = y - self._drag_anchor[1]
        if self.rule.mode == "tile":
            rows, cols = tile_grid(self.rule)
            self.tile_offset = (
                wrap_signed(raw_x, self.img_w / cols),
                wrap_signed(raw_y, self.img_h / rows),
            )
            return
        size = stamp_size(self.rule)
        if size is None:
            return
        self.position = clamp_position(raw_x, raw_y, self.img_w, self.img_h, *size)

    def end_drag(self):
        self._drag_anchor = None

    def snapshot(self) -> WatermarkRule:
        """The live rule with placement expressed as fractions of this image."""
        safe_w = self.img_w or 1
        safe_h = self.img_h or 1
        changes = {
            "tile_offset_x": self.tile_offset[0] / safe_w,
            "tile_offset_y": self.tile_offset[1] / safe_h,
        }
        if self.position is not None:
            changes["offset_x"] = self.position[0] / safe_w
            changes["offset_y"] = self.position[1] / safe_h
        return replace(self.rule, **changes)

    def render(self, base: Image.Image) -> Image.Image:
        return render_watermark(base, self.snapshot())


# =============================================================================
# Session (multi-image)
# =============================================================================
class WatermarkSession:
    """Live watermark style plus per-image rule cache."""

    def __init__(self, rule: WatermarkRule | None = None):
        self.style = rule or WatermarkRule()
        self.rules: RuleStore[WatermarkRule] = RuleStore(self._default_rule, name="watermark")
        self.placement: WatermarkPlacement | None = None
        self._active_id: str | None = None

    def _default_rule(self, image_id: str) -> WatermarkRule:
        # Unvisited images take the current style at the default position
        return self.style.without_placement()

    @property
    def active_id(self) -> str | None:
        return self._active_id

    def activate(self, item: ImageItem) -> WatermarkPlacement:
        self.commit()
        rule = self.rules.resolve(item.id)
        self.style = rule.without_placement()
        self.placement = WatermarkPlacement(item.width, item.height, rule)
        self._active_id = item.id
        return self.placement

    def update_style(self, **changes) -> WatermarkRule:
        """Change style fields (text, opacity, mode...) of the live rule."""
        self.style = replace(self.style, **changes)
        if self.placement is not None:
            self.placement.set_rule(replace(self.style))
        self.commit()
        return self.style

    def commit(self):
        if self.placement is not None and self._active_id is not None:
            self.rules.set(self._active_id, self.placement.snapshot())

    def apply_to_all(self) -> WatermarkRule | None:
        if self.placement is None:
            return None
        rule = self.placement.snapshot()
        self.rules.apply_to_all(rule)
        self.rules.set(self._active_id, rule)
        logger.info("Watermark rule applied to all images (%s mode)", rule.mode)
        return rule

    def export_rule(self, item: ImageItem) -> WatermarkRule:
        if item.id == self._active_id and self.placement is not None:
            return self.placement.snapshot()
        return self.rules.resolve(item.id)

    def remove(self, image_id: str):
        self.rules.remove(image_id)
        if image_id == self._active_id:
            self._active_id = None
            self.placement = None

    def clear(self):
        self.rules.clear()
        self.placement = None
        self._active_id = None
