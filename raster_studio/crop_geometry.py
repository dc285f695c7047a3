"""
Interactive crop rectangle: hit-testing, handle drags and ratio locks.

The crop rect is stored in original-pixel space.  A drag is evaluated in
*effective* space (what the user sees after view rotation), so a handle
always moves the edge that is visually under the pointer.  The result is
mapped back to original space after every edit.

State machine: ``CropEditor`` is Idle until ``begin_drag`` hits the rect
body ("move") or one of the 8 handles; it returns to Idle on
``end_drag``.  ``CropSession`` adds multi-image caching on top of a
``RuleStore``: each image keeps its rect as fractions of its own size so
an "apply to all" rule can be re-expanded on differently sized images.

This module is Qt-free and safe for worker import.
"""

import logging
from dataclasses import dataclass

from raster_studio.config import CROP_RATIO_OPTIONS, HANDLE_HIT_SIZE, MIN_CROP_SIZE
from raster_studio.geometry import (
    rect_original_to_effective, rect_effective_to_original,
    rect_effective_to_screen, screen_to_effective,
)
from raster_studio.models import (
    CropRect, ImageItem, Rect, ViewState, clamp_crop, default_crop,
    fit_rect_to_ratio, normalize_rect,
)
from raster_studio.rule_store import RuleStore

logger = logging.getLogger(__name__)

HANDLES = ("nw", "n", "ne", "w", "e", "sw", "s", "se")
MOVE = "move"


# =============================================================================
# Crop modes
# =============================================================================
@dataclass(frozen=True)
class CropMode:
    """free, fixed ratio (w / h) or circle (ratio 1, circular clip on export)."""
    kind: str = "free"
    ratio: float | None = None
    label: str = "Free"

    @property
    def locked_ratio(self) -> float | None:
        if self.kind == "circle":
            return 1.0
        if self.kind == "ratio":
            return self.ratio
        return None

    @property
    def is_circle(self) -> bool:
        return self.kind == "circle"

    @classmethod
    def from_value(cls, value: str, custom_w: int | None = None, custom_h: int | None = None) -> "CropMode":
        """Build a mode from a ratio-preset value such as ``"16:9"``."""
        if value == "circle":
            return cls("circle", 1.0, "Circle")
        if value == "custom":
            if custom_w and custom_h and custom_w > 0 and custom_h > 0:
                return cls("ratio", custom_w / custom_h, f"{custom_w}:{custom_h}")
            return cls()
        for opt_value, ratio, label in CROP_RATIO_OPTIONS:
            if opt_value == value and ratio is not None:
                return cls("ratio", ratio, label)
        return cls()


# =============================================================================
# Pure drag math (effective space)
# =============================================================================
def handle_points(screen: Rect) -> dict[str, tuple[float, float]]:
    """Screen positions of the 8 resize handles of *screen*."""
    x1, y1 = screen.x, screen.y
    x2, y2 = screen.right, screen.bottom
    cx, cy = x1 + screen.w / 2, y1 + screen.h / 2
    return {
        "nw": (x1, y1), "n": (cx, y1), "ne": (x2, y1),
        "w": (x1, cy), "e": (x2, cy),
        "sw": (x1, y2), "s": (cx, y2), "se": (x2, y2),
    }


def hit_test(screen: Rect, x: float, y: float, hit_size: float = HANDLE_HIT_SIZE) -> str | None:
    """Return the handle under (x, y), ``"move"`` for the body, or None."""
    half = hit_size / 2
    for handle, (hx, hy) in handle_points(screen).items():
        if abs(x - hx) <= half and abs(y - hy) <= half:
            return handle
    if screen.contains(x, y):
        return MOVE
    return None


def apply_ratio(rect: Rect, handle: str, ratio: float) -> Rect:
    """
    Force ``w / h == ratio`` after a handle drag.

    Edge handles keep the dragged dimension and derive the other one around
    the rect's centre.  Corner handles adjust whichever dimension is farther
    from the ratio and keep the corner opposite the dragged one fixed.
    """
    r = normalize_rect(rect)
    x, y, w, h = r.x, r.y, r.w, r.h
    if w <= 0 or h <= 0 or handle == MOVE:
        return r

    if handle in ("n", "s"):
        new_w = h * ratio
        return Rect(x + w / 2 - new_w / 2, y, new_w, h)
    if handle in ("e", "w"):
        new_h = w / ratio
        return Rect(x, y + h / 2 - new_h / 2, w, new_h)

    want_w = h * ratio
    want_h = w / ratio
    if abs(w - want_w) < abs(h - want_h):
        new_w, new_h = want_w, h
    else:
        new_w, new_h = w, want_h

    new_x = x + (w - new_w) if "w" in handle else x
    new_y = y + (h - new_h) if "n" in handle else y
    return Rect(new_x, new_y, new_w, new_h)


def _clamp_locked(rect: Rect, handle: str, ratio: float, bound_w: float, bound_h: float) -> Rect:
    """Scale a ratio-locked rect into bounds, keeping its anchor where possible."""
    w, h = rect.w, rect.h
    left, right = min(max(rect.x, 0.0), bound_w), min(max(rect.right, 0.0), bound_w)
    top, bottom = min(max(rect.y, 0.0), bound_h), min(max(rect.bottom, 0.0), bound_h)
    cx, cy = rect.x + w / 2, rect.y + h / 2

    if "w" in handle:
        avail_w = right
    elif "e" in handle:
        avail_w = bound_w - left
    else:
        avail_w = 2 * min(max(cx, 0.0), max(bound_w - cx, 0.0))
    if "n" in handle:
        avail_h = bottom
    elif "s" in handle:
        avail_h = bound_h - top
    else:
        avail_h = 2 * min(max(cy, 0.0), max(bound_h - cy, 0.0))
    # Anchor too close to an edge: allow the rect to shift instead
    avail_w = min(bound_w, max(avail_w, MIN_CROP_SIZE))
    avail_h = min(bound_h, max(avail_h, MIN_CROP_SIZE))

    scale = min(1.0, avail_w / w, avail_h / h)
    w, h = w * scale, h * scale
    if w < MIN_CROP_SIZE or h < MIN_CROP_SIZE:
        grow = max(MIN_CROP_SIZE / w, MIN_CROP_SIZE / h)
        w, h = w * grow, h * grow
    if w > bound_w or h > bound_h:
        shrink = min(bound_w / w, bound_h / h)
        w, h = w * shrink, h * shrink

    if "w" in handle:
        x = rect.right - w
    elif "e" in handle:
        x = rect.x
    else:
        x = cx - w / 2
    if "n" in handle:
        y = rect.bottom - h
    elif "s" in handle:
        y = rect.y
    else:
        y = cy - h / 2

    x = max(0.0, min(x, bound_w - w))
    y = max(0.0, min(y, bound_h - h))
    return Rect(x, y, w, h)


def drag_rect(
    start: Rect, handle: str, dx: float, dy: float,
    bound_w: float, bound_h: float, ratio: float | None = None,
) -> Rect:
    """Apply a pointer delta to *start* for *handle*, then lock and clamp."""
    x, y, w, h = start.x, start.y, start.w, start.h
    if handle == MOVE:
        x, y = x + dx, y + dy
    if "e" in handle and handle != MOVE:
        w += dx
    if "w" in handle:
        x += dx
        w -= dx
    if "s" in handle:
        h += dy
    if "n" in handle:
        y += dy
        h -= dy

    rect = normalize_rect(Rect(x, y, w, h))
    if ratio and handle != MOVE:
        # A handle dragged exactly onto the opposite edge leaves no size to lock
        rect = Rect(rect.x, rect.y, max(rect.w, 1.0), max(rect.h, 1.0))
        rect = apply_ratio(rect, handle, ratio)
        return _clamp_locked(rect, handle, ratio, bound_w, bound_h)
    return clamp_crop(rect, bound_w, bound_h)


# =============================================================================
# Editor (one image)
# =============================================================================
class CropEditor:
    """Crop rect of one image plus the Idle / Dragging state machine."""

    def __init__(self, img_w: int, img_h: int, mode: CropMode | None = None, rect: CropRect | None = None):
        self.img_w = img_w
        self.img_h = img_h
        self.mode = mode or CropMode()
        self.rect = clamp_crop(rect, img_w, img_h) if rect is not None else self._initial_rect()

        self._handle: str | None = None
        self._start_eff: Rect | None = None
        self._start_pt = (0.0, 0.0)
        self._start_ratio: float | None = None

    def _initial_rect(self) -> CropRect:
        base = default_crop(self.img_w, self.img_h)
        ratio = self.mode.locked_ratio
        if ratio:
            # Fitted in original space, so under a 90/270 view the on-screen
            # ratio is inverted. Moves keep it; the first resize re-locks it in
            # effective space.
            return fit_rect_to_ratio(base, ratio, self.img_w, self.img_h)
        return base

    @property
    def is_dragging(self) -> bool:
        return self._handle is not None

    @property
    def active_handle(self) -> str | None:
        return self._handle

    def set_mode(self, mode: CropMode):
        """Switch mode and re-fit a fresh centred rect to its ratio."""
        self.mode = mode
        self.rect = self._initial_rect()

    def set_rect(self, rect: Rect):
        self.rect = clamp_crop(rect, self.img_w, self.img_h)

    # --- View-space helpers ---

    def effective_rect(self, view: ViewState) -> Rect:
        eff = rect_original_to_effective(
            self.rect, view.rotation, self.img_w, self.img_h, view.flip_x, view.flip_y
        )
        return clamp_crop(eff, view.effective_width, view.effective_height)

    def screen_rect(self, view: ViewState) -> Rect:
        return rect_effective_to_screen(self.effective_rect(view), view)

    def hit_test(self, x: float, y: float, view: ViewState) -> str | None:
        return hit_test(self.screen_rect(view), x, y)

    # --- Drag state machine ---

    def begin_drag(self, x: float, y: float, view: ViewState, handle: str | None = None) -> bool:
        """Idle -> Dragging if (x, y) hits the rect or a handle."""
        handle = handle or self.hit_test(x, y, view)
        if handle is None:
            return False
        self._handle = handle
        self._start_eff = self.effective_rect(view)
        self._start_pt = screen_to_effective(x, y, view)
        self._start_ratio = self._start_eff.w / self._start_eff.h if self._start_eff.h > 0 else None
        return True

    def drag_to(self, x: float, y: float, view: ViewState, shift: bool = False) -> CropRect:
        """Apply the pointer position; Shift locks free mode to the start ratio."""
        if self._handle is None:
            return self.rect
        ex, ey = screen_to_effective(x, y, view)
        dx = ex - self._start_pt[0]
        dy = ey - self._start_pt[1]

        ratio = self.mode.locked_ratio
        if ratio is None and shift:
            ratio = self._start_ratio
        eff = drag_rect(
            self._start_eff, self._handle, dx, dy,
            view.effective_width, view.effective_height, ratio,
        )
        orig = rect_effective_to_original(
            eff, view.rotation, self.img_w, self.img_h, view.flip_x, view.flip_y
        )
        self.rect = clamp_crop(orig, self.img_w, self.img_h)
        return self.rect

    def end_drag(self):
        """Dragging -> Idle (pointer up or cancel)."""
        self._handle = None
        self._start_eff = None


# =============================================================================
# Normalised rule (multi-image)
# =============================================================================
@dataclass(frozen=True)
class CropRule:
    """Crop rect as fractions of the image size, plus the mode that made it."""
    mode_value: str = "free"
    custom_ratio_w: int | None = None
    custom_ratio_h: int | None = None
    x: float = 0.0
    y: float = 0.0
    w: float = 1.0
    h: float = 1.0
    # circle mode: centre fractions and size as a fraction of the shorter edge
    cx: float | None = None
    cy: float | None = None
    size: float | None = None

    def mode(self) -> CropMode:
        return CropMode.from_value(self.mode_value, self.custom_ratio_w, self.custom_ratio_h)

    @classmethod
    def from_rect(cls, rect: CropRect, img_w: int, img_h: int, mode_value: str = "free",
                  custom_ratio_w: int | None = None, custom_ratio_h: int | None = None) -> "CropRule":
        safe_w = img_w or 1
        safe_h = img_h or 1
        r = clamp_crop(rect, img_w, img_h)
        kwargs = {}
        if mode_value == "circle":
            min_edge = max(1, min(safe_w, safe_h))
            kwargs = {
                "cx": (r.x + r.w / 2) / safe_w,
                "cy": (r.y + r.h / 2) / safe_h,
                "size": min(r.w, r.h) / min_edge,
            }
        return cls(
            mode_value, custom_ratio_w, custom_ratio_h,
            r.x / safe_w, r.y / safe_h, r.w / safe_w, r.h / safe_h,
            **kwargs,
        )

    def to_rect(self, img_w: int, img_h: int) -> CropRect:
        """Re-expand the rule against an image of size img_w x img_h."""
        if self.mode_value == "circle" and self.size is not None:
            min_edge = max(1, min(img_w, img_h))
            size = max(1.0, self.size * min_edge)
            rect = CropRect(self.cx * img_w - size / 2, self.cy * img_h - size / 2, size, size)
            return clamp_crop(rect, img_w, img_h)
        rect = clamp_crop(
            CropRect(self.x * img_w, self.y * img_h, self.w * img_w, self.h * img_h), img_w, img_h
        )
        ratio = self.mode().locked_ratio
        if ratio and abs(rect.w / rect.h - ratio) > 1e-6:
            rect = fit_rect_to_ratio(rect, ratio, img_w, img_h)
        return rect


# =============================================================================
# Session (multi-image)
# =============================================================================
class CropSession:
    """Active crop editor plus the per-image rule cache."""

    def __init__(self):
        self.rules: RuleStore[CropRule] = RuleStore(name="crop")
        self.editor: CropEditor | None = None
        self.mode_value = "free"
        self.custom_ratio_w: int | None = None
        self.custom_ratio_h: int | None = None
        self._active_id: str | None = None

    @property
    def active_id(self) -> str | None:
        return self._active_id

    def activate(self, item: ImageItem) -> CropEditor:
        """Make *item* the active image, restoring its cached rect if any."""
        self.commit()
        rule = self.rules.resolve(item.id)
        if rule is not None:
            self.mode_value = rule.mode_value
            self.custom_ratio_w = rule.custom_ratio_w
            self.custom_ratio_h = rule.custom_ratio_h
            self.editor = CropEditor(item.width, item.height, rule.mode(), rule.to_rect(item.width, item.height))
            logger.debug("Restored crop for %s (%s)", item.name, rule.mode_value)
        else:
            self.mode_value = "free"
            self.custom_ratio_w = self.custom_ratio_h = None
            self.editor = CropEditor(item.width, item.height)
        self._active_id = item.id
        return self.editor

    def set_mode(self, value: str, custom_w: int | None = None, custom_h: int | None = None):
        self.mode_value = value
        self.custom_ratio_w = custom_w
        self.custom_ratio_h = custom_h
        if self.editor is not None:
            self.editor.set_mode(CropMode.from_value(value, custom_w, custom_h))
            self.commit()

    def current_rule(self) -> CropRule | None:
        if self.editor is None:
            return None
        return CropRule.from_rect(
            self.editor.rect, self.editor.img_w, self.editor.img_h,
            self.mode_value, self.custom_ratio_w, self.custom_ratio_h,
        )

    def commit(self):
        """Store the active editor's rect as the active image's override."""
        rule = self.current_rule()
        if rule is not None and self._active_id is not None:
            self.rules.set(self._active_id, rule)

    def apply_to_all(self) -> CropRule | None:
        rule = self.current_rule()
        if rule is not None:
            self.rules.apply_to_all(rule)
            self.rules.set(self._active_id, rule)
            logger.info("Crop rule applied to all images (%s)", rule.mode_value)
        return rule

    def export_state(self, item: ImageItem) -> tuple[CropMode, CropRect]:
        """Mode and rect to export *item* with."""
        if item.id == self._active_id and self.editor is not None:
            return self.editor.mode, self.editor.rect
        rule = self.rules.resolve(item.id)
        if rule is None:
            return CropMode(), default_crop(item.width, item.height)
        return rule.mode(), rule.to_rect(item.width, item.height)

    def remove(self, image_id: str):
        self.rules.remove(image_id)
        if image_id == self._active_id:
            self._active_id = None
            self.editor = None

    def clear(self):
        self.rules.clear()
        self.editor = None
        self._active_id = None
        self.mode_value = "free"
        self.custom_ratio_w = self.custom_ratio_h = None
