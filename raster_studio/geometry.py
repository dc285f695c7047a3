"""
Coordinate mapping between the three spaces an overlay works in.

* original  -- native pixel space of the loaded image
* effective -- original space after the view rotation (width/height swap
  at 90/270 degrees), before zoom and pan
* screen    -- widget pixels; the image occupies ``ViewState.box_*``

Rotation maps are exact at 90-degree multiples, so a point or rect can be
round-tripped without drift.  Flips are applied in original space, before
the rotation, which matches how the renderer mirrors the image in its own
local axes.

This module is Qt-free and safe for worker import.
"""

from raster_studio.models import Rect, ViewState


# =============================================================================
# Original <-> effective
# =============================================================================
def effective_size(img_w: float, img_h: float, rotation: int) -> tuple[float, float]:
    """Rotation-adjusted footprint of an image."""
    if rotation in (90, 270):
        return img_h, img_w
    return img_w, img_h


def original_to_effective(
    x: float, y: float, rotation: int, img_w: float, img_h: float,
    flip_x: bool = False, flip_y: bool = False,
) -> tuple[float, float]:
    """Map a point from original pixel space to effective space."""
    if flip_x:
        x = img_w - x
    if flip_y:
        y = img_h - y
    if rotation == 0:
        return x, y
    if rotation == 90:
        return img_h - y, x
    if rotation == 180:
        return img_w - x, img_h - y
    if rotation == 270:
        return y, img_w - x
    raise ValueError(f"rotation must be one of 0/90/180/270, got {rotation!r}")


def effective_to_original(
    x: float, y: float, rotation: int, img_w: float, img_h: float,
    flip_x: bool = False, flip_y: bool = False,
) -> tuple[float, float]:
    """Map a point from effective space back to original pixel space."""
    if rotation == 0:
        ox, oy = x, y
    elif rotation == 90:
        ox, oy = y, img_h - x
    elif rotation == 180:
        ox, oy = img_w - x, img_h - y
    elif rotation == 270:
        ox, oy = img_w - y, x
    else:
        raise ValueError(f"rotation must be one of 0/90/180/270, got {rotation!r}")
    if flip_x:
        ox = img_w - ox
    if flip_y:
        oy = img_h - oy
    return ox, oy


def _map_rect(rect: Rect, fn) -> Rect:
    """Map the four corners of *rect* and return their bounding box."""
    corners = [
        fn(rect.x, rect.y),
        fn(rect.x + rect.w, rect.y),
        fn(rect.x, rect.y + rect.h),
        fn(rect.x + rect.w, rect.y + rect.h),
    ]
    xs = [c[0] for c in corners]
    ys = [c[1] for c in corners]
    return type(rect)(min(xs), min(ys), max(xs) - min(xs), max(ys) - min(ys))


def rect_original_to_effective(
    rect: Rect, rotation: int, img_w: float, img_h: float,
    flip_x: bool = False, flip_y: bool = False,
) -> Rect:
    return _map_rect(
        rect, lambda x, y: original_to_effective(x, y, rotation, img_w, img_h, flip_x, flip_y)
    )


def rect_effective_to_original(
    rect: Rect, rotation: int, img_w: float, img_h: float,
    flip_x: bool = False, flip_y: bool = False,
) -> Rect:
    return _map_rect(
        rect, lambda x, y: effective_to_original(x, y, rotation, img_w, img_h, flip_x, flip_y)
    )


# =============================================================================
# Effective <-> screen (linear via the view box)
# =============================================================================
def effective_to_screen(x: float, y: float, view: ViewState) -> tuple[float, float]:
    sx = view.box_x + (x / view.effective_width) * view.box_w
    sy = view.box_y + (y / view.effective_height) * view.box_h
    return sx, sy


def screen_to_effective(x: float, y: float, view: ViewState) -> tuple[float, float]:
    ex = ((x - view.box_x) / view.box_w) * view.effective_width
    ey = ((y - view.box_y) / view.box_h) * view.effective_height
    return ex, ey


def rect_effective_to_screen(rect: Rect, view: ViewState) -> Rect:
    sx, sy = effective_to_screen(rect.x, rect.y, view)
    return Rect(
        sx, sy,
        rect.w / view.effective_width * view.box_w,
        rect.h / view.effective_height * view.box_h,
    )


def screen_to_original(
    x: float, y: float, view: ViewState, clamp: bool = True,
) -> tuple[float, float] | None:
    """Map a screen point to original space, or None when it is off the image."""
    rx = (x - view.box_x) / view.box_w
    ry = (y - view.box_y) / view.box_h
    if rx < 0 or rx > 1 or ry < 0 or ry > 1:
        if not clamp:
            return None
        rx = min(1.0, max(0.0, rx))
        ry = min(1.0, max(0.0, ry))
    return effective_to_original(
        rx * view.effective_width, ry * view.effective_height,
        view.rotation, view.image_width, view.image_height,
        view.flip_x, view.flip_y,
    )


def original_to_screen(x: float, y: float, view: ViewState) -> tuple[float, float]:
    ex, ey = original_to_effective(
        x, y, view.rotation, view.image_width, view.image_height, view.flip_x, view.flip_y
    )
    return effective_to_screen(ex, ey, view)


# =============================================================================
# Fitting and wrapping
# =============================================================================
def fit_contain(
    img_w: float, img_h: float, container_w: float, container_h: float, padding: float = 0.0,
) -> Rect:
    """Largest aspect-preserving rect for the image, centred in the padded container."""
    avail_w = max(1.0, container_w - padding * 2)
    avail_h = max(1.0, container_h - padding * 2)
    scale = min(avail_w / img_w, avail_h / img_h)
    w = img_w * scale
    h = img_h * scale
    return Rect((container_w - w) / 2, (container_h - h) / 2, w, h)


def wrap_signed(value: float, period: float) -> float:
    """Fold *value* into ``(-period / 2, period / 2]``."""
    if period <= 0:
        return value
    v = value % period
    if v > period / 2:
        v -= period
    return v
