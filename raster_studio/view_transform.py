"""
Zoom / pan / rotate / flip "camera" over one loaded image.

``ViewTransform`` owns the view parameters and derives the ``ViewState``
snapshot from them.  Consumers either pull the snapshot with
``get_view_state()`` or register a callback with ``subscribe()``; callbacks
fire after every mutation that actually changes the layout, so overlays
never need to poll.

This module is Qt-free and safe for worker import.
"""

import logging
from typing import Callable

from raster_studio.config import (
    VIEW_PADDING, ZOOM_MIN, ZOOM_MAX, ZOOM_STEP, WHEEL_ZOOM_STEP, ROTATIONS,
)
from raster_studio.geometry import (
    effective_size, fit_contain, original_to_effective, effective_to_original,
    screen_to_effective, effective_to_screen, screen_to_original, original_to_screen,
)
from raster_studio.models import ViewState

logger = logging.getLogger(__name__)

ViewListener = Callable[[ViewState | None], None]


def clamp_zoom(zoom: float) -> float:
    return max(ZOOM_MIN, min(ZOOM_MAX, zoom))


class ViewTransform:
    """View parameters for one image inside one container."""

    def __init__(self, image_width: int = 0, image_height: int = 0,
                 container_width: float = 0, container_height: float = 0,
                 padding: float = VIEW_PADDING):
        self._img_w = image_width
        self._img_h = image_height
        self._container_w = container_width
        self._container_h = container_height
        self._padding = padding

        self._zoom = 1.0
        self._pan_x = 0.0
        self._pan_y = 0.0
        self._rotation = 0
        self._flip_x = False
        self._flip_y = False

        self._listeners: list[ViewListener] = []
        self._last_state: ViewState | None = self._compute_state()

    # --- Read-only parameters ---

    @property
    def zoom(self) -> float:
        return self._zoom

    @property
    def pan(self) -> tuple[float, float]:
        return self._pan_x, self._pan_y

    @property
    def rotation(self) -> int:
        return self._rotation

    @property
    def flip_x(self) -> bool:
        return self._flip_x

    @property
    def flip_y(self) -> bool:
        return self._flip_y

    def has_image(self) -> bool:
        return self._img_w > 0 and self._img_h > 0

    # --- Subscription ---

    def subscribe(self, listener: ViewListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, force: bool = False):
        state = self._compute_state()
        changed = force or not (
            (state is None and self._last_state is None)
            or (state is not None and state.same_layout(self._last_state))
        )
        self._last_state = state
        if not changed:
            return
        for listener in list(self._listeners):
            listener(state)

    # --- Setup ---

    def set_image(self, width: int, height: int):
        """Load a new image size; the view is reset."""
        self._img_w = width
        self._img_h = height
        self._zoom = 1.0
        self._pan_x = self._pan_y = 0.0
        self._rotation = 0
        self._flip_x = self._flip_y = False
        logger.debug("View image set to %dx%d", width, height)
        self._publish(force=True)

    def clear_image(self):
        self.set_image(0, 0)

    def set_container_size(self, width: float, height: float):
        if (width, height) == (self._container_w, self._container_h):
            return
        self._container_w = width
        self._container_h = height
        self._pan_x, self._pan_y = self._clamp_pan(self._pan_x, self._pan_y)
        self._publish()

    # --- Public operations ---

    def zoom_in(self):
        self.set_zoom(self._zoom * ZOOM_STEP)

    def zoom_out(self):
        self.set_zoom(self._zoom / ZOOM_STEP)

    def set_zoom(self, zoom: float):
        self._zoom = clamp_zoom(zoom)
        self._pan_x, self._pan_y = self._clamp_pan(self._pan_x, self._pan_y)
        self._publish()

    def set_pan(self, x: float, y: float):
        self._pan_x, self._pan_y = self._clamp_pan(x, y)
        self._publish()

    def rotate_left_90(self):
        self._rotation = (self._rotation + 270) % 360
        self._publish()

    def rotate_right_90(self):
        self._rotation = (self._rotation + 90) % 360
        self._publish()

    def set_rotation(self, rotation: int):
        if rotation not in ROTATIONS:
            raise ValueError(f"rotation must be one of {ROTATIONS}, got {rotation!r}")
        self._rotation = rotation
        self._publish()

    def flip_horizontal(self):
        self._flip_x = not self._flip_x
        self._publish()

    def flip_vertical(self):
        self._flip_y = not self._flip_y
        self._publish()

    def fit(self):
        """Reset zoom and pan, keep rotation and flips."""
        self._zoom = 1.0
        self._pan_x = self._pan_y = 0.0
        self._publish()

    def reset(self):
        """Reset zoom, pan, rotation and flips."""
        self._zoom = 1.0
        self._pan_x = self._pan_y = 0.0
        self._rotation = 0
        self._flip_x = self._flip_y = False
        self._publish()

    def zoom_at(self, x: float, y: float, zoom_in: bool, step: float = WHEEL_ZOOM_STEP):
        """Zoom by *step* keeping the image point under (x, y) fixed."""
        base = self._base_rect()
        state = self._compute_state()
        if base is None or state is None:
            return
        rel_x = (x - state.box_x) / state.box_w
        rel_y = (y - state.box_y) / state.box_h

        new_zoom = clamp_zoom(self._zoom * step if zoom_in else self._zoom / step)
        new_w = base.w * new_zoom
        new_h = base.h * new_zoom
        centred_x = base.x + (base.w - new_w) / 2
        centred_y = base.y + (base.h - new_h) / 2

        self._zoom = new_zoom
        self._pan_x, self._pan_y = self._clamp_pan(
            x - centred_x - rel_x * new_w,
            y - centred_y - rel_y * new_h,
        )
        self._publish()

    def get_view_state(self) -> ViewState | None:
        """Snapshot of the current layout, or None without image/container."""
        return self._compute_state()

    # --- Coordinate mapping ---

    def original_to_effective(self, x: float, y: float) -> tuple[float, float]:
        return original_to_effective(x, y, self._rotation, self._img_w, self._img_h,
                                     self._flip_x, self._flip_y)

    def effective_to_original(self, x: float, y: float) -> tuple[float, float]:
        return effective_to_original(x, y, self._rotation, self._img_w, self._img_h,
                                     self._flip_x, self._flip_y)

    def effective_to_screen(self, x: float, y: float) -> tuple[float, float] | None:
        state = self._compute_state()
        return effective_to_screen(x, y, state) if state else None

    def screen_to_effective(self, x: float, y: float) -> tuple[float, float] | None:
        state = self._compute_state()
        return screen_to_effective(x, y, state) if state else None

    def screen_to_original(self, x: float, y: float, clamp: bool = True):
        state = self._compute_state()
        return screen_to_original(x, y, state, clamp) if state else None

    def original_to_screen(self, x: float, y: float) -> tuple[float, float] | None:
        state = self._compute_state()
        return original_to_screen(x, y, state) if state else None

    # --- Internals ---

    def _base_rect(self):
        if not self.has_image() or self._container_w <= 0 or self._container_h <= 0:
            return None
        eff_w, eff_h = effective_size(self._img_w, self._img_h, self._rotation)
        return fit_contain(eff_w, eff_h, self._container_w, self._container_h, self._padding)

    def _clamp_pan(self, x: float, y: float) -> tuple[float, float]:
        """Keep the zoomed box overlapping the container."""
        base = self._base_rect()
        if base is None:
            return x, y
        limit_x = (self._container_w + base.w * self._zoom) / 2
        limit_y = (self._container_h + base.h * self._zoom) / 2
        return max(-limit_x, min(limit_x, x)), max(-limit_y, min(limit_y, y))

    def _compute_state(self) -> ViewState | None:
        base = self._base_rect()
        if base is None:
            return None
        eff_w, eff_h = effective_size(self._img_w, self._img_h, self._rotation)
        box_w = base.w * self._zoom
        box_h = base.h * self._zoom
        return ViewState(
            container_width=self._container_w,
            container_height=self._container_h,
            rotation=self._rotation,
            image_width=self._img_w,
            image_height=self._img_h,
            effective_width=eff_w,
            effective_height=eff_h,
            box_x=base.x + (base.w - box_w) / 2 + self._pan_x,
            box_y=base.y + (base.h - box_h) / 2 + self._pan_y,
            box_w=box_w,
            box_h=box_h,
            flip_x=self._flip_x,
            flip_y=self._flip_y,
        )
