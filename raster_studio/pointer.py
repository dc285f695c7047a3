"""
Pointer handling for the viewer: drag-to-pan, wheel-zoom, touch pan.

Qt-free so the pan/zoom rules can be driven from tests.  The Qt widget
translates its events into these calls and uses the return values to
decide whether to accept an event.
"""

from raster_studio.config import WHEEL_DELTA_PER_TICK, WHEEL_ZOOM_STEP
from raster_studio.view_transform import ViewTransform

PRIMARY_BUTTON = 1


class PointerInteraction:
    """Translates raw pointer/wheel/touch input into view changes."""

    def __init__(self, view: ViewTransform):
        self._view = view
        self._dragging = False
        self._drag_start = (0.0, 0.0)
        self._pan_start = (0.0, 0.0)

    @property
    def dragging(self) -> bool:
        return self._dragging

    # --- Mouse / pen ---

    def pointer_down(self, x: float, y: float, button: int = PRIMARY_BUTTON) -> bool:
        """Start a pan drag; only the primary button pans."""
        if button != PRIMARY_BUTTON or not self._view.has_image():
            return False
        self._dragging = True
        self._drag_start = (x, y)
        self._pan_start = self._view.pan
        return True

    def pointer_move(self, x: float, y: float) -> bool:
        if not self._dragging:
            return False
        dx = x - self._drag_start[0]
        dy = y - self._drag_start[1]
        self._view.set_pan(self._pan_start[0] + dx, self._pan_start[1] + dy)
        return True

    def pointer_up(self) -> bool:
        was_dragging = self._dragging
        self._dragging = False
        return was_dragging

    def cancel(self):
        self._dragging = False

    # --- Wheel ---

    def wheel(self, x: float, y: float, delta_y: float) -> bool:
        """Zoom by one step per full wheel notch, proportionally for partial
        (trackpad) deltas; returns True if consumed."""
        if delta_y == 0 or not self._view.has_image():
            return False
        step = WHEEL_ZOOM_STEP ** (abs(delta_y) / WHEEL_DELTA_PER_TICK)
        self._view.zoom_at(x, y, zoom_in=delta_y > 0, step=step)
        return True

    # --- Touch ---

    def touch_begin(self, points: list[tuple[float, float]]) -> bool:
        if len(points) != 1:
            return False
        return self.pointer_down(points[0][0], points[0][1])

    def touch_move(self, points: list[tuple[float, float]]) -> bool:
        # Multi-touch is left alone: no pinch zoom in this layer
        if len(points) != 1:
            return False
        return self.pointer_move(points[0][0], points[0][1])

    def touch_end(self) -> bool:
        return self.pointer_up()

    @staticmethod
    def suppress_gesture() -> bool:
        """Native pinch/zoom gestures are always swallowed by the viewer."""
        return True
