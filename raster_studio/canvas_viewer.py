"""
Canvas widget: draws one image through the view transform.

The widget owns a ``ViewTransform`` and a ``PointerInteraction``.  Every
view change repaints the background (checkerboard or solid), then the
image translated to the box centre, rotated, and mirrored in its own
axes.  An optional overlay (crop, watermark or mask tool) is painted on
top and gets the first chance at mouse input; whatever it does not
consume pans the view.
"""

from PyQt6.QtCore import QEvent, QRectF, Qt, pyqtSignal
from PyQt6.QtGui import (
    QBrush, QColor, QKeyEvent, QMouseEvent, QPainter, QPaintEvent, QPixmap,
    QResizeEvent, QWheelEvent,
)
from PyQt6.QtWidgets import QSizePolicy, QWidget

from raster_studio.config import CHECKER_DARK, CHECKER_LIGHT, CHECKER_SIZE
from raster_studio.models import ViewState
from raster_studio.pointer import PRIMARY_BUTTON, PointerInteraction
from raster_studio.view_transform import ViewTransform

_TOUCH_EVENTS = (
    QEvent.Type.TouchBegin, QEvent.Type.TouchUpdate,
    QEvent.Type.TouchEnd, QEvent.Type.TouchCancel,
)


def checker_tile(dark: bool, size: int = CHECKER_SIZE) -> QPixmap:
    """2x2-cell checkerboard tile used as a repeating brush."""
    light, darker = CHECKER_DARK if dark else CHECKER_LIGHT
    tile = QPixmap(size * 2, size * 2)
    tile.fill(QColor(light))
    painter = QPainter(tile)
    painter.fillRect(size, 0, size, size, QColor(darker))
    painter.fillRect(0, size, size, size, QColor(darker))
    painter.end()
    return tile


class CanvasViewer(QWidget):
    """Zoomable, rotatable image view with a pluggable tool overlay."""

    view_changed = pyqtSignal()

    def __init__(self, parent=None):
        super().__init__(parent)
        self.setMinimumSize(400, 300)
        self.setFocusPolicy(Qt.FocusPolicy.StrongFocus)
        self.setSizePolicy(QSizePolicy.Policy.Expanding, QSizePolicy.Policy.Expanding)
        self.setMouseTracking(True)
        self.setAttribute(Qt.WidgetAttribute.WA_AcceptTouchEvents, True)

        self.view = ViewTransform()
        self.pointer = PointerInteraction(self.view)
        self.view.subscribe(self._on_view_changed)

        self._pixmap: QPixmap | None = None
        self._overlay = None
        self._loading = False
        self._checkerboard = True
        self._dark = True
        self._tile = checker_tile(self._dark)
        self._pan_mode = False
        self._space_held = False

    # --- Image ---

    def set_loading(self, loading: bool):
        self._loading = loading
        self.update()

    def set_image(self, pixmap: QPixmap, img_w: int, img_h: int):
        """Show a new image; the view is reset."""
        self._loading = False
        self._pixmap = pixmap
        self.view.set_container_size(self.width(), self.height())
        self.view.set_image(img_w, img_h)

    def set_display_pixmap(self, pixmap: QPixmap):
        """Swap the drawn pixels (same size image) without touching the view."""
        self._pixmap = pixmap
        self.update()

    def has_image(self) -> bool:
        return self._pixmap is not None

    def clear(self):
        self._pixmap = None
        self.view.clear_image()
        self.update()

    def view_state(self) -> ViewState | None:
        return self.view.get_view_state()

    # --- Appearance / modes ---

    def set_overlay(self, overlay):
        """Install the active tool overlay (or None)."""
        self._overlay = overlay
        self.update()

    def set_dark(self, dark: bool):
        self._dark = dark
        self._tile = checker_tile(dark)
        self.update()

    def set_checkerboard(self, enabled: bool):
        self._checkerboard = enabled
        self.update()

    def set_pan_mode(self, enabled: bool):
        """While on, the primary button always pans and overlays are bypassed."""
        self._pan_mode = enabled
        self.unsetCursor()

    def _panning_forced(self) -> bool:
        return self._pan_mode or self._space_held

    def _on_view_changed(self, state):
        self.view_changed.emit()
        self.update()

    # --- Painting ---

    def paintEvent(self, event: QPaintEvent):
        painter = QPainter(self)
        painter.setRenderHint(QPainter.RenderHint.SmoothPixmapTransform)
        if self._checkerboard:
            painter.fillRect(self.rect(), QBrush(self._tile))
        else:
            painter.fillRect(self.rect(), QColor(30, 30, 30))

        state = self.view.get_view_state()
        if not self._pixmap or state is None:
            painter.setPen(QColor(128, 128, 128))
            msg = "Loading image…" if self._loading else "No image loaded"
            painter.drawText(self.rect(), Qt.AlignmentFlag.AlignCenter, msg)
            painter.end()
            return

        quarter_turn = state.rotation in (90, 270)
        draw_w = state.box_h if quarter_turn else state.box_w
        draw_h = state.box_w if quarter_turn else state.box_h

        painter.save()
        painter.translate(state.box_x + state.box_w / 2, state.box_y + state.box_h / 2)
        painter.rotate(state.rotation)
        painter.scale(-1 if state.flip_x else 1, -1 if state.flip_y else 1)
        painter.drawPixmap(
            QRectF(-draw_w / 2, -draw_h / 2, draw_w, draw_h),
            self._pixmap, QRectF(self._pixmap.rect()),
        )
        painter.restore()

        if self._overlay is not None:
            self._overlay.paint(painter, state)
        painter.end()

    def resizeEvent(self, event: QResizeEvent):
        self.view.set_container_size(self.width(), self.height())
        super().resizeEvent(event)

    # --- Mouse ---

    def mousePressEvent(self, event: QMouseEvent):
        if not self._pixmap:
            return
        pos = event.position()
        left = event.button() == Qt.MouseButton.LeftButton
        if left and self._overlay is not None and not self._panning_forced():
            if self._overlay.mouse_press(pos.x(), pos.y(), event.modifiers()):
                self.update()
                return
        button = PRIMARY_BUTTON if left else 0
        if self.pointer.pointer_down(pos.x(), pos.y(), button):
            self.setCursor(Qt.CursorShape.ClosedHandCursor)

    def mouseMoveEvent(self, event: QMouseEvent):
        pos = event.position()
        if self.pointer.dragging:
            self.pointer.pointer_move(pos.x(), pos.y())
            return
        if self._overlay is None or self._panning_forced():
            self.setCursor(Qt.CursorShape.OpenHandCursor if self._panning_forced() else Qt.CursorShape.ArrowCursor)
            return
        if self._overlay.mouse_move(pos.x(), pos.y(), event.modifiers()):
            self.update()
        cursor = self._overlay.cursor_at(pos.x(), pos.y())
        self.setCursor(cursor if cursor is not None else Qt.CursorShape.ArrowCursor)

    def mouseReleaseEvent(self, event: QMouseEvent):
        if event.button() != Qt.MouseButton.LeftButton:
            return
        if self.pointer.pointer_up():
            self.unsetCursor()
            return
        if self._overlay is not None and self._overlay.mouse_release(event.position().x(), event.position().y()):
            self.update()

    def wheelEvent(self, event: QWheelEvent):
        pos = event.position()
        if self.pointer.wheel(pos.x(), pos.y(), event.angleDelta().y()):
            event.accept()
        else:
            super().wheelEvent(event)

    # --- Keyboard (Space = temporary pan) ---

    def keyPressEvent(self, event: QKeyEvent):
        if event.key() == Qt.Key.Key_Space and not event.isAutoRepeat():
            self._space_held = True
            self.setCursor(Qt.CursorShape.OpenHandCursor)
            return
        super().keyPressEvent(event)

    def keyReleaseEvent(self, event: QKeyEvent):
        if event.key() == Qt.Key.Key_Space and not event.isAutoRepeat():
            self._space_held = False
            self.unsetCursor()
            return
        super().keyReleaseEvent(event)

    # --- Touch and gestures ---

    def event(self, event: QEvent) -> bool:
        """Swallow native pinch gestures; single-finger touch pans."""
        if event.type() == QEvent.Type.NativeGesture:
            event.accept()
            return self.pointer.suppress_gesture()
        if event.type() in _TOUCH_EVENTS:
            points = [(p.position().x(), p.position().y()) for p in event.points()]
            if event.type() == QEvent.Type.TouchBegin:
                self.pointer.touch_begin(points)
            elif event.type() == QEvent.Type.TouchUpdate:
                self.pointer.touch_move(points)
            else:
                self.pointer.touch_end()
            event.accept()
            return True
        return super().event(event)
