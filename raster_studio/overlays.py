"""
Tool overlays painted on top of the ``CanvasViewer``.

Each overlay wraps one Qt-free session (crop, watermark, mask), paints
its screen-space feedback and turns mouse input into engine calls.  The
canvas asks the overlay first; a ``False`` return lets the press fall
through to panning.  ``changed`` fires after every edit so the window
can refresh previews and labels.
"""

from PyQt6.QtCore import QObject, QPointF, QRectF, Qt, pyqtSignal
from PyQt6.QtGui import QBrush, QColor, QPainter, QPainterPath, QPen, QPolygonF

from raster_studio.config import HANDLE_VISUAL_SIZE
from raster_studio.crop_geometry import MOVE, CropSession, handle_points
from raster_studio.geometry import effective_to_original, original_to_screen, screen_to_effective
from raster_studio.mask_paint import MaskSession
from raster_studio.models import Rect, ViewState
from raster_studio.watermark import WatermarkSession

_DIM = QColor(0, 0, 0, 140)

_HANDLE_CURSORS = {
    "nw": Qt.CursorShape.SizeFDiagCursor, "se": Qt.CursorShape.SizeFDiagCursor,
    "ne": Qt.CursorShape.SizeBDiagCursor, "sw": Qt.CursorShape.SizeBDiagCursor,
    "n": Qt.CursorShape.SizeVerCursor, "s": Qt.CursorShape.SizeVerCursor,
    "e": Qt.CursorShape.SizeHorCursor, "w": Qt.CursorShape.SizeHorCursor,
    MOVE: Qt.CursorShape.SizeAllCursor,
}


def to_original(x: float, y: float, state: ViewState) -> tuple[float, float]:
    """Screen point to original pixels without clamping to the image."""
    ex, ey = screen_to_effective(x, y, state)
    return effective_to_original(
        ex, ey, state.rotation, state.image_width, state.image_height, state.flip_x, state.flip_y
    )


def original_polygon(rect: Rect, state: ViewState) -> QPolygonF:
    """Screen polygon of an original-space rect (a rotated/flipped quad)."""
    corners = [
        (rect.x, rect.y), (rect.right, rect.y),
        (rect.right, rect.bottom), (rect.x, rect.bottom),
    ]
    return QPolygonF([QPointF(*original_to_screen(x, y, state)) for x, y in corners])


def image_box(state: ViewState) -> QRectF:
    return QRectF(state.box_x, state.box_y, state.box_w, state.box_h)


class ToolOverlay(QObject):
    """Base overlay: paints nothing and consumes nothing."""

    changed = pyqtSignal()

    def __init__(self, canvas, parent=None):
        super().__init__(parent)
        self.canvas = canvas

    def _state(self) -> ViewState | None:
        return self.canvas.view_state()

    def paint(self, painter: QPainter, state: ViewState):
        pass

    def mouse_press(self, x: float, y: float, modifiers) -> bool:
        return False

    def mouse_move(self, x: float, y: float, modifiers) -> bool:
        return False

    def mouse_release(self, x: float, y: float) -> bool:
        return False

    def cursor_at(self, x: float, y: float):
        return None


# =============================================================================
# Crop
# =============================================================================
class CropOverlay(ToolOverlay):
    """Dimmed surround, border, thirds, 8 handles and a size label."""

    def __init__(self, session: CropSession, canvas, parent=None):
        super().__init__(canvas, parent)
        self.session = session

    def paint(self, painter: QPainter, state: ViewState):
        editor = self.session.editor
        if editor is None:
            return
        screen = editor.screen_rect(state)
        crop_rect = QRectF(screen.x, screen.y, screen.w, screen.h)

        # Dim area outside crop
        outside = QPainterPath()
        outside.addRect(image_box(state))
        hole = QPainterPath()
        if editor.mode.is_circle:
            hole.addEllipse(crop_rect)
        else:
            hole.addRect(crop_rect)
        painter.fillPath(outside.subtracted(hole), _DIM)

        # Draw crop border
        painter.setBrush(Qt.BrushStyle.NoBrush)
        painter.setPen(QPen(QColor(255, 255, 255), 2))
        painter.drawRect(crop_rect)
        if editor.mode.is_circle:
            painter.setRenderHint(QPainter.RenderHint.Antialiasing)
            painter.drawEllipse(crop_rect)

        # Draw rule-of-thirds lines
        painter.setPen(QPen(QColor(255, 255, 255, 80), 1, Qt.PenStyle.DashLine))
        for i in range(1, 3):
            x = crop_rect.left() + crop_rect.width() * i / 3
            painter.drawLine(QPointF(x, crop_rect.top()), QPointF(x, crop_rect.bottom()))
            y = crop_rect.top() + crop_rect.height() * i / 3
            painter.drawLine(QPointF(crop_rect.left(), y), QPointF(crop_rect.right(), y))

        # Draw handles
        hs = HANDLE_VISUAL_SIZE
        painter.setPen(QPen(QColor(0, 0, 0), 1))
        painter.setBrush(QBrush(QColor(255, 255, 255)))
        for hx, hy in handle_points(screen).values():
            painter.drawRect(QRectF(hx - hs / 2, hy - hs / 2, hs, hs))

        # Draw crop size label (original pixels)
        painter.setPen(QColor(255, 255, 255))
        label = f"{int(editor.rect.w)} × {int(editor.rect.h)}"
        painter.drawText(
            crop_rect.adjusted(0, -20, 0, 0).toRect(),
            Qt.AlignmentFlag.AlignHCenter | Qt.AlignmentFlag.AlignBottom,
            label,
        )

    def mouse_press(self, x, y, modifiers) -> bool:
        editor, state = self.session.editor, self._state()
        if editor is None or state is None:
            return False
        return editor.begin_drag(x, y, state)

    def mouse_move(self, x, y, modifiers) -> bool:
        editor, state = self.session.editor, self._state()
        if editor is None or state is None or not editor.is_dragging:
            return False
        shift = bool(modifiers & Qt.KeyboardModifier.ShiftModifier)
        editor.drag_to(x, y, state, shift=shift)
        self.changed.emit()
        return True

    def mouse_release(self, x, y) -> bool:
        editor = self.session.editor
        if editor is None or not editor.is_dragging:
            return False
        editor.end_drag()
        self.session.commit()
        self.changed.emit()
        return True

    def cursor_at(self, x, y):
        editor, state = self.session.editor, self._state()
        if editor is None or state is None:
            return None
        if editor.is_dragging:
            return _HANDLE_CURSORS.get(editor.active_handle)
        return _HANDLE_CURSORS.get(editor.hit_test(x, y, state))


# =============================================================================
# Watermark
# =============================================================================
class WatermarkOverlay(ToolOverlay):
    """Outline of the single stamp; dragging moves the stamp or the tile grid."""

    def __init__(self, session: WatermarkSession, canvas, parent=None):
        super().__init__(canvas, parent)
        self.session = session

    def paint(self, painter: QPainter, state: ViewState):
        placement = self.session.placement
        if placement is None or placement.rule.mode == "tile":
            return
        rect = placement.rect()
        if rect is None:
            return
        painter.setBrush(Qt.BrushStyle.NoBrush)
        painter.setPen(QPen(QColor(255, 255, 255, 160), 1, Qt.PenStyle.DashLine))
        painter.drawPolygon(original_polygon(rect, state))

    def mouse_press(self, x, y, modifiers) -> bool:
        placement, state = self.session.placement, self._state()
        if placement is None or state is None:
            return False
        return placement.begin_drag(*to_original(x, y, state))

    def mouse_move(self, x, y, modifiers) -> bool:
        placement, state = self.session.placement, self._state()
        if placement is None or state is None or not placement.is_dragging:
            return False
        placement.drag_to(*to_original(x, y, state))
        self.changed.emit()
        return True

    def mouse_release(self, x, y) -> bool:
        placement = self.session.placement
        if placement is None or not placement.is_dragging:
            return False
        placement.end_drag()
        self.session.commit()
        self.changed.emit()
        return True

    def cursor_at(self, x, y):
        placement, state = self.session.placement, self._state()
        if placement is None or state is None:
            return None
        if placement.rule.mode == "tile":
            return Qt.CursorShape.SizeAllCursor
        rect = placement.rect()
        if rect is not None and rect.contains(*to_original(x, y, state)):
            return Qt.CursorShape.SizeAllCursor
        return None


# =============================================================================
# Mask
# =============================================================================
class MaskOverlay(ToolOverlay):
    """Brush outline under the pointer and the live rectangle preview."""

    def __init__(self, session: MaskSession, canvas, parent=None):
        super().__init__(canvas, parent)
        self.session = session
        self._hover: tuple[float, float] | None = None

    def paint(self, painter: QPainter, state: ViewState):
        engine = self.session.engine
        if engine is None:
            return
        painter.setRenderHint(QPainter.RenderHint.Antialiasing)
        if engine.rect_preview is not None:
            painter.setPen(QPen(QColor(255, 255, 255), 1, Qt.PenStyle.DashLine))
            painter.setBrush(QColor(255, 255, 255, 50))
            painter.drawPolygon(original_polygon(engine.rect_preview, state))
        if engine.tool == "brush" and self._hover is not None:
            r = engine.brush_size / 2
            painter.setBrush(Qt.BrushStyle.NoBrush)
            painter.setPen(QPen(QColor(255, 255, 255, 200), 1))
            painter.drawEllipse(QPointF(*self._hover), r, r)

    def mouse_press(self, x, y, modifiers) -> bool:
        engine, state = self.session.engine, self._state()
        if engine is None or state is None:
            return False
        if not image_box(state).contains(QPointF(x, y)):
            return False
        ox, oy = to_original(x, y, state)
        engine.pointer_down(ox, oy, state.scale)
        self.changed.emit()
        return True

    def mouse_move(self, x, y, modifiers) -> bool:
        engine, state = self.session.engine, self._state()
        if engine is None or state is None:
            return False
        self._hover = (x, y)
        if engine.is_painting:
            ox, oy = to_original(x, y, state)
            engine.pointer_move(ox, oy, state.scale)
            self.changed.emit()
        return True

    def mouse_release(self, x, y) -> bool:
        engine = self.session.engine
        if engine is None or not engine.is_painting:
            return False
        engine.pointer_up()
        self.session.commit()
        self.changed.emit()
        return True

    def cursor_at(self, x, y):
        if self.session.engine is None:
            return None
        return Qt.CursorShape.CrossCursor
