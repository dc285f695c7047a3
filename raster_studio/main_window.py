"""
Main application window.

Orchestrates image import, the shared canvas, the three tool sessions
(crop, watermark, mask) with their side panels, "apply to all", and
export of the current image or the whole list.
"""

import logging
from contextlib import contextmanager
from pathlib import Path

from PIL import Image
from PyQt6.QtWidgets import (
    QMainWindow, QWidget, QVBoxLayout, QHBoxLayout, QGridLayout,
    QListWidget, QListWidgetItem, QPushButton, QLabel, QFileDialog,
    QSplitter, QGroupBox, QMessageBox, QProgressDialog, QStatusBar,
    QToolBar, QCheckBox, QComboBox, QSpinBox, QSlider, QApplication,
    QScrollArea, QStackedWidget, QPlainTextEdit, QColorDialog, QDialog, QDialogButtonBox,
)
from PyQt6.QtCore import Qt, QTimer
from PyQt6.QtGui import QAction, QColor, QKeySequence, QPixmap, QShortcut

from raster_studio.config import (
    BLUR_RADIUS_MAX, BRUSH_SIZE_MAX, BRUSH_SIZE_MIN, CROP_RATIO_OPTIONS, IMAGE_EXTENSIONS,
    MOSAIC_STRENGTH_MAX, MOSAIC_STRENGTH_MIN, OUTPUT_FORMATS, PREVIEW_DELAY_MS,
    QUALITY_MAX, QUALITY_MIN, TILE_MAX, TILE_MIN, WATERMARK_PRESETS,
)
from raster_studio.canvas_viewer import CanvasViewer
from raster_studio.crop_geometry import CropSession
from raster_studio.errors import RasterStudioError, SurfaceUnavailableError
from raster_studio.export import TOOLS, ExportResult, export_item, preview_item, run_batch
from raster_studio.image_io import import_images, is_supported, open_image, write_output
from raster_studio.mask_paint import EffectParams, MaskSession
from raster_studio.models import ImageItem
from raster_studio.overlays import CropOverlay, MaskOverlay, WatermarkOverlay
from raster_studio.qt_helpers import ImageLoaderThread, pil_to_qpixmap, stop_loader
from raster_studio.settings import ExportSettings, load_settings, save_settings
from raster_studio.watermark import WatermarkSession

logger = logging.getLogger(__name__)

TOOL_LABELS = {"crop": "✂ Crop", "watermark": "💧 Watermark", "mask": "▦ Mask"}

PRESET_LABELS = {
    "lt": "↖", "t": "↑", "rt": "↗",
    "l": "←", "c": "•", "r": "→",
    "lb": "↙", "b": "↓", "rb": "↘",
}


@contextmanager
def signals_blocked(*widgets):
    """Update widgets programmatically without firing their change handlers."""
    for w in widgets:
        w.blockSignals(True)
    try:
        yield
    finally:
        for w in widgets:
            w.blockSignals(False)


def _set_color_button(btn: QPushButton, color: str):
    btn.setText(color)
    btn.setStyleSheet(f"QPushButton {{ background: {color}; color: #888; }}")


# =============================================================================
# Export preview dialog
# =============================================================================
class _PreviewDialog(QDialog):
    """Shows an encoded export result exactly as it would be written."""

    MAX_SIZE = (960, 720)

    def __init__(self, result: ExportResult, img: Image.Image, parent: QWidget | None = None):
        super().__init__(parent)
        self.setWindowTitle(f"Preview: {result.filename}")

        layout = QVBoxLayout(self)

        pixmap = pil_to_qpixmap(img)
        if pixmap.width() > self.MAX_SIZE[0] or pixmap.height() > self.MAX_SIZE[1]:
            pixmap = pixmap.scaled(
                *self.MAX_SIZE,
                Qt.AspectRatioMode.KeepAspectRatio,
                Qt.TransformationMode.SmoothTransformation,
            )
        image_label = QLabel()
        image_label.setPixmap(pixmap)
        image_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        image_label.setStyleSheet("background: #2b2b2b;")
        layout.addWidget(image_label)

        info = QLabel(
            f"{result.filename}  ·  {result.width}×{result.height} {result.format}"
            f"  ·  {len(result.data) / 1024:.0f} KB"
        )
        info.setStyleSheet("color: #aaa;")
        layout.addWidget(info)

        buttons = QDialogButtonBox(QDialogButtonBox.StandardButton.Close)
        export_btn = buttons.addButton("▶ Export", QDialogButtonBox.ButtonRole.AcceptRole)
        export_btn.setToolTip("Write this exact file to the output folder")
        buttons.accepted.connect(self.accept)
        buttons.rejected.connect(self.reject)
        layout.addWidget(buttons)


class MainWindow(QMainWindow):
    def __init__(self):
        super().__init__()
        self.setWindowTitle("Raster Studio")
        self.setMinimumSize(900, 500)

        # Screen-aware startup size, clamped to 80% of screen
        preferred_w, preferred_h = 1600, 1000
        screen = QApplication.primaryScreen()
        if screen is not None:
            avail = screen.availableGeometry()
            preferred_w = min(preferred_w, int(avail.width() * 0.8))
            preferred_h = min(preferred_h, int(avail.height() * 0.8))
        self.resize(preferred_w, preferred_h)

        self._items: list[ImageItem] = []
        self._current_index = -1
        self._tool = "crop"
        self._sessions = {
            "crop": CropSession(),
            "watermark": WatermarkSession(),
            "mask": MaskSession(),
        }
        self._settings = load_settings()
        self._output_root: Path | None = None
        self._loader: ImageLoaderThread | None = None
        self._base_image: Image.Image | None = None
        self._base_pixmap: QPixmap | None = None
        self._reviewed: set[str] = set()
        self._exported: set[str] = set()

        self._preview_timer = QTimer(self)
        self._preview_timer.setSingleShot(True)
        self._preview_timer.setInterval(PREVIEW_DELAY_MS)
        self._preview_timer.timeout.connect(self._refresh_preview)

        self._build_ui()
        self._set_tool("crop")
        self._update_button_states()

    # =========================================================================
    # UI construction
    # =========================================================================

    def _build_ui(self):
        self._canvas = CanvasViewer()
        self._canvas.view_changed.connect(self._update_view_label)
        self._overlays = {
            "crop": CropOverlay(self._sessions["crop"], self._canvas, self),
            "watermark": WatermarkOverlay(self._sessions["watermark"], self._canvas, self),
            "mask": MaskOverlay(self._sessions["mask"], self._canvas, self),
        }
        for overlay in self._overlays.values():
            overlay.changed.connect(self._on_overlay_changed)

        self._build_toolbar()
        self._build_view_toolbar()

        # --- Central layout ---
        central = QWidget()
        self.setCentralWidget(central)
        main_layout = QHBoxLayout(central)
        main_layout.setContentsMargins(4, 4, 4, 4)

        splitter = QSplitter(Qt.Orientation.Horizontal)
        main_layout.addWidget(splitter)
        splitter.addWidget(self._build_left_panel())
        splitter.addWidget(self._canvas)
        splitter.addWidget(self._build_right_panel())
        splitter.setSizes([200, 800, 260])

        # Status bar
        self._status = QStatusBar()
        self.setStatusBar(self._status)
        self._view_label = QLabel("")
        self._view_label.setStyleSheet("color: #aaa; padding: 0 6px;")
        self._status.addPermanentWidget(self._view_label)
        self._status.showMessage("Add images to begin.")

        # --- Keyboard Shortcuts ---
        QShortcut(QKeySequence(Qt.Key.Key_PageDown), self, self._next_image)
        QShortcut(QKeySequence(Qt.Key.Key_PageUp), self, self._prev_image)
        QShortcut(QKeySequence(QKeySequence.StandardKey.ZoomIn), self, self._canvas.view.zoom_in)
        QShortcut(QKeySequence(QKeySequence.StandardKey.ZoomOut), self, self._canvas.view.zoom_out)
        QShortcut(QKeySequence("Ctrl+0"), self, self._canvas.view.fit)
        QShortcut(QKeySequence("Ctrl+R"), self, self._canvas.view.rotate_right_90)
        QShortcut(QKeySequence("Ctrl+Shift+R"), self, self._canvas.view.rotate_left_90)

    def _build_toolbar(self):
        toolbar = QToolBar("Main")
        toolbar.setMovable(False)
        self.addToolBar(toolbar)

        act_add = QAction("📂 Add Images…", self)
        act_add.triggered.connect(self._add_images)
        toolbar.addAction(act_add)

        act_folder = QAction("📁 Add Folder…", self)
        act_folder.triggered.connect(self._add_folder)
        toolbar.addAction(act_folder)

        act_remove = QAction("➖ Remove", self)
        act_remove.setToolTip("Remove the selected image and its cached edits")
        act_remove.triggered.connect(self._remove_current)
        toolbar.addAction(act_remove)
        self._act_remove = act_remove

        act_clear = QAction("🗑 Clear All", self)
        act_clear.triggered.connect(self._clear_all)
        toolbar.addAction(act_clear)
        self._act_clear = act_clear

        toolbar.addSeparator()

        act_output = QAction("💾 Set Output Folder", self)
        act_output.triggered.connect(self._select_output_folder)
        toolbar.addAction(act_output)

        toolbar.addSeparator()

        act_preview = QAction("👁 Preview Export", self)
        act_preview.setToolTip("Show the current image exactly as it would be exported")
        act_preview.triggered.connect(self._preview_current)
        toolbar.addAction(act_preview)
        self._act_preview = act_preview

        act_export_current = QAction("▶ Export Current Image", self)
        act_export_current.triggered.connect(self._export_current)
        toolbar.addAction(act_export_current)
        self._act_export_current = act_export_current

        act_export_all = QAction("▶▶ Export All", self)
        act_export_all.setToolTip("Export every image with the active tool's per-image settings")
        act_export_all.triggered.connect(self._export_all)
        toolbar.addAction(act_export_all)
        self._act_export_all = act_export_all

    def _build_view_toolbar(self):
        toolbar = QToolBar("View")
        toolbar.setMovable(False)
        self.addToolBar(toolbar)
        view = self._canvas.view

        for label, slot in (
            ("＋", view.zoom_in), ("－", view.zoom_out), ("Fit", view.fit), ("Reset", view.reset),
            ("⟲ 90°", view.rotate_left_90), ("⟳ 90°", view.rotate_right_90),
            ("⇆ Flip", view.flip_horizontal), ("⇅ Flip", view.flip_vertical),
        ):
            act = QAction(label, self)
            act.triggered.connect(slot)
            toolbar.addAction(act)

        toolbar.addSeparator()

        act_pan = QAction("✋ Pan", self)
        act_pan.setCheckable(True)
        act_pan.setToolTip("Drag to pan instead of editing (hold Space for the same)")
        act_pan.toggled.connect(self._canvas.set_pan_mode)
        toolbar.addAction(act_pan)

        self._checker_box = QCheckBox("Checkerboard")
        self._checker_box.setChecked(True)
        self._checker_box.setStyleSheet("QCheckBox { padding: 4px 8px; }")
        self._checker_box.toggled.connect(self._canvas.set_checkerboard)
        toolbar.addWidget(self._checker_box)

        self._dark_box = QCheckBox("Dark")
        self._dark_box.setChecked(True)
        self._dark_box.setStyleSheet("QCheckBox { padding: 4px 8px; }")
        self._dark_box.toggled.connect(self._canvas.set_dark)
        toolbar.addWidget(self._dark_box)

    def _build_left_panel(self) -> QWidget:
        left_panel = QWidget()
        left_layout = QVBoxLayout(left_panel)
        left_layout.setContentsMargins(0, 0, 0, 0)

        left_layout.addWidget(QLabel("Images:"))
        self._image_list = QListWidget()
        self._image_list.currentRowChanged.connect(self._on_image_selected)
        left_layout.addWidget(self._image_list)

        nav_row = QHBoxLayout()
        self._btn_prev = QPushButton("← Prev")
        self._btn_prev.clicked.connect(self._prev_image)
        nav_row.addWidget(self._btn_prev)
        self._btn_next = QPushButton("Next →")
        self._btn_next.clicked.connect(self._next_image)
        nav_row.addWidget(self._btn_next)
        left_layout.addLayout(nav_row)

        self._counter_label = QLabel("")
        self._counter_label.setStyleSheet("color: #aaa; font-size: 8pt; padding: 2px;")
        left_layout.addWidget(self._counter_label)

        return left_panel

    def _build_right_panel(self) -> QWidget:
        inner = QWidget()
        inner_layout = QVBoxLayout(inner)
        inner_layout.setContentsMargins(0, 0, 0, 0)

        inner_layout.addWidget(self._build_tool_group())

        self._tool_stack = QStackedWidget()
        self._tool_stack.addWidget(self._build_crop_panel())
        self._tool_stack.addWidget(self._build_watermark_panel())
        self._tool_stack.addWidget(self._build_mask_panel())
        inner_layout.addWidget(self._tool_stack)

        self._btn_apply_all = QPushButton("📋 Apply to All Images")
        self._btn_apply_all.setToolTip("Use the current image's settings for every image, replacing their own edits")
        self._btn_apply_all.clicked.connect(self._apply_to_all)
        inner_layout.addWidget(self._btn_apply_all)

        inner_layout.addWidget(self._build_export_group())
        inner_layout.addWidget(self._build_shortcuts_group())
        inner_layout.addStretch()

        # Scroll area wraps the inner widget so the panel can shrink
        scroll = QScrollArea()
        scroll.setWidgetResizable(True)
        scroll.setWidget(inner)
        scroll.setHorizontalScrollBarPolicy(Qt.ScrollBarPolicy.ScrollBarAlwaysOff)
        scroll.setFrameShape(scroll.Shape.NoFrame)

        right_panel = QWidget()
        right_panel.setFixedWidth(270)
        right_layout = QVBoxLayout(right_panel)
        right_layout.setContentsMargins(4, 0, 0, 0)
        right_layout.addWidget(scroll)
        return right_panel

    def _build_tool_group(self) -> QGroupBox:
        group = QGroupBox("Tool")
        layout = QHBoxLayout(group)
        self._tool_buttons: dict[str, QPushButton] = {}
        for tool in TOOLS:
            btn = QPushButton(TOOL_LABELS[tool])
            btn.setCheckable(True)
            btn.clicked.connect(lambda checked, t=tool: self._set_tool(t))
            layout.addWidget(btn)
            self._tool_buttons[tool] = btn
        return group

    # --- Crop panel ---

    def _build_crop_panel(self) -> QGroupBox:
        group = QGroupBox("Crop Ratio")
        layout = QVBoxLayout(group)

        grid = QGridLayout()
        self._ratio_buttons: dict[str, QPushButton] = {}
        for i, (value, _ratio, label) in enumerate(CROP_RATIO_OPTIONS):
            btn = QPushButton(label)
            btn.setCheckable(True)
            btn.clicked.connect(lambda checked, v=value: self._on_crop_mode_selected(v))
            grid.addWidget(btn, i // 2, i % 2)
            self._ratio_buttons[value] = btn
        layout.addLayout(grid)

        custom_row = QHBoxLayout()
        custom_row.addWidget(QLabel("Custom:"))
        self._custom_w = QSpinBox()
        self._custom_w.setRange(1, 100)
        self._custom_w.setValue(3)
        custom_row.addWidget(self._custom_w)
        custom_row.addWidget(QLabel(":"))
        self._custom_h = QSpinBox()
        self._custom_h.setRange(1, 100)
        self._custom_h.setValue(2)
        custom_row.addWidget(self._custom_h)
        self._custom_w.valueChanged.connect(self._on_custom_ratio_changed)
        self._custom_h.valueChanged.connect(self._on_custom_ratio_changed)
        layout.addLayout(custom_row)

        self._crop_info_label = QLabel("Crop: —")
        self._crop_info_label.setWordWrap(True)
        layout.addWidget(self._crop_info_label)

        btn_reset = QPushButton("🎯 Reset Crop")
        btn_reset.setToolTip("Re-centre the crop for the current ratio")
        btn_reset.clicked.connect(self._reset_crop)
        layout.addWidget(btn_reset)
        return group

    # --- Watermark panel ---

    def _build_watermark_panel(self) -> QGroupBox:
        group = QGroupBox("Watermark")
        layout = QVBoxLayout(group)

        kind_row = QHBoxLayout()
        kind_row.addWidget(QLabel("Type:"))
        self._wm_kind = QComboBox()
        self._wm_kind.addItem("Text", "text")
        self._wm_kind.addItem("Logo image", "image")
        kind_row.addWidget(self._wm_kind)
        layout.addLayout(kind_row)

        self._wm_text = QPlainTextEdit()
        self._wm_text.setMaximumHeight(64)
        layout.addWidget(self._wm_text)

        font_row = QHBoxLayout()
        font_row.addWidget(QLabel("Size:"))
        self._wm_font_size = QSpinBox()
        self._wm_font_size.setRange(8, 400)
        font_row.addWidget(self._wm_font_size)
        self._wm_bold = QCheckBox("Bold")
        font_row.addWidget(self._wm_bold)
        btn_font = QPushButton("Font…")
        btn_font.clicked.connect(self._select_font)
        font_row.addWidget(btn_font)
        layout.addLayout(font_row)

        color_row = QHBoxLayout()
        color_row.addWidget(QLabel("Colour:"))
        self._wm_color = QPushButton()
        self._wm_color.clicked.connect(lambda: self._pick_watermark_color("color"))
        color_row.addWidget(self._wm_color)
        self._wm_align = QComboBox()
        for label, value in (("Left", "left"), ("Center", "center"), ("Right", "right")):
            self._wm_align.addItem(label, value)
        color_row.addWidget(self._wm_align)
        layout.addLayout(color_row)

        stroke_row = QHBoxLayout()
        self._wm_stroke = QCheckBox("Stroke")
        stroke_row.addWidget(self._wm_stroke)
        self._wm_stroke_width = QSpinBox()
        self._wm_stroke_width.setRange(1, 40)
        stroke_row.addWidget(self._wm_stroke_width)
        self._wm_stroke_color = QPushButton()
        self._wm_stroke_color.clicked.connect(lambda: self._pick_watermark_color("stroke_color"))
        stroke_row.addWidget(self._wm_stroke_color)
        layout.addLayout(stroke_row)

        logo_row = QHBoxLayout()
        btn_logo = QPushButton("Logo…")
        btn_logo.setFixedWidth(70)
        btn_logo.clicked.connect(self._select_logo)
        logo_row.addWidget(btn_logo)
        self._wm_logo_scale = QSpinBox()
        self._wm_logo_scale.setRange(1, 1000)
        self._wm_logo_scale.setSuffix("%")
        logo_row.addWidget(self._wm_logo_scale)
        self._wm_logo_label = QLabel("No logo")
        self._wm_logo_label.setStyleSheet("color: #888; font-size: 8pt;")
        logo_row.addWidget(self._wm_logo_label, stretch=1)
        layout.addLayout(logo_row)

        opacity_row = QHBoxLayout()
        opacity_row.addWidget(QLabel("Opacity:"))
        self._wm_opacity = QSlider(Qt.Orientation.Horizontal)
        self._wm_opacity.setRange(0, 100)
        opacity_row.addWidget(self._wm_opacity, stretch=1)
        self._wm_opacity_label = QLabel("")
        self._wm_opacity_label.setFixedWidth(28)
        opacity_row.addWidget(self._wm_opacity_label)
        layout.addLayout(opacity_row)

        angle_row = QHBoxLayout()
        angle_row.addWidget(QLabel("Rotate:"))
        self._wm_rotation = QSpinBox()
        self._wm_rotation.setRange(-180, 180)
        self._wm_rotation.setSuffix("°")
        angle_row.addWidget(self._wm_rotation)
        angle_row.addWidget(QLabel("Margin:"))
        self._wm_margin = QSpinBox()
        self._wm_margin.setRange(0, 2000)
        self._wm_margin.setSuffix(" px")
        angle_row.addWidget(self._wm_margin)
        layout.addLayout(angle_row)

        mode_row = QHBoxLayout()
        mode_row.addWidget(QLabel("Layout:"))
        self._wm_mode = QComboBox()
        self._wm_mode.addItem("Single", "single")
        self._wm_mode.addItem("Tile", "tile")
        mode_row.addWidget(self._wm_mode)
        layout.addLayout(mode_row)

        tile_row = QHBoxLayout()
        tile_row.addWidget(QLabel("Rows:"))
        self._wm_rows = QSpinBox()
        self._wm_rows.setRange(TILE_MIN, TILE_MAX)
        tile_row.addWidget(self._wm_rows)
        tile_row.addWidget(QLabel("Cols:"))
        self._wm_cols = QSpinBox()
        self._wm_cols.setRange(TILE_MIN, TILE_MAX)
        tile_row.addWidget(self._wm_cols)
        self._wm_stagger = QCheckBox("Stagger")
        tile_row.addWidget(self._wm_stagger)
        layout.addLayout(tile_row)

        preset_grid = QGridLayout()
        for i, preset in enumerate(WATERMARK_PRESETS):
            btn = QPushButton(PRESET_LABELS[preset])
            btn.setToolTip("Snap the watermark to this position")
            btn.clicked.connect(lambda checked, p=preset: self._on_watermark_preset(p))
            preset_grid.addWidget(btn, i // 3, i % 3)
        layout.addLayout(preset_grid)

        self._wm_style_widgets = [
            self._wm_kind, self._wm_text, self._wm_font_size, self._wm_bold, self._wm_align,
            self._wm_stroke, self._wm_stroke_width, self._wm_logo_scale, self._wm_opacity,
            self._wm_rotation, self._wm_margin, self._wm_mode, self._wm_rows, self._wm_cols,
            self._wm_stagger,
        ]
        self._wm_kind.currentIndexChanged.connect(self._on_watermark_changed)
        self._wm_text.textChanged.connect(self._on_watermark_changed)
        self._wm_font_size.valueChanged.connect(self._on_watermark_changed)
        self._wm_bold.toggled.connect(self._on_watermark_changed)
        self._wm_align.currentIndexChanged.connect(self._on_watermark_changed)
        self._wm_stroke.toggled.connect(self._on_watermark_changed)
        self._wm_stroke_width.valueChanged.connect(self._on_watermark_changed)
        self._wm_logo_scale.valueChanged.connect(self._on_watermark_changed)
        self._wm_opacity.valueChanged.connect(self._on_watermark_changed)
        self._wm_rotation.valueChanged.connect(self._on_watermark_changed)
        self._wm_margin.valueChanged.connect(self._on_watermark_changed)
        self._wm_mode.currentIndexChanged.connect(self._on_watermark_changed)
        self._wm_rows.valueChanged.connect(self._on_watermark_changed)
        self._wm_cols.valueChanged.connect(self._on_watermark_changed)
        self._wm_stagger.toggled.connect(self._on_watermark_changed)

        self._sync_watermark_controls()
        return group

    # --- Mask panel ---

    def _build_mask_panel(self) -> QGroupBox:
        group = QGroupBox("Privacy Mask")
        layout = QVBoxLayout(group)

        tool_row = QHBoxLayout()
        self._mask_tool_buttons: dict[str, QPushButton] = {}
        for tool, label in (("brush", "🖌 Brush"), ("rect", "▭ Rectangle")):
            btn = QPushButton(label)
            btn.setCheckable(True)
            btn.clicked.connect(lambda checked, t=tool: self._on_mask_tool_selected(t))
            tool_row.addWidget(btn)
            self._mask_tool_buttons[tool] = btn
        layout.addLayout(tool_row)

        effect_row = QHBoxLayout()
        effect_row.addWidget(QLabel("Effect:"))
        self._mask_effect = QComboBox()
        self._mask_effect.addItem("Mosaic", "mosaic")
        self._mask_effect.addItem("Blur", "blur")
        effect_row.addWidget(self._mask_effect)
        layout.addLayout(effect_row)

        self._mask_strength, self._mask_strength_label, strength_row = self._slider_row("Strength:", MOSAIC_STRENGTH_MIN, MOSAIC_STRENGTH_MAX)
        layout.addLayout(strength_row)
        self._mask_blur, self._mask_blur_label, blur_row = self._slider_row("Blur:", 1, BLUR_RADIUS_MAX)
        layout.addLayout(blur_row)
        self._mask_brush, self._mask_brush_label, brush_row = self._slider_row("Brush:", BRUSH_SIZE_MIN, BRUSH_SIZE_MAX)
        layout.addLayout(brush_row)

        btn_clear = QPushButton("🧹 Clear Mask")
        btn_clear.clicked.connect(self._clear_mask)
        layout.addWidget(btn_clear)

        self._mask_effect.currentIndexChanged.connect(self._on_mask_effect_changed)
        self._mask_strength.valueChanged.connect(self._on_mask_effect_changed)
        self._mask_blur.valueChanged.connect(self._on_mask_effect_changed)
        self._mask_brush.valueChanged.connect(self._on_brush_size_changed)

        self._sync_mask_controls()
        return group

    def _slider_row(self, title: str, lo: int, hi: int) -> tuple[QSlider, QLabel, QHBoxLayout]:
        row = QHBoxLayout()
        row.addWidget(QLabel(title))
        slider = QSlider(Qt.Orientation.Horizontal)
        slider.setRange(lo, hi)
        row.addWidget(slider, stretch=1)
        label = QLabel(str(lo))
        label.setFixedWidth(28)
        row.addWidget(label)
        slider.valueChanged.connect(lambda v: label.setText(str(v)))
        return slider, label, row

    # --- Export settings ---

    def _build_export_group(self) -> QGroupBox:
        export_group = QGroupBox("Export Settings")
        export_layout = QVBoxLayout(export_group)

        fmt_row = QHBoxLayout()
        fmt_row.addWidget(QLabel("Format:"))
        self._export_format = QComboBox()
        self._export_format.addItems(OUTPUT_FORMATS)
        self._export_format.setCurrentText(self._settings.format)
        fmt_row.addWidget(self._export_format)
        export_layout.addLayout(fmt_row)

        quality_row = QHBoxLayout()
        quality_row.addWidget(QLabel("Quality:"))
        self._quality_slider = QSlider(Qt.Orientation.Horizontal)
        self._quality_slider.setRange(QUALITY_MIN, QUALITY_MAX)
        self._quality_slider.setValue(self._settings.quality)
        quality_row.addWidget(self._quality_slider, stretch=1)
        self._quality_label = QLabel(str(self._settings.quality))
        self._quality_label.setFixedWidth(24)
        quality_row.addWidget(self._quality_label)
        self._quality_slider.valueChanged.connect(lambda v: self._quality_label.setText(str(v)))
        export_layout.addLayout(quality_row)
        self._quality_row_widgets = [
            quality_row.itemAt(i).widget()
            for i in range(quality_row.count()) if quality_row.itemAt(i).widget()
        ]

        self._optimize_web = QCheckBox("Optimize for web")
        self._optimize_web.setChecked(self._settings.optimize_for_web)
        export_layout.addWidget(self._optimize_web)

        self._export_format.currentTextChanged.connect(self._on_export_settings_changed)
        self._quality_slider.valueChanged.connect(self._on_export_settings_changed)
        self._optimize_web.toggled.connect(self._on_export_settings_changed)

        self._on_export_settings_changed()
        return export_group

    def _on_export_settings_changed(self, *args):
        """Read the export controls; quality is hidden for lossless PNG."""
        fmt = self._export_format.currentText()
        for w in self._quality_row_widgets:
            w.setVisible(fmt != "PNG")
        self._optimize_web.setVisible(fmt != "PNG")
        self._settings = ExportSettings(fmt, self._quality_slider.value(), self._optimize_web.isChecked())

    def _build_shortcuts_group(self) -> QGroupBox:
        help_group = QGroupBox("Shortcuts")
        help_layout = QVBoxLayout(help_group)
        help_label = QLabel(
            "Wheel: zoom at cursor\n"
            "Drag outside overlay: pan\n"
            "Space+drag: pan\n"
            "Shift+drag handle: keep crop ratio\n"
            "\n"
            "Page Down: next image\n"
            "Page Up: prev image\n"
            "Ctrl + / Ctrl -: zoom\n"
            "Ctrl+0: fit\n"
            "Ctrl+R / Ctrl+Shift+R: rotate"
        )
        help_label.setStyleSheet("color: #888; font-size: 8pt;")
        help_layout.addWidget(help_label)
        return help_group

    # =========================================================================
    # Control sync (session -> widgets)
    # =========================================================================

    def _sync_crop_controls(self):
        session = self._sessions["crop"]
        for value, btn in self._ratio_buttons.items():
            btn.setChecked(value == session.mode_value)
        if session.custom_ratio_w and session.custom_ratio_h:
            with signals_blocked(self._custom_w, self._custom_h):
                self._custom_w.setValue(session.custom_ratio_w)
                self._custom_h.setValue(session.custom_ratio_h)

    def _sync_watermark_controls(self):
        style = self._sessions["watermark"].style
        with signals_blocked(*self._wm_style_widgets):
            self._wm_kind.setCurrentIndex(self._wm_kind.findData(style.kind))
            if self._wm_text.toPlainText() != style.text:
                self._wm_text.setPlainText(style.text)
            self._wm_font_size.setValue(style.font_size)
            self._wm_bold.setChecked(style.bold)
            self._wm_align.setCurrentIndex(self._wm_align.findData(style.align))
            self._wm_stroke.setChecked(style.stroke_enabled)
            self._wm_stroke_width.setValue(style.stroke_width)
            self._wm_logo_scale.setValue(int(round(style.logo_scale * 100)))
            self._wm_opacity.setValue(style.opacity)
            self._wm_rotation.setValue(int(round(style.rotation)))
            self._wm_margin.setValue(style.margin)
            self._wm_mode.setCurrentIndex(self._wm_mode.findData(style.mode))
            self._wm_rows.setValue(style.tile_rows)
            self._wm_cols.setValue(style.tile_cols)
            self._wm_stagger.setChecked(style.tile_stagger)
        self._wm_opacity_label.setText(str(style.opacity))
        _set_color_button(self._wm_color, style.color)
        _set_color_button(self._wm_stroke_color, style.stroke_color)
        if style.logo is None:
            self._wm_logo_label.setText("No logo")

    def _sync_mask_controls(self):
        session = self._sessions["mask"]
        for tool, btn in self._mask_tool_buttons.items():
            btn.setChecked(tool == session.tool)
        with signals_blocked(self._mask_effect, self._mask_strength, self._mask_blur, self._mask_brush):
            self._mask_effect.setCurrentIndex(self._mask_effect.findData(session.params.effect))
            self._mask_strength.setValue(session.params.strength)
            self._mask_blur.setValue(int(round(session.params.blur_radius)))
            self._mask_brush.setValue(int(round(session.brush_size)))
        for slider, label in (
            (self._mask_strength, self._mask_strength_label),
            (self._mask_blur, self._mask_blur_label),
            (self._mask_brush, self._mask_brush_label),
        ):
            label.setText(str(slider.value()))

    # =========================================================================
    # Tool switching and previews
    # =========================================================================

    def _set_tool(self, tool: str):
        self._tool = tool
        for t, btn in self._tool_buttons.items():
            btn.setChecked(t == tool)
        self._tool_stack.setCurrentIndex(TOOLS.index(tool))
        self._canvas.set_overlay(self._overlays[tool])
        self._activate_tool_session()
        self._refresh_preview()
        self._update_crop_info()

    def _current_item(self) -> ImageItem | None:
        if 0 <= self._current_index < len(self._items):
            return self._items[self._current_index]
        return None

    def _activate_tool_session(self):
        """Point the active tool's session at the displayed image."""
        item = self._current_item()
        if item is None or self._base_image is None:
            return
        session = self._sessions[self._tool]
        if session.active_id == item.id:
            return
        if self._tool == "mask":
            try:
                session.activate(item, self._base_image)
            except SurfaceUnavailableError as e:
                self._status.showMessage(f"Mask unavailable: {e}")
                return
            self._sync_mask_controls()
        elif self._tool == "watermark":
            session.activate(item)
            self._sync_watermark_controls()
        else:
            session.activate(item)
            self._sync_crop_controls()

    def _schedule_preview(self):
        self._preview_timer.start()

    def _refresh_preview(self):
        """Redraw the canvas pixels: watermark / mask previews render at native size."""
        if self._base_image is None or self._base_pixmap is None:
            return
        try:
            if self._tool == "watermark" and self._sessions["watermark"].placement is not None:
                preview = self._sessions["watermark"].placement.render(self._base_image)
                self._canvas.set_display_pixmap(pil_to_qpixmap(preview))
            elif self._tool == "mask" and self._sessions["mask"].engine is not None:
                preview = self._sessions["mask"].engine.composite()
                self._canvas.set_display_pixmap(pil_to_qpixmap(preview))
            else:
                self._canvas.set_display_pixmap(self._base_pixmap)
        except RasterStudioError as e:
            self._status.showMessage(f"Preview failed: {e}")

    def _on_overlay_changed(self):
        if self._tool == "crop":
            self._update_crop_info()
        else:
            self._schedule_preview()

    def _update_view_label(self):
        view = self._canvas.view
        if not view.has_image():
            self._view_label.setText("")
            return
        flips = ("  ⇆" if view.flip_x else "") + ("  ⇅" if view.flip_y else "")
        self._view_label.setText(f"{round(view.zoom * 100)}%  ·  {view.rotation}°{flips}")

    # =========================================================================
    # Crop controls
    # =========================================================================

    def _on_crop_mode_selected(self, value: str):
        for v, btn in self._ratio_buttons.items():
            btn.setChecked(v == value)
        session = self._sessions["crop"]
        if value == "custom":
            session.set_mode(value, self._custom_w.value(), self._custom_h.value())
        else:
            session.set_mode(value)
        self._canvas.update()
        self._update_crop_info()

    def _on_custom_ratio_changed(self, *args):
        if self._sessions["crop"].mode_value == "custom":
            self._on_crop_mode_selected("custom")

    def _reset_crop(self):
        session = self._sessions["crop"]
        session.set_mode(session.mode_value, session.custom_ratio_w, session.custom_ratio_h)
        self._canvas.update()
        self._update_crop_info()

    def _update_crop_info(self):
        editor = self._sessions["crop"].editor
        item = self._current_item()
        if editor is None or item is None or self._sessions["crop"].active_id != item.id:
            self._crop_info_label.setText("Crop: —")
            return
        r = editor.rect
        self._crop_info_label.setText(
            f"Crop: {int(r.w)}×{int(r.h)}\n"
            f"Position: ({int(r.x)}, {int(r.y)})\n"
            f"Mode: {editor.mode.label}"
        )

    # =========================================================================
    # Watermark controls
    # =========================================================================

    def _on_watermark_changed(self, *args):
        self._wm_opacity_label.setText(str(self._wm_opacity.value()))
        self._sessions["watermark"].update_style(
            kind=self._wm_kind.currentData(),
            text=self._wm_text.toPlainText(),
            font_size=self._wm_font_size.value(),
            bold=self._wm_bold.isChecked(),
            align=self._wm_align.currentData(),
            stroke_enabled=self._wm_stroke.isChecked(),
            stroke_width=self._wm_stroke_width.value(),
            logo_scale=self._wm_logo_scale.value() / 100.0,
            opacity=self._wm_opacity.value(),
            rotation=float(self._wm_rotation.value()),
            margin=self._wm_margin.value(),
            mode=self._wm_mode.currentData(),
            tile_rows=self._wm_rows.value(),
            tile_cols=self._wm_cols.value(),
            tile_stagger=self._wm_stagger.isChecked(),
        )
        self._schedule_preview()

    def _pick_watermark_color(self, field_name: str):
        session = self._sessions["watermark"]
        current = QColor(getattr(session.style, field_name))
        color = QColorDialog.getColor(current, self, "Select Colour")
        if not color.isValid():
            return
        session.update_style(**{field_name: color.name()})
        self._sync_watermark_controls()
        self._schedule_preview()

    def _select_font(self):
        path, _ = QFileDialog.getOpenFileName(
            self, "Select Font", str(Path.home()), "Fonts (*.ttf *.otf *.ttc)"
        )
        if not path:
            return
        self._sessions["watermark"].update_style(font_path=path)
        self._schedule_preview()

    def _select_logo(self):
        """Open file dialog to select a logo image."""
        exts = " ".join(f"*{e}" for e in sorted(IMAGE_EXTENSIONS))
        path, _ = QFileDialog.getOpenFileName(self, "Select Logo File", str(Path.home()), f"Images ({exts})")
        if not path:
            return
        try:
            logo = open_image(Path(path))
        except RasterStudioError as e:
            QMessageBox.warning(self, "Logo Error", f"Failed to load logo:\n{e}")
            return
        self._sessions["watermark"].update_style(kind="image", logo=logo)
        self._sync_watermark_controls()
        self._wm_logo_label.setText(Path(path).name)
        self._schedule_preview()

    def _on_watermark_preset(self, preset: str):
        session = self._sessions["watermark"]
        if session.placement is None:
            return
        session.placement.set_preset(preset)
        session.commit()
        self._canvas.update()
        self._schedule_preview()

    # =========================================================================
    # Mask controls
    # =========================================================================

    def _on_mask_tool_selected(self, tool: str):
        for t, btn in self._mask_tool_buttons.items():
            btn.setChecked(t == tool)
        self._sessions["mask"].set_tool(tool)
        self._canvas.update()

    def _on_mask_effect_changed(self, *args):
        params = EffectParams(
            self._mask_effect.currentData(), self._mask_strength.value(), self._mask_blur.value()
        )
        self._sessions["mask"].set_effect(params)
        self._schedule_preview()

    def _on_brush_size_changed(self, size: int):
        self._sessions["mask"].set_brush_size(size)
        self._canvas.update()

    def _clear_mask(self):
        self._sessions["mask"].clear_mask()
        self._schedule_preview()

    # =========================================================================
    # Image list
    # =========================================================================

    def _add_images(self):
        exts = " ".join(f"*{e}" for e in sorted(IMAGE_EXTENSIONS))
        files, _ = QFileDialog.getOpenFileNames(self, "Add Images", str(Path.home()), f"Images ({exts})")
        if files:
            self._add_paths([Path(f) for f in files])

    def _add_folder(self):
        folder = QFileDialog.getExistingDirectory(self, "Add Folder", str(Path.home()))
        if not folder:
            return
        files = sorted(
            [f for f in Path(folder).iterdir() if f.is_file() and is_supported(f)],
            key=lambda f: f.name.lower(),
        )
        if not files:
            self._status.showMessage("No supported images found in the selected folder.")
            return
        self._add_paths(files)

    def _add_paths(self, paths: list[Path]):
        self._status.showMessage("Reading images…")
        QApplication.processEvents()

        items, errors = import_images(paths)
        first_new = len(self._items)
        for item in items:
            self._items.append(item)
            self._image_list.addItem(QListWidgetItem(self._list_text(item)))

        if errors:
            self._show_failures("Some images were skipped", [(p.name, reason) for p, reason in errors])
        if items and self._current_index < 0:
            self._image_list.setCurrentRow(first_new)
        self._status.showMessage(f"Added {len(items)} image(s).")
        self._update_button_states()
        self._update_counter()

    def _remove_current(self):
        """Remove the selected image and purge it from every tool cache."""
        row = self._current_index
        item = self._current_item()
        if item is None:
            return
        for session in self._sessions.values():
            session.remove(item.id)
        self._reviewed.discard(item.id)
        self._exported.discard(item.id)
        del self._items[row]
        with signals_blocked(self._image_list):
            self._image_list.takeItem(row)
        self._current_index = -1
        self._on_image_selected(self._image_list.currentRow())
        self._update_counter()

    def _clear_all(self):
        for session in self._sessions.values():
            session.clear()
        self._items.clear()
        self._reviewed.clear()
        self._exported.clear()
        with signals_blocked(self._image_list):
            self._image_list.clear()
        self._on_image_selected(-1)
        self._sync_crop_controls()
        self._sync_watermark_controls()
        self._sync_mask_controls()
        self._update_counter()
        self._status.showMessage("Cleared all images.")

    def _on_image_selected(self, row: int):
        if row < 0 or row >= len(self._items):
            self._current_index = -1
            stop_loader(self._loader)
            self._loader = None
            self._base_image = None
            self._base_pixmap = None
            self._canvas.clear()
            self._update_crop_info()
            self._update_button_states()
            return

        self._current_index = row
        item = self._items[row]

        if item.id not in self._reviewed:
            self._reviewed.add(item.id)
            self._update_list_item(row)
        self._update_counter()

        # Show loading state and load image in background thread
        self._base_image = None
        self._base_pixmap = None
        self._canvas.clear()
        self._canvas.set_loading(True)

        stop_loader(self._loader)
        self._loader = ImageLoaderThread(item.path, self)
        self._loader.finished.connect(self._loader.deleteLater)
        self._loader.loaded.connect(lambda img, image_id=item.id: self._on_image_loaded(image_id, img))
        self._loader.error.connect(lambda err, image_id=item.id: self._on_image_load_error(image_id, err))
        self._loader.start()

        self._update_button_states()

    def _on_image_loaded(self, image_id: str, img: Image.Image):
        """Called when background image loading completes."""
        item = self._current_item()
        if item is None or item.id != image_id:
            return  # User navigated away before loading finished
        if img.size != (item.width, item.height):
            item.width, item.height = img.size
        self._base_image = img
        self._base_pixmap = pil_to_qpixmap(img)
        self._canvas.set_image(self._base_pixmap, img.width, img.height)
        self._activate_tool_session()
        self._refresh_preview()
        self._update_crop_info()

    def _on_image_load_error(self, image_id: str, error: str):
        """Called when background image loading fails."""
        item = self._current_item()
        if item is None or item.id != image_id:
            return
        self._canvas.set_loading(False)
        self._status.showMessage(f"Failed to load image: {error}")

    def _prev_image(self):
        if self._current_index > 0:
            self._image_list.setCurrentRow(self._current_index - 1)

    def _next_image(self):
        if self._current_index < len(self._items) - 1:
            self._image_list.setCurrentRow(self._current_index + 1)

    def _list_text(self, item: ImageItem) -> str:
        if item.id in self._exported:
            icon = "✅"
        elif item.id in self._reviewed:
            icon = "👁"
        else:
            icon = "⬜"
        return f"  {icon}  {item.name}  ({item.width}×{item.height})"

    def _update_list_item(self, index: int):
        list_item = self._image_list.item(index)
        if list_item:
            list_item.setText(self._list_text(self._items[index]))

    def _update_counter(self):
        total = len(self._items)
        if total == 0:
            self._counter_label.setText("")
            return
        reviewed = sum(1 for item in self._items if item.id in self._reviewed)
        exported = sum(1 for item in self._items if item.id in self._exported)
        self._counter_label.setText(
            f"  👁 {reviewed}/{total} reviewed  ·  ✅ {exported}/{total} exported  "
        )

    def _update_button_states(self):
        has_items = len(self._items) > 0
        has_current = self._current_index >= 0
        self._btn_prev.setEnabled(self._current_index > 0)
        self._btn_next.setEnabled(self._current_index < len(self._items) - 1)
        self._act_remove.setEnabled(has_current)
        self._act_clear.setEnabled(has_items)
        self._act_export_current.setEnabled(has_current)
        self._act_preview.setEnabled(has_current)
        self._act_export_all.setEnabled(has_items)
        self._btn_apply_all.setEnabled(has_current)

    # =========================================================================
    # Apply to all
    # =========================================================================

    def _apply_to_all(self):
        session = self._sessions[self._tool]
        if session.active_id is None:
            return
        if session.apply_to_all() is None:
            return
        self._status.showMessage(
            f"{TOOL_LABELS[self._tool]} settings applied to all {len(self._items)} image(s)."
        )

    # =========================================================================
    # Export
    # =========================================================================

    def _select_output_folder(self):
        folder = QFileDialog.getExistingDirectory(self, "Select Output Folder", str(self._output_root or Path.home()))
        if not folder:
            return
        self._output_root = Path(folder)
        self._status.showMessage(f"Output folder: {self._output_root}")

    def _ensure_output_folder(self) -> bool:
        if not self._output_root:
            self._select_output_folder()
        if not self._output_root:
            QMessageBox.warning(self, "No Output Folder", "Please select an output folder first.")
            return False
        return True

    def _export_one(self, item: ImageItem) -> ExportResult:
        """Render, encode and write one image with the active tool."""
        image = self._base_image if item is self._current_item() else None
        result = export_item(self._tool, item, self._sessions[self._tool], self._settings, image=image)
        self._write_result(item, result)
        return result

    def _write_result(self, item: ImageItem, result: ExportResult):
        out_path = write_output(self._output_root, result.filename, result.data)
        logger.debug("Exported %s to %s", item.name, out_path)

    def _preview_current(self):
        """Encode the current image like an export and show the decoded result."""
        item = self._current_item()
        if item is None:
            return
        try:
            result, img = preview_item(self._tool, item, self._sessions[self._tool], self._settings,
                                       image=self._base_image)
        except (RasterStudioError, OSError) as e:
            QMessageBox.critical(self, "Error", f"Failed to preview {item.name}:\n{e}")
            return

        dialog = _PreviewDialog(result, img, self)
        if dialog.exec() != QDialog.DialogCode.Accepted:
            return
        if not self._ensure_output_folder():
            return
        try:
            self._write_result(item, result)
        except OSError as e:
            QMessageBox.critical(self, "Error", f"Failed to export {item.name}:\n{e}")
            return
        self._mark_exported(item)
        self._status.showMessage(f"Exported: {result.filename}  ({result.width}×{result.height} {result.format})")

    def _export_current(self):
        if not self._ensure_output_folder():
            return
        item = self._current_item()
        if item is None:
            return

        progress = QProgressDialog(f"Exporting: {item.name}…", None, 0, 0, self)
        progress.setWindowModality(Qt.WindowModality.WindowModal)
        progress.setMinimumDuration(0)
        progress.setValue(0)
        QApplication.processEvents()

        try:
            result = self._export_one(item)
        except (RasterStudioError, OSError) as e:
            progress.close()
            QMessageBox.critical(self, "Error", f"Failed to export {item.name}:\n{e}")
            self._status.showMessage(f"Export failed: {item.name}")
            return
        progress.close()

        self._mark_exported(item)
        self._status.showMessage(f"Exported: {result.filename}  ({result.width}×{result.height} {result.format})")

    def _export_all(self):
        """Export every image sequentially, repainting the progress dialog between images."""
        if not self._ensure_output_folder() or not self._items:
            return

        total = len(self._items)
        progress = QProgressDialog("Preparing export…", "Cancel", 0, total, self)
        progress.setWindowModality(Qt.WindowModality.WindowModal)
        progress.setMinimumDuration(0)
        progress.setValue(0)
        QApplication.processEvents()

        def on_progress(done: int, count: int, item: ImageItem | None) -> bool:
            progress.setValue(done)
            if item is not None:
                progress.setLabelText(f"Exporting: {item.name}  ({done + 1}/{count})")
            QApplication.processEvents()
            return not progress.wasCanceled()

        report = run_batch(list(self._items), self._export_one, on_progress)
        progress.setValue(total)

        by_id = {item.id: item for item in self._items}
        for result in report.results:
            if result.image_id in by_id:
                self._mark_exported(by_id[result.image_id])

        if report.errors:
            self._show_failures("Some exports failed", [(item.name, err) for item, err in report.errors])

        verb = "cancelled" if report.cancelled else "complete"
        self._status.showMessage(f"Export {verb} ({report.succeeded}/{total}). Output: {self._output_root}")

    def _mark_exported(self, item: ImageItem):
        self._exported.add(item.id)
        if item in self._items:
            self._update_list_item(self._items.index(item))
        self._update_counter()

    def _show_failures(self, title: str, failures: list[tuple[str, str]]):
        names = "\n".join(f"• {name}: {error}" for name, error in failures[:10])
        suffix = f"\n…and {len(failures) - 10} more" if len(failures) > 10 else ""
        QMessageBox.warning(self, title, f"{len(failures)} failed:\n\n{names}{suffix}")

    # =========================================================================
    # Settings persistence
    # =========================================================================

    def closeEvent(self, event):
        """Wait for pending loads and persist export settings before closing."""
        for loader in self.findChildren(ImageLoaderThread):
            stop_loader(loader, timeout_ms=None)
        self._loader = None
        try:
            save_settings(self._settings)
        except (ValueError, OSError) as exc:
            logger.warning("Could not save export settings: %s", exc)
        super().closeEvent(event)
