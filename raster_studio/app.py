"""
Application entry point and stylesheet.

Neutral dark greys with one teal accent for selection and checked tool
buttons.

Usage:
    python -m raster_studio
    raster-studio          (after pip install)
"""

import logging
import os
import sys

from PyQt6.QtWidgets import QApplication

from raster_studio.main_window import MainWindow

ACCENT = "#2a8f84"
ACCENT_BORDER = "#45b3a6"

STYLESHEET = f"""
    QMainWindow, QDialog {{ background: #262626; }}
    QWidget {{ background: #262626; color: #dcdcdc; font-size: 10pt; }}
    QListWidget {{ background: #1b1b1b; border: 1px solid #3c3c3c; }}
    QListWidget::item {{ padding: 4px; }}
    QListWidget::item:selected {{ background: {ACCENT}; }}
    QGroupBox {{ border: 1px solid #4a4a4a; border-radius: 4px; margin-top: 8px; padding-top: 12px; font-weight: bold; }}
    QGroupBox::title {{ subcontrol-origin: margin; left: 8px; padding: 0 4px; }}
    QPushButton {{ background: #353535; border: 1px solid #4a4a4a; border-radius: 4px; padding: 5px 10px; }}
    QPushButton:hover {{ background: #424242; }}
    QPushButton:pressed {{ background: #202020; }}
    QPushButton:checked {{ background: {ACCENT}; border-color: {ACCENT_BORDER}; }}
    QPushButton:disabled {{ color: #5e5e5e; }}
    QPlainTextEdit, QSpinBox, QComboBox {{ background: #1b1b1b; border: 1px solid #4a4a4a; border-radius: 3px; padding: 2px; }}
    QSlider::groove:horizontal {{ height: 4px; background: #3c3c3c; border-radius: 2px; }}
    QSlider::handle:horizontal {{ width: 12px; margin: -5px 0; background: {ACCENT_BORDER}; border-radius: 6px; }}
    QScrollArea {{ border: none; }}
    QToolBar {{ background: #2f2f2f; border-bottom: 1px solid #3c3c3c; spacing: 4px; padding: 4px; }}
    QToolBar QToolButton:checked {{ background: {ACCENT}; border-radius: 3px; }}
    QStatusBar {{ background: #2f2f2f; border-top: 1px solid #3c3c3c; }}
    QProgressDialog {{ background: #262626; }}
"""


def main():
    # RASTER_STUDIO_LOG=DEBUG logs each encoded file
    level = os.environ.get("RASTER_STUDIO_LOG", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = QApplication(sys.argv)
    app.setApplicationName("Raster Studio")
    app.setStyleSheet(STYLESHEET)

    window = MainWindow()
    window.show()

    sys.exit(app.exec())


if __name__ == "__main__":
    main()
