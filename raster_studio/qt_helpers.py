"""
Qt image helpers: PIL conversion and the background image loader.
"""

import logging
from pathlib import Path

from PIL import Image
from PyQt6.QtCore import QThread, pyqtSignal
from PyQt6.QtGui import QImage, QPixmap

from raster_studio.errors import RasterStudioError
from raster_studio.image_io import open_image

logger = logging.getLogger(__name__)


# =============================================================================
# Qt ↔ PIL helpers
# =============================================================================

def pil_to_qimage(pil_img: Image.Image) -> QImage:
    """Convert a PIL Image to a QImage that owns its pixel data."""
    img_rgba = pil_img.convert("RGBA")
    data = img_rgba.tobytes("raw", "RGBA")
    qimg = QImage(data, img_rgba.width, img_rgba.height, img_rgba.width * 4, QImage.Format.Format_RGBA8888)
    return qimg.copy()


def pil_to_qpixmap(pil_img: Image.Image) -> QPixmap:
    """Convert a PIL Image to QPixmap."""
    return QPixmap.fromImage(pil_to_qimage(pil_img))


# =============================================================================
# Background image loader
# =============================================================================

class ImageLoaderThread(QThread):
    """Background thread for decoding images (especially large PSDs)."""
    loaded = pyqtSignal(object)
    error = pyqtSignal(str)

    def __init__(self, path: Path, parent=None):
        super().__init__(parent)
        self._path = path

    def run(self):
        try:
            img = open_image(self._path)
            img.load()
            self.loaded.emit(img)
        except RasterStudioError as e:
            self.error.emit(str(e))
        except Exception as e:
            # psd-tools and Pillow plugins raise arbitrary types
            logger.warning("Unexpected error loading %s", self._path, exc_info=True)
            self.error.emit(f"Failed to load {self._path.name}: {e}")


def stop_loader(loader: ImageLoaderThread | None, timeout_ms: int | None = 500):
    """Detach *loader* from its receivers and give it *timeout_ms* to finish.

    ``timeout_ms=None`` blocks until the decode is done.
    """
    if loader is None:
        return
    for name in ("loaded", "error"):
        try:
            getattr(loader, name).disconnect()
        except (TypeError, RuntimeError):
            pass  # Already disconnected or destroyed
    try:
        if loader.isRunning():
            loader.quit()
            if timeout_ms is None:
                loader.wait()
            else:
                loader.wait(timeout_ms)
    except RuntimeError:
        pass  # Deleted after finishing
