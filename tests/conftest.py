from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from raster_studio.models import ImageItem, ViewState


@pytest.fixture
def gradient_image():
    """RGB test image whose every pixel differs from its neighbours."""
    def make(w: int = 64, h: int = 48) -> Image.Image:
        xs = np.linspace(0, 255, w)
        ys = np.linspace(0, 255, h)
        r = np.tile(xs, (h, 1))
        g = np.tile(ys[:, None], (1, w))
        b = (r * 3 + g * 7) % 256
        return Image.fromarray(np.stack([r, g, b], axis=-1).astype(np.uint8))
    return make


@pytest.fixture
def image_file(tmp_path, gradient_image):
    def make(name: str = "photo.png", w: int = 64, h: int = 48) -> Path:
        path = tmp_path / name
        gradient_image(w, h).save(path)
        return path
    return make


@pytest.fixture
def make_item():
    def make(w: int = 800, h: int = 600, name: str = "photo.jpg", fmt: str = "JPEG") -> ImageItem:
        return ImageItem(path=Path(name), width=w, height=h, format=fmt)
    return make


@pytest.fixture
def flat_view():
    """ViewState where screen == effective space (box at origin, scale 1)."""
    def make(img_w: int, img_h: int, rotation: int = 0, flip_x: bool = False, flip_y: bool = False) -> ViewState:
        eff_w, eff_h = (img_h, img_w) if rotation in (90, 270) else (img_w, img_h)
        return ViewState(
            container_width=eff_w, container_height=eff_h, rotation=rotation,
            image_width=img_w, image_height=img_h,
            effective_width=eff_w, effective_height=eff_h,
            box_x=0.0, box_y=0.0, box_w=float(eff_w), box_h=float(eff_h),
            flip_x=flip_x, flip_y=flip_y,
        )
    return make
