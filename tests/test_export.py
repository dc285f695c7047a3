import io

import pytest
from PIL import Image

from raster_studio.crop_geometry import CropMode, CropSession
from raster_studio.errors import EncodeError, ImageLoadError
from raster_studio.export import (
    ExportResult, crop_box, export_crop, export_item, preview_item, render_crop, resolve_format,
    run_batch,
)
from raster_studio.image_io import encode_image, encoder_quality, import_images
from raster_studio.mask_paint import MaskSession
from raster_studio.models import CropRect
from raster_studio.settings import ExportSettings
from raster_studio.watermark import WatermarkSession


def _decode(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


# =============================================================================
# Format and quality
# =============================================================================
@pytest.mark.parametrize("requested, tool, source, alpha, expected", [
    ("auto", "crop", "PNG", False, "PNG"),
    ("auto", "crop", "JPEG", False, "JPEG"),
    ("auto", "crop", "WEBP", False, "WEBP"),
    ("auto", "crop", "BMP", False, "JPEG"),
    ("auto", "watermark", "JPEG", False, "PNG"),
    ("auto", "mask", "JPEG", False, "PNG"),
    ("JPEG", "crop", "PNG", True, "PNG"),
    ("webp", "mask", "PNG", False, "WEBP"),
])
def test_resolve_format(requested, tool, source, alpha, expected):
    assert resolve_format(requested, tool, source, needs_alpha=alpha) == expected


def test_encoder_quality_mapping():
    assert encoder_quality(85) == pytest.approx(0.85)
    assert encoder_quality(85, optimize_for_web=True) == pytest.approx(0.7225)
    assert encoder_quality(0) == 0.1
    assert encoder_quality(100) == 1.0
    assert encoder_quality(150) == 1.0


def test_jpeg_encoding_flattens_onto_white():
    img = _decode(encode_image(Image.new("RGBA", (8, 8), (0, 0, 0, 0)), "JPEG"))
    assert img.mode == "RGB"
    assert min(img.getpixel((4, 4))) >= 250


def test_png_encoding_keeps_alpha():
    img = _decode(encode_image(Image.new("RGBA", (8, 8), (10, 20, 30, 40)), "PNG"))
    assert img.mode == "RGBA"
    assert img.getpixel((0, 0)) == (10, 20, 30, 40)


def test_unsupported_format_raises_encode_error():
    with pytest.raises(EncodeError):
        encode_image(Image.new("RGB", (2, 2)), "GIF")


# =============================================================================
# Crop export
# =============================================================================
def test_crop_box_truncates_and_stays_in_bounds():
    assert crop_box(CropRect(10.7, 20.2, 50.9, 40.5), 200, 100) == (10, 20, 60, 60)
    assert crop_box(CropRect(190.5, 95, 50, 50), 200, 100) == (190, 95, 200, 100)


def test_crop_export_names_and_sizes(make_item, gradient_image):
    item = make_item(200, 100, "photo.jpg", "JPEG")
    result = export_crop(item, gradient_image(200, 100), CropMode(),
                         CropRect(10.7, 20.2, 50.9, 40.5), ExportSettings())
    assert result.filename == "photo-crop-50x40.jpg"
    assert result.format == "JPEG"
    assert (result.width, result.height) == (50, 40)
    assert _decode(result.data).size == (50, 40)


def test_crop_pixels_come_from_native_image(gradient_image):
    image = gradient_image(200, 100)
    out = render_crop(image, CropMode(), CropRect(30, 40, 20, 10))
    assert out.getpixel((0, 0)) == image.getpixel((30, 40))


def test_circle_export_is_png_with_transparent_corners(make_item, gradient_image):
    item = make_item(200, 100, "photo.jpg", "JPEG")
    result = export_crop(item, gradient_image(200, 100), CropMode.from_value("circle"),
                         CropRect(0, 0, 100, 100), ExportSettings(format="JPEG"))
    assert result.filename == "photo-circle-100x100.png"
    assert result.format == "PNG"
    img = _decode(result.data)
    assert img.mode == "RGBA"
    assert img.getpixel((0, 0))[3] == 0
    assert img.getpixel((50, 50))[3] == 255


def test_explicit_format_overrides_source(make_item, gradient_image):
    item = make_item(64, 48, "photo.png", "PNG")
    result = export_crop(item, gradient_image(64, 48), CropMode(), CropRect(0, 0, 32, 32),
                         ExportSettings(format="WEBP", quality=70))
    assert result.filename.endswith(".webp")
    assert _decode(result.data).format == "WEBP"


# =============================================================================
# Dispatch
# =============================================================================
def test_export_item_for_every_tool(make_item, gradient_image):
    item = make_item(200, 100, "photo.png", "PNG")
    image = gradient_image(200, 100)
    settings = ExportSettings()

    crop = export_item("crop", item, CropSession(), settings, image)
    assert crop.filename == "photo-crop-160x80.png"

    watermark = export_item("watermark", item, WatermarkSession(), settings, image)
    assert watermark.filename == "photo-watermark.png"
    assert _decode(watermark.data).size == (200, 100)

    mask = export_item("mask", item, MaskSession(), settings, image)
    assert mask.filename == "photo-mosaic.png"
    assert _decode(mask.data).tobytes() == image.convert("RGBA").tobytes()


def test_export_item_rejects_unknown_tool(make_item, gradient_image):
    with pytest.raises(ValueError):
        export_item("resize", make_item(10, 10), CropSession(), ExportSettings(), gradient_image(10, 10))


def test_export_item_loads_from_disk(image_file):
    items, errors = import_images([image_file("shot.png", 120, 80)])
    assert not errors
    result = export_item("crop", items[0], CropSession(), ExportSettings())
    assert result.filename == "shot-crop-96x64.png"


def test_export_item_missing_file_raises_load_error(make_item, tmp_path):
    item = make_item(10, 10, str(tmp_path / "gone.png"), "PNG")
    with pytest.raises(ImageLoadError):
        export_item("crop", item, CropSession(), ExportSettings())


# =============================================================================
# Batch
# =============================================================================
def test_batch_isolates_failures(make_item):
    items = [make_item(name=f"{n}.png") for n in "abc"]
    calls = []

    def export_one(item):
        if item is items[1]:
            raise ImageLoadError("broken")
        return item.name

    def progress(done, total, item):
        calls.append((done, total, item))
        return True

    report = run_batch(items, export_one, progress)
    assert report.succeeded == 2
    assert report.failed == 1
    assert report.errors[0] == (items[1], "broken")
    assert not report.cancelled
    assert calls == [(0, 3, items[0]), (1, 3, items[1]), (2, 3, items[2]), (3, 3, None)]


def test_batch_cancel_stops_before_next_image(make_item):
    items = [make_item(name=f"{n}.png") for n in "abcd"]
    exported = []

    def export_one(item):
        exported.append(item)
        return item.name

    report = run_batch(items, export_one, lambda done, total, item: done < 2)
    assert report.cancelled
    assert exported == items[:2]
    assert report.succeeded == 2
    assert report.total == 4


def test_batch_propagates_programming_errors(make_item):
    def export_one(item):
        raise KeyError("bug")

    with pytest.raises(KeyError):
        run_batch([make_item()], export_one)


def test_batch_applies_broadcast_rule_per_size(image_file):
    items, _ = import_images([image_file("wide.png", 200, 100), image_file("tall.png", 100, 200)])
    session = CropSession()
    session.activate(items[0])
    session.set_mode("1:1")
    session.apply_to_all()

    report = run_batch(items, lambda item: export_item("crop", item, session, ExportSettings()))
    assert report.failed == 0
    for result in report.results:
        assert result.width == result.height


# =============================================================================
# Preview
# =============================================================================
def test_preview_decodes_export_without_writing(tmp_path, make_item, gradient_image):
    item = make_item(200, 100, str(tmp_path / "photo.jpg"), "JPEG")
    session = CropSession()
    session.activate(item)
    session.set_mode("circle")

    result, img = preview_item("crop", item, session, ExportSettings(), gradient_image(200, 100))
    assert result.filename.startswith("photo-circle-")
    assert img.format == "PNG"
    assert img.size == (result.width, result.height)
    assert img.getpixel((0, 0))[3] == 0
    assert list(tmp_path.iterdir()) == []


def test_preview_matches_encoded_jpeg(make_item, gradient_image):
    item = make_item(64, 48, "photo.jpg", "JPEG")
    result, img = preview_item("watermark", item, WatermarkSession(),
                               ExportSettings(format="JPEG", quality=60), gradient_image(64, 48))
    assert img.mode == "RGB"
    assert img.tobytes() == _decode(result.data).convert("RGB").tobytes()


def test_decode_garbage_raises_encode_error():
    result = ExportResult("id", "x.png", b"not an image", 1, 1, "PNG")
    with pytest.raises(EncodeError):
        result.decode()
