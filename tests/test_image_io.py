import pytest
from PIL import Image

from raster_studio.errors import ImageLoadError
from raster_studio.image_io import (
    get_image_size, import_images, is_supported, open_image, unique_path, write_output,
)


# =============================================================================
# Reading
# =============================================================================
def test_import_skips_unsupported_and_broken_files(tmp_path, image_file):
    png = image_file("a.png", 30, 20)
    jpg = image_file("b.jpg", 40, 10)
    notes = tmp_path / "notes.txt"
    notes.write_text("hello")
    broken = tmp_path / "broken.png"
    broken.write_bytes(b"not an image")

    items, errors = import_images([png, notes, jpg, broken])
    assert [(i.name, i.width, i.height, i.format) for i in items] == [
        ("a.png", 30, 20, "PNG"),
        ("b.jpg", 40, 10, "JPEG"),
    ]
    assert [p for p, _ in errors] == [notes, broken]
    assert len({i.id for i in items}) == 2


def test_reimporting_gives_fresh_ids(image_file):
    path = image_file()
    first, _ = import_images([path])
    second, _ = import_images([path])
    assert first[0].id != second[0].id


def test_exif_orientation_is_applied(tmp_path):
    path = tmp_path / "rotated.jpg"
    exif = Image.Exif()
    exif[0x0112] = 6
    Image.new("RGB", (40, 20), (200, 10, 10)).save(path, exif=exif)
    assert get_image_size(path) == (20, 40)
    assert open_image(path).size == (20, 40)


def test_open_broken_file_raises(tmp_path):
    path = tmp_path / "bad.jpg"
    path.write_bytes(b"\xff\xd8garbage")
    with pytest.raises(ImageLoadError):
        open_image(path)
    with pytest.raises(ImageLoadError):
        open_image(tmp_path / "missing.png")


def test_is_supported():
    assert is_supported("x.PSD")
    assert is_supported("x.jpeg")
    assert not is_supported("x.gif")


# =============================================================================
# Writing
# =============================================================================
def test_write_output_never_overwrites(tmp_path):
    out = tmp_path / "exports"
    first = write_output(out, "a-crop.png", b"1")
    second = write_output(out, "a-crop.png", b"2")
    assert first.name == "a-crop.png"
    assert second.name == "a-crop-01.png"
    assert first.read_bytes() == b"1"
    assert unique_path(out / "a-crop.png").name == "a-crop-02.png"
