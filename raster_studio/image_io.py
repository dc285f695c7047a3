"""
Qt-free image I/O utilities.

Provides helpers to open images (including PSD), read dimensions without
full loading, import a batch of files with fresh ids, encode results to
PNG / JPEG / WEBP bytes, and generate unique file paths.
Safe to import in worker processes.
"""

import io
import logging
from pathlib import Path

from PIL import Image, ImageOps, UnidentifiedImageError
from psd_tools import PSDImage

from raster_studio.config import (
    ENCODER_QUALITY_MAX, ENCODER_QUALITY_MIN, FORMAT_EXTENSIONS, IMAGE_EXTENSIONS,
    PNG_COMPRESS_LEVEL, QUALITY_MAX, QUALITY_MIN, WEB_QUALITY_FACTOR,
)
from raster_studio.errors import EncodeError, ImageLoadError
from raster_studio.models import ImageItem

logger = logging.getLogger(__name__)

# Allow very large images (Pillow's default limit is ~178MP)
Image.MAX_IMAGE_PIXELS = None

# EXIF orientations that swap width and height
_TRANSPOSED_ORIENTATIONS = {5, 6, 7, 8}
_EXIF_ORIENTATION = 0x0112


# =============================================================================
# Reading
# =============================================================================
def open_image(path: Path) -> Image.Image:
    """Open and decode an image, using psd-tools for PSD and Pillow for the rest.

    EXIF orientation is applied so pixel space matches what a viewer shows.
    Raises ``ImageLoadError`` on any decode failure.
    """
    path = Path(path)
    try:
        if path.suffix.lower() == ".psd":
            return PSDImage.open(str(path)).composite()
        img = Image.open(path)
        img.load()
        return ImageOps.exif_transpose(img)
    except (OSError, UnidentifiedImageError, ValueError, SyntaxError) as e:
        raise ImageLoadError(f"Failed to load {path.name}: {e}") from e


def get_image_size(path: Path) -> tuple[int, int]:
    """Get image dimensions without fully loading/compositing."""
    path = Path(path)
    try:
        if path.suffix.lower() == ".psd":
            psd = PSDImage.open(str(path))
            return psd.width, psd.height
        with Image.open(path) as img:
            w, h = img.size
            if img.getexif().get(_EXIF_ORIENTATION) in _TRANSPOSED_ORIENTATIONS:
                return h, w
            return w, h
    except (OSError, UnidentifiedImageError, ValueError, SyntaxError) as e:
        raise ImageLoadError(f"Failed to read {path.name}: {e}") from e


def is_supported(path: Path) -> bool:
    return Path(path).suffix.lower() in IMAGE_EXTENSIONS


def import_images(paths) -> tuple[list[ImageItem], list[tuple[Path, str]]]:
    """
    Build ``ImageItem`` records for *paths*, each with a fresh id.

    Unsupported or unreadable files are skipped and returned as
    ``(path, reason)`` pairs so the caller can report them.
    """
    items: list[ImageItem] = []
    errors: list[tuple[Path, str]] = []
    for p in paths:
        p = Path(p)
        if not is_supported(p):
            errors.append((p, "unsupported file type"))
            continue
        try:
            w, h = get_image_size(p)
        except ImageLoadError as e:
            logger.warning("Skipping %s: %s", p, e)
            errors.append((p, str(e)))
            continue
        fmt = "PSD" if p.suffix.lower() == ".psd" else _source_format(p)
        items.append(ImageItem(path=p, width=w, height=h, format=fmt))
    logger.info("Imported %d image(s), %d skipped", len(items), len(errors))
    return items, errors


def _source_format(path: Path) -> str:
    ext = path.suffix.lower()
    if ext == ".png":
        return "PNG"
    if ext == ".webp":
        return "WEBP"
    if ext in (".jpg", ".jpeg"):
        return "JPEG"
    return ext.lstrip(".").upper()


# =============================================================================
# Encoding
# =============================================================================
def encoder_quality(quality: int, optimize_for_web: bool = False) -> float:
    """Map a 0-100 quality setting to an encoder quality in [0.1, 1.0]."""
    q = max(QUALITY_MIN, min(QUALITY_MAX, quality)) / 100.0
    if optimize_for_web:
        q *= WEB_QUALITY_FACTOR
    return max(ENCODER_QUALITY_MIN, min(ENCODER_QUALITY_MAX, q))


def _flatten(img: Image.Image, background=(255, 255, 255)) -> Image.Image:
    """Drop alpha by compositing onto a solid background (for JPEG)."""
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        out = Image.new("RGB", rgba.size, background)
        out.paste(rgba, mask=rgba.getchannel("A"))
        return out
    return img.convert("RGB")


def encode_image(img: Image.Image, fmt: str, quality: int = 85, optimize_for_web: bool = False) -> bytes:
    """
    Encode *img* as PNG, JPEG or WEBP and return the bytes.

    PNG is lossless and keeps alpha.  For the lossy formats the 0-100
    quality is mapped through ``encoder_quality``.  Raises ``EncodeError``
    with the encoder's reason on failure.
    """
    fmt = fmt.upper()
    if fmt not in FORMAT_EXTENSIONS:
        raise EncodeError(f"Unsupported output format {fmt!r}")
    buf = io.BytesIO()
    try:
        if fmt == "PNG":
            img.save(buf, "PNG", compress_level=PNG_COMPRESS_LEVEL)
        elif fmt == "JPEG":
            q = int(round(encoder_quality(quality, optimize_for_web) * 100))
            _flatten(img).save(buf, "JPEG", quality=q, optimize=optimize_for_web)
        else:
            q = int(round(encoder_quality(quality, optimize_for_web) * 100))
            out = img if img.mode in ("RGB", "RGBA") else img.convert("RGBA")
            out.save(buf, "WEBP", quality=q)
    except (OSError, ValueError, KeyError) as e:
        raise EncodeError(f"{fmt} encode failed: {e}") from e
    return buf.getvalue()


# =============================================================================
# Writing
# =============================================================================
def unique_path(out_path: Path) -> Path:
    """Return a unique path by appending -01, -02, etc. if file already exists."""
    if not out_path.exists():
        return out_path
    stem = out_path.stem
    suffix = out_path.suffix
    parent = out_path.parent
    counter = 1
    while True:
        candidate = parent / f"{stem}-{counter:02d}{suffix}"
        if not candidate.exists():
            return candidate
        counter += 1


def write_output(out_dir: Path, filename: str, data: bytes) -> Path:
    """Write *data* to a unique path under *out_dir* and return it."""
    out_dir.mkdir(parents=True, exist_ok=True)
    out_path = unique_path(out_dir / filename)
    out_path.write_bytes(data)
    logger.debug("Wrote %s (%d bytes)", out_path, len(data))
    return out_path
