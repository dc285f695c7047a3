"""
Export path for all three tools (Qt-free).

Every exporter works on the image's native pixels and never looks at the
view state, so zoom and view rotation cannot leak into the output.  Each
call returns an ``ExportResult`` (encoded bytes plus a suggested
filename); writing to disk is left to the caller.  ``preview_item`` runs
the same path and decodes the bytes for display instead of writing them.

``run_batch`` processes images strictly one after the other.  Before each
image it calls the ``progress`` hook, which is where the UI repaints its
progress dialog; a falsy return stops the batch before the next image.
Per-image failures are recorded and the batch moves on.
"""

import io
import logging
from dataclasses import dataclass, field
from typing import Callable

from PIL import Image, ImageChops, ImageDraw

from raster_studio.config import FORMAT_EXTENSIONS
from raster_studio.crop_geometry import CropMode
from raster_studio.errors import EncodeError, RasterStudioError, SurfaceUnavailableError
from raster_studio.image_io import encode_image, open_image
from raster_studio.mask_paint import MaskState, composite_state
from raster_studio.models import CropRect, ImageItem
from raster_studio.settings import ExportSettings
from raster_studio.watermark import WatermarkRule, render_watermark

logger = logging.getLogger(__name__)

TOOLS = ("crop", "watermark", "mask")


@dataclass
class ExportResult:
    image_id: str
    filename: str
    data: bytes
    width: int
    height: int
    format: str

    def decode(self) -> Image.Image:
        """Decode the encoded bytes back into a PIL image, exactly as written."""
        try:
            img = Image.open(io.BytesIO(self.data))
            img.load()
        except (OSError, Image.DecompressionBombError) as e:
            raise EncodeError(f"Cannot decode {self.filename}: {e}") from e
        return img


@dataclass
class BatchReport:
    total: int
    results: list[ExportResult] = field(default_factory=list)
    errors: list[tuple[ImageItem, str]] = field(default_factory=list)
    cancelled: bool = False

    @property
    def succeeded(self) -> int:
        return len(self.results)

    @property
    def failed(self) -> int:
        return len(self.errors)


# =============================================================================
# Format resolution
# =============================================================================
def source_output_format(source_format: str) -> str:
    """PNG and WEBP sources stay as they are; everything else becomes JPEG."""
    fmt = (source_format or "").upper()
    if fmt in ("PNG", "WEBP"):
        return fmt
    return "JPEG"


def resolve_format(requested: str, tool: str, source_format: str = "", needs_alpha: bool = False) -> str:
    """Pick the encoder for one export."""
    if needs_alpha:
        return "PNG"
    if requested and requested.upper() != "AUTO":
        return requested.upper()
    if tool == "crop":
        return source_output_format(source_format)
    return "PNG"


def _encode(item: ImageItem, img: Image.Image, filename_stem: str, fmt: str,
            settings: ExportSettings) -> ExportResult:
    data = encode_image(img, fmt, settings.quality, settings.optimize_for_web)
    filename = f"{filename_stem}.{FORMAT_EXTENSIONS[fmt]}"
    logger.debug("Encoded %s as %s (%d bytes)", filename, fmt, len(data))
    return ExportResult(item.id, filename, data, img.width, img.height, fmt)


# =============================================================================
# Crop
# =============================================================================
def crop_box(rect: CropRect, img_w: int, img_h: int) -> tuple[int, int, int, int]:
    """Integer (left, top, right, bottom) for *rect*, truncated and kept in bounds."""
    sx = max(0, min(img_w - 1, int(rect.x)))
    sy = max(0, min(img_h - 1, int(rect.y)))
    sw = max(1, min(img_w - sx, int(rect.w)))
    sh = max(1, min(img_h - sy, int(rect.h)))
    return sx, sy, sx + sw, sy + sh


def circle_clip(img: Image.Image) -> Image.Image:
    """Keep only the inscribed circle of *img*; outside becomes transparent."""
    out = img.convert("RGBA")
    w, h = out.size
    d = min(w, h)
    clip = Image.new("L", out.size, 0)
    left, top = (w - d) / 2, (h - d) / 2
    ImageDraw.Draw(clip).ellipse([left, top, left + d - 1, top + d - 1], fill=255)
    out.putalpha(ImageChops.multiply(out.getchannel("A"), clip))
    return out


def render_crop(image: Image.Image, mode: CropMode, rect: CropRect) -> Image.Image:
    cropped = image.crop(crop_box(rect, image.width, image.height))
    if mode.is_circle:
        return circle_clip(cropped)
    return cropped


def export_crop(item: ImageItem, image: Image.Image, mode: CropMode, rect: CropRect,
                settings: ExportSettings) -> ExportResult:
    out = render_crop(image, mode, rect)
    fmt = resolve_format(settings.format, "crop", item.format, needs_alpha=mode.is_circle)
    suffix = "circle" if mode.is_circle else "crop"
    return _encode(item, out, f"{item.stem}-{suffix}-{out.width}x{out.height}", fmt, settings)


# =============================================================================
# Watermark / mask
# =============================================================================
def export_watermark(item: ImageItem, image: Image.Image, rule: WatermarkRule,
                     settings: ExportSettings) -> ExportResult:
    out = render_watermark(image, rule)
    fmt = resolve_format(settings.format, "watermark", item.format)
    return _encode(item, out, f"{item.stem}-watermark", fmt, settings)


def export_mask(item: ImageItem, image: Image.Image, state: MaskState,
                settings: ExportSettings) -> ExportResult:
    out = composite_state(image, state)
    fmt = resolve_format(settings.format, "mask", item.format)
    return _encode(item, out, f"{item.stem}-mosaic", fmt, settings)


# =============================================================================
# Dispatch
# =============================================================================
def export_item(tool: str, item: ImageItem, session, settings: ExportSettings,
                image: Image.Image | None = None) -> ExportResult:
    """Export *item* with the state *session* resolves for it."""
    if image is None:
        image = open_image(item.path)
    try:
        if tool == "crop":
            mode, rect = session.export_state(item)
            return export_crop(item, image, mode, rect, settings)
        if tool == "watermark":
            return export_watermark(item, image, session.export_rule(item), settings)
        if tool == "mask":
            return export_mask(item, image, session.export_state(item), settings)
    except MemoryError as e:
        raise SurfaceUnavailableError(f"Out of memory rendering {item.name}: {e}") from e
    raise ValueError(f"tool must be one of {TOOLS}, got {tool!r}")


def preview_item(tool: str, item: ImageItem, session, settings: ExportSettings,
                 image: Image.Image | None = None) -> tuple[ExportResult, Image.Image]:
    """Encode *item* like an export would and decode it for display.

    Nothing is written; the decoded image shows exactly what the file would
    contain (circle clipping, crop truncation, JPEG flattening).
    """
    result = export_item(tool, item, session, settings, image=image)
    logger.debug("Previewing %s as %s (%dx%d)", item.name, result.filename, result.width, result.height)
    return result, result.decode()


ProgressHook = Callable[[int, int, ImageItem | None], bool]


def run_batch(items: list[ImageItem], export_one: Callable[[ImageItem], ExportResult],
              progress: ProgressHook | None = None) -> BatchReport:
    """
    Export *items* sequentially with per-image error isolation.

    ``progress(done, total, item)`` runs before each image; returning a
    falsy value cancels the rest of the batch.  The image already being
    exported always finishes, so the report holds whatever completed.
    """
    report = BatchReport(total=len(items))
    for i, item in enumerate(items):
        if progress is not None and not progress(i, report.total, item):
            report.cancelled = True
            logger.info("Batch cancelled after %d of %d image(s)", i, report.total)
            break
        try:
            report.results.append(export_one(item))
        except (RasterStudioError, OSError) as e:
            logger.warning("Export failed for %s: %s", item.name or item.id, e)
            report.errors.append((item, str(e)))
    if progress is not None and not report.cancelled:
        progress(report.total, report.total, None)
    logger.info("Batch finished: %d exported, %d failed", report.succeeded, report.failed)
    return report
