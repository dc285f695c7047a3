"""
Application constants and configuration.

All geometry limits, interaction sizes, watermark/mask defaults and export
options live here.  The ``config_dir()`` helper returns the platform-
appropriate config directory and is shared by the persistence module
(export settings).
"""

import os
import sys
from pathlib import Path

# =============================================================================
# APP IDENTITY & CONFIG DIRECTORY
# =============================================================================
APP_NAME = "raster-studio"


def config_dir() -> Path:
    """Return the platform-appropriate config directory, creating it if needed."""
    if sys.platform == "win32":
        base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
    elif sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support"
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    directory = base / APP_NAME
    directory.mkdir(parents=True, exist_ok=True)
    return directory


# =============================================================================
# VIEW TRANSFORM
# =============================================================================
# Padding (screen px) kept around the contain-fitted image
VIEW_PADDING = 20

ZOOM_MIN = 0.1
ZOOM_MAX = 10.0
# Toolbar zoom in/out factor
ZOOM_STEP = 1.2
# Factor applied per wheel tick
WHEEL_ZOOM_STEP = 1.05
# angleDelta units in one notch of a standard mouse wheel
WHEEL_DELTA_PER_TICK = 120

ROTATIONS = (0, 90, 180, 270)

# Checkerboard background (light theme / dark theme swatches)
CHECKER_SIZE = 20
CHECKER_LIGHT = ("#ffffff", "#e5e5e5")
CHECKER_DARK = ("#1e293b", "#0f172a")

# Delay (ms) before the watermark / mask preview is re-rendered after an edit
PREVIEW_DELAY_MS = 30

# =============================================================================
# CROP
# =============================================================================
# Minimum crop size (pixels in image coordinates)
MIN_CROP_SIZE = 24

# Default crop rect inset on each side (fraction of the image dimension)
DEFAULT_CROP_INSET = 0.1

# Handle sizes (pixels in screen coordinates)
HANDLE_VISUAL_SIZE = 10
HANDLE_HIT_SIZE = 18

# (value, ratio, label) -- ratio is None for free-form and custom
CROP_RATIO_OPTIONS = [
    ("free", None, "Free"),
    ("1:1", 1.0, "1:1"),
    ("9:16", 9 / 16, "9:16"),
    ("16:9", 16 / 9, "16:9"),
    ("4:5", 4 / 5, "4:5"),
    ("2:3", 2 / 3, "2:3"),
    ("4:3", 4 / 3, "4:3"),
    ("3:2", 3 / 2, "3:2"),
    ("circle", 1.0, "Circle"),
    ("custom", None, "Custom"),
]

# =============================================================================
# WATERMARK
# =============================================================================
TILE_MIN = 1
TILE_MAX = 12
LINE_HEIGHT_FACTOR = 1.2
WATERMARK_MARGIN_DEFAULT = 24
WATERMARK_FONT_SIZE_DEFAULT = 48
WATERMARK_OPACITY_DEFAULT = 60
WATERMARK_PRESETS = ["lt", "t", "rt", "l", "c", "r", "lb", "b", "rb"]

# Candidate TrueType fonts, tried in order when no explicit font is given
DEFAULT_FONT_CANDIDATES = [
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
    "/System/Library/Fonts/Supplemental/Arial.ttf",
    "C:/Windows/Fonts/arial.ttf",
    "C:/Windows/Fonts/segoeui.ttf",
]
DEFAULT_BOLD_FONT_CANDIDATES = [
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
    "/System/Library/Fonts/Supplemental/Arial Bold.ttf",
    "C:/Windows/Fonts/arialbd.ttf",
]

# =============================================================================
# MASK PAINTING
# =============================================================================
MASK_TOOLS = ["brush", "rect"]
MASK_EFFECTS = ["mosaic", "blur"]
BRUSH_SIZE_DEFAULT = 28
BRUSH_SIZE_MIN = 4
BRUSH_SIZE_MAX = 200
MOSAIC_STRENGTH_DEFAULT = 20
MOSAIC_STRENGTH_MIN = 10
MOSAIC_STRENGTH_MAX = 80
BLUR_RADIUS_DEFAULT = 8
BLUR_RADIUS_MAX = 60

# =============================================================================
# EXPORT
# =============================================================================
# PNG compression level (0-9, 9 = maximum compression)
PNG_COMPRESS_LEVEL = 9

OUTPUT_FORMATS = ["auto", "PNG", "JPEG", "WEBP"]
OUTPUT_FORMAT_DEFAULT = "auto"
QUALITY_DEFAULT = 85
QUALITY_MIN = 0
QUALITY_MAX = 100
# Encoder quality bounds (fraction), quality 0-100 is mapped into this range
ENCODER_QUALITY_MIN = 0.1
ENCODER_QUALITY_MAX = 1.0
# Quality multiplier applied when "optimize for web" is enabled
WEB_QUALITY_FACTOR = 0.85

FORMAT_EXTENSIONS = {"PNG": "png", "JPEG": "jpg", "WEBP": "webp"}

# Supported image extensions
IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".bmp", ".tiff", ".tif", ".webp", ".psd"}
