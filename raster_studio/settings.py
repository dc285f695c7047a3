"""
Export settings persistence: output format, quality, "optimize for web".

Settings are stored in a JSON file in the user's config directory
(provided by ``config.config_dir()``).  A missing, corrupt or invalid file
falls back to the defaults.  This module is Qt-free and safe for worker
import.

The on-disk format uses a versioned envelope::

    {"version": 1, "settings": {"format": "auto", "quality": 85, "optimize_for_web": false}}
"""

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path

from raster_studio.config import (
    OUTPUT_FORMAT_DEFAULT, OUTPUT_FORMATS, QUALITY_DEFAULT, QUALITY_MAX, QUALITY_MIN, config_dir,
)

logger = logging.getLogger(__name__)

_SETTINGS_FILENAME = "export_settings.json"
_FORMAT_VERSION = 1


@dataclass
class ExportSettings:
    format: str = OUTPUT_FORMAT_DEFAULT
    quality: int = QUALITY_DEFAULT
    optimize_for_web: bool = False


# =============================================================================
# Validation
# =============================================================================
def validate_settings(data) -> list[str]:
    """Return a list of human-readable problems (empty when valid)."""
    if not isinstance(data, dict):
        return ["settings must be a dict"]
    errors = []
    fmt = data.get("format")
    if fmt not in OUTPUT_FORMATS:
        errors.append(f"format must be one of {OUTPUT_FORMATS}, got {fmt!r}")
    quality = data.get("quality")
    if not isinstance(quality, int) or isinstance(quality, bool) or not QUALITY_MIN <= quality <= QUALITY_MAX:
        errors.append(f"quality must be an integer in {QUALITY_MIN}..{QUALITY_MAX}, got {quality!r}")
    if not isinstance(data.get("optimize_for_web"), bool):
        errors.append(f"optimize_for_web must be a boolean, got {data.get('optimize_for_web')!r}")
    return errors


# =============================================================================
# Load / Save
# =============================================================================
def _settings_path() -> Path:
    return config_dir() / _SETTINGS_FILENAME


def load_settings(path: Path | None = None) -> ExportSettings:
    """Load export settings, falling back to defaults on any problem."""
    path = path or _settings_path()

    if not path.exists():
        logger.debug("No export settings at %s, using defaults", path)
        return ExportSettings()

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Failed to read export settings (%s), using defaults", exc)
        return ExportSettings()

    if not isinstance(raw, dict) or raw.get("version") != _FORMAT_VERSION or "settings" not in raw:
        logger.warning("Export settings version mismatch or invalid format, using defaults")
        return ExportSettings()

    data = raw["settings"]
    errors = validate_settings(data)
    if errors:
        logger.warning("Export settings validation failed:\n  %s\nUsing defaults.", "\n  ".join(errors))
        return ExportSettings()

    logger.info("Loaded export settings from %s", path)
    return ExportSettings(data["format"], data["quality"], data["optimize_for_web"])


def save_settings(settings: ExportSettings, path: Path | None = None) -> None:
    """
    Validate and write settings in the versioned envelope.

    Raises ValueError if validation fails.
    Raises OSError if the file cannot be written.
    """
    data = asdict(settings)
    errors = validate_settings(data)
    if errors:
        raise ValueError("Invalid export settings:\n  " + "\n  ".join(errors))
    path = path or _settings_path()
    envelope = {"version": _FORMAT_VERSION, "settings": data}
    path.write_text(json.dumps(envelope, indent=2, ensure_ascii=False), encoding="utf-8")
    logger.info("Saved export settings to %s", path)
