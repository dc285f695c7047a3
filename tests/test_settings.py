import json

import pytest

from raster_studio.settings import ExportSettings, load_settings, save_settings, validate_settings


def test_settings_round_trip(tmp_path):
    path = tmp_path / "settings.json"
    save_settings(ExportSettings("WEBP", 70, True), path)
    assert load_settings(path) == ExportSettings("WEBP", 70, True)
    assert json.loads(path.read_text())["version"] == 1


def test_missing_settings_file_gives_defaults(tmp_path):
    assert load_settings(tmp_path / "none.json") == ExportSettings()


@pytest.mark.parametrize("content", [
    "{not json",
    json.dumps({"version": 99, "settings": {}}),
    json.dumps([1, 2, 3]),
    json.dumps({"version": 1, "settings": {"format": "GIF", "quality": 85, "optimize_for_web": False}}),
    json.dumps({"version": 1, "settings": {"format": "PNG", "quality": True, "optimize_for_web": False}}),
])
def test_bad_settings_file_falls_back_to_defaults(tmp_path, content):
    path = tmp_path / "settings.json"
    path.write_text(content)
    assert load_settings(path) == ExportSettings()


def test_save_rejects_invalid_settings(tmp_path):
    with pytest.raises(ValueError):
        save_settings(ExportSettings(quality=500), tmp_path / "s.json")
    assert not (tmp_path / "s.json").exists()


def test_validate_settings_lists_every_problem():
    errors = validate_settings({"format": "BMP", "quality": -1, "optimize_for_web": "yes"})
    assert len(errors) == 3
    assert validate_settings("nope") == ["settings must be a dict"]
