"""Tests for persisted application settings."""

import json

import pytest

from vectorcam.config.settings import AppSettings
from vectorcam.core.errors import ConfigError
from vectorcam.core.operation import OperationKind


@pytest.fixture
def settings_path(tmp_path, monkeypatch):
    path = tmp_path / "nested" / "settings.json"
    monkeypatch.setattr(AppSettings, "_path", staticmethod(lambda: path))
    return path


class TestAppSettings:
    def test_defaults_when_missing(self, settings_path):
        settings = AppSettings.load()
        assert settings.default_safe_z == 5.0
        assert settings.operation is OperationKind.OUTSIDE

    def test_save_and_load(self, settings_path):
        AppSettings(default_safe_z=8.0, last_open_dir="/tmp/cad").save()
        assert settings_path.exists()
        loaded = AppSettings.load()
        assert loaded.default_safe_z == 8.0
        assert loaded.last_open_dir == "/tmp/cad"

    def test_unknown_keys_ignored(self, settings_path):
        settings_path.parent.mkdir(parents=True)
        settings_path.write_text(json.dumps({"default_safe_z": 7.0, "theme": "dark"}))
        assert AppSettings.load().default_safe_z == 7.0

    def test_operation_label(self, settings_path):
        assert AppSettings(default_operation="Pocket").operation is OperationKind.POCKET
        with pytest.raises(ConfigError):
            AppSettings(default_operation="Plasma").operation

    def test_default_parameters(self, settings_path):
        settings = AppSettings(default_operation="Inside", default_tool_diameter=6.0)
        params = settings.default_parameters()
        assert params.operation is OperationKind.INSIDE
        assert params.tool_diameter == 6.0
        assert params.feed == 800.0
        assert params.tab_locations == []

    def test_remember_dirs(self, settings_path, tmp_path):
        settings = AppSettings()
        settings.remember_open(tmp_path / "in" / "drawing.json")
        settings.remember_save(tmp_path / "out.nc")
        assert settings.last_open_dir == str((tmp_path / "in").resolve())
        assert settings.last_save_dir == str(tmp_path.resolve())

    def test_numeric_values_coerced(self, settings_path):
        settings_path.parent.mkdir(parents=True)
        settings_path.write_text(json.dumps({"default_safe_z": "12"}))
        assert AppSettings.load().default_safe_z == 12.0

    def test_non_numeric_rejected(self, settings_path):
        settings_path.parent.mkdir(parents=True)
        settings_path.write_text(json.dumps({"default_safe_z": "high"}))
        with pytest.raises(ConfigError, match="default_safe_z"):
            AppSettings.load()

    @pytest.mark.parametrize("text", ["{broken", "[1, 2]"])
    def test_corrupt_file_rejected(self, settings_path, text):
        settings_path.parent.mkdir(parents=True)
        settings_path.write_text(text)
        with pytest.raises(ConfigError):
            AppSettings.load()
