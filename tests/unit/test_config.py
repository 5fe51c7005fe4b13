"""Tests for configuration module."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from convertkit.config import ConvertkitSettings, get_settings, reload_settings
from convertkit.config.settings import TimeoutConfig
from convertkit.exceptions import ConfigurationError


class TestDefaults:
    """Tests for default configuration values."""

    def test_default_values(self, isolated_settings):  # noqa: ARG002
        settings = ConvertkitSettings()

        assert settings.timeouts.handshake == 5.0
        assert settings.timeouts.conversion == 120.0
        assert settings.timeouts.readiness_grace == 1.0
        assert settings.limits.image_mb == 10
        assert settings.limits.video_mb == 75
        assert settings.image.quality == 92
        assert settings.document.enable_ocr is False
        assert settings.document.ocr_language == "eng"
        assert settings.transcoder.ffmpeg_path == "ffmpeg"
        assert settings.workers.enabled_kinds == ["image", "document", "minify", "unminify"]
        assert settings.output.on_conflict == "rename"
        assert settings.log_dir == ".logs"

    def test_output_dir(self, isolated_settings):  # noqa: ARG002
        settings = ConvertkitSettings()

        assert settings.get_output_dir() == Path("output")
        assert settings.get_output_dir(Path("/data")) == Path("/data/output")

    def test_conversion_deadline_scales_with_size(self):
        timeouts = TimeoutConfig(conversion=10, conversion_per_mb=2)

        assert timeouts.conversion_deadline(0) == 10
        assert timeouts.conversion_deadline(5 * 1024 * 1024) == 20

    def test_invalid_quality_rejected(self):
        with pytest.raises(ValidationError):
            ConvertkitSettings(image={"quality": 0})


class TestSources:
    """Tests for environment and YAML configuration sources."""

    def test_env_override(self, isolated_settings, monkeypatch):  # noqa: ARG002
        monkeypatch.setenv("CONVERTKIT_TIMEOUTS__HANDSHAKE", "2.5")
        monkeypatch.setenv("CONVERTKIT_LOG_LEVEL", "DEBUG")

        settings = ConvertkitSettings()

        assert settings.timeouts.handshake == 2.5
        assert settings.log_level == "DEBUG"

    def test_yaml_file(self, isolated_settings):
        (isolated_settings / "convertkit.yaml").write_text(
            "limits:\n  image_mb: 4\noutput:\n  on_conflict: skip\n", encoding="utf-8"
        )

        settings = ConvertkitSettings()

        assert settings.limits.image_mb == 4
        assert settings.output.on_conflict == "skip"
        # Untouched values keep their defaults
        assert settings.limits.audio_mb == 50

    def test_env_beats_yaml(self, isolated_settings, monkeypatch):
        (isolated_settings / "convertkit.yaml").write_text("image:\n  quality: 50\n", encoding="utf-8")
        monkeypatch.setenv("CONVERTKIT_IMAGE__QUALITY", "70")

        assert ConvertkitSettings().image.quality == 70


class TestGetSettings:
    """Tests for the cached settings accessor."""

    def test_cached(self, isolated_settings):  # noqa: ARG002
        assert get_settings() is get_settings()

    def test_reload(self, isolated_settings, monkeypatch):  # noqa: ARG002
        first = get_settings()
        monkeypatch.setenv("CONVERTKIT_LOG_DIR", "elsewhere")

        reloaded = reload_settings()

        assert reloaded is not first
        assert reloaded.log_dir == "elsewhere"

    def test_invalid_config_raises_configuration_error(self, isolated_settings):
        (isolated_settings / "convertkit.yaml").write_text(
            "timeouts:\n  handshake: -1\n", encoding="utf-8"
        )

        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            get_settings()

    def test_broken_yaml(self, isolated_settings):
        (isolated_settings / "convertkit.yaml").write_text("limits: [unclosed\n", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            get_settings()
