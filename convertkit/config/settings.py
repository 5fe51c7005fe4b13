"""Configuration settings using pydantic-settings."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import (
    BaseSettings,
    SettingsConfigDict,
    SettingsError,
    YamlConfigSettingsSource,
)

from convertkit.config.constants import (
    DEFAULT_AUDIO_BITRATE_KBPS,
    DEFAULT_AUDIO_MAX_MB,
    DEFAULT_CODE_MAX_MB,
    DEFAULT_CONFIG_FILE,
    DEFAULT_CONVERSION_TIMEOUT,
    DEFAULT_DOCUMENT_MAX_MB,
    DEFAULT_FFMPEG_PATH,
    DEFAULT_GIF_FILTER,
    DEFAULT_HANDSHAKE_TIMEOUT,
    DEFAULT_IMAGE_MAX_MB,
    DEFAULT_IMAGE_QUALITY,
    DEFAULT_LOG_DIR,
    DEFAULT_OCR_LANGUAGE,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_READINESS_GRACE,
    DEFAULT_TERMINATE_TIMEOUT,
    DEFAULT_VIDEO_MAX_MB,
)
from convertkit.exceptions import ConfigurationError


class TimeoutConfig(BaseModel):
    """Deadlines for the worker boundary (seconds)."""

    handshake: float = Field(default=DEFAULT_HANDSHAKE_TIMEOUT, gt=0)
    conversion: float = Field(default=DEFAULT_CONVERSION_TIMEOUT, gt=0)
    readiness_grace: float = Field(default=DEFAULT_READINESS_GRACE, ge=0)
    terminate: float = Field(default=DEFAULT_TERMINATE_TIMEOUT, gt=0)
    # Extra seconds per MB of input added to the conversion deadline
    conversion_per_mb: float = Field(default=0.0, ge=0)

    def conversion_deadline(self, size_bytes: int) -> float:
        """Conversion deadline for an input of ``size_bytes``."""
        return self.conversion + self.conversion_per_mb * size_bytes / (1024 * 1024)


class CategoryLimitsConfig(BaseModel):
    """Upload ceilings per category (MB)."""

    image_mb: float = Field(default=DEFAULT_IMAGE_MAX_MB, gt=0)
    audio_mb: float = Field(default=DEFAULT_AUDIO_MAX_MB, gt=0)
    document_mb: float = Field(default=DEFAULT_DOCUMENT_MAX_MB, gt=0)
    video_mb: float = Field(default=DEFAULT_VIDEO_MAX_MB, gt=0)
    code_mb: float = Field(default=DEFAULT_CODE_MAX_MB, gt=0)


class ImageConfig(BaseModel):
    """Image re-encoding configuration."""

    quality: int = Field(default=DEFAULT_IMAGE_QUALITY, ge=1, le=100)


class DocumentConfig(BaseModel):
    """Document worker configuration."""

    enable_ocr: bool = False  # Warm up OCR during the worker handshake
    ocr_language: str = DEFAULT_OCR_LANGUAGE


class TranscoderConfig(BaseModel):
    """Media transcoder configuration."""

    ffmpeg_path: str = DEFAULT_FFMPEG_PATH
    audio_bitrate_kbps: int = Field(default=DEFAULT_AUDIO_BITRATE_KBPS, ge=8)
    gif_filter: str = DEFAULT_GIF_FILTER


class WorkerConfig(BaseModel):
    """Which background workers a session starts."""

    enabled_kinds: list[Literal["image", "document", "minify", "unminify"]] = Field(
        default_factory=lambda: ["image", "document", "minify", "unminify"]
    )
    python_executable: str | None = None  # Defaults to sys.executable


class OutputConfig(BaseModel):
    """Output configuration."""

    default_dir: str = DEFAULT_OUTPUT_DIR
    on_conflict: Literal["skip", "overwrite", "rename"] = "rename"


class ConvertkitSettings(BaseSettings):
    """Main configuration class for convertkit."""

    model_config = SettingsConfigDict(
        env_prefix="CONVERTKIT_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings
    ):
        """Customize settings sources to include YAML file."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=DEFAULT_CONFIG_FILE),
            file_secret_settings,
        )

    # Sub-configurations
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    limits: CategoryLimitsConfig = Field(default_factory=CategoryLimitsConfig)
    image: ImageConfig = Field(default_factory=ImageConfig)
    document: DocumentConfig = Field(default_factory=DocumentConfig)
    transcoder: TranscoderConfig = Field(default_factory=TranscoderConfig)
    workers: WorkerConfig = Field(default_factory=WorkerConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)

    # Global settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_dir: str = DEFAULT_LOG_DIR

    def get_output_dir(self, base_path: Path | None = None) -> Path:
        """Get the output directory path."""
        if base_path:
            return base_path / self.output.default_dir
        return Path(self.output.default_dir)


@lru_cache
def get_settings() -> ConvertkitSettings:
    """Get cached settings instance.

    Raises:
        ConfigurationError: If the environment or YAML file holds invalid values
    """
    try:
        return ConvertkitSettings()
    except (PydanticValidationError, SettingsError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def reload_settings() -> ConvertkitSettings:
    """Force reload settings (clear cache)."""
    get_settings.cache_clear()
    return get_settings()
