"""CLI callback functions."""

from pathlib import Path

import typer

from convertkit.config import ConvertkitSettings, get_settings
from convertkit.core.categories import Category
from convertkit.exceptions import ConfigurationError
from convertkit.utils.logging import get_console


def validate_output_dir(value: Path | None) -> Path | None:
    """Validate output directory if given."""
    if value is None:
        return None

    if value.exists() and not value.is_dir():
        raise typer.BadParameter(f"Output path exists but is not a directory: {value}")

    return value


def validate_category(value: str | None) -> str | None:
    """Validate category option."""
    options = [category.value for category in Category]
    if value is not None and value.lower() not in options:
        raise typer.BadParameter(f"Invalid category '{value}'. Options: {', '.join(options)}")

    return value.lower() if value else None


def validate_format(value: str | None) -> str | None:
    """Normalize a format option (``.PNG`` -> ``png``)."""
    if value is None:
        return None
    fmt = value.lower().lstrip(".")
    if not fmt:
        raise typer.BadParameter("Format must not be empty")
    return fmt


def load_settings() -> ConvertkitSettings:
    """Load settings, exiting with a readable message if the config is invalid."""
    try:
        return get_settings()
    except ConfigurationError as e:
        get_console().print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1) from e
