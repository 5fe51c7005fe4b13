"""Formats command listing the category table."""

from rich.console import Console
from rich.table import Table

from convertkit.cli.callbacks import load_settings
from convertkit.core.categories import Category, build_category_table

console = Console()

_STRATEGIES = {
    Category.IMAGE: "background worker (in-process fallback)",
    Category.DOCUMENT: "background worker for PDF, in-process for text",
    Category.AUDIO: "ffmpeg",
    Category.VIDEO: "ffmpeg",
    Category.MINIFY: "background worker",
    Category.UNMINIFY: "background worker",
}


def formats() -> None:
    """List every category with its size limit and formats."""
    table = Table(title="Supported Conversions")
    table.add_column("Category", style="bold")
    table.add_column("Max Size", justify="right")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Runs On", style="dim")

    for category, spec in build_category_table(load_settings().limits).items():
        targets = "same language" if category.is_code else ", ".join(spec.targets)
        table.add_row(
            category.value,
            f"{spec.max_mb:g} MB",
            ", ".join(spec.sources),
            targets,
            _STRATEGIES[category],
        )

    console.print(table)
