"""Main CLI application using Typer."""

from typing import Annotated

import typer
from dotenv import load_dotenv
from rich.console import Console

from convertkit.cli.commands.batch import batch
from convertkit.cli.commands.convert import convert
from convertkit.cli.commands.formats import formats
from convertkit.config.constants import APP_NAME, APP_VERSION

# Load environment variables from .env file
load_dotenv()

app = typer.Typer(
    name=APP_NAME,
    help="Local file conversion for images, audio, video, documents and code.",
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
    context_settings={"help_option_names": ["-h", "--help"]},
)

console = Console()

app.command(name="convert", help="Convert a single file.")(convert)
app.command(name="batch", help="Convert many files of one category.")(batch)
app.command(name="formats", help="List categories, size limits and formats.")(formats)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold blue]{APP_NAME}[/bold blue] version [green]{APP_VERSION}[/green]")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """convertkit - convert files locally.

    Heavy work runs in background worker processes; media goes through ffmpeg.
    """
    pass


if __name__ == "__main__":
    app()
