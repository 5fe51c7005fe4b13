"""Convert command for single file conversion."""

import asyncio
from pathlib import Path
from typing import Annotated

import anyio
import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn

from convertkit.cli.callbacks import (
    load_settings,
    validate_category,
    validate_format,
    validate_output_dir,
)
from convertkit.config import ConvertkitSettings
from convertkit.core.categories import (
    Category,
    Strategy,
    build_category_table,
    guess_category,
    infer_source_format,
    resolve_strategy,
)
from convertkit.core.results import ConversionRequest, ConversionResult
from convertkit.core.session import ConversionSession
from convertkit.exceptions import ConversionError
from convertkit.utils.fs import file_extension, format_size, resolve_output_path, write_bytes_atomic
from convertkit.utils.logging import get_logger, setup_task_logging

console = Console()
log = get_logger(__name__)


def convert(
    input_file: Annotated[
        Path,
        typer.Argument(
            help="Input file path to convert.",
            exists=True,
            file_okay=True,
            dir_okay=False,
            readable=True,
            resolve_path=True,
        ),
    ],
    to: Annotated[
        str | None,
        typer.Option(
            "--to",
            "-t",
            help="Target format (e.g. webp, mp3, md). Code categories keep the language.",
            callback=validate_format,
        ),
    ] = None,
    category: Annotated[
        str | None,
        typer.Option(
            "--category",
            "-c",
            help="Category: image, audio, video, document, minify, unminify.",
            callback=validate_category,
        ),
    ] = None,
    output: Annotated[
        Path | None,
        typer.Option(
            "--output",
            "-o",
            help="Output directory for the converted file.",
            file_okay=False,
            dir_okay=True,
            resolve_path=True,
            callback=validate_output_dir,
        ),
    ] = None,
    ocr: Annotated[
        bool,
        typer.Option("--ocr", help="Run OCR on scanned PDF pages."),
    ] = False,
    quality: Annotated[
        int | None,
        typer.Option("--quality", "-q", min=1, max=100, help="Image encoder quality."),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose output."),
    ] = False,
) -> None:
    """Convert a single file.

    Examples:
        convertkit convert photo.png --to webp
        convertkit convert report.pdf --to md --ocr
        convertkit convert app.js --category minify
    """
    settings = load_settings()
    task_id, log_path = setup_task_logging(log_dir=settings.log_dir, prefix="convert", verbose=verbose)
    if verbose:
        log.info("Logs will be saved to", log_file=str(log_path))

    resolved = _resolve_category(input_file, to, category)
    if resolved is None:
        console.print(
            f"[red]Error:[/red] Cannot tell the category of {input_file.name}; use --category"
        )
        raise typer.Exit(1)
    if to is None and not resolved.is_code:
        console.print("[red]Error:[/red] --to is required for this category")
        raise typer.Exit(1)

    if ocr:
        settings = settings.model_copy(
            update={"document": settings.document.model_copy(update={"enable_ocr": True})}
        )

    output_dir = output or settings.get_output_dir()
    log.info(
        "Starting conversion",
        task_id=task_id,
        input_file=str(input_file),
        category=resolved.value,
        target=to,
        output_dir=str(output_dir),
    )

    options: dict = {}
    if ocr:
        options["use_ocr"] = True
    if quality is not None:
        options["quality"] = quality

    try:
        result, written = asyncio.run(
            _execute_conversion(input_file, resolved, to, options, output_dir, settings)
        )
    except KeyboardInterrupt:
        log.warning("Task interrupted", input_file=str(input_file))
        console.print("\n[yellow]Interrupted. Exiting...[/yellow]")
        raise typer.Exit(130) from None
    except ConversionError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1) from e
    except Exception as e:
        log.error("Conversion failed", error=str(e), exc_info=True)
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    if written is None:
        console.print(f"[yellow]Skipped:[/yellow] {result.name} already exists in {output_dir}")
        return

    console.print(
        f"[green]Converted[/green] {input_file.name} -> {written} ({format_size(result.size)})"
    )
    if result.stats:
        percentage = result.stats.get("percentage", 0)
        console.print(f"  [dim]Size change: {percentage:+.2f}% relative to the original[/dim]")


def _resolve_category(input_file: Path, to: str | None, category: str | None) -> Category | None:
    if category is not None:
        return Category(category)
    return guess_category(file_extension(input_file.name), to)


def _worker_kinds(category: Category, source_format: str, target_format: str) -> list[str]:
    """Workers this single conversion needs."""
    strategy = resolve_strategy(category, source_format, target_format, has_worker=True)
    if strategy is Strategy.BACKGROUND_DISPATCH and category.worker_kind is not None:
        return [category.worker_kind.value]
    return []


async def _execute_conversion(
    input_file: Path,
    category: Category,
    to: str | None,
    options: dict,
    output_dir: Path,
    settings: ConvertkitSettings,
) -> tuple[ConversionResult, Path | None]:
    """Run the conversion and write the result."""
    spec = build_category_table(settings.limits)[category]
    source_format = infer_source_format(input_file.name, spec)
    target_format = to or source_format

    data = await anyio.Path(input_file).read_bytes()
    request = ConversionRequest.for_file(
        data, input_file.name, target_format, source_format=source_format, **options
    )

    async with ConversionSession(
        settings,
        kinds=_worker_kinds(category, source_format, target_format),
        wait_ready=True,
    ) as session:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task(f"Converting {input_file.name}", total=100)

            def on_progress(state) -> None:
                progress.update(
                    task,
                    completed=state.percent,
                    description=state.message or f"Converting {input_file.name}",
                )

            result = await session.convert(request, category, on_progress=on_progress)

        target = resolve_output_path(output_dir, result.name, settings.output.on_conflict)
        if target is not None:
            write_bytes_atomic(target, result.data)
            log.info("Output written", output=str(target), size=result.size)
        return result, target
