"""Batch command for converting many files of one category."""

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from convertkit.cli.callbacks import (
    load_settings,
    validate_category,
    validate_format,
    validate_output_dir,
)
from convertkit.config import ConvertkitSettings
from convertkit.core.batch import BatchItem, BatchResult
from convertkit.core.categories import Category, CategorySpec, build_category_table
from convertkit.core.session import ConversionSession
from convertkit.exceptions import ConversionError
from convertkit.utils.fs import format_size, resolve_output_path, write_bytes_atomic
from convertkit.utils.logging import get_console, get_logger, setup_task_logging

console = get_console()
log = get_logger(__name__)


def batch(
    inputs: Annotated[
        list[Path],
        typer.Argument(
            help="Files or directories to convert.",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ],
    category: Annotated[
        str,
        typer.Option(
            "--category",
            "-c",
            help="Category: image, audio, video, document, minify, unminify.",
            callback=validate_category,
        ),
    ],
    to: Annotated[
        str | None,
        typer.Option(
            "--to",
            "-t",
            help="Target format for every file (not needed for minify/unminify).",
            callback=validate_format,
        ),
    ] = None,
    output: Annotated[
        Path | None,
        typer.Option(
            "--output",
            "-o",
            help="Output directory for converted files.",
            file_okay=False,
            dir_okay=True,
            resolve_path=True,
            callback=validate_output_dir,
        ),
    ] = None,
    recursive: Annotated[
        bool,
        typer.Option(
            "--recursive",
            "-r",
            help="Recursively process subdirectories.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose output."),
    ] = False,
) -> None:
    """Convert many files of one category, in order.

    A failing file is reported and the batch moves on.

    Examples:
        convertkit batch photos/ --category image --to webp
        convertkit batch src/*.js --category minify -o dist
    """
    settings = load_settings()
    task_id, log_path = setup_task_logging(log_dir=settings.log_dir, prefix="batch", verbose=verbose)
    if verbose:
        log.info("Logs will be saved to", log_file=str(log_path))

    resolved = Category(category)
    if to is None and not resolved.is_code:
        console.print("[red]Error:[/red] --to is required for this category")
        raise typer.Exit(1)

    spec = build_category_table(settings.limits)[resolved]
    files = _discover_files(inputs, spec, recursive)
    if not files:
        console.print("[yellow]No files to process.[/yellow]")
        raise typer.Exit(0)

    output_dir = output or settings.get_output_dir()
    log.info(
        "Starting batch",
        task_id=task_id,
        files=len(files),
        category=resolved.value,
        target=to,
        output_dir=str(output_dir),
    )

    try:
        result = asyncio.run(_execute_batch(files, resolved, to, output_dir, settings))
    except KeyboardInterrupt:
        log.warning("Batch interrupted")
        console.print("\n[yellow]Batch interrupted.[/yellow]")
        raise typer.Exit(130) from None
    except ConversionError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1) from e
    except Exception as e:
        log.error("Batch failed", error=str(e), exc_info=True)
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    _display_summary(result)
    if result.summary.success_count == 0:
        raise typer.Exit(1)


def _discover_files(inputs: list[Path], spec: CategorySpec, recursive: bool) -> list[Path]:
    """Expand directories into the files the category accepts."""
    pattern = "**/*" if recursive else "*"
    files: list[Path] = []

    for entry in inputs:
        if entry.is_file():
            files.append(entry)
            continue
        found: list[Path] = []
        for ext in spec.sources:
            found.extend(f for f in entry.glob(f"{pattern}.{ext}") if f.is_file())
        # Sort by name for consistent ordering
        files.extend(sorted(set(found), key=lambda p: str(p)))

    return files


async def _execute_batch(
    files: list[Path],
    category: Category,
    to: str | None,
    output_dir: Path,
    settings: ConvertkitSettings,
) -> BatchResult:
    """Run the batch with a progress bar and write every success."""
    kinds = [category.worker_kind.value] if category.worker_kind is not None else []

    async with ConversionSession(settings, kinds=kinds, wait_ready=True) as session:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TextColumn("({task.completed}/{task.total})"),
            TimeElapsedColumn(),
            console=console,
            transient=False,
        ) as progress:
            progress_task_id = progress.add_task("[cyan]Converting files...", total=len(files))

            def on_item(index: int, item: BatchItem) -> None:
                if item.success:
                    target = resolve_output_path(
                        output_dir, item.output_name or item.original_name, settings.output.on_conflict
                    )
                    if target is None:
                        progress.console.print(f"  [yellow]-[/yellow] {item.original_name} (exists)")
                    else:
                        write_bytes_atomic(target, item.data or b"")
                        progress.console.print(
                            f"  [green]✓[/green] {item.original_name} -> {target.name}"
                        )
                else:
                    progress.console.print(f"  [red]x[/red] {item.original_name}")
                    progress.console.print(f"    [dim]{_simplify_error(item.error or '')}[/dim]")
                progress.advance(progress_task_id)

            return await session.run_batch(files, category, to, on_item=on_item)


def _display_summary(result: BatchResult) -> None:
    """Display batch processing summary."""
    summary = result.summary
    console.print()

    table = Table(title="Batch Summary", show_header=False)
    table.add_column("Metric", style="bold")
    table.add_column("Value")

    table.add_row("Total Files", str(summary.file_count))
    table.add_row("Completed", f"[green]{summary.success_count}[/green]")
    table.add_row("Failed", f"[red]{summary.failure_count}[/red]")
    if summary.success_count:
        table.add_row("Original Size", format_size(summary.total_original_size))
        table.add_row("Converted Size", format_size(summary.total_converted_size))
        table.add_row("Saved", f"{summary.reduction_percent:+.2f}%")

    console.print(table)

    failed = result.failures
    if failed:
        console.print()
        console.print("[bold red]Failed Files:[/bold red]")
        for item in failed[:10]:
            console.print(f"  [dim]-[/dim] {item.original_name}")
            console.print(f"    [dim]{_simplify_error(item.error or 'Unknown error')}[/dim]")
        if len(failed) > 10:
            console.print(f"  [dim]... and {len(failed) - 10} more[/dim]")

    console.print()


def _simplify_error(error: str) -> str:
    """Truncate long error messages for display."""
    if len(error) > 100:
        return error[:97] + "..."
    return error
