"""Conversion categories, their limits and the strategy that serves them."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from convertkit.config.constants import (
    AUDIO_FORMATS,
    CODE_FORMATS,
    DOCUMENT_FORMATS,
    FORMATTED_MARKER,
    IMAGE_FORMATS,
    MINIFIED_MARKER,
    VIDEO_FORMATS,
)
from convertkit.core.worker import WorkerKind
from convertkit.exceptions import ValidationError
from convertkit.utils.fs import canonical_format, file_extension, insert_marker, replace_extension

if TYPE_CHECKING:
    from convertkit.config.settings import CategoryLimitsConfig
    from convertkit.core.results import ConversionRequest


class Strategy(str, Enum):
    """How a request is executed."""

    BACKGROUND_DISPATCH = "background"
    TRANSCODE = "transcode"
    DIRECT_TRANSFORM = "direct"


class Category(str, Enum):
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    DOCUMENT = "document"
    MINIFY = "minify"
    UNMINIFY = "unminify"

    @property
    def is_code(self) -> bool:
        return self in (Category.MINIFY, Category.UNMINIFY)

    @property
    def worker_kind(self) -> WorkerKind | None:
        """Background worker kind serving this category (None for media)."""
        return _WORKER_KINDS.get(self)


_WORKER_KINDS = {
    Category.IMAGE: WorkerKind.IMAGE,
    Category.DOCUMENT: WorkerKind.DOCUMENT,
    Category.MINIFY: WorkerKind.MINIFY,
    Category.UNMINIFY: WorkerKind.UNMINIFY,
}


@dataclass(frozen=True)
class CategorySpec:
    """Upload ceiling and format allow-lists of one category."""

    category: Category
    max_mb: float
    sources: tuple[str, ...]
    targets: tuple[str, ...]

    @property
    def max_bytes(self) -> int:
        return int(self.max_mb * 1024 * 1024)


@dataclass(frozen=True)
class ConversionPlan:
    """Outcome of validation: which strategy serves a request."""

    category: Category
    strategy: Strategy
    source_format: str
    target_format: str
    # Alias identity (jpeg -> jpg): bytes are returned unchanged
    passthrough: bool = False

    @property
    def worker_kind(self) -> WorkerKind | None:
        return self.category.worker_kind


def build_category_table(limits: CategoryLimitsConfig | None = None) -> dict[Category, CategorySpec]:
    """Build the category table, taking ceilings from ``limits`` when given."""
    from convertkit.config.settings import CategoryLimitsConfig

    limits = limits or CategoryLimitsConfig()
    return {
        Category.IMAGE: CategorySpec(Category.IMAGE, limits.image_mb, *IMAGE_FORMATS),
        Category.AUDIO: CategorySpec(Category.AUDIO, limits.audio_mb, *AUDIO_FORMATS),
        Category.VIDEO: CategorySpec(Category.VIDEO, limits.video_mb, *VIDEO_FORMATS),
        Category.DOCUMENT: CategorySpec(Category.DOCUMENT, limits.document_mb, *DOCUMENT_FORMATS),
        Category.MINIFY: CategorySpec(Category.MINIFY, limits.code_mb, CODE_FORMATS, CODE_FORMATS),
        Category.UNMINIFY: CategorySpec(
            Category.UNMINIFY, limits.code_mb, CODE_FORMATS, CODE_FORMATS
        ),
    }


def infer_source_format(name: str, spec: CategorySpec) -> str:
    """Source format from a file name, accepting ``jpeg`` where only ``jpg`` is listed."""
    ext = file_extension(name)
    if ext in spec.sources:
        return ext
    if canonical_format(ext) in spec.sources:
        return canonical_format(ext)
    return ext


def guess_category(source_format: str, target_format: str | None = None) -> Category | None:
    """Best-effort category for a pair of formats (code categories excluded)."""
    for category, (sources, targets) in (
        (Category.IMAGE, IMAGE_FORMATS),
        (Category.DOCUMENT, DOCUMENT_FORMATS),
        (Category.AUDIO, AUDIO_FORMATS),
        (Category.VIDEO, VIDEO_FORMATS),
    ):
        if source_format in sources and (target_format is None or target_format in targets):
            return category
    return None


def validate_request(
    request: ConversionRequest, spec: CategorySpec, *, has_worker: bool = True
) -> ConversionPlan:
    """Check a request against its category and resolve the strategy.

    Args:
        request: Request to check
        spec: Category limits and allow-lists
        has_worker: Whether a background worker serves the category

    Raises:
        ValidationError: If the request can never succeed.
    """
    category = spec.category
    source = request.source_format.lower().lstrip(".")
    target = request.target_format.lower().lstrip(".")

    if request.size == 0:
        raise ValidationError(f"{request.name} is empty")

    if request.size > spec.max_bytes:
        size_mb = request.size / (1024 * 1024)
        raise ValidationError(
            f"{request.name} is too large ({size_mb:.1f} MB). "
            f"Maximum size for {category.value} files is {spec.max_mb:g} MB"
        )

    if source not in spec.sources:
        raise ValidationError(
            f"Unsupported source format for {category.value}: {source or '(none)'}"
        )

    if category.is_code:
        # Code keeps its language; the target only selects the output flavour
        if target and target != source:
            raise ValidationError(f"{category.value.capitalize()} keeps the language: {source} -> {target}")
        return ConversionPlan(category, Strategy.BACKGROUND_DISPATCH, source, source)

    if target not in spec.targets:
        raise ValidationError(f"Unsupported target format for {category.value}: {target}")

    if source == target:
        raise ValidationError(f"Source and target formats are identical ({source})")

    return ConversionPlan(
        category=category,
        strategy=resolve_strategy(category, source, target, has_worker=has_worker),
        source_format=source,
        target_format=target,
        passthrough=canonical_format(source) == canonical_format(target),
    )


def resolve_strategy(
    category: Category, source_format: str, target_format: str, *, has_worker: bool = True
) -> Strategy:
    """Pick the execution strategy for a validated format pair."""
    if category in (Category.AUDIO, Category.VIDEO):
        return Strategy.TRANSCODE
    if category.is_code:
        return Strategy.BACKGROUND_DISPATCH

    if canonical_format(source_format) == canonical_format(target_format):
        return Strategy.DIRECT_TRANSFORM

    if category is Category.DOCUMENT and source_format != "pdf":
        # Text transforms are cheap enough to run in a thread
        return Strategy.DIRECT_TRANSFORM

    return Strategy.BACKGROUND_DISPATCH if has_worker else Strategy.DIRECT_TRANSFORM


def output_name(name: str, category: Category, target_format: str) -> str:
    """Name of the converted file.

    Example:
        >>> output_name("app.js", Category.MINIFY, "js")
        'app.min.js'
        >>> output_name("photo.png", Category.IMAGE, "webp")
        'photo.webp'
    """
    if category is Category.MINIFY:
        return insert_marker(name, MINIFIED_MARKER)
    if category is Category.UNMINIFY:
        return insert_marker(name, FORMATTED_MARKER)
    return replace_extension(name, target_format)
