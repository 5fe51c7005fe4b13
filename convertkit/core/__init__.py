"""Conversion orchestration core."""

from convertkit.core.batch import BatchItem, BatchResult, BatchRunner, BatchSummary
from convertkit.core.categories import Category, ConversionPlan, Strategy
from convertkit.core.orchestrator import ConversionOrchestrator, OrchestratorState
from convertkit.core.results import ConversionRequest, ConversionResult, ObjectUrlRegistry
from convertkit.core.session import ConversionSession
from convertkit.core.worker import ProgressState, Readiness, WorkerKind, WorkerLifecycleManager

__all__ = [
    "BatchItem",
    "BatchResult",
    "BatchRunner",
    "BatchSummary",
    "Category",
    "ConversionOrchestrator",
    "ConversionPlan",
    "ConversionRequest",
    "ConversionResult",
    "ConversionSession",
    "ObjectUrlRegistry",
    "OrchestratorState",
    "ProgressState",
    "Readiness",
    "Strategy",
    "WorkerKind",
    "WorkerLifecycleManager",
]
