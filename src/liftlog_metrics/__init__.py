"""liftlog metrics: session aggregation, exercise metrics and progressions."""

from .documents import DocumentStore, InMemoryDocumentStore
from .engine import WorkoutMetricsEngine
from .models import ProgressionItem, ProgressionsResult, Workout

__all__ = [
    "DocumentStore",
    "InMemoryDocumentStore",
    "ProgressionItem",
    "ProgressionsResult",
    "Workout",
    "WorkoutMetricsEngine",
]
