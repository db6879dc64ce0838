from __future__ import annotations

import pytest

from builders import SessionIds
from liftlog_metrics.documents import InMemoryDocumentStore
from liftlog_metrics.engine import WorkoutMetricsEngine
from liftlog_metrics.metrics import reset_metrics


@pytest.fixture(autouse=True)
def _reset_operation_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def catalog_calls() -> list[tuple[str, list[str]]]:
    return []


@pytest.fixture
def engine(store, catalog_calls) -> WorkoutMetricsEngine:
    def on_catalog_changed(uid: str, exercise_ids):
        catalog_calls.append((uid, list(exercise_ids)))

    return WorkoutMetricsEngine(
        store,
        on_catalog_changed=on_catalog_changed,
        id_factory=SessionIds(),
        timezone="UTC",
    )
