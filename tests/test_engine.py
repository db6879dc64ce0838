"""Tests for the engine facade: full finish flow, collaborators and operation metrics."""

from datetime import datetime, timezone

import pytest

from builders import UID, SessionIds, exercise, make_set, make_workout
from liftlog_metrics.documents import (
    InMemoryDocumentStore,
    WriteOp,
    all_time_metrics_path,
    exercise_path,
    instance_path,
    pending_metrics_path,
    session_path,
)
from liftlog_metrics.engine import WorkoutMetricsEngine
from liftlog_metrics.metrics import get_metrics


class FailingMetricsStore(InMemoryDocumentStore):
    """Fails every batch that touches a metrics document."""

    def _apply(self, ops: list[WriteOp]) -> None:
        if any("/metrics/" in op.path for op in ops):
            raise ConnectionError("store unavailable")
        super()._apply(ops)


class TestFinishWorkout:
    async def test_full_flow_writes_everything(self, engine, store, catalog_calls):
        workout = make_workout(
            exercise("i1", "bench", make_set("a", 150, 3)),
            exercise("i2", "plank", make_set("b", time=60), tracking=["time"]),
        )
        finished = await engine.finish_workout(UID, workout)

        session_id = finished.session.session_id
        assert session_id == "session-1"
        assert session_path(UID, session_id) in store.documents
        assert instance_path(UID, "bench", session_id, "i1") in store.documents
        assert instance_path(UID, "plank", session_id, "i2") in store.documents
        assert store.documents[all_time_metrics_path(UID, "plank")] == {
            "totalSets": 1,
            "totalTime": 60,
            "maxTopTime": 60,
            "maxTotalTime": 60,
        }
        assert catalog_calls == [(UID, ["bench", "plank"])]

    async def test_no_completed_sets_does_nothing(self, engine, store, catalog_calls):
        workout = make_workout(exercise("i1", "bench", make_set("a", 150, 3, completed=False)))
        finished = await engine.finish_workout(UID, workout)

        assert finished.session.session_id == ""
        assert finished.progressions.items == []
        assert store.commits == []
        assert catalog_calls == []

    async def test_async_catalog_callback_is_awaited(self, store):
        seen = []

        async def refresh(uid, exercise_ids):
            seen.append((uid, exercise_ids))

        engine = WorkoutMetricsEngine(store, on_catalog_changed=refresh, id_factory=SessionIds())
        await engine.finish_workout(UID, make_workout(exercise("i1", "bench", make_set("a", 100, 5))))
        assert seen == [(UID, ["bench"])]

    async def test_explicit_start_stamps_last_performed(self, engine, store):
        start = datetime(2024, 3, 2, 18, 0, tzinfo=timezone.utc)
        workout = make_workout(exercise("i1", "bench", make_set("a", 100, 5)))
        finished = await engine.finish_workout(UID, workout, start=start)

        session_id = finished.session.session_id
        stamped = "2024-03-02T18:00:00Z"
        assert store.documents[session_path(UID, session_id)]["startAt"] == stamped
        assert store.documents[instance_path(UID, "bench", session_id, "i1")]["date"] == stamped
        assert store.documents[exercise_path(UID, "bench")]["lastPerformedAt"] == stamped


class TestOutboxRecovery:
    async def test_failed_metrics_write_is_replayable(self):
        failing = FailingMetricsStore()
        engine = WorkoutMetricsEngine(failing, use_outbox=True, id_factory=lambda: "s1")
        workout = make_workout(exercise("i1", "bench", make_set("a", 100, 5)))

        with pytest.raises(ConnectionError):
            await engine.finish_workout(UID, workout)
        assert pending_metrics_path(UID, "s1") in failing.documents
        assert all_time_metrics_path(UID, "bench") not in failing.documents

        healthy = InMemoryDocumentStore(failing.snapshot())
        recovered = WorkoutMetricsEngine(healthy)
        assert await recovered.replay_pending_metrics(UID) == {"bench"}
        assert pending_metrics_path(UID, "s1") not in healthy.documents
        assert healthy.documents[all_time_metrics_path(UID, "bench")]["maxTopWeight"] == 100


class TestOperationMetrics:
    async def test_successes_and_failures_are_recorded(self, engine):
        workout = make_workout(exercise("i1", "bench", make_set("a", 100, 5)))
        await engine.finish_workout(UID, workout)

        failing = WorkoutMetricsEngine(FailingMetricsStore(), id_factory=lambda: "s1")
        with pytest.raises(ConnectionError):
            await failing.write_exercise_metrics_for_session(UID, workout, "s1")

        operations = get_metrics()["operations"]
        assert operations["finish_workout"]["successes"] == 1
        assert operations["write_session_and_collect_instances"]["invocations"] == 1
        assert operations["write_exercise_metrics_for_session"]["failures"] == 1
        assert operations["write_exercise_metrics_for_session"]["successes"] == 1
