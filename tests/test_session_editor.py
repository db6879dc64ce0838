"""Tests for reconciling edited sessions."""

from datetime import datetime, timezone

from builders import UID, exercise, make_set, make_workout
from liftlog_metrics.documents import (
    InMemoryDocumentStore,
    all_time_metrics_path,
    exercise_path,
    instance_path,
    last_session_metrics_path,
    pending_metrics_path,
    session_exercise_path,
    session_path,
)
from liftlog_metrics.engine import WorkoutMetricsEngine
from liftlog_metrics.models import Workout
from liftlog_metrics.session_editor import set_signature, write_edited_session


def _workout(*bench_sets, squat_sets=(), start="2024-03-01T10:00:00+00:00"):
    exercises = [exercise("i1", "bench", *bench_sets)]
    if squat_sets:
        exercises.append(exercise("i2", "squat", *squat_sets))
    return make_workout(*exercises, start=start, end=start.replace("T10", "T11"))


class TestSetSignature:
    def test_equal_values_with_different_types(self):
        stored = [{"id": "a", "order": 1, "trackingData": {"weight": 100.0, "reps": 5, "time": None}}]
        fresh = [{"id": "a", "order": 1, "trackingData": {"weight": 100, "reps": 5.0, "time": None}}]
        assert set_signature(stored) == set_signature(fresh)

    def test_order_matters(self):
        a = {"id": "a", "order": 1, "trackingData": {}}
        b = {"id": "b", "order": 2, "trackingData": {}}
        assert set_signature([a, b]) != set_signature([b, a])


class TestWriteEditedSession:
    async def test_unchanged_edit_leaves_store_identical(self, engine, store, catalog_calls):
        workout = _workout(make_set("a", 100, 5), make_set("b", 110, 3))
        finished = await engine.finish_workout(UID, workout)
        before = store.snapshot()
        calls_before = len(catalog_calls)

        result = await engine.write_edited_session(UID, finished.session.session_id, workout)

        assert result is not None
        assert result.changed_exercise_ids == frozenset()
        assert store.snapshot() == before
        assert len(catalog_calls) == calls_before

    async def test_changed_set_rewrites_instance_and_rescans(self, engine, store, catalog_calls):
        finished = await engine.finish_workout(UID, _workout(make_set("a", 100, 5)))
        session_id = finished.session.session_id

        edited = _workout(make_set("a", 120, 5))
        result = await engine.write_edited_session(UID, session_id, edited)

        assert result.changed_exercise_ids == frozenset({"bench"})
        instance = store.documents[instance_path(UID, "bench", session_id, "i1")]
        assert instance["topWeight"] == 120
        all_time = store.documents[all_time_metrics_path(UID, "bench")]
        assert all_time["maxTopWeight"] == 120
        assert all_time["totalSets"] == 1
        assert store.documents[exercise_path(UID, "bench")]["lastPerformedAt"] == "2024-03-01T11:00:00Z"
        assert catalog_calls[-1] == (UID, ["bench"])

    async def test_edit_can_lower_historical_maximum(self, engine, store):
        first = await engine.finish_workout(UID, _workout(make_set("a", 200, 3)))
        await engine.finish_workout(
            UID, _workout(make_set("a", 150, 5), start="2024-03-05T10:00:00+00:00")
        )

        await engine.write_edited_session(
            UID, first.session.session_id, _workout(make_set("a", 140, 3))
        )

        all_time = store.documents[all_time_metrics_path(UID, "bench")]
        assert all_time["maxTopWeight"] == 150
        assert all_time["maxTopRepsAtTopWeight"] == 5
        assert all_time["totalSets"] == 2
        last = store.documents[last_session_metrics_path(UID, "bench")]
        assert last["lastSessionId"] == "session-2"
        assert store.documents[exercise_path(UID, "bench")]["lastPerformedAt"] == "2024-03-05T10:00:00Z"

    async def test_removed_exercise_is_deleted(self, engine, store):
        workout = _workout(make_set("a", 100, 5), squat_sets=[make_set("s", 180, 5)])
        finished = await engine.finish_workout(UID, workout)
        session_id = finished.session.session_id

        result = await engine.write_edited_session(UID, session_id, _workout(make_set("a", 100, 5)))

        assert result.changed_exercise_ids == frozenset({"squat"})
        assert session_exercise_path(UID, session_id, "i2") not in store.documents
        assert instance_path(UID, "squat", session_id, "i2") not in store.documents
        assert all_time_metrics_path(UID, "squat") not in store.documents
        assert last_session_metrics_path(UID, "squat") not in store.documents
        summary = store.documents[session_path(UID, session_id)]
        assert summary["totalCompletedSets"] == 1
        assert [c["exerciseId"] for c in summary["exerciseCounts"]] == ["bench"]

    async def test_uncompleting_every_set_counts_as_removal(self, engine, store):
        finished = await engine.finish_workout(UID, _workout(make_set("a", 100, 5)))
        session_id = finished.session.session_id

        edited = _workout(make_set("a", 100, 5, completed=False))
        result = await engine.write_edited_session(UID, session_id, edited)

        assert result.changed_exercise_ids == frozenset({"bench"})
        assert instance_path(UID, "bench", session_id, "i1") not in store.documents
        assert store.documents[session_path(UID, session_id)]["totalCompletedSets"] == 0

    async def test_moved_start_marks_exercises_changed(self, engine, store):
        finished = await engine.finish_workout(UID, _workout(make_set("a", 100, 5)))
        session_id = finished.session.session_id

        moved = _workout(make_set("a", 100, 5), start="2024-02-28T10:00:00+00:00")
        result = await engine.write_edited_session(UID, session_id, moved)

        assert result.changed_exercise_ids == frozenset({"bench"})
        instance = store.documents[instance_path(UID, "bench", session_id, "i1")]
        assert instance["date"] == "2024-02-28T10:00:00Z"
        assert store.documents[session_path(UID, session_id)]["dayKey"] == "2024-02-28"

    async def test_empty_workout_is_noop(self, store):
        workout = make_workout()
        end = datetime(2024, 3, 1, 11, tzinfo=timezone.utc)
        assert await write_edited_session(store, UID, "s1", workout, end) is None
        assert store.commits == []

    async def test_deleting_every_set_clears_session_and_metrics(self, engine, store, catalog_calls):
        finished = await engine.finish_workout(UID, _workout(make_set("a", 100, 5)))
        session_id = finished.session.session_id

        edited = make_workout(exercise("i1", "bench"))
        assert edited.sets_by_id == {}
        result = await engine.write_edited_session(UID, session_id, edited)

        assert result is not None
        assert result.changed_exercise_ids == frozenset({"bench"})
        assert session_exercise_path(UID, session_id, "i1") not in store.documents
        assert instance_path(UID, "bench", session_id, "i1") not in store.documents
        summary = store.documents[session_path(UID, session_id)]
        assert summary["totalCompletedSets"] == 0
        assert summary["exerciseCounts"] == []
        assert all_time_metrics_path(UID, "bench") not in store.documents
        assert last_session_metrics_path(UID, "bench") not in store.documents
        assert catalog_calls[-1] == (UID, ["bench"])

    async def test_missing_set_map_is_noop(self, store):
        workout = Workout.model_validate(
            {
                "startTimeISO": "2024-03-01T10:00:00+00:00",
                "exercises": [{"instanceId": "i1", "exerciseId": "bench", "setIds": ["a"]}],
            }
        )
        end = datetime(2024, 3, 1, 11, tzinfo=timezone.utc)
        assert await write_edited_session(store, UID, "s1", workout, end) is None
        assert store.commits == []

    async def test_outbox_record_cleared_after_rescan(self):
        store = InMemoryDocumentStore()
        engine = WorkoutMetricsEngine(store, use_outbox=True, id_factory=lambda: "s1")
        await engine.finish_workout(UID, _workout(make_set("a", 100, 5)))
        assert pending_metrics_path(UID, "s1") not in store.documents

        await engine.write_edited_session(UID, "s1", _workout(make_set("a", 105, 5)))

        assert pending_metrics_path(UID, "s1") not in store.documents
        written = [op.path for commit in store.commits for op in commit if op.kind == "set"]
        assert written.count(pending_metrics_path(UID, "s1")) == 2
