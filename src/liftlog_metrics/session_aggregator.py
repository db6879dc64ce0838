"""Session aggregator: turns a finished workout into persisted session data.

Writes the session summary and one sub-record per exercise with completed
sets in a single batch, and builds the per-exercise instance records that
the metrics updater folds into running statistics.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from .documents import (
    DocumentStore,
    instance_path,
    pending_metrics_path,
    session_exercise_path,
    session_path,
)
from .models import (
    ExerciseCount,
    ExerciseEntry,
    InstanceRecord,
    Number,
    PendingMetrics,
    RepsInstance,
    SessionExerciseRecord,
    SessionSet,
    SessionSummary,
    SessionWriteResult,
    SetEntry,
    TimeInstance,
    UnclassifiedInstance,
    WeightRepsInstance,
    WeightTimeInstance,
    Workout,
)
from .utils import (
    TrackingCombination,
    as_display_number,
    classify_tracking,
    day_key,
    duration_minutes,
    estimate_1rm,
    infer_tracking_methods,
)

logger = logging.getLogger(__name__)

_RECORD_TYPES: dict[str, type[Any]] = {
    "weight_reps": WeightRepsInstance,
    "weight_time": WeightTimeInstance,
    "reps": RepsInstance,
    "time": TimeInstance,
    "unclassified": UnclassifiedInstance,
}


@dataclass(frozen=True)
class ExerciseSessionData:
    """One exercise's completed sets and derived record within a session."""

    exercise: ExerciseEntry
    order: int
    sets: list[SessionSet]
    combination: TrackingCombination
    record: InstanceRecord

    def sub_record(self) -> SessionExerciseRecord:
        best = getattr(self.record, "best_est_1rm", 0)
        return SessionExerciseRecord(
            exercise_id=self.exercise.exercise_id,
            order=self.order,
            sets=self.sets,
            est_1rm=best if best and best > 0 else None,
        )

    def exercise_count(self) -> ExerciseCount:
        return ExerciseCount(
            exercise_id=self.exercise.exercise_id,
            name=self.exercise.name,
            category=self.exercise.category,
            name_snap=f"{self.exercise.name} ({self.exercise.category})",
            completed_set_count=len(self.sets),
            order=self.order,
        )


# ---------------------------------------------------------------------------
# Pure aggregation
# ---------------------------------------------------------------------------


def normalize_completed_sets(
    exercise: ExerciseEntry, sets_by_id: Mapping[str, SetEntry] | None
) -> list[SessionSet]:
    """Completed sets in logged order, renumbered 1..N.

    Sets are taken in ``setIds`` order and stably sorted by their ``order``
    field; ids missing from ``sets_by_id`` are skipped.
    """
    sets_by_id = sets_by_id or {}
    completed = [
        entry
        for set_id in exercise.set_ids
        if (entry := sets_by_id.get(set_id)) is not None and entry.completed
    ]
    completed.sort(key=lambda entry: entry.order)
    return [
        SessionSet(id=entry.id, order=position, tracking_data=entry.tracking_data)
        for position, entry in enumerate(completed, start=1)
    ]


def resolve_combination(exercise: ExerciseEntry, sets: Sequence[SessionSet]) -> TrackingCombination:
    methods: Sequence[str] = exercise.tracking_methods
    if not methods:
        methods = infer_tracking_methods(s.tracking_data.model_dump() for s in sets)
    return classify_tracking(methods)


def _positive(value: Number | None) -> bool:
    return value is not None and value > 0


def _top_pair(pairs: Sequence[tuple[Number, Number]]) -> tuple[Number, Number]:
    """Max primary value and the largest secondary value achieved at it."""
    top = max((primary for primary, _ in pairs), default=0)
    top = max(top, 0)
    at_top = max((secondary for primary, secondary in pairs if primary == top), default=0)
    return top, at_top


def compute_aggregates(
    sets: Sequence[SessionSet], combination: TrackingCombination
) -> dict[str, Number]:
    """Per-combination aggregate fields (snake_case) for completed sets."""
    rows = [s.tracking_data for s in sets]

    if combination == "weight_reps":
        valid = [(row.weight or 0, row.reps) for row in rows if _positive(row.reps)]
        top_weight, reps_at_top = _top_pair(valid)
        estimates = [estimate_1rm(row.weight, row.reps) for row in rows]
        aggregates: dict[str, Number] = {
            "volume": sum(weight * reps for weight, reps in valid),
            "top_weight": top_weight,
            "best_est_1rm": max((est for est in estimates if est and est > 0), default=0),
            "completed_rep_count": sum(reps for _, reps in valid),
            "top_reps_at_top_weight": reps_at_top,
        }
    elif combination == "weight_time":
        valid = [(row.weight or 0, row.time) for row in rows if _positive(row.time)]
        top_weight, time_at_top = _top_pair(valid)
        aggregates = {
            "top_weight": top_weight,
            "top_time_at_top_weight": time_at_top,
            "total_time": sum(time for _, time in valid),
        }
    elif combination == "reps":
        reps = [row.reps for row in rows if _positive(row.reps)]
        aggregates = {
            "top_reps": max(reps, default=0),
            "total_reps": sum(reps),
            "completed_rep_count": sum(reps),
        }
    elif combination == "time":
        times = [row.time for row in rows if _positive(row.time)]
        aggregates = {
            "top_time": max(times, default=0),
            "total_time": sum(times),
        }
    else:
        aggregates = {}

    return {key: as_display_number(value) for key, value in aggregates.items()}


def build_instance_record(
    exercise: ExerciseEntry,
    sets: Sequence[SessionSet],
    session_id: str,
    date: datetime,
    combination: TrackingCombination | None = None,
) -> InstanceRecord:
    combination = combination or resolve_combination(exercise, sets)
    record_type = _RECORD_TYPES[combination]
    return record_type(
        session_id=session_id,
        exercise_in_session_id=exercise.instance_id,
        exercise_id=exercise.exercise_id,
        date=date,
        completed_set_count=len(sets),
        **compute_aggregates(sets, combination),
    )


def collect_exercise_data(
    workout: Workout, session_id: str, date: datetime
) -> list[ExerciseSessionData]:
    """Aggregate every exercise of ``workout`` that has completed sets."""
    collected: list[ExerciseSessionData] = []
    for index, exercise in enumerate(workout.exercises):
        sets = normalize_completed_sets(exercise, workout.sets_by_id)
        if not sets:
            continue
        combination = resolve_combination(exercise, sets)
        collected.append(
            ExerciseSessionData(
                exercise=exercise,
                order=exercise.order if exercise.order is not None else index + 1,
                sets=sets,
                combination=combination,
                record=build_instance_record(exercise, sets, session_id, date, combination),
            )
        )
    return collected


def build_session_summary(
    entries: Sequence[ExerciseSessionData],
    start: datetime,
    end: datetime,
    timezone_name: str | None = None,
) -> SessionSummary:
    return SessionSummary(
        start_at=start,
        end_at=end,
        duration_min=duration_minutes(start, end),
        day_key=day_key(start, timezone_name),
        total_completed_sets=sum(len(entry.sets) for entry in entries),
        exercise_counts=[entry.exercise_count() for entry in entries],
    )


def pending_metrics_record(session_id: str, exercise_ids: Sequence[str]) -> PendingMetrics:
    return PendingMetrics(
        session_id=session_id,
        exercise_ids=sorted(set(exercise_ids)),
        created_at=datetime.now(UTC),
    )


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


async def write_session_and_collect_instances(
    store: DocumentStore,
    uid: str,
    workout: Workout,
    start: datetime,
    end: datetime,
    session_id: str,
    *,
    timezone_name: str | None = None,
    outbox: bool = False,
) -> SessionWriteResult:
    """Persist the session summary and sub-records in one batch.

    Returns the instance records for ``write_exercise_instances``. Without
    any completed set nothing is written and the result has an empty
    session id.
    """
    if not workout.has_completed_sets():
        logger.info("No completed sets for user=%s, skipping session write", uid)
        return SessionWriteResult(session_id="", date=datetime.now(UTC), instances=[])

    entries = collect_exercise_data(workout, session_id, start)
    summary = build_session_summary(entries, start, end, timezone_name)

    batch = store.batch()
    for entry in entries:
        batch.set(
            session_exercise_path(uid, session_id, entry.exercise.instance_id),
            entry.sub_record().to_document(),
        )
    batch.set(session_path(uid, session_id), summary.to_document(), merge=True)
    if outbox:
        pending = pending_metrics_record(session_id, [e.exercise.exercise_id for e in entries])
        batch.set(pending_metrics_path(uid, session_id), pending.to_document())
    await batch.commit()

    logger.info(
        "Wrote session %s for user=%s (%d exercises, %d completed sets)",
        session_id,
        uid,
        len(entries),
        summary.total_completed_sets,
        extra={"liftlog_user_id": uid, "liftlog_session_id": session_id},
    )
    return SessionWriteResult(
        session_id=session_id,
        date=start,
        instances=[entry.record for entry in entries],
    )


async def write_exercise_instances(
    store: DocumentStore, uid: str, instances: Sequence[InstanceRecord]
) -> None:
    if not instances:
        return
    batch = store.batch()
    for record in instances:
        batch.set(
            instance_path(uid, record.exercise_id, record.session_id, record.exercise_in_session_id),
            record.to_document(),
        )
    await batch.commit()
    logger.info("Wrote %d instance records for user=%s", len(instances), uid)
