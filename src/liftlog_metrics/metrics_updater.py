"""Keeps per-exercise LastSessionMetrics / AllTimeMetrics up to date.

Two modes share the fold in ``metrics_fold``:

* incremental: a freshly written session is folded into the stored
  all-time document and replaces the last-session snapshot.
* full rescan: every stored instance record of an exercise is re-read and
  both documents are rebuilt from scratch. Used after edits, which can
  retroactively change the most recent session or a historical maximum.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime

from pydantic import ValidationError

from .documents import (
    DocumentStore,
    all_time_metrics_path,
    exercise_path,
    instances_path,
    last_session_metrics_path,
    pending_metrics_collection,
    pending_metrics_path,
)
from .metrics_fold import RebuiltMetrics, fold_all_time, last_session_from_record, rebuild_metrics
from .models import AllTimeMetrics, InstanceRecord, PendingMetrics, Workout, dump_datetime, parse_instance_record
from .session_aggregator import collect_exercise_data
from .utils import classify_tracking

logger = logging.getLogger(__name__)


async def write_exercise_metrics_for_session(
    store: DocumentStore,
    uid: str,
    workout: Workout,
    session_id: str,
    *,
    start: datetime | None = None,
    outbox: bool = False,
) -> set[str]:
    """Fold a newly written session into each exercise's metrics.

    Commits the last-session batch (with ``lastPerformedAt`` stamps) and then
    the all-time batch. ``start`` must match the date the session's instance
    records were written with; it defaults to the workout's own start.
    Returns the ids of the exercises updated.
    """
    start = start or workout.start_time_iso
    entries = collect_exercise_data(workout, session_id, start)
    if not entries:
        logger.info("No completed sets for user=%s session=%s, metrics unchanged", uid, session_id)
        return set()

    records_by_exercise: dict[str, list[InstanceRecord]] = {}
    for entry in entries:
        records_by_exercise.setdefault(entry.exercise.exercise_id, []).append(entry.record)

    last_batch = store.batch()
    for exercise_id, records in records_by_exercise.items():
        last_batch.set(
            last_session_metrics_path(uid, exercise_id),
            last_session_from_record(records[-1]).to_document(),
        )
        last_batch.set(
            exercise_path(uid, exercise_id),
            {"lastPerformedAt": dump_datetime(start)},
            merge=True,
        )

    all_time_batch = store.batch()
    for exercise_id, records in records_by_exercise.items():
        stored = await store.get(all_time_metrics_path(uid, exercise_id))
        all_time = AllTimeMetrics.model_validate(stored or {})
        for record in records:
            all_time = fold_all_time(all_time, record)
        all_time_batch.set(all_time_metrics_path(uid, exercise_id), all_time.to_document())
    if outbox:
        all_time_batch.delete(pending_metrics_path(uid, session_id))

    await last_batch.commit()
    await all_time_batch.commit()

    logger.info(
        "Updated metrics for user=%s session=%s (%d exercises)",
        uid,
        session_id,
        len(records_by_exercise),
        extra={"liftlog_user_id": uid, "liftlog_session_id": session_id},
    )
    return set(records_by_exercise)


async def load_instance_records(
    store: DocumentStore,
    uid: str,
    exercise_id: str,
    tracking: Iterable[str] | None = None,
) -> list[InstanceRecord]:
    """Read and validate every stored instance record of an exercise."""
    fallback = classify_tracking(tracking) if tracking else None
    records: list[InstanceRecord] = []
    for snapshot in await store.get_all(instances_path(uid, exercise_id), order_by="date"):
        try:
            records.append(
                parse_instance_record(
                    snapshot.data, exercise_id=exercise_id, fallback_tracking=fallback
                )
            )
        except ValidationError as exc:
            logger.warning(
                "Skipping malformed instance record %s: %s",
                snapshot.path,
                exc.errors(include_url=False),
            )
    return records


async def recompute_metrics_for_exercise(
    store: DocumentStore,
    uid: str,
    exercise_id: str,
    *,
    tracking: Iterable[str] | None = None,
    editing_session_id: str | None = None,
    editing_end: datetime | None = None,
) -> RebuiltMetrics:
    """Rebuild both metrics documents of one exercise from its instance records.

    Deletes both documents when no record is left. ``lastPerformedAt`` is the
    latest record's date, or ``editing_end`` when that record belongs to the
    session being edited.
    """
    records = await load_instance_records(store, uid, exercise_id, tracking)
    rebuilt = rebuild_metrics(records, prefer_session_id=editing_session_id)

    batch = store.batch()
    if rebuilt.latest is None or rebuilt.last_session is None:
        batch.delete(last_session_metrics_path(uid, exercise_id))
        batch.delete(all_time_metrics_path(uid, exercise_id))
        await batch.commit()
        logger.info(
            "Cleared metrics for user=%s exercise=%s (no instance records)",
            uid,
            exercise_id,
        )
        return rebuilt

    performed_at = rebuilt.latest.date
    if (
        editing_end is not None
        and editing_session_id is not None
        and rebuilt.latest.session_id == editing_session_id
    ):
        performed_at = editing_end

    batch.set(last_session_metrics_path(uid, exercise_id), rebuilt.last_session.to_document())
    batch.set(all_time_metrics_path(uid, exercise_id), rebuilt.all_time.to_document())
    batch.set(
        exercise_path(uid, exercise_id),
        {"lastPerformedAt": dump_datetime(performed_at)},
        merge=True,
    )
    await batch.commit()

    logger.info(
        "Rebuilt metrics for user=%s exercise=%s from %d instance records",
        uid,
        exercise_id,
        len(records),
        extra={"liftlog_user_id": uid, "liftlog_exercise_id": exercise_id},
    )
    return rebuilt


async def replay_pending_metrics(store: DocumentStore, uid: str) -> set[str]:
    """Rescan every exercise named by a leftover pending-metrics record."""
    rescanned: set[str] = set()
    for snapshot in await store.get_all(pending_metrics_collection(uid)):
        try:
            pending = PendingMetrics.model_validate(snapshot.data)
        except ValidationError as exc:
            logger.warning(
                "Skipping malformed pending metrics record %s: %s",
                snapshot.path,
                exc.errors(include_url=False),
            )
            continue

        for exercise_id in pending.exercise_ids:
            if exercise_id not in rescanned:
                await recompute_metrics_for_exercise(store, uid, exercise_id)
                rescanned.add(exercise_id)

        batch = store.batch()
        batch.delete(pending_metrics_path(uid, snapshot.id))
        await batch.commit()
        logger.info(
            "Replayed pending metrics for user=%s session=%s (%d exercises)",
            uid,
            pending.session_id or snapshot.id,
            len(pending.exercise_ids),
        )
    return rescanned
