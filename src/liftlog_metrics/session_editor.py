"""Reconcile an already-persisted session with an edited workout.

Only exercises whose completed-set list actually changed get a new
sub-record and instance record; unchanged ones are just reordered. Every
changed exercise then goes through a full metrics rescan, since an edit can
move the most recent session or drop a historical maximum.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from .documents import (
    DocumentStore,
    instance_path,
    pending_metrics_path,
    session_exercise_path,
    session_exercises_path,
    session_path,
)
from .metrics_updater import recompute_metrics_for_exercise
from .models import EditResult, Workout, dump_datetime
from .session_aggregator import (
    build_session_summary,
    collect_exercise_data,
    pending_metrics_record,
)
from .utils import as_number

logger = logging.getLogger(__name__)

SetSignature = tuple[tuple[Any, ...], ...]


def set_signature(sets: Iterable[Any] | None) -> SetSignature:
    """Comparable form of a stored or freshly built ``sets`` list."""
    signature = []
    for raw in sets or []:
        if not isinstance(raw, dict):
            continue
        tracking = raw.get("trackingData") or {}
        signature.append(
            (
                str(raw.get("id", "")),
                as_number(raw.get("order")),
                as_number(tracking.get("weight")),
                as_number(tracking.get("reps")),
                as_number(tracking.get("time")),
            )
        )
    return tuple(signature)


def _tracking_for(workout: Workout, exercise_id: str) -> list[str] | None:
    for exercise in workout.exercises:
        if exercise.exercise_id == exercise_id and exercise.tracking_methods:
            return exercise.tracking_methods
    return None


async def write_edited_session(
    store: DocumentStore,
    uid: str,
    session_id: str,
    workout: Workout,
    end: datetime,
    *,
    timezone_name: str | None = None,
    outbox: bool = False,
) -> EditResult | None:
    """Persist an edited session and rescan the metrics of changed exercises.

    Returns None without touching the store when the workout carries no
    exercises or no set map at all. An empty set map still deletes every
    stored exercise of the session.
    """
    if not workout.exercises or workout.sets_by_id is None:
        logger.info("Edited workout for user=%s session=%s is empty, skipping", uid, session_id)
        return None

    start = workout.start_time_iso
    stored_subs = {
        snapshot.id: snapshot.data
        for snapshot in await store.get_all(session_exercises_path(uid, session_id))
    }
    stored_summary = await store.get(session_path(uid, session_id)) or {}
    start_moved = stored_summary.get("startAt") != dump_datetime(start)

    entries = collect_exercise_data(workout, session_id, start)
    changed: set[str] = set()
    batch = store.batch()

    for entry in entries:
        instance_id = entry.exercise.instance_id
        exercise_id = entry.exercise.exercise_id
        sub_record = entry.sub_record().to_document()
        stored = stored_subs.get(instance_id)
        stored_exercise_id = stored.get("exerciseId") if stored is not None else None

        if (
            stored is not None
            and not start_moved
            and stored_exercise_id == exercise_id
            and set_signature(stored.get("sets")) == set_signature(sub_record["sets"])
        ):
            batch.set(
                session_exercise_path(uid, session_id, instance_id),
                {"exerciseId": exercise_id, "order": entry.order},
                merge=True,
            )
            continue

        if stored_exercise_id and stored_exercise_id != exercise_id:
            batch.delete(instance_path(uid, stored_exercise_id, session_id, instance_id))
            changed.add(stored_exercise_id)

        batch.set(session_exercise_path(uid, session_id, instance_id), sub_record)
        batch.set(
            instance_path(uid, exercise_id, session_id, instance_id),
            entry.record.to_document(),
        )
        changed.add(exercise_id)

    present = {entry.exercise.instance_id for entry in entries}
    for instance_id, stored in stored_subs.items():
        if instance_id in present:
            continue
        batch.delete(session_exercise_path(uid, session_id, instance_id))
        stale_exercise_id = stored.get("exerciseId")
        if stale_exercise_id:
            batch.delete(instance_path(uid, stale_exercise_id, session_id, instance_id))
            changed.add(stale_exercise_id)

    summary = build_session_summary(entries, start, end, timezone_name)
    batch.set(session_path(uid, session_id), summary.to_document(), merge=True)
    if outbox and changed:
        batch.set(
            pending_metrics_path(uid, session_id),
            pending_metrics_record(session_id, list(changed)).to_document(),
        )
    await batch.commit()

    logger.info(
        "Wrote edited session %s for user=%s (%d changed exercises)",
        session_id,
        uid,
        len(changed),
        extra={"liftlog_user_id": uid, "liftlog_session_id": session_id},
    )

    for exercise_id in sorted(changed):
        await recompute_metrics_for_exercise(
            store,
            uid,
            exercise_id,
            tracking=_tracking_for(workout, exercise_id),
            editing_session_id=session_id,
            editing_end=end,
        )

    if outbox and changed:
        cleanup = store.batch()
        cleanup.delete(pending_metrics_path(uid, session_id))
        await cleanup.commit()

    return EditResult(date=start, changed_exercise_ids=frozenset(changed))
