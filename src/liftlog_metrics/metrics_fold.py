"""Fold instance records into per-exercise running statistics.

Both the incremental path (one new session) and the full rescan (every
stored record) go through ``fold_all_time``, so the two can never drift:
folding the same records in any order yields the same AllTimeMetrics.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime

from .models import (
    AllTimeMetrics,
    InstanceRecord,
    LastSessionMetrics,
    Number,
    RepsInstance,
    TimeInstance,
    WeightRepsInstance,
    WeightTimeInstance,
)
from .utils import as_display_number


@dataclass(frozen=True)
class RebuiltMetrics:
    all_time: AllTimeMetrics
    last_session: LastSessionMetrics | None
    latest: InstanceRecord | None


def _n(value: Number) -> Number:
    return as_display_number(value)


def _fold_top(
    prev_top: Number, prev_secondary: Number, top: Number, secondary: Number
) -> tuple[Number, Number]:
    """Running (top weight, stat at top weight) pair.

    A heavier top weight replaces the secondary stat; a tie keeps the larger.
    """
    if top > prev_top:
        return top, secondary
    if top == prev_top:
        return prev_top, max(prev_secondary, secondary)
    return prev_top, prev_secondary


def fold_all_time(all_time: AllTimeMetrics, record: InstanceRecord) -> AllTimeMetrics:
    """Return ``all_time`` with one instance record's contribution added."""
    update: dict[str, Number] = {
        "total_sets": all_time.total_sets + record.completed_set_count,
    }

    if isinstance(record, WeightRepsInstance):
        top, reps_at_top = _fold_top(
            all_time.max_top_weight,
            all_time.max_top_reps_at_top_weight,
            record.top_weight,
            record.top_reps_at_top_weight,
        )
        update.update(
            total_reps=_n(all_time.total_reps + record.completed_rep_count),
            total_volume_all_time=_n(all_time.total_volume_all_time + record.volume),
            max_top_weight=top,
            max_top_reps_at_top_weight=reps_at_top,
            max_best_est_1rm=max(all_time.max_best_est_1rm, record.best_est_1rm),
        )
    elif isinstance(record, WeightTimeInstance):
        top, time_at_top = _fold_top(
            all_time.max_top_weight,
            all_time.max_top_time_at_top_weight,
            record.top_weight,
            record.top_time_at_top_weight,
        )
        update.update(
            total_time=_n(all_time.total_time + record.total_time),
            max_top_weight=top,
            max_top_time_at_top_weight=time_at_top,
        )
    elif isinstance(record, RepsInstance):
        update.update(
            total_reps=_n(all_time.total_reps + record.total_reps),
            max_top_reps=max(all_time.max_top_reps, record.top_reps),
            max_total_reps=max(all_time.max_total_reps, record.total_reps),
        )
    elif isinstance(record, TimeInstance):
        update.update(
            total_time=_n(all_time.total_time + record.total_time),
            max_top_time=max(all_time.max_top_time, record.top_time),
            max_total_time=max(all_time.max_total_time, record.total_time),
        )

    return all_time.model_copy(update=update)


def last_session_from_record(record: InstanceRecord) -> LastSessionMetrics:
    """Snapshot of one session's aggregates for the last-session document."""
    if isinstance(record, WeightRepsInstance):
        return LastSessionMetrics(
            last_session_id=record.session_id,
            last_top_weight=record.top_weight,
            last_top_reps_at_top_weight=record.top_reps_at_top_weight,
            last_volume=record.volume,
            last_best_est_1rm=record.best_est_1rm,
        )
    if isinstance(record, WeightTimeInstance):
        return LastSessionMetrics(
            last_session_id=record.session_id,
            last_top_weight=record.top_weight,
            last_top_time_at_top_weight=record.top_time_at_top_weight,
            last_total_time=record.total_time,
        )
    if isinstance(record, RepsInstance):
        return LastSessionMetrics(
            last_session_id=record.session_id,
            last_top_reps=record.top_reps,
            last_total_reps=record.total_reps,
        )
    if isinstance(record, TimeInstance):
        return LastSessionMetrics(
            last_session_id=record.session_id,
            last_top_time=record.top_time,
            last_total_time=record.total_time,
        )
    return LastSessionMetrics(last_session_id=record.session_id)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def rebuild_metrics(
    records: Iterable[InstanceRecord], prefer_session_id: str | None = None
) -> RebuiltMetrics:
    """Fold every record from empty and pick the most recent one.

    On a date tie the record of ``prefer_session_id`` is the latest,
    otherwise the later one in (date, sessionId) order.
    """
    ordered = sorted(
        records,
        key=lambda r: (_as_utc(r.date), r.session_id, r.exercise_in_session_id),
    )
    all_time = AllTimeMetrics()
    for record in ordered:
        all_time = fold_all_time(all_time, record)

    if not ordered:
        return RebuiltMetrics(all_time=all_time, last_session=None, latest=None)

    latest = max(
        ordered,
        key=lambda r: (
            _as_utc(r.date),
            r.session_id == prefer_session_id,
            r.session_id,
            r.exercise_in_session_id,
        ),
    )
    return RebuiltMetrics(
        all_time=all_time,
        last_session=last_session_from_record(latest),
        latest=latest,
    )
