"""Detect personal-record ("progression") events for a finished workout.

Each exercise's session aggregates are compared with its stored metrics
BEFORE the session is written. At most one standard item is chosen per
exercise from an ordered rule table (first match wins, all-time rules
before last-session rules); a weight x reps exercise can additionally get
an independent estimated-1RM item.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from .documents import DocumentStore, all_time_metrics_path, last_session_metrics_path
from .models import (
    AllTimeMetrics,
    ChangeSpec,
    ChangeType,
    InstanceRecord,
    LastSessionMetrics,
    ProgressionItem,
    ProgressionKind,
    ProgressionsResult,
    WeightRepsInstance,
    Workout,
)
from .session_aggregator import collect_exercise_data
from .utils import as_display_number, as_number


@dataclass(frozen=True)
class _Rule:
    kind: ProgressionKind
    change_type: ChangeType
    change_spec: ChangeSpec
    value: str
    baseline: str
    # (record field, baseline field) that must be equal for the rule to apply
    tied: tuple[str, str] | None = None


_RULES: dict[str, tuple[_Rule, ...]] = {
    "weight_reps": (
        _Rule("allTime", "Top Set", "Weight", "top_weight", "max_top_weight"),
        _Rule(
            "allTime", "Top Set", "Reps", "top_reps_at_top_weight", "max_top_reps_at_top_weight",
            tied=("top_weight", "max_top_weight"),
        ),
        _Rule("lastSession", "Top Set", "Weight", "top_weight", "last_top_weight"),
        _Rule(
            "lastSession", "Top Set", "Reps", "top_reps_at_top_weight", "last_top_reps_at_top_weight",
            tied=("top_weight", "last_top_weight"),
        ),
        _Rule("lastSession", "Total", "Volume", "volume", "last_volume"),
    ),
    "weight_time": (
        _Rule("allTime", "Top Set", "Weight", "top_weight", "max_top_weight"),
        _Rule(
            "allTime", "Top Set", "Time", "top_time_at_top_weight", "max_top_time_at_top_weight",
            tied=("top_weight", "max_top_weight"),
        ),
        _Rule("lastSession", "Top Set", "Weight", "top_weight", "last_top_weight"),
        _Rule(
            "lastSession", "Top Set", "Time", "top_time_at_top_weight", "last_top_time_at_top_weight",
            tied=("top_weight", "last_top_weight"),
        ),
    ),
    "reps": (
        _Rule("allTime", "Top Set", "Reps", "top_reps", "max_top_reps"),
        _Rule("allTime", "Total", "Reps", "total_reps", "max_total_reps"),
        _Rule("lastSession", "Top Set", "Reps", "top_reps", "last_top_reps"),
        _Rule("lastSession", "Total", "Reps", "total_reps", "last_total_reps"),
    ),
    "time": (
        _Rule("allTime", "Top Set", "Time", "top_time", "max_top_time"),
        _Rule("allTime", "Total", "Time", "total_time", "max_total_time"),
        _Rule("lastSession", "Top Set", "Time", "top_time", "last_top_time"),
        _Rule("lastSession", "Total", "Time", "total_time", "last_total_time"),
    ),
}


def _format_number(value: float) -> str:
    return str(as_display_number(value))


def format_increase(prev: Any, next_value: Any) -> str:
    """Render an improvement: "+X.X%" over a positive baseline, else "{next}lbs"."""
    baseline = as_number(prev)
    current = as_number(next_value)
    shown = _format_number(current) if current is not None else str(next_value)
    if baseline is None or not math.isfinite(baseline) or baseline <= 0:
        return f"{shown}lbs"
    if current is None:
        return "+0%"
    pct = (current - baseline) / baseline * 100
    return f"+{pct:.1f}%" if pct > 0 else "+0%"


def _field(source: Any, name: str) -> float:
    value = as_number(getattr(source, name, None))
    return value if value is not None else 0.0


def calculate_exercise_progressions(
    exercise_id: str,
    exercise_name: str,
    record: InstanceRecord,
    last: LastSessionMetrics | None,
    all_time: AllTimeMetrics | None,
) -> list[ProgressionItem]:
    """Progression items for one exercise: optional est-1RM item, then the chosen one."""
    last = last or LastSessionMetrics()
    all_time = all_time or AllTimeMetrics()
    items: list[ProgressionItem] = []

    if isinstance(record, WeightRepsInstance) and record.best_est_1rm > all_time.max_best_est_1rm:
        items.append(
            ProgressionItem(
                exercise_id=exercise_id,
                exercise_name=exercise_name,
                change_type="New Estimated",
                change_spec="1RM:",
                change=f"{record.best_est_1rm}lbs",
                kind="allTime",
                category="est1RM",
            )
        )

    for rule in _RULES.get(record.tracking, ()):
        baseline_doc = all_time if rule.kind == "allTime" else last
        if rule.tied is not None:
            record_field, baseline_field = rule.tied
            if _field(record, record_field) != _field(baseline_doc, baseline_field):
                continue
        value = _field(record, rule.value)
        baseline = _field(baseline_doc, rule.baseline)
        if value > baseline:
            items.append(
                ProgressionItem(
                    exercise_id=exercise_id,
                    exercise_name=exercise_name,
                    change_type=rule.change_type,
                    change_spec=rule.change_spec,
                    change=format_increase(baseline, value),
                    kind=rule.kind,
                    category="standard",
                )
            )
            break

    return items


async def _load_baselines(
    store: DocumentStore, uid: str, exercise_id: str
) -> tuple[LastSessionMetrics | None, AllTimeMetrics | None]:
    last_doc, all_time_doc = await asyncio.gather(
        store.get(last_session_metrics_path(uid, exercise_id)),
        store.get(all_time_metrics_path(uid, exercise_id)),
    )
    last = LastSessionMetrics.model_validate(last_doc) if last_doc is not None else None
    all_time = AllTimeMetrics.model_validate(all_time_doc) if all_time_doc is not None else None
    return last, all_time


async def calculate_progressions_for_workout(
    store: DocumentStore, uid: str, workout: Workout
) -> ProgressionsResult:
    """Compare a workout's aggregates with the stored metrics of each exercise."""
    entries = collect_exercise_data(workout, "", workout.start_time_iso)
    baselines = await asyncio.gather(
        *(_load_baselines(store, uid, entry.exercise.exercise_id) for entry in entries)
    )

    items: list[ProgressionItem] = []
    for entry, (last, all_time) in zip(entries, baselines):
        items.extend(
            calculate_exercise_progressions(
                entry.exercise.exercise_id,
                entry.exercise.name,
                entry.record,
                last,
                all_time,
            )
        )
    return ProgressionsResult(items=items)


@dataclass(frozen=True)
class ProgressionGroups:
    all_time: dict[str, list[ProgressionItem]] = field(default_factory=dict)
    last_session: list[ProgressionItem] = field(default_factory=list)


def group_progressions(items: ProgressionsResult | Sequence[ProgressionItem]) -> ProgressionGroups:
    """Group items for display.

    All-time items are grouped by exercise in first-seen order; last-session
    items of exercises that already have an all-time item are dropped.
    """
    if isinstance(items, ProgressionsResult):
        items = items.items

    all_time: dict[str, list[ProgressionItem]] = {}
    for item in items:
        if item.kind == "allTime":
            all_time.setdefault(item.exercise_id, []).append(item)

    last_session = [
        item for item in items if item.kind == "lastSession" and item.exercise_id not in all_time
    ]
    return ProgressionGroups(all_time=all_time, last_session=last_session)
