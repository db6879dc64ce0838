"""Shared metric primitives for the liftlog engine."""

import math
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

TrackingMethod = Literal["weight", "reps", "time"]
TrackingCombination = Literal["weight_reps", "weight_time", "reps", "time", "unclassified"]

TRACKING_METHODS: tuple[str, ...] = ("weight", "reps", "time")

# Reps range in which the 1RM estimate is trusted.
EST_1RM_MAX_REPS = 5

_RECORD_WEIGHT_FIELDS: tuple[str, ...] = ("topWeight", "bestEst1RM", "volume")
_RECORD_REPS_FIELDS: tuple[str, ...] = (
    "topReps",
    "totalReps",
    "completedRepCount",
    "topRepsAtTopWeight",
)
_RECORD_TIME_FIELDS: tuple[str, ...] = ("topTime", "totalTime", "topTimeAtTopWeight")


# ---------------------------------------------------------------------------
# Numeric coercion
# ---------------------------------------------------------------------------


def as_number(value: Any) -> float | None:
    """Coerce a logged value to a finite float, or None when unusable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(parsed):
        return None
    return parsed


def round_half_up(value: float) -> int:
    """Round halves toward positive infinity (-55.5 -> -55), matching the client display."""
    return math.floor(value + 0.5)


def as_display_number(value: float) -> int | float:
    """Drop the fractional part of integral floats (150.0 -> 150)."""
    if float(value).is_integer():
        return int(value)
    return value


# ---------------------------------------------------------------------------
# Strength estimation
# ---------------------------------------------------------------------------


def estimate_1rm(weight: Any, reps: Any) -> int | None:
    """Estimate 1RM with the Epley formula, rounded to a whole number.

    Only 1-5 rep sets produce an estimate; a single rep is the weight itself.
    Returns None for missing or non-finite input and out-of-range reps.
    """
    w = as_number(weight)
    r = as_number(reps)
    if w is None or r is None:
        return None
    if r <= 0 or r > EST_1RM_MAX_REPS:
        return None
    if r == 1:
        return round_half_up(w)
    return round_half_up(w * (1 + r / 30))


# ---------------------------------------------------------------------------
# Calendar helpers
# ---------------------------------------------------------------------------


def normalize_timezone_name(value: Any) -> str | None:
    """Normalize a timezone setting and verify it's a valid IANA name."""
    if not isinstance(value, str):
        return None
    raw = value.strip()
    if not raw:
        return None
    if raw.upper() == "UTC":
        return "UTC"
    try:
        ZoneInfo(raw)
    except (ZoneInfoNotFoundError, ValueError):
        return None
    return raw


def to_local(dt: datetime, timezone_name: str | None = None) -> datetime:
    """Project an aware datetime into local calendar time.

    Naive datetimes are taken as already local.
    """
    if dt.tzinfo is None:
        return dt
    if timezone_name:
        return dt.astimezone(ZoneInfo(timezone_name))
    return dt.astimezone()


def day_key(dt: datetime, timezone_name: str | None = None) -> str:
    """Return the YYYY-MM-DD key of ``dt`` from local calendar fields."""
    local = to_local(dt, timezone_name)
    return f"{local.year:04d}-{local.month:02d}-{local.day:02d}"


def duration_minutes(start: datetime, end: datetime) -> int:
    """Whole-minute session duration, never below one minute."""
    seconds = (end - start).total_seconds()
    return max(1, round_half_up(seconds / 60))


# ---------------------------------------------------------------------------
# Tracking classification
# ---------------------------------------------------------------------------


def normalize_tracking_methods(methods: Iterable[Any] | None) -> tuple[str, ...]:
    """Lowercase, dedupe and drop unknown tracking methods (stable order)."""
    if not methods:
        return ()
    seen: list[str] = []
    for method in methods:
        if not isinstance(method, str):
            continue
        token = method.strip().lower()
        if token in TRACKING_METHODS and token not in seen:
            seen.append(token)
    return tuple(seen)


def classify_tracking(methods: Iterable[Any] | None) -> TrackingCombination:
    """Map a tracking-method set onto one of the supported aggregate shapes."""
    present = frozenset(normalize_tracking_methods(methods))
    if present == {"weight", "reps"}:
        return "weight_reps"
    if present == {"weight", "time"}:
        return "weight_time"
    if present == {"reps"}:
        return "reps"
    if present == {"time"}:
        return "time"
    return "unclassified"


def infer_tracking_methods(tracking_rows: Iterable[Mapping[str, Any]]) -> tuple[str, ...]:
    """Infer tracking methods from the fields that carry values in logged sets."""
    present: set[str] = set()
    for row in tracking_rows:
        for method in TRACKING_METHODS:
            if as_number(row.get(method)) is not None:
                present.add(method)
    return tuple(method for method in TRACKING_METHODS if method in present)


def infer_tracking_from_record(data: Mapping[str, Any]) -> TrackingCombination:
    """Best-effort classification of an instance record without a tracking tag."""
    methods: list[str] = []
    if any(data.get(field) is not None for field in _RECORD_WEIGHT_FIELDS):
        methods.append("weight")
    if any(data.get(field) is not None for field in _RECORD_REPS_FIELDS):
        methods.append("reps")
    if any(data.get(field) is not None for field in _RECORD_TIME_FIELDS):
        methods.append("time")
    return classify_tracking(methods)
