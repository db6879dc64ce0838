"""Workout input and persisted document models.

Python attributes are snake_case; documents are read and written with the
camelCase names the client uses (``alias_generator=to_camel``).

Instance records are a discriminated union on ``tracking`` so every
aggregate shape is explicit and the fold/progression code can branch
exhaustively.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Annotated, Any, ClassVar, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .utils import (
    TrackingCombination,
    as_display_number,
    as_number,
    infer_tracking_from_record,
    normalize_tracking_methods,
)

Number = Union[int, float]


class DocumentModel(BaseModel):
    """Base for every model that maps onto a stored document."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    # Numeric fields equal to zero are left out of the stored document.
    omit_zero: ClassVar[bool] = False

    def to_document(self) -> dict[str, Any]:
        data = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        if self.omit_zero:
            data = {
                key: value
                for key, value in data.items()
                if isinstance(value, str) or value != 0
            }
        return data


_DATETIME_ADAPTER: TypeAdapter[datetime] = TypeAdapter(datetime)


def dump_datetime(value: datetime) -> str:
    """Serialize a datetime exactly as document models do."""
    return _DATETIME_ADAPTER.dump_python(value, mode="json")


def _coerce_number(value: Any) -> Number | None:
    parsed = as_number(value)
    if parsed is None:
        return None
    return as_display_number(parsed)


# ---------------------------------------------------------------------------
# Transient workout (client-held, consumed by the engine)
# ---------------------------------------------------------------------------


class TrackingData(DocumentModel):
    weight: Number | None = None
    reps: Number | None = None
    time: Number | None = None

    @field_validator("weight", "reps", "time", mode="before")
    @classmethod
    def coerce_numeric(cls, value: Any) -> Number | None:
        return _coerce_number(value)

    def to_document(self) -> dict[str, Any]:
        # Unused methods are stored as explicit nulls.
        return self.model_dump(mode="json")


class SetEntry(DocumentModel):
    id: str = ""
    order: int = 0
    completed: bool = False
    tracking_data: TrackingData = Field(default_factory=TrackingData)

    @field_validator("order", mode="before")
    @classmethod
    def coerce_order(cls, value: Any) -> int:
        parsed = as_number(value)
        return int(parsed) if parsed is not None else 0

    @field_validator("tracking_data", mode="before")
    @classmethod
    def default_tracking(cls, value: Any) -> Any:
        return value if value is not None else {}


class ExerciseEntry(DocumentModel):
    instance_id: str
    exercise_id: str
    name: str = ""
    category: str = ""
    tracking_methods: list[str] = Field(default_factory=list)
    set_ids: list[str] = Field(default_factory=list)
    order: int | None = None

    @field_validator("tracking_methods", mode="before")
    @classmethod
    def normalize_methods(cls, value: Any) -> list[str]:
        if isinstance(value, str):
            value = [value]
        return list(normalize_tracking_methods(value))

    @field_validator("set_ids", mode="before")
    @classmethod
    def default_set_ids(cls, value: Any) -> Any:
        return value if value is not None else []


class Workout(DocumentModel):
    start_time_iso: datetime = Field(alias="startTimeISO")
    end_time_iso: datetime | None = Field(default=None, alias="endTimeISO")
    exercises: list[ExerciseEntry] = Field(default_factory=list)
    sets_by_id: dict[str, SetEntry] | None = None

    @field_validator("sets_by_id", mode="before")
    @classmethod
    def fill_set_ids(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        filled: dict[str, Any] = {}
        for key, raw in value.items():
            if isinstance(raw, dict) and not raw.get("id"):
                raw = {**raw, "id": key}
            filled[key] = raw
        return filled

    def has_completed_sets(self) -> bool:
        sets_by_id = self.sets_by_id or {}
        return any(
            (entry := sets_by_id.get(set_id)) is not None and entry.completed
            for exercise in self.exercises
            for set_id in exercise.set_ids
        )


# ---------------------------------------------------------------------------
# Session documents
# ---------------------------------------------------------------------------


class ExerciseCount(DocumentModel):
    exercise_id: str
    name: str = ""
    category: str = ""
    name_snap: str = ""
    completed_set_count: int = 0
    order: int = 0


class SessionSummary(DocumentModel):
    start_at: datetime
    end_at: datetime
    duration_min: int
    day_key: str
    total_completed_sets: int = 0
    exercise_counts: list[ExerciseCount] = Field(default_factory=list)


class SessionSet(DocumentModel):
    id: str
    order: int
    tracking_data: TrackingData

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "order": self.order,
            "trackingData": self.tracking_data.to_document(),
        }


class SessionExerciseRecord(DocumentModel):
    exercise_id: str
    order: int
    sets: list[SessionSet] = Field(default_factory=list)
    est_1rm: int | None = Field(default=None, alias="est1rm")

    def to_document(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "exerciseId": self.exercise_id,
            "order": self.order,
            "sets": [s.to_document() for s in self.sets],
        }
        if self.est_1rm:
            data["est1rm"] = self.est_1rm
        return data


class PendingMetrics(DocumentModel):
    session_id: str
    exercise_ids: list[str] = Field(default_factory=list)
    created_at: datetime


# ---------------------------------------------------------------------------
# Exercise instance records (one per exercise per session)
# ---------------------------------------------------------------------------


class _InstanceRecordBase(DocumentModel):
    session_id: str
    exercise_in_session_id: str
    exercise_id: str = ""
    date: datetime
    completed_set_count: int = 0

    @property
    def document_id(self) -> str:
        return f"{self.session_id}-{self.exercise_in_session_id}"


class WeightRepsInstance(_InstanceRecordBase):
    tracking: Literal["weight_reps"] = "weight_reps"
    volume: Number = 0
    top_weight: Number = 0
    best_est_1rm: int = Field(default=0, alias="bestEst1RM")
    completed_rep_count: Number = 0
    top_reps_at_top_weight: Number = 0


class WeightTimeInstance(_InstanceRecordBase):
    tracking: Literal["weight_time"] = "weight_time"
    top_weight: Number = 0
    top_time_at_top_weight: Number = 0
    total_time: Number = 0


class RepsInstance(_InstanceRecordBase):
    tracking: Literal["reps"] = "reps"
    top_reps: Number = 0
    total_reps: Number = 0
    completed_rep_count: Number = 0


class TimeInstance(_InstanceRecordBase):
    tracking: Literal["time"] = "time"
    top_time: Number = 0
    total_time: Number = 0


class UnclassifiedInstance(_InstanceRecordBase):
    tracking: Literal["unclassified"] = "unclassified"


InstanceRecord = Annotated[
    Union[
        WeightRepsInstance,
        WeightTimeInstance,
        RepsInstance,
        TimeInstance,
        UnclassifiedInstance,
    ],
    Field(discriminator="tracking"),
]

_INSTANCE_RECORD_ADAPTER: TypeAdapter[InstanceRecord] = TypeAdapter(InstanceRecord)

# Field names written by the legacy client for the secondary top-set stats.
_LEGACY_SECONDARY_FIELDS: dict[str, tuple[str, str]] = {
    "weight_reps": ("topReps", "topRepsAtTopWeight"),
    "weight_time": ("topTime", "topTimeAtTopWeight"),
}


def parse_instance_record(
    data: dict[str, Any],
    *,
    exercise_id: str = "",
    fallback_tracking: TrackingCombination | None = None,
) -> InstanceRecord:
    """Validate a stored instance document into its tagged record shape.

    Untagged legacy documents are classified from ``fallback_tracking`` or,
    failing that, from the fields they carry.
    """
    payload = dict(data)
    if not payload.get("exerciseId") and exercise_id:
        payload["exerciseId"] = exercise_id
    if payload.get("tracking") is None:
        tracking = fallback_tracking or infer_tracking_from_record(payload)
        payload["tracking"] = tracking
        legacy = _LEGACY_SECONDARY_FIELDS.get(tracking)
        if legacy is not None and legacy[1] not in payload and legacy[0] in payload:
            payload[legacy[1]] = payload[legacy[0]]
    return _INSTANCE_RECORD_ADAPTER.validate_python(payload)


# ---------------------------------------------------------------------------
# Per-exercise metrics documents
# ---------------------------------------------------------------------------


class LastSessionMetrics(DocumentModel):
    omit_zero: ClassVar[bool] = True

    last_session_id: str | None = None
    last_top_weight: Number | None = None
    last_top_reps_at_top_weight: Number | None = None
    last_volume: Number | None = None
    last_best_est_1rm: int | None = Field(default=None, alias="lastBestEst1RM")
    last_top_time_at_top_weight: Number | None = None
    last_top_reps: Number | None = None
    last_total_reps: Number | None = None
    last_top_time: Number | None = None
    last_total_time: Number | None = None


class AllTimeMetrics(DocumentModel):
    omit_zero: ClassVar[bool] = True

    total_sets: int = 0
    total_reps: Number = 0
    total_volume_all_time: Number = 0
    total_time: Number = 0
    max_top_weight: Number = 0
    max_top_reps_at_top_weight: Number = 0
    max_best_est_1rm: int = Field(default=0, alias="maxBestEst1RM")
    max_top_time_at_top_weight: Number = 0
    max_top_reps: Number = 0
    max_total_reps: Number = 0
    max_top_time: Number = 0
    max_total_time: Number = 0

    @model_validator(mode="before")
    @classmethod
    def zero_missing(cls, data: Any) -> Any:
        # Stored documents omit zero fields; a null reads back as zero too.
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


# ---------------------------------------------------------------------------
# Progressions (display-only, never persisted)
# ---------------------------------------------------------------------------

ChangeType = Literal["Top Set", "Total", "New Estimated"]
ChangeSpec = Literal["Weight", "Reps", "Time", "Volume", "1RM:"]
ProgressionKind = Literal["allTime", "lastSession"]
ProgressionCategory = Literal["standard", "est1RM"]


class ProgressionItem(DocumentModel):
    exercise_id: str
    exercise_name: str
    change_type: ChangeType
    change_spec: ChangeSpec
    change: str
    kind: ProgressionKind
    category: ProgressionCategory


class ProgressionsResult(DocumentModel):
    title: str = "Workout Progressions"
    items: list[ProgressionItem] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Engine call results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SessionWriteResult:
    session_id: str
    date: datetime
    instances: list[InstanceRecord] = field(default_factory=list)


@dataclass(frozen=True)
class EditResult:
    date: datetime
    changed_exercise_ids: frozenset[str] = frozenset()


@dataclass(frozen=True)
class FinishedWorkout:
    session: SessionWriteResult
    progressions: ProgressionsResult
