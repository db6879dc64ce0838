"""WorkoutMetricsEngine: entry points used by the client layer.

The engine owns the document store and the collaborators the metrics code
needs (catalog refresh callback, session id factory, outbox flag, calendar
timezone) and records timing for every call in ``metrics``.
"""

from __future__ import annotations

import inspect
import logging
import time
import uuid
from collections.abc import Awaitable, Callable, Iterable, Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime

from . import metrics_updater, progression, session_aggregator, session_editor
from .config import Config
from .documents import DocumentStore
from .metrics import record_operation
from .metrics_fold import RebuiltMetrics
from .models import (
    EditResult,
    FinishedWorkout,
    InstanceRecord,
    ProgressionsResult,
    SessionWriteResult,
    Workout,
)

logger = logging.getLogger(__name__)

CatalogCallback = Callable[[str, Sequence[str]], Awaitable[None] | None]


class WorkoutMetricsEngine:
    def __init__(
        self,
        store: DocumentStore,
        *,
        on_catalog_changed: CatalogCallback | None = None,
        id_factory: Callable[[], str] | None = None,
        use_outbox: bool = False,
        timezone: str | None = None,
    ) -> None:
        self.store = store
        self.on_catalog_changed = on_catalog_changed
        self.id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self.use_outbox = use_outbox
        self.timezone = timezone

    @classmethod
    def from_config(
        cls,
        store: DocumentStore,
        config: Config,
        *,
        on_catalog_changed: CatalogCallback | None = None,
    ) -> WorkoutMetricsEngine:
        return cls(
            store,
            on_catalog_changed=on_catalog_changed,
            use_outbox=config.metrics_outbox,
            timezone=config.timezone,
        )

    @contextmanager
    def _operation(self, name: str, uid: str) -> Iterator[None]:
        started = time.monotonic()
        try:
            yield
        except Exception:
            duration_ms = (time.monotonic() - started) * 1000
            record_operation(name, duration_ms, success=False)
            logger.error(
                "%s failed for user=%s",
                name,
                uid,
                exc_info=True,
                extra={
                    "liftlog_operation": name,
                    "liftlog_user_id": uid,
                    "liftlog_duration_ms": round(duration_ms, 2),
                },
            )
            raise
        duration_ms = (time.monotonic() - started) * 1000
        record_operation(name, duration_ms, success=True)
        logger.debug(
            "%s completed for user=%s in %.1fms",
            name,
            uid,
            duration_ms,
            extra={
                "liftlog_operation": name,
                "liftlog_user_id": uid,
                "liftlog_duration_ms": round(duration_ms, 2),
            },
        )

    async def _notify_catalog(self, uid: str, exercise_ids: Iterable[str]) -> None:
        ids = sorted(set(exercise_ids))
        if not ids or self.on_catalog_changed is None:
            return
        result = self.on_catalog_changed(uid, ids)
        if inspect.isawaitable(result):
            await result

    # -- session writes -----------------------------------------------------

    async def write_session_and_collect_instances(
        self,
        uid: str,
        workout: Workout,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> SessionWriteResult:
        start = start or workout.start_time_iso
        end = end or workout.end_time_iso or datetime.now(UTC)
        with self._operation("write_session_and_collect_instances", uid):
            session_id = self.id_factory() if workout.has_completed_sets() else ""
            return await session_aggregator.write_session_and_collect_instances(
                self.store,
                uid,
                workout,
                start,
                end,
                session_id,
                timezone_name=self.timezone,
                outbox=self.use_outbox,
            )

    async def write_exercise_instances(self, uid: str, instances: Sequence[InstanceRecord]) -> None:
        with self._operation("write_exercise_instances", uid):
            await session_aggregator.write_exercise_instances(self.store, uid, instances)

    async def write_exercise_metrics_for_session(
        self,
        uid: str,
        workout: Workout,
        session_id: str,
        start: datetime | None = None,
    ) -> None:
        with self._operation("write_exercise_metrics_for_session", uid):
            touched = await metrics_updater.write_exercise_metrics_for_session(
                self.store, uid, workout, session_id, start=start, outbox=self.use_outbox
            )
            await self._notify_catalog(uid, touched)

    async def write_edited_session(
        self,
        uid: str,
        session_id: str,
        workout: Workout,
        end: datetime | None = None,
    ) -> EditResult | None:
        end = end or workout.end_time_iso or datetime.now(UTC)
        with self._operation("write_edited_session", uid):
            result = await session_editor.write_edited_session(
                self.store,
                uid,
                session_id,
                workout,
                end,
                timezone_name=self.timezone,
                outbox=self.use_outbox,
            )
            if result is not None:
                await self._notify_catalog(uid, result.changed_exercise_ids)
            return result

    # -- metrics maintenance ------------------------------------------------

    async def recompute_metrics_for_exercise(
        self,
        uid: str,
        exercise_id: str,
        tracking: Sequence[str] | None = None,
    ) -> RebuiltMetrics:
        with self._operation("recompute_metrics_for_exercise", uid):
            rebuilt = await metrics_updater.recompute_metrics_for_exercise(
                self.store, uid, exercise_id, tracking=tracking
            )
            await self._notify_catalog(uid, [exercise_id])
            return rebuilt

    async def replay_pending_metrics(self, uid: str) -> set[str]:
        with self._operation("replay_pending_metrics", uid):
            rescanned = await metrics_updater.replay_pending_metrics(self.store, uid)
            await self._notify_catalog(uid, rescanned)
            return rescanned

    # -- progressions -------------------------------------------------------

    async def calculate_progressions_for_workout(
        self, uid: str, workout: Workout
    ) -> ProgressionsResult:
        with self._operation("calculate_progressions_for_workout", uid):
            return await progression.calculate_progressions_for_workout(self.store, uid, workout)

    async def finish_workout(
        self,
        uid: str,
        workout: Workout,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> FinishedWorkout:
        """Full finish flow: progressions against pre-write metrics, then every write."""
        start = start or workout.start_time_iso
        with self._operation("finish_workout", uid):
            progressions = await self.calculate_progressions_for_workout(uid, workout)
            session = await self.write_session_and_collect_instances(uid, workout, start, end)
            if session.session_id:
                await self.write_exercise_instances(uid, session.instances)
                await self.write_exercise_metrics_for_session(
                    uid, workout, session.session_id, start
                )
            return FinishedWorkout(session=session, progressions=progressions)
