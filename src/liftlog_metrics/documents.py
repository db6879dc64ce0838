"""Document store interface consumed by the engine.

Documents are JSON objects addressed by slash-separated hierarchical paths
(``users/{uid}/sessions/{sessionId}``). A collection path lists its direct
child documents. Writes go through a batch that is applied atomically on
``commit()``.
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass
from typing import Any, Literal, Protocol

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Logical paths
# ---------------------------------------------------------------------------


def session_path(uid: str, session_id: str) -> str:
    return f"users/{uid}/sessions/{session_id}"


def session_exercises_path(uid: str, session_id: str) -> str:
    return f"{session_path(uid, session_id)}/exercises"


def session_exercise_path(uid: str, session_id: str, instance_id: str) -> str:
    return f"{session_exercises_path(uid, session_id)}/{instance_id}"


def exercise_path(uid: str, exercise_id: str) -> str:
    return f"users/{uid}/exercises/{exercise_id}"


def instances_path(uid: str, exercise_id: str) -> str:
    return f"{exercise_path(uid, exercise_id)}/instances"


def instance_path(uid: str, exercise_id: str, session_id: str, instance_id: str) -> str:
    return f"{instances_path(uid, exercise_id)}/{session_id}-{instance_id}"


def last_session_metrics_path(uid: str, exercise_id: str) -> str:
    return f"{exercise_path(uid, exercise_id)}/metrics/lastSessionMetrics"


def all_time_metrics_path(uid: str, exercise_id: str) -> str:
    return f"{exercise_path(uid, exercise_id)}/metrics/allTimeMetrics"


def pending_metrics_collection(uid: str) -> str:
    return f"users/{uid}/pendingMetrics"


def pending_metrics_path(uid: str, session_id: str) -> str:
    return f"{pending_metrics_collection(uid)}/{session_id}"


def split_path(path: str) -> tuple[str, str]:
    """Return (parent collection path, document id)."""
    parts = [p for p in path.split("/") if p]
    if len(parts) < 2:
        raise ValueError(f"Not a document path: {path!r}")
    return "/".join(parts[:-1]), parts[-1]


# ---------------------------------------------------------------------------
# Store protocol
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DocumentSnapshot:
    id: str
    path: str
    data: dict[str, Any]


@dataclass(frozen=True)
class WriteOp:
    kind: Literal["set", "delete"]
    path: str
    data: dict[str, Any] | None = None
    merge: bool = False


class WriteBatch(Protocol):
    def set(self, path: str, data: dict[str, Any], *, merge: bool = False) -> None: ...

    def delete(self, path: str) -> None: ...

    async def commit(self) -> None: ...


class DocumentStore(Protocol):
    async def get(self, path: str) -> dict[str, Any] | None: ...

    async def get_all(
        self, collection_path: str, order_by: str | None = None
    ) -> list[DocumentSnapshot]: ...

    def batch(self) -> WriteBatch: ...


class PendingWriteBatch:
    """Collects write operations; subclasses apply them on commit."""

    def __init__(self) -> None:
        self.ops: list[WriteOp] = []
        self._committed = False

    def set(self, path: str, data: dict[str, Any], *, merge: bool = False) -> None:
        split_path(path)
        self.ops.append(WriteOp("set", path, _json_copy(data), merge))

    def delete(self, path: str) -> None:
        split_path(path)
        self.ops.append(WriteOp("delete", path))

    def __len__(self) -> int:
        return len(self.ops)

    async def commit(self) -> None:
        if self._committed:
            raise RuntimeError("Batch already committed")
        self._committed = True
        await self._apply(self.ops)

    async def _apply(self, ops: list[WriteOp]) -> None:
        raise NotImplementedError


def _json_copy(data: dict[str, Any]) -> dict[str, Any]:
    # Round-trip through JSON so every store sees the same value types.
    return json.loads(json.dumps(data, default=str))


def sort_key_for(snapshot: DocumentSnapshot, order_by: str | None) -> tuple[Any, ...]:
    if order_by is None:
        return (snapshot.id,)
    value = snapshot.data.get(order_by)
    # Missing values sort first, then by id for a stable order.
    return (value is not None, "" if value is None else str(value), snapshot.id)


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------


class _InMemoryBatch(PendingWriteBatch):
    def __init__(self, store: InMemoryDocumentStore) -> None:
        super().__init__()
        self._store = store

    async def _apply(self, ops: list[WriteOp]) -> None:
        self._store._apply(ops)


class InMemoryDocumentStore:
    """Dict-backed store; each committed batch is recorded in ``commits``."""

    def __init__(self, initial: dict[str, dict[str, Any]] | None = None) -> None:
        self.documents: dict[str, dict[str, Any]] = {}
        self.commits: list[list[WriteOp]] = []
        for path, data in (initial or {}).items():
            split_path(path)
            self.documents[path] = _json_copy(data)

    async def get(self, path: str) -> dict[str, Any] | None:
        data = self.documents.get(path)
        return copy.deepcopy(data) if data is not None else None

    async def get_all(
        self, collection_path: str, order_by: str | None = None
    ) -> list[DocumentSnapshot]:
        prefix = collection_path.rstrip("/") + "/"
        snapshots = [
            DocumentSnapshot(id=path[len(prefix):], path=path, data=copy.deepcopy(data))
            for path, data in self.documents.items()
            if path.startswith(prefix) and "/" not in path[len(prefix):]
        ]
        snapshots.sort(key=lambda snap: sort_key_for(snap, order_by))
        return snapshots

    def batch(self) -> PendingWriteBatch:
        return _InMemoryBatch(self)

    def snapshot(self) -> dict[str, dict[str, Any]]:
        return copy.deepcopy(self.documents)

    def _apply(self, ops: list[WriteOp]) -> None:
        staged = dict(self.documents)
        for op in ops:
            if op.kind == "delete":
                staged.pop(op.path, None)
            elif op.merge and op.path in staged:
                staged[op.path] = {**staged[op.path], **copy.deepcopy(op.data or {})}
            else:
                staged[op.path] = copy.deepcopy(op.data or {})
        self.documents = staged
        self.commits.append(list(ops))
        logger.debug("Committed batch of %d ops", len(ops))
