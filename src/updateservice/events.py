"""Event primitives exchanged between watchers, the mapper and the reconciler."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .config import Object

ADDED = "ADDED"
MODIFIED = "MODIFIED"
DELETED = "DELETED"


@dataclass(frozen=True)
class WatchEvent:
    """A change observed on one cluster object.

    ``obj`` holds the last known state; for deletions that is the state before
    the object went away.
    """

    type: str
    kind: str
    obj: Object

    @property
    def namespace(self) -> str:
        return (self.obj.get("metadata") or {}).get("namespace", "") or ""

    @property
    def name(self) -> str:
        return (self.obj.get("metadata") or {}).get("name", "")


@dataclass(frozen=True, order=True)
class ReconcileRequest:
    """Identifies one UpdateService instance to converge."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of one pass; ``requeue_after`` is ``None`` for no requeue."""

    requeue_after: Optional[float] = None
