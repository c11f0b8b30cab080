"""Object store abstraction the engine converges against.

The engine never talks to a cluster client directly. It is handed an
:class:`ObjectStore`, which reads and writes Kubernetes-style dictionaries by
kind, namespace and name. :class:`InMemoryObjectStore` is a faithful enough
stand-in for tests and dry runs: it assigns uids and resource versions, fills
in ``spec.clusterIP`` for Services the way the API server does, honours
resource-version preconditions on update and records every write.
"""

from __future__ import annotations

import copy
import itertools
import threading
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from .config import KIND_SERVICE, Object
from .errors import AlreadyExistsError, ConflictError, DeadlineExceeded, NotFoundError

Key = Tuple[str, str, str]


@dataclass(frozen=True)
class Deadline:
    """Wall-clock expiry plus an optional cancellation event for one pass."""

    expires_at: Optional[float] = None
    cancel_event: Optional[threading.Event] = None

    @classmethod
    def after(cls, seconds: Optional[float], cancel_event: Optional[threading.Event] = None) -> "Deadline":
        expires_at = time.monotonic() + seconds if seconds is not None else None
        return cls(expires_at=expires_at, cancel_event=cancel_event)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def remaining(self) -> Optional[float]:
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - time.monotonic())

    def check(self) -> None:
        if self.cancelled:
            raise DeadlineExceeded("reconcile pass cancelled")
        if self.expires_at is not None and time.monotonic() >= self.expires_at:
            raise DeadlineExceeded("reconcile pass deadline exceeded")


NO_DEADLINE = Deadline()


def object_key(obj: Object) -> Key:
    metadata = obj.get("metadata") or {}
    return obj["kind"], metadata.get("namespace", "") or "", metadata["name"]


class ObjectStore(ABC):
    """Minimal read/write surface over cluster objects."""

    @abstractmethod
    def get(self, kind: str, namespace: str, name: str, *, deadline: Deadline = NO_DEADLINE) -> Object:
        """Return the object or raise :class:`NotFoundError`."""

    @abstractmethod
    def list(
        self, kind: str, namespace: Optional[str] = None, *, deadline: Deadline = NO_DEADLINE
    ) -> List[Object]:
        """Return all objects of ``kind``; ``namespace=None`` spans all namespaces."""

    @abstractmethod
    def create(self, obj: Object, *, deadline: Deadline = NO_DEADLINE) -> Object:
        """Create ``obj`` or raise :class:`AlreadyExistsError`."""

    @abstractmethod
    def update(self, obj: Object, *, deadline: Deadline = NO_DEADLINE) -> Object:
        """Replace ``obj`` (everything but status)."""

    @abstractmethod
    def update_status(self, obj: Object, *, deadline: Deadline = NO_DEADLINE) -> Object:
        """Replace only the status of ``obj``."""

    @abstractmethod
    def delete(self, kind: str, namespace: str, name: str, *, deadline: Deadline = NO_DEADLINE) -> None:
        """Delete the object or raise :class:`NotFoundError`."""


class InMemoryObjectStore(ObjectStore):
    """Thread-safe dictionary-backed store."""

    def __init__(self, objects: Iterable[Object] = ()) -> None:
        self._lock = threading.Lock()
        self._objects: Dict[Key, Object] = {}
        self._versions = itertools.count(1)
        self._cluster_ips = itertools.count(1)
        self._faults: Dict[Tuple[str, str], List[Exception]] = {}
        self.actions: List[Tuple[str, str, str, str]] = []
        for obj in objects:
            self._insert(copy.deepcopy(obj))

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------
    def inject_fault(self, verb: str, kind: str, error: Exception, times: int = 1) -> None:
        """Make the next ``times`` calls of ``verb`` on ``kind`` raise ``error``."""

        self._faults.setdefault((verb, kind), []).extend([error] * times)

    def writes(self, kind: Optional[str] = None) -> List[Tuple[str, str, str, str]]:
        return [
            action
            for action in self.actions
            if action[0] != "get" and (kind is None or action[1] == kind)
        ]

    def put(self, obj: Object) -> Object:
        """Insert or overwrite ``obj`` without recording an action."""

        with self._lock:
            self._objects.pop(object_key(obj), None)
            return copy.deepcopy(self._insert(copy.deepcopy(obj)))

    # ------------------------------------------------------------------
    # ObjectStore
    # ------------------------------------------------------------------
    def get(self, kind: str, namespace: str, name: str, *, deadline: Deadline = NO_DEADLINE) -> Object:
        self._enter("get", kind, deadline)
        with self._lock:
            obj = self._objects.get((kind, namespace or "", name))
            if obj is None:
                raise NotFoundError(kind, namespace, name)
            return copy.deepcopy(obj)

    def list(
        self, kind: str, namespace: Optional[str] = None, *, deadline: Deadline = NO_DEADLINE
    ) -> List[Object]:
        self._enter("list", kind, deadline)
        with self._lock:
            return [
                copy.deepcopy(obj)
                for (k, ns, _), obj in sorted(self._objects.items())
                if k == kind and (namespace is None or ns == namespace)
            ]

    def create(self, obj: Object, *, deadline: Deadline = NO_DEADLINE) -> Object:
        kind, namespace, name = object_key(obj)
        self._enter("create", kind, deadline)
        with self._lock:
            if (kind, namespace, name) in self._objects:
                raise AlreadyExistsError(kind, namespace, name)
            stored = self._insert(copy.deepcopy(obj))
            self.actions.append(("create", kind, namespace, name))
            return copy.deepcopy(stored)

    def update(self, obj: Object, *, deadline: Deadline = NO_DEADLINE) -> Object:
        return self._replace("update", obj, deadline, status_only=False)

    def update_status(self, obj: Object, *, deadline: Deadline = NO_DEADLINE) -> Object:
        return self._replace("update_status", obj, deadline, status_only=True)

    def delete(self, kind: str, namespace: str, name: str, *, deadline: Deadline = NO_DEADLINE) -> None:
        self._enter("delete", kind, deadline)
        with self._lock:
            if self._objects.pop((kind, namespace or "", name), None) is None:
                raise NotFoundError(kind, namespace, name)
            self.actions.append(("delete", kind, namespace or "", name))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _enter(self, verb: str, kind: str, deadline: Deadline) -> None:
        deadline.check()
        if verb == "get":
            self.actions.append(("get", kind, "", ""))
        pending = self._faults.get((verb, kind))
        if pending:
            raise pending.pop(0)

    def _insert(self, obj: Object) -> Object:
        metadata = obj.setdefault("metadata", {})
        metadata.setdefault("namespace", "")
        metadata.setdefault("uid", str(uuid.uuid4()))
        metadata["resourceVersion"] = str(next(self._versions))
        if obj.get("kind") == KIND_SERVICE:
            spec = obj.setdefault("spec", {})
            if not spec.get("clusterIP"):
                spec["clusterIP"] = f"172.30.0.{next(self._cluster_ips)}"
        self._objects[object_key(obj)] = obj
        return obj

    def _replace(self, verb: str, obj: Object, deadline: Deadline, status_only: bool) -> Object:
        kind, namespace, name = object_key(obj)
        self._enter(verb, kind, deadline)
        with self._lock:
            current = self._objects.get((kind, namespace, name))
            if current is None:
                raise NotFoundError(kind, namespace, name)
            expected = (obj.get("metadata") or {}).get("resourceVersion")
            if expected and expected != current["metadata"]["resourceVersion"]:
                raise ConflictError(
                    f"{kind} {namespace}/{name}: resourceVersion {expected} is stale"
                )
            if status_only:
                replacement = copy.deepcopy(current)
                replacement["status"] = copy.deepcopy(obj.get("status") or {})
            else:
                replacement = copy.deepcopy(obj)
                replacement["metadata"]["uid"] = current["metadata"]["uid"]
                if "status" in current:
                    replacement["status"] = copy.deepcopy(current["status"])
                else:
                    replacement.pop("status", None)
            replacement["metadata"]["resourceVersion"] = str(next(self._versions))
            self._objects[(kind, namespace, name)] = replacement
            self.actions.append((verb, kind, namespace, name))
            return copy.deepcopy(replacement)
