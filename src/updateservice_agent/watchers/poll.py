"""Polling watcher that turns list() snapshots into watch events."""

from __future__ import annotations

import logging
from threading import Event, Thread
from typing import Dict, Optional

from updateservice.config import Object
from updateservice.errors import StoreError
from updateservice.events import ADDED, DELETED, MODIFIED, WatchEvent
from updateservice.store import ObjectStore

from ..registry import EventRegistry

LOG = logging.getLogger(__name__)


def _key(obj: Object) -> str:
    metadata = obj.get("metadata") or {}
    return f"{metadata.get('namespace', '') or ''}/{metadata.get('name', '')}"


def _version(obj: Object) -> str:
    return str((obj.get("metadata") or {}).get("resourceVersion", ""))


class PollingWatcher(Thread):
    """Poll one kind in one namespace and publish changes to the registry.

    ``namespace=None`` lists across all namespaces; ``""`` addresses
    cluster-scoped kinds.
    """

    def __init__(
        self,
        registry: EventRegistry,
        store: ObjectStore,
        kind: str,
        namespace: Optional[str],
        interval: float,
        stop_event: Event,
    ) -> None:
        super().__init__(daemon=True, name=f"watch-{kind}-{namespace or 'all'}")
        self._registry = registry
        self._store = store
        self._kind = kind
        self._namespace = namespace
        self._interval = interval
        self._stop_event = stop_event
        self._state: Dict[str, Object] = {}

    def run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.poll()
            except Exception:  # pragma: no cover - logged below
                LOG.exception("%s watcher encountered an error", self._kind)
            self._stop_event.wait(self._interval)

    def poll(self) -> int:
        """List once and publish the difference; return the number of events."""

        try:
            items = self._store.list(self._kind, self._namespace)
        except StoreError as exc:
            LOG.warning("failed to list %s in %s: %s", self._kind, self._namespace or "all namespaces", exc)
            return 0

        current = {_key(obj): obj for obj in items}
        published = 0
        for key, obj in current.items():
            previous = self._state.get(key)
            if previous is None:
                event_type = ADDED
            elif _version(previous) != _version(obj):
                event_type = MODIFIED
            else:
                continue
            LOG.debug("%s %s %s", event_type, self._kind, key)
            self._registry.handle(WatchEvent(event_type, self._kind, obj))
            published += 1

        for key in set(self._state) - set(current):
            LOG.debug("%s %s %s", DELETED, self._kind, key)
            self._registry.handle(WatchEvent(DELETED, self._kind, self._state[key]))
            published += 1

        self._state = current
        return published
