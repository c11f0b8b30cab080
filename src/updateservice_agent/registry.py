"""Dispatch watch events to request handlers and enqueue the results."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Sequence

from updateservice.config import (
    KIND_CONFIG_MAP,
    KIND_DEPLOYMENT,
    KIND_IMAGE_CONFIG,
    KIND_NETWORK_POLICY,
    KIND_POD,
    KIND_POD_DISRUPTION_BUDGET,
    KIND_ROUTE,
    KIND_SECRET,
    KIND_SERVICE,
    KIND_UPDATE_SERVICE,
)
from updateservice.events import ReconcileRequest, WatchEvent
from updateservice.mapper import DependencyMapper

from .queue import RequestQueue

LOG = logging.getLogger(__name__)

OWNED_KINDS = (
    KIND_CONFIG_MAP,
    KIND_SECRET,
    KIND_SERVICE,
    KIND_DEPLOYMENT,
    KIND_ROUTE,
    KIND_POD_DISRUPTION_BUDGET,
    KIND_NETWORK_POLICY,
    KIND_POD,
)


class EventHandler(ABC):
    """Base class for handlers managed by :class:`EventRegistry`."""

    kinds: Sequence[str] = ()

    @abstractmethod
    def requests_for(self, event: WatchEvent) -> List[ReconcileRequest]:
        """Return the instances affected by ``event``."""


class PrimaryHandler(EventHandler):
    """A change to an UpdateService re-queues that instance."""

    kinds = (KIND_UPDATE_SERVICE,)

    def requests_for(self, event: WatchEvent) -> List[ReconcileRequest]:
        return [ReconcileRequest(event.namespace, event.name)]


class OwnerHandler(EventHandler):
    """A change to an owned object re-queues its controlling UpdateService."""

    kinds = OWNED_KINDS

    def requests_for(self, event: WatchEvent) -> List[ReconcileRequest]:
        refs = (event.obj.get("metadata") or {}).get("ownerReferences") or []
        return [
            ReconcileRequest(event.namespace, ref["name"])
            for ref in refs
            if ref.get("kind") == KIND_UPDATE_SERVICE and ref.get("controller")
        ]


class DependencyHandler(EventHandler):
    """Adapter exposing :class:`DependencyMapper` as an event handler."""

    kinds = (KIND_IMAGE_CONFIG, KIND_CONFIG_MAP)

    def __init__(self, mapper: DependencyMapper) -> None:
        self._mapper = mapper

    def requests_for(self, event: WatchEvent) -> List[ReconcileRequest]:
        return self._mapper.map(event)


class EventRegistry:
    """Route watch events by kind to handlers and queue their requests."""

    def __init__(self, queue: RequestQueue, watch_namespaces: Iterable[str] = ()) -> None:
        self._queue = queue
        self._handlers: Dict[str, EventHandler] = {}
        self._namespaces = frozenset(watch_namespaces)

    def register(self, name: str, handler: EventHandler) -> None:
        if name in self._handlers:
            raise ValueError(f"handler '{name}' already registered")
        self._handlers[name] = handler

    def unregister(self, name: str) -> None:
        self._handlers.pop(name, None)

    def handle(self, event: WatchEvent) -> List[ReconcileRequest]:
        if not isinstance(event, WatchEvent):
            raise TypeError(f"Unsupported event type: {type(event)!r}")

        requests: List[ReconcileRequest] = []
        for name, handler in self._handlers.items():
            if event.kind not in handler.kinds:
                continue
            for request in handler.requests_for(event):
                if not self._in_scope(request):
                    LOG.debug("handler %s: ignoring %s outside watched namespaces", name, request)
                    continue
                if request not in requests:
                    requests.append(request)

        for request in requests:
            LOG.debug("%s %s %s/%s -> %s", event.type, event.kind, event.namespace, event.name, request)
            self._queue.add(request)
        return requests

    def _in_scope(self, request: ReconcileRequest) -> bool:
        return not self._namespaces or request.namespace in self._namespaces


def build_registry(
    queue: RequestQueue,
    mapper: DependencyMapper,
    watch_namespaces: Optional[Iterable[str]] = None,
) -> EventRegistry:
    registry = EventRegistry(queue, watch_namespaces or ())
    registry.register("primary", PrimaryHandler())
    registry.register("owner", OwnerHandler())
    registry.register("dependencies", DependencyHandler(mapper))
    return registry
