"""Runtime agent driving the UpdateService reconciler against a cluster.

The agent wires the pure engine in :mod:`updateservice` to a live cluster:
poll-based watchers feed an :class:`~updateservice_agent.registry.EventRegistry`,
which turns watch events into reconcile requests on a de-duplicating queue
drained by worker threads.
"""

from .queue import ReconcileWorker, RequestQueue  # noqa: F401
from .registry import EventRegistry  # noqa: F401

__all__ = [
    "EventRegistry",
    "ReconcileWorker",
    "RequestQueue",
]
