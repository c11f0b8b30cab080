"""Reconciliation engine for UpdateService instances."""

from .builder import DesiredStateBuilder, DesiredStateBundle
from .conditions import ConditionTracker
from .config import ExternalDependencies, ManagedResource, MergePolicy, ProxySettings, UpdateService
from .ensure import ConvergenceEngine, EnsureResult
from .events import ReconcileRequest, ReconcileResult, WatchEvent
from .fingerprint import fingerprint
from .mapper import DependencyMapper
from .reconciler import UpdateServiceReconciler
from .store import Deadline, InMemoryObjectStore, ObjectStore

__all__ = [
    "ConditionTracker",
    "ConvergenceEngine",
    "Deadline",
    "DependencyMapper",
    "DesiredStateBuilder",
    "DesiredStateBundle",
    "EnsureResult",
    "ExternalDependencies",
    "InMemoryObjectStore",
    "ManagedResource",
    "MergePolicy",
    "ObjectStore",
    "ProxySettings",
    "ReconcileRequest",
    "ReconcileResult",
    "UpdateService",
    "UpdateServiceReconciler",
    "WatchEvent",
    "fingerprint",
]
