"""Exception hierarchy shared by the engine, the reconciler and stores."""

from __future__ import annotations


class UpdateServiceError(Exception):
    """Base class for every error raised by this package."""


class StoreError(UpdateServiceError):
    """A call into the object store failed."""


class NotFoundError(StoreError):
    def __init__(self, kind: str, namespace: str, name: str) -> None:
        self.kind = kind
        self.namespace = namespace
        self.name = name
        where = f"{namespace}/{name}" if namespace else name
        super().__init__(f"{kind} {where!r} not found")


class AlreadyExistsError(StoreError):
    def __init__(self, kind: str, namespace: str, name: str) -> None:
        self.kind = kind
        self.namespace = namespace
        self.name = name
        where = f"{namespace}/{name}" if namespace else name
        super().__init__(f"{kind} {where!r} already exists")


class ConflictError(StoreError):
    """The object changed between read and write."""


class DeadlineExceeded(StoreError):
    """The pass ran out of time or was cancelled."""


class SpecValidationError(UpdateServiceError, ValueError):
    """The primary object's spec cannot be rendered."""


class PullSecretNotFoundError(UpdateServiceError):
    """The cluster pull secret required by the operand is missing."""


class InvariantViolation(UpdateServiceError):
    """Merged state broke an assumption the engine relies on."""


class ReconcileStepError(UpdateServiceError):
    """An ensure step failed; carries the condition reason it reported."""

    def __init__(self, step: str, reason: str, cause: BaseException) -> None:
        self.step = step
        self.reason = reason
        self.cause = cause
        super().__init__(f"{step}: {reason}: {cause}")
