"""Typed status conditions with upsert-by-type semantics."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

CONDITION_RECONCILE_COMPLETED = "ReconcileCompleted"
CONDITION_REGISTRY_CA_CERT_FOUND = "RegistryCACertFound"
CONDITION_RECONCILE_ERROR = "ReconcileError"

STATUS_TRUE = "True"
STATUS_FALSE = "False"
STATUS_UNKNOWN = "Unknown"

_VALID_STATUSES = (STATUS_TRUE, STATUS_FALSE, STATUS_UNKNOWN)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def _format_time(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class Condition:
    type: str
    status: str
    reason: str = ""
    message: str = ""
    last_transition_time: Optional[datetime] = None
    last_heartbeat_time: Optional[datetime] = None

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": self.type,
            "status": self.status,
            "reason": self.reason,
            "message": self.message,
        }
        if self.last_transition_time is not None:
            data["lastTransitionTime"] = _format_time(self.last_transition_time)
        if self.last_heartbeat_time is not None:
            data["lastHeartbeatTime"] = _format_time(self.last_heartbeat_time)
        return data


class ConditionTracker:
    """Ordered condition list holding at most one entry per type.

    ``clock`` is injectable so tests can pin transition times.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock or _utcnow
        self._conditions: List[Condition] = []

    def set_condition(self, type_: str, status: str, reason: str = "", message: str = "") -> Condition:
        """Upsert the condition of ``type_``.

        An existing entry keeps its position; its transition time moves only
        when the status flips. Otherwise a new entry is appended.
        """

        if status not in _VALID_STATUSES:
            raise ValueError(f"invalid condition status {status!r}")

        now = self._clock()
        existing = self.get(type_)
        if existing is None:
            condition = Condition(
                type=type_,
                status=status,
                reason=reason,
                message=message,
                last_transition_time=now,
                last_heartbeat_time=now,
            )
            self._conditions.append(condition)
            return condition

        if existing.status != status:
            existing.status = status
            existing.last_transition_time = now
        existing.reason = reason
        existing.message = message
        existing.last_heartbeat_time = now
        return existing

    def get(self, type_: str) -> Optional[Condition]:
        return next((c for c in self._conditions if c.type == type_), None)

    def is_true(self, type_: str) -> bool:
        condition = self.get(type_)
        return condition is not None and condition.status == STATUS_TRUE

    def as_list(self) -> List[Dict[str, Any]]:
        return [c.as_dict() for c in self._conditions]

    def __iter__(self) -> Iterator[Condition]:
        return iter(list(self._conditions))

    def __len__(self) -> int:
        return len(self._conditions)


def find_condition(conditions: List[Mapping[str, Any]], type_: str) -> Optional[Mapping[str, Any]]:
    """Look up a serialized condition by type in an object's status."""

    return next((c for c in conditions if c.get("type") == type_), None)
