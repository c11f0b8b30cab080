from datetime import datetime, timedelta, timezone

import pytest

from updateservice.conditions import (
    CONDITION_RECONCILE_COMPLETED,
    CONDITION_REGISTRY_CA_CERT_FOUND,
    STATUS_FALSE,
    STATUS_TRUE,
    ConditionTracker,
    find_condition,
)


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += timedelta(seconds=seconds)


def test_set_condition_upserts_by_type():
    tracker = ConditionTracker(FakeClock())

    tracker.set_condition(CONDITION_RECONCILE_COMPLETED, STATUS_FALSE, "Reconcile started")
    tracker.set_condition(CONDITION_REGISTRY_CA_CERT_FOUND, STATUS_FALSE, "NotConfigured", "no CA")
    tracker.set_condition(CONDITION_RECONCILE_COMPLETED, STATUS_TRUE, "Success")

    assert len(tracker) == 2
    assert [c.type for c in tracker] == [CONDITION_RECONCILE_COMPLETED, CONDITION_REGISTRY_CA_CERT_FOUND]
    completed = tracker.get(CONDITION_RECONCILE_COMPLETED)
    assert completed.status == STATUS_TRUE
    assert completed.reason == "Success"
    assert completed.message == ""
    assert tracker.is_true(CONDITION_RECONCILE_COMPLETED)
    assert not tracker.is_true(CONDITION_REGISTRY_CA_CERT_FOUND)


def test_transition_time_moves_only_on_status_change():
    clock = FakeClock()
    tracker = ConditionTracker(clock)
    tracker.set_condition(CONDITION_RECONCILE_COMPLETED, STATUS_FALSE, "Reconcile started")
    started = clock.now

    clock.advance(30)
    tracker.set_condition(CONDITION_RECONCILE_COMPLETED, STATUS_FALSE, "EnsureServiceFailed", "boom")
    condition = tracker.get(CONDITION_RECONCILE_COMPLETED)
    assert condition.last_transition_time == started
    assert condition.last_heartbeat_time == clock.now
    assert condition.reason == "EnsureServiceFailed"

    clock.advance(30)
    tracker.set_condition(CONDITION_RECONCILE_COMPLETED, STATUS_TRUE, "Success")
    assert condition.last_transition_time == clock.now


def test_invalid_status_is_rejected():
    tracker = ConditionTracker()

    with pytest.raises(ValueError):
        tracker.set_condition(CONDITION_RECONCILE_COMPLETED, "Maybe")

    assert len(tracker) == 0


def test_serialised_conditions():
    tracker = ConditionTracker(FakeClock())
    tracker.set_condition(CONDITION_RECONCILE_COMPLETED, STATUS_TRUE, "Success")

    conditions = tracker.as_list()

    assert conditions == [
        {
            "type": CONDITION_RECONCILE_COMPLETED,
            "status": STATUS_TRUE,
            "reason": "Success",
            "message": "",
            "lastTransitionTime": "2024-01-01T00:00:00Z",
            "lastHeartbeatTime": "2024-01-01T00:00:00Z",
        }
    ]
    assert find_condition(conditions, CONDITION_RECONCILE_COMPLETED)["reason"] == "Success"
    assert find_condition(conditions, CONDITION_REGISTRY_CA_CERT_FOUND) is None
