"""Unit tests for notification building and the claim/commit protocol."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

import pytest

from app.schemas import AlarmState, DeviceRecord, PushMessage, UserRecord
from datastore.mock_document_store import DocumentStoreError, MockDocumentCollection
from models.records import Mode, SensorReading
from push.sender import MockPushSender
from services.dispatcher import ALARM_TITLE, AlarmClaimLost, NotificationDispatcher
from services.errors import DeliveryFailed, StoreWriteFailed
from services.evaluator import ThresholdEvaluator
from services.owner_resolver import OwnerResolver

COMMIT_TIME = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)
READING = SensorReading(humidity=72.2, light=47.0, temperature=31.5, water=60.5, mode=Mode.normal)


class RaisingPushSender(MockPushSender):
    """Raises an error outside the push error taxonomy on the first send."""

    def __init__(self) -> None:
        super().__init__()
        self.raised = False

    def send(self, token: str, message: PushMessage) -> str:
        if not self.raised:
            self.raised = True
            raise RuntimeError("sender bug")
        return super().send(token, message)


class FailingReleaseCollection(MockDocumentCollection):
    """Accepts the claim but fails the write that undoes it."""

    def update_fields(
        self,
        key: str,
        updates: Mapping[str, Any],
        expected: Optional[Mapping[str, Any]] = None,
    ) -> UserRecord:
        if expected and all(value is True for value in expected.values()):
            raise DocumentStoreError("store unavailable")
        return super().update_fields(key, updates, expected=expected)


class FailingCommitCollection(MockDocumentCollection):
    """Accepts the claim but fails the post-delivery commit."""

    def update_fields(
        self,
        key: str,
        updates: Mapping[str, Any],
        expected: Optional[Mapping[str, Any]] = None,
    ) -> UserRecord:
        if any(path.endswith("lastAlarm") for path in updates):
            raise DocumentStoreError("store unavailable")
        return super().update_fields(key, updates, expected=expected)


def _seed(collection: MockDocumentCollection, state: Optional[AlarmState] = None) -> None:
    collection.put_item(
        UserRecord(
            user_id="user-1",
            devices=[DeviceRecord(mqtt_id="94B97EC04AD4", device_id="dev-1", name="Tent")],
            alarm_state={"94B97EC04AD4": state} if state is not None else {},
            fcm_token="token-1",
        )
    )


def _dispatch(collection: MockDocumentCollection, sender: MockPushSender) -> str:
    owner = OwnerResolver(collection).resolve("94B97EC04AD4")
    issues = ThresholdEvaluator().evaluate(READING)
    return NotificationDispatcher(collection, sender).dispatch(owner, READING, issues)


def test_build_message_carries_primary_issue_and_all_issues() -> None:
    collection = MockDocumentCollection(name="users")
    _seed(collection)
    owner = OwnerResolver(collection).resolve("94B97EC04AD4")
    issues = ThresholdEvaluator().evaluate(READING)

    message = NotificationDispatcher(collection, MockPushSender()).build_message(owner, READING, issues)

    assert message.token == "token-1"
    assert message.notification.title == ALARM_TITLE
    assert message.notification.body == (
        "Tent: Temperature critical (31.5°C > 30.0°C), Humidity too low (72.2% < 80.0%)"
    )
    assert message.data["deviceId"] == "94B97EC04AD4"
    assert message.data["deviceName"] == "Tent"
    assert message.data["alarmType"] == "temperature"
    assert message.data["value"] == "31.5"
    assert message.data["threshold"] == "30"
    assert message.data["mode"] == "normal"
    all_issues = json.loads(message.data["allIssues"])
    assert [issue["sensor"] for issue in all_issues] == ["temperature", "humidity"]
    assert all_issues[1]["threshold"] == 80.0
    assert message.android.priority == "high"
    assert message.android.notification.channel_id == "alarm_channel"


def test_build_message_requires_issues() -> None:
    collection = MockDocumentCollection(name="users")
    _seed(collection)
    owner = OwnerResolver(collection).resolve("94B97EC04AD4")

    with pytest.raises(ValueError):
        NotificationDispatcher(collection, MockPushSender()).build_message(owner, READING, [])


def test_dispatch_sends_then_commits_state() -> None:
    collection = MockDocumentCollection(name="users", clock=lambda: COMMIT_TIME)
    _seed(collection, AlarmState(acknowledged=False))
    sender = MockPushSender()

    delivery_id = _dispatch(collection, sender)

    assert delivery_id.startswith("projects/mock/messages/")
    assert len(sender.sent) == 1
    stored = collection.get_item("user-1")
    assert stored is not None
    assert stored.alarm_state["94B97EC04AD4"] == AlarmState(
        active=True, acknowledged=False, last_alarm=COMMIT_TIME
    )
    assert stored.fcm_token_updated_at == COMMIT_TIME


def test_claim_lost_when_state_changed_after_read() -> None:
    collection = MockDocumentCollection(name="users")
    _seed(collection)
    sender = MockPushSender()
    owner = OwnerResolver(collection).resolve("94B97EC04AD4")
    collection.update_fields("user-1", {"alarmState.94B97EC04AD4.alarmAcknowledged": True})

    with pytest.raises(AlarmClaimLost):
        NotificationDispatcher(collection, sender).dispatch(
            owner, READING, ThresholdEvaluator().evaluate(READING)
        )

    assert sender.sent == []


def test_delivery_failure_restores_previous_state() -> None:
    collection = MockDocumentCollection(name="users")
    _seed(collection, AlarmState(active=False))
    sender = MockPushSender()
    sender.fail_next("push backend down")

    with pytest.raises(DeliveryFailed):
        _dispatch(collection, sender)

    stored = collection.get_item("user-1")
    assert stored is not None
    assert stored.alarm_state["94B97EC04AD4"] == AlarmState(active=False)
    assert stored.fcm_token_updated_at is None


def test_delivery_failure_on_absent_state_leaves_gate_open() -> None:
    collection = MockDocumentCollection(name="users")
    _seed(collection)
    sender = MockPushSender()
    sender.fail_next()

    with pytest.raises(DeliveryFailed):
        _dispatch(collection, sender)

    stored = collection.get_item("user-1")
    assert stored is not None
    assert stored.alarm_state == {}

    _dispatch(collection, sender)
    assert len(sender.sent) == 1


def test_commit_failure_after_delivery_is_critical(caplog) -> None:
    collection = FailingCommitCollection(name="users")
    _seed(collection)
    sender = MockPushSender()

    with pytest.raises(StoreWriteFailed) as excinfo:
        _dispatch(collection, sender)

    assert excinfo.value.delivered is True
    assert len(sender.sent) == 1
    assert any(record.levelname == "CRITICAL" for record in caplog.records)


def test_unexpected_sender_error_releases_claim() -> None:
    collection = MockDocumentCollection(name="users")
    _seed(collection, AlarmState(active=False))
    sender = RaisingPushSender()

    with pytest.raises(DeliveryFailed) as excinfo:
        _dispatch(collection, sender)

    assert excinfo.value.claim_held is False
    assert isinstance(excinfo.value.__cause__, RuntimeError)
    stored = collection.get_item("user-1")
    assert stored is not None
    assert stored.alarm_state["94B97EC04AD4"] == AlarmState(active=False)

    _dispatch(collection, sender)
    assert len(sender.sent) == 1


def test_failed_release_is_critical_and_reports_held_claim(caplog) -> None:
    collection = FailingReleaseCollection(name="users")
    _seed(collection)
    sender = MockPushSender()
    sender.fail_next()

    with pytest.raises(DeliveryFailed) as excinfo:
        _dispatch(collection, sender)

    assert excinfo.value.claim_held is True
    assert any(
        record.levelname == "CRITICAL" and getattr(record, "error_code", None) == "delivery_failed"
        for record in caplog.records
    )
    stored = collection.get_item("user-1")
    assert stored is not None
    assert stored.alarm_state["94B97EC04AD4"].active is True
