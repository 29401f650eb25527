"""Notification building, delivery and the alarm state commit."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Sequence

from app.schemas import PushMessage, PushNotification
from datastore.mock_document_store import (
    DELETE_FIELD,
    SERVER_TIMESTAMP,
    DocumentStoreError,
    MockDocumentCollection,
    PreconditionFailed,
)
from models.records import Issue, SensorReading
from push.sender import PushDeliveryError, PushSender
from services.errors import DeliveryFailed, StoreWriteFailed
from services.owner_resolver import ResolvedOwner

logger = logging.getLogger(__name__)

ALARM_TITLE = "🚨 Sensor Alert"


class AlarmClaimLost(Exception):
    """Another evaluation changed the alarm state after it was read."""


def _state_path(device_id: str, field: str) -> str:
    return f"alarmState.{device_id}.{field}"


def _format_number(value: float) -> str:
    return str(int(value)) if value.is_integer() else repr(value)


class NotificationDispatcher:
    """Deliver one alarm and record it against the owner's alarm state.

    The alarm is claimed first with a conditional ``alarmActive=true`` write
    guarded by the state the gate saw, so only one of several concurrent
    evaluations reaches the push call. A failed delivery restores the previous
    ``alarmActive`` value, or removes the device entry when there was none.
    """

    def __init__(self, collection: MockDocumentCollection, sender: PushSender) -> None:
        self.collection = collection
        self.sender = sender

    def build_message(
        self,
        owner: ResolvedOwner,
        reading: SensorReading,
        issues: Sequence[Issue],
    ) -> PushMessage:
        if not issues:
            raise ValueError("Cannot build an alarm message without issues.")
        primary = issues[0]
        body = f"{owner.device_name}: {', '.join(issue.message for issue in issues)}"
        return PushMessage(
            token=owner.push_token or "",
            notification=PushNotification(title=ALARM_TITLE, body=body),
            data={
                "deviceId": owner.device_id,
                "deviceName": owner.device_name,
                "alarmType": primary.sensor.value,
                "value": _format_number(primary.value),
                "threshold": _format_number(primary.threshold),
                "mode": reading.mode.value,
                "allIssues": json.dumps([issue.to_dict() for issue in issues]),
            },
        )

    def dispatch(
        self,
        owner: ResolvedOwner,
        reading: SensorReading,
        issues: Sequence[Issue],
    ) -> str:
        """Send the alarm and commit it; returns the delivery id."""
        message = self.build_message(owner, reading, issues)
        context = {"device_id": owner.device_id, "user_id": owner.user_id}

        self._claim(owner)
        try:
            delivery_id = self.sender.send(message.token, message)
        except Exception as exc:  # noqa: BLE001 - any send failure must release the claim
            if isinstance(exc, PushDeliveryError):
                logger.error("Push delivery failed: %s", exc, extra=context)
            else:
                logger.exception("Push sender raised unexpectedly", extra=context)
            released = self._release(owner)
            raise DeliveryFailed(
                str(exc), device_id=owner.device_id, claim_held=not released
            ) from exc

        logger.info("Push notification sent", extra={**context, "delivery_id": delivery_id})

        try:
            self.collection.update_fields(
                owner.user_id,
                {
                    _state_path(owner.device_id, "lastAlarm"): SERVER_TIMESTAMP,
                    _state_path(owner.device_id, "alarmActive"): True,
                    _state_path(owner.device_id, "alarmAcknowledged"): False,
                    "fcmTokenUpdatedAt": SERVER_TIMESTAMP,
                },
            )
        except (DocumentStoreError, OSError) as exc:
            logger.critical(
                "Alarm state commit failed after delivery; next message may notify again: %s",
                exc,
                extra={**context, "delivery_id": delivery_id, "error_code": StoreWriteFailed.code},
            )
            raise StoreWriteFailed(str(exc), device_id=owner.device_id, delivered=True) from exc

        return delivery_id

    def _claim(self, owner: ResolvedOwner) -> None:
        try:
            self.collection.update_fields(
                owner.user_id,
                {_state_path(owner.device_id, "alarmActive"): True},
                expected=self._observed_state(owner),
            )
        except PreconditionFailed as exc:
            raise AlarmClaimLost(str(exc)) from exc
        except (DocumentStoreError, OSError) as exc:
            logger.error(
                "Could not claim alarm before delivery: %s",
                exc,
                extra={"device_id": owner.device_id, "user_id": owner.user_id},
            )
            raise StoreWriteFailed(str(exc), device_id=owner.device_id) from exc

    def _release(self, owner: ResolvedOwner) -> bool:
        """Undo the claim; returns False when the claim is still held."""
        path = _state_path(owner.device_id, "alarmActive")
        if owner.alarm_state is None:
            updates = {f"alarmState.{owner.device_id}": DELETE_FIELD}
        else:
            updates = {path: owner.alarm_state.active}
        try:
            self.collection.update_fields(owner.user_id, updates, expected={path: True})
        except (DocumentStoreError, OSError) as exc:
            logger.critical(
                "Could not release alarm claim after failed delivery; device stays suppressed: %s",
                exc,
                extra={
                    "device_id": owner.device_id,
                    "user_id": owner.user_id,
                    "error_code": DeliveryFailed.code,
                },
            )
            return False
        return True

    @staticmethod
    def _observed_state(owner: ResolvedOwner) -> Dict[str, Any]:
        state = owner.alarm_state
        device_id = owner.device_id
        return {
            _state_path(device_id, "alarmActive"): state.active if state else None,
            _state_path(device_id, "alarmAcknowledged"): state.acknowledged if state else None,
            _state_path(device_id, "snoozeUntil"): state.snooze_until if state else None,
            _state_path(device_id, "lastAlarm"): state.last_alarm if state else None,
        }
