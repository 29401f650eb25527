"""Pydantic schemas for stored documents, push messages and the HTTP API."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from models.records import Issue, Mode


class StoreDocument(BaseModel):
    """Base for documents kept in the record store, keyed by camelCase paths."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class DeviceRecord(StoreDocument):
    """A device entry inside a user's ``devices`` array."""

    mqtt_id: str = Field(..., alias="mqttId", description="Transport identifier (MAC-like).")
    device_id: Optional[str] = Field(default=None, alias="deviceId")
    name: Optional[str] = None
    push_token: Optional[str] = Field(default=None, alias="pushToken")


class AlarmState(StoreDocument):
    """Per-device alarm bookkeeping stored under ``alarmState.<mqttId>``."""

    active: bool = Field(default=False, alias="alarmActive")
    acknowledged: bool = Field(default=False, alias="alarmAcknowledged")
    snooze_until: Optional[datetime] = Field(default=None, alias="snoozeUntil")
    last_alarm: Optional[datetime] = Field(default=None, alias="lastAlarm")


class UserRecord(StoreDocument):
    """A user document owning zero or more devices."""

    user_id: str = Field(..., alias="userId")
    devices: List[DeviceRecord] = Field(default_factory=list)
    alarm_state: Dict[str, AlarmState] = Field(default_factory=dict, alias="alarmState")
    fcm_token: Optional[str] = Field(default=None, alias="fcmToken")
    fcm_token_updated_at: Optional[datetime] = Field(default=None, alias="fcmTokenUpdatedAt")


class PushNotification(BaseModel):
    title: str
    body: str


class AndroidNotification(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sound: str = "default"
    channel_id: str = Field(default="alarm_channel", alias="channelId")


class AndroidConfig(BaseModel):
    priority: str = "high"
    notification: AndroidNotification = Field(default_factory=AndroidNotification)


class PushMessage(BaseModel):
    """Outbound push payload; every ``data`` value is a string."""

    token: str
    notification: PushNotification
    data: Dict[str, str]
    android: AndroidConfig = Field(default_factory=AndroidConfig)


class OutcomeStatus(str, Enum):
    """How the pipeline finished for one inbound message."""

    clear = "clear"
    suppressed = "suppressed"
    dispatched = "dispatched"


class SuppressionReason(str, Enum):
    already_active = "already_active"
    user_acknowledged = "user_acknowledged"
    snoozed = "snoozed"
    cooldown = "cooldown"
    no_push_target = "no_push_target"


class AlarmTriggerRequest(BaseModel):
    """Manual alarm entry point, equivalent to a message on ``topic/{deviceId}/alarm``."""

    model_config = ConfigDict(populate_by_name=True)

    device_id: str = Field(..., alias="deviceId", min_length=1)
    payload: str = Field(..., min_length=1, description="Bracketed reading, e.g. [72.2,47.0,31.5,60.5,n].")


class AlarmOutcome(BaseModel):
    """Result of running one message through the pipeline."""

    device_id: str
    status: OutcomeStatus
    reason: Optional[SuppressionReason] = None
    user_id: Optional[str] = None
    mode: Optional[Mode] = None
    issues: List[Issue] = Field(default_factory=list)
    delivery_id: Optional[str] = None


class ClearAlarmResponse(BaseModel):
    device_id: str
    user_id: str
    alarm_state: AlarmState


class MonitorStatus(BaseModel):
    """Listener health plus per-outcome counters since start-up."""

    status: str
    connected: bool
    subscribed: Optional[str] = None
    counts: Dict[str, int] = Field(default_factory=dict)


class KeepAliveResponse(BaseModel):
    status: str
    connected: bool
