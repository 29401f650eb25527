"""Suppression rules deciding whether an alarm may notify the owner."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from app.schemas import SuppressionReason
from services.errors import NoPushTarget
from services.owner_resolver import ResolvedOwner

ALARM_COOLDOWN = timedelta(minutes=5)


@dataclass(frozen=True)
class GateDecision:
    reason: Optional[SuppressionReason] = None

    @property
    def permitted(self) -> bool:
        return self.reason is None


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class DedupGate:
    """Apply the suppression rules in order; the first match wins.

    1. alarm already active
    2. alarm acknowledged by the user
    3. snoozed until a future time
    4. last alarm within the cooldown window

    A permit for an owner without a push token raises ``NoPushTarget``.
    """

    def __init__(self, cooldown: timedelta = ALARM_COOLDOWN) -> None:
        self.cooldown = cooldown

    def check(self, owner: ResolvedOwner, now: datetime) -> GateDecision:
        state = owner.alarm_state
        if state is not None:
            if state.active:
                return GateDecision(SuppressionReason.already_active)
            if state.acknowledged:
                return GateDecision(SuppressionReason.user_acknowledged)
            if state.snooze_until is not None and _as_utc(state.snooze_until) > now:
                return GateDecision(SuppressionReason.snoozed)
            if state.last_alarm is not None and now - _as_utc(state.last_alarm) < self.cooldown:
                return GateDecision(SuppressionReason.cooldown)

        if not owner.push_token:
            raise NoPushTarget(
                f"User {owner.user_id!r} has no push token.", device_id=owner.device_id
            )
        return GateDecision()
