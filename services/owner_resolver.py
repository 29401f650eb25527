"""Lookup of the user record that owns a device."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from app.schemas import AlarmState, DeviceRecord
from datastore.mock_document_store import MockDocumentCollection
from services.errors import DeviceNotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedOwner:
    """Owner context for one device.

    ``alarm_state`` is ``None`` when the user document has never stored state
    for the device, which is distinct from a stored all-false state.
    """

    user_id: str
    device: DeviceRecord
    alarm_state: Optional[AlarmState]
    push_token: Optional[str]

    @property
    def device_id(self) -> str:
        return self.device.mqtt_id

    @property
    def device_name(self) -> str:
        return self.device.name or "Unknown Device"


class OwnerResolver:
    """Resolve devices by scanning the user collection.

    The scan visits every user and device, O(users x devices) per call, and
    keeps going after the first match only to report conflicting owners.
    """

    def __init__(self, collection: MockDocumentCollection) -> None:
        self.collection = collection

    def resolve(self, device_id: str) -> ResolvedOwner:
        owner: Optional[ResolvedOwner] = None
        other_claimants: list[str] = []

        for user in self.collection.scan():
            device = next((d for d in user.devices if d.mqtt_id == device_id), None)
            if device is None:
                continue
            if owner is not None:
                other_claimants.append(user.user_id)
                continue
            owner = ResolvedOwner(
                user_id=user.user_id,
                device=device,
                alarm_state=user.alarm_state.get(device_id),
                push_token=device.push_token or user.fcm_token,
            )

        if owner is None:
            raise DeviceNotFound(
                f"Device {device_id!r} not found in any user's devices.", device_id=device_id
            )

        if other_claimants:
            logger.warning(
                "Device claimed by multiple users; using first match (also: %s)",
                ", ".join(other_claimants),
                extra={"device_id": device_id, "user_id": owner.user_id},
            )

        logger.debug(
            "Resolved device owner",
            extra={"device_id": device_id, "user_id": owner.user_id},
        )
        return owner
