"""Failure taxonomy of the alarm pipeline.

Every failure ends processing of the current message only. Suppression is not
an error and is reported through ``AlarmOutcome`` instead.
"""

from __future__ import annotations


class AlarmPipelineError(Exception):
    code = "pipeline_error"

    def __init__(self, message: str, device_id: str | None = None) -> None:
        super().__init__(message)
        self.device_id = device_id


class MalformedPayload(AlarmPipelineError):
    """Topic or payload could not be parsed."""

    code = "malformed_payload"


class DeviceNotFound(AlarmPipelineError):
    """No user record claims the device."""

    code = "device_not_found"


class NoPushTarget(AlarmPipelineError):
    """The owner has no token to deliver a notification to."""

    code = "no_push_target"


class DeliveryFailed(AlarmPipelineError):
    """The push call itself errored; no alarm was committed.

    ``claim_held`` is true when the pre-delivery claim could not be released,
    which keeps the device suppressed as already active until it is cleared.
    """

    code = "delivery_failed"

    def __init__(self, message: str, device_id: str | None = None, claim_held: bool = False) -> None:
        super().__init__(message, device_id=device_id)
        self.claim_held = claim_held


class StoreWriteFailed(AlarmPipelineError):
    """A store write failed.

    ``delivered`` is true when the notification already went out, which leaves a
    window for a duplicate alarm on the next qualifying message.
    """

    code = "store_write_failed"

    def __init__(self, message: str, device_id: str | None = None, delivered: bool = False) -> None:
        super().__init__(message, device_id=device_id)
        self.delivered = delivered
