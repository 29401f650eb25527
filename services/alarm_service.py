"""Alarm pipeline orchestration: parse, evaluate, resolve, gate, dispatch."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timezone
from functools import lru_cache
from threading import Lock
from typing import Callable, Dict, Optional

from app.schemas import (
    AlarmOutcome,
    ClearAlarmResponse,
    OutcomeStatus,
    SuppressionReason,
)
from datastore.mock_document_store import (
    DocumentStoreError,
    MockDocumentCollection,
    build_default_collection,
)
from push.sender import PushSender, build_default_sender
from services.dedup_gate import DedupGate
from services.dispatcher import AlarmClaimLost, NotificationDispatcher
from services.errors import (
    AlarmPipelineError,
    DeliveryFailed,
    MalformedPayload,
    NoPushTarget,
    StoreWriteFailed,
)
from services.evaluator import ThresholdEvaluator
from services.owner_resolver import OwnerResolver
from services.parser import parse_payload, parse_topic, validate_device_id

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AlarmService:
    """Runs inbound alarm messages through the pipeline, one message per call.

    Calls for different messages may run concurrently; duplicate alarms for a
    device are prevented by the conditional writes of the dispatcher, not by
    any lock held here.
    """

    def __init__(
        self,
        collection: MockDocumentCollection,
        sender: PushSender,
        evaluator: Optional[ThresholdEvaluator] = None,
        gate: Optional[DedupGate] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.collection = collection
        self.evaluator = evaluator or ThresholdEvaluator()
        self.gate = gate or DedupGate()
        self.resolver = OwnerResolver(collection)
        self.dispatcher = NotificationDispatcher(collection, sender)
        self._clock = clock or _utc_now
        self._counts: Counter[str] = Counter()
        self._counts_lock = Lock()

    def handle_message(self, topic: str, payload: str) -> AlarmOutcome:
        """Process a raw transport message published on ``topic/{deviceId}/alarm``."""
        logger.info("Alarm message received: %s", payload, extra={"topic": topic})
        try:
            device_id = parse_topic(topic)
        except MalformedPayload as exc:
            self._record_error(exc, topic=topic)
            raise
        return self.process(device_id, payload)

    def process(self, device_id: str, payload: str) -> AlarmOutcome:
        try:
            outcome = self._run(device_id, payload)
        except AlarmPipelineError as exc:
            exc.device_id = exc.device_id or device_id
            self._record_error(exc)
            raise
        self._record(outcome)
        return outcome

    def clear_alarm(self, device_id: str) -> ClearAlarmResponse:
        """Reset the active and acknowledged flags of a device's alarm state."""
        validate_device_id(device_id)
        owner = self.resolver.resolve(device_id)
        try:
            updated = self.collection.update_fields(
                owner.user_id,
                {
                    f"alarmState.{device_id}.alarmActive": False,
                    f"alarmState.{device_id}.alarmAcknowledged": False,
                },
            )
        except (DocumentStoreError, OSError) as exc:
            raise StoreWriteFailed(str(exc), device_id=device_id) from exc

        logger.info("Alarm state cleared", extra={"device_id": device_id, "user_id": owner.user_id})
        return ClearAlarmResponse(
            device_id=device_id,
            user_id=owner.user_id,
            alarm_state=updated.alarm_state[device_id],
        )

    def stats(self) -> Dict[str, int]:
        with self._counts_lock:
            return dict(self._counts)

    def _run(self, device_id: str, payload: str) -> AlarmOutcome:
        validate_device_id(device_id)
        reading = parse_payload(payload)
        context = {"device_id": device_id, "mode": reading.mode.value}

        issues = self.evaluator.evaluate(reading)
        if not issues:
            logger.info("All sensors within safe range", extra=context)
            return AlarmOutcome(device_id=device_id, status=OutcomeStatus.clear, mode=reading.mode)

        logger.info(
            "Sensors out of range: %s",
            ", ".join(issue.sensor.value for issue in issues),
            extra={**context, "issue_count": len(issues)},
        )

        owner = self.resolver.resolve(device_id)
        base = AlarmOutcome(
            device_id=device_id,
            status=OutcomeStatus.suppressed,
            user_id=owner.user_id,
            mode=reading.mode,
            issues=issues,
        )

        decision = self.gate.check(owner, self._clock())
        if not decision.permitted:
            logger.info(
                "Alarm suppressed",
                extra={**context, "user_id": owner.user_id, "reason": decision.reason.value},
            )
            return base.model_copy(update={"reason": decision.reason})

        try:
            delivery_id = self.dispatcher.dispatch(owner, reading, issues)
        except AlarmClaimLost:
            logger.info(
                "Alarm claimed by a concurrent evaluation",
                extra={
                    **context,
                    "user_id": owner.user_id,
                    "reason": SuppressionReason.already_active.value,
                },
            )
            return base.model_copy(update={"reason": SuppressionReason.already_active})

        logger.info(
            "Alarm dispatched",
            extra={**context, "user_id": owner.user_id, "delivery_id": delivery_id},
        )
        return base.model_copy(
            update={"status": OutcomeStatus.dispatched, "delivery_id": delivery_id}
        )

    def _record(self, outcome: AlarmOutcome) -> None:
        key = outcome.status.value
        if outcome.reason is not None:
            key = f"{key}:{outcome.reason.value}"
        with self._counts_lock:
            self._counts[key] += 1

    def _record_error(self, exc: AlarmPipelineError, topic: Optional[str] = None) -> None:
        extra = {"device_id": exc.device_id, "topic": topic, "error_code": exc.code}
        if isinstance(exc, MalformedPayload):
            logger.warning("Dropping malformed alarm message: %s", exc, extra=extra)
        elif isinstance(exc, StoreWriteFailed) and exc.delivered:
            pass  # already logged at CRITICAL by the dispatcher
        else:
            logger.error("Alarm processing failed: %s", exc, extra=extra)

        with self._counts_lock:
            if isinstance(exc, NoPushTarget):
                self._counts[f"{OutcomeStatus.suppressed.value}:{SuppressionReason.no_push_target.value}"] += 1
            else:
                self._counts[f"error:{exc.code}"] += 1
            if isinstance(exc, DeliveryFailed) and exc.claim_held:
                self._counts["error:claim_held"] += 1


@lru_cache
def build_default_service() -> AlarmService:
    """Factory that wires the service with the default store and push sender."""
    return AlarmService(collection=build_default_collection(), sender=build_default_sender())
