"""HTTP route definitions for the service."""

from __future__ import annotations

from typing import Any, Dict, Optional, Type

from fastapi import APIRouter, Depends, HTTPException, status

from app.schemas import (
    AlarmOutcome,
    AlarmTriggerRequest,
    ClearAlarmResponse,
    KeepAliveResponse,
    MonitorStatus,
)
from services.alarm_service import AlarmService, build_default_service
from services.errors import (
    AlarmPipelineError,
    DeliveryFailed,
    DeviceNotFound,
    MalformedPayload,
    NoPushTarget,
    StoreWriteFailed,
)
from settings import get_settings
from transport.mqtt_listener import AlarmTopicListener, build_default_listener

router = APIRouter()

_ERROR_STATUS: Dict[Type[AlarmPipelineError], int] = {
    MalformedPayload: status.HTTP_400_BAD_REQUEST,
    DeviceNotFound: status.HTTP_404_NOT_FOUND,
    NoPushTarget: status.HTTP_422_UNPROCESSABLE_ENTITY,
    DeliveryFailed: status.HTTP_502_BAD_GATEWAY,
    StoreWriteFailed: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def get_service() -> AlarmService:
    return build_default_service()


def get_listener() -> Optional[AlarmTopicListener]:
    if not get_settings().mqtt_enabled:
        return None
    return build_default_listener()


def _as_http_error(exc: AlarmPipelineError) -> HTTPException:
    status_code = _ERROR_STATUS.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    detail: Dict[str, Any] = {"code": exc.code, "message": str(exc)}
    if isinstance(exc, DeliveryFailed) and exc.claim_held:
        detail["claim_held"] = True
    return HTTPException(status_code=status_code, detail=detail)


@router.post(
    "/alarms/test",
    response_model=AlarmOutcome,
    summary="Run an alarm payload through the pipeline as if it arrived over MQTT.",
)
def trigger_alarm(
    request: AlarmTriggerRequest,
    service: AlarmService = Depends(get_service),
) -> AlarmOutcome:
    try:
        return service.process(request.device_id, request.payload)
    except AlarmPipelineError as exc:
        raise _as_http_error(exc) from exc


@router.post(
    "/alarms/{device_id}/clear",
    response_model=ClearAlarmResponse,
    summary="Reset the active and acknowledged flags of a device alarm.",
)
def clear_alarm(
    device_id: str,
    service: AlarmService = Depends(get_service),
) -> ClearAlarmResponse:
    try:
        return service.clear_alarm(device_id)
    except AlarmPipelineError as exc:
        raise _as_http_error(exc) from exc


@router.get(
    "/monitor",
    response_model=MonitorStatus,
    summary="MQTT listener state and outcome counters.",
)
async def monitor_status(
    service: AlarmService = Depends(get_service),
    listener: Optional[AlarmTopicListener] = Depends(get_listener),
) -> MonitorStatus:
    if listener is None:
        return MonitorStatus(status="disabled", connected=False, counts=service.stats())
    return MonitorStatus(**listener.health(), counts=service.stats())


@router.post(
    "/monitor/keepalive",
    response_model=KeepAliveResponse,
    summary="Make sure the MQTT listener is connected.",
)
async def keepalive(
    listener: Optional[AlarmTopicListener] = Depends(get_listener),
) -> KeepAliveResponse:
    if listener is None:
        return KeepAliveResponse(status="disabled", connected=False)
    connected = listener.ensure_connected()
    return KeepAliveResponse(status="healthy" if connected else "reconnecting", connected=connected)


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
