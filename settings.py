from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_STORE_COLLECTION_ENV = "ALARM_STORE_COLLECTION"
_STORE_PATH_ENV = "ALARM_STORE_PERSISTENCE_PATH"
_WORKER_COUNT_ENV = "ALARM_WORKER_COUNT"
_MQTT_ENABLED_ENV = "MQTT_ENABLED"
_MQTT_HOST_ENV = "MQTT_HOST"
_MQTT_PORT_ENV = "MQTT_PORT"
_MQTT_USERNAME_ENV = "MQTT_USERNAME"
_MQTT_PASSWORD_ENV = "MQTT_PASSWORD"
_MQTT_TLS_ENV = "MQTT_USE_TLS"
_MQTT_TLS_INSECURE_ENV = "MQTT_TLS_INSECURE"
_MQTT_TOPIC_ENV = "MQTT_ALARM_TOPIC"
_MQTT_CLIENT_PREFIX_ENV = "MQTT_CLIENT_ID_PREFIX"
_MQTT_KEEPALIVE_ENV = "MQTT_KEEPALIVE"
_MQTT_RECONNECT_ENV = "MQTT_RECONNECT_DELAY"
_PUSH_BACKEND_ENV = "PUSH_BACKEND"
_PUSH_URL_ENV = "PUSH_ENDPOINT_URL"
_PUSH_TOKEN_ENV = "PUSH_AUTH_TOKEN"
_PUSH_TIMEOUT_ENV = "PUSH_TIMEOUT"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    store_collection: str
    store_persistence_path: Optional[str]
    alarm_workers: int
    mqtt_enabled: bool
    mqtt_host: str
    mqtt_port: int
    mqtt_username: Optional[str]
    mqtt_password: Optional[str]
    mqtt_use_tls: bool
    mqtt_tls_insecure: bool
    mqtt_alarm_topic: str
    mqtt_client_id_prefix: str
    mqtt_keepalive: int
    mqtt_reconnect_delay: int
    push_backend: str
    push_endpoint_url: Optional[str]
    push_auth_token: Optional[str]
    push_timeout: float
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_positive_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip().lower()
    if candidate in _TRUTHY:
        return True
    if candidate in _FALSY:
        return False
    return default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        store_collection=_read_str_env(_STORE_COLLECTION_ENV, "users"),
        store_persistence_path=_read_optional_env(_STORE_PATH_ENV, "./tmp/alarm_store.json"),
        alarm_workers=_read_positive_int(_WORKER_COUNT_ENV, 4),
        mqtt_enabled=_read_bool(_MQTT_ENABLED_ENV, False),
        mqtt_host=_read_str_env(_MQTT_HOST_ENV, "localhost"),
        mqtt_port=_read_positive_int(_MQTT_PORT_ENV, 1883),
        mqtt_username=_read_optional_env(_MQTT_USERNAME_ENV, None),
        mqtt_password=_read_optional_env(_MQTT_PASSWORD_ENV, None),
        mqtt_use_tls=_read_bool(_MQTT_TLS_ENV, False),
        mqtt_tls_insecure=_read_bool(_MQTT_TLS_INSECURE_ENV, False),
        mqtt_alarm_topic=_read_str_env(_MQTT_TOPIC_ENV, "topic/+/alarm"),
        mqtt_client_id_prefix=_read_str_env(_MQTT_CLIENT_PREFIX_ENV, "mab-alarm-monitor"),
        mqtt_keepalive=_read_positive_int(_MQTT_KEEPALIVE_ENV, 60),
        mqtt_reconnect_delay=_read_positive_int(_MQTT_RECONNECT_ENV, 5),
        push_backend=_read_str_env(_PUSH_BACKEND_ENV, "mock").lower(),
        push_endpoint_url=_read_optional_env(_PUSH_URL_ENV, None),
        push_auth_token=_read_optional_env(_PUSH_TOKEN_ENV, None),
        push_timeout=_read_positive_float(_PUSH_TIMEOUT_ENV, 10.0),
        log_level=_read_log_level("INFO"),
    )
