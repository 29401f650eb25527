"""Parsing of alarm topics and bracketed sensor payloads."""

from __future__ import annotations

import math
import re

from models.records import Mode, SensorReading
from services.errors import MalformedPayload

_FIELD_COUNT = 5
_NUMERIC_FIELDS = ("humidity", "light", "temperature", "water")
_PINNING_TOKEN = "p"
# Plain decimal or exponent notation; no digit separators, no nan/inf.
_NUMBER_PATTERN = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")


def validate_device_id(device_id: str) -> str:
    """Reject ids that cannot be used as a single store field path segment."""
    if not device_id or "." in device_id:
        raise MalformedPayload(f"Invalid device id {device_id!r}.", device_id=device_id or None)
    return device_id


def parse_topic(topic: str) -> str:
    """Extract the device id from ``topic/{deviceId}/alarm``."""
    parts = topic.split("/")
    if len(parts) != 3 or parts[0] != "topic" or parts[2] != "alarm" or not parts[1]:
        raise MalformedPayload(f"Invalid alarm topic {topic!r}.")
    return validate_device_id(parts[1])


def parse_payload(raw: str) -> SensorReading:
    """Parse ``[humidity,light,temperature,water,mode]`` into a reading.

    Fields past the fifth are ignored. Numeric fields must be finite decimals.
    """
    cleaned = raw.strip()
    if cleaned.startswith("["):
        cleaned = cleaned[1:]
    if cleaned.endswith("]"):
        cleaned = cleaned[:-1]

    parts = [part.strip() for part in cleaned.split(",")]
    if len(parts) < _FIELD_COUNT:
        raise MalformedPayload(
            f"Expected {_FIELD_COUNT} values, got {len(parts)}."
        )

    values: dict[str, float] = {}
    for name, field in zip(_NUMERIC_FIELDS, parts):
        if not _NUMBER_PATTERN.fullmatch(field):
            raise MalformedPayload(f"Invalid {name} value {field!r}.")
        value = float(field)
        if not math.isfinite(value):
            raise MalformedPayload(f"Non-finite {name} value {field!r}.")
        values[name] = value

    mode = Mode.pinning if parts[4] == _PINNING_TOKEN else Mode.normal
    return SensorReading(mode=mode, **values)
