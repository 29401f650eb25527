"""Domain values produced and consumed by the alarm pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Mode(str, Enum):
    """Cultivation mode reported by the device."""

    normal = "normal"
    pinning = "pinning"


class Sensor(str, Enum):
    """Sensors that can raise an issue, in evaluation order."""

    temperature = "temperature"
    humidity = "humidity"
    water = "water"


@dataclass(frozen=True, slots=True)
class SensorReading:
    """One telemetry sample parsed from an alarm message."""

    humidity: float
    light: float
    temperature: float
    water: float
    mode: Mode = Mode.normal


@dataclass(frozen=True)
class Issue:
    """A single sensor value found outside its safe range."""

    sensor: Sensor
    value: float
    threshold: float
    message: str

    def to_dict(self) -> dict[str, object]:
        return {
            "sensor": self.sensor.value,
            "value": self.value,
            "threshold": self.threshold,
            "message": self.message,
        }
