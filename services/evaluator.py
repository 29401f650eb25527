"""Threshold evaluation for sensor readings."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List

from models.records import Issue, Mode, Sensor, SensorReading


@dataclass(frozen=True)
class SafeRange:
    minimum: float
    maximum: float


TEMPERATURE_MAX = 30.0
WATER_RANGE = SafeRange(30.0, 70.0)
HUMIDITY_RANGES: Dict[Mode, SafeRange] = {
    Mode.normal: SafeRange(80.0, 85.0),
    Mode.pinning: SafeRange(90.0, 95.0),
}


class ThresholdEvaluator:
    """Pure component mapping a reading to its out-of-range issues.

    Issues come back in the fixed order temperature, humidity, water; the first
    one is the primary issue of the alarm. Values on a boundary are safe.
    """

    def evaluate(self, reading: SensorReading) -> List[Issue]:
        issues: List[Issue] = []

        if reading.temperature > TEMPERATURE_MAX:
            issues.append(
                Issue(
                    sensor=Sensor.temperature,
                    value=reading.temperature,
                    threshold=TEMPERATURE_MAX,
                    message=(
                        f"Temperature critical ({reading.temperature:.1f}°C > {TEMPERATURE_MAX:.1f}°C)"
                    ),
                )
            )

        humidity = HUMIDITY_RANGES[reading.mode]
        if reading.humidity < humidity.minimum:
            issues.append(
                Issue(
                    sensor=Sensor.humidity,
                    value=reading.humidity,
                    threshold=humidity.minimum,
                    message=f"Humidity too low ({reading.humidity:.1f}% < {humidity.minimum:.1f}%)",
                )
            )
        elif reading.humidity > humidity.maximum:
            issues.append(
                Issue(
                    sensor=Sensor.humidity,
                    value=reading.humidity,
                    threshold=humidity.maximum,
                    message=f"Humidity too high ({reading.humidity:.1f}% > {humidity.maximum:.1f}%)",
                )
            )

        if reading.water < WATER_RANGE.minimum:
            issues.append(
                Issue(
                    sensor=Sensor.water,
                    value=reading.water,
                    threshold=WATER_RANGE.minimum,
                    message=f"Water level low ({reading.water:.1f}% < {WATER_RANGE.minimum:.1f}%)",
                )
            )
        elif reading.water > WATER_RANGE.maximum:
            issues.append(
                Issue(
                    sensor=Sensor.water,
                    value=reading.water,
                    threshold=WATER_RANGE.maximum,
                    message=f"Water level high ({reading.water:.1f}% > {WATER_RANGE.maximum:.1f}%)",
                )
            )

        return issues
