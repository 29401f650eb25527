"""Unit tests for topic and payload parsing."""

from __future__ import annotations

import pytest

from models.records import Mode, SensorReading
from services.errors import MalformedPayload
from services.parser import parse_payload, parse_topic


def test_parse_payload_maps_fields_in_order() -> None:
    reading = parse_payload("[72.2,47.0,31.5,60.5,n]")

    assert reading == SensorReading(
        humidity=72.2, light=47.0, temperature=31.5, water=60.5, mode=Mode.normal
    )


def test_parse_payload_tolerates_whitespace_and_missing_brackets() -> None:
    reading = parse_payload("  92 , 10, 25.5 ,50 , p ")

    assert reading.humidity == 92.0
    assert reading.temperature == 25.5
    assert reading.mode is Mode.pinning


def test_parse_payload_ignores_extra_fields() -> None:
    reading = parse_payload("[1,2,3,4,p,extra]")

    assert reading.water == 4.0
    assert reading.mode is Mode.pinning


@pytest.mark.parametrize("token", ["x", "", "P", "n", "pinning"])
def test_parse_payload_defaults_unknown_mode_to_normal(token: str) -> None:
    reading = parse_payload(f"[1,2,3,4,{token}]")

    assert reading.mode is Mode.normal


@pytest.mark.parametrize(
    "raw",
    [
        "[1,2,3]",
        "",
        "[]",
        "[1,2,3,4]",
        "[abc,2,3,4,n]",
        "[1,2,,4,n]",
        "[nan,2,3,4,n]",
        "[1,2,inf,4,n]",
        "[1_000,2,3,4,n]",
        "[0x1A,2,3,4,n]",
        "[1,2,1e999,4,n]",
    ],
)
def test_parse_payload_rejects_malformed_input(raw: str) -> None:
    with pytest.raises(MalformedPayload):
        parse_payload(raw)


def test_parse_topic_extracts_device_id() -> None:
    assert parse_topic("topic/94B97EC04AD4/alarm") == "94B97EC04AD4"


@pytest.mark.parametrize(
    "topic",
    [
        "topic/94B97EC04AD4",
        "topic//alarm",
        "sensors/94B97EC04AD4/alarm",
        "topic/94B97EC04AD4/status",
        "topic/94B97EC04AD4/alarm/extra",
        "topic/dev.1/alarm",
    ],
)
def test_parse_topic_rejects_other_shapes(topic: str) -> None:
    with pytest.raises(MalformedPayload):
        parse_topic(topic)


def test_parse_payload_accepts_signed_and_exponent_numbers() -> None:
    reading = parse_payload("[+82.5,-1,.5e1,6E1,n]")

    assert reading == SensorReading(humidity=82.5, light=-1.0, temperature=5.0, water=60.0)
