from __future__ import annotations

from typing import Any, Dict, Iterable

import typer

_STATUS_COLORS = {
    "dispatched": typer.colors.GREEN,
    "suppressed": typer.colors.YELLOW,
    "clear": typer.colors.BLUE,
}


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_issues(issues: Iterable[Dict[str, Any]]) -> None:
    issues = list(issues)
    echo_heading("Issues")
    if not issues:
        typer.echo("All sensors within safe range.")
        return
    for issue in issues:
        typer.echo(f"  - {issue.get('sensor')}: {issue.get('message')}")


def render_outcome(payload: Dict[str, Any]) -> None:
    echo_heading("Alarm Outcome")
    outcome = payload.get("status")
    typer.secho(f"status: {outcome}", fg=_STATUS_COLORS.get(outcome))
    echo_key_values(
        [
            ("device_id", payload.get("device_id")),
            ("user_id", payload.get("user_id")),
            ("mode", payload.get("mode")),
            ("reason", payload.get("reason")),
            ("delivery_id", payload.get("delivery_id")),
        ]
    )
    typer.echo()
    render_issues(payload.get("issues") or [])


def render_status(payload: Dict[str, Any]) -> None:
    echo_heading("Monitor")
    echo_key_values(
        [
            ("status", payload.get("status")),
            ("connected", payload.get("connected")),
            ("subscribed", payload.get("subscribed")),
        ]
    )
    counts = payload.get("counts") or {}
    typer.echo()
    echo_heading("Counts")
    if counts:
        for key, value in sorted(counts.items()):
            typer.echo(f"  - {key}: {value}")
    else:
        typer.echo("No messages processed yet.")


def render_clear(payload: Dict[str, Any]) -> None:
    echo_heading("Alarm Cleared")
    state = payload.get("alarm_state") or {}
    echo_key_values(
        [
            ("device_id", payload.get("device_id")),
            ("user_id", payload.get("user_id")),
            ("alarmActive", state.get("alarmActive")),
            ("alarmAcknowledged", state.get("alarmAcknowledged")),
            ("lastAlarm", state.get("lastAlarm")),
        ]
    )
