from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_clear, render_issues, render_outcome, render_status
from services.errors import MalformedPayload
from services.evaluator import ThresholdEvaluator
from services.parser import parse_payload


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for interacting with the alarm monitor service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        typer.secho("CLI state is uninitialized.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Alarm monitor API base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for each API request.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, request_timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("trigger")
def trigger_command(
    ctx: typer.Context,
    device_id: str = typer.Argument(..., help="MQTT device id, e.g. 94B97EC04AD4."),
    payload: str = typer.Argument(..., help="Reading such as [72.2,47.0,31.5,60.5,n]."),
) -> None:
    """Send a test alarm through the service pipeline."""
    state = _get_state(ctx)
    typer.echo(f"Triggering alarm for {device_id} on {state.config.base_url} ...")
    render_outcome(state.client.trigger_alarm(device_id, payload))


@app.command("clear")
def clear_command(
    ctx: typer.Context,
    device_id: str = typer.Argument(..., help="MQTT device id whose alarm should be reset."),
) -> None:
    """Reset the active and acknowledged flags of a device alarm."""
    state = _get_state(ctx)
    render_clear(state.client.clear_alarm(device_id))


@app.command("status")
def status_command(ctx: typer.Context) -> None:
    """Show MQTT listener state and outcome counters."""
    state = _get_state(ctx)
    render_status(state.client.get_status())


@app.command("keepalive")
def keepalive_command(ctx: typer.Context) -> None:
    """Ask the service to (re)connect its MQTT listener."""
    state = _get_state(ctx)
    payload = state.client.keepalive()
    color = typer.colors.GREEN if payload.get("connected") else typer.colors.YELLOW
    typer.secho(f"status: {payload.get('status')}", fg=color)


@app.command("evaluate")
def evaluate_command(
    payload: str = typer.Argument(..., help="Reading such as [72.2,47.0,31.5,60.5,n]."),
) -> None:
    """Parse and evaluate a reading locally, without contacting the service."""
    try:
        reading = parse_payload(payload)
    except MalformedPayload as exc:
        typer.secho(f"Malformed payload: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(f"mode: {reading.mode.value}")
    issues = ThresholdEvaluator().evaluate(reading)
    render_issues(issue.to_dict() for issue in issues)
