from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

import typer

from app.schemas import TopicMessage
from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import (
    render_fleet_stats,
    render_rows,
    render_sinks,
    render_topic_messages,
    render_view,
)
from logging_config import configure_logging
from services.sink import collapse_changes
from simulator.fleet import FleetSimulator
from simulator.retry import RetryPolicy
from simulator.transport import HttpReadingSender


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Simulate a Raspberry Pi fleet and inspect the temperature views.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1, message="CLI state is uninitialized.")
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Ingestion API base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Per-request timeout in seconds.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, request_timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("simulate")
def simulate_command(
    ctx: typer.Context,
    fleet_size: Optional[int] = typer.Option(None, "--fleet-size", "-n", min=1, help="Number of devices."),
    rate: Optional[float] = typer.Option(None, "--rate", "-r", min=0.001, help="Fleet-wide readings per second."),
    duration: Optional[float] = typer.Option(
        None, "--duration", "-d", min=0.0, help="Seconds to run; runs until Ctrl+C when omitted."
    ),
    seed: Optional[int] = typer.Option(None, "--seed", help="Seed for reproducible temperatures."),
    max_attempts: Optional[int] = typer.Option(None, "--max-attempts", min=1, help="Delivery attempts per reading."),
    backoff: Optional[float] = typer.Option(None, "--backoff", min=0.0, help="Initial retry delay in seconds."),
) -> None:
    """Emit readings for a simulated fleet against the ingestion endpoint."""
    state = _get_state(ctx)
    configure_logging()
    config = state.config
    policy = RetryPolicy(
        max_attempts=max_attempts if max_attempts is not None else config.max_attempts,
        base_delay=backoff if backoff is not None else config.backoff,
    )
    sender = HttpReadingSender(config.base_url, timeout=config.request_timeout)
    simulator = FleetSimulator(
        sender,
        fleet_size=fleet_size if fleet_size is not None else config.fleet_size,
        rate=rate if rate is not None else config.rate,
        retry_policy=policy,
        seed=seed,
    )
    typer.echo(
        f"Simulating {len(simulator.devices)} devices at {simulator.rate} readings/s "
        f"against {config.base_url} ..."
    )
    try:
        stats = simulator.run(duration)
    finally:
        sender.close()
    typer.echo()
    render_fleet_stats(stats)


@app.command("submit")
def submit_command(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Device name, e.g. raspberry-1."),
    temperature: float = typer.Argument(..., help="Temperature in degrees Celsius."),
    timestamp: Optional[datetime] = typer.Option(
        None, "--timestamp", "-t", help="Measurement time; defaults to now (UTC)."
    ),
) -> None:
    """Submit a single reading."""
    state = _get_state(ctx)
    when = timestamp or datetime.now(timezone.utc)
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    stored = state.client.submit_reading(name, temperature, when)
    typer.secho(
        f"Stored {stored.get('name')} {stored.get('temperature')} at {stored.get('timestamp')}",
        fg=typer.colors.GREEN,
    )


@app.command("view")
def view_command(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="View name, e.g. average_per_device."),
) -> None:
    """Print the current contents of a materialized view."""
    state = _get_state(ctx)
    render_view(state.client.get_view(name))


@app.command("sink")
def sink_command(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Sink name; the topic name starts with it."),
    view: str = typer.Argument(..., help="View whose changes are exported."),
) -> None:
    """Export a view's changes to a new topic and print the topic name."""
    state = _get_state(ctx)
    payload = state.client.create_sink(name, view)
    typer.secho(f"Sink {payload.get('name')} -> topic {payload.get('topic')}", fg=typer.colors.GREEN)


@app.command("sinks")
def sinks_command(ctx: typer.Context) -> None:
    """List sinks and the topics they write to."""
    state = _get_state(ctx)
    render_sinks(state.client.list_sinks())


@app.command("topic")
def topic_command(
    ctx: typer.Context,
    topic: str = typer.Argument(..., help="Topic name as listed by the sinks command."),
    offset: int = typer.Option(0, "--offset", min=0, help="First offset to read."),
    limit: int = typer.Option(100, "--limit", min=1, max=10_000, help="Messages per request."),
    replay: bool = typer.Option(
        False, "--replay", help="Collapse the whole topic into the rows it describes."
    ),
) -> None:
    """Print the decoded messages of a sink topic."""
    state = _get_state(ctx)
    if not replay:
        render_topic_messages(topic, state.client.read_topic(topic, offset=offset, limit=limit))
        return
    messages: List[TopicMessage] = []
    while True:
        page = state.client.read_topic(topic, offset=offset, limit=limit)
        messages.extend(TopicMessage.model_validate(payload) for payload in page)
        if len(page) < limit:
            break
        offset += len(page)
    collapsed = collapse_changes(message.change for message in messages)
    rows = [collapsed[key] for key in sorted(collapsed, key=lambda key: key or "")]
    render_rows(f"Replayed {topic}", rows)
