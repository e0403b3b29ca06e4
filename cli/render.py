from __future__ import annotations

from typing import Any, Dict, Iterable, List

import typer

from simulator.fleet import FleetStats


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_view(payload: Dict[str, Any]) -> None:
    echo_heading(f"View {payload.get('name')}")
    echo_key_values([("lsn", payload.get("lsn"))])
    typer.echo()
    _echo_table(payload.get("rows") or [])


def render_fleet_stats(stats: FleetStats) -> None:
    echo_heading("Fleet Summary")
    echo_key_values(
        [
            ("devices", len(stats.devices)),
            ("elapsed_s", f"{stats.elapsed:.1f}"),
            ("sent", stats.sent),
            ("retried", stats.retried),
            ("dropped", stats.dropped),
            ("rate_per_s", f"{stats.rate:.2f}"),
        ]
    )
    failing = {name: device.dropped for name, device in stats.devices.items() if device.dropped}
    if failing:
        typer.echo()
        echo_heading("Dropped readings")
        for name, dropped in sorted(failing.items()):
            typer.echo(f"  - {name}: {dropped}")


def _format_cell(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.2f}"
    return str(value)


def render_sinks(sinks: List[Dict[str, Any]]) -> None:
    echo_heading("Sinks")
    if not sinks:
        typer.echo("No sinks.")
        return
    for sink in sinks:
        line = f"  - {sink.get('name')}: {sink.get('view')} -> {sink.get('topic')}"
        if sink.get("pending"):
            line += f" ({sink['pending']} pending)"
        typer.echo(line)


def render_topic_messages(topic: str, messages: List[Dict[str, Any]]) -> None:
    echo_heading(f"Topic {topic}")
    if not messages:
        typer.echo("No messages.")
        return
    for message in messages:
        change = message.get("change") or {}
        typer.echo(
            f"{message.get('offset')} | {change.get('op')} | {change.get('key')} | "
            f"{change.get('after')}"
        )


def render_rows(title: str, rows: List[Dict[str, Any]]) -> None:
    echo_heading(title)
    _echo_table(rows)


def _echo_table(rows: List[Dict[str, Any]]) -> None:
    if not rows:
        typer.echo("No rows.")
        return
    columns = list(rows[0].keys())
    typer.echo(" | ".join(columns))
    for row in rows:
        typer.echo(" | ".join(_format_cell(row.get(column)) for column in columns))
