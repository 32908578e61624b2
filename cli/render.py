from __future__ import annotations

from typing import Any, Dict, Iterable, List

import typer


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_gateways(gateways: List[Dict[str, Any]]) -> None:
    echo_heading("Gateways")
    if not gateways:
        typer.echo("No gateways found.")
        return
    for gateway in gateways:
        typer.echo(f"  - [{gateway.get('id')}] {gateway.get('name')}")


def render_gateway(gateway: Dict[str, Any]) -> None:
    echo_heading("Gateway")
    echo_key_values([("id", gateway.get("id")), ("name", gateway.get("name"))])


def render_sensors(sensors: List[Dict[str, Any]]) -> None:
    echo_heading("Sensors")
    if not sensors:
        typer.echo("No sensors found.")
        return
    for sensor in sensors:
        types = ", ".join(item.get("name", "") for item in sensor.get("types") or []) or "-"
        gateway = sensor.get("gateway") or {}
        typer.echo(
            f"  - [{sensor.get('id')}] {sensor.get('name')} @ {sensor.get('location_code')}"
            f" types={types} gateway={gateway.get('id', '-')}"
        )


def render_sensor(sensor: Dict[str, Any]) -> None:
    echo_heading("Sensor")
    gateway = sensor.get("gateway")
    echo_key_values(
        [
            ("id", sensor.get("id")),
            ("name", sensor.get("name")),
            ("location_code", sensor.get("location_code")),
            ("types", ", ".join(item.get("name", "") for item in sensor.get("types") or []) or "-"),
            ("gateway", f"[{gateway.get('id')}] {gateway.get('name')}" if gateway else "-"),
        ]
    )

    typer.echo()
    echo_heading("Last readings")
    readings = sensor.get("last_readings") or {}
    if not readings:
        typer.echo("No readings recorded.")
        return
    for type_name, reading in sorted(readings.items()):
        typer.echo(f"  - {type_name}: {reading.get('reading')} at {reading.get('timestamp')}")


def render_readings(readings: List[Dict[str, Any]]) -> None:
    echo_heading("Last readings")
    if not readings:
        typer.echo("No readings recorded.")
        return
    for reading in sorted(readings, key=lambda item: item.get("sensor_type") or ""):
        typer.echo(
            f"  - {reading.get('sensor_type')}: {reading.get('reading')} at {reading.get('timestamp')}"
        )


def render_sensor_types(sensor_types: List[Dict[str, Any]]) -> None:
    echo_heading("Sensor types")
    if not sensor_types:
        typer.echo("No sensor types found.")
        return
    for sensor_type in sensor_types:
        typer.echo(f"  - {sensor_type.get('name')}")
