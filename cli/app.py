from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import (
    render_gateway,
    render_gateways,
    render_readings,
    render_sensor,
    render_sensor_types,
    render_sensors,
)


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for interacting with the sensor graph service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)
gateways_app = typer.Typer(help="Create and inspect gateways.")
sensors_app = typer.Typer(help="Create sensors, wire them up and record readings.")
app.add_typer(gateways_app, name="gateways")
app.add_typer(sensors_app, name="sensors")


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
        help="API base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for each HTTP request.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("types")
def types_command(ctx: typer.Context) -> None:
    """List every sensor type known to the graph."""
    render_sensor_types(_get_state(ctx).client.list_sensor_types())


# -- gateways -----------------------------------------------------------


@gateways_app.command("add")
def gateway_add_command(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Gateway name."),
) -> None:
    """Create a gateway."""
    gateway_id = _get_state(ctx).client.create_gateway(name)
    typer.secho(f"Gateway created. gateway_id={gateway_id}", fg=typer.colors.GREEN)


@gateways_app.command("list")
def gateway_list_command(
    ctx: typer.Context,
    sensor_type: Optional[str] = typer.Option(
        None,
        "--type",
        "-t",
        help="Only gateways with a connected sensor of this type.",
    ),
) -> None:
    """List gateways."""
    render_gateways(_get_state(ctx).client.list_gateways(sensor_type=sensor_type))


@gateways_app.command("show")
def gateway_show_command(
    ctx: typer.Context,
    gateway_id: int = typer.Argument(..., help="Gateway id."),
) -> None:
    """Show a single gateway."""
    render_gateway(_get_state(ctx).client.get_gateway(gateway_id))


# -- sensors ------------------------------------------------------------


@sensors_app.command("add")
def sensor_add_command(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Sensor name."),
    location_code: str = typer.Argument(..., help="Location code of the sensor."),
    types: Optional[List[str]] = typer.Option(
        None,
        "--type",
        "-t",
        help="Sensor type to tag the sensor with; repeat for several.",
    ),
) -> None:
    """Create a sensor."""
    sensor_id = _get_state(ctx).client.create_sensor(name, location_code, types or [])
    typer.secho(f"Sensor created. sensor_id={sensor_id}", fg=typer.colors.GREEN)


@sensors_app.command("list")
def sensor_list_command(
    ctx: typer.Context,
    sensor_type: Optional[str] = typer.Option(None, "--type", "-t", help="Only sensors of this type."),
    gateway_id: Optional[int] = typer.Option(None, "--gateway", "-g", help="Only sensors on this gateway."),
) -> None:
    """List sensors."""
    client = _get_state(ctx).client
    render_sensors(client.list_sensors(sensor_type=sensor_type, gateway_id=gateway_id))


@sensors_app.command("show")
def sensor_show_command(
    ctx: typer.Context,
    sensor_id: int = typer.Argument(..., help="Sensor id."),
) -> None:
    """Show a sensor with its types, gateway and last readings."""
    render_sensor(_get_state(ctx).client.get_sensor(sensor_id))


@sensors_app.command("connect")
def sensor_connect_command(
    ctx: typer.Context,
    sensor_id: int = typer.Argument(..., help="Sensor id."),
    gateway_id: int = typer.Argument(..., help="Gateway id."),
) -> None:
    """Connect a sensor to a gateway."""
    message = _get_state(ctx).client.connect_sensor(sensor_id, gateway_id)
    typer.secho(message, fg=typer.colors.GREEN)


@sensors_app.command("disconnect")
def sensor_disconnect_command(
    ctx: typer.Context,
    sensor_id: int = typer.Argument(..., help="Sensor id."),
) -> None:
    """Disconnect a sensor from its gateway."""
    message = _get_state(ctx).client.disconnect_sensor(sensor_id)
    typer.secho(message, fg=typer.colors.GREEN)


@sensors_app.command("attach-type")
def sensor_attach_type_command(
    ctx: typer.Context,
    sensor_id: int = typer.Argument(..., help="Sensor id."),
    sensor_type: str = typer.Argument(..., help="Sensor type name."),
) -> None:
    """Tag a sensor with a type."""
    message = _get_state(ctx).client.attach_type(sensor_id, sensor_type)
    typer.secho(message, fg=typer.colors.GREEN)


@sensors_app.command("record")
def sensor_record_command(
    ctx: typer.Context,
    sensor_id: int = typer.Argument(..., help="Sensor id."),
    sensor_type: str = typer.Argument(..., help="Sensor type the reading belongs to."),
    reading: float = typer.Argument(..., help="Measured value."),
) -> None:
    """Record the latest reading of a sensor."""
    stored = _get_state(ctx).client.record_reading(sensor_id, sensor_type, reading)
    typer.secho(
        f"Reading stored. {sensor_type}={stored.get('reading')} at {stored.get('timestamp')}",
        fg=typer.colors.GREEN,
    )


@sensors_app.command("readings")
def sensor_readings_command(
    ctx: typer.Context,
    sensor_id: int = typer.Argument(..., help="Sensor id."),
) -> None:
    """Show the last reading of every type for a sensor."""
    render_readings(_get_state(ctx).client.list_readings(sensor_id))
