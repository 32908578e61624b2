from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import httpx
import typer

from cli.config import CLIConfig


class ApiClient:
    """Minimal HTTP client for the sensor graph API."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.timeout)

    def close(self) -> None:
        self._client.close()

    # -- gateways -----------------------------------------------------

    def create_gateway(self, name: str) -> int:
        payload = self._request("POST", "/gateways/add", json={"name": name}).json()
        return int(payload["gateway_id"])

    def list_gateways(self, sensor_type: Optional[str] = None) -> List[Dict[str, Any]]:
        path = f"/gateways/{sensor_type}" if sensor_type else "/gateways"
        return self._request("GET", path).json()

    def get_gateway(self, gateway_id: int) -> Dict[str, Any]:
        return self._request("GET", f"/gateways/gateway-id/{gateway_id}").json()

    # -- sensors ------------------------------------------------------

    def create_sensor(self, name: str, location_code: str, types: Sequence[str]) -> int:
        body = {"name": name, "location_code": location_code, "type": list(types)}
        payload = self._request("POST", "/sensors/add", json=body).json()
        return int(payload["sensor_id"])

    def list_sensors(
        self, sensor_type: Optional[str] = None, gateway_id: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        if gateway_id is not None:
            path = f"/sensors/gateway-id/{gateway_id}"
        elif sensor_type:
            path = f"/sensors/type/{sensor_type}"
        else:
            path = "/sensors"
        response = self._request("GET", path)
        if response.status_code == httpx.codes.NO_CONTENT:
            return []
        return response.json()

    def get_sensor(self, sensor_id: int) -> Dict[str, Any]:
        return self._request("GET", f"/sensors/{sensor_id}").json()

    def connect_sensor(self, sensor_id: int, gateway_id: int) -> str:
        body = {"sensor_id": sensor_id, "gateway_id": gateway_id}
        return self._request("PUT", "/sensors/to-gateway", json=body).text

    def disconnect_sensor(self, sensor_id: int) -> str:
        return self._request("DELETE", f"/sensors/{sensor_id}/gateway").text

    def attach_type(self, sensor_id: int, sensor_type: str) -> str:
        body = {"id": sensor_id, "type": sensor_type}
        return self._request("PUT", "/sensors/attachType", json=body).text

    def record_reading(self, sensor_id: int, sensor_type: str, reading: float) -> Dict[str, Any]:
        body = {"sensor_id": sensor_id, "sensor_type": sensor_type, "reading": reading}
        return self._request("PUT", "/sensors/add-last-readings/", json=body).json()

    def list_readings(self, sensor_id: int) -> List[Dict[str, Any]]:
        return self._request("GET", f"/sensors/get-last-readings/{sensor_id}").json()

    def list_sensor_types(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/sensor-types").json()

    # -- helpers ------------------------------------------------------

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.TransportError as exc:
            typer.secho(f"Could not reach {self._config.base_url}: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)
        return response

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: Any = None
        try:
            data = exc.response.json()
            detail = data.get("detail")
        except Exception:  # noqa: BLE001 - best effort parsing
            detail = exc.response.text.strip()
        if isinstance(detail, dict):
            detail = f"{detail.get('error')}: {detail.get('message')}"
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
