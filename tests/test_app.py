from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from app.api import get_gateway_service
from app.main import create_app
from datastore.graph import GraphStoreError
from datastore.memory_graph import InMemoryGraphStore
from datastore.repository import (
    NATURAL_KEYS,
    SensorGraphRepository,
    build_default_repository,
    build_default_store,
)
from services.gateways import GatewayService, build_default_gateway_service
from services.sensors import SensorService, build_default_sensor_service
from settings import get_settings


def _clear_caches() -> None:
    build_default_sensor_service.cache_clear()
    build_default_gateway_service.cache_clear()
    build_default_repository.cache_clear()
    build_default_store.cache_clear()
    get_settings.cache_clear()


@pytest.fixture
def api_client(tmp_path, monkeypatch) -> Iterator[TestClient]:
    monkeypatch.setenv("GRAPH_STORE_URI", "memory://")
    monkeypatch.setenv("GRAPH_STORE_PERSISTENCE_PATH", str(tmp_path / "graph.json"))
    _clear_caches()

    with TestClient(create_app()) as client:
        yield client

    _clear_caches()


def _error(response) -> str:
    return response.json()["detail"]["error"]


def _create_gateway(client: TestClient, name: str = "G1") -> int:
    response = client.post("/gateways/add", json={"name": name})
    assert response.status_code == 200
    return response.json()["gateway_id"]


def _create_sensor(client: TestClient, name: str = "S1", types=("electricity",)) -> int:
    response = client.post(
        "/sensors/add", json={"name": name, "location_code": "L1", "type": list(types)}
    )
    assert response.status_code == 200
    return response.json()["sensor_id"]


def test_health_endpoints(api_client: TestClient) -> None:
    assert api_client.get("/health").json() == {"status": "ok"}
    root = api_client.get("/")
    assert root.status_code == 200
    assert root.json()["status"] == "ok"


def test_create_and_fetch_gateway(api_client: TestClient) -> None:
    response = api_client.post("/gateways/add", json={"name": "G1"})

    assert response.status_code == 200
    assert response.json()["gateway_id"] == 1

    fetched = api_client.get("/gateways/gateway-id/1")
    assert fetched.status_code == 200
    assert fetched.json() == {"id": 1, "name": "G1"}


def test_gateway_without_name_is_rejected(api_client: TestClient) -> None:
    response = api_client.post("/gateways/add", json={})

    assert response.status_code == 400
    assert _error(response) == "InvalidRequest"


def test_missing_gateway_is_404(api_client: TestClient) -> None:
    response = api_client.get("/gateways/gateway-id/5")

    assert response.status_code == 404
    assert response.json()["detail"] == {
        "error": "GatewayNotFound",
        "message": "Gateway not found with ID: 5",
    }


def test_create_sensor_creates_two_types(api_client: TestClient) -> None:
    response = api_client.post(
        "/sensors/add",
        json={"name": "S1", "location_code": "L1", "type": ["electricity", "humidity"]},
    )

    assert response.status_code == 200
    assert response.json()["sensor_id"] == 1
    types = api_client.get("/sensor-types")
    assert [item["name"] for item in types.json()] == ["electricity", "humidity"]


def test_create_sensor_with_empty_name_is_rejected(api_client: TestClient) -> None:
    response = api_client.post("/sensors/add", json={"name": "", "location_code": "L1", "type": []})

    assert response.status_code == 400
    assert _error(response) == "InvalidRequest"
    assert api_client.get("/sensors").status_code == 204


def test_malformed_body_is_invalid_request(api_client: TestClient) -> None:
    response = api_client.put(
        "/sensors/add-last-readings/",
        json={"sensor_id": "not-a-number", "sensor_type": "electricity", "reading": 1.0},
    )

    assert response.status_code == 400
    assert _error(response) == "InvalidRequest"
    assert "sensor_id" in response.json()["detail"]["message"]


def test_connect_sensor_to_gateway_once(api_client: TestClient) -> None:
    gateway_id = _create_gateway(api_client)
    sensor_id = _create_sensor(api_client)
    body = {"sensor_id": sensor_id, "gateway_id": gateway_id}

    first = api_client.put("/sensors/to-gateway", json=body)
    assert first.status_code == 200
    assert first.text == "Sensor is tagged to Gateway successfully"

    second = api_client.put("/sensors/to-gateway", json=body)
    assert second.status_code == 400
    assert _error(second) == "SensorAlreadyConnected"

    sensors = api_client.get(f"/sensors/gateway-id/{gateway_id}")
    assert [item["id"] for item in sensors.json()] == [sensor_id]


def test_connect_reports_missing_entities_as_bad_request(api_client: TestClient) -> None:
    sensor_id = _create_sensor(api_client)

    missing_gateway = api_client.put("/sensors/to-gateway", json={"sensor_id": sensor_id, "gateway_id": 9})
    missing_sensor = api_client.put("/sensors/to-gateway", json={"sensor_id": 9, "gateway_id": 1})
    missing_ids = api_client.put("/sensors/to-gateway", json={"sensor_id": sensor_id})

    assert (missing_gateway.status_code, _error(missing_gateway)) == (400, "GatewayNotFound")
    assert (missing_sensor.status_code, _error(missing_sensor)) == (400, "SensorNotFound")
    assert (missing_ids.status_code, _error(missing_ids)) == (400, "InvalidRequest")


def test_disconnect_sensor_from_gateway(api_client: TestClient) -> None:
    gateway_id = _create_gateway(api_client)
    sensor_id = _create_sensor(api_client)
    api_client.put("/sensors/to-gateway", json={"sensor_id": sensor_id, "gateway_id": gateway_id})

    response = api_client.delete(f"/sensors/{sensor_id}/gateway")
    assert response.status_code == 200
    assert response.text == f"Sensor disconnected from gateway {gateway_id}"

    again = api_client.delete(f"/sensors/{sensor_id}/gateway")
    assert again.status_code == 200
    assert again.text == "Sensor was not connected to a gateway"
    assert api_client.get(f"/sensors/{sensor_id}").json()["gateway"] is None
    assert api_client.delete("/sensors/42/gateway").status_code == 404


def test_gateways_by_sensor_type(api_client: TestClient) -> None:
    gateway_id = _create_gateway(api_client)
    _create_gateway(api_client, "G2")
    sensor_id = _create_sensor(api_client, types=["electricity", "humidity"])
    api_client.put("/sensors/to-gateway", json={"sensor_id": sensor_id, "gateway_id": gateway_id})

    response = api_client.get("/gateways/electricity")

    assert response.status_code == 200
    assert response.json() == [{"id": 1, "name": "G1"}]
    assert api_client.get("/gateways/pressure").json() == []
    assert [item["name"] for item in api_client.get("/gateways").json()] == ["G1", "G2"]


def test_last_reading_is_replaced(api_client: TestClient) -> None:
    sensor_id = _create_sensor(api_client)
    body = {"sensor_id": sensor_id, "sensor_type": "electricity", "reading": 42.5}

    first = api_client.put("/sensors/add-last-readings/", json=body)
    assert first.status_code == 200
    assert first.json()["reading"] == 42.5
    assert first.json()["sensor_type"] == "electricity"

    second = api_client.put("/sensors/add-last-readings/", json={**body, "reading": 43.0})
    assert second.status_code == 200

    readings = api_client.get(f"/sensors/get-last-readings/{sensor_id}")
    assert readings.status_code == 200
    payload = readings.json()
    assert len(payload) == 1
    assert payload[0]["reading"] == 43.0
    assert payload[0]["sensor_type"] == "electricity"

    sensor = api_client.get(f"/sensors/{sensor_id}").json()
    assert sensor["last_readings"]["electricity"]["reading"] == 43.0


def test_reading_for_missing_sensor(api_client: TestClient) -> None:
    response = api_client.put(
        "/sensors/add-last-readings/",
        json={"sensor_id": 7, "sensor_type": "electricity", "reading": 1.0},
    )

    assert response.status_code == 404
    assert _error(response) == "SensorNotFound"


def test_last_readings_of_missing_sensor_is_404(api_client: TestClient) -> None:
    response = api_client.get("/sensors/get-last-readings/999")

    assert response.status_code == 404
    assert _error(response) == "SensorNotFound"


def test_attach_type(api_client: TestClient) -> None:
    sensor_id = _create_sensor(api_client)

    response = api_client.put("/sensors/attachType", json={"id": sensor_id, "type": "humidity"})
    repeat = api_client.put("/sensors/attachType", json={"id": sensor_id, "type": "humidity"})

    assert response.status_code == 200
    assert response.text == "Sensor type added successfully."
    assert repeat.status_code == 200
    sensor = api_client.get(f"/sensors/{sensor_id}").json()
    assert [item["name"] for item in sensor["types"]] == ["electricity", "humidity"]


def test_attach_type_to_missing_sensor_is_bad_request(api_client: TestClient) -> None:
    response = api_client.put("/sensors/attachType", json={"id": 3, "type": "humidity"})

    assert response.status_code == 400
    assert _error(response) == "SensorNotFound"


def test_sensor_listings_and_no_content(api_client: TestClient) -> None:
    assert api_client.get("/sensors").status_code == 204
    assert api_client.get("/sensors/type/humidity").status_code == 204

    _create_sensor(api_client, "S1", types=["humidity"])
    _create_sensor(api_client, "S2", types=["electricity"])

    all_sensors = api_client.get("/sensors")
    assert all_sensors.status_code == 200
    assert [item["name"] for item in all_sensors.json()] == ["S1", "S2"]
    by_type = api_client.get("/sensors/type/electricity")
    assert [item["name"] for item in by_type.json()] == ["S2"]
    assert api_client.get("/sensors/gateway-id/1").json() == []


def test_get_sensor(api_client: TestClient) -> None:
    sensor_id = _create_sensor(api_client)

    response = api_client.get(f"/sensors/{sensor_id}")

    assert response.status_code == 200
    assert response.json() == {
        "id": sensor_id,
        "name": "S1",
        "location_code": "L1",
        "types": [{"name": "electricity"}],
        "gateway": None,
        "last_readings": {},
    }
    assert api_client.get("/sensors/31").status_code == 404


def test_store_failure_maps_to_500(api_client: TestClient) -> None:
    class BrokenStore(InMemoryGraphStore):
        def match(self, pattern, parameters=None):
            raise GraphStoreError("connection refused")

    broken = GatewayService(SensorGraphRepository(BrokenStore(natural_keys=NATURAL_KEYS)))
    api_client.app.dependency_overrides[get_gateway_service] = lambda: broken
    try:
        response = api_client.get("/gateways")
    finally:
        api_client.app.dependency_overrides.clear()

    assert response.status_code == 500
    assert _error(response) == "Internal"


def test_lifespan_closes_store_and_clears_caches(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("GRAPH_STORE_URI", "memory://")
    monkeypatch.setenv("GRAPH_STORE_PERSISTENCE_PATH", str(tmp_path / "graph.json"))
    _clear_caches()

    with TestClient(create_app()):
        service_during = build_default_sensor_service()
        assert isinstance(service_during, SensorService)

    try:
        assert build_default_sensor_service() is not service_during
    finally:
        _clear_caches()


def test_state_survives_restart(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("GRAPH_STORE_URI", "memory://")
    monkeypatch.setenv("GRAPH_STORE_PERSISTENCE_PATH", str(tmp_path / "graph.json"))
    _clear_caches()

    try:
        with TestClient(create_app()) as client:
            _create_sensor(client, types=["humidity"])
        with TestClient(create_app()) as client:
            sensor = client.get("/sensors/1")
            assert sensor.status_code == 200
            assert sensor.json()["types"] == [{"name": "humidity"}]
    finally:
        _clear_caches()
