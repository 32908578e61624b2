"""HTTP route definitions for the service."""

from __future__ import annotations

from typing import List, Union

from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import PlainTextResponse

from app.errors import failure_exception
from app.schemas import (
    AttachTypeRequest,
    GatewayCreateRequest,
    GatewayCreateResponse,
    GatewayOut,
    ReadingRequest,
    SensorCreateRequest,
    SensorCreateResponse,
    SensorGatewayRequest,
    SensorOut,
    SensorTypeOut,
    TypedReadingOut,
)
from models.domain import TypedReading
from models.errors import Failure
from services.gateways import GatewayService, build_default_gateway_service
from services.sensors import SensorService, build_default_sensor_service

# Handlers are plain functions: FastAPI runs them on its worker thread pool,
# which keeps blocking graph store calls off the event loop.

router = APIRouter()
gateway_router = APIRouter(prefix="/gateways", tags=["gateways"])
sensor_router = APIRouter(prefix="/sensors", tags=["sensors"])


def get_gateway_service() -> GatewayService:
    return build_default_gateway_service()


def get_sensor_service() -> SensorService:
    return build_default_sensor_service()


def _sensors_or_no_content(sensors: Union[List, Failure]) -> Union[List[SensorOut], Response]:
    if isinstance(sensors, Failure):
        raise failure_exception(sensors)
    if not sensors:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return [SensorOut.from_domain(sensor) for sensor in sensors]


# -- gateways -----------------------------------------------------------


@gateway_router.post(
    "/add",
    response_model=GatewayCreateResponse,
    summary="Create a new gateway.",
)
def create_gateway(
    request: GatewayCreateRequest,
    service: GatewayService = Depends(get_gateway_service),
) -> GatewayCreateResponse:
    outcome = service.create_gateway(request.name)
    if isinstance(outcome, Failure):
        raise failure_exception(outcome)
    return GatewayCreateResponse(gateway_id=outcome)


@gateway_router.get("", response_model=List[GatewayOut], summary="Fetch all gateways.")
def list_gateways(service: GatewayService = Depends(get_gateway_service)) -> List[GatewayOut]:
    outcome = service.list_all_gateways()
    if isinstance(outcome, Failure):
        raise failure_exception(outcome)
    return [GatewayOut.from_domain(gateway) for gateway in outcome]


@gateway_router.get(
    "/gateway-id/{gateway_id}",
    response_model=GatewayOut,
    summary="Fetch a gateway by id.",
)
def get_gateway(
    gateway_id: int,
    service: GatewayService = Depends(get_gateway_service),
) -> GatewayOut:
    outcome = service.find_gateway(gateway_id)
    if isinstance(outcome, Failure):
        raise failure_exception(outcome)
    return GatewayOut.from_domain(outcome)


@gateway_router.get(
    "/{sensor_type}",
    response_model=List[GatewayOut],
    summary="Fetch gateways that have a sensor of the given type connected.",
)
def list_gateways_with_sensor_type(
    sensor_type: str,
    service: GatewayService = Depends(get_gateway_service),
) -> List[GatewayOut]:
    outcome = service.list_gateways_with_sensor_type(sensor_type)
    if isinstance(outcome, Failure):
        raise failure_exception(outcome)
    return [GatewayOut.from_domain(gateway) for gateway in outcome]


# -- sensors ------------------------------------------------------------


@sensor_router.post(
    "/add",
    response_model=SensorCreateResponse,
    summary="Create a sensor tagged with the given types.",
)
def create_sensor(
    request: SensorCreateRequest,
    service: SensorService = Depends(get_sensor_service),
) -> SensorCreateResponse:
    outcome = service.create_sensor(request.name, request.location_code, request.types)
    if isinstance(outcome, Failure):
        raise failure_exception(outcome)
    return SensorCreateResponse(sensor_id=outcome)


@sensor_router.get(
    "",
    response_model=List[SensorOut],
    summary="Fetch all sensors; 204 when there are none.",
)
def list_sensors(service: SensorService = Depends(get_sensor_service)):
    return _sensors_or_no_content(service.list_all_sensors())


@sensor_router.get(
    "/type/{sensor_type}",
    response_model=List[SensorOut],
    summary="Fetch sensors tagged with a type; 204 when there are none.",
)
def list_sensors_by_type(
    sensor_type: str,
    service: SensorService = Depends(get_sensor_service),
):
    return _sensors_or_no_content(service.list_sensors_by_type(sensor_type))


@sensor_router.get(
    "/gateway-id/{gateway_id}",
    response_model=List[SensorOut],
    summary="Fetch the sensors connected to a gateway.",
)
def list_sensors_by_gateway(
    gateway_id: int,
    service: SensorService = Depends(get_sensor_service),
) -> List[SensorOut]:
    outcome = service.list_sensors_by_gateway(gateway_id)
    if isinstance(outcome, Failure):
        raise failure_exception(outcome)
    return [SensorOut.from_domain(sensor) for sensor in outcome]


@sensor_router.put(
    "/attachType",
    response_class=PlainTextResponse,
    summary="Attach a type to a sensor.",
)
def attach_type(
    request: AttachTypeRequest,
    service: SensorService = Depends(get_sensor_service),
) -> str:
    outcome = service.attach_type(request.id, request.type)
    if isinstance(outcome, Failure):
        raise failure_exception(outcome, composite=True)
    return "Sensor type added successfully."


@sensor_router.put(
    "/to-gateway",
    response_class=PlainTextResponse,
    summary="Connect a sensor to a gateway.",
)
def assign_sensor_to_gateway(
    request: SensorGatewayRequest,
    service: SensorService = Depends(get_sensor_service),
) -> str:
    outcome = service.assign_sensor_to_gateway(request.sensor_id, request.gateway_id)
    if isinstance(outcome, Failure):
        raise failure_exception(outcome, composite=True)
    return "Sensor is tagged to Gateway successfully"


@sensor_router.delete(
    "/{sensor_id}/gateway",
    response_class=PlainTextResponse,
    summary="Disconnect a sensor from its gateway.",
)
def detach_sensor_from_gateway(
    sensor_id: int,
    service: SensorService = Depends(get_sensor_service),
) -> str:
    outcome = service.detach_sensor_from_gateway(sensor_id)
    if isinstance(outcome, Failure):
        raise failure_exception(outcome)
    if outcome is None:
        return "Sensor was not connected to a gateway"
    return f"Sensor disconnected from gateway {outcome}"


@sensor_router.get(
    "/get-last-readings/{sensor_id}",
    response_model=List[TypedReadingOut],
    summary="Fetch the last reading of every type recorded for a sensor.",
)
def list_last_readings(
    sensor_id: int,
    service: SensorService = Depends(get_sensor_service),
) -> List[TypedReadingOut]:
    outcome = service.list_readings(sensor_id)
    if isinstance(outcome, Failure):
        raise failure_exception(outcome)
    return [TypedReadingOut.from_entry(entry) for entry in outcome]


@sensor_router.put(
    "/add-last-readings/",
    response_model=TypedReadingOut,
    summary="Record the latest reading of a sensor for one type.",
)
def add_last_reading(
    request: ReadingRequest,
    service: SensorService = Depends(get_sensor_service),
) -> TypedReadingOut:
    outcome = service.upsert_reading(request.sensor_id, request.sensor_type, request.reading)
    if isinstance(outcome, Failure):
        raise failure_exception(outcome)
    return TypedReadingOut.from_entry(TypedReading(sensor_type=request.sensor_type, reading=outcome))


@sensor_router.get(
    "/{sensor_id}",
    response_model=SensorOut,
    summary="Fetch a sensor by id.",
)
def get_sensor(
    sensor_id: int,
    service: SensorService = Depends(get_sensor_service),
) -> SensorOut:
    outcome = service.find_sensor(sensor_id)
    if isinstance(outcome, Failure):
        raise failure_exception(outcome)
    return SensorOut.from_domain(outcome)


# -- misc ---------------------------------------------------------------


@router.get(
    "/sensor-types",
    response_model=List[SensorTypeOut],
    summary="Fetch every sensor type known to the graph.",
)
def list_sensor_types(service: SensorService = Depends(get_sensor_service)) -> List[SensorTypeOut]:
    outcome = service.list_sensor_types()
    if isinstance(outcome, Failure):
        raise failure_exception(outcome)
    return [SensorTypeOut(name=sensor_type.name) for sensor_type in outcome]


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
