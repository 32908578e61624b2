"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from models.domain import Gateway, LastReading, Sensor, TypedReading

# Request fields are optional so missing values reach the service and come
# back as InvalidRequest instead of a schema error.


class GatewayCreateRequest(BaseModel):
    name: Optional[str] = None


class GatewayCreateResponse(BaseModel):
    gateway_id: int
    status: str = "OK"


class SensorCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    location_code: Optional[str] = None
    types: List[str] = Field(default_factory=list, alias="type")


class SensorCreateResponse(BaseModel):
    sensor_id: int
    status: str = "OK"


class AttachTypeRequest(BaseModel):
    id: Optional[int] = None
    type: Optional[str] = None


class SensorGatewayRequest(BaseModel):
    sensor_id: Optional[int] = None
    gateway_id: Optional[int] = None


class ReadingRequest(BaseModel):
    sensor_id: Optional[int] = None
    sensor_type: Optional[str] = None
    reading: Optional[float] = None


class GatewayOut(BaseModel):
    id: int
    name: str

    @classmethod
    def from_domain(cls, gateway: Gateway) -> "GatewayOut":
        return cls(id=gateway.id, name=gateway.name)


class SensorTypeOut(BaseModel):
    name: str


class LastReadingOut(BaseModel):
    """Most recent reading; ``timestamp`` is local civil time without an offset."""

    id: int
    timestamp: datetime
    reading: float

    @classmethod
    def from_domain(cls, reading: LastReading) -> "LastReadingOut":
        return cls(id=reading.id, timestamp=reading.timestamp, reading=reading.reading)


class TypedReadingOut(LastReadingOut):
    sensor_type: str

    @classmethod
    def from_entry(cls, entry: TypedReading) -> "TypedReadingOut":
        reading = entry.reading
        return cls(
            id=reading.id,
            timestamp=reading.timestamp,
            reading=reading.reading,
            sensor_type=entry.sensor_type,
        )


class SensorOut(BaseModel):
    id: int
    name: str
    location_code: str
    types: List[SensorTypeOut] = Field(default_factory=list)
    gateway: Optional[GatewayOut] = None
    last_readings: Dict[str, LastReadingOut] = Field(default_factory=dict)

    @classmethod
    def from_domain(cls, sensor: Sensor) -> "SensorOut":
        return cls(
            id=sensor.id,
            name=sensor.name,
            location_code=sensor.location_code,
            types=[SensorTypeOut(name=name) for name in sensor.types],
            gateway=GatewayOut.from_domain(sensor.gateway) if sensor.gateway else None,
            last_readings={
                entry.sensor_type: LastReadingOut.from_domain(entry.reading)
                for entry in sensor.last_readings
            },
        )


class ErrorDetail(BaseModel):
    error: str
    message: str