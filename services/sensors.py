"""Sensor orchestration: creation, wiring to gateways and types, readings."""

from __future__ import annotations

import logging
from datetime import datetime
from functools import lru_cache
from typing import Callable, Iterable, List, Optional

from datastore.repository import SensorGraphRepository, build_default_repository
from models.domain import LastReading, Sensor, SensorType, TypedReading
from models.errors import ErrorKind, Failure, Outcome
from services.base import GraphService
from settings import get_settings

logger = logging.getLogger(__name__)


def _sensor_not_found(sensor_id: int, hint: str = "") -> Failure:
    return Failure(ErrorKind.sensor_not_found, f"Sensor ID {sensor_id} does not exist.{hint}")


def _blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


class SensorService(GraphService):
    """Holds the sensor invariants: at most one gateway per sensor, one
    reading per sensor type, and sensor types created only when referenced.
    """

    def __init__(
        self,
        repository: SensorGraphRepository,
        conflict_retries: int = 3,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        super().__init__(repository, conflict_retries=conflict_retries)
        self._clock = clock

    def create_sensor(
        self,
        name: Optional[str],
        location_code: Optional[str],
        type_names: Optional[Iterable[str]] = None,
    ) -> Outcome[int]:
        if not name or not location_code:
            return Failure.invalid("Sensor name and location code must be provided.")
        names = list(dict.fromkeys(type_names or ()))
        if any(_blank(type_name) for type_name in names):
            return Failure.invalid("Sensor type names must not be empty.")

        def work() -> int:
            for type_name in names:
                self.repository.get_or_create_sensor_type(type_name)
            saved = self.repository.save_sensor(
                Sensor(name=name, location_code=location_code, types=names)
            )
            assert saved.id is not None
            return saved.id

        outcome = self._atomic("create_sensor", work)
        if not isinstance(outcome, Failure):
            logger.info("Created sensor %r with %d types", name, len(names), extra={"sensor_id": outcome})
        return outcome

    def assign_sensor_to_gateway(
        self, sensor_id: Optional[int], gateway_id: Optional[int]
    ) -> Outcome[None]:
        if sensor_id is None or gateway_id is None:
            return Failure.invalid("Gateway ID and Sensor ID must be provided.")

        def work() -> Outcome[None]:
            sensor = self.repository.find_sensor_for_update(sensor_id)
            if sensor is None:
                return _sensor_not_found(sensor_id, " Please create a sensor first.")
            if sensor.gateway is not None:
                return Failure(
                    ErrorKind.sensor_already_connected,
                    f"Sensor ID {sensor_id} is already connected to gateway {sensor.gateway.id}.",
                )
            gateway = self.repository.find_gateway(gateway_id)
            if gateway is None:
                return Failure(
                    ErrorKind.gateway_not_found,
                    f"Gateway ID {gateway_id} does not exist. Please create a gateway first.",
                )
            sensor.gateway = gateway
            self.repository.save_sensor(sensor)
            return None

        context = {"sensor_id": sensor_id, "gateway_id": gateway_id}
        outcome = self._atomic("assign_sensor_to_gateway", work, **context)
        if not isinstance(outcome, Failure):
            logger.info("Connected sensor to gateway", extra=context)
        return outcome

    def detach_sensor_from_gateway(self, sensor_id: int) -> Outcome[Optional[int]]:
        """Drop the sensor's gateway connection; returns the former gateway id."""

        def work() -> Outcome[Optional[int]]:
            sensor = self.repository.find_sensor_for_update(sensor_id)
            if sensor is None:
                return _sensor_not_found(sensor_id)
            if sensor.gateway is None:
                return None
            previous = sensor.gateway.id
            sensor.gateway = None
            self.repository.save_sensor(sensor)
            return previous

        outcome = self._atomic("detach_sensor_from_gateway", work, sensor_id=sensor_id)
        if isinstance(outcome, int):
            logger.info("Disconnected sensor from gateway", extra={"sensor_id": sensor_id, "gateway_id": outcome})
        return outcome

    def attach_type(self, sensor_id: Optional[int], type_name: Optional[str]) -> Outcome[None]:
        if sensor_id is None or _blank(type_name):
            return Failure.invalid("Sensor ID and sensor type must be provided.")
        assert type_name is not None

        def work() -> Outcome[None]:
            sensor = self.repository.find_sensor_for_update(sensor_id)
            if sensor is None:
                return _sensor_not_found(sensor_id)
            self.repository.get_or_create_sensor_type(type_name)
            if sensor.add_type(type_name):
                self.repository.save_sensor(sensor)
            return None

        return self._atomic("attach_type", work, sensor_id=sensor_id, sensor_type=type_name)

    def upsert_reading(
        self,
        sensor_id: Optional[int],
        type_name: Optional[str],
        reading_value: Optional[float],
    ) -> Outcome[LastReading]:
        """Replace the sensor's last reading for ``type_name``.

        The sensor type node is created when missing, but no HAS_TYPE edge is
        added; use :meth:`attach_type` for that.
        """
        if sensor_id is None or _blank(type_name) or reading_value is None:
            return Failure.invalid("Sensor ID, sensor type and reading must be provided.")
        assert type_name is not None

        def work() -> Outcome[LastReading]:
            sensor = self.repository.find_sensor_for_update(sensor_id)
            if sensor is None:
                return _sensor_not_found(sensor_id)
            self.repository.get_or_create_sensor_type(type_name)
            sensor.record_reading(
                type_name, LastReading(timestamp=self._clock(), reading=float(reading_value))
            )
            saved = self.repository.save_sensor(sensor)
            stored = saved.reading_for(type_name)
            if stored is None:
                return Failure(
                    ErrorKind.sensor_type_not_found,
                    f"No reading stored for sensor type {type_name!r}.",
                )
            return stored

        return self._atomic("upsert_reading", work, sensor_id=sensor_id, sensor_type=type_name)

    def list_readings(self, sensor_id: int) -> Outcome[List[TypedReading]]:
        def work() -> Outcome[List[TypedReading]]:
            if self.repository.find_sensor(sensor_id) is None:
                return _sensor_not_found(sensor_id)
            return self.repository.find_readings(sensor_id)

        return self._atomic("list_readings", work, sensor_id=sensor_id)

    def list_all_sensors(self) -> Outcome[List[Sensor]]:
        return self._atomic("list_all_sensors", self.repository.find_all_sensors)

    def find_sensor(self, sensor_id: int) -> Outcome[Sensor]:
        def work() -> Outcome[Sensor]:
            sensor = self.repository.find_sensor(sensor_id)
            if sensor is None:
                return _sensor_not_found(sensor_id)
            return sensor

        return self._atomic("find_sensor", work, sensor_id=sensor_id)

    def list_sensors_by_type(self, type_name: str) -> Outcome[List[Sensor]]:
        return self._atomic(
            "list_sensors_by_type",
            lambda: self.repository.find_sensors_by_type(type_name),
            sensor_type=type_name,
        )

    def list_sensors_by_gateway(self, gateway_id: int) -> Outcome[List[Sensor]]:
        return self._atomic(
            "list_sensors_by_gateway",
            lambda: self.repository.find_sensors_by_gateway(gateway_id),
            gateway_id=gateway_id,
        )

    def list_sensor_types(self) -> Outcome[List[SensorType]]:
        return self._atomic("list_sensor_types", self.repository.find_all_sensor_types)


@lru_cache
def build_default_sensor_service() -> SensorService:
    settings = get_settings()
    return SensorService(build_default_repository(), conflict_retries=settings.conflict_retries)
