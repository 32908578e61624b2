"""Domain aggregates for the sensor graph."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass(slots=True)
class Gateway:
    """Aggregation point that sensors connect to."""

    name: str
    id: Optional[int] = None


@dataclass(frozen=True, slots=True)
class SensorType:
    """Named measurement category; the name is its identity."""

    name: str


@dataclass(slots=True)
class LastReading:
    """Most recent measurement for one sensor and one sensor type."""

    timestamp: datetime
    reading: float
    id: Optional[int] = None


@dataclass(slots=True)
class TypedReading:
    """A reading held by a sensor, keyed by the sensor type name."""

    sensor_type: str
    reading: LastReading


@dataclass(slots=True)
class Sensor:
    """Sensor aggregate together with its outbound relationships.

    ``types`` keeps sensor type names unique in insertion order and
    ``last_readings`` holds at most one entry per sensor type name.
    """

    name: str
    location_code: str
    id: Optional[int] = None
    types: List[str] = field(default_factory=list)
    gateway: Optional[Gateway] = None
    last_readings: List[TypedReading] = field(default_factory=list)

    def add_type(self, type_name: str) -> bool:
        """Attach ``type_name``; returns False when it was already attached."""
        if type_name in self.types:
            return False
        self.types.append(type_name)
        return True

    def reading_for(self, type_name: str) -> Optional[LastReading]:
        for entry in self.last_readings:
            if entry.sensor_type == type_name:
                return entry.reading
        return None

    def record_reading(self, type_name: str, reading: LastReading) -> Optional[LastReading]:
        """Store ``reading`` for ``type_name`` and return the reading it replaced."""
        for entry in self.last_readings:
            if entry.sensor_type == type_name:
                previous = entry.reading
                entry.reading = reading
                return previous
        self.last_readings.append(TypedReading(sensor_type=type_name, reading=reading))
        return None
