"""Failure values shared by the service layer and the HTTP facade."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TypeVar, Union


class ErrorKind(str, Enum):
    """Closed set of failure kinds reported by service operations."""

    invalid_request = "InvalidRequest"
    gateway_not_found = "GatewayNotFound"
    sensor_not_found = "SensorNotFound"
    sensor_type_not_found = "SensorTypeNotFound"
    sensor_already_connected = "SensorAlreadyConnected"
    internal = "Internal"


@dataclass(frozen=True)
class Failure:
    kind: ErrorKind
    message: str

    @classmethod
    def invalid(cls, message: str) -> "Failure":
        return cls(ErrorKind.invalid_request, message)

    @classmethod
    def internal(cls, message: str = "Internal error while accessing the graph store.") -> "Failure":
        return cls(ErrorKind.internal, message)


T = TypeVar("T")

# Service operations return either their value or a Failure.
Outcome = Union[T, Failure]
