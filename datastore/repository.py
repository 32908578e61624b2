"""Domain repository over the labeled property graph.

Graph layout::

    (:Sensor)-[:CONNECTED_TO]->(:Gateway)
    (:Sensor)-[:HAS_TYPE]->(:SensorType {name})
    (:Sensor)-[:HAS_LAST_READING {qualifier: <sensor type name>}]->(:LastReading)
"""

from __future__ import annotations

from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence
from urllib.parse import urlsplit

from datastore.graph import GraphStore, Node, NodeRef, T
from datastore.memory_graph import InMemoryGraphStore
from datastore.patterns import Direction, Hop, NodePattern, Pattern
from models.domain import Gateway, LastReading, Sensor, SensorType, TypedReading
from settings import get_settings

GATEWAY = "Gateway"
SENSOR = "Sensor"
SENSOR_TYPE = "SensorType"
LAST_READING = "LastReading"

HAS_TYPE = "HAS_TYPE"
CONNECTED_TO = "CONNECTED_TO"
HAS_LAST_READING = "HAS_LAST_READING"

NATURAL_KEYS = {SENSOR_TYPE: "name"}
ALLOCATED_LABELS = (GATEWAY, SENSOR, LAST_READING)
NEO4J_SCHEMES = {"bolt", "bolt+s", "bolt+ssc", "neo4j", "neo4j+s", "neo4j+ssc"}

ALL_GATEWAYS = Pattern(start=NodePattern("g", GATEWAY))

GATEWAYS_WITH_SENSOR_TYPE = Pattern(
    start=NodePattern("g", GATEWAY),
    hops=(
        Hop(CONNECTED_TO, NodePattern("s", SENSOR), direction=Direction.incoming),
        Hop(HAS_TYPE, NodePattern("t", SENSOR_TYPE, identity_param="type_name")),
    ),
    returns=("g",),
    distinct=True,
)

ALL_SENSORS = Pattern(start=NodePattern("s", SENSOR))

SENSORS_BY_GATEWAY = Pattern(
    start=NodePattern("s", SENSOR),
    hops=(Hop(CONNECTED_TO, NodePattern("g", GATEWAY, identity_param="gateway_id")),),
    returns=("s",),
)

SENSORS_BY_TYPE = Pattern(
    start=NodePattern("s", SENSOR),
    hops=(Hop(HAS_TYPE, NodePattern("t", SENSOR_TYPE, identity_param="type_name")),),
    returns=("s",),
)

TYPES_OF_SENSOR = Pattern(
    start=NodePattern("s", SENSOR, identity_param="sensor_id"),
    hops=(Hop(HAS_TYPE, NodePattern("t", SENSOR_TYPE)),),
    returns=("t",),
)

GATEWAY_OF_SENSOR = Pattern(
    start=NodePattern("s", SENSOR, identity_param="sensor_id"),
    hops=(Hop(CONNECTED_TO, NodePattern("g", GATEWAY)),),
    returns=("g",),
)

READINGS_OF_SENSOR = Pattern(
    start=NodePattern("s", SENSOR, identity_param="sensor_id"),
    hops=(Hop(HAS_LAST_READING, NodePattern("r", LAST_READING), qualifier_as="sensor_type"),),
    returns=("sensor_type", "r"),
)

ALL_SENSOR_TYPES = Pattern(start=NodePattern("t", SENSOR_TYPE))


def _gateway(node: Node) -> Gateway:
    return Gateway(id=int(node.identity), name=node.properties["name"])


def _reading(node: Node) -> LastReading:
    return LastReading(
        id=int(node.identity),
        timestamp=datetime.fromisoformat(node.properties["timestamp"]),
        reading=float(node.properties["reading"]),
    )


class SensorGraphRepository:
    """Typed access to gateways, sensors, sensor types and readings."""

    def __init__(self, store: GraphStore) -> None:
        self.store = store

    def unit_of_work(self, fn: Callable[[], T]) -> T:
        return self.store.unit_of_work(fn)

    # -- gateways -----------------------------------------------------

    def save_gateway(self, gateway: Gateway) -> Gateway:
        node = self.store.save_node(GATEWAY, {"name": gateway.name}, gateway.id)
        return _gateway(node)

    def find_gateway(self, gateway_id: int) -> Optional[Gateway]:
        node = self.store.find_node(GATEWAY, gateway_id)
        return _gateway(node) if node else None

    def find_all_gateways(self) -> List[Gateway]:
        return [_gateway(row["g"]) for row in self.store.match(ALL_GATEWAYS)]

    def find_gateways_with_sensor_type(self, type_name: str) -> List[Gateway]:
        rows = self.store.match(GATEWAYS_WITH_SENSOR_TYPE, {"type_name": type_name})
        return [_gateway(row["g"]) for row in rows]

    # -- sensor types -------------------------------------------------

    def find_sensor_type(self, name: str) -> Optional[SensorType]:
        node = self.store.find_node(SENSOR_TYPE, name)
        return SensorType(name=node.identity) if node else None

    def save_sensor_type(self, sensor_type: SensorType) -> SensorType:
        """Create ``sensor_type``; raises ConstraintViolation when the name is taken."""
        node = self.store.save_node(SENSOR_TYPE, {"name": sensor_type.name})
        return SensorType(name=node.identity)

    def get_or_create_sensor_type(self, name: str) -> SensorType:
        existing = self.find_sensor_type(name)
        if existing is not None:
            return existing
        return self.save_sensor_type(SensorType(name=name))

    def find_all_sensor_types(self) -> List[SensorType]:
        return [SensorType(name=row["t"].identity) for row in self.store.match(ALL_SENSOR_TYPES)]

    # -- sensors ------------------------------------------------------

    def save_sensor(self, sensor: Sensor) -> Sensor:
        """Persist the sensor and its outbound relationships as one unit of work."""

        def persist() -> Sensor:
            node = self.store.save_node(
                SENSOR,
                {"name": sensor.name, "location_code": sensor.location_code},
                sensor.id,
            )
            self._sync_types(node.ref, sensor.types)
            self._sync_gateway(node.ref, sensor.gateway)
            self._sync_readings(node.ref, sensor.last_readings)
            return self._hydrate(node)

        return self.store.unit_of_work(persist)

    def find_sensor(self, sensor_id: int) -> Optional[Sensor]:
        with self.store.transaction():
            node = self.store.find_node(SENSOR, sensor_id)
            return self._hydrate(node) if node else None

    def find_sensor_for_update(self, sensor_id: int) -> Optional[Sensor]:
        """Lock the sensor for the enclosing unit of work, then load it.

        Callers that read the sensor's edges and then rewrite them must use
        this so concurrent writers to the same sensor queue up behind the lock.
        """
        with self.store.transaction():
            if not self.store.lock_node(SENSOR, sensor_id):
                return None
            node = self.store.find_node(SENSOR, sensor_id)
            return self._hydrate(node) if node else None

    def find_all_sensors(self) -> List[Sensor]:
        return self._hydrate_rows(ALL_SENSORS, {})

    def find_sensors_by_gateway(self, gateway_id: int) -> List[Sensor]:
        return self._hydrate_rows(SENSORS_BY_GATEWAY, {"gateway_id": gateway_id})

    def find_sensors_by_type(self, type_name: str) -> List[Sensor]:
        return self._hydrate_rows(SENSORS_BY_TYPE, {"type_name": type_name})

    def find_readings(self, sensor_id: int) -> List[TypedReading]:
        rows = self.store.match(READINGS_OF_SENSOR, {"sensor_id": sensor_id})
        return [TypedReading(sensor_type=row["sensor_type"], reading=_reading(row["r"])) for row in rows]

    # -- helpers ------------------------------------------------------

    def _hydrate_rows(self, pattern: Pattern, parameters: Dict[str, object]) -> List[Sensor]:
        with self.store.transaction():
            return [self._hydrate(row["s"]) for row in self.store.match(pattern, parameters)]

    def _hydrate(self, node: Node) -> Sensor:
        params = {"sensor_id": node.identity}
        gateways = [_gateway(row["g"]) for row in self.store.match(GATEWAY_OF_SENSOR, params)]
        return Sensor(
            id=int(node.identity),
            name=node.properties["name"],
            location_code=node.properties["location_code"],
            types=[row["t"].identity for row in self.store.match(TYPES_OF_SENSOR, params)],
            gateway=gateways[0] if gateways else None,
            last_readings=self.find_readings(int(node.identity)),
        )

    def _sync_types(self, sensor: NodeRef, desired: Sequence[str]) -> None:
        current = [row["t"].identity for row in self.store.match(TYPES_OF_SENSOR, {"sensor_id": sensor.identity})]
        for name in desired:
            if name in current:
                continue
            self.get_or_create_sensor_type(name)
            self.store.create_relationship(sensor, HAS_TYPE, NodeRef(SENSOR_TYPE, name))
        for name in current:
            if name not in desired:
                self.store.delete_relationship(sensor, HAS_TYPE, NodeRef(SENSOR_TYPE, name))

    def _sync_gateway(self, sensor: NodeRef, gateway: Optional[Gateway]) -> None:
        if gateway is not None and gateway.id is None:
            raise ValueError("A gateway must be saved before a sensor can connect to it.")
        desired = gateway.id if gateway is not None else None
        rows = self.store.match(GATEWAY_OF_SENSOR, {"sensor_id": sensor.identity})
        current = [row["g"].identity for row in rows]
        for gateway_id in current:
            if gateway_id != desired:
                self.store.delete_relationship(sensor, CONNECTED_TO, NodeRef(GATEWAY, gateway_id))
        if desired is not None and desired not in current:
            self.store.create_relationship(sensor, CONNECTED_TO, NodeRef(GATEWAY, desired))

    def _sync_readings(self, sensor: NodeRef, entries: Sequence[TypedReading]) -> None:
        rows = self.store.match(READINGS_OF_SENSOR, {"sensor_id": sensor.identity})
        current = {row["sensor_type"]: row["r"].identity for row in rows}
        for entry in entries:
            self.get_or_create_sensor_type(entry.sensor_type)
            node = self.store.save_node(
                LAST_READING,
                {
                    "timestamp": entry.reading.timestamp.isoformat(),
                    "reading": float(entry.reading.reading),
                },
                entry.reading.id,
            )
            previous = current.get(entry.sensor_type)
            if previous == node.identity:
                continue
            if previous is not None:
                # Deleting the replaced reading also drops its edge.
                self.store.delete_node(LAST_READING, previous)
            self.store.create_relationship(sensor, HAS_LAST_READING, node.ref, qualifier=entry.sensor_type)

        kept = {entry.sensor_type for entry in entries}
        for type_name, reading_id in current.items():
            if type_name not in kept:
                self.store.delete_node(LAST_READING, reading_id)


@lru_cache
def build_default_store(
    uri: Optional[str] = None,
    persistence_path: Optional[str] = None,
) -> GraphStore:
    """Build the process-wide graph store selected by the configured URI."""
    settings = get_settings()
    store_uri = settings.store_uri if uri is None else uri
    scheme = urlsplit(store_uri).scheme.lower()
    if scheme == "memory":
        path = settings.store_persistence_path if persistence_path is None else persistence_path
        return InMemoryGraphStore(
            natural_keys=NATURAL_KEYS,
            persistence_path=Path(path) if path else None,
        )
    if scheme in NEO4J_SCHEMES:
        from datastore.neo4j_graph import Neo4jGraphStore

        return Neo4jGraphStore(
            uri=store_uri,
            username=settings.store_username,
            password=settings.store_password,
            natural_keys=NATURAL_KEYS,
            allocated_labels=ALLOCATED_LABELS,
        )
    raise ValueError(f"Unsupported graph store URI {store_uri!r}.")


@lru_cache
def build_default_repository() -> SensorGraphRepository:
    return SensorGraphRepository(build_default_store())
