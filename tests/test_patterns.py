from __future__ import annotations

import pytest

from datastore.graph import GraphStoreError
from datastore.patterns import Hop, NodePattern, Pattern, to_cypher
from datastore.repository import (
    GATEWAYS_WITH_SENSOR_TYPE,
    NATURAL_KEYS,
    READINGS_OF_SENSOR,
    SENSORS_BY_GATEWAY,
)


def test_incoming_hop_and_natural_key_render_as_cypher() -> None:
    assert to_cypher(GATEWAYS_WITH_SENSOR_TYPE, NATURAL_KEYS) == (
        "MATCH (g:Gateway)<-[r0:CONNECTED_TO]-(s:Sensor)"
        "-[r1:HAS_TYPE]->(t:SensorType {name: $type_name}) RETURN DISTINCT g"
    )


def test_allocated_identity_renders_as_id_property() -> None:
    assert to_cypher(SENSORS_BY_GATEWAY, NATURAL_KEYS) == (
        "MATCH (s:Sensor)-[r0:CONNECTED_TO]->(g:Gateway {id: $gateway_id}) RETURN s"
    )


def test_qualifier_column_is_aliased() -> None:
    assert to_cypher(READINGS_OF_SENSOR, NATURAL_KEYS) == (
        "MATCH (s:Sensor {id: $sensor_id})-[r0:HAS_LAST_READING]->(r:LastReading)"
        " RETURN r0.qualifier AS sensor_type, r"
    )


def test_qualifier_filter_and_where_clause() -> None:
    pattern = Pattern(
        start=NodePattern("s", "Sensor", where=(("location_code", "code"),)),
        hops=(Hop("HAS_LAST_READING", NodePattern("r", "LastReading"), qualifier_param="type_name"),),
    )

    assert to_cypher(pattern, {}) == (
        "MATCH (s:Sensor {location_code: $code})"
        "-[r0:HAS_LAST_READING {qualifier: $type_name}]->(r:LastReading) RETURN s, r"
    )


def test_returning_unbound_variable_is_rejected() -> None:
    pattern = Pattern(start=NodePattern("s", "Sensor"), returns=("g",))

    with pytest.raises(GraphStoreError):
        pattern.validate()


def test_duplicate_variables_are_rejected() -> None:
    pattern = Pattern(
        start=NodePattern("s", "Sensor"),
        hops=(Hop("CONNECTED_TO", NodePattern("s", "Gateway")),),
    )

    with pytest.raises(GraphStoreError):
        to_cypher(pattern, NATURAL_KEYS)


def test_labels_must_be_identifiers() -> None:
    pattern = Pattern(start=NodePattern("s", "Sensor {name: 'x'}"))

    with pytest.raises(GraphStoreError):
        to_cypher(pattern, NATURAL_KEYS)
