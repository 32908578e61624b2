from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import pytest
from neo4j.exceptions import ServiceUnavailable
from neomodel import config
from neomodel.exceptions import UniqueProperty

from datastore import neo4j_graph
from datastore.graph import ConstraintViolation, GraphStoreError, Node, NodeNotFound, NodeRef
from datastore.neo4j_graph import Neo4jGraphStore, connection_url
from datastore.patterns import to_cypher
from datastore.repository import ALLOCATED_LABELS, NATURAL_KEYS, READINGS_OF_SENSOR


class FakeDatabase:
    """Stands in for neomodel's ``db`` handle and records what the store sends."""

    def __init__(self) -> None:
        self.queries: List[Tuple[str, Dict[str, Any]]] = []
        self.calls: List[str] = []
        self.responses: List[Tuple[str, List[List[Any]]]] = []
        self.query_error: Optional[Exception] = None
        self.commit_error: Optional[Exception] = None
        self.rollback_error: Optional[Exception] = None

    def respond(self, fragment: str, rows: List[List[Any]]) -> None:
        self.responses.append((fragment, rows))

    def cypher_query(self, query: str, params: Optional[Dict[str, Any]] = None):
        self.queries.append((query, dict(params or {})))
        if self.query_error is not None:
            raise self.query_error
        for fragment, rows in self.responses:
            if fragment in query:
                return rows, None
        return [], None

    def begin(self) -> None:
        self.calls.append("begin")

    def commit(self) -> None:
        self.calls.append("commit")
        if self.commit_error is not None:
            raise self.commit_error

    def rollback(self) -> None:
        self.calls.append("rollback")
        if self.rollback_error is not None:
            raise self.rollback_error

    def close_connection(self) -> None:
        self.calls.append("close")


@pytest.fixture()
def fake_db(monkeypatch) -> FakeDatabase:
    fake = FakeDatabase()
    monkeypatch.setattr(neo4j_graph, "db", fake)
    monkeypatch.setattr(config, "DATABASE_URL", getattr(config, "DATABASE_URL", None), raising=False)
    return fake


@pytest.fixture()
def store(fake_db: FakeDatabase) -> Neo4jGraphStore:
    store = Neo4jGraphStore(
        "bolt://db:7687",
        "neo4j",
        "pw",
        natural_keys=NATURAL_KEYS,
        allocated_labels=ALLOCATED_LABELS,
    )
    fake_db.queries.clear()
    return store


def test_connection_url_folds_in_credentials() -> None:
    assert connection_url("bolt://db:7687", "neo4j", "s3cr:t@") == "bolt://neo4j:s3cr%3At%40@db:7687"


def test_connection_url_without_password() -> None:
    assert connection_url("neo4j+s://db.example.com", "reader", "") == "neo4j+s://reader@db.example.com"


def test_connection_url_keeps_existing_credentials() -> None:
    uri = "bolt://admin:pw@db:7687"

    assert connection_url(uri, "neo4j", "other") == uri
    assert connection_url("bolt://db:7687", None, "pw") == "bolt://db:7687"


def test_start_up_configures_neomodel_and_installs_constraints(fake_db: FakeDatabase) -> None:
    Neo4jGraphStore("bolt://db:7687", "neo4j", "pw", natural_keys=NATURAL_KEYS, allocated_labels=ALLOCATED_LABELS)

    assert config.DATABASE_URL == "bolt://neo4j:pw@db:7687"
    statements = [query for query, _ in fake_db.queries]
    assert all(statement.startswith("CREATE CONSTRAINT") for statement in statements)
    assert "FOR (n:SensorType) REQUIRE n.name IS UNIQUE" in statements[0]
    assert len(statements) == len(NATURAL_KEYS) + len(ALLOCATED_LABELS) + 1


def test_unique_property_becomes_constraint_violation(store: Neo4jGraphStore, fake_db: FakeDatabase) -> None:
    fake_db.query_error = UniqueProperty("Node(1) already exists with label `SensorType` and property `name`")

    with pytest.raises(ConstraintViolation):
        store.save_node("SensorType", {"name": "humidity"})


def test_driver_errors_become_store_errors(store: Neo4jGraphStore, fake_db: FakeDatabase) -> None:
    fake_db.query_error = ServiceUnavailable("connection refused")

    with pytest.raises(GraphStoreError) as excinfo:
        store.find_node("Sensor", 1)

    assert not isinstance(excinfo.value, ConstraintViolation)
    assert isinstance(excinfo.value.__cause__, ServiceUnavailable)


def test_failure_inside_transaction_rolls_back(store: Neo4jGraphStore, fake_db: FakeDatabase) -> None:
    with pytest.raises(RuntimeError):
        with store.transaction():
            store.find_node("Sensor", 1)
            raise RuntimeError("boom")

    assert fake_db.calls == ["begin", "rollback"]


def test_failed_rollback_is_logged_and_original_error_kept(
    store: Neo4jGraphStore, fake_db: FakeDatabase, caplog: pytest.LogCaptureFixture
) -> None:
    fake_db.rollback_error = ServiceUnavailable("gone")

    def work() -> None:
        raise RuntimeError("boom")

    with caplog.at_level(logging.WARNING, logger="datastore.neo4j_graph"):
        with pytest.raises(RuntimeError):
            store.unit_of_work(work)

    assert "Rollback failed" in caplog.text


def test_nested_transactions_share_one_server_transaction(store: Neo4jGraphStore, fake_db: FakeDatabase) -> None:
    with store.transaction():
        with store.transaction():
            store.find_node("Sensor", 1)
        store.find_node("Sensor", 2)

    assert fake_db.calls == ["begin", "commit"]


def test_commit_failure_becomes_store_error(store: Neo4jGraphStore, fake_db: FakeDatabase) -> None:
    fake_db.commit_error = ServiceUnavailable("connection lost")

    with pytest.raises(GraphStoreError, match="commit failed"):
        store.unit_of_work(lambda: store.find_node("Sensor", 1))

    fake_db.commit_error = None
    store.unit_of_work(lambda: None)
    assert fake_db.calls == ["begin", "commit", "begin", "commit"]


def test_save_node_draws_ids_from_the_label_sequence(store: Neo4jGraphStore, fake_db: FakeDatabase) -> None:
    fake_db.respond("MERGE (seq:GraphSequence", [[{"id": 7, "name": "G7"}]])

    node = store.save_node("Gateway", {"name": "G7"})

    assert node == Node("Gateway", 7, {"name": "G7"})
    query, params = fake_db.queries[-1]
    assert "CREATE (n:Gateway) SET n = $props, n.id = next_id" in query
    assert params == {"label": "Gateway", "props": {"name": "G7"}}


def test_lock_node_writes_to_the_node(store: Neo4jGraphStore, fake_db: FakeDatabase) -> None:
    fake_db.respond("SET n._lock", [[1]])

    assert store.lock_node("Sensor", 2) is True

    query, params = fake_db.queries[-1]
    assert query.startswith("MATCH (n:Sensor {id: $identity}) SET n._lock = true REMOVE n._lock")
    assert params == {"identity": 2}

    fake_db.responses = [("SET n._lock", [[0]])]
    assert store.lock_node("Sensor", 3) is False


def test_match_sends_pattern_query_and_maps_rows(store: Neo4jGraphStore, fake_db: FakeDatabase) -> None:
    reading = {"id": 4, "reading": 40.0, "timestamp": "2024-01-01T12:00:00"}
    fake_db.respond("HAS_LAST_READING", [["humidity", reading]])

    rows = store.match(READINGS_OF_SENSOR, {"sensor_id": 1})

    assert fake_db.queries[-1] == (to_cypher(READINGS_OF_SENSOR, NATURAL_KEYS), {"sensor_id": 1})
    assert rows == [
        {
            "sensor_type": "humidity",
            "r": Node("LastReading", 4, {"reading": 40.0, "timestamp": "2024-01-01T12:00:00"}),
        }
    ]


def test_create_relationship_reports_missing_endpoint(store: Neo4jGraphStore, fake_db: FakeDatabase) -> None:
    fake_db.respond("MERGE (a)-[r:CONNECTED_TO]->(b)", [[0]])

    with pytest.raises(NodeNotFound):
        store.create_relationship(NodeRef("Sensor", 1), "CONNECTED_TO", NodeRef("Gateway", 9))


def test_close_releases_the_connection(store: Neo4jGraphStore, fake_db: FakeDatabase) -> None:
    store.close()

    assert fake_db.calls == ["close"]
