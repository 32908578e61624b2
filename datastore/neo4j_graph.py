"""Neo4j backend for the graph store, running Cypher through neomodel."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from threading import local
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional
from urllib.parse import quote, urlsplit, urlunsplit

from neo4j.exceptions import DriverError, Neo4jError
from neomodel import config, db
from neomodel.exceptions import UniqueProperty

from datastore.graph import (
    ConstraintViolation,
    GraphStoreError,
    Identity,
    Node,
    NodeNotFound,
    NodeRef,
    Row,
    T,
    ensure_identifier,
)
from datastore.patterns import IDENTITY_PROPERTY, QUALIFIER_PROPERTY, Pattern, to_cypher

logger = logging.getLogger(__name__)

SEQUENCE_LABEL = "GraphSequence"
LOCK_PROPERTY = "_lock"

_STORE_ERRORS = (Neo4jError, DriverError)


def connection_url(uri: str, username: Optional[str], password: Optional[str]) -> str:
    """Fold credentials into ``uri`` unless it already carries them."""
    parts = urlsplit(uri)
    if not username or "@" in parts.netloc:
        return uri
    credentials = quote(username, safe="")
    if password:
        credentials = f"{credentials}:{quote(password, safe='')}"
    return urlunsplit(parts._replace(netloc=f"{credentials}@{parts.netloc}"))


class Neo4jGraphStore:
    """Graph store backed by a Neo4j server.

    neomodel keeps one connection and one active transaction per thread, so
    every request worker gets its own unit of work.  Integer identities are
    drawn from a ``GraphSequence`` node per label; natural keys are protected
    by unique constraints installed at start-up.
    """

    def __init__(
        self,
        uri: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        natural_keys: Optional[Mapping[str, str]] = None,
        allocated_labels: Iterable[str] = (),
    ) -> None:
        self.natural_keys: Dict[str, str] = dict(natural_keys or {})
        self.uri = uri
        config.DATABASE_URL = connection_url(uri, username, password)
        self._local = local()
        self._install_constraints(allocated_labels)

    def _install_constraints(self, allocated_labels: Iterable[str]) -> None:
        keys = dict(self.natural_keys)
        keys.update({label: IDENTITY_PROPERTY for label in allocated_labels})
        keys[SEQUENCE_LABEL] = "label"
        for label, key in keys.items():
            ensure_identifier(label)
            ensure_identifier(key)
            name = f"{label.lower()}_{key}_unique"
            self._run(
                f"CREATE CONSTRAINT {name} IF NOT EXISTS FOR (n:{label}) REQUIRE n.{key} IS UNIQUE"
            )

    # -- transactions -------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        depth = getattr(self._local, "depth", 0)
        if depth:
            self._local.depth = depth + 1
            try:
                yield
            finally:
                self._local.depth = depth
            return

        try:
            db.begin()
        except _STORE_ERRORS as exc:
            raise GraphStoreError(f"Could not open a transaction: {exc}") from exc
        self._local.depth = 1
        try:
            yield
        except BaseException:
            self._rollback()
            raise
        else:
            try:
                db.commit()
            except _STORE_ERRORS as exc:
                raise GraphStoreError(f"Transaction commit failed: {exc}") from exc
        finally:
            self._local.depth = 0

    def _rollback(self) -> None:
        try:
            db.rollback()
        except _STORE_ERRORS:
            logger.warning("Rollback failed; the server discards the transaction on its own.", exc_info=True)

    def unit_of_work(self, fn: Callable[[], T]) -> T:
        with self.transaction():
            return fn()

    def close(self) -> None:
        db.close_connection()

    # -- nodes --------------------------------------------------------

    def save_node(
        self, label: str, properties: Mapping[str, Any], identity: Optional[Identity] = None
    ) -> Node:
        ensure_identifier(label)
        props = dict(properties)
        key = self._key(label)
        natural = label in self.natural_keys

        if identity is not None:
            if natural and props.get(key) != identity:
                raise GraphStoreError(f"{label} {key} cannot change once saved.")
            assign = "SET n = $props" if natural else f"SET n = $props, n.{key} = $identity"
            rows = self._run(
                f"MATCH (n:{label} {{{key}: $identity}}) {assign} RETURN n",
                {"identity": identity, "props": props},
            )
            if not rows:
                raise NodeNotFound(f"{label} {identity!r} does not exist.")
            return self._to_node(label, rows[0][0])

        if natural:
            if not isinstance(props.get(key), str):
                raise GraphStoreError(f"{label} nodes require a string {key!r} property.")
            rows = self._run(f"CREATE (n:{label}) SET n = $props RETURN n", {"props": props})
            return self._to_node(label, rows[0][0])

        rows = self._run(
            f"MERGE (seq:{SEQUENCE_LABEL} {{label: $label}}) "
            "ON CREATE SET seq.value = 0 "
            "SET seq.value = seq.value + 1 "
            f"WITH seq.value AS next_id CREATE (n:{label}) SET n = $props, n.{key} = next_id RETURN n",
            {"label": label, "props": props},
        )
        return self._to_node(label, rows[0][0])

    def find_node(self, label: str, identity: Identity) -> Optional[Node]:
        ensure_identifier(label)
        rows = self._run(
            f"MATCH (n:{label} {{{self._key(label)}: $identity}}) RETURN n LIMIT 1",
            {"identity": identity},
        )
        if not rows:
            return None
        return self._to_node(label, rows[0][0])

    def lock_node(self, label: str, identity: Identity) -> bool:
        # Writing a property takes the node's write lock, held until the
        # transaction ends; removing it in the same statement leaves no trace.
        ensure_identifier(label)
        rows = self._run(
            f"MATCH (n:{label} {{{self._key(label)}: $identity}}) "
            f"SET n.{LOCK_PROPERTY} = true REMOVE n.{LOCK_PROPERTY} RETURN count(n) AS locked",
            {"identity": identity},
        )
        return bool(rows and rows[0][0])

    def delete_node(self, label: str, identity: Identity) -> bool:
        ensure_identifier(label)
        rows = self._run(
            f"MATCH (n:{label} {{{self._key(label)}: $identity}}) DETACH DELETE n RETURN count(*) AS deleted",
            {"identity": identity},
        )
        return bool(rows and rows[0][0])

    # -- relationships ------------------------------------------------

    def create_relationship(
        self, source: NodeRef, rel_type: str, target: NodeRef, qualifier: Optional[str] = None
    ) -> None:
        ensure_identifier(rel_type)
        body = f" {{{QUALIFIER_PROPERTY}: $qualifier}}" if qualifier is not None else ""
        rows = self._run(
            f"{self._endpoints(source, target)} MERGE (a)-[r:{rel_type}{body}]->(b) RETURN count(r) AS linked",
            {"source": source.identity, "target": target.identity, "qualifier": qualifier},
        )
        if not rows or not rows[0][0]:
            raise NodeNotFound(
                f"{source.label} {source.identity!r} or {target.label} {target.identity!r} does not exist."
            )

    def delete_relationship(
        self, source: NodeRef, rel_type: str, target: NodeRef, qualifier: Optional[str] = None
    ) -> bool:
        ensure_identifier(rel_type)
        if qualifier is None:
            condition = f"r.{QUALIFIER_PROPERTY} IS NULL"
        else:
            condition = f"r.{QUALIFIER_PROPERTY} = $qualifier"
        rows = self._run(
            f"MATCH (a:{source.label} {{{self._key(source.label)}: $source}})"
            f"-[r:{rel_type}]->"
            f"(b:{target.label} {{{self._key(target.label)}: $target}}) "
            f"WHERE {condition} DELETE r RETURN count(*) AS deleted",
            {"source": source.identity, "target": target.identity, "qualifier": qualifier},
        )
        return bool(rows and rows[0][0])

    # -- queries ------------------------------------------------------

    def match(self, pattern: Pattern, parameters: Optional[Mapping[str, Any]] = None) -> List[Row]:
        query = to_cypher(pattern, self.natural_keys)
        labels = pattern.node_labels()
        columns = pattern.returned()
        rows = self._run(query, dict(parameters or {}))
        return [
            {
                name: self._to_node(labels[name], value) if name in labels else value
                for name, value in zip(columns, row)
            }
            for row in rows
        ]

    # -- helpers ------------------------------------------------------

    def _key(self, label: str) -> str:
        return self.natural_keys.get(label, IDENTITY_PROPERTY)

    def _endpoints(self, source: NodeRef, target: NodeRef) -> str:
        ensure_identifier(source.label)
        ensure_identifier(target.label)
        return (
            f"MATCH (a:{source.label} {{{self._key(source.label)}: $source}}) "
            f"MATCH (b:{target.label} {{{self._key(target.label)}: $target}})"
        )

    def _to_node(self, label: str, raw: Any) -> Node:
        props = dict(raw.items())
        if label in self.natural_keys:
            identity = props[self.natural_keys[label]]
        else:
            identity = props.pop(IDENTITY_PROPERTY)
        return Node(label, identity, props)

    def _run(self, query: str, params: Optional[Mapping[str, Any]] = None) -> List[List[Any]]:
        try:
            results, _meta = db.cypher_query(query, dict(params or {}))
        except UniqueProperty as exc:
            raise ConstraintViolation(str(exc)) from exc
        except _STORE_ERRORS as exc:
            raise GraphStoreError(str(exc)) from exc
        return results
