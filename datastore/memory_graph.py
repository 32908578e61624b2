from __future__ import annotations

import copy
import json
import logging
from contextlib import contextmanager
from pathlib import Path
from threading import RLock
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple

from datastore.graph import (
    ConstraintViolation,
    GraphStoreError,
    Identity,
    Node,
    NodeNotFound,
    NodeRef,
    Relationship,
    Row,
    T,
    ensure_identifier,
)
from datastore.patterns import Direction, Hop, NodePattern, Pattern

logger = logging.getLogger(__name__)

_Binding = Dict[str, Any]
_State = Tuple[Dict[str, Dict[Identity, Dict[str, Any]]], Dict[str, int], Dict[Relationship, None]]


class InMemoryGraphStore:
    """Process-local labeled property graph with optional JSON persistence.

    A re-entrant lock is held for the whole of a unit of work, so units of
    work are serialized and readers never observe a half-applied one.
    Rollback restores a snapshot taken at the first write of the outermost
    unit; units that only read are neither copied nor persisted.
    """

    def __init__(
        self,
        natural_keys: Optional[Mapping[str, str]] = None,
        persistence_path: Optional[Path] = None,
    ) -> None:
        self.natural_keys: Dict[str, str] = dict(natural_keys or {})
        self.persistence_path = persistence_path
        self._nodes: Dict[str, Dict[Identity, Dict[str, Any]]] = {}
        self._sequences: Dict[str, int] = {}
        # Dict keys keep insertion order, which is the store-native result order.
        self._relationships: Dict[Relationship, None] = {}
        self._lock = RLock()
        self._depth = 0
        self._undo: Optional[_State] = None
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    # -- transactions -------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            self._depth = 1
            self._undo = None
            try:
                yield
                if self._undo is not None:
                    self._persist()
            except BaseException:
                if self._undo is not None:
                    self._restore(self._undo)
                raise
            finally:
                self._depth = 0
                self._undo = None

    def _begin_write(self) -> None:
        if self._undo is None:
            self._undo = self._snapshot()

    def unit_of_work(self, fn: Callable[[], T]) -> T:
        with self.transaction():
            return fn()

    def close(self) -> None:
        """Nothing to release; writes are persisted on commit."""

    # -- nodes --------------------------------------------------------

    def save_node(
        self, label: str, properties: Mapping[str, Any], identity: Optional[Identity] = None
    ) -> Node:
        ensure_identifier(label)
        props = copy.deepcopy(dict(properties))
        with self.transaction():
            self._begin_write()
            nodes = self._nodes.setdefault(label, {})
            key_property = self.natural_keys.get(label)
            if identity is not None:
                if identity not in nodes:
                    raise NodeNotFound(f"{label} {identity!r} does not exist.")
                if key_property is not None and props.get(key_property) != identity:
                    raise GraphStoreError(f"{label} {key_property} cannot change once saved.")
            elif key_property is not None:
                key = props.get(key_property)
                if not isinstance(key, str):
                    raise GraphStoreError(f"{label} nodes require a string {key_property!r} property.")
                if key in nodes:
                    raise ConstraintViolation(f"{label} with {key_property}={key!r} already exists.")
                identity = key
            else:
                identity = self._sequences.get(label, 0) + 1
                self._sequences[label] = identity
            nodes[identity] = props
            return Node(label, identity, copy.deepcopy(props))

    def lock_node(self, label: str, identity: Identity) -> bool:
        """Report whether the node exists; the store lock already serializes writers."""
        with self._lock:
            return identity in self._nodes.get(label, {})

    def find_node(self, label: str, identity: Identity) -> Optional[Node]:
        with self._lock:
            props = self._nodes.get(label, {}).get(identity)
            if props is None:
                return None
            return Node(label, identity, copy.deepcopy(props))

    def delete_node(self, label: str, identity: Identity) -> bool:
        ref = NodeRef(label, identity)
        with self.transaction():
            nodes = self._nodes.get(label, {})
            if identity not in nodes:
                return False
            self._begin_write()
            for rel in [rel for rel in self._relationships if ref in (rel.source, rel.target)]:
                del self._relationships[rel]
            del nodes[identity]
            return True

    # -- relationships ------------------------------------------------

    def create_relationship(
        self, source: NodeRef, rel_type: str, target: NodeRef, qualifier: Optional[str] = None
    ) -> None:
        ensure_identifier(rel_type)
        with self.transaction():
            for ref in (source, target):
                if not self._exists(ref):
                    raise NodeNotFound(f"{ref.label} {ref.identity!r} does not exist.")
            self._begin_write()
            self._relationships[Relationship(source, rel_type, target, qualifier)] = None

    def delete_relationship(
        self, source: NodeRef, rel_type: str, target: NodeRef, qualifier: Optional[str] = None
    ) -> bool:
        with self.transaction():
            rel = Relationship(source, rel_type, target, qualifier)
            if rel not in self._relationships:
                return False
            self._begin_write()
            del self._relationships[rel]
            return True

    # -- queries ------------------------------------------------------

    def match(self, pattern: Pattern, parameters: Optional[Mapping[str, Any]] = None) -> List[Row]:
        pattern.validate()
        params = dict(parameters or {})
        with self._lock:
            bindings: List[_Binding] = [
                {pattern.start.variable: ref} for ref in self._candidates(pattern.start, params)
            ]
            previous = pattern.start.variable
            for hop in pattern.hops:
                bindings = [
                    extended
                    for binding in bindings
                    for extended in self._follow(binding[previous], binding, hop, params)
                ]
                previous = hop.node.variable

            rows: List[Row] = []
            seen = set()
            for binding in bindings:
                selected = tuple((name, binding[name]) for name in pattern.returned())
                if pattern.distinct:
                    if selected in seen:
                        continue
                    seen.add(selected)
                rows.append({name: self._materialize(value) for name, value in selected})
            return rows

    def _candidates(self, node: NodePattern, params: Mapping[str, Any]) -> List[NodeRef]:
        nodes = self._nodes.get(node.label, {})
        if node.identity_param:
            identity = _param(params, node.identity_param)
            identities = [identity] if identity in nodes else []
        else:
            identities = list(nodes)
        refs = [NodeRef(node.label, identity) for identity in identities]
        return [ref for ref in refs if self._matches(node, ref, params)]

    def _follow(
        self, current: NodeRef, binding: _Binding, hop: Hop, params: Mapping[str, Any]
    ) -> List[_Binding]:
        qualifier = _param(params, hop.qualifier_param) if hop.qualifier_param else None
        extended: List[_Binding] = []
        for rel in self._relationships:
            if rel.rel_type != hop.rel_type:
                continue
            if hop.direction is Direction.outgoing:
                if rel.source != current:
                    continue
                other = rel.target
            else:
                if rel.target != current:
                    continue
                other = rel.source
            if hop.qualifier_param and rel.qualifier != qualifier:
                continue
            if not self._matches(hop.node, other, params):
                continue
            candidate = dict(binding)
            candidate[hop.node.variable] = other
            if hop.qualifier_as:
                candidate[hop.qualifier_as] = rel.qualifier
            extended.append(candidate)
        return extended

    def _matches(self, node: NodePattern, ref: NodeRef, params: Mapping[str, Any]) -> bool:
        if ref.label != node.label:
            return False
        if node.identity_param and ref.identity != _param(params, node.identity_param):
            return False
        props = self._nodes.get(ref.label, {}).get(ref.identity)
        if props is None:
            return False
        return all(props.get(prop) == _param(params, param) for prop, param in node.where)

    def _materialize(self, value: Any) -> Any:
        if isinstance(value, NodeRef):
            props = self._nodes[value.label][value.identity]
            return Node(value.label, value.identity, copy.deepcopy(props))
        return value

    def _exists(self, ref: NodeRef) -> bool:
        return ref.identity in self._nodes.get(ref.label, {})

    # -- persistence --------------------------------------------------

    def _snapshot(self) -> _State:
        return copy.deepcopy((self._nodes, self._sequences, self._relationships))

    def _restore(self, snapshot: _State) -> None:
        self._nodes, self._sequences, self._relationships = snapshot

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        payload = {
            "sequences": self._sequences,
            "nodes": {
                label: {str(identity): props for identity, props in nodes.items()}
                for label, nodes in self._nodes.items()
            },
            "relationships": [
                {
                    "source": list(rel.source),
                    "type": rel.rel_type,
                    "target": list(rel.target),
                    "qualifier": rel.qualifier,
                }
                for rel in self._relationships
            ],
        }
        try:
            self.persistence_path.write_text(json.dumps(payload, indent=2, sort_keys=True))
        except OSError as exc:
            raise GraphStoreError(f"Could not persist graph to {self.persistence_path}.") from exc

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            logger.warning(
                "Could not read graph from %s; starting empty and overwriting it on the next write",
                self.persistence_path,
                exc_info=True,
            )
            data = {}

        self._sequences = {label: int(value) for label, value in data.get("sequences", {}).items()}
        for label, nodes in data.get("nodes", {}).items():
            natural = label in self.natural_keys
            self._nodes[label] = {
                (identity if natural else int(identity)): props for identity, props in nodes.items()
            }
        for item in data.get("relationships", []):
            rel = Relationship(
                source=NodeRef(*item["source"]),
                rel_type=item["type"],
                target=NodeRef(*item["target"]),
                qualifier=item.get("qualifier"),
            )
            self._relationships[rel] = None


def _param(params: Mapping[str, Any], name: str) -> Any:
    try:
        return params[name]
    except KeyError as exc:
        raise GraphStoreError(f"Missing query parameter {name!r}.") from exc
