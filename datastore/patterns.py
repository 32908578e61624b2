"""Parameterized graph patterns understood by every graph store backend.

A pattern is a linear path: a start node followed by relationship hops.
Each node may be pinned to an identity parameter or filtered on property
parameters, and each hop may expose or filter on the relationship
qualifier.  The in-memory backend evaluates patterns directly while the
Neo4j backend compiles them with :func:`to_cypher`, so repository queries
are written once for both.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping, Optional, Tuple

from datastore.graph import GraphStoreError, ensure_identifier

QUALIFIER_PROPERTY = "qualifier"
IDENTITY_PROPERTY = "id"


class Direction(str, Enum):
    outgoing = "outgoing"
    incoming = "incoming"


@dataclass(frozen=True)
class NodePattern:
    variable: str
    label: str
    identity_param: Optional[str] = None
    where: Tuple[Tuple[str, str], ...] = ()


@dataclass(frozen=True)
class Hop:
    rel_type: str
    node: NodePattern
    direction: Direction = Direction.outgoing
    qualifier_as: Optional[str] = None
    qualifier_param: Optional[str] = None


@dataclass(frozen=True)
class Pattern:
    start: NodePattern
    hops: Tuple[Hop, ...] = ()
    returns: Tuple[str, ...] = ()
    distinct: bool = False

    def nodes(self) -> List[NodePattern]:
        return [self.start, *(hop.node for hop in self.hops)]

    def node_labels(self) -> Dict[str, str]:
        """Map each node variable to its label."""
        return {node.variable: node.label for node in self.nodes()}

    def qualifier_names(self) -> List[str]:
        return [hop.qualifier_as for hop in self.hops if hop.qualifier_as]

    def returned(self) -> Tuple[str, ...]:
        """Variables bound in each result row; defaults to every node variable."""
        if self.returns:
            return self.returns
        return tuple(node.variable for node in self.nodes())

    def validate(self) -> "Pattern":
        known = set(self.node_labels()) | set(self.qualifier_names())
        if len(known) != len(self.nodes()) + len(self.qualifier_names()):
            raise GraphStoreError("Pattern variables must be unique.")
        unknown = [name for name in self.returned() if name not in known]
        if unknown:
            raise GraphStoreError(f"Pattern returns unbound variables: {', '.join(unknown)}")
        for node in self.nodes():
            ensure_identifier(node.variable)
            ensure_identifier(node.label)
            for prop, param in node.where:
                ensure_identifier(prop)
                ensure_identifier(param)
        for hop in self.hops:
            ensure_identifier(hop.rel_type)
        return self


def _node_cypher(node: NodePattern, natural_keys: Mapping[str, str]) -> str:
    filters = []
    if node.identity_param:
        key = natural_keys.get(node.label, IDENTITY_PROPERTY)
        filters.append(f"{key}: ${node.identity_param}")
    filters.extend(f"{prop}: ${param}" for prop, param in node.where)
    body = f" {{{', '.join(filters)}}}" if filters else ""
    return f"({node.variable}:{node.label}{body})"


def _hop_cypher(hop: Hop, rel_variable: str) -> str:
    body = ""
    if hop.qualifier_param:
        body = f" {{{QUALIFIER_PROPERTY}: ${hop.qualifier_param}}}"
    rel = f"[{rel_variable}:{hop.rel_type}{body}]"
    if hop.direction is Direction.incoming:
        return f"<-{rel}-"
    return f"-{rel}->"


def to_cypher(pattern: Pattern, natural_keys: Mapping[str, str]) -> str:
    """Render ``pattern`` as a Cypher ``MATCH ... RETURN`` statement."""
    pattern.validate()
    parts = [_node_cypher(pattern.start, natural_keys)]
    qualifier_columns: Dict[str, str] = {}
    for index, hop in enumerate(pattern.hops):
        rel_variable = f"r{index}"
        parts.append(_hop_cypher(hop, rel_variable))
        parts.append(_node_cypher(hop.node, natural_keys))
        if hop.qualifier_as:
            qualifier_columns[hop.qualifier_as] = f"{rel_variable}.{QUALIFIER_PROPERTY}"

    columns = []
    for name in pattern.returned():
        if name in qualifier_columns:
            columns.append(f"{qualifier_columns[name]} AS {name}")
        else:
            columns.append(name)
    distinct = "DISTINCT " if pattern.distinct else ""
    return f"MATCH {''.join(parts)} RETURN {distinct}{', '.join(columns)}"
