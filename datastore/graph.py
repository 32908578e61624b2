"""Primitives shared by the labeled property graph backends."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    ContextManager,
    Dict,
    List,
    Mapping,
    NamedTuple,
    Optional,
    Protocol,
    TypeVar,
    Union,
)

if TYPE_CHECKING:
    from datastore.patterns import Pattern

Identity = Union[int, str]
Row = Dict[str, Any]

T = TypeVar("T")

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class GraphStoreError(RuntimeError):
    """Base class for every failure raised by a graph store backend."""


class ConstraintViolation(GraphStoreError):
    """A write would break a uniqueness constraint."""


class NodeNotFound(GraphStoreError):
    """A write referenced a node that does not exist."""


class NodeRef(NamedTuple):
    label: str
    identity: Identity


@dataclass(frozen=True)
class Node:
    label: str
    identity: Identity
    properties: Dict[str, Any] = field(default_factory=dict)

    @property
    def ref(self) -> NodeRef:
        return NodeRef(self.label, self.identity)


@dataclass(frozen=True)
class Relationship:
    source: NodeRef
    rel_type: str
    target: NodeRef
    qualifier: Optional[str] = None


def ensure_identifier(value: str) -> str:
    """Reject labels and relationship types that are not plain identifiers."""
    if not _IDENTIFIER.match(value):
        raise GraphStoreError(f"Invalid graph identifier {value!r}.")
    return value


class GraphStore(Protocol):
    """Persistence surface the repository consumes.

    Labels listed in ``natural_keys`` use the named property as their
    identity; every other label receives store-allocated integers.
    """

    natural_keys: Mapping[str, str]

    def save_node(
        self, label: str, properties: Mapping[str, Any], identity: Optional[Identity] = None
    ) -> Node: ...

    def find_node(self, label: str, identity: Identity) -> Optional[Node]: ...

    def lock_node(self, label: str, identity: Identity) -> bool:
        """Take the node's write lock for the rest of the unit of work.

        Returns False when the node does not exist.
        """
        ...

    def delete_node(self, label: str, identity: Identity) -> bool: ...

    def match(self, pattern: Pattern, parameters: Optional[Mapping[str, Any]] = None) -> List[Row]: ...

    def create_relationship(
        self, source: NodeRef, rel_type: str, target: NodeRef, qualifier: Optional[str] = None
    ) -> None: ...

    def delete_relationship(
        self, source: NodeRef, rel_type: str, target: NodeRef, qualifier: Optional[str] = None
    ) -> bool: ...

    def transaction(self) -> ContextManager[None]: ...

    def unit_of_work(self, fn: Callable[[], T]) -> T: ...

    def close(self) -> None: ...
