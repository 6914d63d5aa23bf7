"""Error taxonomy for the kinship graph core.

Every error raised across a component boundary derives from ``GraphError``
so HTTP and CLI layers can map them in one place. Errors carry the ids of
the conflicting person/edge so the caller can show both parties what went
wrong.
"""
from __future__ import annotations
from typing import Any, Iterable, Optional, Sequence


class GraphError(Exception):
    """Base class for kinship graph errors."""

    def to_dict(self) -> dict:
        return {"error": type(self).__name__, "detail": str(self)}


class PersonNotFound(GraphError, KeyError):
    def __init__(self, person_id: str) -> None:
        self.person_id = person_id
        super().__init__(f"Person {person_id} not found")

    def __str__(self) -> str:
        return self.args[0]


class PersonInUse(GraphError):
    def __init__(self, person_id: str, edge_count: int) -> None:
        self.person_id = person_id
        self.edge_count = edge_count
        super().__init__(f"Person {person_id} still has {edge_count} relationship(s)")


class InvalidRelationshipType(GraphError, ValueError):
    def __init__(self, code: Any) -> None:
        self.code = code
        super().__init__(f"Unknown relationship type: {code!r}")


class InvalidQualifier(GraphError, ValueError):
    def __init__(self, name: str, value: Any, reason: str = "") -> None:
        self.name = name
        self.value = value
        msg = f"Invalid qualifier {name}={value!r}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class CycleDetected(GraphError):
    """Adding parent -> child would make the child its own ancestor."""

    def __init__(self, parent: str, child: str, path: Sequence[str] = ()) -> None:
        self.parent = parent
        self.child = child
        self.path = tuple(path)
        detail = " -> ".join(self.path) if self.path else f"{child} -> {parent}"
        super().__init__(f"Edge {parent} -> {child} would create a cycle ({detail})")

    def to_dict(self) -> dict:
        d = super().to_dict()
        d.update({"parent": self.parent, "child": self.child, "path": list(self.path)})
        return d


class DuplicateEdge(GraphError):
    def __init__(self, edge_id: str) -> None:
        self.edge_id = edge_id
        super().__init__(f"Edge already exists: {edge_id}")


class EdgeNotFound(GraphError, KeyError):
    def __init__(self, edge_id: str) -> None:
        self.edge_id = edge_id
        super().__init__(f"Edge {edge_id} not found")

    def __str__(self) -> str:
        return self.args[0]


class ParentConflict(GraphError):
    """A biological parent slot of the child is already taken."""

    def __init__(self, child: str, parent: str, existing_edge_id: str, reason: str) -> None:
        self.child = child
        self.parent = parent
        self.existing_edge_id = existing_edge_id
        super().__init__(f"Cannot add {parent} as parent of {child}: {reason} (edge {existing_edge_id})")

    def to_dict(self) -> dict:
        d = super().to_dict()
        d.update({"child": self.child, "parent": self.parent, "existing_edge_id": self.existing_edge_id})
        return d


class DepthExceeded(GraphError):
    """A traversal ran out of its depth or time budget."""

    def __init__(self, person_id: str, depth: int, reason: str = "depth") -> None:
        self.person_id = person_id
        self.depth = depth
        self.reason = reason
        super().__init__(f"Traversal from {person_id} stopped at depth {depth} ({reason})")


class StaleCacheRead(GraphError):
    """Raised internally when a cached walk raced an invalidation."""

    def __init__(self, person_id: str) -> None:
        self.person_id = person_id
        super().__init__(f"Cached walk for {person_id} was invalidated while computing")


class MergeConflict(GraphError):
    """A merge or bridge acceptance was rejected by the graph."""

    def __init__(self, message: str, edge: Optional[Any] = None, person_id: Optional[str] = None, cause: Optional[GraphError] = None) -> None:
        self.edge = edge
        self.person_id = person_id
        self.cause = cause
        super().__init__(message)

    def to_dict(self) -> dict:
        d = super().to_dict()
        edge = self.edge
        d["edge"] = edge.to_dict() if hasattr(edge, "to_dict") else edge
        d["person_id"] = self.person_id
        if self.cause is not None:
            d["cause"] = self.cause.to_dict()
        return d


class LockTimeout(GraphError):
    def __init__(self, keys: Iterable[str], timeout: float) -> None:
        self.keys = tuple(keys)
        self.timeout = timeout
        super().__init__(f"Could not lock {len(self.keys)} key(s) within {timeout}s")


class DuplicateNotFound(GraphError, KeyError):
    def __init__(self, duplicate_id: str) -> None:
        self.duplicate_id = duplicate_id
        super().__init__(f"Potential duplicate {duplicate_id} not found")

    def __str__(self) -> str:
        return self.args[0]


class BridgeError(GraphError):
    """Invalid bridge request operation (state, permissions, blocks)."""


class BridgeNotFound(BridgeError, KeyError):
    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        super().__init__(f"Bridge request {request_id} not found")

    def __str__(self) -> str:
        return self.args[0]


class BridgeExpired(BridgeError):
    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        super().__init__(f"Bridge request {request_id} has expired")
