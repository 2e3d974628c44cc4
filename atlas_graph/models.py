"""
Record types shared by the store, traversal, similarity and merge layers.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Optional

from .errors import MalformedInputError

DIRECTIONS = ("in", "out", "both")
MERGE_STRATEGIES = ("skip", "update", "merge")
MATCH_FIELDS = ("type", "label", "properties")


class MergeAction:
    CREATED = "created"
    MERGED = "merged"
    SKIPPED = "skipped"


@dataclass
class Node:
    """A persisted graph node."""
    id: str
    type: str
    label: str
    properties: dict[str, Any] = field(default_factory=dict)
    created_at: float = 0.0
    updated_at: float = 0.0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "label": self.label,
            "properties": self.properties,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class Edge:
    """A persisted directed edge between two nodes."""
    id: str
    source_id: str
    target_id: str
    type: str
    properties: dict[str, Any] = field(default_factory=dict)
    weight: Optional[float] = None
    created_at: float = 0.0
    updated_at: float = 0.0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "target_id": self.target_id,
            "type": self.type,
            "properties": self.properties,
            "weight": self.weight,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class NodeCreate:
    """Input for node creation; also the candidate record for merges."""
    type: str
    label: str
    properties: Optional[dict[str, Any]] = None

    def validate(self) -> None:
        _require_str("type", self.type)
        _require_str("label", self.label)
        _require_properties(self.properties)


@dataclass
class EdgeCreate:
    """Input for edge creation; also the candidate record for merges."""
    source_id: str
    target_id: str
    type: str
    properties: Optional[dict[str, Any]] = None
    weight: Optional[float] = None

    def validate(self) -> None:
        _require_str("source_id", self.source_id)
        _require_str("target_id", self.target_id)
        _require_str("type", self.type)
        _require_properties(self.properties)
        _require_weight(self.weight)


@dataclass
class NodeQuery:
    """Filter for :meth:`GraphStore.query_nodes`."""
    type: Optional[str] = None
    label: Optional[str] = None
    limit: Optional[int] = None
    offset: Optional[int] = None

    def validate(self) -> None:
        _require_optional_str("type", self.type)
        _require_optional_str("label", self.label)
        _require_page(self.limit, self.offset)


@dataclass
class EdgeQuery:
    """Filter for :meth:`GraphStore.query_edges`."""
    source_id: Optional[str] = None
    target_id: Optional[str] = None
    type: Optional[str] = None
    limit: Optional[int] = None
    offset: Optional[int] = None

    def validate(self) -> None:
        _require_optional_str("source_id", self.source_id)
        _require_optional_str("target_id", self.target_id)
        _require_optional_str("type", self.type)
        _require_page(self.limit, self.offset)


@dataclass
class DeleteResult:
    """Outcome of deleting a node: how many incident edges went with it."""
    deleted_edges: int


@dataclass
class Neighbor:
    """A neighbouring node together with the edge that connects it."""
    node: Node
    edge: Edge


@dataclass
class Subgraph:
    nodes: list[Node] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)


@dataclass
class VectorMatch:
    node: Node
    similarity: float


@dataclass
class HybridMatch:
    node: Node
    similarity: float
    vector_similarity: float
    structural_similarity: float


@dataclass
class SimilarityPair:
    node1_id: str
    node1_label: str
    node2_id: str
    node2_label: str
    similarity: float
    percentage: str


@dataclass
class SimilarityAnalysis:
    model: str
    node_count: int
    similarities: list[SimilarityPair] = field(default_factory=list)


@dataclass
class EmbeddingGenerationResult:
    processed: int = 0
    errors: int = 0


@dataclass
class NodeMergeOptions:
    merge_strategy: str = "merge"
    similarity_threshold: float = 0.8
    match_fields: tuple[str, ...] = ("type", "label")
    use_vector_similarity: bool = True
    embedding_model: Optional[str] = None

    def validate(self) -> None:
        _require_strategy(self.merge_strategy)
        if not isinstance(self.similarity_threshold, (int, float)):
            raise MalformedInputError("similarity_threshold must be a number")
        if not self.match_fields:
            raise MalformedInputError("match_fields must name at least one field")
        for name in self.match_fields:
            if name not in MATCH_FIELDS:
                raise MalformedInputError(
                    f"Unknown match field {name!r}; expected one of {MATCH_FIELDS}"
                )


@dataclass
class EdgeMergeOptions:
    merge_strategy: str = "merge"
    allow_multiple_types: bool = False

    def validate(self) -> None:
        _require_strategy(self.merge_strategy)


@dataclass
class NodeMergeResult:
    node: Node
    action: str


@dataclass
class EdgeMergeResult:
    edge: Edge
    action: str


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def _require_str(name: str, value: Any) -> None:
    if not isinstance(value, str):
        raise MalformedInputError(f"{name} must be a string, got {type(value).__name__}")


def _require_optional_str(name: str, value: Any) -> None:
    if value is not None:
        _require_str(name, value)


def _require_properties(value: Any) -> None:
    if value is None:
        return
    if not isinstance(value, dict):
        raise MalformedInputError("properties must be a mapping")
    for key in value:
        if not isinstance(key, str):
            raise MalformedInputError("property keys must be strings")
    try:
        json.dumps(value, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise MalformedInputError(f"properties must be JSON-compatible: {exc}") from exc


def _require_weight(value: Any) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedInputError("weight must be a number")


def _require_page(limit: Any, offset: Any) -> None:
    for name, value in (("limit", limit), ("offset", offset)):
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise MalformedInputError(f"{name} must be a non-negative integer")


def _require_strategy(strategy: str) -> None:
    if strategy not in MERGE_STRATEGIES:
        raise MalformedInputError(
            f"Unknown merge strategy {strategy!r}; expected one of {MERGE_STRATEGIES}"
        )
