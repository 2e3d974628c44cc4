"""
Structural and vector similarity between graph nodes.

Structural similarity compares type, label (edit distance) and properties;
vector similarity compares cached node embeddings with an embedding of the
query.  Hybrid search blends the two.
"""

from __future__ import annotations

import itertools
import logging
from typing import Any, Optional, Sequence, Union

import numpy as np
from tqdm import tqdm

from .embedding.base import EmbeddingResult
from .embedding.registry import EmbeddingProviderRegistry
from .errors import EmbeddingError, MalformedInputError
from .models import (
    MATCH_FIELDS, EmbeddingGenerationResult, HybridMatch, Node, NodeCreate,
    SimilarityAnalysis, SimilarityPair, VectorMatch,
)
from .store import GraphStore
from .values import flatten_text, values_equal

logger = logging.getLogger(__name__)

TYPE_WEIGHT = 0.3
LABEL_WEIGHT = 0.4
PROPERTY_WEIGHT = 0.3

NodeLike = Union[Node, NodeCreate]


# ---------------------------------------------------------------------------
# Scoring functions
# ---------------------------------------------------------------------------

def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between *a* and *b*.

    Returns 0.0 when the lengths differ or either vector has zero magnitude.
    """
    if len(a) != len(b) or len(a) == 0:
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    sim = float(np.dot(va, vb) / (norm_a * norm_b))
    return max(-1.0, min(1.0, sim))


def levenshtein_distance(s1: str, s2: str) -> int:
    if len(s1) < len(s2):
        s1, s2 = s2, s1
    previous = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1, start=1):
        current = [i]
        for j, c2 in enumerate(s2, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (c1 != c2),
            ))
        previous = current
    return previous[-1]


def string_similarity(s1: str, s2: str) -> float:
    """``(maxLen - editDistance) / maxLen``; two empty strings score 1.0."""
    longest = max(len(s1), len(s2))
    if longest == 0:
        return 1.0
    return (longest - levenshtein_distance(s1, s2)) / longest


def property_similarity(p1: Optional[dict], p2: Optional[dict]) -> float:
    """Fraction of the union of keys whose values are deeply equal."""
    p1 = p1 or {}
    p2 = p2 or {}
    keys = set(p1) | set(p2)
    if not keys:
        return 0.0
    matches = sum(
        1 for k in keys
        if k in p1 and k in p2 and values_equal(p1[k], p2[k])
    )
    return matches / len(keys)


def structural_similarity(
    a: NodeLike,
    b: NodeLike,
    match_fields: Optional[Sequence[str]] = None,
) -> float:
    """
    Weighted type/label/property similarity in ``[0, 1]``.

    Without *match_fields* the score is ``0.3 * sameType + 0.4 * labelSim
    + 0.3 * propSim``.  With *match_fields*, only the named components are
    scored and the result is divided by their combined weight.
    """
    fields = MATCH_FIELDS if match_fields is None else tuple(match_fields)
    score = 0.0
    total = 0.0
    if "type" in fields:
        score += TYPE_WEIGHT * (1.0 if a.type == b.type else 0.0)
        total += TYPE_WEIGHT
    if "label" in fields:
        score += LABEL_WEIGHT * string_similarity(a.label, b.label)
        total += LABEL_WEIGHT
    if "properties" in fields:
        score += PROPERTY_WEIGHT * property_similarity(a.properties, b.properties)
        total += PROPERTY_WEIGHT
    if match_fields is not None:
        if total == 0:
            return 0.0
        score /= total
    return min(score, 1.0)


def node_text(record: NodeLike) -> str:
    """Text used to embed a node: type, label, then property values."""
    parts = [record.type, record.label]
    parts.extend(flatten_text(record.properties or {}))
    return " ".join(p for p in parts if p)


# ---------------------------------------------------------------------------
# SimilarityEngine
# ---------------------------------------------------------------------------

class SimilarityEngine:
    """
    Embedding maintenance and similarity search over a graph store.

    Parameters
    ----------
    store:
        Graph store holding nodes and their cached embeddings.
    registry:
        Provider registry used to embed nodes and queries.
    """

    def __init__(self, store: GraphStore, registry: EmbeddingProviderRegistry) -> None:
        self._store = store
        self._registry = registry

    @property
    def registry(self) -> EmbeddingProviderRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Embedding maintenance
    # ------------------------------------------------------------------

    def embed_text(self, text: str, model: Optional[str] = None,
                   provider: Optional[str] = None) -> EmbeddingResult:
        return self._registry.generate_embedding(text, provider=provider, model=model)

    def generate_node_embedding(
        self,
        node_id: str,
        model: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> Optional[EmbeddingResult]:
        """
        Embed a node's text and cache the vector on the node.

        Returns None if the node does not exist.  Embedding failures
        propagate (:class:`~atlas_graph.errors.EmbeddingError`).
        """
        node = self._store.get_node(node_id)
        if node is None:
            return None
        result = self.embed_text(node_text(node), model=model, provider=provider)
        self._store.set_node_embedding(node_id, result.embedding, result.model)
        logger.debug("Embedded node %s with %s/%s (%dD)",
                     node_id, result.provider, result.model, result.dimensions)
        return result

    def generate_missing_embeddings(
        self,
        model: Optional[str] = None,
        provider: Optional[str] = None,
        show_progress: bool = False,
    ) -> EmbeddingGenerationResult:
        """
        Embed every node that has no cached embedding.

        A node whose embedding fails is counted in ``errors`` and skipped;
        the rest are still processed.
        """
        result = EmbeddingGenerationResult()
        pending = self._store.nodes_missing_embeddings()
        for node in tqdm(pending, desc="Embedding nodes", unit="node",
                         disable=not show_progress):
            try:
                embedded = self.embed_text(node_text(node), model=model, provider=provider)
            except EmbeddingError as exc:
                logger.warning("Embedding failed for node %s: %s", node.id, exc)
                result.errors += 1
                continue
            self._store.set_node_embedding(node.id, embedded.embedding, embedded.model)
            result.processed += 1
        logger.info("Generated %d embedding(s), %d error(s)", result.processed, result.errors)
        return result

    # ------------------------------------------------------------------
    # Searches
    # ------------------------------------------------------------------

    def vector_search(
        self,
        query: str,
        limit: int = 20,
        threshold: float = 0.1,
        model: Optional[str] = None,
        node_types: Optional[list[str]] = None,
        provider: Optional[str] = None,
    ) -> list[VectorMatch]:
        """
        Rank nodes by cosine similarity between *query* and their cached
        embeddings.

        Only nodes embedded with the same model as the query are compared.
        Matches below *threshold* are dropped; the rest are sorted
        best-first and truncated to *limit*.
        """
        if not isinstance(query, str):
            raise MalformedInputError("query must be a string")
        _require_limit(limit)
        _require_number("threshold", threshold)
        if node_types is not None and not isinstance(node_types, (list, tuple)):
            raise MalformedInputError("node_types must be a list of strings")

        embedded = self.embed_text(query, model=model, provider=provider)
        return self.search_by_embedding(embedded, limit=limit, threshold=threshold,
                                        node_types=node_types)

    def search_by_embedding(
        self,
        embedded: EmbeddingResult,
        limit: int = 20,
        threshold: float = 0.1,
        node_types: Optional[list[str]] = None,
    ) -> list[VectorMatch]:
        """Like :meth:`vector_search` but for an already computed embedding."""
        matches: list[VectorMatch] = []
        for node, vector in self._store.nodes_with_embeddings(
            model=embedded.model, node_types=list(node_types) if node_types else None
        ):
            sim = cosine_similarity(embedded.embedding, vector)
            if sim >= threshold:
                matches.append(VectorMatch(node=node, similarity=sim))
        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches[:limit]

    def hybrid_search(
        self,
        candidate: NodeCreate,
        vector_weight: float = 0.6,
        traditional_weight: float = 0.4,
        threshold: float = 0.7,
        model: Optional[str] = None,
        provider: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[HybridMatch]:
        """
        Score every node as ``vector_weight * vectorSim +
        traditional_weight * structuralSim`` against *candidate*.

        Nodes without an embedding for the query's model have a vector
        similarity of 0.  The weights need not sum to 1.
        """
        candidate.validate()
        _require_number("vector_weight", vector_weight)
        _require_number("traditional_weight", traditional_weight)
        _require_number("threshold", threshold)
        if limit is not None:
            _require_limit(limit)

        embedded = self.embed_text(node_text(candidate), model=model, provider=provider)
        vectors = {
            node.id: vector
            for node, vector in self._store.nodes_with_embeddings(model=embedded.model)
        }
        matches: list[HybridMatch] = []
        for node in self._store.query_nodes():
            vector = vectors.get(node.id)
            vec_sim = cosine_similarity(embedded.embedding, vector) if vector else 0.0
            struct_sim = structural_similarity(candidate, node)
            combined = vector_weight * vec_sim + traditional_weight * struct_sim
            if combined >= threshold:
                matches.append(HybridMatch(
                    node=node,
                    similarity=combined,
                    vector_similarity=vec_sim,
                    structural_similarity=struct_sim,
                ))
        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches if limit is None else matches[:limit]

    def find_structural_matches(
        self,
        candidate: NodeCreate,
        threshold: float,
        match_fields: Optional[Sequence[str]] = None,
    ) -> list[tuple[Node, float]]:
        """All nodes scoring at least *threshold*, best first."""
        scored = [
            (node, structural_similarity(candidate, node, match_fields))
            for node in self._store.query_nodes()
        ]
        matches = [(node, score) for node, score in scored if score >= threshold]
        matches.sort(key=lambda m: m[1], reverse=True)
        return matches

    def analyze_similarity(
        self,
        node_ids: list[str],
        model: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> SimilarityAnalysis:
        """
        Pairwise vector similarity between the given nodes, best pair first.

        Ids that do not name a node are ignored.
        """
        if isinstance(node_ids, str) or not isinstance(node_ids, (list, tuple)):
            raise MalformedInputError("node_ids must be a list of node ids")
        unique_ids = list(dict.fromkeys(node_ids))
        if len(unique_ids) < 2:
            raise MalformedInputError("At least 2 nodes required for similarity analysis")

        found = self._store.get_nodes(unique_ids)
        nodes = [found[nid] for nid in unique_ids if nid in found]
        vectors: dict[str, list[float]] = {}
        used_model = model or ""
        for node in nodes:
            embedded = self.embed_text(node_text(node), model=model, provider=provider)
            vectors[node.id] = embedded.embedding
            used_model = embedded.model

        pairs: list[SimilarityPair] = []
        for n1, n2 in itertools.combinations(nodes, 2):
            sim = cosine_similarity(vectors[n1.id], vectors[n2.id])
            pairs.append(SimilarityPair(
                node1_id=n1.id, node1_label=n1.label,
                node2_id=n2.id, node2_label=n2.label,
                similarity=sim,
                percentage=f"{sim * 100:.1f}%",
            ))
        pairs.sort(key=lambda p: p.similarity, reverse=True)
        return SimilarityAnalysis(model=used_model, node_count=len(nodes), similarities=pairs)


def _require_number(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedInputError(f"{name} must be a number")


def _require_limit(value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise MalformedInputError("limit must be a non-negative integer")
