"""
KnowledgeGraph: the assembled engine.

Owns a :class:`GraphStore`, an :class:`EmbeddingProviderRegistry` and the
traversal, similarity and merge engines built on them, and exposes every
operation through one object.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import networkx as nx

from .config import Config
from .embedding.base import EmbeddingResult, ProviderInfo
from .embedding.registry import EmbeddingProviderRegistry
from .export import export_graph, graph_stats, to_networkx
from .log import setup_logger
from .merge import MergeEngine
from .models import (
    DeleteResult, Edge, EdgeCreate, EdgeMergeOptions, EdgeMergeResult, EdgeQuery,
    EmbeddingGenerationResult, HybridMatch, Neighbor, Node, NodeCreate,
    NodeMergeOptions, NodeMergeResult, NodeQuery, SimilarityAnalysis, Subgraph,
    VectorMatch,
)
from .similarity import SimilarityEngine
from .store import _UNSET, GraphStore
from .traversal import TraversalEngine

logger = logging.getLogger(__name__)


class KnowledgeGraph:
    """
    Local knowledge-graph engine.

    Parameters
    ----------
    db_path:
        SQLite database path (``":memory:"`` for a throwaway graph).
        Defaults to the path resolved from *config*.
    registry:
        Embedding provider registry; built from *config* when omitted.
    config:
        Engine configuration; loaded from the environment and
        ``.atlas-graph.yaml`` when omitted.
    dedupe_frontier:
        Passed to :class:`TraversalEngine`; defaults to the configured value.
    """

    def __init__(
        self,
        db_path: Optional[str] = None,
        registry: Optional[EmbeddingProviderRegistry] = None,
        config: Optional[Config] = None,
        dedupe_frontier: Optional[bool] = None,
    ) -> None:
        self.config = config or Config.load()
        self.config.validate()
        self.store = GraphStore(db_path or self.config.resolve_db_path())
        self.registry = registry or EmbeddingProviderRegistry.from_config(self.config)
        if dedupe_frontier is None:
            dedupe_frontier = self.config.DEDUPE_FRONTIER
        self.traversal = TraversalEngine(self.store, dedupe_frontier=dedupe_frontier)
        self.similarity = SimilarityEngine(self.store, self.registry)
        self.merger = MergeEngine(self.store, self.similarity)
        logger.info("Knowledge graph ready at %s", self.store.db_path)

    @classmethod
    def from_config(
        cls,
        config: Optional[Config] = None,
        configure_logging: bool = False,
    ) -> "KnowledgeGraph":
        """Build an engine from configuration, optionally logging to files."""
        config = config or Config.load()
        if configure_logging:
            setup_logger(config.LOG_DIR)
        return cls(config=config)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        self.store.close()

    def __enter__(self) -> "KnowledgeGraph":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    def create_node(self, type: str, label: str,
                    properties: Optional[dict[str, Any]] = None) -> Node:
        return self.store.create_node(type, label, properties)

    def bulk_create_nodes(self, items: list[NodeCreate]) -> list[Node]:
        return self.store.bulk_create_nodes(items)

    def get_node(self, node_id: str) -> Optional[Node]:
        return self.store.get_node(node_id)

    def query_nodes(self, query: Optional[NodeQuery] = None) -> list[Node]:
        return self.store.query_nodes(query)

    def search_nodes(self, query: str, limit: Optional[int] = None,
                     types: Optional[list[str]] = None) -> list[Node]:
        return self.store.search_nodes(query, limit=limit, types=types)

    def update_node(self, node_id: str, label: Optional[str] = None,
                    properties: Optional[dict[str, Any]] = None) -> Optional[Node]:
        return self.store.update_node(node_id, label=label, properties=properties)

    def delete_node(self, node_id: str) -> Optional[DeleteResult]:
        return self.store.delete_node(node_id)

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def create_edge(self, source_id: str, target_id: str, type: str,
                    properties: Optional[dict[str, Any]] = None,
                    weight: Optional[float] = None) -> Edge:
        return self.store.create_edge(source_id, target_id, type, properties, weight)

    def bulk_create_edges(self, items: list[EdgeCreate]) -> list[Edge]:
        return self.store.bulk_create_edges(items)

    def get_edge(self, edge_id: str) -> Optional[Edge]:
        return self.store.get_edge(edge_id)

    def query_edges(self, query: Optional[EdgeQuery] = None) -> list[Edge]:
        return self.store.query_edges(query)

    def update_edge(self, edge_id: str, type: Optional[str] = None,
                    properties: Optional[dict[str, Any]] = None,
                    weight: Any = _UNSET) -> Optional[Edge]:
        return self.store.update_edge(edge_id, type=type, properties=properties, weight=weight)

    def delete_edge(self, edge_id: str) -> Optional[Edge]:
        return self.store.delete_edge(edge_id)

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    def get_neighbors(self, node_id: str, direction: str = "both") -> list[Neighbor]:
        return self.traversal.get_neighbors(node_id, direction)

    def find_path(self, from_id: str, to_id: str, max_depth: int = 6) -> Optional[list[Node]]:
        return self.traversal.find_path(from_id, to_id, max_depth=max_depth)

    def get_subgraph(self, center_ids: list[str], depth: int = 2,
                     include_edge_types: Optional[list[str]] = None) -> Subgraph:
        return self.traversal.get_subgraph(center_ids, depth=depth,
                                           include_edge_types=include_edge_types)

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------

    def generate_node_embedding(self, node_id: str,
                                model: Optional[str] = None) -> Optional[EmbeddingResult]:
        return self.similarity.generate_node_embedding(node_id, model=model)

    def generate_missing_embeddings(self, model: Optional[str] = None,
                                    show_progress: bool = False) -> EmbeddingGenerationResult:
        return self.similarity.generate_missing_embeddings(model=model,
                                                           show_progress=show_progress)

    def provider_info(self) -> list[ProviderInfo]:
        return self.registry.provider_info()

    # ------------------------------------------------------------------
    # Similarity and merge
    # ------------------------------------------------------------------

    def vector_search(self, query: str, limit: int = 20, threshold: float = 0.1,
                      model: Optional[str] = None,
                      node_types: Optional[list[str]] = None) -> list[VectorMatch]:
        return self.similarity.vector_search(query, limit=limit, threshold=threshold,
                                             model=model, node_types=node_types)

    def hybrid_search(self, candidate: NodeCreate, vector_weight: float = 0.6,
                      traditional_weight: float = 0.4, threshold: float = 0.7,
                      model: Optional[str] = None) -> list[HybridMatch]:
        return self.similarity.hybrid_search(
            candidate, vector_weight=vector_weight, traditional_weight=traditional_weight,
            threshold=threshold, model=model,
        )

    def analyze_similarity(self, node_ids: list[str],
                           model: Optional[str] = None) -> SimilarityAnalysis:
        return self.similarity.analyze_similarity(node_ids, model=model)

    def create_or_merge_node(self, candidate: NodeCreate,
                             options: Optional[NodeMergeOptions] = None) -> NodeMergeResult:
        return self.merger.create_or_merge_node(candidate, options)

    def create_or_merge_edge(self, candidate: EdgeCreate,
                             options: Optional[EdgeMergeOptions] = None) -> EdgeMergeResult:
        return self.merger.create_or_merge_edge(candidate, options)

    # ------------------------------------------------------------------
    # Stats and export
    # ------------------------------------------------------------------

    def graph_stats(self) -> dict:
        return graph_stats(self.store)

    def export_graph(self, format: str = "json", include_nodes: bool = True,
                     include_edges: bool = True,
                     node_types: Optional[list[str]] = None) -> str:
        return export_graph(self.store, format, include_nodes=include_nodes,
                            include_edges=include_edges, node_types=node_types)

    def to_networkx(self) -> nx.MultiDiGraph:
        return to_networkx(self.store)
