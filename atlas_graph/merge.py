"""
Deduplicating upserts for nodes and edges.

A candidate record is matched against what is already stored; depending on
the merge strategy the match is left alone (``skip``), overwritten
(``update``) or deep-merged with the candidate (``merge``).  Without a
match the candidate is created.
"""

from __future__ import annotations

import logging
from typing import Optional

from .errors import EmbeddingError
from .models import (
    Edge, EdgeCreate, EdgeMergeOptions, EdgeMergeResult, EdgeQuery, MergeAction,
    Node, NodeCreate, NodeMergeOptions, NodeMergeResult,
)
from .similarity import SimilarityEngine, node_text
from .store import GraphStore
from .values import merge_properties

logger = logging.getLogger(__name__)

__all__ = ["MergeEngine", "merge_properties", "merge_weights"]


def merge_weights(existing: Optional[float], incoming: Optional[float]) -> Optional[float]:
    """Mean of both weights when both are set, otherwise whichever is set."""
    if existing is not None and incoming is not None:
        return (existing + incoming) / 2
    return incoming if incoming is not None else existing


class MergeEngine:
    """
    Strategy-driven create-or-merge over a :class:`GraphStore`.

    Parameters
    ----------
    store:
        Store that matches are looked up in and written to.
    similarity:
        Engine used to find the best existing match for a node candidate.
    """

    def __init__(self, store: GraphStore, similarity: SimilarityEngine) -> None:
        self._store = store
        self._similarity = similarity

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    def create_or_merge_node(
        self,
        candidate: NodeCreate,
        options: Optional[NodeMergeOptions] = None,
    ) -> NodeMergeResult:
        """
        Create *candidate* unless a similar node already exists.

        With ``use_vector_similarity`` the best match is the nearest cached
        embedding; if embedding the candidate fails, structural similarity
        over ``match_fields`` is used instead.  Matches below
        ``similarity_threshold`` are ignored.
        """
        options = options or NodeMergeOptions()
        candidate.validate()
        options.validate()

        embedded = None
        match: Optional[Node] = None
        if options.use_vector_similarity:
            try:
                embedded = self._similarity.embed_text(
                    node_text(candidate), model=options.embedding_model
                )
            except EmbeddingError as exc:
                logger.warning("Vector match unavailable, using structural match: %s", exc)
            else:
                hits = self._similarity.search_by_embedding(
                    embedded, limit=1, threshold=options.similarity_threshold
                )
                match = hits[0].node if hits else None

        if embedded is None:
            hits = self._similarity.find_structural_matches(
                candidate, options.similarity_threshold, options.match_fields
            )
            match = hits[0][0] if hits else None

        if match is None:
            node = self._store.create_node(candidate.type, candidate.label, candidate.properties)
            if embedded is not None:
                # Candidate text is the new node's text, so its vector can be cached as is.
                self._store.set_node_embedding(node.id, embedded.embedding, embedded.model)
            logger.debug("Created node %s (%s)", node.id, node.label)
            return NodeMergeResult(node=node, action=MergeAction.CREATED)

        return self._resolve_node(match, candidate, options.merge_strategy)

    def _resolve_node(self, existing: Node, candidate: NodeCreate,
                      strategy: str) -> NodeMergeResult:
        if strategy == "skip":
            return NodeMergeResult(node=existing, action=MergeAction.SKIPPED)
        if strategy == "update":
            node = self._store.replace_node(
                existing.id, candidate.type, candidate.label, candidate.properties or {}
            )
        else:
            node = self._store.update_node(
                existing.id,
                properties=merge_properties(existing.properties, candidate.properties),
            )
        logger.debug("Merged candidate %r into node %s (%s)",
                     candidate.label, existing.id, strategy)
        return NodeMergeResult(node=node or existing, action=MergeAction.MERGED)

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def create_or_merge_edge(
        self,
        candidate: EdgeCreate,
        options: Optional[EdgeMergeOptions] = None,
    ) -> EdgeMergeResult:
        """
        Create *candidate* unless an edge with the same source, target and
        type exists.

        With ``allow_multiple_types`` no lookup is made and a new edge is
        always created.
        """
        options = options or EdgeMergeOptions()
        candidate.validate()
        options.validate()

        existing: Optional[Edge] = None
        if not options.allow_multiple_types:
            found = self._store.query_edges(EdgeQuery(
                source_id=candidate.source_id,
                target_id=candidate.target_id,
                type=candidate.type,
                limit=1,
            ))
            existing = found[0] if found else None

        if existing is None:
            edge = self._store.create_edge(
                candidate.source_id, candidate.target_id, candidate.type,
                candidate.properties, candidate.weight,
            )
            return EdgeMergeResult(edge=edge, action=MergeAction.CREATED)

        strategy = options.merge_strategy
        if strategy == "skip":
            return EdgeMergeResult(edge=existing, action=MergeAction.SKIPPED)
        if strategy == "update":
            properties = candidate.properties or {}
            weight = candidate.weight if candidate.weight is not None else existing.weight
        else:
            properties = merge_properties(existing.properties, candidate.properties)
            weight = merge_weights(existing.weight, candidate.weight)
        edge = self._store.update_edge(existing.id, properties=properties, weight=weight)
        logger.debug("Merged %s edge %s -> %s (%s)",
                     candidate.type, candidate.source_id, candidate.target_id, strategy)
        return EdgeMergeResult(edge=edge or existing, action=MergeAction.MERGED)
