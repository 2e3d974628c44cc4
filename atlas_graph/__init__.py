"""
atlas_graph: local knowledge-graph engine.

Public API for library usage::

    from atlas_graph import KnowledgeGraph, NodeCreate

    with KnowledgeGraph(db_path="graph.db") as kg:
        login = kg.create_node("Component", "Login")
        result = kg.create_or_merge_node(NodeCreate("Component", "Login"))
"""

from .config import Config
from .engine import KnowledgeGraph
from .errors import (
    EmbeddingError, GraphError, MalformedInputError, ProviderUnavailableError,
    ReferentialIntegrityError, UnsupportedModelError,
)
from .models import (
    EdgeCreate, EdgeMergeOptions, EdgeQuery, MergeAction, NodeCreate,
    NodeMergeOptions, NodeQuery,
)

__version__ = "0.1.0"

__all__ = [
    "KnowledgeGraph", "Config",
    "NodeCreate", "EdgeCreate", "NodeQuery", "EdgeQuery",
    "NodeMergeOptions", "EdgeMergeOptions", "MergeAction",
    "GraphError", "ReferentialIntegrityError", "MalformedInputError",
    "EmbeddingError", "UnsupportedModelError", "ProviderUnavailableError",
]
