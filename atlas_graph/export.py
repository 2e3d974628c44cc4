"""
Whole-graph views: aggregate statistics, text exports and a NetworkX copy.
"""

from __future__ import annotations

import csv
import io
import json
import logging
from typing import Optional

import networkx as nx

from .errors import MalformedInputError
from .models import Edge, Node
from .store import GraphStore

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("json", "dot", "csv")

CSV_HEADER = ["Type", "ID", "Label", "SourceID", "TargetID", "EdgeType"]


def to_networkx(store: GraphStore) -> nx.MultiDiGraph:
    """
    Copy the stored graph into a :class:`networkx.MultiDiGraph`.

    Nodes are keyed by id with ``type``, ``label`` and ``properties``
    attributes; parallel edges are kept apart by using the edge id as key.
    """
    g = nx.MultiDiGraph()
    for node in store.query_nodes():
        g.add_node(node.id, type=node.type, label=node.label, properties=node.properties)
    for edge in store.query_edges():
        g.add_edge(edge.source_id, edge.target_id, key=edge.id,
                   type=edge.type, weight=edge.weight, properties=edge.properties)
    return g


def graph_stats(store: GraphStore) -> dict:
    """
    Return aggregate statistics about the graph.

    Returns
    -------
    dict
        Keys: total_nodes, total_edges, nodes_by_type (dict),
        edges_by_type (dict), avg_edges_per_node, weakly_connected_components.
    """
    g = to_networkx(store)

    by_node: dict[str, int] = {}
    for _, attrs in g.nodes(data=True):
        by_node[attrs["type"]] = by_node.get(attrs["type"], 0) + 1

    by_edge: dict[str, int] = {}
    for _, _, attrs in g.edges(data=True):
        by_edge[attrs["type"]] = by_edge.get(attrs["type"], 0) + 1

    total_nodes = g.number_of_nodes()
    total_edges = g.number_of_edges()
    return {
        "total_nodes": total_nodes,
        "total_edges": total_edges,
        "nodes_by_type": by_node,
        "edges_by_type": by_edge,
        "avg_edges_per_node": total_edges / total_nodes if total_nodes else 0.0,
        "weakly_connected_components": nx.number_weakly_connected_components(g),
    }


def export_graph(
    store: GraphStore,
    format: str = "json",
    include_nodes: bool = True,
    include_edges: bool = True,
    node_types: Optional[list[str]] = None,
) -> str:
    """
    Serialise the graph as ``json``, ``dot`` or ``csv``.

    With *node_types*, only nodes of those types are exported, and only
    edges whose two endpoints are both exported.
    """
    if format not in EXPORT_FORMATS:
        raise MalformedInputError(
            f"Unsupported format: {format!r}; expected one of {EXPORT_FORMATS}"
        )
    if node_types is not None and not isinstance(node_types, (list, tuple)):
        raise MalformedInputError("node_types must be a list of strings")

    all_nodes = store.query_nodes()
    if node_types:
        wanted = set(node_types)
        all_nodes = [n for n in all_nodes if n.type in wanted]
    nodes = all_nodes if include_nodes else []

    edges: list[Edge] = []
    if include_edges:
        edges = store.query_edges()
        if node_types:
            kept = {n.id for n in all_nodes}
            edges = [e for e in edges if e.source_id in kept and e.target_id in kept]

    logger.debug("Exporting %d node(s) and %d edge(s) as %s", len(nodes), len(edges), format)
    if format == "json":
        return _to_json(nodes, edges)
    if format == "dot":
        return _to_dot(nodes, edges)
    return _to_csv(nodes, edges)


def _to_json(nodes: list[Node], edges: list[Edge]) -> str:
    return json.dumps(
        {"nodes": [n.to_dict() for n in nodes], "edges": [e.to_dict() for e in edges]},
        indent=2,
    )


def _dot_quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _to_dot(nodes: list[Node], edges: list[Edge]) -> str:
    lines = ["digraph KnowledgeGraph {"]
    for n in nodes:
        lines.append(
            f"  {_dot_quote(n.id)} [label={_dot_quote(n.label)} type={_dot_quote(n.type)}];"
        )
    for e in edges:
        lines.append(
            f"  {_dot_quote(e.source_id)} -> {_dot_quote(e.target_id)} "
            f"[label={_dot_quote(e.type)}];"
        )
    lines.append("}")
    return "\n".join(lines)


def _to_csv(nodes: list[Node], edges: list[Edge]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for n in nodes:
        writer.writerow(["NODE", n.id, n.label, "", "", ""])
    for e in edges:
        writer.writerow(["EDGE", e.id, "", e.source_id, e.target_id, e.type])
    return buf.getvalue()
