"""
Integration tests for atlas_graph.engine.KnowledgeGraph, including the
stats and export views.
"""

from __future__ import annotations

import csv
import io
import json
import logging
from unittest.mock import patch

import networkx as nx
import pytest
import requests

from atlas_graph import (
    Config, EdgeCreate, EdgeMergeOptions, KnowledgeGraph, MalformedInputError,
    MergeAction, NodeCreate, NodeQuery, UnsupportedModelError,
)
from atlas_graph.log import LOGGER_NAME


@pytest.fixture
def kg(monkeypatch):
    for var in ("EMBEDDING_PROVIDER", "EMBEDDING_MODEL", "KNOWLEDGE_GRAPH_DB", "ATLAS_GRAPH_ENV"):
        monkeypatch.delenv(var, raising=False)
    graph = KnowledgeGraph(db_path=":memory:", config=Config())
    yield graph
    graph.close()


def _login_auth(kg):
    a = kg.create_node("Component", "Login", {"framework": "React"})
    b = kg.create_node("Service", "Auth")
    return a, b


# ---------------------------------------------------------------------------
# CRUD and traversal through the facade
# ---------------------------------------------------------------------------

class TestKnowledgeGraphFacade:
    def test_node_and_edge_crud(self, kg):
        a, b = _login_auth(kg)
        edge = kg.create_edge(a.id, b.id, "calls", weight=0.8)
        assert kg.get_node(a.id).label == "Login"
        assert kg.get_edge(edge.id).weight == 0.8
        assert [n.label for n in kg.query_nodes(NodeQuery(type="Service"))] == ["Auth"]
        assert [n.label for n in kg.search_nodes("LOG")] == ["Login"]
        assert kg.update_node(a.id, label="SignIn").label == "SignIn"
        assert kg.update_edge(edge.id, type="invokes").type == "invokes"
        assert kg.update_edge(edge.id).weight == 0.8
        assert kg.delete_node(b.id).deleted_edges == 1
        assert kg.get_edge(edge.id) is None

    def test_bulk_operations(self, kg):
        nodes = kg.bulk_create_nodes([NodeCreate("T", "a"), NodeCreate("T", "b")])
        edges = kg.bulk_create_edges([EdgeCreate(nodes[0].id, nodes[1].id, "next")])
        assert len(kg.query_edges()) == 1
        assert kg.delete_edge(edges[0].id).id == edges[0].id

    def test_traversal(self, kg):
        a, b = _login_auth(kg)
        kg.create_edge(a.id, b.id, "calls")
        assert [n.node.id for n in kg.get_neighbors(a.id, "out")] == [b.id]
        assert [n.id for n in kg.find_path(a.id, b.id)] == [a.id, b.id]
        assert len(kg.get_subgraph([a.id], depth=1).nodes) == 2

    def test_embeddings_and_search(self, kg):
        a, _ = _login_auth(kg)
        assert kg.generate_missing_embeddings().processed == 2
        assert kg.generate_node_embedding(a.id).provider == "simple"
        matches = kg.vector_search("Component Login React")
        assert matches[0].node.id == a.id
        hybrid = kg.hybrid_search(NodeCreate("Component", "Login", {"framework": "React"}))
        assert hybrid[0].node.id == a.id
        analysis = kg.analyze_similarity([n.id for n in kg.query_nodes()])
        assert analysis.node_count == 2

    def test_configured_embedding_model_is_used(self, monkeypatch):
        for var in ("EMBEDDING_PROVIDER", "KNOWLEDGE_GRAPH_DB", "ATLAS_GRAPH_ENV"):
            monkeypatch.delenv(var, raising=False)
        monkeypatch.setenv("EMBEDDING_MODEL", "simple-js")
        with KnowledgeGraph(db_path=":memory:", config=Config()) as graph:
            node = graph.create_node("Service", "Auth")
            assert graph.generate_node_embedding(node.id).model == "simple-js"

        monkeypatch.setenv("EMBEDDING_MODEL", "does-not-exist")
        with KnowledgeGraph(db_path=":memory:", config=Config()) as graph:
            node = graph.create_node("Service", "Auth")
            with pytest.raises(UnsupportedModelError, match="does-not-exist"):
                graph.generate_node_embedding(node.id)

    def test_provider_info_lists_both_backends(self, kg):
        with patch("atlas_graph.embedding.ollama.requests.get",
                   side_effect=requests.exceptions.ConnectionError("down")):
            info = {p.name: p for p in kg.provider_info()}
        assert set(info) == {"simple", "ollama"}
        assert info["simple"].available is True
        assert info["ollama"].available is False

    def test_login_auth_edge_merge_scenario(self, kg):
        a, b = _login_auth(kg)
        kg.create_edge(a.id, b.id, "calls", weight=0.8)
        result = kg.create_or_merge_edge(
            EdgeCreate(a.id, b.id, "calls", {"timeout": 5000}, weight=1.0),
            EdgeMergeOptions(merge_strategy="merge"),
        )
        assert result.action == MergeAction.MERGED
        assert result.edge.weight == pytest.approx(0.9)
        assert result.edge.properties["timeout"] == 5000

    def test_create_or_merge_node(self, kg):
        first = kg.create_or_merge_node(NodeCreate("Service", "Billing"))
        again = kg.create_or_merge_node(NodeCreate("Service", "Billing"))
        assert first.action == MergeAction.CREATED
        assert again.action == MergeAction.MERGED
        assert again.node.id == first.node.id

    def test_context_manager_closes_store(self, monkeypatch, tmp_path):
        monkeypatch.delenv("KNOWLEDGE_GRAPH_DB", raising=False)
        path = str(tmp_path / "kg.db")
        with KnowledgeGraph(db_path=path, config=Config()) as graph:
            node = graph.create_node("T", "persisted")
        with KnowledgeGraph(db_path=path, config=Config()) as graph:
            assert graph.get_node(node.id).label == "persisted"

    def test_from_config_with_logging(self, monkeypatch, tmp_path):
        for var in ("KNOWLEDGE_GRAPH_DB", "LOG_DIR", "EMBEDDING_PROVIDER"):
            monkeypatch.delenv(var, raising=False)
        config = Config({"db_path": str(tmp_path / "kg.db"),
                         "log_dir": str(tmp_path / "logs")})
        logger = logging.getLogger(LOGGER_NAME)
        handlers_before = list(logger.handlers)
        try:
            with KnowledgeGraph.from_config(config, configure_logging=True) as graph:
                assert graph.store.db_path == str(tmp_path / "kg.db")
            assert list((tmp_path / "logs").glob("atlas_graph_*.log"))
        finally:
            for handler in logger.handlers[:]:
                if handler not in handlers_before:
                    handler.close()
                    logger.removeHandler(handler)

    def test_invalid_config_rejected(self, monkeypatch):
        monkeypatch.delenv("EMBEDDING_PROVIDER", raising=False)
        with pytest.raises(MalformedInputError):
            KnowledgeGraph(db_path=":memory:", config=Config({"embedding_provider": "nope"}))


# ---------------------------------------------------------------------------
# Stats and export
# ---------------------------------------------------------------------------

class TestStatsAndExport:
    def _populate(self, kg):
        a, b = _login_auth(kg)
        c = kg.create_node("Database", "Users")
        kg.create_edge(a.id, b.id, "calls")
        kg.create_edge(b.id, c.id, "reads")
        kg.create_edge(b.id, c.id, "reads")
        lonely = kg.create_node("Service", "Lonely")
        return a, b, c, lonely

    def test_graph_stats(self, kg):
        self._populate(kg)
        stats = kg.graph_stats()
        assert stats["total_nodes"] == 4
        assert stats["total_edges"] == 3
        assert stats["nodes_by_type"] == {"Component": 1, "Service": 2, "Database": 1}
        assert stats["edges_by_type"] == {"calls": 1, "reads": 2}
        assert stats["avg_edges_per_node"] == pytest.approx(0.75)
        assert stats["weakly_connected_components"] == 2

    def test_graph_stats_empty(self, kg):
        stats = kg.graph_stats()
        assert stats["total_nodes"] == 0
        assert stats["avg_edges_per_node"] == 0.0
        assert stats["weakly_connected_components"] == 0

    def test_to_networkx_keeps_parallel_edges(self, kg):
        a, b, c, _ = self._populate(kg)
        g = kg.to_networkx()
        assert isinstance(g, nx.MultiDiGraph)
        assert g.number_of_edges(b.id, c.id) == 2
        assert g.nodes[a.id]["label"] == "Login"

    def test_export_json(self, kg):
        self._populate(kg)
        data = json.loads(kg.export_graph("json"))
        assert len(data["nodes"]) == 4
        assert len(data["edges"]) == 3
        assert {"id", "type", "label", "properties"} <= set(data["nodes"][0])

    def test_export_json_filtered_by_type(self, kg):
        self._populate(kg)
        data = json.loads(kg.export_graph("json", node_types=["Service", "Database"]))
        assert {n["type"] for n in data["nodes"]} == {"Service", "Database"}
        assert [e["type"] for e in data["edges"]] == ["reads", "reads"]

    def test_export_without_edges(self, kg):
        self._populate(kg)
        data = json.loads(kg.export_graph("json", include_edges=False))
        assert data["edges"] == []

    def test_export_dot(self, kg):
        a, b, _, _ = self._populate(kg)
        kg.update_node(a.id, label='Say "hi"')
        dot = kg.export_graph("dot")
        assert dot.startswith("digraph KnowledgeGraph {")
        assert dot.endswith("}")
        assert f'"{a.id}" -> "{b.id}" [label="calls"];' in dot
        assert 'label="Say \\"hi\\""' in dot

    def test_export_csv(self, kg):
        self._populate(kg)
        rows = list(csv.reader(io.StringIO(kg.export_graph("csv"))))
        assert rows[0] == ["Type", "ID", "Label", "SourceID", "TargetID", "EdgeType"]
        assert sum(1 for r in rows[1:] if r[0] == "NODE") == 4
        assert sum(1 for r in rows[1:] if r[0] == "EDGE") == 3

    def test_unknown_format(self, kg):
        with pytest.raises(MalformedInputError):
            kg.export_graph("graphml")
