"""
Unit tests for atlas_graph.similarity
"""

from __future__ import annotations

import re

import pytest

from atlas_graph.embedding import EmbeddingProviderRegistry
from atlas_graph.errors import MalformedInputError
from atlas_graph.models import NodeCreate
from atlas_graph.similarity import (
    SimilarityEngine, cosine_similarity, levenshtein_distance, node_text,
    property_similarity, string_similarity, structural_similarity,
)
from atlas_graph.store import GraphStore


# ---------------------------------------------------------------------------
# Scoring functions
# ---------------------------------------------------------------------------

class TestCosineSimilarity:
    def test_identical_vectors(self):
        assert cosine_similarity([0.3, 0.4, 1.2], [0.3, 0.4, 1.2]) == pytest.approx(1.0)

    def test_length_mismatch_is_zero(self):
        assert cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0]) == 0.0

    def test_zero_vector_is_zero(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 2.0]) == 0.0

    def test_orthogonal_and_opposite(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
        assert cosine_similarity([1.0, 2.0], [-1.0, -2.0]) == pytest.approx(-1.0)


class TestStringSimilarity:
    def test_levenshtein(self):
        assert levenshtein_distance("kitten", "sitting") == 3
        assert levenshtein_distance("", "abc") == 3
        assert levenshtein_distance("same", "same") == 0

    def test_normalised(self):
        assert string_similarity("", "") == 1.0
        assert string_similarity("abc", "") == 0.0
        assert string_similarity("abc", "abd") == pytest.approx(2 / 3)


class TestPropertySimilarity:
    def test_fraction_of_union(self):
        assert property_similarity({"a": 1, "b": 2}, {"a": 1, "b": 3, "c": 4}) == pytest.approx(1 / 3)

    def test_both_empty_is_zero(self):
        assert property_similarity({}, None) == 0.0

    def test_deep_equality(self):
        p = {"cfg": {"tags": ["x", "y"], "n": 1}}
        assert property_similarity(p, {"cfg": {"n": 1, "tags": ["x", "y"]}}) == 1.0
        assert property_similarity(p, {"cfg": {"n": 1, "tags": ["y", "x"]}}) == 0.0

    def test_booleans_differ_from_numbers(self):
        assert property_similarity({"flag": True}, {"flag": 1}) == 0.0


class TestStructuralSimilarity:
    def test_identical_records(self):
        a = NodeCreate("Component", "Login", {"framework": "React"})
        assert structural_similarity(a, a) == pytest.approx(1.0)

    def test_weighted_components(self):
        a = NodeCreate("T", "abc")
        b = NodeCreate("U", "abd")
        assert structural_similarity(a, b) == pytest.approx(0.4 * 2 / 3)

    def test_match_fields_renormalise(self):
        a = NodeCreate("T", "abc", {"x": 1})
        b = NodeCreate("T", "abd", {"y": 2})
        expected = (0.3 + 0.4 * 2 / 3) / 0.7
        assert structural_similarity(a, b, ("type", "label")) == pytest.approx(expected)

    def test_label_only(self):
        a = NodeCreate("T", "Login")
        b = NodeCreate("U", "Login")
        assert structural_similarity(a, b, ["label"]) == pytest.approx(1.0)


def test_node_text_flattens_property_values():
    record = NodeCreate("Component", "Login", {"framework": "React",
                                                "features": ["oauth", {"mfa": True}]})
    assert node_text(record) == "Component Login React oauth True"


# ---------------------------------------------------------------------------
# SimilarityEngine
# ---------------------------------------------------------------------------

class TestSimilarityEngine:
    def setup_method(self):
        self.store = GraphStore(":memory:")
        self.engine = SimilarityEngine(self.store, EmbeddingProviderRegistry(test_mode=True))

    def teardown_method(self):
        self.store.close()

    def _seed(self):
        login = self.store.create_node("Component", "LoginButton")
        profile = self.store.create_node("Component", "UserProfile")
        db = self.store.create_node("Database", "ProductCatalog")
        return login, profile, db

    def test_generate_node_embedding(self):
        login, _, _ = self._seed()
        result = self.engine.generate_node_embedding(login.id)
        assert result.model == "simple"
        vector, model = self.store.get_node_embedding(login.id)
        assert model == "simple"
        assert vector == pytest.approx(result.embedding)

    def test_generate_node_embedding_missing_node(self):
        assert self.engine.generate_node_embedding("missing") is None

    def test_generate_missing_embeddings(self):
        self._seed()
        first = self.engine.generate_missing_embeddings()
        assert (first.processed, first.errors) == (3, 0)
        second = self.engine.generate_missing_embeddings()
        assert (second.processed, second.errors) == (0, 0)

    def test_generate_missing_embeddings_counts_errors(self):
        self._seed()
        result = self.engine.generate_missing_embeddings(model="invalid-model")
        assert (result.processed, result.errors) == (0, 3)
        assert len(self.store.nodes_missing_embeddings()) == 3

    def test_vector_search_ranks_exact_text_first(self):
        login, _, _ = self._seed()
        self.engine.generate_missing_embeddings()
        matches = self.engine.vector_search("Component LoginButton", threshold=0.0)
        assert matches[0].node.id == login.id
        assert matches[0].similarity == pytest.approx(1.0)
        sims = [m.similarity for m in matches]
        assert sims == sorted(sims, reverse=True)

    def test_vector_search_threshold_limit_and_types(self):
        login, _, db = self._seed()
        self.engine.generate_missing_embeddings()
        assert [m.node.id for m in self.engine.vector_search(
            "Component LoginButton", threshold=0.999)] == [login.id]
        assert len(self.engine.vector_search("Component", threshold=0.0, limit=1)) == 1
        typed = self.engine.vector_search("Component LoginButton", threshold=0.0,
                                          node_types=["Database"])
        assert [m.node.id for m in typed] == [db.id]

    def test_vector_search_ignores_unembedded_nodes(self):
        self._seed()
        assert self.engine.vector_search("Component LoginButton", threshold=0.0) == []

    def test_vector_search_rejects_negative_limit(self):
        with pytest.raises(MalformedInputError):
            self.engine.vector_search("x", limit=-1)

    def test_hybrid_search(self):
        login, _, _ = self._seed()
        self.engine.generate_node_embedding(login.id)
        matches = self.engine.hybrid_search(NodeCreate("Component", "LoginButton"))
        assert [m.node.id for m in matches] == [login.id]
        top = matches[0]
        assert top.vector_similarity == pytest.approx(1.0)
        assert top.structural_similarity == pytest.approx(0.7)
        assert top.similarity == pytest.approx(0.6 + 0.4 * 0.7)

    def test_hybrid_search_weights_need_not_sum_to_one(self):
        login, _, _ = self._seed()
        matches = self.engine.hybrid_search(
            NodeCreate("Component", "LoginButton"),
            vector_weight=0.0, traditional_weight=2.0, threshold=1.0,
        )
        assert [m.node.id for m in matches] == [login.id]
        assert matches[0].similarity == pytest.approx(1.4)

    def test_analyze_similarity(self):
        a = self.store.create_node("Service", "Auth")
        b = self.store.create_node("Service", "Auth")
        c = self.store.create_node("Database", "Orders")
        analysis = self.engine.analyze_similarity([a.id, b.id, c.id])
        assert analysis.model == "simple"
        assert analysis.node_count == 3
        assert len(analysis.similarities) == 3
        top = analysis.similarities[0]
        assert {top.node1_id, top.node2_id} == {a.id, b.id}
        assert top.percentage == "100.0%"
        sims = [p.similarity for p in analysis.similarities]
        assert sims == sorted(sims, reverse=True)
        assert all(re.fullmatch(r"-?\d+\.\d%", p.percentage) for p in analysis.similarities)

    def test_analyze_similarity_needs_two_nodes(self):
        a = self.store.create_node("Service", "Auth")
        with pytest.raises(MalformedInputError):
            self.engine.analyze_similarity([a.id])
        with pytest.raises(MalformedInputError):
            self.engine.analyze_similarity([a.id, a.id])
