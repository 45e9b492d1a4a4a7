"""
Tests for vectors.py - the local vector index and embedder.
"""

import numpy as np
import pytest
from types import SimpleNamespace

from hitarchive.retry import ConfigError
from hitarchive.vectors import OpenAIEmbedder, VectorIndex, cosine_similarity


def item(external_id, vector, score=0.9, source="github"):
    return {
        "external_id": external_id,
        "source": source,
        "vector": vector,
        "title": f"title-{external_id}",
        "url": f"https://example.test/{external_id}",
        "relevance_score": score,
        "summary": f"summary {external_id}",
    }


@pytest.fixture
def index(tmp_path):
    with VectorIndex(tmp_path / "vectors.db") as idx:
        yield idx


class TestCosine:
    def test_similarity(self):
        matrix = np.array([[1.0, 0.0], [0.0, 1.0], [1.0, 1.0]])
        sims = cosine_similarity(matrix, np.array([1.0, 0.0]))
        assert sims[0] == pytest.approx(1.0)
        assert sims[1] == pytest.approx(0.0)
        assert sims[2] == pytest.approx(0.7071, abs=1e-4)

    def test_zero_vector(self):
        sims = cosine_similarity(np.zeros((1, 2)), np.array([1.0, 0.0]))
        assert sims[0] == 0.0


class TestVectorIndex:
    """Test upsert and search."""

    def test_upsert_and_count(self, index):
        assert index.upsert([item("1", [1, 0]), item("2", [0, 1])]) == 2
        assert index.count() == 2

    def test_upsert_replaces(self, index):
        index.upsert([item("1", [1, 0])])
        index.upsert([dict(item("1", [0, 1]), summary="newer")])

        assert index.count() == 1
        (hit,) = index.search([0, 1], limit=1)
        assert hit["summary"] == "newer"
        assert hit["similarity"] == pytest.approx(1.0)

    def test_search_ranks_by_similarity(self, index):
        index.upsert([item("a", [1, 0]), item("b", [0.9, 0.1]), item("c", [0, 1])])

        hits = index.search([1, 0], limit=2)

        assert [h["external_id"] for h in hits] == ["a", "b"]
        assert hits[0]["title"] == "title-a"

    def test_min_score_filter(self, index):
        index.upsert([item("a", [1, 0], score=0.5), item("b", [0.5, 0.5], score=0.95)])
        hits = index.search([1, 0], min_score=0.9)
        assert [h["external_id"] for h in hits] == ["b"]

    def test_empty_index(self, index):
        assert index.search([1, 0]) == []

    def test_persists(self, tmp_path):
        path = tmp_path / "vectors.db"
        with VectorIndex(path) as idx:
            idx.upsert([item("1", [1, 0])])
        with VectorIndex(path) as idx:
            assert idx.count() == 1


class TestOpenAIEmbedder:
    def test_embed(self):
        calls = []

        def create(model, input):
            calls.append((model, input))
            return SimpleNamespace(data=[SimpleNamespace(embedding=[0.1, 0.2]) for _ in input])

        client = SimpleNamespace(embeddings=SimpleNamespace(create=create))
        embedder = OpenAIEmbedder(None, model="text-embedding-3-small", client=client)

        assert embedder.embed(["a", "b"]) == [[0.1, 0.2], [0.1, 0.2]]
        assert calls == [("text-embedding-3-small", ["a", "b"])]

    def test_missing_key(self):
        with pytest.raises(ConfigError):
            OpenAIEmbedder(None)
