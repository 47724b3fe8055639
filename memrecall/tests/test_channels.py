"""Tests for the keyword and semantic retrieval channels."""

import math

import pytest

from memrecall.daemon.channels import KeywordChannel, SemanticChannel
from memrecall.daemon.channels.keyword import saturate_scores
from memrecall.daemon.channels.semantic import clamp_similarities
from memrecall.daemon.models import Channel, SearchFilters
from memrecall.tests.fakes import FakeEmbedder, FakeKeywordIndex, FakeVectorStore, make_record


class TestSaturateScores:
    def test_median_scaled_tanh(self):
        hits = saturate_scores([
            {"record_id": "a", "score": 10.0},
            {"record_id": "b", "score": 5.0},
            {"record_id": "c", "score": 20.0},
        ])
        assert [h.record_id for h in hits] == ["c", "a", "b"]
        assert hits[0].score == pytest.approx(math.tanh(2.0))
        assert hits[1].score == pytest.approx(math.tanh(1.0))
        assert hits[2].score == pytest.approx(math.tanh(0.5))

    def test_unit_range(self):
        hits = saturate_scores([{"record_id": str(i), "score": 10.0 ** i} for i in range(6)])
        assert all(0.0 <= h.score <= 1.0 for h in hits)
        assert hits[-1].score > 0.0

    def test_non_positive_scores_map_to_zero(self):
        hits = saturate_scores([{"record_id": "a", "score": 0.0}, {"record_id": "b", "score": -3.0}])
        assert [h.score for h in hits] == [0.0, 0.0]

    def test_duplicates_keep_best(self):
        hits = saturate_scores([{"record_id": "a", "score": 1.0}, {"record_id": "a", "score": 4.0}])
        assert len(hits) == 1
        assert hits[0].score == pytest.approx(math.tanh(1.0))


def test_clamp_similarities():
    hits = clamp_similarities([
        {"record_id": "a", "similarity": 1.3},
        {"record_id": "b", "similarity": -0.2},
        {"record_id": "c", "similarity": 0.4},
    ])
    assert [(h.record_id, h.score) for h in hits] == [("a", 1.0), ("c", 0.4), ("b", 0.0)]


class TestKeywordChannel:
    @pytest.mark.asyncio
    async def test_returns_normalized_hits(self):
        channel = KeywordChannel(FakeKeywordIndex({"a": 8.0, "b": 2.0}))
        result = await channel.retrieve("macbook", SearchFilters(), 10)
        assert result.ok
        assert result.channel == Channel.KEYWORD
        assert [h.record_id for h in result.hits] == ["a", "b"]
        assert all(0.0 <= h.score <= 1.0 for h in result.hits)

    @pytest.mark.asyncio
    async def test_respects_limit(self):
        channel = KeywordChannel(FakeKeywordIndex({str(i): float(i + 1) for i in range(10)}))
        result = await channel.retrieve("q", SearchFilters(), 3)
        assert len(result.hits) == 3

    @pytest.mark.asyncio
    async def test_backend_failure_is_empty_result(self):
        channel = KeywordChannel(FakeKeywordIndex(error=RuntimeError("fts corrupt")))
        result = await channel.retrieve("q", SearchFilters(), 10)
        assert not result.ok
        assert result.hits == []
        assert "fts corrupt" in result.error

    @pytest.mark.asyncio
    async def test_filters_reach_backend(self):
        record = make_record("a", app="Slack")
        index = FakeKeywordIndex({"a": 1.0}, [record])
        filters = SearchFilters(app_hints=("YouTube",))
        result = await KeywordChannel(index).retrieve("q", filters, 10)
        assert result.hits == []
        assert index.calls[0][1] is filters


class TestSemanticChannel:
    @pytest.mark.asyncio
    async def test_returns_clamped_hits(self):
        channel = SemanticChannel(FakeEmbedder(), FakeVectorStore({"a": 0.9, "b": 1.5}))
        result = await channel.retrieve("laptop", SearchFilters(), 10)
        assert result.ok
        assert [(h.record_id, h.score) for h in result.hits] == [("b", 1.0), ("a", 0.9)]

    @pytest.mark.asyncio
    async def test_unconfigured_channel_is_unavailable(self):
        channel = SemanticChannel(None, None)
        assert channel.available is False
        result = await channel.retrieve("laptop", SearchFilters(), 10)
        assert not result.ok
        assert result.hits == []

    @pytest.mark.asyncio
    async def test_embedder_failure_is_empty_result(self):
        channel = SemanticChannel(FakeEmbedder(error=RuntimeError("model missing")), FakeVectorStore({"a": 0.9}))
        result = await channel.retrieve("laptop", SearchFilters(), 10)
        assert not result.ok
        assert "model missing" in result.error

    @pytest.mark.asyncio
    async def test_store_failure_is_empty_result(self):
        channel = SemanticChannel(FakeEmbedder(), FakeVectorStore(error=OSError("index locked")))
        result = await channel.retrieve("laptop", SearchFilters(), 10)
        assert not result.ok

    @pytest.mark.asyncio
    async def test_query_embeddings_are_cached(self):
        embedder = FakeEmbedder()
        channel = SemanticChannel(embedder, FakeVectorStore({"a": 0.9}))
        await channel.retrieve("Laptop  reviews", SearchFilters(), 10)
        await channel.retrieve("laptop reviews", SearchFilters(), 10)
        assert len(embedder.calls) == 1
        assert channel.cached_embeddings == 1
