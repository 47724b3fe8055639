"""Tests for result fusion and confidence scoring."""

import itertools
from datetime import timedelta

import pytest

from memrecall.daemon.config import RankingConfig
from memrecall.daemon.fusion import ResultFuser
from memrecall.daemon.models import Candidate, Channel, ChannelHit, StructuredQuery
from memrecall.tests.fakes import NOW, make_record


def records_by_id(*records):
    return {r.id: r for r in records}


@pytest.fixture
def fuser():
    return ResultFuser(RankingConfig())


class TestRecency:
    def test_now_is_one(self, fuser):
        assert fuser.recency_score(NOW, NOW) == 1.0

    def test_half_life(self, fuser):
        assert fuser.recency_score(NOW - timedelta(days=3.5), NOW) == pytest.approx(0.5)

    def test_older_than_half_life_clamps_to_zero(self, fuser):
        assert fuser.recency_score(NOW - timedelta(days=8), NOW) == 0.0

    def test_beyond_horizon(self, fuser):
        assert fuser.recency_score(NOW - timedelta(days=100), NOW) == 0.0

    def test_future_timestamp_clamps_to_one(self, fuser):
        assert fuser.recency_score(NOW + timedelta(hours=1), NOW) == 1.0


class TestFuse:
    def test_missing_channel_contributes_zero(self, fuser):
        record = make_record("r1", age=timedelta(0), app="Notes")
        candidates = fuser.fuse(
            [ChannelHit("r1", 0.5)], [], records_by_id(record), StructuredQuery("notes"), NOW
        )
        assert len(candidates) == 1
        candidate = candidates[0]
        assert candidate.semantic_score is None
        assert candidate.confidence == pytest.approx(0.3 * 0.5 + 0.15)
        assert candidate.provenance == {Channel.KEYWORD}

    def test_all_terms(self, fuser):
        record = make_record("r1", age=timedelta(0), app="Safari", url_host="www.amazon.com")
        query = StructuredQuery("macbook on amazon", app_hints=["Amazon"])
        candidate = fuser.fuse(
            [ChannelHit("r1", 0.5)], [ChannelHit("r1", 0.8)], records_by_id(record), query, NOW
        )[0]
        assert candidate.app_bonus == 1.0
        assert candidate.source_bonus == 1.0
        assert candidate.confidence == pytest.approx(0.4 * 0.8 + 0.3 * 0.5 + 0.15 + 0.10 + 0.05)
        assert candidate.provenance == {Channel.KEYWORD, Channel.SEMANTIC}

    def test_union_by_record_id(self, fuser):
        records = records_by_id(make_record("a"), make_record("b"), make_record("c"))
        candidates = fuser.fuse(
            [ChannelHit("a", 0.9), ChannelHit("b", 0.4)],
            [ChannelHit("b", 0.7), ChannelHit("c", 0.6)],
            records, StructuredQuery("q"), NOW,
        )
        assert sorted(c.record_id for c in candidates) == ["a", "b", "c"]

    def test_hits_without_record_are_dropped(self, fuser):
        candidates = fuser.fuse(
            [ChannelHit("gone", 0.9)], [ChannelHit("r1", 0.5)],
            records_by_id(make_record("r1")), StructuredQuery("q"), NOW,
        )
        assert [c.record_id for c in candidates] == ["r1"]

    def test_app_hint_matches_app_name(self, fuser):
        record = make_record("r1", app="Apex Legends")
        candidate = fuser.fuse(
            [], [ChannelHit("r1", 0.5)], records_by_id(record),
            StructuredQuery("apex", app_hints=["Apex"]), NOW,
        )[0]
        assert candidate.app_bonus == 1.0

    def test_unreliable_host_gets_no_source_bonus(self, fuser):
        record = make_record("r1", url_host="example.org")
        candidate = fuser.fuse([], [ChannelHit("r1", 0.5)], records_by_id(record), StructuredQuery("q"), NOW)[0]
        assert candidate.source_bonus == 0.0

    def test_strict_penalizes_semantic_only(self, fuser):
        fuzzy = make_record("fuzzy", age=timedelta(0))
        lexical = make_record("lexical", age=timedelta(0))
        query = StructuredQuery('"error 404"', strict=True, phrases=["error 404"])
        candidates = fuser.fuse(
            [ChannelHit("lexical", 0.5)],
            [ChannelHit("fuzzy", 0.9), ChannelHit("lexical", 0.9)],
            records_by_id(fuzzy, lexical), query, NOW,
        )
        scores = {c.record_id: c.confidence for c in candidates}
        assert scores["fuzzy"] == pytest.approx(0.4 * 0.9 * 0.5 + 0.15)
        assert scores["lexical"] == pytest.approx(0.4 * 0.9 + 0.3 * 0.5 + 0.15)

    def test_confidence_in_unit_range_and_sorted(self, fuser):
        records = [
            make_record(f"r{i}", age=timedelta(days=i), url_host="github.com" if i % 2 else None)
            for i in range(12)
        ]
        keyword = [ChannelHit(f"r{i}", min(1.0, i / 7)) for i in range(0, 12, 2)]
        semantic = [ChannelHit(f"r{i}", 1.0 - i / 12) for i in range(12)]
        candidates = fuser.fuse(keyword, semantic, records_by_id(*records), StructuredQuery("q"), NOW)
        confidences = [c.confidence for c in candidates]
        assert all(0.0 <= c <= 1.0 for c in confidences)
        assert confidences == sorted(confidences, reverse=True)


class TestRanking:
    def test_tie_goes_to_newer_record(self, fuser):
        older = make_record("older", age=timedelta(days=20))
        newer = make_record("newer", age=timedelta(days=10))
        candidates = fuser.fuse(
            [], [ChannelHit("older", 0.5), ChannelHit("newer", 0.5)],
            records_by_id(older, newer), StructuredQuery("q"), NOW,
        )
        assert candidates[0].confidence == candidates[1].confidence
        assert [c.record_id for c in candidates] == ["newer", "older"]

    def test_full_tie_goes_to_lower_id(self, fuser):
        b = make_record("b", age=timedelta(days=20))
        a = make_record("a", age=timedelta(days=20))
        candidates = fuser.fuse(
            [], [ChannelHit("b", 0.5), ChannelHit("a", 0.5)],
            records_by_id(b, a), StructuredQuery("q"), NOW,
        )
        assert [c.record_id for c in candidates] == ["a", "b"]

    def test_deterministic(self, fuser):
        records = records_by_id(*(make_record(f"r{i}", age=timedelta(days=30)) for i in range(5)))
        hits = [ChannelHit(f"r{i}", 0.5) for i in range(5)]
        first = [c.record_id for c in fuser.fuse([], hits, records, StructuredQuery("q"), NOW)]
        second = [c.record_id for c in fuser.fuse([], list(reversed(hits)), records, StructuredQuery("q"), NOW)]
        assert first == second == ["r0", "r1", "r2", "r3", "r4"]

    def test_near_ties_order_is_independent_of_input_order(self):
        fuser = ResultFuser(RankingConfig(tie_epsilon=0.01))
        records = [make_record(rid, age=timedelta(days=days)) for rid, days in (("a", 3), ("b", 1), ("c", 2))]
        candidates = [
            Candidate(record, confidence=confidence)
            for record, confidence in zip(records, (0.512, 0.500, 0.506))
        ]
        orders = {
            tuple(c.record_id for c in fuser.rank(list(permutation)))
            for permutation in itertools.permutations(candidates)
        }
        assert orders == {("c", "a", "b")}


class TestRankingConfig:
    def test_weights_must_sum_to_one(self):
        with pytest.raises(ValueError):
            RankingConfig(w_semantic=0.5)

    def test_weights_must_be_unit(self):
        with pytest.raises(ValueError):
            RankingConfig(w_semantic=1.2, w_keyword=-0.5, w_time=0.15, w_app=0.10, w_source=0.05)
