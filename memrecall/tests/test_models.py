"""Tests for request validation and shared model helpers."""

from datetime import datetime, timezone

import pytest

from memrecall.daemon.errors import ValidationError
from memrecall.daemon.models import (
    SearchFilters,
    SearchRequest,
    TimeWindow,
    host_matches,
    matches_hint,
    parse_timestamp,
)
from memrecall.tests.fakes import NOW


class TestSearchRequest:
    def test_defaults(self):
        request = SearchRequest.from_query({"q": "macbook"})
        assert request.k == 6
        assert request.time_from is None
        assert request.app is None

    @pytest.mark.parametrize("params", [{}, {"q": ""}, {"q": "   "}])
    def test_empty_query_rejected(self, params):
        with pytest.raises(ValidationError) as exc:
            SearchRequest.from_query(params)
        assert exc.value.field == "q"

    @pytest.mark.parametrize("k", ["0", "21", "-3", "abc", "2.5"])
    def test_bad_k_rejected(self, k):
        with pytest.raises(ValidationError) as exc:
            SearchRequest.from_query({"q": "x", "k": k})
        assert exc.value.field == "k"

    def test_k_within_bounds(self):
        assert SearchRequest.from_query({"q": "x", "k": "20"}).k == 20

    def test_inverted_window_rejected(self):
        with pytest.raises(ValidationError) as exc:
            SearchRequest.from_query({
                "q": "x",
                "from": "2025-03-14T00:00:00Z",
                "to": "2025-03-13T00:00:00Z",
            })
        assert exc.value.field == "from"

    def test_bad_timestamp_rejected(self):
        with pytest.raises(ValidationError) as exc:
            SearchRequest.from_query({"q": "x", "to": "next tuesday-ish"})
        assert exc.value.field == "to"

    @pytest.mark.parametrize("value", ["99999999999999999999", "999999999999999"])
    def test_out_of_range_epoch_rejected(self, value):
        with pytest.raises(ValidationError) as exc:
            SearchRequest.from_query({"q": "x", "from": value})
        assert exc.value.field == "from"

    def test_cache_key_normalizes_text(self):
        a = SearchRequest(q="MacBook  Price")
        b = SearchRequest(q=" macbook price ")
        assert a.cache_key == b.cache_key

    def test_cache_key_covers_filters(self):
        base = SearchRequest(q="macbook")
        assert base.cache_key != SearchRequest(q="macbook", app="Safari").cache_key
        assert base.cache_key != SearchRequest(q="macbook", host="amazon.com").cache_key
        assert base.cache_key != SearchRequest(q="macbook", k=3).cache_key
        assert base.cache_key != SearchRequest(q="macbook", time_from=NOW).cache_key

    def test_validation_error_payload(self):
        error = ValidationError("k", "k must be between 1 and 20")
        assert error.to_dict() == {
            "error": {"code": "validation_error", "field": "k", "message": "k must be between 1 and 20"}
        }


class TestTimestamps:
    def test_epoch_ms(self):
        assert parse_timestamp("1741953600000", "from") == datetime(2025, 3, 14, 12, tzinfo=timezone.utc)

    def test_iso_with_offset(self):
        ts = parse_timestamp("2025-03-14T14:00:00+02:00", "from")
        assert ts == datetime(2025, 3, 14, 12, tzinfo=timezone.utc)

    def test_naive_iso_is_utc(self):
        assert parse_timestamp("2025-03-14T12:00:00", "from").tzinfo == timezone.utc


class TestFilters:
    def test_window_is_half_open(self):
        window = TimeWindow(NOW, NOW.replace(hour=13))
        assert window.contains(NOW)
        assert not window.contains(NOW.replace(hour=13))

    def test_matches_hint_on_app_or_host(self):
        assert matches_hint("Google Chrome", None, ["chrome"])
        assert matches_hint("Safari", "www.youtube.com", ["YouTube"])
        assert not matches_hint("Safari", "www.apple.com", ["YouTube"])
        assert not matches_hint("", None, ["YouTube"])

    def test_multi_word_hint_matches_compact_host(self):
        assert matches_hint("Chrome", "stackoverflow.com", ["Stack Overflow"])
        assert matches_hint("Chrome", "www.stackoverflow.com", ["stack  overflow"])
        assert not matches_hint("Chrome", "serverfault.com", ["Stack Overflow"])

    def test_host_suffix_match(self):
        assert host_matches("www.amazon.com", "amazon.com")
        assert host_matches("amazon.com", "Amazon.com")
        assert not host_matches("notamazon.com", "amazon.com")
        assert not host_matches(None, "amazon.com")

    def test_combined_filters(self):
        filters = SearchFilters(
            time_window=TimeWindow(NOW.replace(hour=0), NOW),
            app_hints=("YouTube",),
            host="youtube.com",
        )
        assert filters.matches(NOW.replace(hour=9), "Chrome", "www.youtube.com")
        assert not filters.matches(NOW.replace(hour=9), "Chrome", "vimeo.com")
        assert not filters.matches(NOW, "Chrome", "www.youtube.com")
        assert SearchFilters().is_empty
