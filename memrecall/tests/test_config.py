"""Tests for configuration loading."""

from pathlib import Path

import pytest
import yaml

from memrecall.daemon.config import Config, EmbeddingConfig, SearchConfig


class TestConfig:
    def test_defaults(self, config):
        assert config.ranking.w_semantic == 0.40
        assert config.mode.high_threshold == 0.78
        assert config.search.default_k == 6
        assert config.cache.max_size == 1000
        assert config.cache.ttl_seconds == 300
        assert config.channels.keyword_timeout_ms < config.channels.semantic_timeout_ms

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "memrecall.yaml"
        path.write_text(yaml.safe_dump({
            "mode": {"high_threshold": 0.7},
            "search": {"default_k": 8},
            "query": {"app_aliases": {"notion": "Notion"}},
        }))
        config = Config.load(path)
        assert config.mode.high_threshold == 0.7
        assert config.search.default_k == 8
        assert config.query.app_aliases == {"notion": "Notion"}
        assert config.ranking.w_keyword == 0.30

    def test_load_without_file_uses_defaults(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path))
        assert Config.load() == Config()

    def test_env_overrides(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path))
        monkeypatch.setenv("MEMRECALL_CONFIDENCE_T_HIGH", "0.65")
        monkeypatch.setenv("MEMRECALL_SEARCH_K", "10")
        config = Config.load()
        assert config.mode.high_threshold == 0.65
        assert config.search.default_k == 10

    def test_save_round_trip(self, tmp_path):
        config = Config()
        config.storage.sqlite_path = Path("/tmp/memrecall/memories.db")
        path = tmp_path / "nested" / "config.yaml"
        config.save(path)
        assert Config.load(path) == config

    def test_invalid_search_bounds(self):
        with pytest.raises(ValueError):
            SearchConfig(default_k=30, max_k=20)

    def test_invalid_provider(self):
        with pytest.raises(ValueError):
            EmbeddingConfig(provider="magic")
