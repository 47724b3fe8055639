"""Shared fixtures for memrecall tests."""

import pytest

from memrecall.daemon.config import Config
from memrecall.daemon.query_parser import QueryParser
from memrecall.tests.fakes import NOW


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def config():
    return Config()


@pytest.fixture
def parser():
    return QueryParser()


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch):
    monkeypatch.delenv("MEMRECALL_CONFIDENCE_T_HIGH", raising=False)
    monkeypatch.delenv("MEMRECALL_SEARCH_K", raising=False)
