"""Shared test fixtures and configuration."""

import os
from pathlib import Path
import sys

import httpx
import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT / "src") not in sys.path:
    sys.path.insert(0, str(REPO_ROOT / "src"))


# Complete test environment that overrides every config value Settings reads
TEST_ENV = {
    # Liveness
    "DEAD_THRESHOLD": "10",
    "STREAK_CAP": "110",
    "RESYNC_INTERVAL": "50",
    "TRACK_LINK_LIVENESS": "false",
    # Probing
    "PROBE_TIMEOUT_SECONDS": "5",
    "WORKER_POOL_SIZE": "4",
    "PROGRESS_INTERVAL": "500",
    # Scheduler
    "TICK_INTERVAL_SECONDS": "0.01",
    "RECONCILE_FREQUENCY": "1200",
    "STATS_FREQUENCY": "100",
    "RESYNC_INDEX_FREQUENCY": "0",
    "CONTINUE_ON_TASK_ERROR": "true",
    # Index sync
    "INDEX_ADD_CHUNK_SIZE": "5000",
    "INDEX_REMOVE_CHUNK_SIZE": "5000",
    "INDEX_STREAM_BATCH_SIZE": "50000",
    "LINK_INSERT_CHUNK_SIZE": "1000",
    # Storage and search index
    "DATASTORE_PATH": ":memory:",
    "ELASTIC_URL": "http://elastic.test:9200",
    "ELASTIC_INDEX": "links",
    "ELASTIC_USER": "elastic",
    "ELASTIC_PASSWORD": "",
    # Observability
    "LOG_LEVEL": "info",
    "LOG_JSON": "false",
    "METRICS_PORT": "0",
    "OTLP_ENABLED": "false",
    # Proxy settings - ensure they're cleared for tests
    "http_proxy": "",
    "https_proxy": "",
    "all_proxy": "",
    "no_proxy": "",
}


# Set environment variables immediately when conftest.py is loaded
for key, value in TEST_ENV.items():
    os.environ[key] = value


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Reset the environment to test defaults before each test."""
    for key, value in TEST_ENV.items():
        monkeypatch.setenv(key, value)


@pytest.fixture
def make_mock_client():
    """Build an ``httpx.AsyncClient`` whose requests are answered by ``handler``."""

    def _factory(handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _factory


@pytest.fixture
def fake_datastore():
    from od_discovery.adapters.datastore import FakeDatastore

    return FakeDatastore(dead_threshold=10)


@pytest.fixture
def fake_index():
    from od_discovery.adapters.search_index import FakeSearchIndex

    return FakeSearchIndex()


@pytest.fixture
def policy():
    from od_discovery.domain.liveness import LivenessPolicy

    return LivenessPolicy(dead_threshold=10, streak_cap=110, resync_interval=50)
