import os
import sys

import pytest

# Ensure project root is on sys.path so 'music_aggregator' imports without installation
_TESTS_DIR = os.path.dirname(__file__)
_ROOT_DIR = os.path.abspath(os.path.join(_TESTS_DIR, os.pardir))
if _ROOT_DIR not in sys.path:
    sys.path.insert(0, _ROOT_DIR)

import music_aggregator as ma
from tests.support.stubs import FakeSession

METING = "https://meting.test/api.php"
GD = "https://gd.test/api.php"


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Strip aggregator env vars so a developer's .env never leaks into tests."""
    for name in ("PROXY_URL", "METING_SERVER", "METING_SOURCE", "MUSIC_U", "UNM_SOURCES",
                 "SERVER_PRIORITY", "METING_API_BASE", "GDSTUDIO_API_BASE",
                 "MUSIC_API_TIMEOUT", "SEARCH_PAGE_SIZE"):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def config():
    return ma.AggregatorConfig(meting_api_base=METING, gdstudio_api_base=GD)


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def aggregator(config, session):
    return ma.MusicAggregator(config=config, session=session)
