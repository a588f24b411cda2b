"""Shared fixtures for the HomeSwipe test suite.

Provides a Flask test client with rate limiting off, fake provider
credentials, and fresh in-process caches for every test.
"""

import os

import pytest

# Credentials must exist BEFORE importing app (startup checks read them)
os.environ.setdefault("GOOGLE_MAPS_API_KEY", "fake-key-for-tests")
os.environ.setdefault("RAPIDAPI_KEY", "fake-rapidapi-key")
os.environ.setdefault("GEMINI_API_KEY", "fake-gemini-key")

from app import app, limiter  # noqa: E402
from cache_store import clear_all_caches  # noqa: E402
from hs_trace import clear_trace  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_caches():
    """Every test starts with empty domain caches and no trace."""
    clear_all_caches()
    clear_trace()
    yield
    clear_trace()


@pytest.fixture()
def client():
    """Flask test client with rate limiting disabled."""
    app.config["TESTING"] = True
    limiter.enabled = False
    with app.test_client() as c:
        yield c
    limiter.enabled = True
