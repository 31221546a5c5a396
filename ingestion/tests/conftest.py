"""
Fixtures shared by the ingestion unit tests.
"""

import pytest


@pytest.fixture(autouse=True)
def clear_cache():
    """Start every test with empty rate-limit windows."""
    from django.core.cache import cache

    cache.clear()
    yield
    cache.clear()
