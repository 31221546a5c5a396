"""
Pytest configuration and fixtures for the catalog ingestion test suite.
"""

import pytest


@pytest.fixture(scope="session")
def django_db_setup(django_db_blocker):
    """Configure the test database and run migrations."""
    from django.core.management import call_command

    with django_db_blocker.unblock():
        call_command("migrate", "--run-syncdb", verbosity=0)


@pytest.fixture(autouse=True)
def clear_cache():
    """Start every test with empty rate-limit windows."""
    from django.core.cache import cache

    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def api_client():
    """Create a test API client."""
    from rest_framework.test import APIClient

    return APIClient()


@pytest.fixture
def authenticated_client(db, api_client):
    """API client logged in as a regular user."""
    from django.contrib.auth import get_user_model

    user = get_user_model().objects.create_user(username="reader", password="secret")
    api_client.force_authenticate(user=user)
    return api_client


@pytest.fixture
def duga_source(db):
    """Create the DUGA API CatalogSource."""
    from ingestion.models import CatalogSource, SourceKind

    return CatalogSource.objects.create(
        name="DUGA",
        slug="duga",
        kind=SourceKind.API,
        base_url="http://affapi.duga.jp/search",
        request_delay_seconds=0,
    )


@pytest.fixture
def b10f_source(db):
    """Create the b10f CSV CatalogSource."""
    from ingestion.models import CatalogSource, SourceKind

    return CatalogSource.objects.create(
        name="b10f",
        slug="b10f",
        kind=SourceKind.CSV,
        base_url="https://b10f.jp/csv_home.php",
        request_delay_seconds=0,
    )


@pytest.fixture
def heyzo_source(db):
    """Create the HEYZO HTML CatalogSource."""
    from ingestion.models import CatalogSource, SourceKind

    return CatalogSource.objects.create(
        name="HEYZO",
        slug="heyzo",
        kind=SourceKind.HTML,
        base_url="https://www.heyzo.com",
        request_delay_seconds=0,
    )


@pytest.fixture
def make_product():
    """Factory for IntermediateProduct records."""
    from ingestion.services.product_types import IntermediateProduct

    def _make(source_id="duga", local_id="ppv-0001", **kwargs):
        kwargs.setdefault("title", "真夏の恋物語 第二章")
        kwargs.setdefault("affiliate_url", f"https://example.com/{local_id}")
        return IntermediateProduct(source_id=source_id, source_local_id=local_id, **kwargs)

    return _make
