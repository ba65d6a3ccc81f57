import pytest
from django.core.cache import cache
from rest_framework.test import APIClient

from core.context import reset_current_organization_id
from tests.factories.users import OrganizationApiKeyFactory


@pytest.fixture
def api_client():
    """
    Fixture to provide an instance of DRF APIClient.
    """
    return APIClient()


@pytest.fixture
def pos_client(api_client):
    """
    APIClient authenticated as a POS terminal of a fresh tenant.
    The key object is reachable as `pos_client.api_key`.
    """
    api_key = OrganizationApiKeyFactory()
    api_client.credentials(HTTP_X_API_KEY=api_key.key)
    api_client.api_key = api_key
    return api_client


@pytest.fixture
def platform_client(api_client):
    """
    APIClient using a platform key (no organization): acts on the global program.
    """
    api_key = OrganizationApiKeyFactory(organization=None, name="Platform")
    api_client.credentials(HTTP_X_API_KEY=api_key.key)
    api_client.api_key = api_key
    return api_client


@pytest.fixture(autouse=True)
def enable_db_access_for_all_tests(db):
    """
    Automatically enables database access for all tests.
    """
    pass


@pytest.fixture(autouse=True)
def isolated_tenant_state():
    """
    Tests activate tenants directly; never let one leak into the next test.
    """
    reset_current_organization_id()
    cache.clear()
    yield
    reset_current_organization_id()
    cache.clear()
