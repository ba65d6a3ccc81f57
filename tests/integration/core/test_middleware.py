"""
Integration tests for TenantContextMiddleware.
"""

from django.http import HttpResponse
from django.test import RequestFactory
from rest_framework_simplejwt.tokens import AccessToken

from core.context import get_current_organization_id
from core.middleware import TenantContextMiddleware
from tests.factories.users import OrganizationApiKeyFactory, OrganizationFactory, UserFactory


def dummy_view(request):
    return HttpResponse("OK")


def spy_middleware():
    """
    Middleware wrapping a view that records the tenant it saw.
    """
    seen = {}

    def spy_view(request):
        seen["organization_id"] = get_current_organization_id()
        seen["tenant"] = getattr(request, "tenant", "unset")
        return HttpResponse("OK")

    return TenantContextMiddleware(spy_view), seen


class TestTenantMiddleware:
    """
    Verifies that the "Gatekeeper" correctly allows or blocks access.
    """

    def test_missing_credentials_returns_401(self):
        request = RequestFactory().get("/api/loyalty/purchases/")

        response = TenantContextMiddleware(dummy_view)(request)

        assert response.status_code == 401
        assert "Organization context required" in response.content.decode()

    def test_invalid_api_key_returns_403(self):
        request = RequestFactory().get("/api/loyalty/purchases/", HTTP_X_API_KEY="invalid-key")

        response = TenantContextMiddleware(dummy_view)(request)

        assert response.status_code == 403

    def test_key_of_inactive_organization_returns_403(self):
        api_key = OrganizationApiKeyFactory(organization=OrganizationFactory(is_active=False))
        request = RequestFactory().get("/api/loyalty/purchases/", HTTP_X_API_KEY=api_key.key)

        response = TenantContextMiddleware(dummy_view)(request)

        assert response.status_code == 403

    def test_valid_api_key_sets_context_during_request_only(self):
        api_key = OrganizationApiKeyFactory(key="secret-key-123")
        request = RequestFactory().get("/api/loyalty/purchases/", HTTP_X_API_KEY="secret-key-123")
        middleware, seen = spy_middleware()

        response = middleware(request)

        assert response.status_code == 200
        assert seen["organization_id"] == api_key.organization_id
        assert seen["tenant"] == api_key.organization
        assert get_current_organization_id() is None

    def test_platform_key_selects_global_program(self):
        api_key = OrganizationApiKeyFactory(organization=None)
        request = RequestFactory().get("/api/loyalty/purchases/", HTTP_X_API_KEY=api_key.key)
        middleware, seen = spy_middleware()

        response = middleware(request)

        assert response.status_code == 200
        assert seen["organization_id"] is None
        assert seen["tenant"] is None

    def test_jwt_user_organization_sets_context(self):
        user = UserFactory()
        token = AccessToken.for_user(user)
        request = RequestFactory().get("/api/loyalty/purchases/", HTTP_AUTHORIZATION=f"Bearer {token}")
        middleware, seen = spy_middleware()

        response = middleware(request)

        assert response.status_code == 200
        assert seen["organization_id"] == user.organization_id

    def test_broken_jwt_is_treated_as_anonymous(self):
        request = RequestFactory().get("/api/loyalty/purchases/", HTTP_AUTHORIZATION="Bearer not-a-jwt")

        response = TenantContextMiddleware(dummy_view)(request)

        assert response.status_code == 401

    def test_public_paths_skip_tenant_resolution(self):
        request = RequestFactory().post("/api/auth/login/")

        response = TenantContextMiddleware(dummy_view)(request)

        assert response.status_code == 200
