"""
Middleware for handling tenant authentication and context management.
Supports both API Key (for M2M) and JWT/Session (for Dashboard) authentication.
"""

from django.http import JsonResponse
from rest_framework_simplejwt.authentication import JWTAuthentication
from rest_framework_simplejwt.exceptions import InvalidToken, TokenError

from core.context import organization_context, reset_current_organization_id
from users.models import OrganizationApiKey

PUBLIC_PREFIXES = ("/admin/", "/static/", "/api/auth/")


class TenantContextMiddleware:
    """
    Acts as a "Gatekeeper". It determines the current Organization context using two strategies:
    1. 'X-API-KEY' header (External integrations, POS terminals, member-app backend).
    2. Authenticated User's Organization (Admin Dashboard, Frontend).

    An API key that belongs to no organization is a platform key: the request
    is allowed through with `request.tenant = None`, i.e. the global program.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        reset_current_organization_id()

        path = request.path
        if path.startswith(PUBLIC_PREFIXES) or "/favicon.ico" in path:
            return self.get_response(request)

        organization = None
        has_context = False

        # STRATEGY A: API Key (Machine-to-Machine)
        api_key = request.headers.get("X-API-KEY")

        if api_key:
            try:
                key_obj = OrganizationApiKey.objects.select_related("organization").get(key=api_key, is_active=True)
            except OrganizationApiKey.DoesNotExist:
                return JsonResponse({"detail": "Invalid or inactive API Key."}, status=403)

            organization = key_obj.organization
            if organization is not None and not organization.is_active:
                return JsonResponse({"detail": "Invalid or inactive API Key."}, status=403)
            has_context = True

        # STRATEGY B: User Authentication (Human-to-Machine)
        else:
            user = getattr(request, "user", None)

            if not (user and user.is_authenticated):
                try:
                    # Middleware runs BEFORE DRF views, so JWT must be resolved by hand here.
                    auth_result = JWTAuthentication().authenticate(request)
                except (InvalidToken, TokenError):
                    auth_result = None
                if auth_result:
                    request.user, _ = auth_result

            user = getattr(request, "user", None)
            if user and user.is_authenticated and user.organization_id:
                organization = user.organization
                has_context = True

        if path.startswith("/api/loyalty/") and not has_context:
            return JsonResponse(
                {
                    "detail": "Organization context required. "
                    "Provide X-API-KEY header OR login as a user belonging to an organization."
                },
                status=401,
            )

        request.tenant = organization
        with organization_context(organization.id if organization else None):
            return self.get_response(request)
