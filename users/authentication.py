from django.contrib.auth.models import AnonymousUser
from rest_framework import authentication, exceptions, permissions

from users.models import OrganizationApiKey


class ApiKeyAuthentication(authentication.BaseAuthentication):
    """
    Authenticates requests based on the 'X-API-KEY' header.
    `request.auth` carries the key object; `request.user` stays anonymous.
    """

    def authenticate(self, request):
        api_key_header = request.headers.get("X-API-KEY")

        if not api_key_header:
            return None

        try:
            api_key_obj = OrganizationApiKey.objects.select_related("organization").get(
                key=api_key_header, is_active=True
            )
        except OrganizationApiKey.DoesNotExist:
            raise exceptions.AuthenticationFailed("Invalid or inactive API Key.") from None

        return (AnonymousUser(), api_key_obj)

    def authenticate_header(self, request):
        return "X-API-KEY"


class HasApiKeyOrIsAuthenticated(permissions.BasePermission):
    """
    Grants access to API-key clients (POS, integrations) and logged-in staff users.
    """

    def has_permission(self, request, view):
        if isinstance(request.auth, OrganizationApiKey):
            return True
        return bool(request.user and request.user.is_authenticated)
