"""
URL configuration for staff authentication.
"""

from django.urls import path
from rest_framework.permissions import AllowAny
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

urlpatterns = [
    path("login/", TokenObtainPairView.as_view(permission_classes=[AllowAny]), name="auth_login"),
    path("refresh/", TokenRefreshView.as_view(permission_classes=[AllowAny]), name="auth_refresh"),
]
