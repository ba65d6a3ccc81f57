"""
Models for the users application (Auth and Organization/Tenant)
"""

import secrets
import uuid

from django.contrib.auth.models import AbstractUser
from django.db import models

from users.managers import CustomUserManager


class Organization(models.Model):
    """
    Represents a Tenant (a brand running its own loyalty program) in the system.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.name


def generate_api_key():
    return secrets.token_hex(32)


class OrganizationApiKey(models.Model):
    """
    API key used by POS terminals and integrations.
    A key without an organization is a platform key and acts on the global program.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    organization = models.ForeignKey(
        Organization, on_delete=models.CASCADE, related_name="api_keys", null=True, blank=True
    )
    key = models.CharField(max_length=64, unique=True, db_index=True, default=generate_api_key)
    name = models.CharField(max_length=50, help_text="e.g. 'Website' or 'POS Terminal 1'")
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        owner = self.organization.name if self.organization_id else "platform"
        return f"{owner} - {self.name}"


class User(AbstractUser):
    """
    Staff user of a tenant (dashboard access). Logs in with email.
    """

    username = None
    email = models.EmailField("email address", unique=True)

    organization = models.ForeignKey(
        "users.Organization", on_delete=models.SET_NULL, null=True, blank=True, related_name="users"
    )

    objects = CustomUserManager()

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = []

    def __str__(self):
        return self.email
