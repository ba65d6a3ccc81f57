"""
Abstract base models providing multi-tenancy capabilities.
"""

from django.db import models

from core.context import get_current_organization_id
from core.managers import TenantAwareManager


class TenantAwareModel(models.Model):
    """
    Abstract base class for all models that must be isolated by tenant.

    It enforces two main behaviors:
    1. Data Isolation: Uses TenantAwareManager to restrict read access.
    2. Auto-Assignment: Automatically links new records to the active tenant on save.

    A NULL organization marks a record of the platform-wide (global) program.
    """

    organization = models.ForeignKey(
        "users.Organization",
        on_delete=models.CASCADE,
        related_name="%(class)s_set",
        null=True,
        blank=True,
        db_index=True,
    )

    objects = TenantAwareManager()

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        """
        Overridden save method to automatically assign the organization.
        """
        if not self.organization_id:
            org_id = get_current_organization_id()
            if org_id:
                self.organization_id = org_id

        super().save(*args, **kwargs)
