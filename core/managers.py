"""
Custom Django managers for core functionality (multi-tenancy).
"""

from django.db import models

from core.context import get_current_organization_id


class TenantAwareManager(models.Manager):
    """
    A custom manager that automatically filters querysets based on the current
    active organization context.

    A tenant can never read records belonging to another tenant, nor records
    of the global program, while its context is active.
    """

    def get_queryset(self):
        queryset = super().get_queryset()

        org_id = get_current_organization_id()
        if org_id:
            return queryset.filter(organization_id=org_id)

        # No context (platform key, system tasks, management commands): unfiltered.
        return queryset

    def for_tenant(self, organization):
        """
        Explicit scope filter. `None` selects the global program
        (Django turns `organization=None` into `IS NULL`).
        """
        return self.get_queryset().filter(organization=organization)
