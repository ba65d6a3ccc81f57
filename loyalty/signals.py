"""
Signals for the Loyalty application.
Handles cache invalidation when models are updated.
"""

from django.core.cache import cache
from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from loyalty.campaigns import campaign_cache_key
from loyalty.models import Campaign


@receiver([post_save, post_delete], sender=Campaign)
def clear_campaign_cache(sender, instance, **kwargs):
    """
    Clears the active campaigns cache whenever a campaign is saved or deleted,
    so the engine always evaluates up-to-date rules.
    """
    cache.delete(campaign_cache_key(instance.organization_id))
