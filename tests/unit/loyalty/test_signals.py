"""
Tests for Django Signals and Cache Invalidation.
"""

from django.core.cache import cache

from loyalty.campaigns import campaign_cache_key, get_active_campaigns
from tests.factories.loyalty import CampaignFactory
from tests.factories.users import OrganizationFactory


class TestCampaignCacheInvalidation:
    """
    Verifies that modifying a Campaign clears the cached campaign list of its program.
    """

    def test_cache_is_populated_on_access(self):
        org = OrganizationFactory()
        CampaignFactory(organization=org)
        cache_key = campaign_cache_key(org.id)

        assert cache.get(cache_key) is None

        campaigns = get_active_campaigns(org.id)

        assert len(campaigns) == 1
        assert len(cache.get(cache_key)) == 1

    def test_inactive_campaigns_are_not_cached(self):
        org = OrganizationFactory()
        CampaignFactory(organization=org, is_active=False)

        assert get_active_campaigns(org.id) == []

    def test_signal_clears_cache_on_save(self):
        org = OrganizationFactory()
        campaign = CampaignFactory(organization=org)
        get_active_campaigns(org.id)

        campaign.name = "Updated Name"
        campaign.save()

        assert cache.get(campaign_cache_key(org.id)) is None
        assert get_active_campaigns(org.id)[0].name == "Updated Name"

    def test_signal_clears_cache_on_delete(self):
        org = OrganizationFactory()
        campaign = CampaignFactory(organization=org)
        get_active_campaigns(org.id)

        campaign.delete()

        assert cache.get(campaign_cache_key(org.id)) is None
        assert get_active_campaigns(org.id) == []

    def test_global_program_has_its_own_key(self):
        org = OrganizationFactory()
        CampaignFactory(organization=None)
        get_active_campaigns(None)
        get_active_campaigns(org.id)

        CampaignFactory(organization=org)

        assert campaign_cache_key(None) == "active_campaigns:global"
        assert cache.get(campaign_cache_key(None)) is not None
        assert cache.get(campaign_cache_key(org.id)) is None
