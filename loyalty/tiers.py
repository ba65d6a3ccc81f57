"""
Tier catalog: ordered point thresholds of one loyalty program.
"""

from loyalty.models import Tier


def active_tiers(organization):
    return Tier.objects.for_tenant(organization).filter(is_active=True)


def entry_tier(organization):
    """
    The lowest tier of the program, assigned on enrollment. None if no tiers are configured.
    """
    return active_tiers(organization).order_by("min_points").first()


def eligible_tier(organization, lifetime_points):
    """
    The tier with the greatest `min_points` not exceeding `lifetime_points`, or None.
    """
    return active_tiers(organization).filter(min_points__lte=lifetime_points).order_by("-min_points").first()
