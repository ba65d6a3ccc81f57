"""
Campaign rule engine.

Evaluates a purchase against the program's running campaigns, computes the
point award (base rate x tier multiplier + campaign bonuses) and posts it to
the ledger as a single `earn` entry.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, time
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import List, Optional

from django.conf import settings
from django.core.cache import cache
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from loyalty.exceptions import PointsConfigNotFound, TierNotFound
from loyalty.models import Campaign, MemberVoucher, PointsSettings, Purchase, Voucher
from loyalty.services import BalanceKey, LoyaltyService

logger = logging.getLogger(__name__)

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class MalformedCriteria(ValueError):
    """A campaign's criteria or reward cannot be interpreted."""


def campaign_cache_key(organization_id):
    return f"active_campaigns:{organization_id or 'global'}"


def get_active_campaigns(organization_id):
    """
    Active campaigns of a program, highest priority first.
    Cached per tenant; signals drop the cache whenever a campaign changes.
    Date windows are checked at evaluation time, so the cache never goes stale by the clock.
    """
    cache_key = campaign_cache_key(organization_id)
    campaigns = cache.get(cache_key)
    if campaigns is None:
        campaigns = list(
            Campaign.objects.filter(organization_id=organization_id, is_active=True).order_by("-priority", "id")
        )
        cache.set(cache_key, campaigns, timeout=settings.CAMPAIGN_CACHE_TIMEOUT)
    return campaigns


def running_campaigns(organization_id, now=None):
    now = now or timezone.now()
    return [campaign for campaign in get_active_campaigns(organization_id) if campaign.is_running(now)]


def to_points(value, rounding=ROUND_FLOOR):
    return int(Decimal(value).quantize(Decimal("1"), rounding=rounding))


# ---------------------------------------------------------------------------
# Purchase context
# ---------------------------------------------------------------------------


@dataclass
class PurchaseContext:
    """
    Everything a predicate may look at. Built once per evaluation.
    """

    member: object
    total: Decimal
    items: list
    transaction_date: datetime
    location_id: str = ""
    tier_id: Optional[int] = None
    is_first_purchase: bool = False
    today: Optional[object] = None

    @property
    def categories(self):
        return {str(item["category"]).lower() for item in self.items if item.get("category")}

    @property
    def skus(self):
        return {str(item["sku"]) for item in self.items if item.get("sku")}


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------


class Predicate:
    """
    One conjunct of a campaign's criteria.
    Subclasses parse their raw JSON value in `__init__` and raise MalformedCriteria on garbage.
    """

    def matches(self, context: PurchaseContext) -> bool:
        raise NotImplementedError


def _as_list(value, key):
    if not isinstance(value, (list, tuple)):
        raise MalformedCriteria(f"'{key}' must be a list")
    return list(value)


class DayOfWeek(Predicate):
    def __init__(self, days):
        self.days = {str(day).lower() for day in _as_list(days, "days")}
        unknown = self.days - set(WEEKDAYS)
        if unknown:
            raise MalformedCriteria(f"Unknown weekdays: {sorted(unknown)}")

    def matches(self, context):
        weekday = WEEKDAYS[timezone.localtime(context.transaction_date).weekday()]
        return weekday in self.days


class AmountRange(Predicate):
    def __init__(self, min_amount=None, max_amount=None):
        try:
            self.min_amount = Decimal(str(min_amount)) if min_amount is not None else None
            self.max_amount = Decimal(str(max_amount)) if max_amount is not None else None
        except ArithmeticError as exc:
            raise MalformedCriteria("Amount bounds must be numbers") from exc

    def matches(self, context):
        if self.min_amount is not None and context.total < self.min_amount:
            return False
        if self.max_amount is not None and context.total > self.max_amount:
            return False
        return True


class CategorySet(Predicate):
    def __init__(self, categories):
        self.categories = {str(category).lower() for category in _as_list(categories, "categories")}

    def matches(self, context):
        return bool(self.categories & context.categories)


class SkuSet(Predicate):
    def __init__(self, skus):
        self.skus = {str(sku) for sku in _as_list(skus, "products")}

    def matches(self, context):
        return bool(self.skus & context.skus)


class LocationSet(Predicate):
    def __init__(self, locations):
        self.locations = {str(location) for location in _as_list(locations, "locations")}

    def matches(self, context):
        return bool(context.location_id) and context.location_id in self.locations


class TierSet(Predicate):
    def __init__(self, tier_ids):
        self.tier_ids = {str(tier_id) for tier_id in _as_list(tier_ids, "tier_ids")}

    def matches(self, context):
        return context.tier_id is not None and str(context.tier_id) in self.tier_ids


class Birthday(Predicate):
    def matches(self, context):
        dob = context.member.date_of_birth
        today = context.today or timezone.localdate()
        return dob is not None and (dob.month, dob.day) == (today.month, today.day)


class FirstPurchase(Predicate):
    def matches(self, context):
        return context.is_first_purchase


class TimeWindow(Predicate):
    """
    Happy hours: purchase time of day within [start_time, end_time].
    """

    def __init__(self, start, end):
        try:
            self.start = datetime.strptime(start, "%H:%M").time()
            self.end = datetime.strptime(end, "%H:%M").time()
        except (TypeError, ValueError) as exc:
            raise MalformedCriteria("start_time/end_time must be HH:MM") from exc

    def matches(self, context):
        current: time = timezone.localtime(context.transaction_date).time()
        return self.start <= current <= self.end


def _is_empty(value):
    return value is None or value == [] or value == ""


def pop_flag(criteria, key):
    value = criteria.pop(key, False)
    if not isinstance(value, bool):
        raise MalformedCriteria(f"{key} must be true or false")
    return value


def parse_criteria(criteria) -> List[Predicate]:
    """
    Turns the raw criteria bag into a list of predicates evaluated as a conjunction.
    Absent or empty criteria produce no predicate (vacuously satisfied).
    """
    if criteria is None:
        return []
    if not isinstance(criteria, dict):
        raise MalformedCriteria("criteria must be an object")

    criteria = {key: value for key, value in criteria.items() if not _is_empty(value)}
    predicates: List[Predicate] = []

    if "days" in criteria:
        predicates.append(DayOfWeek(criteria.pop("days")))
    if "min_amount" in criteria or "max_amount" in criteria:
        predicates.append(AmountRange(criteria.pop("min_amount", None), criteria.pop("max_amount", None)))
    if "categories" in criteria:
        predicates.append(CategorySet(criteria.pop("categories")))
    if "products" in criteria:
        predicates.append(SkuSet(criteria.pop("products")))
    if "locations" in criteria:
        predicates.append(LocationSet(criteria.pop("locations")))
    if "tier_ids" in criteria:
        predicates.append(TierSet(criteria.pop("tier_ids")))
    if pop_flag(criteria, "is_birthday"):
        predicates.append(Birthday())
    if pop_flag(criteria, "is_first_purchase"):
        predicates.append(FirstPurchase())
    if "start_time" in criteria or "end_time" in criteria:
        predicates.append(TimeWindow(criteria.pop("start_time", None), criteria.pop("end_time", None)))

    if criteria:
        raise MalformedCriteria(f"Unknown criteria: {sorted(criteria)}")
    return predicates


def matches_criteria(campaign, context) -> bool:
    return all(predicate.matches(context) for predicate in parse_criteria(campaign.criteria))


# ---------------------------------------------------------------------------
# Rewards
# ---------------------------------------------------------------------------


@dataclass
class CampaignReward:
    campaign_id: int
    campaign_name: str
    reward_type: str
    points: int = 0
    voucher_id: Optional[str] = None
    voucher_name: str = ""
    member_voucher: Optional[MemberVoucher] = None

    def as_dict(self):
        data = {"campaign_id": self.campaign_id, "campaign_name": self.campaign_name, "type": self.reward_type}
        if self.reward_type == "points":
            data["points"] = self.points
        else:
            data["voucher_id"] = self.voucher_id
            data["voucher_name"] = self.voucher_name
        return data


@dataclass
class EvaluationResult:
    base_points: int
    tier_multiplier: Decimal
    total_points: int
    rewards: List[CampaignReward] = field(default_factory=list)
    ledger_entry: Optional[object] = None

    @property
    def vouchers_awarded(self):
        return [reward.voucher_name for reward in self.rewards if reward.reward_type == "voucher"]


def compute_points_reward(campaign, base_points):
    """
    Bonus points of a point-type campaign, or None when it yields nothing.
    """
    reward = campaign.reward or {}
    if not isinstance(reward, dict):
        raise MalformedCriteria("reward must be an object")

    try:
        if campaign.campaign_type in (Campaign.TYPE_POINTS_EARN, Campaign.TYPE_TIER_BONUS):
            points = int(reward.get("value") or 0)
            return points if points > 0 else None

        if campaign.campaign_type == Campaign.TYPE_POINTS_MULTIPLIER:
            multiplier = Decimal(str(reward.get("multiplier") or 1))
            bonus = to_points(base_points * (multiplier - 1))
            return bonus if bonus > 0 else None
    except (TypeError, ValueError, ArithmeticError) as exc:
        raise MalformedCriteria(f"Invalid reward for campaign {campaign.pk}") from exc

    raise MalformedCriteria(f"Unsupported campaign type '{campaign.campaign_type}'")


def voucher_reward(campaign):
    """
    Voucher id granted by a voucher_distribution campaign.
    """
    reward = campaign.reward
    if not isinstance(reward, dict):
        raise MalformedCriteria("reward must be an object")
    voucher_id = reward.get("voucher_id")
    if not voucher_id:
        raise MalformedCriteria("reward has no voucher_id")
    return voucher_id


class CampaignEngine:
    """
    Evaluates purchases against the campaigns of one loyalty program.
    """

    def __init__(self, ledger=None):
        self.ledger = ledger or LoyaltyService()

    def load_points_settings(self, organization):
        config = PointsSettings.objects.for_tenant(organization).order_by("id").first()
        if config is None:
            raise PointsConfigNotFound()
        return config

    def base_points(self, total, config):
        raw = Decimal(total) * config.base_earning_rate
        rounding = ROUND_HALF_UP if config.rounding_rule == PointsSettings.ROUNDING_ROUND else ROUND_FLOOR
        return to_points(raw, rounding)

    def build_context(self, purchase, balance):
        first_purchase = (
            not Purchase.objects.for_tenant(purchase.organization)
            .filter(member=purchase.member, status=Purchase.STATUS_PROCESSED)
            .exclude(pk=purchase.pk)
            .exists()
        )
        return PurchaseContext(
            member=purchase.member,
            total=Decimal(purchase.total),
            items=purchase.items or [],
            transaction_date=purchase.transaction_date,
            location_id=purchase.location_id or "",
            tier_id=balance.tier_id,
            is_first_purchase=first_purchase,
        )

    def evaluate(self, purchase) -> EvaluationResult:
        """
        Computes and posts the point award of a purchase.

        Missing membership, tier or points settings abort the evaluation.
        A campaign with malformed criteria or reward is skipped.
        """
        organization = purchase.organization
        key = BalanceKey(purchase.member, organization)

        balance = key.queryset().select_related("tier").first()
        if balance is None:
            balance = self.ledger.enroll(purchase.member, organization)
        if balance.tier is None:
            raise TierNotFound()
        config = self.load_points_settings(organization)

        base_points = self.base_points(purchase.total, config)
        tier_multiplier = balance.tier.multiplier
        total_points = to_points(base_points * tier_multiplier)

        context = self.build_context(purchase, balance)
        point_rewards: List[CampaignReward] = []
        voucher_campaigns = []

        for campaign in running_campaigns(purchase.organization_id):
            try:
                if not matches_criteria(campaign, context):
                    continue
                if campaign.campaign_type == Campaign.TYPE_VOUCHER_DISTRIBUTION:
                    voucher_campaigns.append((campaign, voucher_reward(campaign)))
                    continue
                points = compute_points_reward(campaign, base_points)
            except MalformedCriteria as exc:
                logger.warning("Skipping malformed campaign %s (%s): %s", campaign.pk, campaign.name, exc)
                continue

            if points:
                point_rewards.append(
                    CampaignReward(campaign.pk, campaign.name, "points", points=points),
                )
                total_points += points

        result = EvaluationResult(
            base_points=base_points, tier_multiplier=tier_multiplier, total_points=total_points, rewards=point_rewards
        )

        # Balance row first, voucher rows second: same lock order as voucher claims.
        with transaction.atomic():
            if total_points > 0:
                posting = self.ledger.earn(
                    purchase.member,
                    total_points,
                    description=f"Purchase reward (base: {base_points}, multiplier: {tier_multiplier}x)",
                    organization=organization,
                    reference_type="purchase",
                    reference_id=purchase.pk,
                )
                result.ledger_entry = posting.entry

            for campaign, voucher_id in voucher_campaigns:
                reward = self.grant_voucher(campaign, voucher_id, purchase.member, organization)
                if reward is not None:
                    result.rewards.append(reward)

        return result

    def grant_voucher(self, campaign, voucher_id, member, organization):
        """
        Issues the campaign's voucher to the member, consuming one unit of stock.
        Returns None if the voucher is missing, unavailable or sold out.
        """
        try:
            voucher = Voucher.objects.for_tenant(organization).select_for_update().get(pk=voucher_id)
        except (Voucher.DoesNotExist, DjangoValidationError, ValueError):
            logger.warning("Voucher campaign %s references unknown voucher %s", campaign.pk, voucher_id)
            return None

        if not voucher.is_available() or voucher.is_sold_out:
            return None

        Voucher.objects.filter(pk=voucher.pk).update(used_count=F("used_count") + 1)
        member_voucher = MemberVoucher.objects.create(
            member=member, voucher=voucher, organization=organization, expires_at=voucher.valid_until
        )
        logger.info("Campaign %s granted voucher %s to member %s", campaign.pk, voucher.pk, member.pk)
        return CampaignReward(
            campaign.pk,
            campaign.name,
            "voucher",
            voucher_id=str(voucher.pk),
            voucher_name=voucher.name,
            member_voucher=member_voucher,
        )
