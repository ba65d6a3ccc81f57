"""
Factories for the loyalty application
"""

from datetime import timedelta
from decimal import Decimal

import factory
from django.utils import timezone
from factory import fuzzy
from factory.django import DjangoModelFactory

from loyalty.models import (
    Campaign,
    Member,
    MemberBalance,
    MemberVoucher,
    PointsSettings,
    Purchase,
    Tier,
    Voucher,
)
from tests.factories.users import OrganizationFactory


class MemberFactory(DjangoModelFactory):
    class Meta:
        model = Member

    # Every member gets a unique phone number
    phone = factory.Sequence(lambda n: f"+38050{n:07d}")
    first_name = factory.Faker("first_name")
    last_name = factory.Faker("last_name")
    email = factory.Faker("email")


class TierFactory(DjangoModelFactory):
    class Meta:
        model = Tier

    organization = factory.SubFactory(OrganizationFactory)
    name = factory.Sequence(lambda n: f"Tier {n}")
    code = factory.Sequence(lambda n: f"tier-{n}")
    min_points = 0
    max_points = None
    multiplier = Decimal("1.00")


class MemberBalanceFactory(DjangoModelFactory):
    """
    A membership (BalanceKey row). Counters start at zero; post to the ledger
    to give the member points so the entries stay consistent.
    """

    class Meta:
        model = MemberBalance

    member = factory.SubFactory(MemberFactory)
    organization = factory.SubFactory(OrganizationFactory)
    tier = None


class PointsSettingsFactory(DjangoModelFactory):
    class Meta:
        model = PointsSettings

    organization = factory.SubFactory(OrganizationFactory)
    base_earning_rate = Decimal("1.0000")
    rounding_rule = PointsSettings.ROUNDING_FLOOR


class CampaignFactory(DjangoModelFactory):
    """
    Factory for creating Campaign instances in tests.
    Running by default: started yesterday, ends in a month.
    """

    class Meta:
        model = Campaign

    organization = factory.SubFactory(OrganizationFactory)
    name = factory.Faker("catch_phrase")
    description = factory.Faker("sentence")
    campaign_type = Campaign.TYPE_POINTS_EARN

    # Empty criteria match every purchase; tests pass the rules they exercise.
    criteria = factory.LazyFunction(dict)
    reward = factory.LazyFunction(lambda: {"value": 50})

    start_date = factory.LazyFunction(lambda: timezone.now() - timedelta(days=1))
    end_date = factory.LazyFunction(lambda: timezone.now() + timedelta(days=30))
    priority = 0
    is_active = True

    class Params:
        coffee_bonus = factory.Trait(
            criteria={"min_amount": 20, "categories": ["coffee"]},
            reward={"value": 50},
            description="Flat bonus for coffee purchases",
        )

        happy_hours = factory.Trait(
            criteria={"start_time": "09:00", "end_time": "18:00"},
            description="Happy hours campaign",
        )

        double_points = factory.Trait(
            campaign_type=Campaign.TYPE_POINTS_MULTIPLIER,
            reward={"multiplier": 2},
        )


class VoucherFactory(DjangoModelFactory):
    class Meta:
        model = Voucher

    organization = factory.SubFactory(OrganizationFactory)
    name = factory.Faker("catch_phrase")
    code = factory.Sequence(lambda n: f"VOUCHER{n}")
    voucher_type = fuzzy.FuzzyChoice([choice[0] for choice in Voucher.VOUCHER_TYPES])
    value = Decimal("10.00")
    points_cost = 100
    quantity = None
    valid_from = factory.LazyFunction(lambda: timezone.now() - timedelta(days=1))
    valid_until = factory.LazyFunction(lambda: timezone.now() + timedelta(days=30))
    is_active = True


class MemberVoucherFactory(DjangoModelFactory):
    class Meta:
        model = MemberVoucher

    member = factory.SubFactory(MemberFactory)
    voucher = factory.SubFactory(VoucherFactory)
    organization = factory.SelfAttribute("voucher.organization")
    expires_at = factory.SelfAttribute("voucher.valid_until")


class PurchaseFactory(DjangoModelFactory):
    class Meta:
        model = Purchase

    organization = factory.SubFactory(OrganizationFactory)
    member = factory.SubFactory(MemberFactory)
    external_id = factory.Sequence(lambda n: f"POS-TX-{n:06d}")
    pos_id = "POS-1"
    location_id = "store-1"
    items = factory.LazyFunction(
        lambda: [
            {
                "sku": "LATTE",
                "name": "Latte",
                "category": "coffee",
                "quantity": 1,
                "unit_price": "25.00",
                "total_price": "25.00",
            }
        ]
    )
    subtotal = Decimal("25.00")
    total = Decimal("25.00")
    transaction_date = factory.LazyFunction(timezone.now)
    status = Purchase.STATUS_PENDING
