"""
Custom management command to seed a demo loyalty program.
"""

import random
from datetime import timedelta

from django.core.management.base import BaseCommand
from django.utils import timezone

from loyalty.models import Campaign, Member, PointsSettings, Tier, Voucher
from loyalty.services import LoyaltyService
from users.models import Organization, OrganizationApiKey

TIERS = [
    ("Bronze", "bronze", 0, 499, "1.00"),
    ("Silver", "silver", 500, 1999, "1.25"),
    ("Gold", "gold", 2000, None, "1.50"),
]


class Command(BaseCommand):
    help = "Seeds a demo loyalty program (tiers, settings, campaign, voucher, members)"

    def add_arguments(self, parser):
        parser.add_argument("--members", type=int, default=20, help="Number of members to generate")
        parser.add_argument("--organization", default="Demo Coffee", help="Tenant name")

    def handle(self, *args, **options):
        num_members = options["members"]
        now = timezone.now()

        org, _ = Organization.objects.get_or_create(name=options["organization"])
        api_key, _ = OrganizationApiKey.objects.get_or_create(organization=org, name="Demo POS")

        for name, code, min_points, max_points, multiplier in TIERS:
            Tier.objects.get_or_create(
                organization=org,
                code=code,
                defaults={"name": name, "min_points": min_points, "max_points": max_points, "multiplier": multiplier},
            )
        PointsSettings.objects.get_or_create(organization=org)

        Campaign.objects.get_or_create(
            organization=org,
            name="Coffee Lovers",
            defaults={
                "campaign_type": Campaign.TYPE_POINTS_EARN,
                "criteria": {"min_amount": 20, "categories": ["coffee"]},
                "reward": {"value": 50},
                "start_date": now,
                "end_date": now + timedelta(days=90),
            },
        )
        Voucher.objects.get_or_create(
            organization=org,
            code="FREECOFFEE",
            defaults={
                "name": "Free Coffee",
                "voucher_type": Voucher.TYPE_FREEBIE,
                "points_cost": 100,
                "quantity": 500,
                "valid_from": now,
                "valid_until": now + timedelta(days=90),
            },
        )

        service = LoyaltyService()
        for i in range(1, num_members + 1):
            member, _ = Member.objects.get_or_create(
                phone=f"+1555{i:07d}", defaults={"first_name": "Demo", "last_name": f"Member {i}"}
            )
            service.enroll(member, org)
            service.earn(member, random.randint(10, 800), "Welcome bonus", organization=org)

        self.stdout.write(
            self.style.SUCCESS(f" Done! Seeded '{org.name}' with {num_members} members. POS API key: {api_key.key}")
        )
