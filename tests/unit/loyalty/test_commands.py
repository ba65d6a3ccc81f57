"""
Tests for the seed_loyalty_program management command.
"""

from io import StringIO

from django.core.management import call_command

from loyalty.models import Campaign, MemberBalance, PointsSettings, Tier, Voucher
from users.models import Organization


class TestSeedLoyaltyProgram:
    def test_seeds_a_complete_program(self):
        out = StringIO()

        call_command("seed_loyalty_program", members=3, organization="Test Beans", stdout=out)

        org = Organization.objects.get(name="Test Beans")
        assert Tier.objects.filter(organization=org).count() == 3
        assert PointsSettings.objects.filter(organization=org).exists()
        assert Campaign.objects.filter(organization=org).count() == 1
        assert Voucher.objects.filter(organization=org).count() == 1
        balances = MemberBalance.objects.filter(organization=org)
        assert balances.count() == 3
        assert all(balance.available_points > 0 for balance in balances)
        assert "Done!" in out.getvalue()

    def test_running_twice_reuses_program(self):
        call_command("seed_loyalty_program", members=2, stdout=StringIO())
        call_command("seed_loyalty_program", members=2, stdout=StringIO())

        assert Organization.objects.count() == 1
        assert MemberBalance.objects.count() == 2
