"""
Unit tests for the points ledger (LoyaltyService).
"""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from django.db import OperationalError

from loyalty.exceptions import InsufficientPoints, MembershipNotFound, TransientStorageError, ValidationFailure
from loyalty.models import LedgerEntry, MemberBalance
from loyalty.services import BalanceKey, LoyaltyService
from tests.factories.loyalty import MemberFactory, TierFactory
from tests.factories.users import OrganizationFactory


@pytest.fixture
def program():
    """
    A tenant with two contiguous tiers: Bronze [0, 499] and Silver [500, ...].
    """
    org = OrganizationFactory()
    bronze = TierFactory(organization=org, name="Bronze", code="bronze", min_points=0, max_points=499)
    silver = TierFactory(organization=org, name="Silver", code="silver", min_points=500, multiplier="1.25")
    return org, bronze, silver


@pytest.fixture
def service():
    return LoyaltyService()


class TestEnrollment:
    def test_enroll_assigns_lowest_tier(self, program, service):
        org, bronze, _ = program
        member = MemberFactory()

        balance = service.enroll(member, org)

        assert balance.organization == org
        assert balance.tier == bronze
        assert balance.available_points == 0

    def test_enroll_is_idempotent(self, program, service):
        org, _, _ = program
        member = MemberFactory()

        first = service.enroll(member, org)
        second = service.enroll(member, org)

        assert first.pk == second.pk
        assert MemberBalance.objects.filter(member=member).count() == 1

    def test_global_and_tenant_balances_are_separate_rows(self, program, service):
        org, _, _ = program
        member = MemberFactory()

        service.enroll(member, org)
        service.earn(member, 40, "Global welcome")

        assert MemberBalance.objects.filter(member=member).count() == 2
        assert service.balance(member)["available"] == 40
        assert service.balance(member, org)["available"] == 0


class TestPostings:
    def test_earn_updates_all_counters(self, program, service):
        org, _, _ = program
        member = MemberFactory()
        service.enroll(member, org)

        result = service.earn(member, 100, "Bonus", organization=org)

        assert result.entry.entry_type == LedgerEntry.EARN
        assert (result.entry.balance_before, result.entry.points, result.entry.balance_after) == (0, 100, 100)
        assert service.balance(member, org) == {
            "available": 100,
            "total": 100,
            "lifetime": 100,
            "tier": result.balance.tier,
        }

    def test_earn_requires_membership_in_tenant(self, program, service):
        org, _, _ = program

        with pytest.raises(MembershipNotFound):
            service.earn(MemberFactory(), 10, organization=org)

    def test_global_posting_enrolls_on_demand(self, service):
        member = MemberFactory()

        service.earn(member, 10, "Global bonus")

        balance = MemberBalance.objects.get(member=member, organization__isnull=True)
        assert balance.available_points == 10

    def test_earn_rejects_non_positive_points(self, program, service):
        org, _, _ = program
        member = MemberFactory()
        service.enroll(member, org)

        with pytest.raises(ValidationFailure):
            service.earn(member, 0, organization=org)

    def test_redeem_decreases_available_and_total_only(self, program, service):
        org, _, _ = program
        member = MemberFactory()
        service.enroll(member, org)
        service.earn(member, 100, organization=org)

        result = service.redeem(member, 30, "Coffee", organization=org)

        assert result.entry.points == -30
        assert result.new_balance == 70
        counters = service.balance(member, org)
        assert counters["total"] == 70
        assert counters["lifetime"] == 100

    def test_redeem_insufficient_points_posts_nothing(self, program, service):
        """
        Scenario: Member tries to spend more than the available balance.
        Expected: InsufficientPoints, no ledger entry, balance untouched.
        """
        org, _, _ = program
        member = MemberFactory()
        service.enroll(member, org)
        service.earn(member, 10, organization=org)

        with pytest.raises(InsufficientPoints) as exc:
            service.redeem(member, 50, "Fraud attempt", organization=org)

        assert "Balance: 10, Required: 50" in str(exc.value)
        assert LedgerEntry.objects.filter(entry_type=LedgerEntry.REDEEM).count() == 0
        assert service.balance(member, org)["available"] == 10

    def test_negative_adjust_clamps_at_zero(self, program, service):
        org, _, _ = program
        member = MemberFactory()
        service.enroll(member, org)
        service.earn(member, 30, organization=org)

        result = service.adjust(member, -50, "Correction", organization=org)

        assert result.new_balance == 0
        # The entry records the delta actually applied.
        assert result.entry.points == -30
        assert result.entry.balance_after == result.entry.balance_before + result.entry.points
        assert "clamped" in result.entry.description

    def test_positive_adjust_counts_towards_lifetime(self, program, service):
        org, _, _ = program
        member = MemberFactory()
        service.enroll(member, org)

        service.adjust(member, 25, "Goodwill", organization=org)

        assert service.balance(member, org)["lifetime"] == 25

    def test_ledger_replays_to_current_balance(self, program, service):
        org, _, _ = program
        member = MemberFactory()
        service.enroll(member, org)

        service.earn(member, 120, organization=org)
        service.redeem(member, 20, organization=org)
        service.adjust(member, -500, organization=org)
        service.earn(member, 7, organization=org)

        balance = BalanceKey(member, org).queryset().get()
        entries = list(balance.entries.order_by("created_at", "id"))

        assert sum(entry.points for entry in entries) == balance.available_points == 7
        for previous, current in zip(entries, entries[1:]):
            assert current.balance_before == previous.balance_after

    def test_ledger_entries_are_immutable(self, program, service):
        org, _, _ = program
        member = MemberFactory()
        service.enroll(member, org)
        entry = service.earn(member, 10, organization=org).entry

        entry.description = "tampered"
        with pytest.raises(ValueError):
            entry.save()

    def test_storage_error_becomes_transient(self, program, service):
        org, _, _ = program
        member = MemberFactory()
        service.enroll(member, org)

        with patch.object(LoyaltyService, "lock_balance", side_effect=OperationalError("lock timeout")):
            with pytest.raises(TransientStorageError) as exc:
                service.earn(member, 10, organization=org)

        assert exc.value.retryable is True


class TestTiers:
    def test_upgrade_on_boundary(self, program, service):
        """
        Scenario: lifetime goes from 499 to 500.
        Expected: The member moves to the tier starting at 500 within the same posting.
        """
        org, bronze, silver = program
        member = MemberFactory()
        service.enroll(member, org)

        first = service.earn(member, 499, organization=org)
        assert first.balance.tier == bronze
        assert first.tier_changed is False

        second = service.earn(member, 1, organization=org)
        assert second.tier_changed is True
        assert BalanceKey(member, org).queryset().get().tier == silver

    def test_redeem_never_downgrades(self, program, service):
        org, _, silver = program
        member = MemberFactory()
        service.enroll(member, org)
        service.earn(member, 600, organization=org)

        service.redeem(member, 600, organization=org)

        assert BalanceKey(member, org).queryset().get().tier == silver

    def test_tier_unchanged_when_nothing_qualifies(self, service):
        org = OrganizationFactory()
        vip = TierFactory(organization=org, min_points=1000)
        member = MemberFactory()
        service.enroll(member, org)

        result = service.earn(member, 10, organization=org)

        assert result.tier_changed is False
        assert result.balance.tier == vip

    def test_inactive_tiers_are_ignored(self, program, service):
        org, bronze, silver = program
        silver.is_active = False
        silver.save()
        member = MemberFactory()
        service.enroll(member, org)

        service.earn(member, 900, organization=org)

        assert BalanceKey(member, org).queryset().get().tier == bronze


class TestBalanceQueries:
    def test_missing_tenant_membership(self, program, service):
        org, _, _ = program

        with pytest.raises(MembershipNotFound):
            service.balance(MemberFactory(), org)

    def test_missing_global_balance_reads_as_zero(self, service):
        assert service.balance(MemberFactory()) == {"available": 0, "total": 0, "lifetime": 0, "tier": None}

    def test_aggregate_projection_spans_programs(self, program, service):
        org, _, _ = program
        other_org = OrganizationFactory()
        member = MemberFactory()
        service.enroll(member, org)
        service.enroll(member, other_org)

        service.earn(member, 100, organization=org)
        service.earn(member, 50, organization=other_org)
        service.earn(member, 5)

        assert member.aggregate_points() == {"available": 155, "total": 155, "lifetime": 155}


class TestYearlyExpiration:
    """
    N+1 strategy: points earned in year N expire at the start of year N+2.
    """

    def _age_entries(self, balance, year):
        balance.entries.update(created_at=datetime(year, 6, 1, tzinfo=timezone.utc))

    def test_expires_unspent_points_of_target_year(self, program, service):
        org, _, _ = program
        member = MemberFactory()
        balance = service.enroll(member, org)

        service.earn(member, 100, organization=org)
        self._age_entries(balance, 2024)
        service.redeem(member, 30, organization=org)
        service.earn(member, 50, organization=org)

        expired = service.process_yearly_expiration(member, 2024, organization=org)

        assert expired == 70
        assert service.balance(member, org)["available"] == 50
        assert balance.entries.filter(entry_type=LedgerEntry.EXPIRE).get().points == -70

    def test_second_run_expires_nothing(self, program, service):
        org, _, _ = program
        member = MemberFactory()
        balance = service.enroll(member, org)
        service.earn(member, 100, organization=org)
        self._age_entries(balance, 2024)

        assert service.process_yearly_expiration(member, 2024, organization=org) == 100
        assert service.process_yearly_expiration(member, 2024, organization=org) == 0

    def test_no_balance_row_expires_nothing(self, service):
        assert service.process_yearly_expiration(MemberFactory(), 2024) == 0
