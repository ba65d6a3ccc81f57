"""
Service layer for the points ledger.
Handles balance postings, tier re-evaluation and points expiration.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from django.db import IntegrityError, OperationalError, transaction
from django.db.models import Sum

from loyalty import tiers
from loyalty.exceptions import InsufficientPoints, MembershipNotFound, TransientStorageError, ValidationFailure
from loyalty.models import LedgerEntry, MemberBalance

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BalanceKey:
    """
    Identifies one balance row: a member inside a tenant's program,
    or inside the global program when `organization` is None.
    """

    member: object
    organization: Optional[object] = None

    @property
    def organization_id(self):
        return self.organization.id if self.organization is not None else None

    def queryset(self):
        return MemberBalance.objects.for_tenant(self.organization).filter(member=self.member)


@dataclass
class PostingResult:
    entry: LedgerEntry
    balance: MemberBalance
    tier_changed: bool = False

    @property
    def new_balance(self):
        return self.balance.available_points


class LoyaltyService:
    """
    Encapsulates the rules for earning, spending and adjusting points.

    Every posting runs as one atomic unit: lock the balance row, compute the new
    counters, write one ledger entry, save the snapshot and re-evaluate the tier.
    """

    def enroll(self, member, organization=None):
        """
        Returns the member's balance row for the program, creating it with the
        program's entry tier when missing.
        """
        key = BalanceKey(member, organization)
        balance = key.queryset().first()
        if balance is not None:
            return balance

        try:
            with transaction.atomic():
                balance = MemberBalance.objects.create(
                    member=member, organization=organization, tier=tiers.entry_tier(organization)
                )
        except IntegrityError:
            # Lost the race against a concurrent enrollment.
            return key.queryset().get()

        logger.info("Enrolled member %s into program %s", member.pk, key.organization_id or "global")
        return balance

    def earn(self, member, points, description="", organization=None, **reference):
        return self._post(BalanceKey(member, organization), LedgerEntry.EARN, points, description, **reference)

    def redeem(self, member, points, description="", organization=None, **reference):
        return self._post(BalanceKey(member, organization), LedgerEntry.REDEEM, -points, description, **reference)

    def adjust(self, member, points, description="", organization=None, **reference):
        return self._post(BalanceKey(member, organization), LedgerEntry.ADJUST, points, description, **reference)

    def expire(self, member, points, description="", organization=None, **reference):
        return self._post(BalanceKey(member, organization), LedgerEntry.EXPIRE, -points, description, **reference)

    def balance(self, member, organization=None):
        """
        Current counters and tier for the BalanceKey. Read-only, no lock.
        """
        balance = BalanceKey(member, organization).queryset().select_related("tier").first()
        if balance is None:
            if organization is not None:
                raise MembershipNotFound()
            return {"available": 0, "total": 0, "lifetime": 0, "tier": None}

        return {
            "available": balance.available_points,
            "total": balance.total_points,
            "lifetime": balance.lifetime_points,
            "tier": balance.tier,
        }

    def lock_balance(self, key: BalanceKey) -> MemberBalance:
        """
        Locks the balance row for the rest of the current transaction.
        The global row is created on demand; a tenant membership must already exist.
        """
        if key.organization is None:
            self.enroll(key.member)

        try:
            return key.queryset().select_for_update(of=("self",)).select_related("tier").get()
        except MemberBalance.DoesNotExist:
            raise MembershipNotFound() from None

    def _post(self, key, entry_type, points, description, reference_type="", reference_id="", campaign=None):
        if entry_type == LedgerEntry.EARN and points <= 0:
            raise ValidationFailure("Earned points must be positive.")
        if entry_type in (LedgerEntry.REDEEM, LedgerEntry.EXPIRE) and points >= 0:
            raise ValidationFailure("Points to deduct must be positive.")

        try:
            with transaction.atomic():
                balance = self.lock_balance(key)
                before = balance.available_points
                after = before + points

                if entry_type in (LedgerEntry.REDEEM, LedgerEntry.EXPIRE) and after < 0:
                    if entry_type == LedgerEntry.REDEEM:
                        raise InsufficientPoints(available=before, required=-points)
                    after = 0
                if entry_type == LedgerEntry.ADJUST and after < 0:
                    # Negative adjustments clamp at zero; the entry records the delta actually applied.
                    description = f"{description} (requested {points}, clamped)".strip()
                    after = 0

                applied = after - before

                entry = LedgerEntry.objects.create(
                    balance=balance,
                    organization_id=key.organization_id,
                    entry_type=entry_type,
                    points=applied,
                    balance_before=before,
                    balance_after=after,
                    description=description,
                    reference_type=reference_type,
                    reference_id=str(reference_id) if reference_id else "",
                    campaign=campaign,
                )

                balance.available_points = after
                if applied > 0:
                    balance.total_points += applied
                    balance.lifetime_points += applied
                elif entry_type == LedgerEntry.REDEEM:
                    balance.total_points += applied

                tier_changed = self._reevaluate_tier(key, balance)
                balance.save(
                    update_fields=["available_points", "total_points", "lifetime_points", "tier"],
                )
        except OperationalError as exc:
            raise TransientStorageError() from exc

        logger.info(
            "Posted %s %+d for member %s in program %s (balance %d -> %d)",
            entry_type,
            applied,
            key.member.pk,
            key.organization_id or "global",
            before,
            after,
        )
        return PostingResult(entry=entry, balance=balance, tier_changed=tier_changed)

    def _reevaluate_tier(self, key, balance):
        """
        Moves the balance to the highest tier its lifetime points qualify for.
        Leaves the tier untouched when no tier qualifies.
        """
        tier = tiers.eligible_tier(key.organization, balance.lifetime_points)
        if tier is None or tier.pk == balance.tier_id:
            return False

        logger.info("Member %s moved to tier %s", key.member.pk, tier.code)
        balance.tier = tier
        return True

    def process_yearly_expiration(self, member, target_year: int, organization=None) -> int:
        """
        Expires points earned in `target_year` based on N+1 Strategy (Calendar Year).

        Logic (FIFO):
        Members always spend their oldest points first, so what is left of the
        target year is (Total Earned up to the end of it) - (Total Lifetime Spent/Expired).

        Returns:
            int: The amount of points expired (positive integer).
        """
        key = BalanceKey(member, organization)
        balance = key.queryset().first()
        if balance is None:
            return 0

        cutoff_date = datetime(target_year, 12, 31, 23, 59, 59, 999999, tzinfo=timezone.utc)

        earned = (
            balance.entries.filter(entry_type=LedgerEntry.EARN, created_at__lte=cutoff_date).aggregate(
                total=Sum("points")
            )["total"]
            or 0
        )

        # Spending at any time (even after the target year) consumes the oldest points.
        used = (
            balance.entries.filter(entry_type__in=[LedgerEntry.REDEEM, LedgerEntry.EXPIRE]).aggregate(
                total=Sum("points")
            )["total"]
            or 0
        )

        points_to_expire = min(earned - abs(used), balance.available_points)

        if points_to_expire > 0:
            self.expire(
                member,
                points_to_expire,
                description=f"Expiration of points earned in {target_year}",
                organization=organization,
            )
            return points_to_expire

        return 0
