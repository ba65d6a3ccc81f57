"""
Voucher claim and redemption.
"""

import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from loyalty.exceptions import (
    InsufficientPoints,
    VoucherExpired,
    VoucherNotActive,
    VoucherNotFound,
    VoucherSoldOut,
    VoucherUnavailable,
)
from loyalty.models import MemberVoucher, Voucher
from loyalty.services import BalanceKey, LoyaltyService

logger = logging.getLogger(__name__)


class VoucherService:
    def __init__(self, ledger=None):
        self.ledger = ledger or LoyaltyService()

    def available_vouchers(self, organization=None):
        now = timezone.now()
        return [
            voucher
            for voucher in Voucher.objects.for_tenant(organization).filter(
                is_active=True, valid_from__lte=now, valid_until__gte=now
            )
            if not voucher.is_sold_out
        ]

    @transaction.atomic
    def claim(self, member, voucher_id, organization=None) -> MemberVoucher:
        """
        Exchanges points for a voucher instance.

        Locks the member's balance row, then the voucher row (always in this order),
        so concurrent claims serialize on stock and on balance.
        """
        balance = self.ledger.lock_balance(BalanceKey(member, organization))

        try:
            voucher = Voucher.objects.for_tenant(organization).select_for_update().get(pk=voucher_id)
        except (Voucher.DoesNotExist, DjangoValidationError):
            raise VoucherNotFound() from None

        if not voucher.is_available():
            raise VoucherUnavailable()
        if voucher.is_sold_out:
            raise VoucherSoldOut()
        if balance.available_points < voucher.points_cost:
            raise InsufficientPoints(available=balance.available_points, required=voucher.points_cost)

        if voucher.points_cost > 0:
            self.ledger.redeem(
                member,
                voucher.points_cost,
                description=f"Claimed voucher: {voucher.name}",
                organization=organization,
                reference_type="voucher_claim",
                reference_id=voucher.pk,
            )

        Voucher.objects.filter(pk=voucher.pk).update(used_count=F("used_count") + 1)

        member_voucher = MemberVoucher.objects.create(
            member=member,
            voucher=voucher,
            organization=organization,
            expires_at=voucher.valid_until,
        )
        logger.info("Member %s claimed voucher %s", member.pk, voucher.pk)
        return member_voucher

    def redeem(self, member_voucher_id, location="", member=None, organization=None) -> MemberVoucher:
        """
        Marks a claimed voucher as used. An overdue voucher is flipped to
        `expired` (and stays so) before VoucherExpired is raised.
        """
        expired = False

        with transaction.atomic():
            queryset = (
                MemberVoucher.objects.for_tenant(organization)
                .select_for_update(of=("self",))
                .select_related("voucher")
            )
            if member is not None:
                queryset = queryset.filter(member=member)
            try:
                member_voucher = queryset.get(pk=member_voucher_id)
            except (MemberVoucher.DoesNotExist, DjangoValidationError):
                raise VoucherNotFound() from None

            if member_voucher.status != MemberVoucher.STATUS_ACTIVE:
                raise VoucherNotActive()

            now = timezone.now()
            if member_voucher.expires_at <= now:
                member_voucher.status = MemberVoucher.STATUS_EXPIRED
                member_voucher.save(update_fields=["status"])
                expired = True
            else:
                member_voucher.status = MemberVoucher.STATUS_USED
                member_voucher.used_at = now
                member_voucher.used_at_location = location or ""
                member_voucher.save(update_fields=["status", "used_at", "used_at_location"])

        if expired:
            raise VoucherExpired()

        logger.info("Member voucher %s redeemed at %s", member_voucher.pk, location or "unknown location")
        return member_voucher

    def expire_overdue(self) -> int:
        return MemberVoucher.objects.filter(
            status=MemberVoucher.STATUS_ACTIVE, expires_at__lt=timezone.now()
        ).update(status=MemberVoucher.STATUS_EXPIRED)
