"""
Purchase ingestion pipeline: POS event -> campaign evaluation -> ledger.
"""

import logging
from dataclasses import dataclass, field
from typing import List

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.utils import timezone

from loyalty.campaigns import CampaignEngine
from loyalty.exceptions import DuplicateTransaction, MemberNotFound
from loyalty.models import Member, Purchase
from loyalty.services import LoyaltyService

logger = logging.getLogger(__name__)


@dataclass
class RewardSummary:
    points_earned: int = 0
    vouchers_awarded: List[str] = field(default_factory=list)
    rewards: List[dict] = field(default_factory=list)


class PurchaseService:
    def __init__(self, ledger=None, engine=None):
        self.ledger = ledger or LoyaltyService()
        self.engine = engine or CampaignEngine(ledger=self.ledger)

    def resolve_member(self, member_id=None, member_phone=None) -> Member:
        queryset = Member.objects.filter(is_active=True)
        try:
            if member_id:
                return queryset.get(pk=member_id)
            if member_phone:
                return queryset.get(phone=member_phone)
        except (Member.DoesNotExist, DjangoValidationError):
            pass
        raise MemberNotFound()

    def find_by_external_id(self, external_id, organization=None):
        return Purchase.objects.for_tenant(organization).filter(external_id=external_id).first()

    def submit(self, data: dict, organization=None):
        """
        Ingests one purchase event.

        The external id is the idempotency key: a repeated id is rejected before
        anything is written. The purchase row is committed as `pending` on its own
        and ends up `processed` or `failed`; it is never deleted.

        Returns:
            (Purchase, RewardSummary)
        """
        member = self.resolve_member(data.get("member_id"), data.get("member_phone"))
        external_id = data["external_id"]

        if self.find_by_external_id(external_id, organization) is not None:
            raise DuplicateTransaction()

        try:
            with transaction.atomic():
                purchase = Purchase.objects.create(
                    organization=organization,
                    member=member,
                    external_id=external_id,
                    pos_id=data["pos_id"],
                    location_id=data.get("location_id") or "",
                    location_name=data.get("location_name") or "",
                    items=data.get("items", []),
                    subtotal=data["subtotal"],
                    tax=data.get("tax") or 0,
                    discount=data.get("discount") or 0,
                    total=data["total"],
                    payment_method=data.get("payment_method") or "",
                    transaction_date=data["transaction_date"],
                    status=Purchase.STATUS_PENDING,
                )
        except IntegrityError:
            # A concurrent delivery of the same event won the insert.
            raise DuplicateTransaction() from None

        # Postings and the `processed` mark commit together or not at all.
        try:
            with transaction.atomic():
                self.ledger.enroll(member, organization)
                result = self.engine.evaluate(purchase)

                purchase.status = Purchase.STATUS_PROCESSED
                purchase.points_earned = result.total_points
                purchase.processed_at = timezone.now()
                purchase.save(update_fields=["status", "points_earned", "processed_at"])
        except Exception:
            Purchase.objects.filter(pk=purchase.pk).update(status=Purchase.STATUS_FAILED, points_earned=0)
            purchase.status = Purchase.STATUS_FAILED
            purchase.points_earned = 0
            purchase.processed_at = None
            logger.exception("Purchase %s (%s) failed during reward evaluation", purchase.pk, external_id)
            raise

        logger.info("Purchase %s processed: %d points", external_id, result.total_points)
        summary = RewardSummary(
            points_earned=result.total_points,
            vouchers_awarded=result.vouchers_awarded,
            rewards=[reward.as_dict() for reward in result.rewards],
        )
        return purchase, summary
