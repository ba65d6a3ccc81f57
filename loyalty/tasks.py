import logging

from celery import shared_task
from django.utils import timezone

from loyalty.models import MemberBalance
from loyalty.services import LoyaltyService
from loyalty.tokens import RedemptionTokenService
from loyalty.vouchers import VoucherService

logger = logging.getLogger(__name__)


@shared_task
def process_yearly_points_expiration():
    """
    Periodic task to run the N+1 expiration strategy.
    Should be scheduled to run once a year (e.g., Jan 1st).
    """
    # if today 2026, we expire points from 2024, so points live at least 1 year
    target_year = timezone.now().year - 2

    logger.info("Starting points expiration task for target year: %s", target_year)

    batch_size = 1000
    service = LoyaltyService()

    processed_count = 0
    expired_points_total = 0

    balances = MemberBalance.objects.select_related("member", "organization").iterator(chunk_size=batch_size)

    for balance in balances:
        try:
            expired = service.process_yearly_expiration(balance.member, target_year, organization=balance.organization)
        except Exception:
            logger.exception("Error expiring points for balance %s", balance.pk)
            continue

        if expired > 0:
            expired_points_total += expired
            logger.info("Expired %s points for member %s", expired, balance.member_id)
        processed_count += 1

    return f"Finished. Processed {processed_count} balances. Total expired: {expired_points_total}"


@shared_task
def expire_redemption_tokens():
    count = RedemptionTokenService().expire_stale()
    logger.info("Expired %s stale redemption tokens", count)
    return count


@shared_task
def expire_member_vouchers():
    count = VoucherService().expire_overdue()
    logger.info("Expired %s overdue member vouchers", count)
    return count


@shared_task
def reconcile_redemption_tokens():
    """
    Alerts on tokens that were burnt but whose ledger / voucher effect never landed.
    These need a manual (or scripted) decision: re-apply the effect or refund the member.
    """
    pending = list(RedemptionTokenService().unreconciled())
    for token in pending:
        logger.error(
            "Unreconciled redemption token %s: type=%s member=%s used_at=%s pos=%s error=%s",
            token.pk,
            token.token_type,
            token.member_id,
            token.used_at,
            token.used_by_pos_id,
            token.effect_error or "-",
        )
    return len(pending)
