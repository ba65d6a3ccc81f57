"""
Redemption token protocol.

A token is a base64-encoded JSON envelope
`{type, memberId, points|memberVoucherId, exp, nonce, sig}` where `sig` is an
HMAC-SHA256 over the canonical JSON of the envelope without `sig`.
Tokens are persisted with a status so a consumed token can never be replayed.
"""

import base64
import binascii
import io
import json
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from datetime import timezone as dt_timezone
from typing import Optional

import qrcode
from django.conf import settings
from django.db import transaction
from django.utils import timezone
from django.utils.crypto import constant_time_compare, salted_hmac

from loyalty.exceptions import (
    InsufficientPoints,
    InvalidTokenSignature,
    MemberNotFound,
    TokenAlreadyUsed,
    TokenExpired,
    TokenNotFound,
    ValidationFailure,
    VoucherExpired,
    VoucherNotFound,
)
from loyalty.models import Member, MemberVoucher, RedemptionToken
from loyalty.services import LoyaltyService
from loyalty.vouchers import VoucherService

logger = logging.getLogger(__name__)

SIGNATURE_SALT = "loyalty.tokens.RedemptionToken"


# ---------------------------------------------------------------------------
# Wire format
# ---------------------------------------------------------------------------


def canonical(payload: dict) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))


def sign(payload: dict) -> str:
    return salted_hmac(
        SIGNATURE_SALT, canonical(payload), secret=settings.REDEMPTION_TOKEN_SECRET, algorithm="sha256"
    ).hexdigest()


def encode(payload: dict) -> tuple:
    signature = sign(payload)
    envelope = dict(payload, sig=signature)
    token = base64.urlsafe_b64encode(canonical(envelope).encode()).decode()
    return token, signature


def decode(token: str) -> tuple:
    """
    Splits a token into (payload, signature), verifying the signature in constant time.
    """
    try:
        envelope = json.loads(base64.urlsafe_b64decode(token.encode()))
    except (binascii.Error, UnicodeError, ValueError, AttributeError):
        raise InvalidTokenSignature() from None

    if not isinstance(envelope, dict) or not isinstance(envelope.get("sig"), str):
        raise InvalidTokenSignature()

    signature = envelope.pop("sig")
    if not constant_time_compare(signature, sign(envelope)):
        raise InvalidTokenSignature()

    required = {"type", "memberId", "exp"}
    if not required <= envelope.keys() or not isinstance(envelope["exp"], int):
        raise InvalidTokenSignature()
    return envelope, signature


def render_qr(token: str) -> str:
    """
    PNG data URL of the token, for the member app to display.
    """
    qr = qrcode.QRCode(error_correction=qrcode.constants.ERROR_CORRECT_H, box_size=10, border=2)
    qr.add_data(token)
    qr.make(fit=True)
    image = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode()


def to_epoch_millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def from_epoch_millis(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=dt_timezone.utc)


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@dataclass
class IssuedToken:
    record: RedemptionToken
    token: str
    qr_image: str
    expires_at: datetime


@dataclass
class TokenPreview:
    record: RedemptionToken
    token_type: str
    member: Member
    member_name: str
    points: Optional[int] = None
    member_voucher: Optional[MemberVoucher] = None

    def as_dict(self):
        data = {
            "valid": True,
            "type": self.token_type,
            "member_id": str(self.member.pk),
            "member_name": self.member_name,
            "token_id": str(self.record.pk),
            "expires_at": self.record.expires_at,
        }
        if self.points is not None:
            data["points"] = self.points
        if self.member_voucher is not None:
            voucher = self.member_voucher.voucher
            data["voucher"] = {
                "id": str(self.member_voucher.pk),
                "name": voucher.name,
                "type": voucher.voucher_type,
                "value": str(voucher.value),
            }
        return data


class RedemptionTokenService:
    def __init__(self, ledger=None, vouchers=None):
        self.ledger = ledger or LoyaltyService()
        self.vouchers = vouchers or VoucherService(ledger=self.ledger)

    # --- Issue ---

    def issue_points_token(self, member, points, organization=None) -> IssuedToken:
        if points <= 0:
            raise ValidationFailure("Invalid points amount.")

        available = self.ledger.balance(member, organization)["available"]
        if available < points:
            raise InsufficientPoints(available=available, required=points)

        return self._issue(member, RedemptionToken.TYPE_POINTS, organization, {"points": points}, points_amount=points)

    def issue_voucher_token(self, member, member_voucher_id, organization=None) -> IssuedToken:
        member_voucher = (
            MemberVoucher.objects.for_tenant(organization)
            .filter(pk=member_voucher_id, member=member, status=MemberVoucher.STATUS_ACTIVE)
            .first()
        )
        if member_voucher is None:
            raise VoucherNotFound("Voucher not found or not active.")
        if member_voucher.expires_at < timezone.now():
            raise VoucherExpired()

        return self._issue(
            member,
            RedemptionToken.TYPE_VOUCHER,
            organization,
            {"memberVoucherId": str(member_voucher.pk)},
            member_voucher=member_voucher,
        )

    def issue_membership_token(self, member, organization=None) -> IssuedToken:
        return self._issue(member, RedemptionToken.TYPE_MEMBERSHIP, organization, {})

    def _issue(self, member, token_type, organization, extra, **fields) -> IssuedToken:
        expires_at = timezone.now() + timedelta(minutes=settings.REDEMPTION_TOKEN_EXPIRY_MINUTES)
        payload = {
            "type": token_type,
            "memberId": str(member.pk),
            "exp": to_epoch_millis(expires_at),
            # Two tokens issued for the same intent in the same millisecond must still differ.
            "nonce": secrets.token_hex(8),
            **extra,
        }
        token, signature = encode(payload)

        record = RedemptionToken.objects.create(
            member=member,
            organization=organization,
            token_type=token_type,
            payload=payload,
            token=token,
            signature=signature,
            expires_at=expires_at,
            **fields,
        )
        logger.info("Issued %s token %s for member %s", token_type, record.pk, member.pk)
        return IssuedToken(record=record, token=token, qr_image=render_qr(token), expires_at=expires_at)

    # --- Validate ---

    def validate(self, token, organization=None) -> TokenPreview:
        """
        Decodes and checks a token without changing any state.
        """
        payload, signature = decode(token)

        if payload["exp"] < to_epoch_millis(timezone.now()):
            raise TokenExpired()

        record = (
            RedemptionToken.objects.for_tenant(organization)
            .select_related("member", "member_voucher__voucher")
            .filter(signature=signature)
            .first()
        )
        if record is None or record.token != token:
            raise TokenNotFound()
        if record.status == RedemptionToken.STATUS_USED:
            raise TokenAlreadyUsed()
        if record.status == RedemptionToken.STATUS_EXPIRED:
            raise TokenExpired()

        member = record.member
        if str(member.pk) != payload["memberId"]:
            raise InvalidTokenSignature()
        if not member.is_active:
            raise MemberNotFound()

        preview = TokenPreview(
            record=record, token_type=payload["type"], member=member, member_name=member.display_name
        )
        if payload["type"] == RedemptionToken.TYPE_POINTS:
            preview.points = payload.get("points")
        elif payload["type"] == RedemptionToken.TYPE_VOUCHER:
            preview.member_voucher = record.member_voucher
            if preview.member_voucher is None:
                raise VoucherNotFound()
        return preview

    # --- Consume ---

    def consume(self, token, pos_id, location_name="", organization=None) -> dict:
        """
        Validates, burns the token (first writer wins), then applies its effect.

        The status flip commits before the effect runs: a retry after a crash
        can never spend twice. A used token without `effect_applied_at` is picked
        up by the reconciliation task.
        """
        preview = self.validate(token, organization)
        record = preview.record
        now = timezone.now()

        with transaction.atomic():
            flipped = RedemptionToken.objects.filter(pk=record.pk, status=RedemptionToken.STATUS_ACTIVE).update(
                status=RedemptionToken.STATUS_USED,
                used_at=now,
                used_by_pos_id=pos_id,
                used_at_location=location_name or "",
            )
        if not flipped:
            raise TokenAlreadyUsed()

        details = {"member_id": str(preview.member.pk), "member_name": preview.member_name}
        try:
            if preview.token_type == RedemptionToken.TYPE_POINTS:
                posting = self.ledger.redeem(
                    preview.member,
                    preview.points,
                    description=f"Points redeemed at {location_name or pos_id}",
                    organization=record.organization,
                    reference_type="redemption_token",
                    reference_id=record.pk,
                )
                details["points_redeemed"] = preview.points
                details["new_balance"] = posting.new_balance
            elif preview.token_type == RedemptionToken.TYPE_VOUCHER:
                self.vouchers.redeem(
                    preview.member_voucher.pk,
                    location=location_name,
                    member=preview.member,
                    organization=record.organization,
                )
                details["voucher"] = preview.as_dict()["voucher"]
        except Exception as exc:
            RedemptionToken.objects.filter(pk=record.pk).update(effect_error=str(exc)[:1000])
            logger.error(
                "Redemption token %s was consumed but its %s effect failed: %s",
                record.pk,
                preview.token_type,
                exc,
            )
            raise

        RedemptionToken.objects.filter(pk=record.pk).update(effect_applied_at=timezone.now())
        logger.info("Redemption token %s consumed by POS %s", record.pk, pos_id)
        return {"success": True, "type": preview.token_type, "details": details}

    # --- Housekeeping ---

    def expire_stale(self) -> int:
        return RedemptionToken.objects.filter(
            status=RedemptionToken.STATUS_ACTIVE, expires_at__lt=timezone.now()
        ).update(status=RedemptionToken.STATUS_EXPIRED)

    def unreconciled(self, grace_minutes=None):
        """
        Tokens burnt longer than the grace period ago whose effect never landed.
        """
        grace = grace_minutes if grace_minutes is not None else settings.REDEMPTION_RECONCILE_GRACE_MINUTES
        cutoff = timezone.now() - timedelta(minutes=grace)
        return RedemptionToken.objects.filter(
            status=RedemptionToken.STATUS_USED,
            effect_applied_at__isnull=True,
            used_at__lte=cutoff,
        ).exclude(token_type=RedemptionToken.TYPE_MEMBERSHIP)
