"""
Models for the Loyalty application.
"""

import uuid

from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.db.models import F, Q, Sum
from django.utils import timezone

from core.models import TenantAwareModel


class Member(models.Model):
    """
    End customer, identified by phone. NOT a system user.

    A member is global: the point balance and tier live on `MemberBalance`,
    one row per loyalty program (tenant, or the global program).
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    phone = models.CharField(max_length=32, unique=True)
    email = models.EmailField(blank=True, null=True)
    first_name = models.CharField(max_length=100, blank=True)
    last_name = models.CharField(max_length=100, blank=True)
    date_of_birth = models.DateField(null=True, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.display_name

    @property
    def display_name(self):
        return f"{self.first_name} {self.last_name}".strip() or self.phone

    def aggregate_points(self):
        """
        Read-time projection of the member's counters across every program.
        """
        totals = self.balances.aggregate(
            available=Sum("available_points"),
            total=Sum("total_points"),
            lifetime=Sum("lifetime_points"),
        )
        return {key: value or 0 for key, value in totals.items()}


class Tier(TenantAwareModel):
    """
    A point-threshold band. Ranges are contiguous per tenant;
    `max_points` is NULL for the open-ended top tier.
    """

    name = models.CharField(max_length=100)
    code = models.CharField(max_length=50)
    min_points = models.PositiveIntegerField()
    max_points = models.PositiveIntegerField(null=True, blank=True)
    multiplier = models.DecimalField(max_digits=6, decimal_places=2, default=1)
    # Opaque to the engine.
    benefits = models.JSONField(default=dict, blank=True)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["min_points"]
        constraints = [models.CheckConstraint(condition=Q(multiplier__gte=0), name="tier_multiplier_non_negative")]

    def __str__(self):
        return f"{self.name} ({self.min_points}+)"


class MemberBalance(TenantAwareModel):
    """
    The balance snapshot for one BalanceKey (member, tenant-or-global).
    This row is the single unit of locking for every posting.
    """

    member = models.ForeignKey(Member, on_delete=models.CASCADE, related_name="balances")
    tier = models.ForeignKey(Tier, on_delete=models.PROTECT, null=True, blank=True, related_name="balances")

    # Spendable now.
    available_points = models.IntegerField(default=0)
    # Cumulative earned minus redemptions (informational).
    total_points = models.IntegerField(default=0)
    # Cumulative earned, never decreases; drives tier thresholds.
    lifetime_points = models.IntegerField(default=0)

    is_active = models.BooleanField(default=True)
    joined_at = models.DateTimeField(default=timezone.now)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["member", "organization"],
                name="unique_member_balance_per_tenant",
            ),
            # NULLs never collide in a plain unique index.
            models.UniqueConstraint(
                fields=["member"],
                condition=Q(organization__isnull=True),
                name="unique_member_global_balance",
            ),
            models.CheckConstraint(condition=Q(available_points__gte=0), name="available_points_non_negative"),
        ]

    def __str__(self):
        scope = self.organization.name if self.organization_id else "global"
        return f"{self.member} @ {scope}: {self.available_points}"


class LedgerEntry(TenantAwareModel):
    """
    The Ledger (Journal).
    Records every point movement (+ or -). Entries are written once and never changed.
    """

    EARN = "earn"
    REDEEM = "redeem"
    EXPIRE = "expire"
    ADJUST = "adjust"

    ENTRY_TYPES = [
        (EARN, "Earn Points"),
        (REDEEM, "Redeem Points"),
        (EXPIRE, "Expire Points"),
        (ADJUST, "Manual Adjustment"),
    ]

    balance = models.ForeignKey(MemberBalance, on_delete=models.PROTECT, related_name="entries")
    entry_type = models.CharField(max_length=20, choices=ENTRY_TYPES)

    # Signed delta actually applied to `available_points`.
    points = models.IntegerField()
    balance_before = models.IntegerField()
    balance_after = models.IntegerField()

    description = models.TextField(blank=True)
    reference_type = models.CharField(max_length=50, blank=True)
    reference_id = models.CharField(max_length=64, blank=True)
    campaign = models.ForeignKey(
        "loyalty.Campaign", on_delete=models.SET_NULL, null=True, blank=True, related_name="ledger_entries"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at"]
        constraints = [
            models.CheckConstraint(
                condition=Q(balance_after=F("balance_before") + F("points")),
                name="ledger_entry_balance_arithmetic",
            ),
        ]

    def __str__(self):
        return f"{self.balance.member} {self.points:+d} ({self.get_entry_type_display()})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Ledger entries are immutable.")
        super().save(*args, **kwargs)


class PointsSettings(TenantAwareModel):
    """
    Points configuration of one loyalty program, owned by the program admin.
    """

    ROUNDING_FLOOR = "floor"
    ROUNDING_ROUND = "round"

    ROUNDING_RULES = [
        (ROUNDING_FLOOR, "Round down"),
        (ROUNDING_ROUND, "Round half up"),
    ]

    base_earning_rate = models.DecimalField(max_digits=8, decimal_places=4, default=1)
    rounding_rule = models.CharField(max_length=10, choices=ROUNDING_RULES, default=ROUNDING_FLOOR)

    class Meta:
        verbose_name_plural = "points settings"
        constraints = [
            models.UniqueConstraint(fields=["organization"], name="unique_points_settings_per_tenant"),
            models.CheckConstraint(condition=Q(base_earning_rate__gte=0), name="earning_rate_non_negative"),
        ]

    def __str__(self):
        return f"{self.base_earning_rate} pt/unit ({self.rounding_rule})"


class Campaign(TenantAwareModel):
    """
    Represents a promotional campaign with flexible rules.
    """

    TYPE_POINTS_EARN = "points_earn"
    TYPE_POINTS_MULTIPLIER = "points_multiplier"
    TYPE_VOUCHER_DISTRIBUTION = "voucher_distribution"
    TYPE_TIER_BONUS = "tier_bonus"

    CAMPAIGN_TYPES = [
        (TYPE_POINTS_EARN, "Fixed Bonus (e.g. +50 points)"),
        (TYPE_POINTS_MULTIPLIER, "Multiplier (e.g. x2)"),
        (TYPE_VOUCHER_DISTRIBUTION, "Voucher Grant"),
        (TYPE_TIER_BONUS, "Tier Bonus"),
    ]

    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    campaign_type = models.CharField(max_length=30, choices=CAMPAIGN_TYPES, default=TYPE_POINTS_EARN)

    # JSON field for rules.
    # EXAMPLE: {"min_amount": 20, "categories": ["coffee"], "days": ["monday"]}
    criteria = models.JSONField(default=dict, blank=True)
    # EXAMPLE: {"value": 50} / {"multiplier": 2} / {"voucher_id": "<uuid>"}
    reward = models.JSONField(default=dict, blank=True)

    start_date = models.DateTimeField()
    end_date = models.DateTimeField()
    priority = models.IntegerField(default=0)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["-priority"]

    def __str__(self):
        return f"{self.name} ({self.get_campaign_type_display()})"

    def is_running(self, now=None):
        now = now or timezone.now()
        return self.is_active and self.start_date <= now <= self.end_date


class Voucher(TenantAwareModel):
    """
    Catalog item members can exchange points for.
    e.g., "Free Coffee", "10% Discount Coupon".
    """

    TYPE_PERCENTAGE = "percentage"
    TYPE_FIXED = "fixed"
    TYPE_FREEBIE = "freebie"

    VOUCHER_TYPES = [
        (TYPE_PERCENTAGE, "Percentage discount"),
        (TYPE_FIXED, "Fixed amount discount"),
        (TYPE_FREEBIE, "Free item"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=100)
    code = models.CharField(max_length=50)
    description = models.TextField(blank=True)
    voucher_type = models.CharField(max_length=20, choices=VOUCHER_TYPES)
    value = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    min_purchase = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    max_discount = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    points_cost = models.PositiveIntegerField(default=0)
    # NULL means unlimited stock.
    quantity = models.PositiveIntegerField(null=True, blank=True)
    used_count = models.PositiveIntegerField(default=0)
    valid_from = models.DateTimeField()
    valid_until = models.DateTimeField()
    is_active = models.BooleanField(default=True)

    def __str__(self):
        return self.name

    def is_available(self, now=None):
        now = now or timezone.now()
        return self.is_active and self.valid_from <= now <= self.valid_until

    @property
    def is_sold_out(self):
        return self.quantity is not None and self.used_count >= self.quantity


class MemberVoucher(TenantAwareModel):
    """
    A member's claimed instance of a voucher: active -> used | expired.
    """

    STATUS_ACTIVE = "active"
    STATUS_USED = "used"
    STATUS_EXPIRED = "expired"

    STATUSES = [
        (STATUS_ACTIVE, "Active"),
        (STATUS_USED, "Used"),
        (STATUS_EXPIRED, "Expired"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    member = models.ForeignKey(Member, on_delete=models.CASCADE, related_name="vouchers")
    voucher = models.ForeignKey(Voucher, on_delete=models.PROTECT, related_name="claims")
    status = models.CharField(max_length=10, choices=STATUSES, default=STATUS_ACTIVE)
    used_at = models.DateTimeField(null=True, blank=True)
    used_at_location = models.CharField(max_length=255, blank=True)
    expires_at = models.DateTimeField()
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.voucher} for {self.member} ({self.status})"


class RedemptionToken(TenantAwareModel):
    """
    Server-side record of an issued redemption token.
    `status` makes a consumed token unusable even though its signature stays valid.
    """

    TYPE_POINTS = "points"
    TYPE_VOUCHER = "voucher"
    TYPE_MEMBERSHIP = "membership"

    TOKEN_TYPES = [
        (TYPE_POINTS, "Spend points"),
        (TYPE_VOUCHER, "Redeem voucher"),
        (TYPE_MEMBERSHIP, "Prove membership"),
    ]

    STATUS_ACTIVE = "active"
    STATUS_USED = "used"
    STATUS_EXPIRED = "expired"

    STATUSES = [
        (STATUS_ACTIVE, "Active"),
        (STATUS_USED, "Used"),
        (STATUS_EXPIRED, "Expired"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    member = models.ForeignKey(Member, on_delete=models.CASCADE, related_name="redemption_tokens")
    token_type = models.CharField(max_length=20, choices=TOKEN_TYPES)
    payload = models.JSONField()
    token = models.TextField()
    signature = models.CharField(max_length=128, unique=True)
    points_amount = models.PositiveIntegerField(null=True, blank=True)
    member_voucher = models.ForeignKey(
        MemberVoucher, on_delete=models.SET_NULL, null=True, blank=True, related_name="redemption_tokens"
    )
    status = models.CharField(max_length=10, choices=STATUSES, default=STATUS_ACTIVE)
    expires_at = models.DateTimeField()

    used_at = models.DateTimeField(null=True, blank=True)
    used_by_pos_id = models.CharField(max_length=100, blank=True)
    used_at_location = models.CharField(max_length=255, blank=True)
    # Set once the ledger / voucher effect went through; a used token without it needs reconciliation.
    effect_applied_at = models.DateTimeField(null=True, blank=True)
    effect_error = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [models.Index(fields=["status", "expires_at"])]

    def __str__(self):
        return f"{self.get_token_type_display()} token for {self.member} ({self.status})"


class Purchase(TenantAwareModel):
    """
    A point-of-sale purchase event, kept forever as the audit trail of ingestion.
    """

    STATUS_PENDING = "pending"
    STATUS_PROCESSED = "processed"
    STATUS_FAILED = "failed"

    STATUSES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_PROCESSED, "Processed"),
        (STATUS_FAILED, "Failed"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    member = models.ForeignKey(Member, on_delete=models.PROTECT, related_name="purchases")
    # Idempotency key supplied by the POS system.
    external_id = models.CharField(max_length=255)
    pos_id = models.CharField(max_length=100)
    location_id = models.CharField(max_length=100, blank=True)
    location_name = models.CharField(max_length=255, blank=True)
    items = models.JSONField(default=list, encoder=DjangoJSONEncoder)
    subtotal = models.DecimalField(max_digits=12, decimal_places=2)
    tax = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    discount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total = models.DecimalField(max_digits=12, decimal_places=2)
    payment_method = models.CharField(max_length=50, blank=True)
    points_earned = models.IntegerField(default=0)
    status = models.CharField(max_length=10, choices=STATUSES, default=STATUS_PENDING)
    processed_at = models.DateTimeField(null=True, blank=True)
    transaction_date = models.DateTimeField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["organization", "external_id"], name="unique_purchase_external_id"),
            models.UniqueConstraint(
                fields=["external_id"],
                condition=Q(organization__isnull=True),
                name="unique_global_purchase_external_id",
            ),
        ]

    def __str__(self):
        return f"{self.external_id} ({self.status})"
