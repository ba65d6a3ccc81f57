"""
Serializers for the Loyalty application.
"""

from rest_framework import serializers

from loyalty.models import MemberVoucher, Purchase, RedemptionToken, Voucher
from loyalty.purchases import PurchaseService


def request_tenant(serializer):
    request = serializer.context.get("request")
    return getattr(request, "tenant", None)


class PurchaseItemSerializer(serializers.Serializer):
    sku = serializers.CharField(max_length=100)
    name = serializers.CharField(max_length=255)
    category = serializers.CharField(max_length=100, required=False, allow_blank=True)
    quantity = serializers.IntegerField(min_value=1)
    unit_price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)
    total_price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)


class PurchaseSubmissionSerializer(serializers.Serializer):
    """
    Purchase event sent by a POS terminal.
    Output: transaction id, status and the reward summary.
    """

    external_id = serializers.CharField(max_length=255)
    pos_id = serializers.CharField(max_length=100)
    location_id = serializers.CharField(max_length=100, required=False, allow_blank=True)
    location_name = serializers.CharField(max_length=255, required=False, allow_blank=True)
    member_id = serializers.UUIDField(required=False, allow_null=True)
    member_phone = serializers.CharField(max_length=32, required=False, allow_blank=True)
    items = PurchaseItemSerializer(many=True)
    subtotal = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)
    tax = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    discount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    total = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)
    payment_method = serializers.CharField(max_length=50, required=False, allow_blank=True)
    transaction_date = serializers.DateTimeField()

    def validate(self, data):
        if not data.get("member_id") and not data.get("member_phone"):
            raise serializers.ValidationError("Either member_id or member_phone is required.")
        return data

    def create(self, validated_data):
        purchase, summary = PurchaseService().submit(validated_data, organization=request_tenant(self))
        self.summary = summary
        return purchase

    def to_representation(self, instance):
        summary = getattr(self, "summary", None)
        return {
            "transaction_id": str(instance.pk),
            "status": instance.status,
            "points_earned": instance.points_earned,
            "vouchers_awarded": summary.vouchers_awarded if summary else [],
            "rewards": summary.rewards if summary else [],
        }


class PurchaseReadSerializer(serializers.ModelSerializer):
    transaction_id = serializers.UUIDField(source="id", read_only=True)
    member_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = Purchase
        fields = [
            "transaction_id",
            "external_id",
            "member_id",
            "pos_id",
            "location_id",
            "total",
            "status",
            "points_earned",
            "transaction_date",
            "processed_at",
        ]


class MemberReferenceSerializer(serializers.Serializer):
    member_id = serializers.UUIDField()


class VoucherSerializer(serializers.ModelSerializer):
    class Meta:
        model = Voucher
        fields = [
            "id",
            "name",
            "code",
            "description",
            "voucher_type",
            "value",
            "min_purchase",
            "max_discount",
            "points_cost",
            "valid_from",
            "valid_until",
        ]


class MemberVoucherSerializer(serializers.ModelSerializer):
    voucher_id = serializers.UUIDField(read_only=True)
    voucher_name = serializers.CharField(source="voucher.name", read_only=True)

    class Meta:
        model = MemberVoucher
        fields = ["id", "voucher_id", "voucher_name", "status", "expires_at", "used_at", "used_at_location"]


class VoucherRedemptionSerializer(serializers.Serializer):
    location = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")


class TokenIssueSerializer(serializers.Serializer):
    member_id = serializers.UUIDField()
    type = serializers.ChoiceField(choices=[choice[0] for choice in RedemptionToken.TOKEN_TYPES])
    points = serializers.IntegerField(min_value=1, required=False)
    member_voucher_id = serializers.UUIDField(required=False)

    def validate(self, data):
        if data["type"] == RedemptionToken.TYPE_POINTS and not data.get("points"):
            raise serializers.ValidationError({"points": "Invalid points amount."})
        if data["type"] == RedemptionToken.TYPE_VOUCHER and not data.get("member_voucher_id"):
            raise serializers.ValidationError({"member_voucher_id": "Member voucher ID required."})
        return data


class IssuedTokenSerializer(serializers.Serializer):
    id = serializers.UUIDField(source="record.id")
    type = serializers.CharField(source="record.token_type")
    points = serializers.IntegerField(source="record.points_amount", allow_null=True)
    member_voucher_id = serializers.UUIDField(source="record.member_voucher_id", allow_null=True)
    token = serializers.CharField()
    expires_at = serializers.DateTimeField()
    qr_image = serializers.CharField()


class TokenValidateSerializer(serializers.Serializer):
    token = serializers.CharField()


class TokenConsumeSerializer(serializers.Serializer):
    token = serializers.CharField()
    pos_id = serializers.CharField(max_length=100)
    location_name = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
