"""
API Views for the Loyalty application.
"""

from django.core.exceptions import ValidationError as DjangoValidationError
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.views import APIView

from loyalty.exceptions import MemberNotFound
from loyalty.models import Member, Purchase, RedemptionToken
from loyalty.serializers import (
    IssuedTokenSerializer,
    MemberReferenceSerializer,
    MemberVoucherSerializer,
    PurchaseReadSerializer,
    PurchaseSubmissionSerializer,
    TokenConsumeSerializer,
    TokenIssueSerializer,
    TokenValidateSerializer,
    VoucherRedemptionSerializer,
    VoucherSerializer,
)
from loyalty.services import LoyaltyService
from loyalty.tokens import RedemptionTokenService
from loyalty.vouchers import VoucherService
from users.authentication import HasApiKeyOrIsAuthenticated


def get_member(member_id):
    try:
        return Member.objects.get(pk=member_id, is_active=True)
    except (Member.DoesNotExist, DjangoValidationError):
        raise MemberNotFound() from None


class TenantScopedMixin:
    """
    Resolves the loyalty program of the request (set by TenantContextMiddleware).
    None means the global program.
    """

    permission_classes = [HasApiKeyOrIsAuthenticated]

    @property
    def tenant(self):
        return getattr(self.request, "tenant", None)


class PurchaseViewSet(TenantScopedMixin, mixins.CreateModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    """
    POST /api/loyalty/purchases/
    Ingests a POS purchase event and awards points.

    GET /api/loyalty/purchases/{external_id}/
    Looks up an ingested purchase by the POS external id.
    """

    lookup_field = "external_id"
    lookup_value_regex = "[^/]+"

    def get_queryset(self):
        return Purchase.objects.for_tenant(self.tenant)

    def get_serializer_class(self):
        if self.action == "create":
            return PurchaseSubmissionSerializer
        return PurchaseReadSerializer


class MemberBalanceView(TenantScopedMixin, APIView):
    """
    GET /api/loyalty/members/{member_id}/balance/
    """

    def get(self, request, member_id):
        member = get_member(member_id)
        balance = LoyaltyService().balance(member, organization=self.tenant)
        tier = balance.pop("tier")
        balance["tier"] = {"id": tier.id, "name": tier.name, "code": tier.code} if tier else None
        balance["member_id"] = str(member.pk)
        if self.tenant is None:
            # Platform callers may see the projection across every program.
            balance["aggregate"] = member.aggregate_points()
        return Response(balance)


class VoucherViewSet(TenantScopedMixin, viewsets.GenericViewSet):
    """
    GET /api/loyalty/vouchers/
    Vouchers of the program a member can claim right now.

    POST /api/loyalty/vouchers/{id}/claim/
    Exchanges the member's points for a voucher.
    """

    serializer_class = MemberReferenceSerializer

    def list(self, request):
        vouchers = VoucherService().available_vouchers(organization=self.tenant)
        return Response(VoucherSerializer(vouchers, many=True).data)

    @action(detail=True, methods=["post"])
    def claim(self, request, pk=None):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        member = get_member(serializer.validated_data["member_id"])
        member_voucher = VoucherService().claim(member, pk, organization=self.tenant)
        return Response(MemberVoucherSerializer(member_voucher).data, status=status.HTTP_201_CREATED)


class MemberVoucherViewSet(TenantScopedMixin, viewsets.GenericViewSet):
    """
    POST /api/loyalty/member-vouchers/{id}/redeem/
    Direct redemption of a claimed voucher at a POS.
    """

    serializer_class = VoucherRedemptionSerializer

    @action(detail=True, methods=["post"])
    def redeem(self, request, pk=None):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        member_voucher = VoucherService().redeem(
            pk, location=serializer.validated_data["location"], organization=self.tenant
        )
        return Response(MemberVoucherSerializer(member_voucher).data)


class RedemptionTokenViewSet(TenantScopedMixin, viewsets.GenericViewSet):
    """
    POST /api/loyalty/tokens/           issue (member app)
    POST /api/loyalty/tokens/validate/  preview, read-only (POS)
    POST /api/loyalty/tokens/consume/   burn and apply (POS)
    """

    serializer_class = TokenIssueSerializer

    def get_serializer_class(self):
        if self.action == "validate_token":
            return TokenValidateSerializer
        if self.action == "consume":
            return TokenConsumeSerializer
        return TokenIssueSerializer

    def create(self, request):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        member = get_member(data["member_id"])
        service = RedemptionTokenService()

        if data["type"] == RedemptionToken.TYPE_POINTS:
            issued = service.issue_points_token(member, data["points"], organization=self.tenant)
        elif data["type"] == RedemptionToken.TYPE_VOUCHER:
            issued = service.issue_voucher_token(member, data["member_voucher_id"], organization=self.tenant)
        else:
            issued = service.issue_membership_token(member, organization=self.tenant)

        return Response(IssuedTokenSerializer(issued).data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["post"], url_path="validate")
    def validate_token(self, request):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        preview = RedemptionTokenService().validate(serializer.validated_data["token"], organization=self.tenant)
        return Response(preview.as_dict())

    @action(detail=False, methods=["post"])
    def consume(self, request):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = RedemptionTokenService().consume(
            data["token"], data["pos_id"], location_name=data["location_name"], organization=self.tenant
        )
        return Response(result)
