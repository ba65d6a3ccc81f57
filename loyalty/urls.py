"""
URL routing for the loyalty application API.
"""

from django.urls import path
from rest_framework.routers import DefaultRouter

from loyalty.views import (
    MemberBalanceView,
    MemberVoucherViewSet,
    PurchaseViewSet,
    RedemptionTokenViewSet,
    VoucherViewSet,
)

router = DefaultRouter()
router.register(r"purchases", PurchaseViewSet, basename="purchases")
router.register(r"vouchers", VoucherViewSet, basename="vouchers")
router.register(r"member-vouchers", MemberVoucherViewSet, basename="member-vouchers")
router.register(r"tokens", RedemptionTokenViewSet, basename="tokens")

urlpatterns = [
    path("members/<uuid:member_id>/balance/", MemberBalanceView.as_view(), name="member-balance"),
] + router.urls
