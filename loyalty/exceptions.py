"""
Domain errors of the rewards engine.

Each concrete error belongs to exactly one bucket of the taxonomy; the bucket
decides the HTTP status and whether a caller may retry with the same
idempotency key (purchase external id, token string).
"""


class LoyaltyError(Exception):
    status_code = 400
    code = "loyalty_error"
    default_detail = "Loyalty operation failed."
    retryable = False

    def __init__(self, detail=None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


# --- Taxonomy buckets ---


class NotFound(LoyaltyError):
    status_code = 404
    code = "not_found"
    default_detail = "Resource not found."


class Conflict(LoyaltyError):
    status_code = 409
    code = "conflict"
    default_detail = "Conflicting request."


class InsufficientFunds(LoyaltyError):
    status_code = 422
    code = "insufficient_funds"
    default_detail = "Insufficient funds."


class Expired(LoyaltyError):
    status_code = 410
    code = "expired"
    default_detail = "Resource has expired."


class InvalidSignature(LoyaltyError):
    status_code = 400
    code = "invalid_signature"
    default_detail = "Invalid signature."


class ValidationFailure(LoyaltyError):
    status_code = 400
    code = "validation_failure"
    default_detail = "Invalid input."


class Transient(LoyaltyError):
    status_code = 503
    code = "transient"
    default_detail = "Temporary storage failure, retry the request."
    retryable = True


# --- Concrete errors ---


class MemberNotFound(NotFound):
    default_detail = "Member not found."


class MembershipNotFound(NotFound):
    default_detail = "Member is not enrolled in this loyalty program."


class VoucherNotFound(NotFound):
    default_detail = "Voucher not found."


class TokenNotFound(NotFound):
    default_detail = "Redemption token not found."


class TierNotFound(NotFound):
    default_detail = "Member has no tier in this loyalty program."


class PointsConfigNotFound(NotFound):
    default_detail = "Points configuration is missing for this loyalty program."


class DuplicateTransaction(Conflict):
    code = "duplicate_transaction"
    default_detail = "Transaction already processed."


class TokenAlreadyUsed(Conflict):
    code = "token_already_used"
    default_detail = "Redemption token has already been used."


class VoucherSoldOut(Conflict):
    code = "voucher_sold_out"
    default_detail = "Voucher is sold out."


class VoucherUnavailable(Conflict):
    code = "voucher_unavailable"
    default_detail = "Voucher is not available."


class VoucherNotActive(Conflict):
    code = "voucher_not_active"
    default_detail = "Voucher has already been used or expired."


class InsufficientPoints(InsufficientFunds):
    code = "insufficient_points"

    def __init__(self, available=None, required=None):
        detail = None
        if available is not None and required is not None:
            detail = f"Insufficient points. Balance: {available}, Required: {required}"
        super().__init__(detail or "Insufficient points.")


class VoucherExpired(Expired):
    code = "voucher_expired"
    default_detail = "Voucher has expired."


class TokenExpired(Expired):
    code = "token_expired"
    default_detail = "Redemption token has expired."


class InvalidTokenSignature(InvalidSignature):
    code = "invalid_token"
    default_detail = "Redemption token is malformed or its signature is invalid."


class TransientStorageError(Transient):
    pass
