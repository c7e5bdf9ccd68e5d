"""Error taxonomy for the storefront service.

Services raise these; ``storefront.main`` maps each family onto an HTTP status.
"""

from enum import Enum


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(StorefrontError):
    """Raised when input is missing or malformed."""

    status_code = 400


class NotFoundError(StorefrontError):
    """Raised when a product, order or coupon does not exist."""

    status_code = 404


class ConflictError(StorefrontError):
    """Raised when a write loses against concurrent or existing state."""

    status_code = 409


class AuthorizationError(StorefrontError):
    """Raised when the caller may not act on or see a resource."""

    status_code = 403


class BusinessRuleViolation(StorefrontError):
    """Raised when a request is well formed but breaks a business rule."""

    status_code = 400


class DependencyError(StorefrontError):
    """Raised when the catalog or another collaborator is unavailable."""

    status_code = 503


class ProductNotFound(NotFoundError):
    """Raised when a cart line references a product the catalog does not know."""

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class OrderNotFound(NotFoundError):
    def __init__(self, ref: str):
        self.ref = ref
        super().__init__("Order not found")


# --- Coupons -----------------------------------------------------------------

class CouponRejection(str, Enum):
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    NOT_YET_VALID = "not_yet_valid"
    EXPIRED = "expired"
    USAGE_LIMIT_REACHED = "usage_limit_reached"
    PER_USER_LIMIT_REACHED = "per_user_limit_reached"
    BELOW_MINIMUM_ORDER = "below_minimum_order"
    USAGE_CONFLICT = "usage_conflict"


class CouponError(StorefrontError):
    """Base for every reason a coupon cannot be applied."""

    status_code = 400
    reason: CouponRejection

    def __init__(self, code: str, message: str):
        self.code = code
        super().__init__(message)


class CouponNotFound(CouponError, NotFoundError):
    status_code = 404
    reason = CouponRejection.NOT_FOUND

    def __init__(self, code: str):
        super().__init__(code, "Invalid coupon code")


class CouponInactive(CouponError, BusinessRuleViolation):
    reason = CouponRejection.INACTIVE

    def __init__(self, code: str):
        super().__init__(code, "This coupon is no longer active")


class CouponNotYetValid(CouponError, BusinessRuleViolation):
    reason = CouponRejection.NOT_YET_VALID

    def __init__(self, code: str):
        super().__init__(code, "This coupon is not yet valid")


class CouponExpired(CouponError, BusinessRuleViolation):
    reason = CouponRejection.EXPIRED

    def __init__(self, code: str):
        super().__init__(code, "This coupon has expired")


class CouponUsageLimitReached(CouponError, BusinessRuleViolation):
    reason = CouponRejection.USAGE_LIMIT_REACHED

    def __init__(self, code: str):
        super().__init__(code, "This coupon has reached its usage limit")


class CouponPerUserLimitReached(CouponError, BusinessRuleViolation):
    reason = CouponRejection.PER_USER_LIMIT_REACHED

    def __init__(self, code: str, per_user_limit: int):
        self.per_user_limit = per_user_limit
        super().__init__(code, f"You have already used this coupon {per_user_limit} time(s)")


class CouponBelowMinimumOrder(CouponError, BusinessRuleViolation):
    reason = CouponRejection.BELOW_MINIMUM_ORDER

    def __init__(self, code: str, min_order_amount):
        self.min_order_amount = min_order_amount
        super().__init__(code, f"Minimum order amount of {min_order_amount} required for this coupon")


class CouponUsageConflict(CouponError, ConflictError):
    """Raised when redemption keeps losing the compare-and-set to concurrent redemptions."""

    status_code = 409
    reason = CouponRejection.USAGE_CONFLICT

    def __init__(self, code: str):
        super().__init__(code, "This coupon is being redeemed concurrently; usage limit may have been reached")
