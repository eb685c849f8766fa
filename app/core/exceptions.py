"""
Domain error taxonomy.

Services raise these; the API layer maps each family to an HTTP status in
app.main. Callers branch on the class, never on the message text.

    ValidationError      -> 400  bad input, rejected before any write
    PermissionDenied     -> 403  role policy said no
    NotFoundError        -> 404  entity does not exist
    InvariantViolation   -> 409  entity exists but the operation is illegal
"""
from typing import Any, Dict, Optional


class DomainError(Exception):
    """Base class for every error raised by the commerce core."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


# ==================== Validation ====================

class ValidationError(DomainError):
    """Input was malformed or out of range."""


class InvalidQuantity(ValidationError):
    pass


class InvalidPaymentMethod(ValidationError):
    pass


class InvalidStatusValue(ValidationError):
    pass


class PaymentAmountMismatch(ValidationError):
    pass


class InvalidRepaymentAmount(ValidationError):
    pass


class PromotionNotApplicable(ValidationError):
    """Promo code is inactive, outside its window, or the order is too small."""


# ==================== Permission ====================

class PermissionDenied(DomainError):
    """Actor's role is not allowed to perform the operation."""


# ==================== Invariant violations ====================

class InvariantViolation(DomainError):
    """The entity exists but the requested operation would break a rule."""


class InvalidTransition(InvariantViolation):
    pass


class BelowMinimumOrder(InvariantViolation):
    pass


class OverRepayment(InvariantViolation):
    pass


class LoanNotApproved(InvariantViolation):
    pass


class SelfReferralNotAllowed(InvariantViolation):
    pass


class ReferralAlreadyRecorded(InvariantViolation):
    pass


class WholesaleAccountNotApproved(InvariantViolation):
    pass


class InsufficientInventory(InvariantViolation):
    pass


class NothingToPayout(InvariantViolation):
    pass


# ==================== Not found ====================

class NotFoundError(DomainError):
    """Referenced entity does not exist."""


class OrderNotFound(NotFoundError):
    pass


class LoanNotFound(NotFoundError):
    pass


class UserNotFound(NotFoundError):
    pass


class ProductNotFound(NotFoundError):
    pass


class PromotionNotFound(NotFoundError):
    pass


class PayoutNotFound(NotFoundError):
    pass


class CommissionTransactionNotFound(NotFoundError):
    pass


class DistributorCommissionNotFound(NotFoundError):
    pass
