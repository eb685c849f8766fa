"""ORM models. Importing this package registers every table on Base.metadata."""
from app.models.user import User, UserRole, WholesaleStatus, CommissionTier
from app.models.product import Product
from app.models.promotion import Promotion, DiscountType
from app.models.order import (
    Order,
    OrderItem,
    OrderStatusHistory,
    OrderStatus,
    PaymentStatus,
    PaymentMethod,
    ConsignmentStatus,
)
from app.models.commission import (
    CommissionTransaction,
    CommissionPayout,
    CommissionType,
    CommissionStatus,
    PayoutStatus,
)
from app.models.distributor import (
    DistributorCommission,
    DistributorInventory,
    DistributorCommissionStatus,
)
from app.models.loan import WholesaleLoan, LoanRepayment, LoanStatus, RepaymentType

__all__ = [
    "User", "UserRole", "WholesaleStatus", "CommissionTier",
    "Product",
    "Promotion", "DiscountType",
    "Order", "OrderItem", "OrderStatusHistory",
    "OrderStatus", "PaymentStatus", "PaymentMethod", "ConsignmentStatus",
    "CommissionTransaction", "CommissionPayout",
    "CommissionType", "CommissionStatus", "PayoutStatus",
    "DistributorCommission", "DistributorInventory", "DistributorCommissionStatus",
    "WholesaleLoan", "LoanRepayment", "LoanStatus", "RepaymentType",
]
