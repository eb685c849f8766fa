# Services module
from app.services.commission_service import CommissionService
from app.services.distributor_service import DistributorService
from app.services.loan_service import LoanService
from app.services.order_service import OrderService
from app.services.user_service import UserService

__all__ = [
    "CommissionService",
    "DistributorService",
    "LoanService",
    "OrderService",
    "UserService",
]
