from fastapi import APIRouter

from app.api.v1.endpoints import (
    # Pricing
    pricing,
    # Orders
    orders,
    # Referral Commissions
    commissions,
    # Wholesale
    loans,
    users,
    # Distribution
    distributors,
)


api_router = APIRouter(prefix="/api/v1")

# ==================== Pricing ====================
api_router.include_router(
    pricing.router,
    prefix="/pricing",
    tags=["Pricing"]
)

# ==================== Orders ====================
api_router.include_router(
    orders.router,
    prefix="/orders",
    tags=["Orders"]
)

# ==================== Referral Commissions ====================
# Mixed paths: /commissions/*, /admin/referral-*, /users/{id}/commission
api_router.include_router(
    commissions.router,
    tags=["Commissions"]
)

# ==================== Wholesale Loans ====================
api_router.include_router(
    loans.router,
    prefix="/loans",
    tags=["Wholesale Loans"]
)

# ==================== Wholesale Accounts ====================
api_router.include_router(
    users.router,
    prefix="/users",
    tags=["Users"]
)

# ==================== Distributors ====================
api_router.include_router(
    distributors.router,
    tags=["Distributors"]
)
