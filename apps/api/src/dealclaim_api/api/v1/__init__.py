from fastapi import APIRouter

from .endpoints import (
    admin_claims,
    claims,
    health,
    loyalty,
    observability,
    redeem,
    vendor_payments,
    webhooks,
)

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(claims.router)
router.include_router(redeem.router)
router.include_router(vendor_payments.router)
router.include_router(webhooks.router)
router.include_router(admin_claims.router)
router.include_router(loyalty.router)
router.include_router(observability.router)
