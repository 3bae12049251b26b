"""Redemption endpoints used by vendor scanners and the public redeem page."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from dealclaim_api.api.dependencies.session import require_vendor_session
from dealclaim_api.api.errors import to_http_exception
from dealclaim_api.core.logging import claim_context
from dealclaim_api.db.session import get_session
from dealclaim_api.models.vendor import Vendor
from dealclaim_api.observability.claims import get_claim_observability_store
from dealclaim_api.services.claims import ClaimError, RedemptionVerifier
from dealclaim_api.services.claims.clock import ensure_aware


router = APIRouter(prefix="/redeem", tags=["redemption"])


class LoyaltyAwardResponse(BaseModel):
    program_type: str
    punches_earned: int
    points_earned: int
    reward_ready: bool


class RedemptionResponse(BaseModel):
    success: bool = True
    redemption_id: UUID
    claim_id: UUID
    deal_id: UUID
    deal_title: str
    customer_name: Optional[str]
    customer_email: Optional[str]
    redeemed_at: datetime
    deposit_amount: Optional[float]
    payment_method_type: Optional[str]
    remaining_balance: float
    loyalty: Optional[LoyaltyAwardResponse] = None


class CodeStatusResponse(BaseModel):
    status: str
    claim_id: UUID
    deal_id: UUID
    deal_title: str
    deposit_confirmed: bool
    expires_at: datetime
    redeemed_at: Optional[datetime]
    remaining_balance: float


@router.post("/{code}", response_model=RedemptionResponse)
async def redeem_code(
    code: str,
    vendor: Vendor = Depends(require_vendor_session),
    db: AsyncSession = Depends(get_session),
) -> RedemptionResponse:
    """Redeem a QR token or 6-digit code presented at the vendor's counter."""

    store = get_claim_observability_store()
    vendor_id = vendor.id
    try:
        with claim_context(vendor_id=vendor_id):
            result = await RedemptionVerifier(db).redeem(code, vendor_id=vendor_id, scanned_by=vendor_id)
    except ClaimError as error:
        store.record_redemption(error.code)
        raise to_http_exception(error) from error

    store.record_redemption("REDEEMED", str(result.claim_id))
    store.record_loyalty("awarded" if result.loyalty is not None else "skipped")
    loyalty = None
    if result.loyalty is not None:
        loyalty = LoyaltyAwardResponse(
            program_type=result.loyalty.program_type.value,
            punches_earned=result.loyalty.punches_earned,
            points_earned=result.loyalty.points_earned,
            reward_ready=result.loyalty.reward_ready,
        )
    return RedemptionResponse(
        redemption_id=result.redemption_id,
        claim_id=result.claim_id,
        deal_id=result.deal_id,
        deal_title=result.deal_title,
        customer_name=result.customer_name,
        customer_email=result.customer_email,
        redeemed_at=result.redeemed_at,
        deposit_amount=float(result.deposit_amount) if result.deposit_amount is not None else None,
        payment_method_type=result.payment_method_type,
        remaining_balance=float(result.remaining_balance),
        loyalty=loyalty,
    )


@router.get("/{code}", response_model=CodeStatusResponse)
async def code_status(code: str, db: AsyncSession = Depends(get_session)) -> CodeStatusResponse:
    """Report whether a code is valid, redeemed or expired without changing it."""

    try:
        result = await RedemptionVerifier(db).check_status(code)
    except ClaimError as error:
        raise to_http_exception(error) from error

    claim = result.claim
    return CodeStatusResponse(
        status=result.status,
        claim_id=claim.id,
        deal_id=result.deal.id,
        deal_title=result.deal.title,
        deposit_confirmed=bool(claim.deposit_confirmed),
        expires_at=ensure_aware(claim.expires_at),
        redeemed_at=ensure_aware(claim.redeemed_at) if claim.redeemed_at else None,
        remaining_balance=float(result.remaining_balance),
    )
