"""Vendor-side payment handling: manual deposits and balances collected at the counter."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from dealclaim_api.api.dependencies.session import require_vendor_session
from dealclaim_api.api.errors import to_http_exception
from dealclaim_api.core.logging import claim_context
from dealclaim_api.db.session import get_session
from dealclaim_api.models.vendor import Vendor
from dealclaim_api.observability.claims import get_claim_observability_store
from dealclaim_api.schemas.claims import CredentialsResponse
from dealclaim_api.services.claims import ClaimError, DepositConfirmationService, RedemptionVerifier
from dealclaim_api.services.claims.clock import ensure_aware


router = APIRouter(prefix="/vendor/payments", tags=["vendor"])


class VendorConfirmRequest(BaseModel):
    claim_id: UUID


class MarkCollectedRequest(BaseModel):
    redemption_id: UUID
    amount_collected: Optional[Decimal] = Field(None, ge=0, description="Balance taken at the counter")


class CollectionResponse(BaseModel):
    success: bool = True
    redemption_id: UUID
    collection_completed_at: datetime
    amount_collected: Optional[float]


class PendingPaymentResponse(BaseModel):
    claim_id: UUID
    deal_id: UUID
    deal_title: str
    customer_name: Optional[str]
    customer_email: Optional[str]
    payment_method_type: Optional[str]
    payment_reference: Optional[str]
    amount_due: float
    claimed_at: datetime
    expires_at: datetime


@router.get("/pending", response_model=List[PendingPaymentResponse])
async def list_pending_payments(
    vendor: Vendor = Depends(require_vendor_session),
    db: AsyncSession = Depends(get_session),
) -> List[PendingPaymentResponse]:
    claims = await DepositConfirmationService(db).pending_for_vendor(vendor.id)
    return [
        PendingPaymentResponse(
            claim_id=claim.id,
            deal_id=claim.deal_id,
            deal_title=claim.deal.title,
            customer_name=claim.customer.full_name if claim.customer else None,
            customer_email=claim.customer.email if claim.customer else None,
            payment_method_type=claim.payment_method_type.value if claim.payment_method_type else None,
            payment_reference=claim.payment_reference,
            amount_due=float(claim.deal.deposit_amount or claim.deal.deal_price or 0),
            claimed_at=ensure_aware(claim.created_at),
            expires_at=ensure_aware(claim.expires_at),
        )
        for claim in claims
    ]


@router.post("/confirm", response_model=CredentialsResponse)
async def confirm_payment(
    request: VendorConfirmRequest,
    vendor: Vendor = Depends(require_vendor_session),
    db: AsyncSession = Depends(get_session),
) -> CredentialsResponse:
    """Vendor confirms a manual deposit arrived; credentials are issued to the claim."""

    vendor_id = vendor.id
    try:
        outcome = await DepositConfirmationService(db).confirm_by_vendor(vendor_id, request.claim_id)
    except ClaimError as error:
        raise to_http_exception(error) from error

    get_claim_observability_store().record_confirmation("vendor", True)
    credentials = outcome.credentials
    return CredentialsResponse(
        claim_id=outcome.claim_id,
        qr_code=credentials.qr_code if credentials else None,
        qr_code_url=credentials.qr_code_url if credentials else None,
        redemption_code=credentials.redemption_code if credentials else None,
    )


@router.post("/mark-collected", response_model=CollectionResponse)
async def mark_collected(
    request: MarkCollectedRequest,
    vendor: Vendor = Depends(require_vendor_session),
    db: AsyncSession = Depends(get_session),
) -> CollectionResponse:
    """Vendor records that the remaining balance of a redemption was paid."""

    store = get_claim_observability_store()
    vendor_id = vendor.id
    try:
        with claim_context(redemption_id=request.redemption_id, vendor_id=vendor_id):
            redemption = await RedemptionVerifier(db).mark_collected(
                request.redemption_id,
                vendor_id=vendor_id,
                amount_collected=request.amount_collected,
            )
    except ClaimError as error:
        store.record_collection(error.code)
        raise to_http_exception(error) from error

    store.record_collection("COLLECTED")
    return CollectionResponse(
        redemption_id=redemption.id,
        collection_completed_at=ensure_aware(redemption.collection_completed_at),
        amount_collected=float(redemption.amount_collected) if redemption.amount_collected is not None else None,
    )
