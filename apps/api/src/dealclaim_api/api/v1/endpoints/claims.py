"""Customer-facing claim endpoints."""

from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from dealclaim_api.api.dependencies.session import require_member_session
from dealclaim_api.api.errors import to_http_exception
from dealclaim_api.core.logging import claim_context
from dealclaim_api.db.session import get_session
from dealclaim_api.models.user import User
from dealclaim_api.observability.claims import get_claim_observability_store
from dealclaim_api.schemas.claims import ClaimResponse, CredentialsResponse, MessageResponse
from dealclaim_api.services.claims import (
    ClaimError,
    ClaimIntakeService,
    ClaimListStatus,
    ClaimTransferService,
    DepositConfirmationService,
)
from dealclaim_api.services.payments.stripe_service import StripeConnectService


router = APIRouter(prefix="/claims", tags=["claims"])


def get_stripe_service() -> StripeConnectService:
    return StripeConnectService()


class ClaimCreateRequest(BaseModel):
    deal_id: UUID = Field(..., description="Deal being claimed")


class PaymentInstructionsResponse(BaseModel):
    processor: str
    payment_link: Optional[str]
    display_name: Optional[str]
    amount: float
    payment_reference: str


class ClaimCreateResponse(BaseModel):
    claim: ClaimResponse
    payment_tier: str
    credentials_issued: bool
    remaining_balance: float
    checkout_url: Optional[str] = None
    payment_link: Optional[str] = None
    payment_instructions: Optional[PaymentInstructionsResponse] = None


class ConfirmSentRequest(BaseModel):
    session_token: str = Field(..., min_length=1)


class CancelClaimRequest(BaseModel):
    claim_id: UUID


class TransferClaimRequest(BaseModel):
    claim_id: UUID
    recipient_email: str = Field(..., min_length=3, max_length=320)


class TransferClaimResponse(BaseModel):
    success: bool = True
    message: str
    transfer_id: UUID
    recipient_email: str


@router.post("", response_model=ClaimCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_claim(
    request: ClaimCreateRequest,
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
    stripe_service: StripeConnectService = Depends(get_stripe_service),
) -> ClaimCreateResponse:
    """Claim a deal; the response tells the client how to pay any deposit."""

    store = get_claim_observability_store()
    service = ClaimIntakeService(db, stripe_factory=lambda: stripe_service)
    try:
        result = await service.create_claim(user, request.deal_id)
    except ClaimError as error:
        store.record_claim_rejected(error.code)
        logger.info("Claim rejected", deal_id=str(request.deal_id), code=error.code)
        raise to_http_exception(error) from error

    store.record_claim_created(result.tier.value, str(result.claim.id))
    instructions = None
    if result.payment_instructions is not None:
        instructions = PaymentInstructionsResponse(
            processor=result.payment_instructions.processor,
            payment_link=result.payment_instructions.payment_link,
            display_name=result.payment_instructions.display_name,
            amount=float(result.payment_instructions.amount),
            payment_reference=result.payment_instructions.payment_reference,
        )
    return ClaimCreateResponse(
        claim=ClaimResponse.from_claim(result.claim, deal_title=result.deal.title),
        payment_tier=result.tier.value,
        credentials_issued=result.credentials_issued,
        remaining_balance=float(result.deal.remaining_balance),
        checkout_url=result.checkout_url,
        payment_link=result.payment_link,
        payment_instructions=instructions,
    )


@router.get("", response_model=List[ClaimResponse])
async def list_claims(
    status_filter: Optional[ClaimListStatus] = Query(None, alias="status"),
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> List[ClaimResponse]:
    claims = await ClaimIntakeService(db).list_claims(user.id, status_filter)
    return [ClaimResponse.from_claim(claim, deal_title=claim.deal.title if claim.deal else None) for claim in claims]


@router.post("/confirm-sent", response_model=CredentialsResponse)
async def confirm_payment_sent(
    request: ConfirmSentRequest,
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> CredentialsResponse:
    """Customer marks a manual (peer-to-peer) deposit as sent."""

    user_id = user.id
    try:
        outcome = await DepositConfirmationService(db).confirm_sent(user_id, request.session_token)
    except ClaimError as error:
        raise to_http_exception(error) from error

    get_claim_observability_store().record_confirmation("customer", not outcome.already_confirmed)
    credentials = outcome.credentials
    return CredentialsResponse(
        claim_id=outcome.claim_id,
        already_confirmed=outcome.already_confirmed,
        qr_code=credentials.qr_code if credentials else None,
        qr_code_url=credentials.qr_code_url if credentials else None,
        redemption_code=credentials.redemption_code if credentials else None,
    )


@router.post("/cancel", response_model=MessageResponse)
async def cancel_claim(
    request: CancelClaimRequest,
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> MessageResponse:
    user_id = user.id
    try:
        await DepositConfirmationService(db).cancel_by_customer(user_id, request.claim_id)
    except ClaimError as error:
        raise to_http_exception(error) from error
    return MessageResponse(message="Coupon cancelled successfully. Note: deposits are non-refundable.")


@router.post("/transfer", response_model=TransferClaimResponse)
async def transfer_claim(
    request: TransferClaimRequest,
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> TransferClaimResponse:
    """Hand a confirmed coupon to another account holder by email."""

    store = get_claim_observability_store()
    try:
        with claim_context(claim_id=request.claim_id, customer_id=user.id):
            outcome = await ClaimTransferService(db).transfer(user, request.claim_id, request.recipient_email)
    except ClaimError as error:
        store.record_transfer(error.code)
        raise to_http_exception(error) from error

    store.record_transfer("TRANSFERRED")
    return TransferClaimResponse(
        message=f"Coupon transferred to {outcome.recipient_email} successfully.",
        transfer_id=outcome.transfer_id,
        recipient_email=outcome.recipient_email,
    )


__all__ = ["router", "get_stripe_service"]
