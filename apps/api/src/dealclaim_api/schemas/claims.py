"""Response models shared by the claim lifecycle endpoints."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from dealclaim_api.models.claim import Claim
from dealclaim_api.services.claims.clock import ensure_aware


def _aware(value: datetime | None) -> datetime | None:
    return ensure_aware(value) if value is not None else None


class ClaimResponse(BaseModel):
    id: UUID
    deal_id: UUID
    customer_id: UUID
    session_token: str
    payment_tier: str
    payment_method_type: str | None = None
    payment_reference: str | None = None
    deposit_confirmed: bool
    deposit_confirmed_at: datetime | None = None
    deposit_amount_paid: float | None = None
    qr_code: str | None = None
    qr_code_url: str | None = None
    redemption_code: str | None = None
    redeemed: bool
    redeemed_at: datetime | None = None
    cancelled_at: datetime | None = None
    expires_at: datetime
    deal_title: str | None = Field(None, description="Populated when the deal is loaded")

    @classmethod
    def from_claim(cls, claim: Claim, *, deal_title: str | None = None) -> "ClaimResponse":
        return cls(
            id=claim.id,
            deal_id=claim.deal_id,
            customer_id=claim.customer_id,
            session_token=claim.session_token,
            payment_tier=claim.payment_tier.value,
            payment_method_type=claim.payment_method_type.value if claim.payment_method_type else None,
            payment_reference=claim.payment_reference,
            deposit_confirmed=bool(claim.deposit_confirmed),
            deposit_confirmed_at=_aware(claim.deposit_confirmed_at),
            deposit_amount_paid=float(claim.deposit_amount_paid) if claim.deposit_amount_paid is not None else None,
            qr_code=claim.qr_code,
            qr_code_url=claim.qr_code_url,
            redemption_code=claim.redemption_code,
            redeemed=bool(claim.redeemed),
            redeemed_at=_aware(claim.redeemed_at),
            cancelled_at=_aware(claim.cancelled_at),
            expires_at=ensure_aware(claim.expires_at),
            deal_title=deal_title,
        )


class CredentialsResponse(BaseModel):
    success: bool = True
    claim_id: UUID
    already_confirmed: bool = False
    qr_code: str | None = None
    qr_code_url: str | None = None
    redemption_code: str | None = None


class MessageResponse(BaseModel):
    success: bool = True
    message: str
