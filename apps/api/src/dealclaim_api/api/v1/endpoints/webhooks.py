"""Inbound payment webhooks that confirm pending deposits."""

from __future__ import annotations

import json
from typing import Any, Dict, Optional
from uuid import UUID

import stripe
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from dealclaim_api.api.errors import to_http_exception
from dealclaim_api.db.session import get_session
from dealclaim_api.observability.claims import get_claim_observability_store
from dealclaim_api.services.claims import ClaimError, DepositConfirmationService
from dealclaim_api.services.payments.stripe_service import StripeConnectService


router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def get_stripe_service() -> StripeConnectService:
    return StripeConnectService()


class WebhookResponse(BaseModel):
    """Response model for webhook processing."""
    success: bool = Field(..., description="Whether webhook was processed successfully")
    message: str = Field(..., description="Processing result message")


class DepositWebhookResponse(BaseModel):
    success: bool = True
    claim_id: UUID


@router.post("/stripe-connect", response_model=WebhookResponse)
async def handle_stripe_connect_webhook(
    request: Request,
    stripe_signature: str = Header(..., alias="stripe-signature"),
    db: AsyncSession = Depends(get_session),
    stripe_service: StripeConnectService = Depends(get_stripe_service),
) -> WebhookResponse:
    """Confirm deposits paid through connected-account checkout sessions."""

    store = get_claim_observability_store()
    event: Dict[str, Any] | None = None
    try:
        payload = await request.body()
        event = await stripe_service.construct_webhook_event(payload, stripe_signature)
        logger.info(
            "Processing Stripe Connect webhook event",
            event_id=event.get("id"),
            event_type=event.get("type"),
            account=event.get("account"),
        )
        applied = await DepositConfirmationService(db).handle_connect_event(event)
    except stripe.SignatureVerificationError:
        store.record_webhook("signature_error", False)
        raise HTTPException(status_code=400, detail="Invalid webhook signature")
    except ClaimError as error:
        store.record_webhook(event.get("type", "unknown") if event else "unknown", False)
        raise to_http_exception(error) from error
    except Exception as error:
        logger.error(
            "Stripe Connect webhook processing error",
            error=str(error),
            event_id=event.get("id") if event else None,
            event_type=event.get("type") if event else None,
        )
        store.record_webhook(event.get("type", "unknown") if event else "unknown", False)
        raise HTTPException(status_code=500, detail="Webhook processing failed")

    store.record_webhook(event.get("type", "unknown"), True)
    message = f"Processed {event.get('type')} event" if applied else f"Event {event.get('id')} already processed"
    return WebhookResponse(success=True, message=message)


@router.post("/deposit-confirmed", response_model=DepositWebhookResponse)
async def handle_deposit_confirmed(
    request: Request,
    vendor_id: Optional[UUID] = Header(None, alias="X-Vendor-Id"),
    signature: Optional[str] = Header(None, alias="stripe-signature"),
    db: AsyncSession = Depends(get_session),
) -> DepositWebhookResponse:
    """Processor-agnostic deposit confirmation keyed by the claim's session token."""

    raw_body = await request.body()
    try:
        payload = json.loads(raw_body or b"{}")
    except json.JSONDecodeError as error:
        raise HTTPException(status_code=400, detail={"error": "Invalid JSON body", "code": "VALIDATION_ERROR"}) from error
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail={"error": "Invalid JSON body", "code": "VALIDATION_ERROR"})

    store = get_claim_observability_store()
    try:
        outcome = await DepositConfirmationService(db).handle_deposit_webhook(
            payload,
            raw_body=raw_body,
            vendor_id=vendor_id,
            signature=signature,
        )
    except ClaimError as error:
        store.record_confirmation("deposit_webhook", False)
        raise to_http_exception(error) from error

    store.record_confirmation("deposit_webhook", True)
    return DepositWebhookResponse(claim_id=outcome.claim_id)
