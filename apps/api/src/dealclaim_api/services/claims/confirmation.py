"""Deferred deposit confirmation and customer-initiated cancellation.

Every path that flips ``deposit_confirmed`` goes through
:meth:`CredentialIssuer.confirm_and_issue`, so webhooks, the customer's
"I've paid" button and the vendor's manual confirmation all share the same
unconfirmed-only guard and counter increment.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.attributes import set_committed_value

from dealclaim_api.models.claim import Claim
from dealclaim_api.models.deal import Deal
from dealclaim_api.models.vendor import PaymentTierEnum, Vendor
from dealclaim_api.models.webhook_event import WebhookEvent, WebhookProviderEnum
from .clock import is_past, utcnow
from .counters import decrement_claims_count
from .credentials import CredentialIssuer, IssuedCredentials, commit_issuance
from .errors import (
    ClaimError,
    ClaimExpiredError,
    ClaimNotFoundError,
    ClaimStateError,
    ClaimValidationError,
    DepositAlreadyConfirmedError,
)

DEAL_DEPOSIT_METADATA_TYPE = "deal_deposit"


@dataclass(slots=True)
class ConfirmationOutcome:
    claim_id: UUID
    credentials: IssuedCredentials | None
    already_confirmed: bool = False


def _deposit_due(deal: Deal) -> Decimal:
    return Decimal(deal.deposit_amount or deal.deal_price or 0)


def verify_deposit_signature(secret: str, body: bytes, signature: str | None) -> bool:
    """Check a ``sha256=<hex>`` HMAC header computed over the raw request body."""

    if not signature:
        return False
    expected = "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.strip())


def extract_session_token(payload: Mapping[str, Any]) -> str | None:
    data = payload.get("data")
    obj = data.get("object") if isinstance(data, Mapping) else None
    if isinstance(obj, Mapping):
        if obj.get("client_reference_id"):
            return str(obj["client_reference_id"])
        metadata = obj.get("metadata")
        if isinstance(metadata, Mapping) and metadata.get("session_token"):
            return str(metadata["session_token"])
    token = payload.get("session_token")
    return str(token) if token else None


class DepositConfirmationService:
    """Confirms pending deposits and releases claims customers give up."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db
        self._issuer = CredentialIssuer(db)

    async def _issue(self, claim_id: UUID, *, amount_paid: Decimal | None, source: str) -> IssuedCredentials:
        async def unit() -> IssuedCredentials:
            claim = await self._db.get(Claim, claim_id, populate_existing=True)
            if claim is None:
                raise ClaimNotFoundError("Claim not found")
            return await self._issuer.confirm_and_issue(claim, amount_paid=amount_paid)

        credentials = await commit_issuance(self._db, unit)
        logger.info("Deposit confirmed", claim_id=str(claim_id), source=source)
        return credentials

    async def _load(self, *criteria) -> Claim | None:
        stmt = select(Claim).options(selectinload(Claim.deal)).where(*criteria).limit(1)
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    # Stripe Connect -------------------------------------------------------

    async def handle_connect_event(self, event: Mapping[str, Any]) -> bool:
        """Apply a verified Stripe Connect event once; returns ``False`` for replays."""

        event_id = str(event.get("id") or "")
        event_type = str(event.get("type") or "")
        if not event_id:
            raise ClaimValidationError("Webhook event id is missing")

        seen = await self._db.execute(
            select(WebhookEvent.id).where(
                WebhookEvent.provider == WebhookProviderEnum.STRIPE_CONNECT,
                WebhookEvent.external_id == event_id,
            )
        )
        if seen.scalar_one_or_none() is not None:
            logger.info("Ignoring replayed Stripe Connect event", event_id=event_id, event_type=event_type)
            return False

        obj = (event.get("data") or {}).get("object") or {}
        if event_type == "checkout.session.completed":
            await self._checkout_completed(obj, event_id=event_id)
        elif event_type == "account.updated":
            await self._account_updated(obj)
        else:
            logger.debug("Unhandled Stripe Connect event", event_type=event_type)

        self._db.add(
            WebhookEvent(
                provider=WebhookProviderEnum.STRIPE_CONNECT,
                external_id=event_id,
                event_type=event_type,
            )
        )
        try:
            await self._db.commit()
        except IntegrityError:
            await self._db.rollback()
            logger.info("Stripe Connect event recorded concurrently", event_id=event_id)
            return False
        return True

    async def _checkout_completed(self, session: Mapping[str, Any], *, event_id: str) -> None:
        metadata = session.get("metadata") or {}
        if metadata.get("type") != DEAL_DEPOSIT_METADATA_TYPE:
            logger.debug("Checkout session is not a deal deposit", event_id=event_id)
            return
        if session.get("payment_status") not in (None, "paid", "no_payment_required"):
            logger.info(
                "Deposit checkout completed without payment",
                event_id=event_id,
                payment_status=session.get("payment_status"),
            )
            return

        claim_id = metadata.get("claim_id")
        session_token = metadata.get("session_token")
        if not claim_id or not session_token:
            logger.warning("Deposit checkout missing claim metadata", event_id=event_id)
            return
        try:
            claim_uuid = UUID(str(claim_id))
        except ValueError:
            logger.warning("Deposit checkout carries malformed claim id", event_id=event_id, claim_id=claim_id)
            return

        claim = await self._load(
            Claim.id == claim_uuid,
            Claim.session_token == str(session_token),
        )
        if claim is None:
            logger.warning("Deposit checkout references unknown claim", event_id=event_id, claim_id=claim_id)
            return
        if claim.stripe_checkout_session_id and session.get("id") not in (None, claim.stripe_checkout_session_id):
            logger.warning(
                "Deposit checkout session does not match claim",
                event_id=event_id,
                claim_id=claim_id,
                session_id=session.get("id"),
            )
            return
        if claim.deposit_confirmed:
            logger.info("Deposit already confirmed", claim_id=claim_id)
            return
        if claim.is_cancelled or is_past(claim.expires_at):
            logger.warning("Deposit arrived for an inactive claim", claim_id=claim_id)
            return

        amount_total = session.get("amount_total")
        amount_paid = (Decimal(amount_total) / Decimal(100)).quantize(Decimal("0.01")) if amount_total is not None else None
        try:
            await self._issue(claim_uuid, amount_paid=amount_paid, source="stripe_connect")
        except DepositAlreadyConfirmedError:
            logger.info("Deposit confirmed concurrently", claim_id=claim_id)
        except ClaimError as error:
            # The payment settled but the claim cannot be counted (e.g. sold out).
            logger.error(
                "Paid deposit could not be confirmed",
                claim_id=claim_id,
                event_id=event_id,
                code=error.code,
                error=error.message,
            )

    async def _account_updated(self, account: Mapping[str, Any]) -> None:
        account_id = account.get("id")
        if not account_id:
            return
        stmt = (
            update(Vendor)
            .where(Vendor.stripe_connect_account_id == account_id)
            .values(
                stripe_connect_onboarding_complete=bool(account.get("details_submitted")),
                stripe_connect_charges_enabled=bool(account.get("charges_enabled")),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(stmt)
        logger.info("Refreshed connected account status", account_id=account_id, matched=result.rowcount)

    # Generic deposit webhook ---------------------------------------------

    async def handle_deposit_webhook(
        self,
        payload: Mapping[str, Any],
        *,
        raw_body: bytes,
        vendor_id: UUID | None = None,
        signature: str | None = None,
    ) -> ConfirmationOutcome:
        if vendor_id is not None and signature:
            vendor = await self._db.get(Vendor, vendor_id)
            if vendor is not None and vendor.deposit_webhook_secret:
                if not verify_deposit_signature(vendor.deposit_webhook_secret, raw_body, signature):
                    raise ClaimValidationError("Invalid webhook signature", code="INVALID_SIGNATURE", status_code=401)

        session_token = extract_session_token(payload)
        if not session_token:
            raise ClaimValidationError("Missing session token")

        claim = await self._load(
            Claim.session_token == session_token,
            Claim.deposit_confirmed.is_(False),
            Claim.cancelled_at.is_(None),
        )
        if claim is None:
            raise ClaimNotFoundError("No pending claim found for this session")
        if is_past(claim.expires_at):
            raise ClaimExpiredError("Claim has expired")

        credentials = await self._issue(claim.id, amount_paid=_deposit_due(claim.deal), source="deposit_webhook")
        return ConfirmationOutcome(claim_id=claim.id, credentials=credentials)

    # Manual tier ----------------------------------------------------------

    async def confirm_sent(self, customer_id: UUID, session_token: str) -> ConfirmationOutcome:
        """Customer reports a manual payment as sent; credentials are issued immediately."""

        claim = await self._load(Claim.session_token == session_token, Claim.customer_id == customer_id)
        if claim is None:
            raise ClaimNotFoundError("Claim not found")
        if claim.deposit_confirmed:
            existing = None
            if claim.has_credentials:
                existing = IssuedCredentials(
                    qr_code=claim.qr_code,
                    qr_code_url=claim.qr_code_url or "",
                    redemption_code=claim.redemption_code,
                )
            return ConfirmationOutcome(claim_id=claim.id, credentials=existing, already_confirmed=True)
        if claim.payment_tier != PaymentTierEnum.MANUAL:
            raise ClaimStateError("Only manual payments can be self-confirmed")
        if claim.is_cancelled:
            raise ClaimStateError("Claim has been cancelled")
        if is_past(claim.expires_at):
            raise ClaimExpiredError("Claim has expired")

        credentials = await self._issue(claim.id, amount_paid=_deposit_due(claim.deal), source="customer")
        return ConfirmationOutcome(claim_id=claim.id, credentials=credentials)

    async def confirm_by_vendor(self, vendor_id: UUID, claim_id: UUID) -> ConfirmationOutcome:
        claim = await self._load(Claim.id == claim_id)
        if claim is None or claim.deal.vendor_id != vendor_id:
            raise ClaimNotFoundError("Claim not found or unauthorized")
        if claim.deposit_confirmed:
            raise DepositAlreadyConfirmedError("Payment already confirmed")
        if claim.is_cancelled:
            raise ClaimStateError("Claim has been cancelled")
        if is_past(claim.expires_at):
            raise ClaimExpiredError("Claim has expired")

        credentials = await self._issue(claim.id, amount_paid=_deposit_due(claim.deal), source="vendor")
        return ConfirmationOutcome(claim_id=claim.id, credentials=credentials)

    async def pending_for_vendor(self, vendor_id: UUID) -> Sequence[Claim]:
        stmt = (
            select(Claim)
            .join(Deal, Deal.id == Claim.deal_id)
            .options(selectinload(Claim.deal), selectinload(Claim.customer))
            .where(
                Deal.vendor_id == vendor_id,
                Claim.payment_tier == PaymentTierEnum.MANUAL,
                Claim.deposit_confirmed.is_(False),
                Claim.cancelled_at.is_(None),
                Claim.expires_at >= utcnow(),
            )
            .order_by(Claim.created_at.desc())
        )
        result = await self._db.execute(stmt)
        return result.scalars().all()

    # Cancellation ---------------------------------------------------------

    async def cancel_by_customer(self, customer_id: UUID, claim_id: UUID) -> Claim:
        claim = await self._load(Claim.id == claim_id, Claim.customer_id == customer_id)
        if claim is None:
            raise ClaimNotFoundError("Claim not found")
        if claim.redeemed:
            raise ClaimStateError("Cannot cancel a redeemed coupon")
        if is_past(claim.expires_at):
            raise ClaimExpiredError("This coupon has already expired")

        await cancel_claim(self._db, claim)
        await self._db.commit()
        return claim


async def cancel_claim(db: AsyncSession, claim: Claim) -> bool:
    """Stamp ``cancelled_at`` once and release the claim's slot if it was counted.

    Returns whether a slot was released. Raises :class:`ClaimStateError` when the
    claim is already cancelled. The caller commits.
    """

    cancelled_at = utcnow()
    stmt = (
        update(Claim)
        .where(Claim.id == claim.id, Claim.cancelled_at.is_(None))
        .values(cancelled_at=cancelled_at, redeemed=False, redeemed_at=None)
        .returning(Claim.deposit_confirmed)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    row = result.one_or_none()
    if row is None:
        raise ClaimStateError("Claim is already cancelled")

    for key, value in (("cancelled_at", cancelled_at), ("redeemed", False), ("redeemed_at", None)):
        set_committed_value(claim, key, value)

    released = False
    if row.deposit_confirmed:
        released = await decrement_claims_count(db, claim.deal_id)
    logger.info("Claim cancelled", claim_id=str(claim.id), released_slot=released)
    return released


__all__ = [
    "ConfirmationOutcome",
    "DepositConfirmationService",
    "cancel_claim",
    "extract_session_token",
    "verify_deposit_signature",
]
