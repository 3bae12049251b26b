"""Claim intake: eligibility checks and dispatch to the resolved payment tier."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Callable, Sequence
from uuid import UUID, uuid4

import stripe
from loguru import logger
from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from dealclaim_api.core.settings import settings
from dealclaim_api.models.claim import Claim
from dealclaim_api.models.deal import Deal, DealStatusEnum
from dealclaim_api.models.user import User
from dealclaim_api.models.vendor import PaymentTierEnum
from dealclaim_api.services.payments.stripe_service import StripeConnectService
from .clock import ensure_aware, utcnow
from .counters import lock_deal_row
from .credentials import CredentialIssuer, commit_issuance
from .errors import (
    DealExpiredError,
    DealNotActiveError,
    DealNotFoundError,
    DealSoldOutError,
    DuplicateClaimError,
    PaymentSessionError,
    SelfClaimError,
)
from .payment_tiers import PaymentResolution, PaymentTierResolver, with_client_reference


async def has_live_claim(db: AsyncSession, customer_id: UUID, deal_id: UUID) -> bool:
    """Whether the customer holds an unredeemed, uncancelled, unexpired claim on the deal."""

    result = await db.execute(
        select(Claim.id)
        .where(
            Claim.deal_id == deal_id,
            Claim.customer_id == customer_id,
            Claim.redeemed.is_(False),
            Claim.cancelled_at.is_(None),
            Claim.expires_at >= utcnow(),
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


class ClaimListStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    REDEEMED = "redeemed"


@dataclass(slots=True)
class PaymentInstructions:
    """What a customer needs to pay a manual-tier deposit."""

    processor: str
    payment_link: str | None
    display_name: str | None
    amount: Decimal
    payment_reference: str


@dataclass(frozen=True, slots=True)
class DealTerms:
    """Deal fields captured once so they survive a rolled-back issuance attempt."""

    id: UUID
    vendor_id: UUID
    title: str
    deal_price: Decimal
    deposit_amount: Decimal | None
    remaining_balance: Decimal
    expires_at: datetime

    @classmethod
    def from_deal(cls, deal: Deal) -> "DealTerms":
        return cls(
            id=deal.id,
            vendor_id=deal.vendor_id,
            title=deal.title,
            deal_price=Decimal(deal.deal_price),
            deposit_amount=Decimal(deal.deposit_amount) if deal.deposit_amount is not None else None,
            remaining_balance=deal.remaining_balance,
            expires_at=deal.expires_at,
        )


@dataclass(slots=True)
class ClaimIntakeResult:
    claim: Claim
    deal: DealTerms
    tier: PaymentTierEnum
    checkout_url: str | None = None
    payment_link: str | None = None
    payment_instructions: PaymentInstructions | None = None

    @property
    def credentials_issued(self) -> bool:
        return self.claim.has_credentials


class ClaimIntakeService:
    """Creates claims for customers, enforcing eligibility in a fixed order."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        stripe_factory: Callable[[], StripeConnectService] = StripeConnectService,
    ) -> None:
        self._db = db
        self._stripe_factory = stripe_factory
        self._issuer = CredentialIssuer(db)
        self._resolver = PaymentTierResolver(db)

    async def create_claim(self, customer: User, deal_id: UUID) -> ClaimIntakeResult:
        deal = await self._eligible_deal(customer, deal_id)
        resolution = await self._resolver.resolve(deal)
        terms = DealTerms.from_deal(deal)
        session_token = str(uuid4())
        customer_id: UUID = customer.id
        customer_email: str = customer.email

        logger.info(
            "Creating claim",
            deal_id=str(terms.id),
            customer_id=str(customer_id),
            tier=resolution.tier.value,
        )

        if resolution.tier == PaymentTierEnum.NONE:
            return await self._claim_without_deposit(customer_id, terms, session_token)
        if resolution.tier == PaymentTierEnum.INTEGRATED:
            return await self._claim_integrated(customer_id, customer_email, terms, session_token, resolution)
        if resolution.tier == PaymentTierEnum.MANUAL:
            return await self._claim_manual(customer_id, terms, session_token, resolution)
        return await self._claim_link(customer_id, terms, session_token, resolution)

    async def _eligible_deal(self, customer: User, deal_id: UUID) -> Deal:
        deal = await self._db.get(Deal, deal_id)
        if deal is None:
            raise DealNotFoundError("Deal not found")
        if deal.vendor_id == customer.id:
            raise SelfClaimError("Vendors cannot claim their own deals")

        now = utcnow()
        if deal.status != DealStatusEnum.ACTIVE:
            raise DealNotActiveError("Deal is not active")
        if deal.starts_at is not None and ensure_aware(deal.starts_at) > now:
            raise DealNotActiveError("Deal has not started yet")
        if ensure_aware(deal.expires_at) < now:
            raise DealExpiredError("Deal has expired")
        if deal.max_claims is not None and deal.claims_count >= deal.max_claims:
            raise DealSoldOutError("Deal has reached maximum claims")

        if await has_live_claim(self._db, customer.id, deal.id):
            raise DuplicateClaimError("You have already claimed this deal")
        return deal

    async def _lock_and_recheck(self, customer_id: UUID, deal_id: UUID) -> None:
        await lock_deal_row(self._db, deal_id)
        if await has_live_claim(self._db, customer_id, deal_id):
            logger.info(
                "Duplicate claim caught under deal lock",
                deal_id=str(deal_id),
                customer_id=str(customer_id),
            )
            raise DuplicateClaimError("You have already claimed this deal")

    @staticmethod
    def _new_claim(
        customer_id: UUID,
        terms: DealTerms,
        session_token: str,
        resolution: PaymentResolution,
    ) -> Claim:
        return Claim(
            id=uuid4(),
            deal_id=terms.id,
            customer_id=customer_id,
            session_token=session_token,
            payment_tier=resolution.tier,
            payment_method_type=resolution.processor,
            deposit_confirmed=False,
            redeemed=False,
            expires_at=terms.expires_at,
        )

    async def _claim_without_deposit(
        self,
        customer_id: UUID,
        terms: DealTerms,
        session_token: str,
    ) -> ClaimIntakeResult:
        resolution = PaymentResolution(tier=PaymentTierEnum.NONE)

        async def unit() -> Claim:
            await self._lock_and_recheck(customer_id, terms.id)
            claim = self._new_claim(customer_id, terms, session_token, resolution)
            self._db.add(claim)
            await self._db.flush()
            await self._issuer.confirm_and_issue(claim, amount_paid=None)
            return claim

        claim = await commit_issuance(self._db, unit)
        return ClaimIntakeResult(claim=claim, deal=terms, tier=PaymentTierEnum.NONE)

    async def _persist_pending(
        self,
        customer_id: UUID,
        terms: DealTerms,
        session_token: str,
        resolution: PaymentResolution,
        *,
        with_reference: bool = False,
    ) -> Claim:
        async def unit() -> Claim:
            await self._lock_and_recheck(customer_id, terms.id)
            claim = self._new_claim(customer_id, terms, session_token, resolution)
            if with_reference:
                claim.payment_reference = await self._issuer.allocate_payment_reference()
            self._db.add(claim)
            await self._db.flush()
            return claim

        return await commit_issuance(self._db, unit)

    async def _claim_integrated(
        self,
        customer_id: UUID,
        customer_email: str,
        terms: DealTerms,
        session_token: str,
        resolution: PaymentResolution,
    ) -> ClaimIntakeResult:
        claim = await self._persist_pending(customer_id, terms, session_token, resolution)
        claim_id = claim.id
        base_url = settings.frontend_url.rstrip("/")
        try:
            checkout = await self._stripe_factory().create_deposit_checkout_session(
                connected_account_id=resolution.connected_account_id or "",
                amount=terms.deposit_amount or Decimal("0"),
                currency=settings.deposit_currency,
                deal_title=terms.title,
                success_url=f"{base_url}/claim/success?session_id={{CHECKOUT_SESSION_ID}}&claim_id={claim_id}",
                cancel_url=f"{base_url}/deals/{terms.id}?deposit=cancelled",
                metadata={
                    "type": "deal_deposit",
                    "claim_id": str(claim_id),
                    "session_token": session_token,
                    "deal_id": str(terms.id),
                    "customer_id": str(customer_id),
                },
                customer_email=customer_email,
            )
        except (stripe.StripeError, asyncio.TimeoutError) as error:
            await self._discard_pending(claim_id)
            raise PaymentSessionError("Could not start deposit checkout; please try again") from error

        claim.stripe_checkout_session_id = checkout.session_id
        await self._db.commit()
        return ClaimIntakeResult(
            claim=claim,
            deal=terms,
            tier=PaymentTierEnum.INTEGRATED,
            checkout_url=checkout.url,
        )

    async def _discard_pending(self, claim_id: UUID) -> None:
        """Remove a pending claim whose checkout could not be opened."""

        await self._db.execute(
            delete(Claim)
            .where(Claim.id == claim_id, Claim.deposit_confirmed.is_(False))
            .execution_options(synchronize_session="fetch")
        )
        await self._db.commit()
        logger.warning("Discarded pending claim after checkout failure", claim_id=str(claim_id))

    async def _claim_manual(
        self,
        customer_id: UUID,
        terms: DealTerms,
        session_token: str,
        resolution: PaymentResolution,
    ) -> ClaimIntakeResult:
        claim = await self._persist_pending(customer_id, terms, session_token, resolution, with_reference=True)
        instructions = PaymentInstructions(
            processor=resolution.processor.value if resolution.processor else "",
            payment_link=resolution.payment_link,
            display_name=resolution.display_name,
            amount=terms.deposit_amount or Decimal("0"),
            payment_reference=claim.payment_reference,
        )
        return ClaimIntakeResult(
            claim=claim,
            deal=terms,
            tier=PaymentTierEnum.MANUAL,
            payment_instructions=instructions,
        )

    async def _claim_link(
        self,
        customer_id: UUID,
        terms: DealTerms,
        session_token: str,
        resolution: PaymentResolution,
    ) -> ClaimIntakeResult:
        claim = await self._persist_pending(customer_id, terms, session_token, resolution)
        return ClaimIntakeResult(
            claim=claim,
            deal=terms,
            tier=PaymentTierEnum.LINK,
            payment_link=with_client_reference(resolution.payment_link or "", session_token),
        )

    async def list_claims(
        self,
        customer_id: UUID,
        status: ClaimListStatus | None = None,
    ) -> Sequence[Claim]:
        now = utcnow()
        stmt = (
            select(Claim)
            .options(selectinload(Claim.deal))
            .where(Claim.customer_id == customer_id)
            .order_by(Claim.created_at.desc())
        )
        if status == ClaimListStatus.ACTIVE:
            stmt = stmt.where(
                Claim.redeemed.is_(False),
                Claim.cancelled_at.is_(None),
                Claim.expires_at >= now,
            )
        elif status == ClaimListStatus.EXPIRED:
            stmt = stmt.where(
                Claim.redeemed.is_(False),
                or_(Claim.expires_at < now, Claim.cancelled_at.is_not(None)),
            )
        elif status == ClaimListStatus.REDEEMED:
            stmt = stmt.where(Claim.redeemed.is_(True))

        result = await self._db.execute(stmt)
        return result.scalars().all()


__all__ = [
    "ClaimIntakeResult",
    "ClaimIntakeService",
    "ClaimListStatus",
    "DealTerms",
    "PaymentInstructions",
    "has_live_claim",
]
