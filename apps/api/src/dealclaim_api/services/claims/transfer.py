"""Handing a confirmed claim over to another customer."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.attributes import set_committed_value

from dealclaim_api.models.claim import Claim, ClaimTransfer
from dealclaim_api.models.user import User
from .clock import is_past, utcnow
from .counters import lock_deal_row
from .errors import (
    ClaimError,
    ClaimExpiredError,
    ClaimNotFoundError,
    ClaimStateError,
    ClaimValidationError,
    DuplicateClaimError,
    SelfClaimError,
)
from .intake import has_live_claim


@dataclass(slots=True)
class TransferOutcome:
    transfer_id: UUID
    claim_id: UUID
    recipient_id: UUID
    recipient_email: str


class ClaimTransferService:
    """Moves a live, deposit-confirmed claim to a recipient identified by email.

    The claim keeps its credentials; only the holder changes. Every transfer
    leaves a ``claim_transfers`` row behind.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def transfer(self, sender: User, claim_id: UUID, recipient_email: str) -> TransferOutcome:
        sender_id: UUID = sender.id
        email = (recipient_email or "").strip().lower()
        if not email:
            raise ClaimValidationError("recipient_email is required")
        if email == (sender.email or "").lower():
            raise ClaimValidationError("You cannot transfer a coupon to yourself", code="SELF_TRANSFER")

        claim = await self._owned_claim(sender_id, claim_id)
        if claim.redeemed:
            raise ClaimStateError("Cannot transfer a redeemed coupon")
        if claim.is_cancelled:
            raise ClaimStateError("Cannot transfer a cancelled coupon")
        if is_past(claim.expires_at):
            raise ClaimExpiredError("Cannot transfer an expired coupon")
        if not claim.deposit_confirmed:
            raise ClaimStateError("Cannot transfer a coupon with pending deposit", code="DEPOSIT_PENDING")

        recipient = await self._recipient(email)
        recipient_id: UUID = recipient.id
        if recipient_id == sender_id:
            raise ClaimValidationError("You cannot transfer a coupon to yourself", code="SELF_TRANSFER")
        deal_id: UUID = claim.deal_id
        if claim.deal.vendor_id == recipient_id:
            raise SelfClaimError("Vendors cannot hold claims on their own deals")

        try:
            transfer_id = await self._move(claim_id, deal_id, sender_id, recipient_id, email)
        except ClaimError:
            await self._db.rollback()
            raise

        set_committed_value(claim, "customer_id", recipient_id)
        logger.info(
            "Claim transferred",
            claim_id=str(claim_id),
            deal_id=str(deal_id),
            from_customer_id=str(sender_id),
            to_customer_id=str(recipient_id),
        )
        return TransferOutcome(
            transfer_id=transfer_id,
            claim_id=claim_id,
            recipient_id=recipient_id,
            recipient_email=email,
        )

    async def _owned_claim(self, sender_id: UUID, claim_id: UUID) -> Claim:
        result = await self._db.execute(
            select(Claim)
            .options(selectinload(Claim.deal))
            .where(Claim.id == claim_id, Claim.customer_id == sender_id)
        )
        claim = result.scalar_one_or_none()
        if claim is None:
            raise ClaimNotFoundError("Claim not found")
        return claim

    async def _recipient(self, email: str) -> User:
        result = await self._db.execute(select(User).where(func.lower(User.email) == email).limit(1))
        recipient = result.scalar_one_or_none()
        if recipient is None:
            raise ClaimNotFoundError(
                "No account found with that email address. The recipient must have an account.",
                code="RECIPIENT_NOT_FOUND",
            )
        return recipient

    async def _move(
        self,
        claim_id: UUID,
        deal_id: UUID,
        sender_id: UUID,
        recipient_id: UUID,
        email: str,
    ) -> UUID:
        # Same lock as claim intake, so the recipient cannot gain a second live claim meanwhile.
        await lock_deal_row(self._db, deal_id)
        if await has_live_claim(self._db, recipient_id, deal_id):
            raise DuplicateClaimError("The recipient already has an active coupon for this deal")

        stmt = (
            update(Claim)
            .where(
                Claim.id == claim_id,
                Claim.customer_id == sender_id,
                Claim.deposit_confirmed.is_(True),
                Claim.redeemed.is_(False),
                Claim.cancelled_at.is_(None),
                Claim.expires_at >= utcnow(),
            )
            .values(customer_id=recipient_id)
            .returning(Claim.id)
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(stmt)
        if result.scalar_one_or_none() is None:
            raise ClaimStateError("Claim changed while it was being transferred")

        transfer = ClaimTransfer(
            claim_id=claim_id,
            from_customer_id=sender_id,
            to_customer_id=recipient_id,
            recipient_email=email,
        )
        self._db.add(transfer)
        await self._db.flush()
        transfer_id = transfer.id
        await self._db.commit()
        return transfer_id


__all__ = ["ClaimTransferService", "TransferOutcome"]
