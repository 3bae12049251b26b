"""Redemption verification for QR tokens and 6-digit codes."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Literal
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.attributes import set_committed_value

from dealclaim_api.models.claim import Claim, Redemption
from dealclaim_api.models.deal import Deal
from dealclaim_api.services.loyalty import LoyaltyAward, LoyaltyService
from .clock import ensure_aware, utcnow
from .errors import (
    ClaimError,
    ClaimNotFoundError,
    ClaimStateError,
    ClaimValidationError,
    RedemptionError,
    RedemptionErrorCode,
)

REDEMPTION_CODE_PATTERN = re.compile(r"^\d{6}$")


class CodeKind(str, Enum):
    REDEMPTION_CODE = "redemption_code"
    QR_CODE = "qr_code"


def classify_code(raw: str) -> tuple[CodeKind, str]:
    """Six digits address ``redemption_code``; anything else is treated as a QR token."""

    code = (raw or "").strip()
    if not code:
        raise ClaimValidationError("Redemption code is required")
    if REDEMPTION_CODE_PATTERN.match(code):
        return CodeKind.REDEMPTION_CODE, code
    return CodeKind.QR_CODE, code


@dataclass(slots=True)
class RedemptionResult:
    """Snapshot of a completed redemption, detached from the session."""

    redemption_id: UUID
    claim_id: UUID
    deal_id: UUID
    deal_title: str
    customer_name: str | None
    customer_email: str | None
    redeemed_at: datetime
    deposit_amount: Decimal | None
    payment_method_type: str | None
    remaining_balance: Decimal
    loyalty: LoyaltyAward | None = None


@dataclass(slots=True)
class CodeStatus:
    status: Literal["valid", "redeemed", "expired"]
    claim: Claim
    deal: Deal
    remaining_balance: Decimal


class RedemptionVerifier:
    """Validates a presented code and performs the single redemption of its claim."""

    def __init__(self, db: AsyncSession, *, loyalty_service: LoyaltyService | None = None) -> None:
        self._db = db
        self._loyalty = loyalty_service or LoyaltyService(db)

    async def _lookup(self, raw_code: str) -> Claim | None:
        kind, code = classify_code(raw_code)
        column = Claim.redemption_code if kind == CodeKind.REDEMPTION_CODE else Claim.qr_code
        stmt = (
            select(Claim)
            .options(selectinload(Claim.deal), selectinload(Claim.customer))
            .where(column == code)
            .limit(1)
        )
        result = await self._db.execute(stmt)
        claim = result.scalar_one_or_none()
        if claim is not None and claim.is_cancelled:
            return None
        return claim

    async def redeem(self, raw_code: str, *, vendor_id: UUID, scanned_by: UUID) -> RedemptionResult:
        claim = await self._lookup(raw_code)
        if claim is None:
            raise RedemptionError(RedemptionErrorCode.INVALID, "Invalid redemption code")

        deal = claim.deal
        if deal.vendor_id != vendor_id:
            raise RedemptionError(RedemptionErrorCode.WRONG_VENDOR, "This code belongs to another vendor")
        if claim.redeemed:
            raise RedemptionError(
                RedemptionErrorCode.ALREADY_REDEEMED,
                "This code has already been redeemed",
                redeemed_at=ensure_aware(claim.redeemed_at) if claim.redeemed_at else None,
            )

        now = utcnow()
        if ensure_aware(claim.expires_at) < now:
            raise RedemptionError(
                RedemptionErrorCode.EXPIRED,
                "This code has expired",
                expired_at=ensure_aware(claim.expires_at),
            )
        if deal.requires_deposit and not claim.deposit_confirmed:
            raise RedemptionError(RedemptionErrorCode.NO_DEPOSIT, "Deposit has not been confirmed")

        claim_id = claim.id
        stmt = (
            update(Claim)
            .where(
                Claim.id == claim_id,
                Claim.redeemed.is_(False),
                Claim.cancelled_at.is_(None),
            )
            .values(redeemed=True, redeemed_at=now)
            .returning(Claim.id)
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(stmt)
        if result.scalar_one_or_none() is None:
            # rollback expires every loaded instance
            await self._db.rollback()
            logger.info("Lost redemption race", claim_id=str(claim_id))
            raise RedemptionError(RedemptionErrorCode.ALREADY_REDEEMED, "This code has already been redeemed")

        remaining_balance = deal.remaining_balance
        redemption = Redemption(
            claim_id=claim.id,
            deal_id=deal.id,
            vendor_id=deal.vendor_id,
            customer_id=claim.customer_id,
            scanned_by=scanned_by,
            deposit_amount=claim.deposit_amount_paid if claim.deposit_amount_paid is not None else deal.deposit_amount,
            payment_method_type=claim.payment_method_type.value if claim.payment_method_type else None,
            remaining_balance=remaining_balance,
        )
        self._db.add(redemption)
        await self._db.commit()
        set_committed_value(claim, "redeemed", True)
        set_committed_value(claim, "redeemed_at", now)

        logger.info(
            "Claim redeemed",
            claim_id=str(claim.id),
            deal_id=str(deal.id),
            vendor_id=str(vendor_id),
            remaining_balance=str(remaining_balance),
        )

        customer = claim.customer
        outcome = RedemptionResult(
            redemption_id=redemption.id,
            claim_id=claim.id,
            deal_id=deal.id,
            deal_title=deal.title,
            customer_name=customer.full_name if customer else None,
            customer_email=customer.email if customer else None,
            redeemed_at=now,
            deposit_amount=redemption.deposit_amount,
            payment_method_type=redemption.payment_method_type,
            remaining_balance=remaining_balance,
        )

        outcome.loyalty = await self._loyalty.award_for_redemption(
            redemption_id=outcome.redemption_id,
            vendor_id=vendor_id,
            customer_id=claim.customer_id,
            deal_price=deal.deal_price,
            deal_title=outcome.deal_title,
        )
        return outcome

    async def check_status(self, raw_code: str) -> CodeStatus:
        """Read-only lookup used by the public redemption page."""

        claim = await self._lookup(raw_code)
        if claim is None:
            raise RedemptionError(RedemptionErrorCode.INVALID, "Invalid redemption code")

        deal = claim.deal
        if claim.redeemed:
            status = "redeemed"
        elif ensure_aware(claim.expires_at) < utcnow():
            status = "expired"
        else:
            status = "valid"
        return CodeStatus(status=status, claim=claim, deal=deal, remaining_balance=deal.remaining_balance)

    async def mark_collected(
        self,
        redemption_id: UUID,
        *,
        vendor_id: UUID,
        amount_collected: Decimal | None = None,
    ) -> Redemption:
        """Record that the vendor collected the remaining balance at the counter.

        Allowed once per redemption and only for the vendor that scanned it.
        """

        if amount_collected is not None and amount_collected < 0:
            raise ClaimValidationError("amount_collected cannot be negative")

        redemption = await self._db.get(Redemption, redemption_id)
        if redemption is None:
            raise ClaimNotFoundError("Redemption not found", code="REDEMPTION_NOT_FOUND")
        if redemption.vendor_id != vendor_id:
            raise ClaimError("Not your redemption", code="WRONG_VENDOR", status_code=403)
        if redemption.collection_completed:
            raise ClaimStateError("Already marked as collected", code="ALREADY_COLLECTED")

        now = utcnow()
        stmt = (
            update(Redemption)
            .where(
                Redemption.id == redemption_id,
                Redemption.vendor_id == vendor_id,
                Redemption.collection_completed.is_(False),
            )
            .values(collection_completed=True, collection_completed_at=now, amount_collected=amount_collected)
            .returning(Redemption.id)
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(stmt)
        if result.scalar_one_or_none() is None:
            await self._db.rollback()
            raise ClaimStateError("Already marked as collected", code="ALREADY_COLLECTED")
        await self._db.commit()

        set_committed_value(redemption, "collection_completed", True)
        set_committed_value(redemption, "collection_completed_at", now)
        set_committed_value(redemption, "amount_collected", amount_collected)
        logger.info(
            "Remaining balance collected",
            redemption_id=str(redemption_id),
            vendor_id=str(vendor_id),
            amount_collected=str(amount_collected) if amount_collected is not None else None,
        )
        return redemption


__all__ = [
    "CodeKind",
    "CodeStatus",
    "REDEMPTION_CODE_PATTERN",
    "RedemptionResult",
    "RedemptionVerifier",
    "classify_code",
]
