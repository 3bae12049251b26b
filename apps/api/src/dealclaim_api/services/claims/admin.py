"""Privileged claim overrides.

Each command is its own pydantic model tagged by ``action`` and is routed to
exactly one handler. Overrides skip the customer-facing preconditions but
still go through the shared counter and credential helpers.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Awaitable, Callable, Literal, Union
from uuid import UUID

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from dealclaim_api.models.claim import Claim, Redemption
from dealclaim_api.models.deal import Deal
from dealclaim_api.models.vendor import PaymentProcessorEnum
from .clock import ensure_aware, utcnow
from .confirmation import cancel_claim
from .counters import decrement_claims_count
from .credentials import CredentialIssuer, commit_issuance
from .errors import (
    ClaimNotFoundError,
    ClaimStateError,
    ClaimValidationError,
    DepositAlreadyConfirmedError,
)


class AdminClaimAction(str, Enum):
    CANCEL = "cancel"
    REDEEM = "redeem"
    EXTEND = "extend"
    CONFIRM_DEPOSIT = "confirm_deposit"
    GENERATE_CODES = "generate_codes"
    EDIT = "edit"


class CancelClaimCommand(BaseModel):
    action: Literal["cancel"]


class ForceRedeemCommand(BaseModel):
    action: Literal["redeem"]


class ExtendExpiryCommand(BaseModel):
    action: Literal["extend"]
    expires_at: datetime


class ConfirmDepositCommand(BaseModel):
    action: Literal["confirm_deposit"]
    amount_paid: Decimal | None = Field(None, ge=0)


class GenerateCodesCommand(BaseModel):
    action: Literal["generate_codes"]


class EditClaimCommand(BaseModel):
    """Manual correction limited to bookkeeping fields."""

    model_config = ConfigDict(extra="forbid")

    action: Literal["edit"]
    payment_reference: str | None = Field(None, max_length=32)
    payment_method_type: PaymentProcessorEnum | None = None
    deposit_amount_paid: Decimal | None = Field(None, ge=0)
    stripe_checkout_session_id: str | None = None


AdminClaimCommand = Annotated[
    Union[
        CancelClaimCommand,
        ForceRedeemCommand,
        ExtendExpiryCommand,
        ConfirmDepositCommand,
        GenerateCodesCommand,
        EditClaimCommand,
    ],
    Field(discriminator="action"),
]

_EDITABLE_FIELDS = frozenset(
    {"payment_reference", "payment_method_type", "deposit_amount_paid", "stripe_checkout_session_id"}
)


@dataclass(slots=True)
class AdminActionResult:
    action: AdminClaimAction
    claim: Claim
    message: str


class AdminOverrideController:
    """Applies administrative commands to a single claim."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db
        self._issuer = CredentialIssuer(db)
        self._handlers: dict[type[BaseModel], Callable[[Claim, BaseModel, UUID], Awaitable[str]]] = {
            CancelClaimCommand: self._cancel,
            ForceRedeemCommand: self._redeem,
            ExtendExpiryCommand: self._extend,
            ConfirmDepositCommand: self._confirm_deposit,
            GenerateCodesCommand: self._generate_codes,
            EditClaimCommand: self._edit,
        }

    async def _claim(self, claim_id: UUID) -> Claim:
        claim = await self._db.get(Claim, claim_id, populate_existing=True)
        if claim is None:
            raise ClaimNotFoundError("Claim not found")
        return claim

    async def apply(self, claim_id: UUID, command: BaseModel, *, actor_id: UUID) -> AdminActionResult:
        handler = self._handlers.get(type(command))
        if handler is None:
            raise ClaimValidationError(f"Unsupported admin action: {type(command).__name__}")

        claim = await self._claim(claim_id)
        action = AdminClaimAction(command.action)  # type: ignore[attr-defined]
        message = await handler(claim, command, actor_id)
        claim = await self._claim(claim_id)
        logger.info("Admin claim override applied", claim_id=str(claim_id), action=action.value, actor_id=str(actor_id))
        return AdminActionResult(action=action, claim=claim, message=message)

    async def _cancel(self, claim: Claim, command: CancelClaimCommand, actor_id: UUID) -> str:
        released = await cancel_claim(self._db, claim)
        await self._db.commit()
        return "Claim cancelled; slot released" if released else "Claim cancelled"

    async def _redeem(self, claim: Claim, command: ForceRedeemCommand, actor_id: UUID) -> str:
        if claim.is_cancelled:
            raise ClaimStateError("Cancelled claims cannot be redeemed")

        now = utcnow()
        result = await self._db.execute(
            update(Claim)
            .where(Claim.id == claim.id, Claim.redeemed.is_(False))
            .values(redeemed=True, redeemed_at=now)
            .returning(Claim.id)
            .execution_options(synchronize_session=False)
        )
        if result.scalar_one_or_none() is None:
            await self._db.rollback()
            raise ClaimStateError("Claim is already redeemed")

        existing = await self._db.execute(select(Redemption.id).where(Redemption.claim_id == claim.id))
        if existing.scalar_one_or_none() is None:
            deal = await self._db.get(Deal, claim.deal_id)
            self._db.add(
                Redemption(
                    claim_id=claim.id,
                    deal_id=claim.deal_id,
                    vendor_id=deal.vendor_id,
                    customer_id=claim.customer_id,
                    scanned_by=actor_id,
                    deposit_amount=claim.deposit_amount_paid,
                    payment_method_type=claim.payment_method_type.value if claim.payment_method_type else None,
                    remaining_balance=deal.remaining_balance,
                )
            )
        await self._db.commit()
        return "Claim marked as redeemed"

    async def _extend(self, claim: Claim, command: ExtendExpiryCommand, actor_id: UUID) -> str:
        new_expiry = ensure_aware(command.expires_at)
        if new_expiry <= utcnow():
            raise ClaimValidationError("New expiration must be in the future")
        if claim.is_cancelled:
            raise ClaimStateError("Cancelled claims cannot be extended")
        claim.expires_at = new_expiry
        await self._db.commit()
        return f"Claim extended to {new_expiry.isoformat()}"

    async def _confirm_deposit(self, claim: Claim, command: ConfirmDepositCommand, actor_id: UUID) -> str:
        if claim.deposit_confirmed:
            raise DepositAlreadyConfirmedError("Deposit is already confirmed")
        if claim.is_cancelled:
            raise ClaimStateError("Cancelled claims cannot be confirmed")

        claim_id = claim.id
        deal = await self._db.get(Deal, claim.deal_id)
        amount_paid = command.amount_paid
        if amount_paid is None:
            amount_paid = Decimal(deal.deposit_amount or deal.deal_price or 0)

        async def unit() -> None:
            target = await self._claim(claim_id)
            await self._issuer.confirm_and_issue(target, amount_paid=amount_paid)

        await commit_issuance(self._db, unit)
        return "Deposit confirmed and credentials issued"

    async def _generate_codes(self, claim: Claim, command: GenerateCodesCommand, actor_id: UUID) -> str:
        if claim.has_credentials:
            raise ClaimStateError("Claim already has credentials")
        if claim.is_cancelled:
            raise ClaimStateError("Cancelled claims cannot receive credentials")

        claim_id = claim.id
        was_confirmed = bool(claim.deposit_confirmed)

        async def unit() -> None:
            target = await self._claim(claim_id)
            if was_confirmed:
                await self._issuer.attach_to_confirmed(target)
            else:
                await self._issuer.confirm_and_issue(target, amount_paid=None)

        await commit_issuance(self._db, unit)
        return "Credentials generated"

    async def _edit(self, claim: Claim, command: EditClaimCommand, actor_id: UUID) -> str:
        changes = {name: getattr(command, name) for name in command.model_fields_set if name in _EDITABLE_FIELDS}
        if not changes:
            raise ClaimValidationError("No editable fields supplied")
        for column, value in changes.items():
            setattr(claim, column, value)
        try:
            await self._db.commit()
        except IntegrityError as error:
            await self._db.rollback()
            raise ClaimValidationError("Edit conflicts with another claim", code="CONFLICT") from error
        return "Claim updated: " + ", ".join(sorted(changes))

    async def hard_delete(self, claim_id: UUID) -> bool:
        """Delete a claim outright, releasing its slot if it still held one.

        Returns whether a slot was released. Redemption records are kept.
        """

        # capacity is judged on the row as it was at deletion time
        result = await self._db.execute(
            delete(Claim)
            .where(Claim.id == claim_id)
            .returning(Claim.deal_id, Claim.deposit_confirmed, Claim.cancelled_at)
            .execution_options(synchronize_session=False)
        )
        row = result.one_or_none()
        if row is None:
            await self._db.rollback()
            raise ClaimNotFoundError("Claim not found")

        released = False
        if row.deposit_confirmed and row.cancelled_at is None:
            released = await decrement_claims_count(self._db, row.deal_id)
        await self._db.commit()
        logger.warning("Claim hard deleted", claim_id=str(claim_id), released_slot=released)
        return released


__all__ = [
    "AdminActionResult",
    "AdminClaimAction",
    "AdminClaimCommand",
    "AdminOverrideController",
    "CancelClaimCommand",
    "ConfirmDepositCommand",
    "EditClaimCommand",
    "ExtendExpiryCommand",
    "ForceRedeemCommand",
    "GenerateCodesCommand",
]
