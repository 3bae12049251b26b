"""Credential issuance: QR tokens, 6-digit redemption codes, payment references.

Issuing credentials is the moment a claim becomes deposit-confirmed and counted.
``CredentialIssuer.confirm_and_issue`` applies the three effects (mark confirmed,
attach credentials, increment ``claims_count``) inside the caller's transaction;
``commit_issuance`` commits that unit and retries it when a uniqueness
constraint rejects a colliding code.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Awaitable, Callable, TypeVar
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from dealclaim_api.core.settings import settings
from dealclaim_api.models.claim import Claim
from .clock import utcnow
from .counters import increment_claims_count
from .errors import (
    ClaimError,
    ClaimStateError,
    CredentialIssueError,
    DealSoldOutError,
    DepositAlreadyConfirmedError,
)

T = TypeVar("T")

REDEMPTION_CODE_LENGTH = 6


@dataclass(slots=True)
class IssuedCredentials:
    qr_code: str
    qr_code_url: str
    redemption_code: str


def generate_qr_token() -> str:
    return str(uuid4())


def generate_redemption_code() -> str:
    """Six numeric digits without a leading zero (100000-999999)."""

    return str(100_000 + secrets.randbelow(900_000))


def generate_payment_reference() -> str:
    """Vendor-facing reconciliation code, e.g. ``SC-7F3K9Q``."""

    alphabet = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
    suffix = "".join(secrets.choice(alphabet) for _ in range(6))
    return f"{settings.payment_reference_prefix}-{suffix}"


def redemption_url(qr_code: str) -> str:
    return f"{settings.frontend_url.rstrip('/')}/redeem/{qr_code}"


class CredentialIssuer:
    """Allocates unique credentials and binds them to claims."""

    def __init__(self, db: AsyncSession, *, max_attempts: int | None = None) -> None:
        self._db = db
        self._max_attempts = max_attempts or settings.credential_issue_max_attempts

    async def _is_taken(self, column, value: str) -> bool:
        result = await self._db.execute(select(Claim.id).where(column == value).limit(1))
        return result.scalar_one_or_none() is not None

    async def _unused(self, column, generator: Callable[[], str], label: str) -> str:
        for attempt in range(1, self._max_attempts + 1):
            candidate = generator()
            if not await self._is_taken(column, candidate):
                return candidate
            logger.warning("Credential candidate collided", kind=label, attempt=attempt)
        raise CredentialIssueError(f"Could not allocate a unique {label}")

    async def allocate(self) -> IssuedCredentials:
        """Pick a QR token and redemption code not currently held by any claim."""

        qr_code = await self._unused(Claim.qr_code, generate_qr_token, "qr_code")
        redemption_code = await self._unused(
            Claim.redemption_code, generate_redemption_code, "redemption_code"
        )
        return IssuedCredentials(
            qr_code=qr_code,
            qr_code_url=redemption_url(qr_code),
            redemption_code=redemption_code,
        )

    async def allocate_payment_reference(self) -> str:
        return await self._unused(Claim.payment_reference, generate_payment_reference, "payment_reference")

    async def confirm_and_issue(
        self,
        claim: Claim,
        *,
        amount_paid: Decimal | None,
        now: datetime | None = None,
    ) -> IssuedCredentials:
        """Confirm an unconfirmed claim, attach credentials, and count it.

        The confirmation write only matches rows still ``deposit_confirmed = false``
        so redelivered confirmation events cannot double count.
        """

        confirmed_at = now or utcnow()
        credentials = await self.allocate()
        stmt = (
            update(Claim)
            .where(
                Claim.id == claim.id,
                Claim.deposit_confirmed.is_(False),
                Claim.cancelled_at.is_(None),
            )
            .values(
                deposit_confirmed=True,
                deposit_confirmed_at=confirmed_at,
                deposit_amount_paid=amount_paid,
                qr_code=credentials.qr_code,
                qr_code_url=credentials.qr_code_url,
                redemption_code=credentials.redemption_code,
            )
            .returning(Claim.id)
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(stmt)
        if result.scalar_one_or_none() is None:
            raise DepositAlreadyConfirmedError("Deposit is already confirmed")

        if not await increment_claims_count(self._db, claim.deal_id):
            raise DealSoldOutError("Deal has reached maximum claims")

        self._sync(
            claim,
            deposit_confirmed=True,
            deposit_confirmed_at=confirmed_at,
            deposit_amount_paid=amount_paid,
            qr_code=credentials.qr_code,
            qr_code_url=credentials.qr_code_url,
            redemption_code=credentials.redemption_code,
        )
        logger.info(
            "Issued claim credentials",
            claim_id=str(claim.id),
            deal_id=str(claim.deal_id),
        )
        return credentials

    async def attach_to_confirmed(self, claim: Claim) -> IssuedCredentials:
        """Fill in credentials for a claim that is confirmed but has none."""

        credentials = await self.allocate()
        stmt = (
            update(Claim)
            .where(
                Claim.id == claim.id,
                Claim.deposit_confirmed.is_(True),
                Claim.redemption_code.is_(None),
                Claim.qr_code.is_(None),
            )
            .values(
                qr_code=credentials.qr_code,
                qr_code_url=credentials.qr_code_url,
                redemption_code=credentials.redemption_code,
            )
            .returning(Claim.id)
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(stmt)
        if result.scalar_one_or_none() is None:
            raise ClaimStateError("Claim already has credentials")

        self._sync(
            claim,
            qr_code=credentials.qr_code,
            qr_code_url=credentials.qr_code_url,
            redemption_code=credentials.redemption_code,
        )
        logger.info("Attached credentials to confirmed claim", claim_id=str(claim.id))
        return credentials

    @staticmethod
    def _sync(claim: Claim, **values: object) -> None:
        for key, value in values.items():
            set_committed_value(claim, key, value)


async def commit_issuance(
    db: AsyncSession,
    unit: Callable[[], Awaitable[T]],
    *,
    max_attempts: int | None = None,
) -> T:
    """Run ``unit`` and commit it, replaying the whole unit on a code collision.

    Domain errors roll the unit back and propagate unchanged.
    """

    attempts = max_attempts or settings.credential_issue_max_attempts
    for attempt in range(1, attempts + 1):
        try:
            outcome = await unit()
            await db.commit()
            return outcome
        except ClaimError:
            await db.rollback()
            raise
        except IntegrityError as error:
            await db.rollback()
            logger.warning(
                "Credential uniqueness conflict; replaying issuance",
                attempt=attempt,
                error=str(error.orig) if error.orig else str(error),
            )
    raise CredentialIssueError("Could not issue unique credentials; please retry")


__all__ = [
    "CredentialIssuer",
    "IssuedCredentials",
    "REDEMPTION_CODE_LENGTH",
    "commit_issuance",
    "generate_payment_reference",
    "generate_qr_token",
    "generate_redemption_code",
    "redemption_url",
]
