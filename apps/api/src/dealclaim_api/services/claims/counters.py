"""Atomic maintenance of ``deals.claims_count``.

These are the only writers of the counter. Each helper is a single conditional
``UPDATE`` so concurrent confirmations cannot oversell a capacity-limited deal.
"""

from __future__ import annotations

from uuid import UUID

from loguru import logger
from sqlalchemy import or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.util import identity_key
from sqlalchemy.orm.attributes import set_committed_value

from dealclaim_api.models.deal import Deal


def _sync_cached_deal(db: AsyncSession, deal_id: UUID, claims_count: int) -> None:
    cached = db.identity_map.get(identity_key(Deal, deal_id))
    if cached is not None:
        set_committed_value(cached, "claims_count", claims_count)


async def increment_claims_count(db: AsyncSession, deal_id: UUID) -> bool:
    """Add one confirmed claim unless the deal is already at ``max_claims``.

    Returns ``False`` when the capacity guard rejected the increment.
    """

    stmt = (
        update(Deal)
        .where(
            Deal.id == deal_id,
            or_(Deal.max_claims.is_(None), Deal.claims_count < Deal.max_claims),
        )
        .values(claims_count=Deal.claims_count + 1)
        .returning(Deal.claims_count)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    new_count = result.scalar_one_or_none()
    if new_count is None:
        logger.warning("Claims counter increment rejected", deal_id=str(deal_id))
        return False
    _sync_cached_deal(db, deal_id, new_count)
    return True


async def decrement_claims_count(db: AsyncSession, deal_id: UUID) -> bool:
    """Compensate one previously counted claim, never dropping below zero."""

    stmt = (
        update(Deal)
        .where(Deal.id == deal_id, Deal.claims_count > 0)
        .values(claims_count=Deal.claims_count - 1)
        .returning(Deal.claims_count)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    new_count = result.scalar_one_or_none()
    if new_count is None:
        logger.warning("Claims counter decrement skipped at zero", deal_id=str(deal_id))
        return False
    _sync_cached_deal(db, deal_id, new_count)
    return True


async def lock_deal_row(db: AsyncSession, deal_id: UUID) -> None:
    """Hold the deal row's write lock until the surrounding transaction ends.

    Writers that must observe each other's claims on the same deal queue here
    before reading, so a check made after the lock sees every committed claim.
    """

    await db.execute(
        update(Deal)
        .where(Deal.id == deal_id)
        .values(claims_count=Deal.claims_count)
        .execution_options(synchronize_session=False)
    )
