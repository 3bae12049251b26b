"""Vendor loyalty programs: awarding on redemption and reward redemption."""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from dealclaim_api.models.loyalty import (
    LoyaltyCard,
    LoyaltyProgram,
    LoyaltyProgramType,
    LoyaltyReward,
    LoyaltyTransaction,
    LoyaltyTransactionType,
)


class LoyaltyRedemptionError(ValueError):
    """A customer's reward redemption cannot be honoured."""

    status_code = 400


class LoyaltyNotFoundError(LoyaltyRedemptionError):
    status_code = 404


@dataclass(slots=True)
class LoyaltyAward:
    """What a single redemption earned on the customer's card."""

    card_id: UUID
    program_type: LoyaltyProgramType
    punches_earned: int = 0
    points_earned: int = 0
    reward_ready: bool = False


@dataclass(slots=True)
class LoyaltyRewardRedemption:
    reward_name: str | None
    remaining_punches: int | None = None
    remaining_points: int | None = None


def points_for_price(price: Decimal | None, points_per_dollar: Decimal | None) -> int:
    if price is None or points_per_dollar is None:
        return 0
    return max(0, math.floor(Decimal(price) * Decimal(points_per_dollar)))


class LoyaltyService:
    """Coordinates loyalty cards for customers across vendor programs."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def get_active_program(self, vendor_id: UUID) -> LoyaltyProgram | None:
        stmt = (
            select(LoyaltyProgram)
            .where(LoyaltyProgram.vendor_id == vendor_id, LoyaltyProgram.is_active.is_(True))
            .order_by(LoyaltyProgram.created_at.desc())
            .limit(1)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def ensure_card(self, program: LoyaltyProgram, customer_id: UUID) -> LoyaltyCard:
        """Fetch or create the customer's card for a program."""

        program_id = program.id
        vendor_id = program.vendor_id
        stmt = select(LoyaltyCard).where(
            LoyaltyCard.program_id == program_id,
            LoyaltyCard.customer_id == customer_id,
        )
        card = (await self._db.execute(stmt)).scalar_one_or_none()
        if card:
            return card

        card = LoyaltyCard(program_id=program_id, customer_id=customer_id, vendor_id=vendor_id)
        self._db.add(card)
        try:
            await self._db.flush()
            logger.info("Created loyalty card", program_id=str(program_id), customer_id=str(customer_id))
        except IntegrityError:
            await self._db.rollback()
            logger.warning("Detected race when creating loyalty card", customer_id=str(customer_id))
            return (await self._db.execute(stmt)).scalar_one()
        return card

    async def award_for_redemption(
        self,
        *,
        redemption_id: UUID,
        vendor_id: UUID,
        customer_id: UUID,
        deal_price: Decimal | None,
        deal_title: str | None,
    ) -> LoyaltyAward | None:
        """Credit the customer's card for a completed redemption.

        Never raises: any failure is logged and rolled back so the redemption
        that triggered it is unaffected.
        """

        try:
            award = await self._apply_award(
                redemption_id=redemption_id,
                vendor_id=vendor_id,
                customer_id=customer_id,
                deal_price=deal_price,
                deal_title=deal_title,
            )
            await self._db.commit()
            return award
        except Exception:
            await self._db.rollback()
            logger.exception(
                "Loyalty award failed; redemption stands",
                redemption_id=str(redemption_id),
                vendor_id=str(vendor_id),
                customer_id=str(customer_id),
            )
            return None

    async def _apply_award(
        self,
        *,
        redemption_id: UUID,
        vendor_id: UUID,
        customer_id: UUID,
        deal_price: Decimal | None,
        deal_title: str | None,
    ) -> LoyaltyAward | None:
        program = await self.get_active_program(vendor_id)
        if program is None:
            return None

        program_type = program.program_type
        punches_required = program.punches_required
        points_per_dollar = program.points_per_dollar
        punch_reward = program.punch_reward
        card = await self.ensure_card(program, customer_id)

        if program_type == LoyaltyProgramType.PUNCH_CARD:
            card.current_punches = LoyaltyCard.current_punches + 1
            card.total_punches_earned = LoyaltyCard.total_punches_earned + 1
            transaction = LoyaltyTransaction(
                card_id=card.id,
                customer_id=customer_id,
                vendor_id=vendor_id,
                redemption_id=redemption_id,
                transaction_type=LoyaltyTransactionType.EARN_PUNCH,
                punches_amount=1,
                description="Earned 1 stamp",
                deal_title=deal_title,
            )
            self._db.add(transaction)
            await self._db.flush()
            await self._db.refresh(card)
            ready = bool(punches_required) and card.current_punches >= punches_required
            logger.info(
                "Awarded loyalty punch",
                card_id=str(card.id),
                current_punches=card.current_punches,
                reward_ready=ready,
                reward=punch_reward if ready else None,
            )
            return LoyaltyAward(
                card_id=card.id,
                program_type=program_type,
                punches_earned=1,
                reward_ready=ready,
            )

        points = points_for_price(deal_price, points_per_dollar)
        if points <= 0:
            logger.debug("Redemption earned no loyalty points", card_id=str(card.id))
            return LoyaltyAward(card_id=card.id, program_type=program_type)

        card.current_points = LoyaltyCard.current_points + points
        card.total_points_earned = LoyaltyCard.total_points_earned + points
        self._db.add(
            LoyaltyTransaction(
                card_id=card.id,
                customer_id=customer_id,
                vendor_id=vendor_id,
                redemption_id=redemption_id,
                transaction_type=LoyaltyTransactionType.EARN_POINTS,
                points_amount=points,
                description=f"Earned {points} points",
                deal_title=deal_title,
            )
        )
        await self._db.flush()
        logger.info("Awarded loyalty points", card_id=str(card.id), points=points)
        return LoyaltyAward(card_id=card.id, program_type=program_type, points_earned=points)

    async def list_cards(self, customer_id: UUID) -> Sequence[LoyaltyCard]:
        stmt = (
            select(LoyaltyCard)
            .options(selectinload(LoyaltyCard.program).selectinload(LoyaltyProgram.rewards))
            .where(LoyaltyCard.customer_id == customer_id)
            .order_by(LoyaltyCard.updated_at.desc())
        )
        result = await self._db.execute(stmt)
        return result.scalars().all()

    async def redeem_reward(
        self,
        customer_id: UUID,
        card_id: UUID,
        reward_id: UUID | None = None,
    ) -> LoyaltyRewardRedemption:
        stmt = (
            select(LoyaltyCard)
            .options(selectinload(LoyaltyCard.program))
            .where(LoyaltyCard.id == card_id, LoyaltyCard.customer_id == customer_id)
        )
        card = (await self._db.execute(stmt)).scalar_one_or_none()
        if card is None:
            raise LoyaltyNotFoundError("Loyalty card not found.")
        program = card.program
        if program is None or not program.is_active:
            raise LoyaltyRedemptionError("This loyalty program is no longer active.")

        if program.program_type == LoyaltyProgramType.PUNCH_CARD:
            return await self._redeem_punches(card, program)
        if not reward_id:
            raise LoyaltyRedemptionError("reward_id is required for points programs.")
        return await self._redeem_points(card, program, reward_id)

    async def _redeem_punches(self, card: LoyaltyCard, program: LoyaltyProgram) -> LoyaltyRewardRedemption:
        required = program.punches_required or 0
        if required <= 0:
            raise LoyaltyRedemptionError("This program has no stamp reward configured.")

        result = await self._db.execute(
            update(LoyaltyCard)
            .where(LoyaltyCard.id == card.id, LoyaltyCard.current_punches >= required)
            .values(current_punches=LoyaltyCard.current_punches - required)
            .returning(LoyaltyCard.current_punches)
            .execution_options(synchronize_session=False)
        )
        remaining = result.scalar_one_or_none()
        if remaining is None:
            missing = required - (card.current_punches or 0)
            raise LoyaltyRedemptionError(f"You need {max(missing, 1)} more stamps to earn your reward.")

        self._db.add(
            LoyaltyTransaction(
                card_id=card.id,
                customer_id=card.customer_id,
                vendor_id=card.vendor_id,
                transaction_type=LoyaltyTransactionType.REDEEM_PUNCH_REWARD,
                punches_amount=-required,
                description=f"Redeemed reward: {program.punch_reward}",
            )
        )
        await self._db.commit()
        logger.info("Redeemed punch card reward", card_id=str(card.id), remaining_punches=remaining)
        return LoyaltyRewardRedemption(reward_name=program.punch_reward, remaining_punches=remaining)

    async def _redeem_points(
        self,
        card: LoyaltyCard,
        program: LoyaltyProgram,
        reward_id: UUID,
    ) -> LoyaltyRewardRedemption:
        reward_stmt = select(LoyaltyReward).where(
            LoyaltyReward.id == reward_id,
            LoyaltyReward.program_id == program.id,
            LoyaltyReward.is_active.is_(True),
        )
        reward = (await self._db.execute(reward_stmt)).scalar_one_or_none()
        if reward is None:
            raise LoyaltyNotFoundError("Reward not found or inactive.")
        cost = reward.points_cost

        result = await self._db.execute(
            update(LoyaltyCard)
            .where(LoyaltyCard.id == card.id, LoyaltyCard.current_points >= cost)
            .values(
                current_points=LoyaltyCard.current_points - cost,
                total_points_redeemed=LoyaltyCard.total_points_redeemed + cost,
            )
            .returning(LoyaltyCard.current_points)
            .execution_options(synchronize_session=False)
        )
        remaining = result.scalar_one_or_none()
        if remaining is None:
            missing = cost - (card.current_points or 0)
            raise LoyaltyRedemptionError(f"You need {max(missing, 1)} more points to redeem this reward.")

        self._db.add(
            LoyaltyTransaction(
                card_id=card.id,
                customer_id=card.customer_id,
                vendor_id=card.vendor_id,
                reward_id=reward.id,
                transaction_type=LoyaltyTransactionType.REDEEM_POINTS_REWARD,
                points_amount=-cost,
                description=f"Redeemed reward: {reward.name}",
            )
        )
        await self._db.commit()
        logger.info("Redeemed points reward", card_id=str(card.id), reward_id=str(reward.id), remaining_points=remaining)
        return LoyaltyRewardRedemption(reward_name=reward.name, remaining_points=remaining)


__all__ = [
    "LoyaltyAward",
    "LoyaltyNotFoundError",
    "LoyaltyRedemptionError",
    "LoyaltyRewardRedemption",
    "LoyaltyService",
    "points_for_price",
]
