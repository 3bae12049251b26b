from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from dealclaim_api.models import (
    LoyaltyCard,
    LoyaltyProgram,
    LoyaltyProgramType,
    LoyaltyReward,
    LoyaltyTransaction,
    LoyaltyTransactionType,
)
from dealclaim_api.services.loyalty import LoyaltyNotFoundError, LoyaltyRedemptionError, LoyaltyService
from dealclaim_api.services.loyalty.loyalty_service import points_for_price


async def _points_program(session_factory, seed, *, points_per_dollar="2.5"):
    async with session_factory() as session:
        vendor = await seed.vendor(session)
        customer = await seed.user(session)
        program = LoyaltyProgram(
            vendor_id=vendor.id,
            program_type=LoyaltyProgramType.POINTS,
            name="Ramen rewards",
            points_per_dollar=Decimal(points_per_dollar),
        )
        session.add(program)
        await session.flush()
        reward = LoyaltyReward(program_id=program.id, name="Free gyoza", points_cost=50)
        session.add(reward)
        await session.commit()
        return vendor.id, customer.id, program.id, reward.id


def test_points_for_price_floors() -> None:
    assert points_for_price(Decimal("19.99"), Decimal("2")) == 39
    assert points_for_price(None, Decimal("2")) == 0
    assert points_for_price(Decimal("10"), None) == 0


@pytest.mark.asyncio
async def test_points_award_uses_deal_price(session_factory, seed) -> None:
    vendor_id, customer_id, _, _ = await _points_program(session_factory, seed)

    async with session_factory() as session:
        award = await LoyaltyService(session).award_for_redemption(
            redemption_id=uuid4(),
            vendor_id=vendor_id,
            customer_id=customer_id,
            deal_price=Decimal("12.00"),
            deal_title="Tonkotsu bowl",
        )

    assert award is not None
    assert award.points_earned == 30
    async with session_factory() as session:
        card = (await session.execute(select(LoyaltyCard))).scalar_one()
        transaction = (await session.execute(select(LoyaltyTransaction))).scalar_one()
    assert card.current_points == 30
    assert card.total_points_earned == 30
    assert transaction.transaction_type == LoyaltyTransactionType.EARN_POINTS
    assert transaction.deal_title == "Tonkotsu bowl"


@pytest.mark.asyncio
async def test_award_without_program_is_noop(session_factory, seed) -> None:
    async with session_factory() as session:
        vendor = await seed.vendor(session)
        customer = await seed.user(session)
        await session.commit()
        vendor_id, customer_id = vendor.id, customer.id

    async with session_factory() as session:
        award = await LoyaltyService(session).award_for_redemption(
            redemption_id=uuid4(),
            vendor_id=vendor_id,
            customer_id=customer_id,
            deal_price=Decimal("10"),
            deal_title=None,
        )

    assert award is None


@pytest.mark.asyncio
async def test_points_reward_redemption(session_factory, seed) -> None:
    vendor_id, customer_id, program_id, reward_id = await _points_program(session_factory, seed)
    async with session_factory() as session:
        card = LoyaltyCard(program_id=program_id, customer_id=customer_id, vendor_id=vendor_id, current_points=70)
        session.add(card)
        await session.commit()
        card_id = card.id

    async with session_factory() as session:
        outcome = await LoyaltyService(session).redeem_reward(customer_id, card_id, reward_id)
    assert outcome.reward_name == "Free gyoza"
    assert outcome.remaining_points == 20

    async with session_factory() as session:
        with pytest.raises(LoyaltyRedemptionError, match="30 more points"):
            await LoyaltyService(session).redeem_reward(customer_id, card_id, reward_id)

    async with session_factory() as session:
        with pytest.raises(LoyaltyRedemptionError, match="reward_id is required"):
            await LoyaltyService(session).redeem_reward(customer_id, card_id)

    async with session_factory() as session:
        with pytest.raises(LoyaltyNotFoundError):
            await LoyaltyService(session).redeem_reward(customer_id, card_id, uuid4())

    async with session_factory() as session:
        refreshed = await session.get(LoyaltyCard, card_id)
    assert refreshed.current_points == 20
    assert refreshed.total_points_redeemed == 50


@pytest.mark.asyncio
async def test_punch_reward_resets_stamps(session_factory, seed) -> None:
    async with session_factory() as session:
        vendor = await seed.vendor(session)
        customer = await seed.user(session)
        program = LoyaltyProgram(
            vendor_id=vendor.id,
            program_type=LoyaltyProgramType.PUNCH_CARD,
            name="Coffee club",
            punches_required=3,
            punch_reward="Free latte",
        )
        session.add(program)
        await session.flush()
        card = LoyaltyCard(program_id=program.id, customer_id=customer.id, vendor_id=vendor.id, current_punches=4)
        session.add(card)
        await session.commit()
        customer_id, card_id = customer.id, card.id

    async with session_factory() as session:
        outcome = await LoyaltyService(session).redeem_reward(customer_id, card_id)
    assert outcome.reward_name == "Free latte"
    assert outcome.remaining_punches == 1

    async with session_factory() as session:
        with pytest.raises(LoyaltyRedemptionError, match="2 more stamps"):
            await LoyaltyService(session).redeem_reward(customer_id, card_id)

    async with session_factory() as session:
        with pytest.raises(LoyaltyNotFoundError):
            await LoyaltyService(session).redeem_reward(uuid4(), card_id)
