"""Customer loyalty cards and reward redemption."""

from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from dealclaim_api.api.dependencies.session import require_member_session
from dealclaim_api.db.session import get_session
from dealclaim_api.models.user import User
from dealclaim_api.services.loyalty import LoyaltyRedemptionError, LoyaltyService


router = APIRouter(prefix="/loyalty", tags=["loyalty"])


class LoyaltyRewardResponse(BaseModel):
    id: UUID
    name: str
    points_cost: int


class LoyaltyCardResponse(BaseModel):
    id: UUID
    vendor_id: UUID
    program_name: str
    program_type: str
    current_punches: int
    punches_required: Optional[int]
    punch_reward: Optional[str]
    current_points: int
    total_points_earned: int
    total_points_redeemed: int
    rewards: List[LoyaltyRewardResponse] = Field(default_factory=list)


class LoyaltyRedeemRequest(BaseModel):
    card_id: UUID
    reward_id: Optional[UUID] = None


class LoyaltyRedeemResponse(BaseModel):
    success: bool = True
    reward_name: Optional[str]
    remaining_punches: Optional[int] = None
    remaining_points: Optional[int] = None


@router.get("/cards", response_model=List[LoyaltyCardResponse])
async def list_loyalty_cards(
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> List[LoyaltyCardResponse]:
    cards = await LoyaltyService(db).list_cards(user.id)
    return [
        LoyaltyCardResponse(
            id=card.id,
            vendor_id=card.vendor_id,
            program_name=card.program.name,
            program_type=card.program.program_type.value,
            current_punches=card.current_punches,
            punches_required=card.program.punches_required,
            punch_reward=card.program.punch_reward,
            current_points=card.current_points,
            total_points_earned=card.total_points_earned,
            total_points_redeemed=card.total_points_redeemed,
            rewards=[
                LoyaltyRewardResponse(id=reward.id, name=reward.name, points_cost=reward.points_cost)
                for reward in sorted(card.program.rewards, key=lambda item: item.sort_order)
                if reward.is_active
            ],
        )
        for card in cards
    ]


@router.post("/redeem", response_model=LoyaltyRedeemResponse)
async def redeem_loyalty_reward(
    request: LoyaltyRedeemRequest,
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> LoyaltyRedeemResponse:
    try:
        outcome = await LoyaltyService(db).redeem_reward(user.id, request.card_id, request.reward_id)
    except LoyaltyRedemptionError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc

    return LoyaltyRedeemResponse(
        reward_name=outcome.reward_name,
        remaining_punches=outcome.remaining_punches,
        remaining_points=outcome.remaining_points,
    )
