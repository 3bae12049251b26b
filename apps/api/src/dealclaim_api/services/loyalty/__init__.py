"""Loyalty service exports."""

from .loyalty_service import (  # noqa: F401
    LoyaltyAward,
    LoyaltyNotFoundError,
    LoyaltyRedemptionError,
    LoyaltyRewardRedemption,
    LoyaltyService,
)
