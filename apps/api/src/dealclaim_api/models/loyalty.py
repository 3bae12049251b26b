"""Vendor-scoped loyalty programs, cards, and their transaction ledger."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from dealclaim_api.db.base import Base


class LoyaltyProgramType(str, Enum):
    PUNCH_CARD = "punch_card"
    POINTS = "points"


class LoyaltyTransactionType(str, Enum):
    """Ledger entry types for loyalty card balance changes."""

    EARN_PUNCH = "earn_punch"
    EARN_POINTS = "earn_points"
    REDEEM_PUNCH_REWARD = "redeem_punch_reward"
    REDEEM_POINTS_REWARD = "redeem_points_reward"


class LoyaltyProgram(Base):
    __tablename__ = "loyalty_programs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    vendor_id = Column(UUID(as_uuid=True), ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False, index=True)
    program_type = Column(
        SqlEnum(
            LoyaltyProgramType,
            name="loyalty_program_type",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    punches_required = Column(Integer, nullable=True)
    punch_reward = Column(String, nullable=True)
    points_per_dollar = Column(Numeric(8, 2), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    rewards = relationship("LoyaltyReward", back_populates="program", cascade="all, delete-orphan")
    cards = relationship("LoyaltyCard", back_populates="program")


class LoyaltyReward(Base):
    __tablename__ = "loyalty_rewards"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    program_id = Column(UUID(as_uuid=True), ForeignKey("loyalty_programs.id", ondelete="CASCADE"), nullable=False)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    points_cost = Column(Integer, nullable=False)
    sort_order = Column(Integer, nullable=False, default=0, server_default="0")
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    program = relationship("LoyaltyProgram", back_populates="rewards")


class LoyaltyCard(Base):
    """A customer's running balance under one vendor program."""

    __tablename__ = "loyalty_cards"
    __table_args__ = (
        UniqueConstraint("program_id", "customer_id", name="uq_loyalty_cards_program_customer"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    program_id = Column(UUID(as_uuid=True), ForeignKey("loyalty_programs.id", ondelete="CASCADE"), nullable=False)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    vendor_id = Column(UUID(as_uuid=True), ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False)
    current_punches = Column(Integer, nullable=False, default=0, server_default="0")
    total_punches_earned = Column(Integer, nullable=False, default=0, server_default="0")
    current_points = Column(Integer, nullable=False, default=0, server_default="0")
    total_points_earned = Column(Integer, nullable=False, default=0, server_default="0")
    total_points_redeemed = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    program = relationship("LoyaltyProgram", back_populates="cards")
    transactions = relationship(
        "LoyaltyTransaction", back_populates="card", cascade="all, delete-orphan"
    )


class LoyaltyTransaction(Base):
    __tablename__ = "loyalty_transactions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    card_id = Column(UUID(as_uuid=True), ForeignKey("loyalty_cards.id", ondelete="CASCADE"), nullable=False, index=True)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    vendor_id = Column(UUID(as_uuid=True), ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False)
    redemption_id = Column(UUID(as_uuid=True), ForeignKey("redemptions.id", ondelete="SET NULL"), nullable=True)
    reward_id = Column(UUID(as_uuid=True), ForeignKey("loyalty_rewards.id", ondelete="SET NULL"), nullable=True)
    transaction_type = Column(
        SqlEnum(
            LoyaltyTransactionType,
            name="loyalty_transaction_type",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )
    points_amount = Column(Integer, nullable=False, default=0, server_default="0")
    punches_amount = Column(Integer, nullable=False, default=0, server_default="0")
    description = Column(String, nullable=True)
    deal_title = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    card = relationship("LoyaltyCard", back_populates="transactions")
