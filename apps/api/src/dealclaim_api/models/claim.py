"""Claims on deals and their immutable redemption records."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Numeric,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from dealclaim_api.db.base import Base
from .vendor import PaymentProcessorEnum, PaymentTierEnum


class Claim(Base):
    """One customer's reservation of one unit of a deal."""

    __tablename__ = "claims"
    __table_args__ = (
        Index("ix_claims_deal_customer", "deal_id", "customer_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    deal_id = Column(UUID(as_uuid=True), ForeignKey("deals.id", ondelete="CASCADE"), nullable=False, index=True)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    session_token = Column(String(64), nullable=False, unique=True)
    payment_tier = Column(
        SqlEnum(
            PaymentTierEnum,
            name="payment_tier_enum",
            create_type=False,
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=PaymentTierEnum.NONE,
        server_default=PaymentTierEnum.NONE.value,
    )
    payment_method_type = Column(
        SqlEnum(
            PaymentProcessorEnum,
            name="payment_processor_enum",
            create_type=False,
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=True,
    )
    payment_reference = Column(String(32), nullable=True, unique=True)
    stripe_checkout_session_id = Column(String, nullable=True, unique=True)
    deposit_confirmed = Column(Boolean, nullable=False, default=False, server_default="false")
    deposit_confirmed_at = Column(DateTime(timezone=True), nullable=True)
    deposit_amount_paid = Column(Numeric(10, 2), nullable=True)
    qr_code = Column(String(64), nullable=True, unique=True)
    qr_code_url = Column(String, nullable=True)
    redemption_code = Column(String(6), nullable=True, unique=True)
    redeemed = Column(Boolean, nullable=False, default=False, server_default="false")
    redeemed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    deal = relationship("Deal", back_populates="claims")
    customer = relationship("User")

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled_at is not None

    @property
    def counts_toward_capacity(self) -> bool:
        return bool(self.deposit_confirmed) and self.cancelled_at is None

    @property
    def has_credentials(self) -> bool:
        return bool(self.qr_code and self.redemption_code)


class Redemption(Base):
    """Audit record written exactly once per successful redemption."""

    __tablename__ = "redemptions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    # Plain reference so the audit row survives an administrative hard delete.
    claim_id = Column(UUID(as_uuid=True), nullable=False, unique=True)
    deal_id = Column(UUID(as_uuid=True), ForeignKey("deals.id", ondelete="CASCADE"), nullable=False, index=True)
    vendor_id = Column(UUID(as_uuid=True), ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False, index=True)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    scanned_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    deposit_amount = Column(Numeric(10, 2), nullable=True)
    payment_method_type = Column(String, nullable=True)
    remaining_balance = Column(Numeric(10, 2), nullable=True)
    scanned_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    collection_completed = Column(Boolean, nullable=False, default=False, server_default="false")
    collection_completed_at = Column(DateTime(timezone=True), nullable=True)
    amount_collected = Column(Numeric(10, 2), nullable=True)



class ClaimTransfer(Base):
    """Audit trail of a claim handed from one customer to another."""

    __tablename__ = "claim_transfers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    claim_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    from_customer_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    to_customer_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    recipient_email = Column(String, nullable=False)
    transferred_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
