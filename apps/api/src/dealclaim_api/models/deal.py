from decimal import Decimal
from enum import Enum
from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, Enum as SqlEnum, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from dealclaim_api.db.base import Base


class DealStatusEnum(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    EXPIRED = "expired"


class DealTypeEnum(str, Enum):
    REGULAR = "regular"
    SPONTI = "sponti_coupon"


class Deal(Base):
    __tablename__ = "deals"
    __table_args__ = (
        CheckConstraint("claims_count >= 0", name="ck_deals_claims_count_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    vendor_id = Column(UUID(as_uuid=True), ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False, index=True)
    deal_type = Column(
        SqlEnum(
            DealTypeEnum,
            name="deal_type_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=DealTypeEnum.REGULAR,
        server_default=DealTypeEnum.REGULAR.value,
    )
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    original_price = Column(Numeric(10, 2), nullable=False)
    deal_price = Column(Numeric(10, 2), nullable=False)
    deposit_amount = Column(Numeric(10, 2), nullable=True)
    max_claims = Column(Integer, nullable=True)
    claims_count = Column(Integer, nullable=False, default=0, server_default="0")
    starts_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(
        SqlEnum(
            DealStatusEnum,
            name="deal_status_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=DealStatusEnum.DRAFT,
        server_default=DealStatusEnum.DRAFT.value,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    vendor = relationship("Vendor", back_populates="deals")
    claims = relationship("Claim", back_populates="deal")

    @property
    def requires_deposit(self) -> bool:
        return self.deposit_amount is not None and Decimal(self.deposit_amount) > 0

    @property
    def remaining_balance(self) -> Decimal:
        """Amount still owed at redemption once any deposit is applied."""

        deposit = Decimal(self.deposit_amount or 0)
        return max(Decimal("0"), Decimal(self.deal_price or 0) - deposit)
