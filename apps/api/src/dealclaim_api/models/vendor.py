"""Vendor accounts and their configured payment methods."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Enum as SqlEnum, ForeignKey, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from dealclaim_api.db.base import Base


class PaymentProcessorEnum(str, Enum):
    STRIPE = "stripe"
    SQUARE = "square"
    PAYPAL = "paypal"
    VENMO = "venmo"
    ZELLE = "zelle"
    CASHAPP = "cashapp"


class PaymentTierEnum(str, Enum):
    """Resolved payment-collection path for a claim."""

    NONE = "none"
    INTEGRATED = "integrated"
    MANUAL = "manual"
    LINK = "link"


# Peer-to-peer processors reconciled by hand against a payment reference.
MANUAL_PROCESSORS = frozenset(
    {
        PaymentProcessorEnum.VENMO,
        PaymentProcessorEnum.ZELLE,
        PaymentProcessorEnum.CASHAPP,
    }
)


class Vendor(Base):
    """Vendor profile keyed by the owning user's id."""

    __tablename__ = "vendors"

    id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    business_name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    stripe_payment_link = Column(String, nullable=True)
    deposit_webhook_secret = Column(String, nullable=True)
    stripe_connect_account_id = Column(String, nullable=True, unique=True)
    stripe_connect_onboarding_complete = Column(Boolean, nullable=False, default=False, server_default="false")
    stripe_connect_charges_enabled = Column(Boolean, nullable=False, default=False, server_default="false")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    payment_methods = relationship(
        "VendorPaymentMethod", back_populates="vendor", cascade="all, delete-orphan"
    )
    deals = relationship("Deal", back_populates="vendor")

    @property
    def integrated_payments_enabled(self) -> bool:
        return bool(
            self.stripe_connect_account_id
            and self.stripe_connect_onboarding_complete
            and self.stripe_connect_charges_enabled
        )


class VendorPaymentMethod(Base):
    __tablename__ = "vendor_payment_methods"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    vendor_id = Column(UUID(as_uuid=True), ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False, index=True)
    processor_type = Column(
        SqlEnum(
            PaymentProcessorEnum,
            name="payment_processor_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )
    payment_link = Column(String, nullable=False)
    display_name = Column(String, nullable=True)
    is_primary = Column(Boolean, nullable=False, default=False, server_default="false")
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    payment_tier = Column(
        SqlEnum(
            PaymentTierEnum,
            name="payment_tier_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=PaymentTierEnum.LINK,
        server_default=PaymentTierEnum.LINK.value,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    vendor = relationship("Vendor", back_populates="payment_methods")
