"""SQLAlchemy models package."""

from .user import User, UserRoleEnum  # noqa: F401
from .vendor import (  # noqa: F401
    MANUAL_PROCESSORS,
    PaymentProcessorEnum,
    PaymentTierEnum,
    Vendor,
    VendorPaymentMethod,
)
from .deal import Deal, DealStatusEnum, DealTypeEnum  # noqa: F401
from .claim import Claim, ClaimTransfer, Redemption  # noqa: F401
from .loyalty import (  # noqa: F401
    LoyaltyCard,
    LoyaltyProgram,
    LoyaltyProgramType,
    LoyaltyReward,
    LoyaltyTransaction,
    LoyaltyTransactionType,
)
from .webhook_event import WebhookEvent, WebhookProviderEnum  # noqa: F401
