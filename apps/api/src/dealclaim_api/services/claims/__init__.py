"""Claim lifecycle services: intake, confirmation, redemption and overrides."""

from .admin import AdminActionResult, AdminClaimCommand, AdminOverrideController  # noqa: F401
from .confirmation import ConfirmationOutcome, DepositConfirmationService  # noqa: F401
from .credentials import CredentialIssuer, IssuedCredentials, commit_issuance  # noqa: F401
from .errors import (  # noqa: F401
    ClaimError,
    RedemptionError,
    RedemptionErrorCode,
)
from .intake import ClaimIntakeResult, ClaimIntakeService, ClaimListStatus  # noqa: F401
from .payment_tiers import PaymentResolution, PaymentTierResolver, resolve_payment_tier  # noqa: F401
from .redemption import CodeStatus, RedemptionResult, RedemptionVerifier  # noqa: F401
from .transfer import ClaimTransferService, TransferOutcome  # noqa: F401
