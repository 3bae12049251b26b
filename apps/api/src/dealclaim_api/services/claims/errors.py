"""Typed failures raised by the claim & redemption lifecycle."""

from __future__ import annotations

from enum import Enum


class ClaimError(RuntimeError):
    """Base exception for claim lifecycle failures."""

    status_code: int = 400
    code: str = "CLAIM_ERROR"

    def __init__(self, message: str, *, code: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code

    def as_detail(self) -> dict[str, str]:
        return {"error": self.message, "code": self.code}


class ClaimValidationError(ClaimError):
    """Malformed or missing input."""

    code = "VALIDATION_ERROR"


class ClaimNotFoundError(ClaimError):
    status_code = 404
    code = "CLAIM_NOT_FOUND"


class ClaimEligibilityError(ClaimError):
    """A deal or claim precondition does not hold."""

    code = "INELIGIBLE"


class DealNotFoundError(ClaimEligibilityError):
    status_code = 404
    code = "DEAL_NOT_FOUND"


class SelfClaimError(ClaimEligibilityError):
    status_code = 403
    code = "OWN_DEAL"


class DealNotActiveError(ClaimEligibilityError):
    code = "DEAL_NOT_ACTIVE"


class DealExpiredError(ClaimEligibilityError):
    code = "DEAL_EXPIRED"


class DealSoldOutError(ClaimEligibilityError):
    code = "SOLD_OUT"


class DuplicateClaimError(ClaimEligibilityError):
    code = "DUPLICATE_CLAIM"


class ClaimExpiredError(ClaimEligibilityError):
    code = "CLAIM_EXPIRED"


class DepositAlreadyConfirmedError(ClaimError):
    code = "ALREADY_CONFIRMED"


class ClaimStateError(ClaimError):
    """The requested transition does not apply to the claim's current state."""

    code = "INVALID_STATE"


class PaymentConfigurationError(ClaimError):
    """The vendor has no payment path able to collect the deposit."""

    status_code = 400
    code = "VENDOR_PAYMENT_UNAVAILABLE"


class PaymentSessionError(ClaimError):
    """The payment processor could not open a checkout session."""

    status_code = 502
    code = "PAYMENT_SESSION_FAILED"


class CredentialIssueError(ClaimError):
    """Unique credentials could not be allocated within the retry budget."""

    status_code = 503
    code = "CREDENTIAL_ISSUE_FAILED"


class RedemptionErrorCode(str, Enum):
    INVALID = "INVALID"
    WRONG_VENDOR = "WRONG_VENDOR"
    ALREADY_REDEEMED = "ALREADY_REDEEMED"
    EXPIRED = "EXPIRED"
    NO_DEPOSIT = "NO_DEPOSIT"


_REDEMPTION_STATUS = {
    RedemptionErrorCode.INVALID: 404,
    RedemptionErrorCode.WRONG_VENDOR: 403,
    RedemptionErrorCode.ALREADY_REDEEMED: 400,
    RedemptionErrorCode.EXPIRED: 400,
    RedemptionErrorCode.NO_DEPOSIT: 400,
}


class RedemptionError(ClaimError):
    """Code lookup or state check failed during redemption."""

    def __init__(self, error_code: RedemptionErrorCode, message: str, **context: object) -> None:
        super().__init__(
            message,
            code=error_code.value,
            status_code=_REDEMPTION_STATUS[error_code],
        )
        self.error_code = error_code
        self.context = context

    def as_detail(self) -> dict[str, str]:
        detail = super().as_detail()
        for key, value in self.context.items():
            detail[key] = value.isoformat() if hasattr(value, "isoformat") else value  # type: ignore[assignment]
        return detail
