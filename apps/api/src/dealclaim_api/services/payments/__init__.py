"""Payment processor integrations."""

from .stripe_service import StripeConnectService, StripeHostedSession

__all__ = ["StripeConnectService", "StripeHostedSession"]
