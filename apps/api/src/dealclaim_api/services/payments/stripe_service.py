"""Stripe Connect integration for deposit collection."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Mapping

import stripe
from loguru import logger

from dealclaim_api.core.settings import get_settings


@dataclass(slots=True)
class StripeHostedSession:
    """Hosted checkout session opened on a vendor's connected account."""

    session_id: str
    url: str
    expires_at: datetime | None


class StripeConnectService:
    """Thin asynchronous wrapper around the Stripe SDK for connected accounts."""

    def __init__(
        self,
        secret_key: str | None = None,
        webhook_secret: str | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        settings = get_settings()
        self._secret_key = secret_key if secret_key is not None else settings.stripe_secret_key
        self.webhook_secret = (
            webhook_secret if webhook_secret is not None else settings.stripe_connect_webhook_secret
        )
        self._timeout = timeout_seconds or settings.stripe_request_timeout_seconds
        stripe.api_key = self._secret_key

    async def _run(self, func: Any, *args: Any, **kwargs: Any) -> Any:
        """Execute a blocking SDK call in a worker thread, bounded by the request timeout."""

        return await asyncio.wait_for(asyncio.to_thread(func, *args, **kwargs), timeout=self._timeout)

    @staticmethod
    def to_cents(amount: Decimal) -> int:
        quantized = Decimal(amount).quantize(Decimal("0.01"))
        return int((quantized * 100).to_integral_value())

    @staticmethod
    def from_cents(amount: int | None) -> Decimal | None:
        if amount is None:
            return None
        return (Decimal(amount) / Decimal(100)).quantize(Decimal("0.01"))

    async def create_deposit_checkout_session(
        self,
        *,
        connected_account_id: str,
        amount: Decimal,
        currency: str,
        deal_title: str,
        success_url: str,
        cancel_url: str,
        metadata: Mapping[str, str],
        customer_email: str | None = None,
    ) -> StripeHostedSession:
        """Open a hosted checkout on the vendor's connected account for a deal deposit.

        Raises:
            stripe.StripeError: If Stripe rejects the request
            asyncio.TimeoutError: If Stripe does not answer within the configured timeout
        """

        session_metadata = dict(metadata)
        payload: dict[str, Any] = {
            "mode": "payment",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": session_metadata,
            "client_reference_id": session_metadata.get("session_token"),
            "payment_intent_data": {"metadata": session_metadata},
            "line_items": [
                {
                    "price_data": {
                        "currency": currency.lower(),
                        "product_data": {"name": f"Deposit: {deal_title}"},
                        "unit_amount": self.to_cents(amount),
                    },
                    "quantity": 1,
                }
            ],
        }
        if customer_email:
            payload["customer_email"] = customer_email

        try:
            session = await self._run(
                stripe.checkout.Session.create,
                stripe_account=connected_account_id,
                **payload,
            )
        except stripe.StripeError as error:
            logger.error(
                "Failed to create Stripe deposit checkout session",
                connected_account=connected_account_id,
                claim_id=session_metadata.get("claim_id"),
                error=str(error),
            )
            raise
        except asyncio.TimeoutError:
            logger.error(
                "Stripe deposit checkout session timed out",
                connected_account=connected_account_id,
                claim_id=session_metadata.get("claim_id"),
                timeout_seconds=self._timeout,
            )
            raise

        expires_at = getattr(session, "expires_at", None)
        logger.info(
            "Created Stripe deposit checkout session",
            session_id=session.id,
            connected_account=connected_account_id,
            claim_id=session_metadata.get("claim_id"),
            amount=self.to_cents(amount),
        )
        return StripeHostedSession(
            session_id=session.id,
            url=session.url,
            expires_at=datetime.fromtimestamp(expires_at, tz=timezone.utc) if expires_at else None,
        )

    async def construct_webhook_event(self, payload: bytes, signature: str) -> dict[str, Any]:
        """Verify a Connect webhook signature and return the decoded event body.

        Raises:
            stripe.SignatureVerificationError: If signature verification fails
        """
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as error:
            logger.error("Failed to verify Stripe Connect webhook signature", error=str(error))
            raise

        body = json.loads(payload)
        logger.info(
            "Verified Stripe Connect webhook event",
            event_type=event.type,
            event_id=event.id,
            account=body.get("account"),
        )
        return body
