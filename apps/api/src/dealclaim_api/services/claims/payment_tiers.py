"""Decide how (and whether) a deal's deposit is collected."""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dealclaim_api.models.deal import Deal
from dealclaim_api.models.vendor import (
    MANUAL_PROCESSORS,
    PaymentProcessorEnum,
    PaymentTierEnum,
    Vendor,
    VendorPaymentMethod,
)
from .errors import PaymentConfigurationError


@dataclass(slots=True)
class PaymentResolution:
    """Selected collection path plus the vendor configuration it relies on."""

    tier: PaymentTierEnum
    processor: PaymentProcessorEnum | None = None
    payment_link: str | None = None
    display_name: str | None = None
    connected_account_id: str | None = None


def is_secure_link(url: str | None) -> bool:
    if not url:
        return False
    parts = urlsplit(url.strip())
    return parts.scheme == "https" and bool(parts.netloc)


def with_client_reference(url: str, session_token: str) -> str:
    """Append ``client_reference_id`` so the processor echoes the claim back to us."""

    parts = urlsplit(url)
    query = [(key, value) for key, value in parse_qsl(parts.query, keep_blank_values=True) if key != "client_reference_id"]
    query.append(("client_reference_id", session_token))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


def resolve_payment_tier(
    deal: Deal,
    vendor: Vendor,
    primary_method: VendorPaymentMethod | None,
) -> PaymentResolution:
    """Pick exactly one tier in fixed precedence order.

    1. no deposit required
    2. integrated checkout on the vendor's connected account
    3. manual peer-to-peer payment reconciled by reference
    4. external payment link
    Raises :class:`PaymentConfigurationError` when none apply.
    """

    if not deal.requires_deposit:
        return PaymentResolution(tier=PaymentTierEnum.NONE)

    if (
        vendor.integrated_payments_enabled
        and primary_method is not None
        and primary_method.payment_tier == PaymentTierEnum.INTEGRATED
    ):
        return PaymentResolution(
            tier=PaymentTierEnum.INTEGRATED,
            processor=primary_method.processor_type,
            connected_account_id=vendor.stripe_connect_account_id,
        )

    if primary_method is not None and primary_method.processor_type in MANUAL_PROCESSORS:
        return PaymentResolution(
            tier=PaymentTierEnum.MANUAL,
            processor=primary_method.processor_type,
            payment_link=primary_method.payment_link,
            display_name=primary_method.display_name,
        )

    if primary_method is not None and is_secure_link(primary_method.payment_link):
        return PaymentResolution(
            tier=PaymentTierEnum.LINK,
            processor=primary_method.processor_type,
            payment_link=primary_method.payment_link.strip(),
            display_name=primary_method.display_name,
        )

    if is_secure_link(vendor.stripe_payment_link):
        return PaymentResolution(
            tier=PaymentTierEnum.LINK,
            processor=PaymentProcessorEnum.STRIPE,
            payment_link=vendor.stripe_payment_link.strip(),
        )

    logger.warning(
        "Vendor has no usable deposit payment path",
        vendor_id=str(vendor.id),
        deal_id=str(deal.id),
        primary_method=str(primary_method.id) if primary_method is not None else None,
    )
    raise PaymentConfigurationError("Vendor has not configured a payment method for deposits")


class PaymentTierResolver:
    """Loads the vendor's payment configuration and resolves a tier for a deal."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def primary_method(self, vendor_id) -> VendorPaymentMethod | None:
        stmt = (
            select(VendorPaymentMethod)
            .where(
                VendorPaymentMethod.vendor_id == vendor_id,
                VendorPaymentMethod.is_primary.is_(True),
                VendorPaymentMethod.is_active.is_(True),
            )
            .order_by(VendorPaymentMethod.updated_at.desc())
            .limit(1)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def resolve(self, deal: Deal) -> PaymentResolution:
        vendor = await self._db.get(Vendor, deal.vendor_id)
        if vendor is None:
            raise PaymentConfigurationError("Vendor profile is missing")
        if not deal.requires_deposit:
            return PaymentResolution(tier=PaymentTierEnum.NONE)
        method = await self.primary_method(vendor.id)
        return resolve_payment_tier(deal, vendor, method)


__all__ = [
    "PaymentResolution",
    "PaymentTierResolver",
    "is_secure_link",
    "resolve_payment_tier",
    "with_client_reference",
]
