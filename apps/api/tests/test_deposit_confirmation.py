from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID

import pytest
from sqlalchemy import func, select

from dealclaim_api.models import Claim, Deal, PaymentProcessorEnum, PaymentTierEnum, Vendor, WebhookEvent
from dealclaim_api.services.claims.confirmation import (
    DepositConfirmationService,
    extract_session_token,
    verify_deposit_signature,
)
from dealclaim_api.services.claims.errors import (
    ClaimError,
    ClaimExpiredError,
    ClaimNotFoundError,
    ClaimStateError,
    ClaimValidationError,
    DealSoldOutError,
    DepositAlreadyConfirmedError,
)


async def _seed_pending(session_factory, seed, *, claim_overrides=None, **deal_overrides):
    deal_values = {"deposit_amount": Decimal("15.00")}
    deal_values.update(deal_overrides)
    async with session_factory() as session:
        vendor = await seed.vendor(session, deposit_webhook_secret="whsec_local")
        customer = await seed.user(session)
        deal = await seed.deal(session, vendor, **deal_values)
        claim = await seed.pending_claim(session, deal, customer, **(claim_overrides or {}))
        await session.commit()
        return vendor.id, customer.id, deal.id, claim.id, claim.session_token


async def _state(session_factory, claim_id, deal_id) -> tuple[Claim, int]:
    async with session_factory() as session:
        claim = await session.get(Claim, claim_id)
        deal = await session.get(Deal, deal_id)
        return claim, deal.claims_count


def _checkout_event(claim_id: UUID, token: str, *, event_id: str = "evt_1", session_id: str = "cs_1", **session_fields):
    session = {
        "id": session_id,
        "object": "checkout.session",
        "payment_status": "paid",
        "amount_total": 1500,
        "metadata": {"type": "deal_deposit", "claim_id": str(claim_id), "session_token": token},
    }
    session.update(session_fields)
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "account": "acct_vendor",
        "data": {"object": session},
    }


@pytest.mark.asyncio
async def test_manual_confirm_sent_issues_credentials_once(session_factory, seed) -> None:
    _, customer_id, deal_id, claim_id, token = await _seed_pending(session_factory, seed)

    async with session_factory() as session:
        first = await DepositConfirmationService(session).confirm_sent(customer_id, token)
    async with session_factory() as session:
        second = await DepositConfirmationService(session).confirm_sent(customer_id, token)

    assert first.already_confirmed is False
    assert first.credentials is not None
    assert second.already_confirmed is True
    assert second.credentials.redemption_code == first.credentials.redemption_code

    claim, count = await _state(session_factory, claim_id, deal_id)
    assert claim.deposit_confirmed is True
    assert claim.deposit_amount_paid == Decimal("15.00")
    assert count == 1


@pytest.mark.asyncio
async def test_confirm_sent_rejects_other_tiers_and_expired_claims(session_factory, seed) -> None:
    _, customer_id, _, _, link_token = await _seed_pending(
        session_factory,
        seed,
        claim_overrides={"payment_tier": PaymentTierEnum.LINK, "payment_method_type": PaymentProcessorEnum.STRIPE},
    )
    past = datetime.now(timezone.utc) - timedelta(hours=1)
    _, late_customer_id, _, _, late_token = await _seed_pending(
        session_factory, seed, claim_overrides={"expires_at": past}
    )

    async with session_factory() as session:
        with pytest.raises(ClaimStateError):
            await DepositConfirmationService(session).confirm_sent(customer_id, link_token)
    async with session_factory() as session:
        with pytest.raises(ClaimExpiredError):
            await DepositConfirmationService(session).confirm_sent(late_customer_id, late_token)
    async with session_factory() as session:
        with pytest.raises(ClaimNotFoundError):
            await DepositConfirmationService(session).confirm_sent(customer_id, late_token)


@pytest.mark.asyncio
async def test_vendor_confirmation_is_scoped_and_not_repeatable(session_factory, seed) -> None:
    vendor_id, _, deal_id, claim_id, _ = await _seed_pending(session_factory, seed)
    other_vendor_id, _, _, _, _ = await _seed_pending(session_factory, seed)

    async with session_factory() as session:
        with pytest.raises(ClaimNotFoundError):
            await DepositConfirmationService(session).confirm_by_vendor(other_vendor_id, claim_id)
    async with session_factory() as session:
        outcome = await DepositConfirmationService(session).confirm_by_vendor(vendor_id, claim_id)
    async with session_factory() as session:
        with pytest.raises(DepositAlreadyConfirmedError):
            await DepositConfirmationService(session).confirm_by_vendor(vendor_id, claim_id)

    assert outcome.credentials.qr_code_url.endswith(outcome.credentials.qr_code)
    _, count = await _state(session_factory, claim_id, deal_id)
    assert count == 1


@pytest.mark.asyncio
async def test_pending_for_vendor_lists_only_open_manual_claims(session_factory, seed) -> None:
    async with session_factory() as session:
        vendor = await seed.vendor(session)
        customer = await seed.user(session)
        deal = await seed.deal(session, vendor, deposit_amount=Decimal("5.00"))
        open_claim = await seed.pending_claim(session, deal, customer)
        await seed.pending_claim(session, deal, customer, cancelled_at=datetime.now(timezone.utc))
        await seed.pending_claim(
            session, deal, customer, expires_at=datetime.now(timezone.utc) - timedelta(minutes=5)
        )
        await seed.pending_claim(session, deal, customer, payment_tier=PaymentTierEnum.LINK)
        await seed.confirmed_claim(session, deal, customer, payment_tier=PaymentTierEnum.MANUAL)
        await session.commit()
        vendor_id, open_id = vendor.id, open_claim.id

    async with session_factory() as session:
        pending = await DepositConfirmationService(session).pending_for_vendor(vendor_id)
        assert [claim.id for claim in pending] == [open_id]
        assert pending[0].deal.title
        assert pending[0].customer.email


@pytest.mark.asyncio
async def test_customer_cancel_releases_counted_slot_once(session_factory, seed) -> None:
    async with session_factory() as session:
        vendor = await seed.vendor(session)
        customer = await seed.user(session)
        deal = await seed.deal(session, vendor, max_claims=5)
        claim = await seed.confirmed_claim(session, deal, customer)
        await session.commit()
        customer_id, claim_id, deal_id = customer.id, claim.id, deal.id

    async with session_factory() as session:
        await DepositConfirmationService(session).cancel_by_customer(customer_id, claim_id)
    async with session_factory() as session:
        with pytest.raises(ClaimStateError):
            await DepositConfirmationService(session).cancel_by_customer(customer_id, claim_id)

    claim, count = await _state(session_factory, claim_id, deal_id)
    assert claim.cancelled_at is not None
    assert claim.redeemed is False
    assert count == 0


@pytest.mark.asyncio
async def test_customer_cannot_cancel_redeemed_claim(session_factory, seed) -> None:
    async with session_factory() as session:
        vendor = await seed.vendor(session)
        customer = await seed.user(session)
        deal = await seed.deal(session, vendor)
        claim = await seed.confirmed_claim(
            session, deal, customer, redeemed=True, redeemed_at=datetime.now(timezone.utc)
        )
        await session.commit()
        customer_id, claim_id = customer.id, claim.id

    async with session_factory() as session:
        with pytest.raises(ClaimStateError):
            await DepositConfirmationService(session).cancel_by_customer(customer_id, claim_id)


@pytest.mark.asyncio
async def test_connect_checkout_event_confirms_once(session_factory, seed) -> None:
    _, _, deal_id, claim_id, token = await _seed_pending(
        session_factory,
        seed,
        claim_overrides={
            "payment_tier": PaymentTierEnum.INTEGRATED,
            "payment_method_type": PaymentProcessorEnum.STRIPE,
            "payment_reference": None,
            "stripe_checkout_session_id": "cs_1",
        },
    )
    event = _checkout_event(claim_id, token)

    async with session_factory() as session:
        assert await DepositConfirmationService(session).handle_connect_event(event) is True
    async with session_factory() as session:
        assert await DepositConfirmationService(session).handle_connect_event(event) is False
    async with session_factory() as session:
        replay = _checkout_event(claim_id, token, event_id="evt_2")
        assert await DepositConfirmationService(session).handle_connect_event(replay) is True

    claim, count = await _state(session_factory, claim_id, deal_id)
    assert claim.deposit_confirmed is True
    assert claim.deposit_amount_paid == Decimal("15.00")
    assert claim.redemption_code is not None
    assert count == 1

    async with session_factory() as session:
        recorded = await session.scalar(select(func.count()).select_from(WebhookEvent))
    assert recorded == 2


@pytest.mark.asyncio
async def test_connect_event_with_mismatched_session_is_ignored(session_factory, seed) -> None:
    _, _, deal_id, claim_id, token = await _seed_pending(
        session_factory,
        seed,
        claim_overrides={"payment_tier": PaymentTierEnum.INTEGRATED, "stripe_checkout_session_id": "cs_expected"},
    )

    async with session_factory() as session:
        service = DepositConfirmationService(session)
        await service.handle_connect_event(_checkout_event(claim_id, token, event_id="evt_a", session_id="cs_other"))
        await service.handle_connect_event(_checkout_event(claim_id, "forged-token", event_id="evt_b", session_id="cs_expected"))
        await service.handle_connect_event(
            _checkout_event(claim_id, token, event_id="evt_c", session_id="cs_expected", payment_status="unpaid")
        )

    claim, count = await _state(session_factory, claim_id, deal_id)
    assert claim.deposit_confirmed is False
    assert count == 0


@pytest.mark.asyncio
async def test_paid_deposit_on_sold_out_deal_stays_pending(session_factory, seed) -> None:
    _, _, deal_id, claim_id, token = await _seed_pending(
        session_factory,
        seed,
        claim_overrides={"payment_tier": PaymentTierEnum.INTEGRATED},
        max_claims=1,
        claims_count=1,
    )

    async with session_factory() as session:
        applied = await DepositConfirmationService(session).handle_connect_event(_checkout_event(claim_id, token))

    assert applied is True
    claim, count = await _state(session_factory, claim_id, deal_id)
    assert claim.deposit_confirmed is False
    assert claim.qr_code is None
    assert count == 1


@pytest.mark.asyncio
async def test_account_updated_refreshes_connect_flags(session_factory, seed) -> None:
    async with session_factory() as session:
        vendor = await seed.vendor(session, stripe_connect_account_id="acct_onboarding")
        await session.commit()
        vendor_id = vendor.id

    event = {
        "id": "evt_account",
        "type": "account.updated",
        "data": {"object": {"id": "acct_onboarding", "details_submitted": True, "charges_enabled": True}},
    }
    async with session_factory() as session:
        await DepositConfirmationService(session).handle_connect_event(event)

    async with session_factory() as session:
        vendor = await session.get(Vendor, vendor_id)
        assert vendor.stripe_connect_onboarding_complete is True
        assert vendor.stripe_connect_charges_enabled is True
        assert vendor.integrated_payments_enabled


@pytest.mark.asyncio
async def test_deposit_webhook_verifies_vendor_signature(session_factory, seed) -> None:
    vendor_id, _, deal_id, claim_id, token = await _seed_pending(
        session_factory, seed, claim_overrides={"payment_tier": PaymentTierEnum.LINK}
    )
    payload = {"type": "checkout.session.completed", "data": {"object": {"client_reference_id": token}}}
    body = json.dumps(payload).encode("utf-8")
    good = "sha256=" + hmac.new(b"whsec_local", body, hashlib.sha256).hexdigest()

    async with session_factory() as session:
        with pytest.raises(ClaimValidationError) as excinfo:
            await DepositConfirmationService(session).handle_deposit_webhook(
                payload, raw_body=body, vendor_id=vendor_id, signature="sha256=deadbeef"
            )
    assert excinfo.value.status_code == 401

    async with session_factory() as session:
        outcome = await DepositConfirmationService(session).handle_deposit_webhook(
            payload, raw_body=body, vendor_id=vendor_id, signature=good
        )
    assert outcome.claim_id == claim_id

    async with session_factory() as session:
        with pytest.raises(ClaimNotFoundError):
            await DepositConfirmationService(session).handle_deposit_webhook(
                payload, raw_body=body, vendor_id=vendor_id, signature=good
            )

    _, count = await _state(session_factory, claim_id, deal_id)
    assert count == 1


@pytest.mark.asyncio
async def test_deposit_webhook_rejects_expired_claim(session_factory, seed) -> None:
    past = datetime.now(timezone.utc) - timedelta(minutes=1)
    _, _, _, _, token = await _seed_pending(
        session_factory, seed, claim_overrides={"payment_tier": PaymentTierEnum.LINK, "expires_at": past}
    )

    async with session_factory() as session:
        with pytest.raises(ClaimExpiredError) as excinfo:
            await DepositConfirmationService(session).handle_deposit_webhook({"session_token": token}, raw_body=b"{}")
    assert excinfo.value.status_code == 400


def test_session_token_extraction_precedence() -> None:
    assert extract_session_token({"data": {"object": {"client_reference_id": "a", "metadata": {"session_token": "b"}}}}) == "a"
    assert extract_session_token({"data": {"object": {"metadata": {"session_token": "b"}}}}) == "b"
    assert extract_session_token({"session_token": "c"}) == "c"
    assert extract_session_token({"data": {"object": {}}}) is None


def test_signature_check_requires_prefix() -> None:
    body = b'{"session_token": "abc"}'
    digest = hmac.new(b"secret", body, hashlib.sha256).hexdigest()

    assert verify_deposit_signature("secret", body, f"sha256={digest}")
    assert not verify_deposit_signature("secret", body, digest)
    assert not verify_deposit_signature("secret", body, None)


@pytest.mark.asyncio
async def test_concurrent_confirmations_never_exceed_capacity(file_session_factory, seed) -> None:
    async with file_session_factory() as session:
        vendor = await seed.vendor(session)
        deal = await seed.deal(session, vendor, deposit_amount=Decimal("5.00"), max_claims=2)
        claim_ids = []
        for _ in range(5):
            customer = await seed.user(session)
            claim = await seed.pending_claim(session, deal, customer)
            claim_ids.append(claim.id)
        await session.commit()
        vendor_id, deal_id = vendor.id, deal.id

    async def confirm(claim_id):
        async with file_session_factory() as session:
            try:
                return await DepositConfirmationService(session).confirm_by_vendor(vendor_id, claim_id)
            except ClaimError as error:
                return error

    outcomes = await asyncio.gather(*(confirm(claim_id) for claim_id in claim_ids))

    confirmed = [outcome for outcome in outcomes if not isinstance(outcome, ClaimError)]
    rejected = [outcome for outcome in outcomes if isinstance(outcome, ClaimError)]
    assert len(confirmed) == 2
    assert all(isinstance(error, DealSoldOutError) for error in rejected)

    async with file_session_factory() as session:
        deal = await session.get(Deal, deal_id)
        issued = await session.scalar(
            select(func.count()).select_from(Claim).where(Claim.deposit_confirmed.is_(True))
        )
    assert deal.claims_count == 2
    assert issued == 2
