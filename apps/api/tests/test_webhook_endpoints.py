from __future__ import annotations

import hashlib
import hmac
import json
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
import stripe
from httpx import ASGITransport, AsyncClient

from dealclaim_api.api.v1.endpoints.webhooks import get_stripe_service
from dealclaim_api.models import Claim, Deal, PaymentTierEnum
from dealclaim_api.observability.claims import get_claim_observability_store


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


async def _seed_integrated(session_factory, seed):
    async with session_factory() as session:
        vendor = await seed.vendor(session, stripe_connect_account_id="acct_hook")
        customer = await seed.user(session)
        deal = await seed.deal(session, vendor, deposit_amount=Decimal("8.00"), max_claims=3)
        claim = await seed.pending_claim(
            session,
            deal,
            customer,
            payment_tier=PaymentTierEnum.INTEGRATED,
            payment_method_type=None,
            payment_reference=None,
            stripe_checkout_session_id="cs_hook",
        )
        await session.commit()
        return deal.id, claim.id, claim.session_token


def _checkout_event(event_id: str, claim_id, session_token: str) -> dict:
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "account": "acct_hook",
        "data": {
            "object": {
                "id": "cs_hook",
                "payment_status": "paid",
                "amount_total": 800,
                "client_reference_id": session_token,
                "metadata": {"type": "deal_deposit", "claim_id": str(claim_id), "session_token": session_token},
            }
        },
    }


@pytest.mark.asyncio
async def test_stripe_connect_checkout_confirms_deposit_once(app_with_db, seed) -> None:
    app, session_factory = app_with_db
    deal_id, claim_id, session_token = await _seed_integrated(session_factory, seed)
    event = _checkout_event("evt_checkout_1", claim_id, session_token)
    fake = SimpleNamespace(construct_webhook_event=AsyncMock(return_value=event))
    app.dependency_overrides[get_stripe_service] = lambda: fake

    async with _client(app) as client:
        first = await client.post(
            "/api/v1/webhooks/stripe-connect", content=json.dumps(event), headers={"stripe-signature": "t=1,v1=abc"}
        )
        replay = await client.post(
            "/api/v1/webhooks/stripe-connect", content=json.dumps(event), headers={"stripe-signature": "t=1,v1=abc"}
        )

    assert first.status_code == 200
    assert first.json() == {"success": True, "message": "Processed checkout.session.completed event"}
    assert replay.status_code == 200
    assert replay.json()["message"] == "Event evt_checkout_1 already processed"

    async with session_factory() as session:
        claim = await session.get(Claim, claim_id)
        deal = await session.get(Deal, deal_id)
    assert claim.deposit_confirmed is True
    assert claim.deposit_amount_paid == Decimal("8.00")
    assert claim.redemption_code is not None
    assert deal.claims_count == 1

    webhooks = get_claim_observability_store().snapshot().as_dict()["webhooks"]["totals"]
    assert webhooks["processed"]["checkout.session.completed"] == 2


@pytest.mark.asyncio
async def test_stripe_connect_rejects_bad_signature(app_with_db) -> None:
    app, _ = app_with_db
    fake = SimpleNamespace(
        construct_webhook_event=AsyncMock(side_effect=stripe.SignatureVerificationError("bad signature", "t=1,v1=bad"))
    )
    app.dependency_overrides[get_stripe_service] = lambda: fake

    async with _client(app) as client:
        response = await client.post(
            "/api/v1/webhooks/stripe-connect", content=b"{}", headers={"stripe-signature": "t=1,v1=bad"}
        )

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid webhook signature"
    webhooks = get_claim_observability_store().snapshot().as_dict()["webhooks"]["totals"]
    assert webhooks["failed"]["signature_error"] == 1


@pytest.mark.asyncio
async def test_stripe_connect_requires_signature_header(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        response = await client.post("/api/v1/webhooks/stripe-connect", content=b"{}")

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_deposit_webhook_verifies_vendor_signature(app_with_db, seed) -> None:
    app, session_factory = app_with_db
    async with session_factory() as session:
        vendor = await seed.vendor(session, deposit_webhook_secret="whsec_vendor")
        customer = await seed.user(session)
        deal = await seed.deal(session, vendor, deposit_amount=Decimal("3.50"))
        claim = await seed.pending_claim(session, deal, customer)
        await session.commit()
        vendor_id, claim_id, session_token = vendor.id, claim.id, claim.session_token

    body = json.dumps({"data": {"object": {"client_reference_id": session_token}}}).encode("utf-8")
    good = "sha256=" + hmac.new(b"whsec_vendor", body, hashlib.sha256).hexdigest()

    async with _client(app) as client:
        forged = await client.post(
            "/api/v1/webhooks/deposit-confirmed",
            content=body,
            headers={"X-Vendor-Id": str(vendor_id), "stripe-signature": "sha256=deadbeef"},
        )
        accepted = await client.post(
            "/api/v1/webhooks/deposit-confirmed",
            content=body,
            headers={"X-Vendor-Id": str(vendor_id), "stripe-signature": good},
        )
        replayed = await client.post(
            "/api/v1/webhooks/deposit-confirmed",
            content=body,
            headers={"X-Vendor-Id": str(vendor_id), "stripe-signature": good},
        )

    assert forged.status_code == 401
    assert forged.json()["detail"]["code"] == "INVALID_SIGNATURE"
    assert accepted.status_code == 200
    assert accepted.json()["claim_id"] == str(claim_id)
    assert replayed.status_code == 404

    async with session_factory() as session:
        claim = await session.get(Claim, claim_id)
    assert claim.deposit_confirmed is True
    assert claim.deposit_amount_paid == Decimal("3.50")


@pytest.mark.asyncio
async def test_deposit_webhook_rejects_malformed_body(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        not_json = await client.post("/api/v1/webhooks/deposit-confirmed", content=b"not-json")
        no_token = await client.post("/api/v1/webhooks/deposit-confirmed", json={"data": {}})

    assert not_json.status_code == 400
    assert not_json.json()["detail"]["code"] == "VALIDATION_ERROR"
    assert no_token.status_code == 400
    assert no_token.json()["detail"]["error"] == "Missing session token"
