from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient

from dealclaim_api.core.settings import settings
from dealclaim_api.models import Claim, Deal, UserRoleEnum
from dealclaim_api.observability.claims import get_claim_observability_store


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


def _as(user_id) -> dict[str, str]:
    return {"X-Session-User": str(user_id)}


async def _seed(session_factory, seed):
    async with session_factory() as session:
        admin = await seed.user(session, role=UserRoleEnum.ADMIN)
        vendor = await seed.vendor(session)
        customer = await seed.user(session)
        deal = await seed.deal(session, vendor, deposit_amount=Decimal("5.00"), max_claims=5)
        claim = await seed.confirmed_claim(session, deal, customer)
        await session.commit()
        return admin.id, customer.id, deal.id, claim.id


@pytest.mark.asyncio
async def test_admin_routes_require_admin_role(app_with_db, seed) -> None:
    app, session_factory = app_with_db
    _, customer_id, _, claim_id = await _seed(session_factory, seed)

    async with _client(app) as client:
        response = await client.put(
            f"/api/v1/admin/claims/{claim_id}", json={"action": "cancel"}, headers=_as(customer_id)
        )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_admin_routes_require_api_key_when_configured(app_with_db, seed) -> None:
    app, session_factory = app_with_db
    admin_id, _, _, claim_id = await _seed(session_factory, seed)

    previous_key = settings.admin_api_key
    settings.admin_api_key = "test-admin-key"
    try:
        async with _client(app) as client:
            rejected = await client.put(
                f"/api/v1/admin/claims/{claim_id}", json={"action": "cancel"}, headers=_as(admin_id)
            )
            accepted = await client.put(
                f"/api/v1/admin/claims/{claim_id}",
                json={"action": "cancel"},
                headers={**_as(admin_id), "X-API-Key": "test-admin-key"},
            )
    finally:
        settings.admin_api_key = previous_key

    assert rejected.status_code == 401
    assert accepted.status_code == 200


@pytest.mark.asyncio
async def test_admin_cancel_releases_slot(app_with_db, seed) -> None:
    app, session_factory = app_with_db
    admin_id, _, deal_id, claim_id = await _seed(session_factory, seed)

    async with _client(app) as client:
        response = await client.put(
            f"/api/v1/admin/claims/{claim_id}", json={"action": "cancel"}, headers=_as(admin_id)
        )
        again = await client.put(
            f"/api/v1/admin/claims/{claim_id}", json={"action": "cancel"}, headers=_as(admin_id)
        )

    assert response.status_code == 200
    body = response.json()
    assert body["action"] == "cancel"
    assert body["claim"]["cancelled_at"] is not None
    assert body["claim"]["redeemed"] is False
    assert again.status_code == 400
    assert again.json()["detail"]["code"] == "INVALID_STATE"

    async with session_factory() as session:
        deal = await session.get(Deal, deal_id)
    assert deal.claims_count == 0
    assert get_claim_observability_store().snapshot().as_dict()["admin"]["totals"] == {"cancel": 1}


@pytest.mark.asyncio
async def test_admin_extend_and_invalid_payloads(app_with_db, seed) -> None:
    app, session_factory = app_with_db
    admin_id, _, _, claim_id = await _seed(session_factory, seed)
    new_expiry = (datetime.now(timezone.utc) + timedelta(days=21)).replace(microsecond=0)

    async with _client(app) as client:
        extended = await client.put(
            f"/api/v1/admin/claims/{claim_id}",
            json={"action": "extend", "expires_at": new_expiry.isoformat()},
            headers=_as(admin_id),
        )
        missing = await client.put(
            f"/api/v1/admin/claims/{claim_id}", json={"action": "extend"}, headers=_as(admin_id)
        )
        unknown = await client.put(
            f"/api/v1/admin/claims/{claim_id}", json={"action": "refund"}, headers=_as(admin_id)
        )

    assert extended.status_code == 200
    assert datetime.fromisoformat(extended.json()["claim"]["expires_at"]) == new_expiry
    assert missing.status_code == 422
    assert unknown.status_code == 422


@pytest.mark.asyncio
async def test_admin_delete_claim(app_with_db, seed) -> None:
    app, session_factory = app_with_db
    admin_id, _, deal_id, claim_id = await _seed(session_factory, seed)

    async with _client(app) as client:
        deleted = await client.delete(f"/api/v1/admin/claims/{claim_id}", headers=_as(admin_id))
        missing = await client.delete(f"/api/v1/admin/claims/{claim_id}", headers=_as(admin_id))

    assert deleted.status_code == 200
    assert deleted.json()["message"] == "Claim deleted; slot released"
    assert missing.status_code == 404

    async with session_factory() as session:
        assert await session.get(Claim, claim_id) is None
        deal = await session.get(Deal, deal_id)
    assert deal.claims_count == 0
