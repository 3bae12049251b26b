from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from dealclaim_api.app import create_app
from dealclaim_api.core.settings import settings
from dealclaim_api.observability.claims import get_claim_observability_store


def test_store_tracks_outcomes() -> None:
    store = get_claim_observability_store()

    store.record_claim_created("manual", "claim-1")
    store.record_claim_created("manual", "claim-2")
    store.record_claim_rejected("SOLD_OUT")
    store.record_redemption("REDEEMED", "claim-1")
    store.record_redemption("WRONG_VENDOR")
    store.record_confirmation("vendor", True)
    store.record_webhook("checkout.session.completed", False)
    store.record_transfer("TRANSFERRED")
    store.record_collection("ALREADY_COLLECTED")

    snapshot = store.snapshot().as_dict()
    assert snapshot["intake"]["totals"] == {"created": {"manual": 2}, "rejected": {"SOLD_OUT": 1}}
    assert snapshot["intake"]["events"]["last_success_ref"] == "claim-2"
    assert snapshot["intake"]["events"]["last_failure_code"] == "SOLD_OUT"
    assert snapshot["redemptions"]["totals"] == {"REDEEMED": 1, "WRONG_VENDOR": 1}
    assert snapshot["redemptions"]["events"]["last_failure_code"] == "WRONG_VENDOR"
    assert snapshot["confirmations"]["totals"]["confirmed"] == {"vendor": 1}
    assert snapshot["webhooks"]["totals"]["failed"] == {"checkout.session.completed": 1}
    assert snapshot["transfers"]["totals"] == {"TRANSFERRED": 1}
    assert snapshot["collections"]["totals"] == {"ALREADY_COLLECTED": 1}

    store.reset()
    assert store.snapshot().as_dict()["redemptions"]["totals"] == {}


@pytest.mark.asyncio
async def test_claims_snapshot_requires_key() -> None:
    app = create_app()

    previous_key = settings.admin_api_key
    settings.admin_api_key = "snapshot-key"

    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            rejected = await client.get("/api/v1/observability/claims")
            accepted = await client.get("/api/v1/observability/claims", headers={"X-API-Key": "snapshot-key"})
        assert rejected.status_code == 401
        assert accepted.status_code == 200
        assert set(accepted.json()) == {
            "intake",
            "confirmations",
            "webhooks",
            "redemptions",
            "loyalty",
            "admin",
            "transfers",
            "collections",
        }
    finally:
        settings.admin_api_key = previous_key


@pytest.mark.asyncio
async def test_prometheus_metrics_render_counters() -> None:
    app = create_app()
    store = get_claim_observability_store()
    store.record_claim_created("integrated", "claim-9")
    store.record_redemption("ALREADY_REDEEMED")
    store.record_admin_action("extend")
    store.record_transfer("DUPLICATE_CLAIM")

    previous_key = settings.admin_api_key
    settings.admin_api_key = "prom-key"

    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            unauthorised = await client.get("/api/v1/observability/prometheus")
            response = await client.get("/api/v1/observability/prometheus", headers={"X-API-Key": "prom-key"})
    finally:
        settings.admin_api_key = previous_key

    assert unauthorised.status_code == 401
    assert response.status_code == 200
    body = response.text
    assert 'dealclaim_claims_total{bucket="created",key="integrated"} 1' in body
    assert 'dealclaim_redemptions_total{code="ALREADY_REDEEMED"} 1' in body
    assert 'dealclaim_admin_actions_total{action="extend"} 1' in body
    assert 'dealclaim_claim_transfers_total{outcome="DUPLICATE_CLAIM"} 1' in body
    assert "# TYPE dealclaim_redemptions_total counter" in body
