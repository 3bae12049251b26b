"""Observability endpoints for the claim lifecycle."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from dealclaim_api.api.dependencies.security import require_admin_api_key
from dealclaim_api.observability.claims import get_claim_observability_store


router = APIRouter(prefix="/observability", tags=["Observability"])


@router.get(
    "/claims",
    dependencies=[Depends(require_admin_api_key)],
    summary="Claim lifecycle observability snapshot",
)
async def get_claims_snapshot() -> dict[str, object]:
    return get_claim_observability_store().snapshot().as_dict()


def _format_metric(name: str, description: str, value: int | float, labels: dict[str, str] | None = None) -> list[str]:
    label_fragment = ""
    if labels:
        formatted = ",".join(f'{key}="{val}"' for key, val in sorted(labels.items()))
        label_fragment = f"{{{formatted}}}"
    return [
        f"# HELP {name} {description}",
        f"# TYPE {name} counter",
        f"{name}{label_fragment} {value}",
    ]


@router.get(
    "/prometheus",
    dependencies=[Depends(require_admin_api_key)],
    summary="Prometheus-formatted claim metrics",
    response_class=PlainTextResponse,
)
async def get_prometheus_metrics() -> PlainTextResponse:
    snapshot = get_claim_observability_store().snapshot()
    lines: list[str] = []

    for bucket, counts in snapshot.intake.items():
        for tier, value in counts.items():
            lines.extend(
                _format_metric(
                    "dealclaim_claims_total",
                    "Claim intake outcomes",
                    value,
                    labels={"bucket": bucket, "key": tier},
                )
            )
    for bucket, counts in snapshot.confirmations.items():
        for source, value in counts.items():
            lines.extend(
                _format_metric(
                    "dealclaim_deposit_confirmations_total",
                    "Deposit confirmations by source",
                    value,
                    labels={"bucket": bucket, "source": source},
                )
            )
    for bucket, counts in snapshot.webhooks.items():
        for event_type, value in counts.items():
            lines.extend(
                _format_metric(
                    "dealclaim_webhook_events_total",
                    "Payment webhook events grouped by outcome",
                    value,
                    labels={"bucket": bucket, "event_type": event_type},
                )
            )
    for code, value in snapshot.redemptions.items():
        lines.extend(
            _format_metric("dealclaim_redemptions_total", "Redemption attempts by outcome", value, labels={"code": code})
        )
    for outcome, value in snapshot.loyalty.items():
        lines.extend(
            _format_metric("dealclaim_loyalty_awards_total", "Loyalty awards after redemption", value, labels={"outcome": outcome})
        )
    for action, value in snapshot.admin.items():
        lines.extend(
            _format_metric("dealclaim_admin_actions_total", "Admin claim overrides", value, labels={"action": action})
        )
    for outcome, value in snapshot.transfers.items():
        lines.extend(
            _format_metric("dealclaim_claim_transfers_total", "Claim transfers by outcome", value, labels={"outcome": outcome})
        )
    for outcome, value in snapshot.collections.items():
        lines.extend(
            _format_metric(
                "dealclaim_balance_collections_total",
                "Remaining balance collections by outcome",
                value,
                labels={"outcome": outcome},
            )
        )

    return PlainTextResponse("\n".join(lines) + "\n")
