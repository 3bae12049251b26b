"""In-memory counters for claim intake, deposit confirmation and redemption."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Dict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class OutcomeLog:
    last_success_at: datetime | None = None
    last_success_ref: str | None = None
    last_failure_at: datetime | None = None
    last_failure_code: str | None = None


@dataclass
class ClaimObservabilitySnapshot:
    intake: Dict[str, Dict[str, int]]
    confirmations: Dict[str, Dict[str, int]]
    redemptions: Dict[str, int]
    webhooks: Dict[str, Dict[str, int]]
    loyalty: Dict[str, int]
    admin: Dict[str, int]
    transfers: Dict[str, int]
    collections: Dict[str, int]
    intake_events: OutcomeLog
    redemption_events: OutcomeLog

    def as_dict(self) -> Dict[str, object]:
        def _log(log: OutcomeLog) -> Dict[str, object]:
            return {
                "last_success_at": _iso(log.last_success_at),
                "last_success_ref": log.last_success_ref,
                "last_failure_at": _iso(log.last_failure_at),
                "last_failure_code": log.last_failure_code,
            }

        return {
            "intake": {"totals": self.intake, "events": _log(self.intake_events)},
            "confirmations": {"totals": self.confirmations},
            "webhooks": {"totals": self.webhooks},
            "redemptions": {"totals": self.redemptions, "events": _log(self.redemption_events)},
            "loyalty": {"totals": self.loyalty},
            "admin": {"totals": self.admin},
            "transfers": {"totals": self.transfers},
            "collections": {"totals": self.collections},
        }


@dataclass
class ClaimObservabilityStore:
    _lock: Lock = field(default_factory=Lock)
    _intake: Dict[str, Counter] = field(default_factory=lambda: {"created": Counter(), "rejected": Counter()})
    _confirmations: Dict[str, Counter] = field(
        default_factory=lambda: {"confirmed": Counter(), "ignored": Counter()}
    )
    _webhooks: Dict[str, Counter] = field(default_factory=lambda: {"processed": Counter(), "failed": Counter()})
    _redemptions: Counter = field(default_factory=Counter)
    _loyalty: Counter = field(default_factory=Counter)
    _admin: Counter = field(default_factory=Counter)
    _transfers: Counter = field(default_factory=Counter)
    _collections: Counter = field(default_factory=Counter)
    _intake_events: OutcomeLog = field(default_factory=OutcomeLog)
    _redemption_events: OutcomeLog = field(default_factory=OutcomeLog)

    def record_claim_created(self, tier: str, claim_id: str | None) -> None:
        with self._lock:
            self._intake["created"][tier] += 1
            self._intake_events.last_success_at = _utcnow()
            self._intake_events.last_success_ref = claim_id

    def record_claim_rejected(self, code: str) -> None:
        with self._lock:
            self._intake["rejected"][code] += 1
            self._intake_events.last_failure_at = _utcnow()
            self._intake_events.last_failure_code = code

    def record_confirmation(self, source: str, confirmed: bool) -> None:
        with self._lock:
            bucket = "confirmed" if confirmed else "ignored"
            self._confirmations[bucket][source] += 1

    def record_webhook(self, event_type: str, success: bool) -> None:
        with self._lock:
            bucket = "processed" if success else "failed"
            self._webhooks[bucket][event_type] += 1

    def record_redemption(self, code: str, claim_id: str | None = None) -> None:
        """``code`` is ``REDEEMED`` on success, otherwise the rejection code."""

        with self._lock:
            self._redemptions[code] += 1
            now = _utcnow()
            if code == "REDEEMED":
                self._redemption_events.last_success_at = now
                self._redemption_events.last_success_ref = claim_id
            else:
                self._redemption_events.last_failure_at = now
                self._redemption_events.last_failure_code = code

    def record_loyalty(self, outcome: str) -> None:
        with self._lock:
            self._loyalty[outcome] += 1

    def record_admin_action(self, action: str) -> None:
        with self._lock:
            self._admin[action] += 1

    def record_transfer(self, outcome: str) -> None:
        """``outcome`` is ``TRANSFERRED`` or the rejection code."""

        with self._lock:
            self._transfers[outcome] += 1

    def record_collection(self, outcome: str) -> None:
        with self._lock:
            self._collections[outcome] += 1

    def snapshot(self) -> ClaimObservabilitySnapshot:
        with self._lock:
            return ClaimObservabilitySnapshot(
                intake={bucket: dict(counter) for bucket, counter in self._intake.items()},
                confirmations={bucket: dict(counter) for bucket, counter in self._confirmations.items()},
                webhooks={bucket: dict(counter) for bucket, counter in self._webhooks.items()},
                redemptions=dict(self._redemptions),
                loyalty=dict(self._loyalty),
                admin=dict(self._admin),
                transfers=dict(self._transfers),
                collections=dict(self._collections),
                intake_events=OutcomeLog(**vars(self._intake_events)),
                redemption_events=OutcomeLog(**vars(self._redemption_events)),
            )

    def reset(self) -> None:
        with self._lock:
            self._intake = {"created": Counter(), "rejected": Counter()}
            self._confirmations = {"confirmed": Counter(), "ignored": Counter()}
            self._webhooks = {"processed": Counter(), "failed": Counter()}
            self._redemptions = Counter()
            self._loyalty = Counter()
            self._admin = Counter()
            self._transfers = Counter()
            self._collections = Counter()
            self._intake_events = OutcomeLog()
            self._redemption_events = OutcomeLog()


_STORE = ClaimObservabilityStore()


def get_claim_observability_store() -> ClaimObservabilityStore:
    return _STORE


__all__ = [
    "ClaimObservabilitySnapshot",
    "ClaimObservabilityStore",
    "get_claim_observability_store",
]
