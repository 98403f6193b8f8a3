"""In-memory observability helper for hosted checkout + webhook flows."""

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
class SessionEventLog:
    last_success_at: datetime | None = None
    last_success_order_id: str | None = None
    last_failure_at: datetime | None = None
    last_failure_reason: str | None = None


@dataclass
class WebhookEventLog:
    last_event_at: datetime | None = None
    last_event_type: str | None = None
    last_event_id: str | None = None
    last_failure_at: datetime | None = None
    last_failure_reason: str | None = None


@dataclass
class PaymentObservabilitySnapshot:
    session_totals: Dict[str, int]
    webhook_totals: Dict[str, Dict[str, int]]
    redirect_totals: Dict[str, int]
    session_events: SessionEventLog
    webhook_events: WebhookEventLog

    def as_dict(self) -> Dict[str, object]:
        return {
            "sessions": {
                "totals": self.session_totals,
                "events": {
                    "last_success_at": _iso(self.session_events.last_success_at),
                    "last_success_order_id": self.session_events.last_success_order_id,
                    "last_failure_at": _iso(self.session_events.last_failure_at),
                    "last_failure_reason": self.session_events.last_failure_reason,
                },
            },
            "webhooks": {
                "totals": self.webhook_totals,
                "events": {
                    "last_event_at": _iso(self.webhook_events.last_event_at),
                    "last_event_type": self.webhook_events.last_event_type,
                    "last_event_id": self.webhook_events.last_event_id,
                    "last_failure_at": _iso(self.webhook_events.last_failure_at),
                    "last_failure_reason": self.webhook_events.last_failure_reason,
                },
            },
            "redirects": {"totals": self.redirect_totals},
        }


@dataclass
class PaymentObservabilityStore:
    _lock: Lock = field(default_factory=Lock)
    _session_totals: Counter = field(default_factory=Counter)
    _session_events: SessionEventLog = field(default_factory=SessionEventLog)
    _webhook_totals: Dict[str, Counter] = field(
        default_factory=lambda: {"processed": Counter(), "duplicate": Counter(), "failed": Counter()}
    )
    _webhook_events: WebhookEventLog = field(default_factory=WebhookEventLog)
    _redirect_totals: Counter = field(default_factory=Counter)

    def record_session_success(self, order_id: str) -> None:
        with self._lock:
            self._session_totals["succeeded"] += 1
            self._session_events.last_success_at = _utcnow()
            self._session_events.last_success_order_id = order_id

    def record_session_failure(self, reason: str) -> None:
        with self._lock:
            self._session_totals["failed"] += 1
            self._session_events.last_failure_at = _utcnow()
            self._session_events.last_failure_reason = reason

    def record_webhook(self, event_type: str, bucket: str, event_id: str | None, error: str | None = None) -> None:
        with self._lock:
            self._webhook_totals.setdefault(bucket, Counter())[event_type] += 1
            now = _utcnow()
            self._webhook_events.last_event_at = now
            self._webhook_events.last_event_type = event_type
            self._webhook_events.last_event_id = event_id
            if bucket == "failed":
                self._webhook_events.last_failure_at = now
                self._webhook_events.last_failure_reason = error

    def record_redirect(self, outcome: str) -> None:
        with self._lock:
            self._redirect_totals[outcome] += 1

    def snapshot(self) -> PaymentObservabilitySnapshot:
        with self._lock:
            return PaymentObservabilitySnapshot(
                session_totals=dict(self._session_totals),
                webhook_totals={bucket: dict(counter) for bucket, counter in self._webhook_totals.items()},
                redirect_totals=dict(self._redirect_totals),
                session_events=SessionEventLog(**vars(self._session_events)),
                webhook_events=WebhookEventLog(**vars(self._webhook_events)),
            )

    def reset(self) -> None:
        with self._lock:
            self._session_totals.clear()
            for counter in self._webhook_totals.values():
                counter.clear()
            self._redirect_totals.clear()
            self._session_events = SessionEventLog()
            self._webhook_events = WebhookEventLog()


_PAYMENT_STORE = PaymentObservabilityStore()


def get_payment_store() -> PaymentObservabilityStore:
    return _PAYMENT_STORE
