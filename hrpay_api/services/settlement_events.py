# hrpay_api/services/settlement_events.py
"""
Attendance -> settlement event contract.

The ledger writes a SettlementEvent row in the same transaction as the punch.
Once that commit is durable, deliver() hands the event to its subscriber:

    day_closed -> overtime settlement (on_clock_out)
    day_opened -> leave settlement    (on_clock_in)

Subscribers are idempotent, so delivery is at-least-once: a failed delivery
leaves the event in 'failed' and retry_pending_events() runs it again.
"""
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Callable, Dict, Optional, Any
import logging

from hrpay_api.extensions import db
from hrpay_api.common.errors import ValidationError
from hrpay_api.models.settlement_event import (
    SettlementEvent,
    DAY_CLOSED,
    DAY_OPENED,
    EVENT_PENDING,
    EVENT_PROCESSED,
    EVENT_NEEDS_REVIEW,
    EVENT_FAILED,
)

log = logging.getLogger(__name__)

SETTLED = "settled"
NOOP = "noop"
NEEDS_REVIEW = "needs_review"


@dataclass(frozen=True)
class SettlementOutcome:
    result: str                       # settled | noop | needs_review
    request_id: Optional[int] = None
    detail: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self):
        return asdict(self)


Subscriber = Callable[[int, datetime], SettlementOutcome]


def default_subscribers() -> Dict[str, Subscriber]:
    from hrpay_api.services import overtime_service, leave_service
    return {
        DAY_CLOSED: overtime_service.on_clock_out,
        DAY_OPENED: leave_service.on_clock_in,
    }


def deliver(event: SettlementEvent, subscribers: Optional[Dict[str, Subscriber]] = None) -> SettlementEvent:
    """Run the subscriber for one committed event and record the outcome on it."""
    subs = subscribers or default_subscribers()
    handler = subs.get(event.kind)
    event_id = event.id

    if handler is None:
        event.status = EVENT_FAILED
        event.attempts = (event.attempts or 0) + 1
        event.last_error = f"no subscriber for '{event.kind}'"
        db.session.commit()
        log.error("settlement event %s has no subscriber (kind=%s)", event_id, event.kind)
        return event

    try:
        outcome = handler(event.employee_id, event.occurred_at)
    except Exception as e:
        db.session.rollback()
        event = db.session.get(SettlementEvent, event_id)
        event.status = EVENT_FAILED
        event.attempts = (event.attempts or 0) + 1
        event.last_error = f"{type(e).__name__}: {e}"
        db.session.commit()
        log.exception("settlement event %s failed (attempt %s)", event_id, event.attempts)
        return event

    event.attempts = (event.attempts or 0) + 1
    event.status = EVENT_NEEDS_REVIEW if outcome.result == NEEDS_REVIEW else EVENT_PROCESSED
    event.outcome = outcome.to_dict()
    event.last_error = None
    event.processed_at = datetime.utcnow()
    db.session.commit()
    log.info("settlement event %s %s -> %s", event_id, event.kind, outcome.result)
    return event


def retry_pending_events(limit: int = 100, subscribers: Optional[Dict[str, Subscriber]] = None) -> Dict[str, int]:
    ids = [
        r.id for r in (
            SettlementEvent.query
            .filter(SettlementEvent.status.in_((EVENT_PENDING, EVENT_FAILED)))
            .order_by(SettlementEvent.id.asc())
            .limit(limit)
            .all()
        )
    ]
    counts = {EVENT_PROCESSED: 0, EVENT_NEEDS_REVIEW: 0, EVENT_FAILED: 0}
    for event_id in ids:
        ev = db.session.get(SettlementEvent, event_id)
        if ev is None or ev.status not in (EVENT_PENDING, EVENT_FAILED):
            continue
        ev = deliver(ev, subscribers)
        counts[ev.status] = counts.get(ev.status, 0) + 1
    return counts


def list_events(status: Optional[str] = None, employee_id: Optional[int] = None, limit: int = 200):
    q = SettlementEvent.query
    if status:
        q = q.filter(SettlementEvent.status == status)
    if employee_id:
        q = q.filter(SettlementEvent.employee_id == employee_id)
    return q.order_by(SettlementEvent.id.desc()).limit(limit).all()


def new_event(kind: str, record, occurred_at: datetime) -> SettlementEvent:
    """Build (not commit) the outbox row for a punch; caller owns the transaction."""
    if kind not in (DAY_CLOSED, DAY_OPENED):
        raise ValidationError(f"Unknown settlement event kind {kind!r}", payload={"kind": kind})
    ev = SettlementEvent(
        kind=kind,
        employee_id=record.employee_id,
        attendance_id=record.id,
        work_date=record.work_date,
        occurred_at=occurred_at,
        status=EVENT_PENDING,
        attempts=0,
    )
    db.session.add(ev)
    return ev
