# Overview: Append-only audit trail for settlement, onboarding and recompute events.

from __future__ import annotations

from typing import Optional
from datetime import datetime

from ..extensions import db
from ..models import AuditEvent
from ..time_utils import utcnow
"""
Audit Trail Invariants (authoritative)

- Append-only: no updates or deletes of existing events.
- No domain/business logic in the audit trail itself.
- Events are written inside the same DB transaction as the change they record.
- occurred_at is business time; created_at is system time (DB default).
"""


def append_audit_event(
    *,
    org_id: int,
    event_type: str,
    entity_type: str,
    entity_id: int,
    driver_id: int | None = None,
    settlement_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
) -> AuditEvent:
    ev = AuditEvent(
        org_id=org_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        driver_id=driver_id,
        settlement_id=settlement_id,
        occurred_at=occurred_at or utcnow(),
        note=note,
        payload=payload,
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev
