# Overview: Service-layer operations for the audit ledger; append-only event log.

from __future__ import annotations

import json
from typing import Optional
from datetime import datetime

from ..extensions import db
from ..models import AuditEvent
"""
CheckRTO Audit Ledger Invariants (authoritative)

- Append-only log of application and sticker transitions.
- No domain/business logic in the ledger itself.
- Events are written inside the same DB transaction as the change they record,
  so a rolled-back transition leaves no event behind.
- occurred_at is business time; created_at is system time (DB default).
"""


def append_event(
    *,
    workshop_id: int,
    event_type: str,
    entity_type: str,
    entity_id: int,
    application_id: int | None = None,
    sticker_id: int | None = None,
    from_status: str | None = None,
    to_status: str | None = None,
    actor: str | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
) -> AuditEvent:
    """
    Append-only audit event.

    - No domain logic here.
    - No deletes/updates of existing events.
    - Flushes but never commits; the caller's transaction owns the event.
    """
    ev = AuditEvent(
        workshop_id=workshop_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        application_id=application_id,
        sticker_id=sticker_id,
        from_status=from_status,
        to_status=to_status,
        actor=actor,
        occurred_at=occurred_at,  # if None, db default applies
        note=note,
        payload=json.dumps(payload, sort_keys=True) if payload is not None else None,
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def list_events(
    *,
    workshop_id: int,
    application_id: int | None = None,
    sticker_id: int | None = None,
    limit: int = 200,
) -> list[AuditEvent]:
    """Audit events for a workshop, optionally narrowed to one application or sticker, oldest first."""
    q = db.session.query(AuditEvent).filter(AuditEvent.workshop_id == workshop_id)
    if application_id is not None:
        q = q.filter(AuditEvent.application_id == application_id)
    if sticker_id is not None:
        q = q.filter(AuditEvent.sticker_id == sticker_id)
    return q.order_by(AuditEvent.id.asc()).limit(limit).all()
