from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class AuditEvent(db.Model):
    """
    Append-only audit trail for application and sticker transitions.

    Rows are written in the same transaction as the change they record and
    are never updated or deleted.
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("ix_audit_events_workshop_occurred", "workshop_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    workshop_id = db.Column(db.Integer, db.ForeignKey("workshops.id"), nullable=False, index=True)

    # What happened
    event_type = db.Column(db.String(64), nullable=False, index=True)  # e.g., application.started, sticker.assigned

    # What it refers to (generic pointer)
    entity_type = db.Column(db.String(32), nullable=False, index=True)  # application, sticker, inspection
    entity_id = db.Column(db.Integer, nullable=False, index=True)

    application_id = db.Column(db.Integer, db.ForeignKey("applications.id"), nullable=True, index=True)
    sticker_id = db.Column(db.Integer, db.ForeignKey("stickers.id"), nullable=True, index=True)

    from_status = db.Column(db.String(32), nullable=True)
    to_status = db.Column(db.String(32), nullable=True)

    actor = db.Column(db.String(64), nullable=True)

    # Business vs system time
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    note = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "workshop_id": self.workshop_id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "application_id": self.application_id,
            "sticker_id": self.sticker_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor": self.actor,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
            "note": self.note,
            "payload": self.payload,
        }
