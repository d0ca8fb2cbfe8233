from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


STICKER_DISPONIBLE = "Disponible"
STICKER_EN_USO = "En Uso"
STICKER_NO_DISPONIBLE = "No Disponible"

STICKER_STATUSES = (STICKER_DISPONIBLE, STICKER_EN_USO, STICKER_NO_DISPONIBLE)


class StickerOrder(db.Model):
    """
    A batch of stickers delivered to a workshop.

    Provisioning happens outside the core; the order only groups stickers so
    a reassignment can be narrowed to one physical batch.
    """
    __tablename__ = "sticker_orders"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    workshop_id = db.Column(db.Integer, db.ForeignKey("workshops.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=True)
    amount = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    workshop = db.relationship("Workshop", backref=db.backref("sticker_orders", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "workshop_id": self.workshop_id,
            "name": self.name,
            "amount": self.amount,
            "created_at": to_utc_z(self.created_at),
        }


class Sticker(db.Model):
    """
    Physical compliance sticker ("oblea").

    INVARIANTS:
    - sticker_number is globally unique, uppercase, separators stripped
    - status En Uso <=> assigned_license_plate is set
    - a plate holds at most one active sticker (unique assigned_license_plate;
      NULLs never collide)
    - intake order is id ascending (oldest first)

    Status changes are conditional UPDATEs issued by sticker_service; never
    assign status on a loaded instance.
    """
    __tablename__ = "stickers"
    __table_args__ = (
        db.Index("ix_stickers_workshop_status", "workshop_id", "status", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    workshop_id = db.Column(db.Integer, db.ForeignKey("workshops.id"), nullable=False, index=True)
    sticker_order_id = db.Column(db.Integer, db.ForeignKey("sticker_orders.id"), nullable=True, index=True)

    sticker_number = db.Column(db.String(64), nullable=False, unique=True, index=True)
    status = db.Column(db.String(16), nullable=False, default=STICKER_DISPONIBLE, index=True)

    assigned_license_plate = db.Column(db.String(16), nullable=True, unique=True)
    assigned_application_id = db.Column(db.Integer, db.ForeignKey("applications.id"), nullable=True, index=True)
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    sticker_order = db.relationship("StickerOrder", backref=db.backref("stickers", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Sticker id={self.id} number={self.sticker_number!r} status={self.status!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "workshop_id": self.workshop_id,
            "sticker_order_id": self.sticker_order_id,
            "sticker_number": self.sticker_number,
            "status": self.status,
            "assigned_license_plate": self.assigned_license_plate,
            "assigned_application_id": self.assigned_application_id,
            "assigned_at": to_utc_z(self.assigned_at),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
