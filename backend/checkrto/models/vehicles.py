from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Vehicle(db.Model):
    """
    Vehicle record keyed by normalized license plate.

    Owned by the intake collaborator; the core only reads it to confirm a
    plate exists before binding a sticker to it.
    """
    __tablename__ = "vehicles"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    license_plate = db.Column(db.String(16), nullable=False, unique=True, index=True)
    brand = db.Column(db.String(64), nullable=True)
    model = db.Column(db.String(64), nullable=True)
    year = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Vehicle id={self.id} plate={self.license_plate!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "license_plate": self.license_plate,
            "brand": self.brand,
            "model": self.model,
            "year": self.year,
            "created_at": to_utc_z(self.created_at),
        }
