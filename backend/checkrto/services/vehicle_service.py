# Overview: Vehicle lookup; plate normalization, format checks and vehicle records.

"""
Vehicle lookup collaborator.

Plates are normalized before every lookup and comparison: uppercase, no
spaces, no dashes. Two formats are accepted:

    ABC123     (pre-2016 plates)
    AB123CD    (Mercosur plates)

The core does not own vehicle data; it only needs to know that a plate is
well formed and that the vehicle exists before a sticker is bound to it.
"""

from __future__ import annotations

import re

from ..extensions import db
from ..errors import InvalidFormatError, NotFoundError
from ..models import Vehicle


PLATE_RE = re.compile(r"^([A-Z]{3}\d{3}|[A-Z]{2}\d{3}[A-Z]{2})$")


def normalize_plate(value: str | None) -> str:
    """Normalize to uppercase, no spaces or dashes."""
    return re.sub(r"[-\s]", "", (value or "").upper())


def validate_plate(value: str | None) -> str:
    """Return the normalized plate or raise InvalidFormatError."""
    plate = normalize_plate(value)
    if not plate:
        raise InvalidFormatError("License plate is required", entity_type="vehicle")
    if not PLATE_RE.match(plate):
        raise InvalidFormatError(
            f"Invalid license plate '{value}': expected ABC123 or AB123CD",
            entity_type="vehicle",
            entity_id=plate,
        )
    return plate


def get_vehicle(license_plate: str) -> Vehicle | None:
    return db.session.query(Vehicle).filter_by(license_plate=normalize_plate(license_plate)).first()


def require_vehicle(license_plate: str) -> Vehicle:
    """Validate the plate format and confirm the vehicle is on record."""
    plate = validate_plate(license_plate)
    vehicle = db.session.query(Vehicle).filter_by(license_plate=plate).first()
    if vehicle is None:
        raise NotFoundError(
            f"Vehicle with plate {plate} not found",
            entity_type="vehicle",
            entity_id=plate,
        )
    return vehicle


def register_vehicle(
    license_plate: str,
    *,
    brand: str | None = None,
    model: str | None = None,
    year: int | None = None,
) -> Vehicle:
    """
    Get-or-create the vehicle record for a plate, filling in any details given.

    Flushes only; the caller commits.
    """
    plate = validate_plate(license_plate)
    vehicle = db.session.query(Vehicle).filter_by(license_plate=plate).first()
    if vehicle is None:
        vehicle = Vehicle(license_plate=plate)
        db.session.add(vehicle)

    if brand is not None:
        vehicle.brand = brand.strip() or None
    if model is not None:
        vehicle.model = model.strip() or None
    if year is not None:
        vehicle.year = year

    db.session.flush()
    return vehicle
