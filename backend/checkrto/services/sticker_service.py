# Overview: Service-layer operations for stickers; the per-workshop sticker registry.

"""
CheckRTO Sticker Registry

================================================================================
PURPOSE: Hold each workshop's sticker pool and apply state transitions.
The registry never decides WHICH sticker to hand out (allocation_service does).
================================================================================

STATE MACHINE:
    Disponible -> En Uso               assign / assign_by_number only
    En Uso     -> Disponible           release / administrative override
    En Uso     -> No Disponible        release(keep_unavailable) / override
    Disponible -> No Disponible        administrative override (defective)
    No Disponible -> Disponible        administrative override (recovered)

    No Disponible -> En Uso is impossible: assign requires Disponible.

ATOMICITY:
Every transition is ONE conditional UPDATE whose WHERE clause carries the
expected current status. Of two concurrent assigns on the same sticker only
one can match the row; the other sees rowcount 0 and gets ConflictError.
Nothing here takes a workshop-wide lock.

BINDING:
A sticker En Uso is bound to exactly one plate; a plate holds at most one
En Uso sticker (unique index on assigned_license_plate). Release clears the
binding whatever the target status.
================================================================================
"""

from __future__ import annotations

import re

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import (
    ConflictError,
    IllegalTransitionError,
    InvalidFormatError,
    NotFoundError,
    PlateAlreadyBoundError,
)
from ..models import Sticker, StickerOrder
from ..models.stickers import (
    STICKER_DISPONIBLE,
    STICKER_EN_USO,
    STICKER_NO_DISPONIBLE,
    STICKER_STATUSES,
)
from ..time_utils import utcnow
from .concurrency import compare_and_set, run_in_transaction
from .ledger_service import append_event
from .vehicle_service import normalize_plate, validate_plate
from .workshop_service import require_workshop


_STICKER_SEPARATORS = re.compile(r"[\s\-_/\\.]")


def normalize_sticker_number(value: str | None) -> str:
    """Normalize to uppercase with whitespace, -, _, /, \\ and . removed."""
    return _STICKER_SEPARATORS.sub("", (value or "").upper())


def _observed(sticker: Sticker) -> dict:
    return {
        "status": sticker.status,
        "sticker_number": sticker.sticker_number,
        "assigned_license_plate": sticker.assigned_license_plate,
    }


def _load(sticker_id: int) -> Sticker | None:
    # populate_existing: guards must see the row as stored, not a stale identity-map copy
    return db.session.get(Sticker, sticker_id, populate_existing=True)


def _require_sticker(sticker_id: int, workshop_id: int) -> Sticker:
    sticker = _load(sticker_id)
    if sticker is None or sticker.workshop_id != workshop_id:
        # Same message either way: never reveal a sticker of another workshop
        raise NotFoundError(
            f"Sticker {sticker_id} not found in workshop {workshop_id}",
            entity_type="sticker",
            entity_id=sticker_id,
        )
    return sticker


def _record(sticker: Sticker, event_type: str, from_status: str, *, actor=None, application_id=None, plate=None):
    append_event(
        workshop_id=sticker.workshop_id,
        event_type=event_type,
        entity_type="sticker",
        entity_id=sticker.id,
        sticker_id=sticker.id,
        application_id=application_id,
        from_status=from_status,
        to_status=sticker.status,
        actor=actor,
        payload={"sticker_number": sticker.sticker_number, "license_plate": plate},
    )


# ================================================================================
# READS
# ================================================================================

def list_available(workshop_id: int, *, sticker_order_id: int | None = None):
    """
    Disponible stickers of a workshop, oldest intake first.

    Returns the query itself: iterating it runs the SELECT, iterating it again
    re-runs it against current data. Nothing is claimed or locked.
    """
    q = db.session.query(Sticker).filter(
        Sticker.workshop_id == workshop_id,
        Sticker.status == STICKER_DISPONIBLE,
    )
    if sticker_order_id is not None:
        q = q.filter(Sticker.sticker_order_id == sticker_order_id)
    return q.order_by(Sticker.id.asc()).populate_existing()


def get_sticker(sticker_id: int, workshop_id: int) -> Sticker:
    return _require_sticker(sticker_id, workshop_id)


def find_by_plate(license_plate: str, *, workshop_id: int | None = None) -> Sticker | None:
    """The sticker currently En Uso for a plate, if any."""
    q = db.session.query(Sticker).filter(
        Sticker.assigned_license_plate == normalize_plate(license_plate),
        Sticker.status == STICKER_EN_USO,
    )
    if workshop_id is not None:
        q = q.filter(Sticker.workshop_id == workshop_id)
    return q.populate_existing().first()


def list_stickers(
    workshop_id: int,
    *,
    status: str | None = None,
    q: str | None = None,
    limit: int = 500,
) -> list[Sticker]:
    """All stickers of a workshop, optionally filtered by status and number/plate search."""
    query = db.session.query(Sticker).filter(Sticker.workshop_id == workshop_id)
    if status:
        if status not in STICKER_STATUSES:
            raise InvalidFormatError(f"Invalid sticker status '{status}'", entity_type="sticker")
        query = query.filter(Sticker.status == status)
    if q:
        term = f"%{normalize_sticker_number(q)}%"
        query = query.filter(
            db.or_(
                Sticker.sticker_number.like(term),
                Sticker.assigned_license_plate.like(term),
            )
        )
    return query.order_by(Sticker.id.asc()).limit(limit).all()


def status_summary(workshop_id: int) -> dict:
    """Sticker counts per status for a workshop (every status present, zero if none)."""
    rows = (
        db.session.query(Sticker.status, func.count(Sticker.id))
        .filter(Sticker.workshop_id == workshop_id)
        .group_by(Sticker.status)
        .all()
    )
    summary = {status: 0 for status in STICKER_STATUSES}
    for status, count in rows:
        summary[status] = count
    summary["total"] = sum(summary[s] for s in STICKER_STATUSES)
    return summary


# ================================================================================
# TRANSITIONS
# ================================================================================

def claim(
    sticker: Sticker,
    plate: str,
    *,
    application_id: int | None = None,
    actor: str | None = None,
) -> Sticker:
    """
    Disponible -> En Uso for an already-scoped sticker. Caller owns the transaction.

    Raises PlateAlreadyBoundError if the plate holds another sticker and
    ConflictError if the sticker is no longer Disponible (pre-check or lost race).
    """
    bound = find_by_plate(plate)
    if bound is not None:
        raise PlateAlreadyBoundError(
            f"Plate {plate} already has sticker {bound.sticker_number} assigned",
            entity_type="sticker",
            entity_id=bound.id,
            observed=_observed(bound),
        )

    if sticker.status != STICKER_DISPONIBLE:
        raise ConflictError(
            f"Sticker {sticker.sticker_number} is '{sticker.status}', not '{STICKER_DISPONIBLE}'",
            entity_type="sticker",
            entity_id=sticker.id,
            observed=_observed(sticker),
        )

    try:
        claimed = compare_and_set(
            Sticker,
            Sticker.id == sticker.id,
            Sticker.workshop_id == sticker.workshop_id,
            Sticker.status == STICKER_DISPONIBLE,
            values={
                "status": STICKER_EN_USO,
                "assigned_license_plate": plate,
                "assigned_application_id": application_id,
                "assigned_at": utcnow(),
            },
        )
    except IntegrityError:
        # Another caller bound this plate between our check and our UPDATE
        db.session.rollback()
        raise PlateAlreadyBoundError(
            f"Plate {plate} already has a sticker assigned",
            entity_type="sticker",
            entity_id=sticker.id,
            observed={"assigned_license_plate": plate},
        )

    fresh = _load(sticker.id)
    if not claimed:
        raise ConflictError(
            f"Sticker {fresh.sticker_number} was claimed concurrently",
            entity_type="sticker",
            entity_id=fresh.id,
            observed=_observed(fresh),
        )

    _record(fresh, "sticker.assigned", STICKER_DISPONIBLE, actor=actor, application_id=application_id, plate=plate)
    current_app.logger.info(
        "Sticker %s assigned to %s (workshop %s)", fresh.sticker_number, plate, fresh.workshop_id
    )
    return fresh


def assign(
    sticker_id: int,
    license_plate: str,
    workshop_id: int,
    *,
    application_id: int | None = None,
    actor: str | None = None,
    commit: bool = True,
) -> Sticker:
    """
    Bind a Disponible sticker of the workshop to a plate (-> En Uso).

    Raises:
        NotFoundError: sticker missing or owned by another workshop
        InvalidFormatError: malformed plate
        PlateAlreadyBoundError: plate already holds a sticker
        ConflictError: sticker not Disponible (caller may retry elsewhere)
    """
    def _op():
        require_workshop(workshop_id)
        plate = validate_plate(license_plate)
        sticker = _require_sticker(sticker_id, workshop_id)
        return claim(sticker, plate, application_id=application_id, actor=actor)

    return run_in_transaction(_op, commit=commit)


def assign_by_number(
    sticker_number: str,
    license_plate: str,
    workshop_id: int,
    *,
    application_id: int | None = None,
    actor: str | None = None,
    commit: bool = True,
) -> Sticker:
    """Same as assign, resolving the sticker by normalized number within the workshop."""
    def _op():
        require_workshop(workshop_id)
        plate = validate_plate(license_plate)
        number = normalize_sticker_number(sticker_number)
        if not number:
            raise InvalidFormatError("Sticker number is required", entity_type="sticker")

        sticker = (
            db.session.query(Sticker)
            .filter(Sticker.sticker_number == number, Sticker.workshop_id == workshop_id)
            .populate_existing()
            .first()
        )
        if sticker is None:
            raise NotFoundError(
                f"Sticker {number} not found in workshop {workshop_id}",
                entity_type="sticker",
                entity_id=number,
            )
        return claim(sticker, plate, application_id=application_id, actor=actor)

    return run_in_transaction(_op, commit=commit)


def release(
    license_plate: str,
    keep_unavailable: bool = False,
    *,
    workshop_id: int | None = None,
    actor: str | None = None,
    commit: bool = True,
) -> Sticker:
    """
    Unbind the sticker currently En Uso for a plate.

    The sticker goes back to Disponible, or to No Disponible when
    keep_unavailable is set (voided/damaged sticker). The plate binding is
    cleared either way.
    """
    def _op():
        plate = normalize_plate(license_plate)
        sticker = find_by_plate(plate, workshop_id=workshop_id)
        if sticker is None:
            raise NotFoundError(
                f"No sticker assigned to plate {plate}",
                entity_type="sticker",
                entity_id=plate,
            )

        target = STICKER_NO_DISPONIBLE if keep_unavailable else STICKER_DISPONIBLE
        application_id = sticker.assigned_application_id
        released = compare_and_set(
            Sticker,
            Sticker.id == sticker.id,
            Sticker.status == STICKER_EN_USO,
            Sticker.assigned_license_plate == plate,
            values={
                "status": target,
                "assigned_license_plate": None,
                "assigned_application_id": None,
                "assigned_at": None,
            },
        )
        fresh = _load(sticker.id)
        if not released:
            raise ConflictError(
                f"Sticker {fresh.sticker_number} changed concurrently",
                entity_type="sticker",
                entity_id=fresh.id,
                observed=_observed(fresh),
            )

        _record(fresh, "sticker.released", STICKER_EN_USO, actor=actor, application_id=application_id, plate=plate)
        current_app.logger.info("Sticker %s released from %s -> %s", fresh.sticker_number, plate, target)
        return fresh

    return run_in_transaction(_op, commit=commit)


def set_status(
    sticker_id: int,
    workshop_id: int,
    status: str,
    *,
    actor: str | None = None,
    commit: bool = True,
) -> Sticker:
    """
    Administrative override (e.g. mark a sticker defective or recovered).

    Setting En Uso directly is refused: binding a plate goes through assign.
    Moving an En Uso sticker away clears its plate binding. Setting the
    current status is a no-op.
    """
    if status not in STICKER_STATUSES:
        raise InvalidFormatError(
            f"Invalid sticker status '{status}'. Must be one of: {', '.join(STICKER_STATUSES)}",
            entity_type="sticker",
            entity_id=sticker_id,
        )
    if status == STICKER_EN_USO:
        raise IllegalTransitionError(
            f"Sticker status '{STICKER_EN_USO}' can only be set by assigning it to a vehicle",
            entity_type="sticker",
            entity_id=sticker_id,
        )

    def _op():
        sticker = _require_sticker(sticker_id, workshop_id)
        if sticker.status == status:
            return sticker

        from_status = sticker.status
        plate = sticker.assigned_license_plate
        application_id = sticker.assigned_application_id
        changed = compare_and_set(
            Sticker,
            Sticker.id == sticker.id,
            Sticker.status == from_status,
            values={
                "status": status,
                "assigned_license_plate": None,
                "assigned_application_id": None,
                "assigned_at": None,
            },
        )
        fresh = _load(sticker.id)
        if not changed:
            raise ConflictError(
                f"Sticker {fresh.sticker_number} changed concurrently",
                entity_type="sticker",
                entity_id=fresh.id,
                observed=_observed(fresh),
            )

        _record(fresh, "sticker.status_overridden", from_status, actor=actor, application_id=application_id, plate=plate)
        return fresh

    return run_in_transaction(_op, commit=commit)


# ================================================================================
# INTAKE
# ================================================================================

def build_sticker_numbers(prefix: str, start: int, count: int, *, pad: int = 0) -> list[str]:
    """Sequential sticker numbers: prefix + zero-padded counter."""
    if count <= 0:
        raise InvalidFormatError("Sticker count must be positive", entity_type="sticker_order")
    if start < 0:
        raise InvalidFormatError("Sticker range must start at 0 or above", entity_type="sticker_order")
    head = normalize_sticker_number(prefix)
    return [f"{head}{str(n).zfill(pad)}" for n in range(start, start + count)]


def register_stickers(
    workshop_id: int,
    numbers: list[str],
    *,
    name: str | None = None,
    actor: str | None = None,
) -> StickerOrder:
    """
    Record a delivered batch of stickers as Disponible, in the given order.

    Sticker numbers are global: a number already registered anywhere is a
    ConflictError and nothing from the batch is stored.
    """
    def _op():
        require_workshop(workshop_id)

        normalized = [normalize_sticker_number(n) for n in numbers]
        if not normalized or any(not n for n in normalized):
            raise InvalidFormatError("Sticker numbers must be non-empty", entity_type="sticker_order")
        if len(set(normalized)) != len(normalized):
            raise InvalidFormatError("Duplicate sticker numbers in batch", entity_type="sticker_order")

        existing = (
            db.session.query(Sticker.sticker_number)
            .filter(Sticker.sticker_number.in_(normalized))
            .all()
        )
        if existing:
            taken = sorted(row[0] for row in existing)
            raise ConflictError(
                f"Sticker numbers already registered: {', '.join(taken[:10])}",
                entity_type="sticker_order",
                observed={"duplicates": taken},
            )

        order = StickerOrder(workshop_id=workshop_id, name=name, amount=len(normalized))
        db.session.add(order)
        db.session.flush()

        for number in normalized:
            db.session.add(
                Sticker(
                    workshop_id=workshop_id,
                    sticker_order_id=order.id,
                    sticker_number=number,
                    status=STICKER_DISPONIBLE,
                )
            )
        db.session.flush()

        append_event(
            workshop_id=workshop_id,
            event_type="sticker_order.registered",
            entity_type="sticker_order",
            entity_id=order.id,
            actor=actor,
            note=name,
            payload={"amount": len(normalized), "first": normalized[0], "last": normalized[-1]},
        )
        return order

    return run_in_transaction(_op)


def list_sticker_orders(workshop_id: int) -> list[dict]:
    """Sticker orders of a workshop with their remaining Disponible count."""
    available = (
        db.session.query(Sticker.sticker_order_id, func.count(Sticker.id))
        .filter(Sticker.workshop_id == workshop_id, Sticker.status == STICKER_DISPONIBLE)
        .group_by(Sticker.sticker_order_id)
        .all()
    )
    available_by_order = dict(available)
    orders = (
        db.session.query(StickerOrder)
        .filter(StickerOrder.workshop_id == workshop_id)
        .order_by(StickerOrder.id.asc())
        .all()
    )
    return [
        {**order.to_dict(), "available": available_by_order.get(order.id, 0)}
        for order in orders
    ]
