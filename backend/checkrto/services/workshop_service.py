"""
Workshop (tenant) service: lookup and scope checks.

Every operation of the core is scoped to one workshop. Records that belong
to a different workshop are reported as not found; the error never reveals
that the record exists elsewhere.

USAGE:
    from checkrto.services.workshop_service import require_workshop

    workshop = require_workshop(workshop_id)
"""

from __future__ import annotations

from ..extensions import db
from ..errors import NotFoundError, ConflictError, InvalidFormatError
from ..models import Workshop


def require_workshop(workshop_id: int) -> Workshop:
    """
    Return the active workshop or raise NotFoundError.

    Deactivated workshops are treated as missing: nothing may be assigned
    or transitioned inside them.
    """
    workshop = db.session.get(Workshop, workshop_id)
    if workshop is None or not workshop.is_active:
        raise NotFoundError(
            f"Workshop {workshop_id} not found",
            entity_type="workshop",
            entity_id=workshop_id,
        )
    return workshop


def create_workshop(name: str, code: str | None = None) -> Workshop:
    name = (name or "").strip()
    if not name:
        raise InvalidFormatError("Workshop name is required", entity_type="workshop")
    code = code.strip().upper() if code else None

    if code and db.session.query(Workshop).filter_by(code=code).first():
        raise ConflictError(
            f"Workshop code '{code}' already exists",
            entity_type="workshop",
            observed={"code": code},
        )

    workshop = Workshop(name=name, code=code, is_active=True)
    db.session.add(workshop)
    db.session.commit()
    return workshop


def list_workshops(include_inactive: bool = False) -> list[Workshop]:
    q = db.session.query(Workshop)
    if not include_inactive:
        q = q.filter(Workshop.is_active.is_(True))
    return q.order_by(Workshop.id.asc()).all()
