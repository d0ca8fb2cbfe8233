# Overview: Service-layer sticker allocation; exactly-once claims under concurrent operators.

"""
Allocation Coordinator

WHY: Two operators of the same workshop can ask for "the next available
sticker" at the same moment for two different vehicles. Handing both the
first sticker of a list read moments ago is a double allocation.

ALGORITHM (auto_assign):
1. Snapshot the ordered Disponible list. It may already be stale.
2. Try sticker_service.claim on the first candidate.
3. On ConflictError (someone else claimed it first) move to the next
   candidate, bounded by the snapshot size.
4. All candidates lost -> NoStickersAvailableError.

Correctness rests only on the conditional UPDATE inside claim. There is no
lock shared between callers, so claims in different workshops or on
different stickers never wait on each other.
"""

from __future__ import annotations

import re

from flask import current_app

from ..errors import (
    ConflictError,
    InvalidFormatError,
    NoStickersAvailableError,
    PlateAlreadyBoundError,
)
from ..models import Sticker
from . import sticker_service
from .concurrency import run_in_transaction
from .vehicle_service import validate_plate
from .workshop_service import require_workshop


def _snapshot(workshop_id: int, sticker_order_id: int | None, limit: int | None) -> list[Sticker]:
    q = sticker_service.list_available(workshop_id, sticker_order_id=sticker_order_id)
    if limit:
        q = q.limit(limit)
    return q.all()


def claim_next(
    workshop_id: int,
    plate: str,
    *,
    application_id: int | None = None,
    sticker_order_id: int | None = None,
    max_attempts: int | None = None,
    actor: str | None = None,
) -> Sticker:
    """
    Claim the first sticker that is still Disponible. Caller owns the transaction.

    PlateAlreadyBoundError is not a lost race on the candidate: it propagates
    instead of advancing.
    """
    if max_attempts is None:
        max_attempts = current_app.config.get("STICKER_AUTO_ASSIGN_MAX_ATTEMPTS", 0) or None

    candidates = _snapshot(workshop_id, sticker_order_id, max_attempts)
    for candidate in candidates:
        try:
            return sticker_service.claim(candidate, plate, application_id=application_id, actor=actor)
        except PlateAlreadyBoundError:
            raise
        except ConflictError:
            current_app.logger.debug(
                "Sticker %s lost to a concurrent claim, trying next candidate", candidate.sticker_number
            )
            continue

    raise NoStickersAvailableError(
        f"No stickers available in workshop {workshop_id}",
        entity_type="workshop",
        entity_id=workshop_id,
        observed={"candidates_tried": len(candidates), "sticker_order_id": sticker_order_id},
    )


def auto_assign(
    workshop_id: int,
    license_plate: str,
    *,
    application_id: int | None = None,
    sticker_order_id: int | None = None,
    max_attempts: int | None = None,
    actor: str | None = None,
    commit: bool = True,
) -> Sticker:
    """
    Assign the oldest Disponible sticker of the workshop to a plate.

    Safe to call concurrently from independent callers: N calls against N
    available stickers yield N distinct stickers.
    """
    def _op():
        require_workshop(workshop_id)
        plate = validate_plate(license_plate)
        return claim_next(
            workshop_id,
            plate,
            application_id=application_id,
            sticker_order_id=sticker_order_id,
            max_attempts=max_attempts,
            actor=actor,
        )

    return run_in_transaction(_op, commit=commit)


def build_manual_number(prefix: str | None, code: str | None, suffix: str | None = None) -> str:
    """
    Join the parts an operator typed off a physical sticker.

    prefix/suffix: uppercase, separators stripped. code: digits only.
    """
    digits = re.sub(r"\D", "", code or "")
    if not digits:
        raise InvalidFormatError(
            "Sticker numeric code is required",
            entity_type="sticker",
            observed={"prefix": prefix, "code": code, "suffix": suffix},
        )
    return (
        sticker_service.normalize_sticker_number(prefix)
        + digits
        + sticker_service.normalize_sticker_number(suffix)
    )


def manual_assign(
    workshop_id: int,
    license_plate: str,
    prefix: str | None,
    code: str | None,
    suffix: str | None = None,
    *,
    application_id: int | None = None,
    actor: str | None = None,
    commit: bool = True,
) -> Sticker:
    """Assign the specific sticker the operator has in hand."""
    number = build_manual_number(prefix, code, suffix)
    return sticker_service.assign_by_number(
        number,
        license_plate,
        workshop_id,
        application_id=application_id,
        actor=actor,
        commit=commit,
    )


def preview_next(workshop_id: int, *, sticker_order_id: int | None = None) -> Sticker:
    """
    The sticker auto_assign would try first. Nothing is claimed.

    Only a hint for the operator: by the time they confirm, another operator
    may have taken it and auto_assign will move on.
    """
    require_workshop(workshop_id)
    sticker = sticker_service.list_available(workshop_id, sticker_order_id=sticker_order_id).first()
    if sticker is None:
        raise NoStickersAvailableError(
            f"No stickers available in workshop {workshop_id}",
            entity_type="workshop",
            entity_id=workshop_id,
            observed={"sticker_order_id": sticker_order_id},
        )
    return sticker


def reassign(
    workshop_id: int,
    license_plate: str,
    *,
    sticker_order_id: int | None = None,
    application_id: int | None = None,
    actor: str | None = None,
    commit: bool = True,
) -> Sticker:
    """
    Replace a plate's sticker: the current one is voided (No Disponible) and
    the next Disponible one, optionally from a given batch, is bound instead.

    Both steps share one transaction; if no replacement is available the
    current sticker stays bound.
    """
    def _op():
        require_workshop(workshop_id)
        plate = validate_plate(license_plate)
        current = sticker_service.find_by_plate(plate, workshop_id=workshop_id)
        bound_application = application_id or (current.assigned_application_id if current else None)
        previous = sticker_service.release(
            plate, keep_unavailable=True, workshop_id=workshop_id, actor=actor, commit=False
        )
        sticker = claim_next(
            workshop_id,
            plate,
            application_id=bound_application,
            sticker_order_id=sticker_order_id,
            actor=actor,
        )
        current_app.logger.info(
            "Plate %s reassigned from sticker %s to %s", plate, previous.sticker_number, sticker.sticker_number
        )
        return sticker

    return run_in_transaction(_op, commit=commit)
