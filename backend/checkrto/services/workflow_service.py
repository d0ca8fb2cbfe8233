# Overview: Service-layer operations for the application workflow; authoritative state machine.

"""
CheckRTO Application Workflow

================================================================================
PURPOSE: Own the lifecycle of an inspection Application
================================================================================

STATE MACHINE:

    Pendiente --start--> En curso --first attempt complete--> A Inspeccionar | Emitir CRT
    A Inspeccionar --send_to_certificate--> Emitir CRT
    Emitir CRT --mark_completed--> Completado
    A Inspeccionar | Emitir CRT --begin_second_inspection--> Segunda Inspección
        (only when result == Condicional and result_2 is unset, inside the window)
    Segunda Inspección --second attempt complete--> Emitir CRT | Completado
    any non-terminal --cancel--> Cancelado

RULES (NON-NEGOTIABLE):
1. result and result_2 are written once. result_2 only after a Condicional
   first result.
2. A second inspection is never started twice: once result_2 is set the
   request fails with AlreadyFinalizedError and nothing changes.
3. Completado and Cancelado are terminal.
4. Every transition appends an audit event in the same transaction.

Which non-terminal status follows a completed attempt is a routing policy
of the surrounding process, pluggable with set_first_result_router /
set_second_result_router.

CONCURRENCY:
- begin_second_inspection is a single conditional UPDATE on
  (id, status, result, result_2, version_id). Of two concurrent requests
  one wins, the other gets ConflictError.
- Every other transition is an ORM flush checked by version_id_col; a lost
  race raises StaleDataError, run_with_retry re-reads and re-evaluates the
  guard.
================================================================================
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..errors import (
    AlreadyFinalizedError,
    ConflictError,
    IllegalTransitionError,
    InvalidFormatError,
    NotFoundError,
)
from ..models import Application, Sticker
from ..models.applications import (
    APPLICATION_STATUSES,
    RESULT_CONDICIONAL,
    RESULT_RECHAZADO,
    STATUS_A_INSPECCIONAR,
    STATUS_CANCELADO,
    STATUS_COMPLETADO,
    STATUS_EMITIR_CRT,
    STATUS_EN_CURSO,
    STATUS_PENDIENTE,
    STATUS_SEGUNDA_INSPECCION,
    TERMINAL_STATUSES,
)
from ..time_utils import as_naive_utc, utcnow
from . import allocation_service, inspection_service, sticker_service
from .concurrency import compare_and_set, lock_for_update, run_in_transaction
from .ledger_service import append_event, list_events
from .vehicle_service import register_vehicle, require_vehicle, validate_plate
from .workshop_service import require_workshop


Router = Callable[[Application, str], str]

FIRST_RESULT_TARGETS = frozenset({STATUS_A_INSPECCIONAR, STATUS_EMITIR_CRT})
SECOND_RESULT_TARGETS = frozenset({STATUS_EMITIR_CRT, STATUS_COMPLETADO})

# Statuses from which a Condicional application may start its second inspection
SECOND_INSPECTION_SOURCES = frozenset({STATUS_A_INSPECCIONAR, STATUS_EMITIR_CRT})

VALID_TRANSITIONS = {
    (STATUS_PENDIENTE, STATUS_EN_CURSO),
    (STATUS_EN_CURSO, STATUS_A_INSPECCIONAR),
    (STATUS_EN_CURSO, STATUS_EMITIR_CRT),
    (STATUS_A_INSPECCIONAR, STATUS_EMITIR_CRT),
    (STATUS_A_INSPECCIONAR, STATUS_SEGUNDA_INSPECCION),
    (STATUS_EMITIR_CRT, STATUS_SEGUNDA_INSPECCION),
    (STATUS_EMITIR_CRT, STATUS_COMPLETADO),
    (STATUS_SEGUNDA_INSPECCION, STATUS_EMITIR_CRT),
    (STATUS_SEGUNDA_INSPECCION, STATUS_COMPLETADO),
}


# ================================================================================
# ROUTING POLICIES
# ================================================================================

def route_first_to_certificate(application: Application, result: str) -> str:
    return STATUS_EMITIR_CRT


def route_first_to_queue(application: Application, result: str) -> str:
    return STATUS_A_INSPECCIONAR


def route_second_default(application: Application, result_2: str) -> str:
    """A rejected retry closes the case; anything else goes to certificate issuance."""
    if result_2 == RESULT_RECHAZADO:
        return STATUS_COMPLETADO
    return STATUS_EMITIR_CRT


FIRST_RESULT_POLICIES: dict[str, Router] = {
    "certificate": route_first_to_certificate,
    "queue": route_first_to_queue,
}

_first_router: Optional[Router] = None
_second_router: Optional[Router] = None


def set_first_result_router(fn: Optional[Router]) -> None:
    """Override where a completed first attempt sends the application. None restores config."""
    global _first_router
    _first_router = fn


def set_second_result_router(fn: Optional[Router]) -> None:
    """Override where a completed second attempt sends the application. None restores the default."""
    global _second_router
    _second_router = fn


def _first_router_for_app() -> Router:
    if _first_router is not None:
        return _first_router
    name = current_app.config.get("FIRST_RESULT_ROUTING", "certificate")
    try:
        return FIRST_RESULT_POLICIES[name]
    except KeyError:
        raise InvalidFormatError(
            f"Unknown FIRST_RESULT_ROUTING '{name}'. Must be one of: {', '.join(sorted(FIRST_RESULT_POLICIES))}"
        )


def _route(router: Router, application: Application, result: str, allowed: frozenset) -> str:
    target = router(application, result)
    if target not in allowed:
        raise IllegalTransitionError(
            f"Routing policy sent application {application.id} to '{target}'. "
            f"Allowed: {', '.join(sorted(allowed))}",
            entity_type="application",
            entity_id=application.id,
            observed=application.state(),
        )
    return target


# ================================================================================
# HELPERS
# ================================================================================

def _not_found(application_id) -> NotFoundError:
    return NotFoundError(
        f"Application {application_id} not found",
        entity_type="application",
        entity_id=application_id,
    )


def _load(application_id: int, workshop_id: int | None = None, *, lock: bool = False) -> Application:
    q = db.session.query(Application).filter(Application.id == application_id)
    if lock:
        q = lock_for_update(q)
    application = q.populate_existing().first()
    if application is None or (workshop_id is not None and application.workshop_id != workshop_id):
        raise _not_found(application_id)
    return application


def _illegal(application: Application, message: str) -> IllegalTransitionError:
    return IllegalTransitionError(
        f"Application {application.id}: {message}",
        entity_type="application",
        entity_id=application.id,
        observed=application.state(),
    )


def _require_status(application: Application, expected: str, action: str) -> None:
    if application.status != expected:
        raise _illegal(application, f"cannot {action} from status '{application.status}'")


def _transition(
    application: Application,
    to_status: str,
    *,
    event_type: str,
    actor: str | None = None,
    note: str | None = None,
    payload: dict | None = None,
) -> Application:
    """Move to to_status and append the audit event. Flushes; version_id_col guards the UPDATE."""
    from_status = application.status
    if to_status == STATUS_CANCELADO:
        if application.is_terminal:
            raise _illegal(application, f"'{from_status}' is terminal")
    elif (from_status, to_status) not in VALID_TRANSITIONS:
        raise _illegal(application, f"'{from_status}' -> '{to_status}' is not allowed")

    application.status = to_status
    db.session.flush()

    append_event(
        workshop_id=application.workshop_id,
        event_type=event_type,
        entity_type="application",
        entity_id=application.id,
        application_id=application.id,
        from_status=from_status,
        to_status=to_status,
        actor=actor,
        note=note,
        payload=payload,
    )
    current_app.logger.info("Application %s: %s -> %s", application.id, from_status, to_status)
    return application


def _window_elapsed(application: Application, now: datetime | None = None) -> bool:
    """True once more than the configured number of whole days has passed since the first result."""
    first_date = as_naive_utc(application.inspection_1_date)
    if first_date is None:
        return False
    window_days = current_app.config.get("SECOND_INSPECTION_WINDOW_DAYS", 60)
    return ((as_naive_utc(now) or utcnow()) - first_date).days > window_days


def _hold_application(application: Application, action: str) -> None:
    """
    Contend on the application row inside the caller's transaction.

    Bumps version_id only if the application is still the non-terminal
    version read by the guard, so a concurrent transition (cancel) either
    lands first and this raises, or lands after and fails its own
    version-checked flush.
    """
    held = compare_and_set(
        Application,
        Application.id == application.id,
        Application.version_id == application.version_id,
        Application.status.notin_(TERMINAL_STATUSES),
        values={},
    )
    if held:
        return
    fresh = _load(application.id)
    if fresh.is_terminal:
        raise _illegal(fresh, f"cannot {action} in status '{fresh.status}'")
    raise ConflictError(
        f"Application {application.id} changed concurrently",
        entity_type="application",
        entity_id=application.id,
        observed=fresh.state(),
    )


def _completed_attempt_result(application: Application, is_second: bool) -> str:
    inspection = inspection_service.get_attempt(application.id, is_second)
    label = "second" if is_second else "first"
    if inspection is None:
        raise _illegal(application, f"no {label} inspection has been started")
    result = inspection_service.attempt_result(inspection.id)
    if result == inspection_service.ATTEMPT_INCOMPLETE:
        raise IllegalTransitionError(
            f"Application {application.id}: {label} inspection is incomplete",
            entity_type="inspection",
            entity_id=inspection.id,
            observed={**application.state(), "attempt_result": result},
        )
    return result


# ================================================================================
# QUERIES
# ================================================================================

def get_application(application_id: int, *, workshop_id: int | None = None) -> Application:
    return _load(application_id, workshop_id)


def get_state(application_id: int, *, workshop_id: int | None = None) -> dict:
    """(status, result, result_2) as polled by certificate issuance."""
    return _load(application_id, workshop_id).state()


def list_applications(
    workshop_id: int,
    *,
    status: str | None = None,
    q: str | None = None,
    limit: int = 200,
) -> list[Application]:
    """Newest first. q matches the plate (normalization applied) or the owner/driver refs."""
    require_workshop(workshop_id)
    query = db.session.query(Application).filter(Application.workshop_id == workshop_id)
    if status:
        if status not in APPLICATION_STATUSES:
            raise InvalidFormatError(
                f"Invalid status '{status}'. Must be one of: {', '.join(APPLICATION_STATUSES)}",
                entity_type="application",
            )
        query = query.filter(Application.status == status)
    if q:
        needle = q.strip()
        plate_needle = needle.upper().replace("-", "").replace(" ", "")
        query = query.filter(
            or_(
                Application.license_plate.like(f"%{plate_needle}%"),
                Application.owner_ref.ilike(f"%{needle}%"),
                Application.driver_ref.ilike(f"%{needle}%"),
            )
        )
    return query.order_by(Application.id.desc()).limit(limit).all()


def find_continuable(workshop_id: int, license_plate: str, *, now: datetime | None = None) -> Application:
    """
    The "continue application" search.

    Returns the most recent open application of the plate whose first result
    is Condicional and whose second result is still unset. When the plate only
    has Condicional applications that already went through the second
    inspection, AlreadyFinalizedError carries the observed result_2. A match
    whose second-inspection window has elapsed is IllegalTransitionError.
    """
    require_workshop(workshop_id)
    plate = validate_plate(license_plate)

    candidates = (
        db.session.query(Application)
        .filter(
            Application.workshop_id == workshop_id,
            Application.license_plate == plate,
            Application.result == RESULT_CONDICIONAL,
        )
        .order_by(Application.id.desc())
        .all()
    )

    for application in candidates:
        if application.result_2 is None and application.status not in TERMINAL_STATUSES:
            if _window_elapsed(application, now):
                window_days = current_app.config.get("SECOND_INSPECTION_WINDOW_DAYS", 60)
                raise _illegal(application, f"second inspection window of {window_days} days has elapsed")
            return application

    finalized = [a for a in candidates if a.result_2 is not None]
    if finalized:
        latest = finalized[0]
        raise AlreadyFinalizedError(
            f"Plate {plate} already completed its second inspection with result {latest.result_2}",
            entity_type="application",
            entity_id=latest.id,
            observed=latest.state(),
        )

    raise NotFoundError(
        f"No application awaiting a second inspection for plate {plate}",
        entity_type="application",
        entity_id=plate,
    )


def application_history(application_id: int, *, workshop_id: int | None = None) -> list:
    application = _load(application_id, workshop_id)
    return list_events(workshop_id=application.workshop_id, application_id=application.id)


# ================================================================================
# TRANSITIONS
# ================================================================================

def create_application(
    workshop_id: int,
    license_plate: str,
    *,
    owner_ref: str | None = None,
    driver_ref: str | None = None,
    vehicle: dict | None = None,
    actor: str | None = None,
) -> Application:
    """Open a Pendiente application and make sure the vehicle is on record."""
    def _op():
        require_workshop(workshop_id)
        plate = validate_plate(license_plate)
        details = vehicle or {}
        register_vehicle(
            plate,
            brand=details.get("brand"),
            model=details.get("model"),
            year=details.get("year"),
        )

        application = Application(
            workshop_id=workshop_id,
            status=STATUS_PENDIENTE,
            license_plate=plate,
            owner_ref=owner_ref,
            driver_ref=driver_ref,
        )
        db.session.add(application)
        db.session.flush()

        append_event(
            workshop_id=workshop_id,
            event_type="application.created",
            entity_type="application",
            entity_id=application.id,
            application_id=application.id,
            to_status=STATUS_PENDIENTE,
            actor=actor,
            payload={"license_plate": plate},
        )
        current_app.logger.info("Application %s created for %s", application.id, plate)
        return application

    return run_in_transaction(_op)


def start_application(application_id: int, *, workshop_id: int | None = None, actor: str | None = None) -> Application:
    def _op():
        application = _load(application_id, workshop_id, lock=True)
        _require_status(application, STATUS_PENDIENTE, "start")
        return _transition(application, STATUS_EN_CURSO, event_type="application.started", actor=actor)

    return run_in_transaction(_op)


def complete_first_inspection(
    application_id: int,
    *,
    workshop_id: int | None = None,
    actor: str | None = None,
    inspected_at: datetime | None = None,
) -> Application:
    """
    Write result from the completed first attempt and route the application.

    Raises:
        AlreadyFinalizedError: result already written
        IllegalTransitionError: not En curso, or the attempt is missing/incomplete
    """
    def _op():
        application = _load(application_id, workshop_id, lock=True)
        if application.result is not None:
            raise AlreadyFinalizedError(
                f"Application {application.id} already has first result {application.result}",
                entity_type="application",
                entity_id=application.id,
                observed=application.state(),
            )
        _require_status(application, STATUS_EN_CURSO, "complete the first inspection")

        result = _completed_attempt_result(application, is_second=False)
        target = _route(_first_router_for_app(), application, result, FIRST_RESULT_TARGETS)

        application.result = result
        application.inspection_1_date = inspected_at or utcnow()
        return _transition(
            application,
            target,
            event_type="application.first_inspection_completed",
            actor=actor,
            payload={"result": result},
        )

    return run_in_transaction(_op)


def begin_second_inspection(
    application_id: int,
    *,
    workshop_id: int | None = None,
    actor: str | None = None,
    now: datetime | None = None,
) -> Application:
    """
    Start the conditional retry and create the second attempt.

    Guard order:
        missing                          -> NotFoundError
        result != Condicional            -> IllegalTransitionError
        result_2 already set             -> AlreadyFinalizedError (state untouched)
        status not eligible              -> IllegalTransitionError
        window elapsed                   -> IllegalTransitionError
        lost the conditional UPDATE      -> ConflictError
    """
    def _op():
        application = _load(application_id, workshop_id)

        if application.result != RESULT_CONDICIONAL:
            raise _illegal(
                application,
                f"second inspection requires a Condicional first result (got '{application.result}')",
            )
        if application.result_2 is not None:
            raise AlreadyFinalizedError(
                f"Application {application.id} already completed its second inspection "
                f"with result {application.result_2}",
                entity_type="application",
                entity_id=application.id,
                observed=application.state(),
            )
        if application.status not in SECOND_INSPECTION_SOURCES:
            raise _illegal(application, f"cannot start a second inspection from status '{application.status}'")

        if _window_elapsed(application, now):
            window_days = current_app.config.get("SECOND_INSPECTION_WINDOW_DAYS", 60)
            raise _illegal(application, f"second inspection window of {window_days} days has elapsed")

        from_status = application.status
        won = compare_and_set(
            Application,
            Application.id == application.id,
            Application.status == from_status,
            Application.result == RESULT_CONDICIONAL,
            Application.result_2.is_(None),
            Application.version_id == application.version_id,
            values={"status": STATUS_SEGUNDA_INSPECCION},
        )
        if not won:
            fresh = _load(application.id)
            raise ConflictError(
                f"Application {application.id} changed concurrently",
                entity_type="application",
                entity_id=application.id,
                observed=fresh.state(),
            )

        application = _load(application.id)
        append_event(
            workshop_id=application.workshop_id,
            event_type="application.second_inspection_started",
            entity_type="application",
            entity_id=application.id,
            application_id=application.id,
            from_status=from_status,
            to_status=STATUS_SEGUNDA_INSPECCION,
            actor=actor,
        )
        inspection_service.ensure(application.id, True, commit=False)
        current_app.logger.info("Application %s: %s -> %s", application.id, from_status, STATUS_SEGUNDA_INSPECCION)
        return application

    return run_in_transaction(_op)


def complete_second_inspection(
    application_id: int,
    *,
    workshop_id: int | None = None,
    actor: str | None = None,
    inspected_at: datetime | None = None,
) -> Application:
    """
    Write result_2 from the completed second attempt and route the application.

    Raises:
        AlreadyFinalizedError: result_2 already written
        IllegalTransitionError: not in Segunda Inspección, or the attempt is missing/incomplete
    """
    def _op():
        application = _load(application_id, workshop_id, lock=True)
        if application.result_2 is not None:
            raise AlreadyFinalizedError(
                f"Application {application.id} already completed its second inspection "
                f"with result {application.result_2}",
                entity_type="application",
                entity_id=application.id,
                observed=application.state(),
            )
        _require_status(application, STATUS_SEGUNDA_INSPECCION, "complete the second inspection")
        if application.result != RESULT_CONDICIONAL:
            raise _illegal(application, "second result requires a Condicional first result")

        result_2 = _completed_attempt_result(application, is_second=True)
        target = _route(_second_router or route_second_default, application, result_2, SECOND_RESULT_TARGETS)

        application.result_2 = result_2
        application.inspection_2_date = inspected_at or utcnow()
        return _transition(
            application,
            target,
            event_type="application.second_inspection_completed",
            actor=actor,
            payload={"result_2": result_2},
        )

    return run_in_transaction(_op)


def send_to_certificate(application_id: int, *, workshop_id: int | None = None, actor: str | None = None) -> Application:
    def _op():
        application = _load(application_id, workshop_id, lock=True)
        _require_status(application, STATUS_A_INSPECCIONAR, "send to certificate issuance")
        return _transition(application, STATUS_EMITIR_CRT, event_type="application.sent_to_certificate", actor=actor)

    return run_in_transaction(_op)


def mark_completed(application_id: int, *, workshop_id: int | None = None, actor: str | None = None) -> Application:
    """Called once the certificate has been issued."""
    def _op():
        application = _load(application_id, workshop_id, lock=True)
        _require_status(application, STATUS_EMITIR_CRT, "complete")
        return _transition(application, STATUS_COMPLETADO, event_type="application.completed", actor=actor)

    return run_in_transaction(_op)


def cancel_application(
    application_id: int,
    *,
    workshop_id: int | None = None,
    actor: str | None = None,
    reason: str | None = None,
) -> Application:
    """Cancel a non-terminal application; a sticker bound to it goes back to Disponible."""
    def _op():
        application = _load(application_id, workshop_id, lock=True)
        if application.is_terminal:
            raise _illegal(application, f"'{application.status}' is terminal")

        sticker = sticker_service.find_by_plate(application.license_plate, workshop_id=application.workshop_id)
        released = None
        if sticker is not None and sticker.assigned_application_id in (None, application.id):
            released = sticker_service.release(
                application.license_plate,
                keep_unavailable=False,
                workshop_id=application.workshop_id,
                actor=actor,
                commit=False,
            )

        return _transition(
            application,
            STATUS_CANCELADO,
            event_type="application.cancelled",
            actor=actor,
            note=reason,
            payload={"released_sticker": released.sticker_number} if released else None,
        )

    return run_in_transaction(_op)


# ================================================================================
# STICKERS
# ================================================================================

def _require_assignable(application: Application) -> str:
    """Guard a sticker binding; the application row is held until the caller commits."""
    if application.is_terminal:
        raise _illegal(application, f"cannot bind a sticker in status '{application.status}'")
    vehicle = require_vehicle(application.license_plate)
    _hold_application(application, "bind a sticker")
    return vehicle.license_plate


def assign_sticker(
    application_id: int,
    *,
    mode: str = "auto",
    workshop_id: int | None = None,
    prefix: str | None = None,
    code: str | None = None,
    suffix: str | None = None,
    sticker_order_id: int | None = None,
    actor: str | None = None,
) -> Sticker:
    """
    Bind a sticker to the application's vehicle.

    mode="auto": next Disponible sticker of the workshop (optionally from one batch).
    mode="manual": the sticker identified by prefix + code + suffix.
    """
    if mode not in ("auto", "manual"):
        raise InvalidFormatError(f"Invalid assignment mode '{mode}'. Must be 'auto' or 'manual'")

    def _op():
        application = _load(application_id, workshop_id)
        plate = _require_assignable(application)
        if mode == "manual":
            return allocation_service.manual_assign(
                application.workshop_id,
                plate,
                prefix,
                code,
                suffix,
                application_id=application.id,
                actor=actor,
                commit=False,
            )
        return allocation_service.auto_assign(
            application.workshop_id,
            plate,
            application_id=application.id,
            sticker_order_id=sticker_order_id,
            actor=actor,
            commit=False,
        )

    return run_in_transaction(_op)


def reassign_sticker(
    application_id: int,
    *,
    workshop_id: int | None = None,
    sticker_order_id: int | None = None,
    actor: str | None = None,
) -> Sticker:
    """Void the application's current sticker and bind the next available one."""
    def _op():
        application = _load(application_id, workshop_id)
        plate = _require_assignable(application)
        return allocation_service.reassign(
            application.workshop_id,
            plate,
            sticker_order_id=sticker_order_id,
            application_id=application.id,
            actor=actor,
            commit=False,
        )

    return run_in_transaction(_op)


def release_sticker(
    application_id: int,
    keep_unavailable: bool = False,
    *,
    workshop_id: int | None = None,
    actor: str | None = None,
) -> Sticker:
    def _op():
        application = _load(application_id, workshop_id)
        return sticker_service.release(
            application.license_plate,
            keep_unavailable,
            workshop_id=application.workshop_id,
            actor=actor,
            commit=False,
        )

    return run_in_transaction(_op)
