# Overview: Service-layer operations for inspections; per-attempt step results and derived result.

"""
Inspection Tracker

Records step outcomes for one inspection attempt (first or second) and
derives the attempt-level result:

    Incomplete   if any step is Unset (or there are no steps)
    Rechazado    else if any step is Rechazado
    Condicional  else if any step is Condicional
    Apto         otherwise

Once complete, the worst step wins: Rechazado > Condicional > Apto.
Unset is stored as NULL.

Attempts are seeded from the workshop's step configuration at creation
time. Later configuration edits never add or remove steps of an existing
attempt.
"""

from __future__ import annotations

from typing import Iterable

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import (
    AlreadyFinalizedError,
    ConflictError,
    IllegalTransitionError,
    InvalidFormatError,
    InvalidStepError,
    NotFoundError,
)
from ..models import (
    Application,
    Inspection,
    InspectionObservationCheck,
    InspectionStepResult,
    StepObservation,
)
from ..models.applications import (
    RESULTS,
    RESULT_APTO,
    RESULT_CONDICIONAL,
    RESULT_RECHAZADO,
    TERMINAL_STATUSES,
)
from .concurrency import compare_and_set, lock_for_update, run_in_transaction
from .step_service import get_steps


ATTEMPT_INCOMPLETE = "Incomplete"


def derive_attempt_result(statuses: Iterable[str | None]) -> str:
    """Pure worst-of derivation over step statuses (None = Unset)."""
    seen = list(statuses)
    if not seen or None in seen:
        return ATTEMPT_INCOMPLETE
    if RESULT_RECHAZADO in seen:
        return RESULT_RECHAZADO
    if RESULT_CONDICIONAL in seen:
        return RESULT_CONDICIONAL
    return RESULT_APTO


def _require_application(application_id: int, workshop_id: int | None = None) -> Application:
    application = db.session.get(Application, application_id, populate_existing=True)
    if application is None or (workshop_id is not None and application.workshop_id != workshop_id):
        raise NotFoundError(
            f"Application {application_id} not found",
            entity_type="application",
            entity_id=application_id,
        )
    return application


def get_inspection(inspection_id: int, *, workshop_id: int | None = None) -> Inspection:
    inspection = db.session.get(Inspection, inspection_id)
    if inspection is None or (
        workshop_id is not None and inspection.application.workshop_id != workshop_id
    ):
        raise NotFoundError(
            f"Inspection {inspection_id} not found",
            entity_type="inspection",
            entity_id=inspection_id,
        )
    return inspection


def get_attempt(application_id: int, is_second: bool) -> Inspection | None:
    return (
        db.session.query(Inspection)
        .filter_by(application_id=application_id, is_second=bool(is_second))
        .first()
    )


def _seed(application: Application, is_second: bool) -> Inspection:
    inspection = Inspection(application_id=application.id, is_second=bool(is_second))
    db.session.add(inspection)
    db.session.flush()

    for step in get_steps(application.workshop_id):
        db.session.add(
            InspectionStepResult(
                inspection_id=inspection.id,
                step_id=step.id,
                position=step.position,
                status=None,
            )
        )
    db.session.flush()
    return inspection


def ensure(
    application_id: int,
    is_second: bool,
    *,
    workshop_id: int | None = None,
    commit: bool = True,
) -> Inspection:
    """
    Get-or-create the attempt of the requested kind.

    Idempotent: an existing attempt is returned untouched (recorded step
    statuses are never reset). A second attempt can only be created for an
    application whose first result is Condicional.
    """
    def _op():
        application = _require_application(application_id, workshop_id)

        existing = get_attempt(application.id, is_second)
        if existing is not None:
            return existing

        if is_second and application.result != RESULT_CONDICIONAL:
            raise IllegalTransitionError(
                f"Application {application.id} cannot have a second inspection: "
                f"first result is '{application.result}'",
                entity_type="application",
                entity_id=application.id,
                observed=application.state(),
            )
        if application.is_terminal:
            raise IllegalTransitionError(
                f"Application {application.id} is '{application.status}'",
                entity_type="application",
                entity_id=application.id,
                observed=application.state(),
            )

        try:
            return _seed(application, is_second)
        except IntegrityError:
            if not commit:
                raise
            # A concurrent ensure created it first; return the winner's attempt
            db.session.rollback()
            current_app.logger.debug("Concurrent ensure on application %s resolved to existing attempt", application_id)
            return get_attempt(application_id, is_second)

    return run_in_transaction(_op, commit=commit)


def attempt_result(inspection_id: int) -> str:
    """Apto | Condicional | Rechazado | Incomplete for one attempt."""
    inspection = get_inspection(inspection_id)
    rows = db.session.query(InspectionStepResult.status).filter_by(inspection_id=inspection.id).all()
    return derive_attempt_result(row[0] for row in rows)


def _load_application_for_write(application_id: int) -> Application:
    return (
        lock_for_update(db.session.query(Application).filter(Application.id == application_id))
        .populate_existing()
        .one()
    )


def _refuse_write(application: Application, inspection: Inspection) -> None:
    slot = application.result_2 if inspection.is_second else application.result
    if slot is not None:
        raise AlreadyFinalizedError(
            f"{'Second' if inspection.is_second else 'First'} inspection of application "
            f"{application.id} is already finalized with result '{slot}'",
            entity_type="inspection",
            entity_id=inspection.id,
            observed=application.state(),
        )
    if application.is_terminal:
        raise IllegalTransitionError(
            f"Application {application.id} is '{application.status}'",
            entity_type="application",
            entity_id=application.id,
            observed=application.state(),
        )


def _check_writable(inspection: Inspection) -> None:
    """
    Refuse writes to a finalized attempt and hold the application row.

    The conditional UPDATE bumps the application's version_id while the
    attempt's result slot is still empty, so a concurrent completion that
    derived its result from older step values fails its version-checked
    flush and re-derives.
    """
    application = _load_application_for_write(inspection.application_id)
    _refuse_write(application, inspection)

    slot_column = Application.result_2 if inspection.is_second else Application.result
    held = compare_and_set(
        Application,
        Application.id == application.id,
        Application.version_id == application.version_id,
        slot_column.is_(None),
        Application.status.notin_(TERMINAL_STATUSES),
        values={},
    )
    if not held:
        fresh = _load_application_for_write(application.id)
        _refuse_write(fresh, inspection)
        raise ConflictError(
            f"Application {application.id} changed concurrently",
            entity_type="application",
            entity_id=application.id,
            observed=fresh.state(),
        )


def _validate_status(status: str | None, inspection_id: int) -> None:
    if status is not None and status not in RESULTS:
        raise InvalidFormatError(
            f"Invalid step status '{status}'. Must be one of: {', '.join(RESULTS)}",
            entity_type="inspection",
            entity_id=inspection_id,
        )


def _clean_observations(value, inspection_id: int) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidFormatError(
            f"Observations must be text, got {type(value).__name__}",
            entity_type="inspection",
            entity_id=inspection_id,
        )
    return value.strip() or None


def _step_row(inspection: Inspection, step_id: int) -> InspectionStepResult:
    row = (
        db.session.query(InspectionStepResult)
        .filter_by(inspection_id=inspection.id, step_id=step_id)
        .first()
    )
    if row is None:
        raise InvalidStepError(
            f"Step {step_id} is not part of inspection {inspection.id}",
            entity_type="inspection",
            entity_id=inspection.id,
            observed={"step_id": step_id},
        )
    return row


def record_step(
    inspection_id: int,
    step_id: int,
    status: str | None,
    observations: str | None = None,
    *,
    workshop_id: int | None = None,
) -> InspectionStepResult:
    """
    Overwrite one step's status (None clears it back to Unset).

    observations=None keeps the stored text; pass "" to clear it.
    """
    def _op():
        inspection = get_inspection(inspection_id, workshop_id=workshop_id)
        _validate_status(status, inspection.id)
        cleaned = _clean_observations(observations, inspection.id)
        _check_writable(inspection)

        row = _step_row(inspection, step_id)
        row.status = status
        if observations is not None:
            row.observations = cleaned
        db.session.flush()
        return row

    return run_in_transaction(_op)


def record_steps(
    inspection_id: int,
    items: list[dict],
    *,
    workshop_id: int | None = None,
) -> Inspection:
    """
    Bulk record_step. Every item is validated before anything is written,
    so a bad item leaves the attempt unchanged.

    Each item: {"step_id": int, "status": str | None, "observations": str (optional)}.
    """
    def _op():
        inspection = get_inspection(inspection_id, workshop_id=workshop_id)
        _check_writable(inspection)

        planned = []
        for item in items or []:
            step_id = item.get("step_id")
            status = item.get("status")
            _validate_status(status, inspection.id)
            observations = item.get("observations")
            cleaned = _clean_observations(observations, inspection.id)
            planned.append((_step_row(inspection, step_id), status, observations is not None, cleaned))

        for row, status, has_observations, cleaned in planned:
            row.status = status
            if has_observations:
                row.observations = cleaned
        db.session.flush()
        return inspection

    return run_in_transaction(_op)


def set_global_observations(
    inspection_id: int,
    text: str | None,
    *,
    workshop_id: int | None = None,
) -> Inspection:
    def _op():
        inspection = get_inspection(inspection_id, workshop_id=workshop_id)
        cleaned = _clean_observations(text, inspection.id)
        _check_writable(inspection)
        inspection.global_observations = cleaned
        db.session.flush()
        return inspection

    return run_in_transaction(_op)


def list_step_observations(inspection_id: int, step_id: int, *, workshop_id: int | None = None) -> list[dict]:
    """Canned observations of a step with the ones ticked in this attempt marked checked."""
    inspection = get_inspection(inspection_id, workshop_id=workshop_id)
    _step_row(inspection, step_id)

    checked = {
        row[0]
        for row in db.session.query(InspectionObservationCheck.observation_id)
        .filter_by(inspection_id=inspection.id, step_id=step_id)
        .all()
    }
    options = (
        db.session.query(StepObservation)
        .filter(StepObservation.step_id == step_id, StepObservation.is_active.is_(True))
        .order_by(StepObservation.id.asc())
        .all()
    )
    return [
        {"id": o.id, "description": o.description, "checked": o.id in checked}
        for o in options
    ]


def set_step_observation_checks(
    inspection_id: int,
    step_id: int,
    checked_ids: list[int],
    *,
    workshop_id: int | None = None,
) -> list[dict]:
    """Replace the set of ticked canned observations for a step of this attempt."""
    def _op():
        inspection = get_inspection(inspection_id, workshop_id=workshop_id)
        _check_writable(inspection)
        _step_row(inspection, step_id)

        wanted = set(checked_ids or [])
        valid = {
            row[0]
            for row in db.session.query(StepObservation.id)
            .filter(StepObservation.step_id == step_id, StepObservation.is_active.is_(True))
            .all()
        }
        unknown = wanted - valid
        if unknown:
            raise InvalidFormatError(
                f"Observations {sorted(unknown)} do not belong to step {step_id}",
                entity_type="inspection",
                entity_id=inspection.id,
            )

        db.session.query(InspectionObservationCheck).filter_by(
            inspection_id=inspection.id, step_id=step_id
        ).delete(synchronize_session=False)
        for obs_id in sorted(wanted):
            db.session.add(
                InspectionObservationCheck(inspection_id=inspection.id, step_id=step_id, observation_id=obs_id)
            )
        db.session.flush()

    run_in_transaction(_op)
    return list_step_observations(inspection_id, step_id, workshop_id=workshop_id)
