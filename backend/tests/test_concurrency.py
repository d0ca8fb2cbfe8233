# Overview: Threaded concurrency coverage for sticker claims, application transitions and step writes.

"""
Concurrency Tests

Real threads against a file-backed SQLite database (an in-memory database
is a single shared connection and would serialize everything). Each worker
runs in its own app context and therefore its own session.
"""

import threading

import pytest

from checkrto import create_app
from checkrto.extensions import db
from checkrto.errors import ConflictError, IllegalTransitionError
from checkrto.models import Application, Sticker, Workshop
from checkrto.models.applications import (
    RESULT_APTO,
    RESULT_CONDICIONAL,
    RESULT_RECHAZADO,
    STATUS_CANCELADO,
    STATUS_SEGUNDA_INSPECCION,
)
from checkrto.models.stickers import STICKER_DISPONIBLE, STICKER_EN_USO
from checkrto.services import (
    allocation_service,
    inspection_service,
    sticker_service,
    step_service,
    workflow_service,
)


PLATES = ["AB100CD", "AB101CD", "AB102CD", "AB103CD", "AB104CD", "AB105CD", "AB106CD", "AB107CD"]


@pytest.fixture
def file_app(tmp_path):
    db_path = tmp_path / "concurrency.db"
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{db_path}",
        'SQLALCHEMY_ENGINE_OPTIONS': {"connect_args": {"timeout": 30}},
        'DB_RETRY_ATTEMPTS': 5,
        'DB_RETRY_BACKOFF': 0.01,
    })

    with app.app_context():
        db.create_all()
        workshop = Workshop(name="Concurrency Workshop", code="CONC", is_active=True)
        db.session.add(workshop)
        db.session.commit()
        app.config["TEST_WORKSHOP_ID"] = workshop.id
        db.session.remove()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _run_threads(app, targets):
    """Run each callable in its own thread and app context; collect (result, error) pairs."""
    results = []
    lock = threading.Lock()
    barrier = threading.Barrier(len(targets))

    def worker(target):
        with app.app_context():
            try:
                barrier.wait()
                value = target()
                with lock:
                    results.append((value, None))
            except Exception as exc:
                with lock:
                    results.append((None, exc))
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(t,)) for t in targets]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


def _run_in_thread(app, target):
    """Run target to completion in another thread (own app context) and return (result, error)."""
    outcome = {}

    def worker():
        with app.app_context():
            try:
                outcome["value"] = target()
            except Exception as exc:
                outcome["error"] = exc
            finally:
                db.session.remove()

    thread = threading.Thread(target=worker)
    thread.start()
    thread.join()
    return outcome.get("value"), outcome.get("error")


def test_concurrent_auto_assign_yields_distinct_stickers(file_app):
    workshop_id = file_app.config["TEST_WORKSHOP_ID"]
    with file_app.app_context():
        sticker_service.register_stickers(
            workshop_id, sticker_service.build_sticker_numbers("C", 1, len(PLATES), pad=3)
        )
        db.session.remove()

    def claim_for(plate):
        return lambda: allocation_service.auto_assign(workshop_id, plate).id

    results = _run_threads(file_app, [claim_for(p) for p in PLATES])

    errors = [e for _, e in results if e is not None]
    assert errors == []
    claimed = [v for v, _ in results]
    assert len(claimed) == len(PLATES)
    assert len(set(claimed)) == len(PLATES)

    with file_app.app_context():
        assert db.session.query(Sticker).filter_by(status=STICKER_DISPONIBLE).count() == 0
        plates = {s.assigned_license_plate for s in db.session.query(Sticker).filter_by(status=STICKER_EN_USO)}
        assert plates == set(PLATES)
        db.session.remove()


def test_concurrent_assign_same_sticker_has_one_winner(file_app):
    workshop_id = file_app.config["TEST_WORKSHOP_ID"]
    with file_app.app_context():
        order = sticker_service.register_stickers(workshop_id, ["ONE1"])
        sticker_id = db.session.query(Sticker.id).filter_by(sticker_order_id=order.id).scalar()
        db.session.remove()

    results = _run_threads(file_app, [
        lambda: sticker_service.assign(sticker_id, "AB100CD", workshop_id).id,
        lambda: sticker_service.assign(sticker_id, "AB101CD", workshop_id).id,
    ])

    winners = [v for v, e in results if e is None]
    losers = [e for _, e in results if e is not None]
    assert winners == [sticker_id]
    assert len(losers) == 1
    assert isinstance(losers[0], ConflictError)


def test_concurrent_second_inspection_start_has_one_winner(file_app):
    workshop_id = file_app.config["TEST_WORKSHOP_ID"]
    with file_app.app_context():
        steps = step_service.set_steps(workshop_id, [{"name": "Frenos"}, {"name": "Luces"}])
        application = workflow_service.create_application(workshop_id, "AB100CD")
        workflow_service.start_application(application.id)
        first = inspection_service.ensure(application.id, False)
        inspection_service.record_step(first.id, steps[0].id, RESULT_APTO)
        inspection_service.record_step(first.id, steps[1].id, RESULT_CONDICIONAL)
        workflow_service.complete_first_inspection(application.id)
        application_id = application.id
        db.session.remove()

    results = _run_threads(file_app, [
        lambda: workflow_service.begin_second_inspection(application_id).status,
        lambda: workflow_service.begin_second_inspection(application_id).status,
        lambda: workflow_service.begin_second_inspection(application_id).status,
    ])

    winners = [v for v, e in results if e is None]
    losers = [e for _, e in results if e is not None]
    assert winners == [STATUS_SEGUNDA_INSPECCION]
    # A loser either lost the conditional UPDATE or read the state after the winner committed
    assert len(losers) == 2
    assert all(isinstance(e, (ConflictError, IllegalTransitionError)) for e in losers)

    with file_app.app_context():
        app_row = db.session.get(Application, application_id)
        assert app_row.status == STATUS_SEGUNDA_INSPECCION
        assert inspection_service.get_attempt(application_id, True) is not None
        db.session.remove()


def _open_application(workshop_id, plate="AB100CD"):
    application = workflow_service.create_application(workshop_id, plate)
    workflow_service.start_application(application.id)
    return application.id


def test_cancel_between_guard_and_claim_blocks_assign(file_app, monkeypatch):
    workshop_id = file_app.config["TEST_WORKSHOP_ID"]
    with file_app.app_context():
        sticker_service.register_stickers(workshop_id, ["S1"])
        application_id = _open_application(workshop_id)
        db.session.remove()

    original = workflow_service.require_vehicle
    cancelled = []

    def require_vehicle_then_cancel(plate):
        if not cancelled:
            cancelled.append(_run_in_thread(file_app, lambda: workflow_service.cancel_application(application_id).status))
        return original(plate)

    monkeypatch.setattr(workflow_service, "require_vehicle", require_vehicle_then_cancel)

    with file_app.app_context():
        with pytest.raises((IllegalTransitionError, ConflictError)):
            workflow_service.assign_sticker(application_id)
        db.session.remove()

    assert cancelled == [(STATUS_CANCELADO, None)]
    with file_app.app_context():
        assert db.session.get(Application, application_id).status == STATUS_CANCELADO
        assert db.session.query(Sticker).filter_by(status=STICKER_EN_USO).count() == 0
        db.session.remove()


def test_assign_landing_during_cancel_is_released(file_app, monkeypatch):
    workshop_id = file_app.config["TEST_WORKSHOP_ID"]
    with file_app.app_context():
        sticker_service.register_stickers(workshop_id, ["S1"])
        application_id = _open_application(workshop_id)
        db.session.remove()

    original = sticker_service.find_by_plate
    assigned = []

    def find_by_plate_after_assign(plate, **kwargs):
        # The assign thread reaches find_by_plate too; only the first caller (cancel) interleaves
        if not assigned:
            assigned.append(None)
            assigned[0] = _run_in_thread(file_app, lambda: workflow_service.assign_sticker(application_id).sticker_number)
        return original(plate, **kwargs)

    monkeypatch.setattr(sticker_service, "find_by_plate", find_by_plate_after_assign)

    with file_app.app_context():
        assert workflow_service.cancel_application(application_id).status == STATUS_CANCELADO
        db.session.remove()

    assert assigned == [("S1", None)]
    with file_app.app_context():
        sticker = db.session.query(Sticker).filter_by(sticker_number="S1").one()
        assert sticker.status == STICKER_DISPONIBLE
        assert sticker.assigned_license_plate is None
        db.session.remove()


def test_step_write_during_completion_is_not_lost(file_app, monkeypatch):
    workshop_id = file_app.config["TEST_WORKSHOP_ID"]
    with file_app.app_context():
        steps = step_service.set_steps(workshop_id, [{"name": "Frenos"}, {"name": "Luces"}])
        step_ids = [s.id for s in steps]
        application_id = _open_application(workshop_id)
        first = inspection_service.ensure(application_id, False)
        inspection_id = first.id
        for step_id in step_ids:
            inspection_service.record_step(inspection_id, step_id, RESULT_APTO)
        db.session.remove()

    original = workflow_service._completed_attempt_result
    rewrites = []

    def derive_then_rewrite(application, is_second):
        result = original(application, is_second)
        if not rewrites:
            rewrites.append(_run_in_thread(
                file_app,
                lambda: inspection_service.record_step(inspection_id, step_ids[0], RESULT_RECHAZADO).status,
            ))
        return result

    monkeypatch.setattr(workflow_service, "_completed_attempt_result", derive_then_rewrite)

    with file_app.app_context():
        application = workflow_service.complete_first_inspection(application_id)
        assert application.result == RESULT_RECHAZADO
        assert application.result == inspection_service.attempt_result(inspection_id)
        db.session.remove()

    assert rewrites == [(RESULT_RECHAZADO, None)]
