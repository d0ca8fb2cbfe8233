# Overview: Pytest coverage for the application state machine, second inspection and sticker binding.

"""
Application Workflow Tests

Scenarios follow a vehicle through the workshop:
    Apto on the first inspection -> Emitir CRT -> Completado
    Condicional -> second inspection -> Rechazado -> Completado
plus the refusals: a second inspection after result_2 is written, outside
the window, or from a status that does not allow it.
"""

from datetime import datetime, timedelta

import pytest

from checkrto.errors import (
    AlreadyFinalizedError,
    IllegalTransitionError,
    InvalidFormatError,
    NotFoundError,
)
from checkrto.models import Application, AuditEvent, Vehicle
from checkrto.models.applications import (
    RESULT_APTO,
    RESULT_CONDICIONAL,
    RESULT_RECHAZADO,
    STATUS_A_INSPECCIONAR,
    STATUS_CANCELADO,
    STATUS_COMPLETADO,
    STATUS_EMITIR_CRT,
    STATUS_EN_CURSO,
    STATUS_PENDIENTE,
    STATUS_SEGUNDA_INSPECCION,
)
from checkrto.models.stickers import STICKER_DISPONIBLE, STICKER_EN_USO, STICKER_NO_DISPONIBLE
from checkrto.services import inspection_service, sticker_service, workflow_service

from conftest import PLATE_1, PLATE_2


def _record_all(application_id, steps, statuses, *, is_second=False):
    inspection = inspection_service.ensure(application_id, is_second)
    for step, status in zip(steps, statuses):
        inspection_service.record_step(inspection.id, step.id, status)
    return inspection


def _condicional(make_application, workshop, steps, *, inspected_at=None, plate=PLATE_1):
    application = make_application(workshop, plate)
    _record_all(application.id, steps, [RESULT_APTO, RESULT_CONDICIONAL, RESULT_APTO])
    return workflow_service.complete_first_inspection(application.id, inspected_at=inspected_at)


class TestLifecycle:
    def test_create_registers_vehicle(self, workshop_a, db_session):
        application = workflow_service.create_application(
            workshop_a.id, "ab-123 cd", vehicle={"brand": "Fiat", "model": "Cronos", "year": 2021}
        )
        assert application.status == STATUS_PENDIENTE
        assert application.license_plate == PLATE_1
        vehicle = db_session.query(Vehicle).filter_by(license_plate=PLATE_1).one()
        assert vehicle.brand == "Fiat"

    def test_create_rejects_bad_plate(self, workshop_a):
        with pytest.raises(InvalidFormatError):
            workflow_service.create_application(workshop_a.id, "1234")

    def test_create_unknown_workshop(self, db_session):
        with pytest.raises(NotFoundError):
            workflow_service.create_application(99999, PLATE_1)

    def test_start_only_from_pendiente(self, workshop_a, make_application):
        application = make_application(workshop_a)
        assert application.status == STATUS_EN_CURSO
        with pytest.raises(IllegalTransitionError):
            workflow_service.start_application(application.id)

    def test_apto_to_completed(self, workshop_a, steps_a, stickers_a, make_application):
        application = make_application(workshop_a)
        _record_all(application.id, steps_a, [RESULT_APTO] * 3)

        application = workflow_service.complete_first_inspection(application.id)
        assert application.result == RESULT_APTO
        assert application.status == STATUS_EMITIR_CRT
        assert application.inspection_1_date is not None

        sticker = workflow_service.assign_sticker(application.id)
        assert sticker.status == STICKER_EN_USO
        assert sticker.assigned_application_id == application.id

        application = workflow_service.mark_completed(application.id)
        assert application.status == STATUS_COMPLETADO
        assert application.result_2 is None

    def test_incomplete_attempt_cannot_complete(self, workshop_a, steps_a, make_application):
        application = make_application(workshop_a)
        _record_all(application.id, steps_a, [RESULT_APTO, RESULT_CONDICIONAL])

        with pytest.raises(IllegalTransitionError):
            workflow_service.complete_first_inspection(application.id)
        assert workflow_service.get_state(application.id) == {
            "status": STATUS_EN_CURSO, "result": None, "result_2": None,
        }

    def test_missing_attempt_cannot_complete(self, workshop_a, steps_a, make_application):
        application = make_application(workshop_a)
        with pytest.raises(IllegalTransitionError):
            workflow_service.complete_first_inspection(application.id)

    def test_first_result_written_once(self, workshop_a, steps_a, make_application):
        application = make_application(workshop_a)
        _record_all(application.id, steps_a, [RESULT_APTO] * 3)
        workflow_service.complete_first_inspection(application.id)

        with pytest.raises(AlreadyFinalizedError):
            workflow_service.complete_first_inspection(application.id)

    def test_queue_routing_then_certificate(self, app, workshop_a, steps_a, make_application):
        app.config["FIRST_RESULT_ROUTING"] = "queue"
        try:
            application = make_application(workshop_a)
            _record_all(application.id, steps_a, [RESULT_APTO] * 3)
            application = workflow_service.complete_first_inspection(application.id)
        finally:
            app.config["FIRST_RESULT_ROUTING"] = "certificate"

        assert application.status == STATUS_A_INSPECCIONAR
        application = workflow_service.send_to_certificate(application.id)
        assert application.status == STATUS_EMITIR_CRT

    def test_router_outside_allowed_targets(self, workshop_a, steps_a, make_application):
        workflow_service.set_first_result_router(lambda application, result: STATUS_COMPLETADO)
        application = make_application(workshop_a)
        _record_all(application.id, steps_a, [RESULT_APTO] * 3)

        with pytest.raises(IllegalTransitionError):
            workflow_service.complete_first_inspection(application.id)
        assert workflow_service.get_state(application.id)["result"] is None

    def test_history_lists_transitions(self, workshop_a, steps_a, make_application):
        application = make_application(workshop_a)
        _record_all(application.id, steps_a, [RESULT_APTO] * 3)
        workflow_service.complete_first_inspection(application.id, actor="inspector1")

        events = workflow_service.application_history(application.id)
        assert [e.event_type for e in events] == [
            "application.created",
            "application.started",
            "application.first_inspection_completed",
        ]
        assert events[-1].actor == "inspector1"
        assert events[-1].to_status == STATUS_EMITIR_CRT


class TestSecondInspection:
    def test_condicional_then_rechazado(self, workshop_a, steps_a, stickers_a, make_application):
        application = _condicional(make_application, workshop_a, steps_a)
        assert application.result == RESULT_CONDICIONAL
        sticker = workflow_service.assign_sticker(application.id)

        application = workflow_service.begin_second_inspection(application.id)
        assert application.status == STATUS_SEGUNDA_INSPECCION
        second = inspection_service.get_attempt(application.id, True)
        assert second is not None
        assert all(r.status is None for r in second.step_results)

        _record_all(application.id, steps_a, [RESULT_APTO, RESULT_RECHAZADO, RESULT_APTO], is_second=True)
        application = workflow_service.complete_second_inspection(application.id)

        assert application.result == RESULT_CONDICIONAL
        assert application.result_2 == RESULT_RECHAZADO
        assert application.status == STATUS_COMPLETADO
        assert application.inspection_2_date is not None
        assert sticker_service.get_sticker(sticker.id, workshop_a.id).status == STICKER_EN_USO

    def test_condicional_then_apto_goes_to_certificate(self, workshop_a, steps_a, make_application):
        application = _condicional(make_application, workshop_a, steps_a)
        workflow_service.begin_second_inspection(application.id)
        _record_all(application.id, steps_a, [RESULT_APTO] * 3, is_second=True)

        application = workflow_service.complete_second_inspection(application.id)
        assert application.result_2 == RESULT_APTO
        assert application.status == STATUS_EMITIR_CRT

    def test_already_finalized_leaves_state_unchanged(self, workshop_a, steps_a, make_application, db_session):
        application = _condicional(make_application, workshop_a, steps_a)
        workflow_service.begin_second_inspection(application.id)
        _record_all(application.id, steps_a, [RESULT_RECHAZADO] * 3, is_second=True)
        workflow_service.complete_second_inspection(application.id)
        before = workflow_service.get_state(application.id)
        events_before = db_session.query(AuditEvent).count()

        with pytest.raises(AlreadyFinalizedError) as exc_info:
            workflow_service.begin_second_inspection(application.id)

        assert exc_info.value.observed["result_2"] == RESULT_RECHAZADO
        assert workflow_service.get_state(application.id) == before
        assert db_session.query(AuditEvent).count() == events_before

    def test_second_completion_written_once(self, workshop_a, steps_a, make_application):
        application = _condicional(make_application, workshop_a, steps_a)
        workflow_service.begin_second_inspection(application.id)
        _record_all(application.id, steps_a, [RESULT_APTO] * 3, is_second=True)
        workflow_service.complete_second_inspection(application.id)

        with pytest.raises(AlreadyFinalizedError):
            workflow_service.complete_second_inspection(application.id)

    def test_requires_condicional(self, workshop_a, steps_a, make_application):
        application = make_application(workshop_a)
        _record_all(application.id, steps_a, [RESULT_APTO] * 3)
        workflow_service.complete_first_inspection(application.id)

        with pytest.raises(IllegalTransitionError):
            workflow_service.begin_second_inspection(application.id)

    def test_not_before_first_result(self, workshop_a, steps_a, make_application):
        application = make_application(workshop_a)
        with pytest.raises(IllegalTransitionError):
            workflow_service.begin_second_inspection(application.id)

    def test_started_twice(self, workshop_a, steps_a, make_application):
        application = _condicional(make_application, workshop_a, steps_a)
        workflow_service.begin_second_inspection(application.id)

        with pytest.raises(IllegalTransitionError):
            workflow_service.begin_second_inspection(application.id)
        assert workflow_service.get_state(application.id)["status"] == STATUS_SEGUNDA_INSPECCION

    def test_from_a_inspeccionar(self, workshop_a, steps_a, make_application):
        workflow_service.set_first_result_router(workflow_service.route_first_to_queue)
        application = _condicional(make_application, workshop_a, steps_a)
        assert application.status == STATUS_A_INSPECCIONAR

        application = workflow_service.begin_second_inspection(application.id)
        assert application.status == STATUS_SEGUNDA_INSPECCION

    def test_cancelled_application_cannot_retry(self, workshop_a, steps_a, make_application):
        application = _condicional(make_application, workshop_a, steps_a)
        workflow_service.cancel_application(application.id)

        with pytest.raises(IllegalTransitionError):
            workflow_service.begin_second_inspection(application.id)

    def test_completed_condicional_cannot_reopen(self, workshop_a, steps_a, make_application):
        application = _condicional(make_application, workshop_a, steps_a)
        workflow_service.mark_completed(application.id)

        with pytest.raises(IllegalTransitionError):
            workflow_service.begin_second_inspection(application.id)
        assert workflow_service.get_state(application.id)["status"] == STATUS_COMPLETADO
        assert inspection_service.get_attempt(application.id, True) is None

    def test_window_elapsed(self, workshop_a, steps_a, make_application):
        first_date = datetime(2026, 3, 1, 10, 0, 0)
        application = _condicional(make_application, workshop_a, steps_a, inspected_at=first_date)

        with pytest.raises(IllegalTransitionError):
            workflow_service.begin_second_inspection(application.id, now=first_date + timedelta(days=61))
        assert workflow_service.get_state(application.id)["status"] == STATUS_EMITIR_CRT

        application = workflow_service.begin_second_inspection(application.id, now=first_date + timedelta(days=59))
        assert application.status == STATUS_SEGUNDA_INSPECCION

    def test_window_counts_whole_days(self, workshop_a, steps_a, make_application):
        first_date = datetime(2026, 3, 1, 10, 0, 0)
        application = _condicional(make_application, workshop_a, steps_a, inspected_at=first_date)

        application = workflow_service.begin_second_inspection(
            application.id, now=first_date + timedelta(days=60, hours=12)
        )
        assert application.status == STATUS_SEGUNDA_INSPECCION

    def test_second_router_override(self, workshop_a, steps_a, make_application):
        workflow_service.set_second_result_router(lambda application, result_2: STATUS_COMPLETADO)
        application = _condicional(make_application, workshop_a, steps_a)
        workflow_service.begin_second_inspection(application.id)
        _record_all(application.id, steps_a, [RESULT_APTO] * 3, is_second=True)

        application = workflow_service.complete_second_inspection(application.id)
        assert application.status == STATUS_COMPLETADO


class TestFindContinuable:
    def test_open_condicional(self, workshop_a, steps_a, make_application):
        application = _condicional(make_application, workshop_a, steps_a)
        found = workflow_service.find_continuable(workshop_a.id, "ab-123-cd")
        assert found.id == application.id

    def test_finalized_reports_result_2(self, workshop_a, steps_a, make_application):
        application = _condicional(make_application, workshop_a, steps_a)
        workflow_service.begin_second_inspection(application.id)
        _record_all(application.id, steps_a, [RESULT_RECHAZADO] * 3, is_second=True)
        workflow_service.complete_second_inspection(application.id)

        with pytest.raises(AlreadyFinalizedError) as exc_info:
            workflow_service.find_continuable(workshop_a.id, PLATE_1)
        assert exc_info.value.entity_id == application.id
        assert exc_info.value.observed["result_2"] == RESULT_RECHAZADO

    def test_nothing_to_continue(self, workshop_a, steps_a, make_application):
        make_application(workshop_a)
        with pytest.raises(NotFoundError):
            workflow_service.find_continuable(workshop_a.id, PLATE_1)

    def test_other_workshop_not_visible(self, workshop_a, workshop_b, steps_a, make_application):
        _condicional(make_application, workshop_a, steps_a)
        with pytest.raises(NotFoundError):
            workflow_service.find_continuable(workshop_b.id, PLATE_1)

    def test_expired_window_is_refused(self, workshop_a, steps_a, make_application):
        first_date = datetime(2026, 3, 1, 10, 0, 0)
        application = _condicional(make_application, workshop_a, steps_a, inspected_at=first_date)

        with pytest.raises(IllegalTransitionError) as exc_info:
            workflow_service.find_continuable(workshop_a.id, PLATE_1, now=first_date + timedelta(days=61))
        assert exc_info.value.entity_id == application.id

        found = workflow_service.find_continuable(
            workshop_a.id, PLATE_1, now=first_date + timedelta(days=60, hours=12)
        )
        assert found.id == application.id


class TestCancel:
    def test_cancel_releases_sticker(self, workshop_a, steps_a, stickers_a, make_application):
        application = make_application(workshop_a)
        sticker = workflow_service.assign_sticker(application.id)

        application = workflow_service.cancel_application(application.id, reason="cliente desistio")
        assert application.status == STATUS_CANCELADO

        released = sticker_service.get_sticker(sticker.id, workshop_a.id)
        assert released.status == STICKER_DISPONIBLE
        assert released.assigned_license_plate is None

    def test_cancel_terminal(self, workshop_a, make_application):
        application = make_application(workshop_a)
        workflow_service.cancel_application(application.id)
        with pytest.raises(IllegalTransitionError):
            workflow_service.cancel_application(application.id)

    def test_cancel_pendiente_without_sticker(self, workshop_a, make_application):
        application = make_application(workshop_a, start=False)
        application = workflow_service.cancel_application(application.id)
        assert application.status == STATUS_CANCELADO


class TestStickerBinding:
    def test_manual_assignment(self, workshop_a, stickers_a, make_application):
        application = make_application(workshop_a)
        sticker = workflow_service.assign_sticker(application.id, mode="manual", prefix="A", code="0004")
        assert sticker.sticker_number == "A0004"
        assert sticker.assigned_license_plate == PLATE_1

    def test_binding_holds_application_version(self, workshop_a, stickers_a, make_application, db_session):
        application = make_application(workshop_a)
        before = db_session.query(Application.version_id).filter_by(id=application.id).scalar()

        workflow_service.assign_sticker(application.id)
        after = db_session.query(Application.version_id).filter_by(id=application.id).scalar()
        assert after == before + 1

    def test_unknown_mode(self, workshop_a, stickers_a, make_application):
        application = make_application(workshop_a)
        with pytest.raises(InvalidFormatError):
            workflow_service.assign_sticker(application.id, mode="random")

    def test_terminal_application_refused(self, workshop_a, stickers_a, make_application):
        application = make_application(workshop_a)
        workflow_service.cancel_application(application.id)
        with pytest.raises(IllegalTransitionError):
            workflow_service.assign_sticker(application.id)
        assert len(sticker_service.list_available(workshop_a.id).all()) == 5

    def test_vehicle_must_exist(self, workshop_a, stickers_a, make_application, db_session):
        application = make_application(workshop_a)
        db_session.query(Vehicle).filter_by(license_plate=PLATE_1).delete()
        db_session.commit()

        with pytest.raises(NotFoundError):
            workflow_service.assign_sticker(application.id)

    def test_reassign_voids_previous(self, workshop_a, stickers_a, make_application):
        application = make_application(workshop_a)
        old = workflow_service.assign_sticker(application.id)

        new = workflow_service.reassign_sticker(application.id)
        assert new.id != old.id
        assert new.assigned_application_id == application.id
        assert sticker_service.get_sticker(old.id, workshop_a.id).status == STICKER_NO_DISPONIBLE

    def test_release_by_application(self, workshop_a, stickers_a, make_application):
        application = make_application(workshop_a)
        sticker = workflow_service.assign_sticker(application.id)

        released = workflow_service.release_sticker(application.id, keep_unavailable=True)
        assert released.id == sticker.id
        assert released.status == STICKER_NO_DISPONIBLE

    def test_two_applications_two_stickers(self, workshop_a, stickers_a, make_application):
        first = make_application(workshop_a, PLATE_1)
        second = make_application(workshop_a, PLATE_2)
        s1 = workflow_service.assign_sticker(first.id)
        s2 = workflow_service.assign_sticker(second.id)
        assert {s1.sticker_number, s2.sticker_number} == {"A0001", "A0002"}


class TestListing:
    def test_list_filters(self, workshop_a, steps_a, make_application):
        first = make_application(workshop_a, PLATE_1)
        make_application(workshop_a, PLATE_2, start=False)

        assert [a.id for a in workflow_service.list_applications(workshop_a.id, status=STATUS_EN_CURSO)] == [first.id]
        assert [a.license_plate for a in workflow_service.list_applications(workshop_a.id, q="abc-123")] == [PLATE_2]

    def test_list_bad_status(self, workshop_a):
        with pytest.raises(InvalidFormatError):
            workflow_service.list_applications(workshop_a.id, status="Cerrado")
