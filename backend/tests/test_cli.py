# Overview: Pytest coverage for the flask CLI command groups.

from checkrto.models import Workshop
from checkrto.models.stickers import STICKER_DISPONIBLE
from checkrto.services import sticker_service, step_service, workflow_service

from conftest import PLATE_1


def test_workshops_create_and_list(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["workshops", "create", "--name", "Taller Sur", "--code", "SUR"])
    assert "PASS Created workshop: Taller Sur" in result.output
    assert db_session.query(Workshop).filter_by(code="SUR").count() == 1

    result = runner.invoke(args=["workshops", "list"])
    assert "Taller Sur" in result.output


def test_steps_set_keeps_argument_order(app, workshop_a):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["steps", "set", "--workshop-id", str(workshop_a.id), "Luces", "Frenos"])
    assert "PASS 2 active steps" in result.output
    assert [s.name for s in step_service.get_steps(workshop_a.id)] == ["Luces", "Frenos"]


def test_stickers_intake_and_summary(app, workshop_a):
    runner = app.test_cli_runner()

    result = runner.invoke(args=[
        "stickers", "intake", "--workshop-id", str(workshop_a.id),
        "--prefix", "CL", "--count", "3", "--pad", "3", "--name", "Lote CLI",
    ])
    assert "PASS Registered 3 stickers (CL001 .. CL003)" in result.output
    assert sticker_service.status_summary(workshop_a.id)[STICKER_DISPONIBLE] == 3

    result = runner.invoke(args=["stickers", "summary", "--workshop-id", str(workshop_a.id)])
    assert "Lote CLI" in result.output


def test_stickers_intake_duplicate_fails(app, workshop_a, stickers_a):
    runner = app.test_cli_runner()
    result = runner.invoke(args=[
        "stickers", "intake", "--workshop-id", str(workshop_a.id), "--prefix", "A", "--count", "1", "--pad", "4",
    ])
    assert result.output.startswith("FAIL")


def test_stickers_release_void(app, workshop_a, stickers_a, make_application):
    application = make_application(workshop_a)
    workflow_service.assign_sticker(application.id)

    result = app.test_cli_runner().invoke(args=[
        "stickers", "release", "--workshop-id", str(workshop_a.id), "--plate", PLATE_1, "--void",
    ])
    assert "PASS Sticker A0001 is now No Disponible" in result.output


def test_applications_show(app, workshop_a, steps_a, make_application):
    application = make_application(workshop_a)

    result = app.test_cli_runner().invoke(args=["applications", "show", str(application.id)])
    assert f"Application {application.id}" in result.output
    assert "application.created" in result.output


def test_applications_show_missing(app, db_session):
    result = app.test_cli_runner().invoke(args=["applications", "show", "424242"])
    assert result.output.startswith("FAIL")
