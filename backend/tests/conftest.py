"""
Pytest fixtures for CheckRTO backend tests.

Provides test database setup, two isolated workshops, a step checklist,
a sticker batch and the test client.
"""

import pytest
from checkrto import create_app
from checkrto.extensions import db
from checkrto.models import Workshop
from checkrto.services import sticker_service, step_service, workflow_service


PLATE_1 = "AB123CD"
PLATE_2 = "ABC123"
PLATE_3 = "AC456DE"

STEP_NAMES = ["Frenos", "Luces", "Suspension"]


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DB_RETRY_BACKOFF': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(autouse=True)
def default_routers():
    """Routing policies are module state; every test starts from the defaults."""
    workflow_service.set_first_result_router(None)
    workflow_service.set_second_result_router(None)
    yield
    workflow_service.set_first_result_router(None)
    workflow_service.set_second_result_router(None)


@pytest.fixture(scope='function')
def workshop_a(db_session):
    """Create Workshop A (first tenant)."""
    workshop = Workshop(name="Taller A - Centro", code="CENTRO", is_active=True)
    db_session.add(workshop)
    db_session.commit()
    return workshop


@pytest.fixture(scope='function')
def workshop_b(db_session):
    """Create Workshop B (second tenant)."""
    workshop = Workshop(name="Taller B - Norte", code="NORTE", is_active=True)
    db_session.add(workshop)
    db_session.commit()
    return workshop


@pytest.fixture(scope='function')
def steps_a(workshop_a):
    """Three-step checklist for Workshop A."""
    return step_service.set_steps(workshop_a.id, [{"name": n} for n in STEP_NAMES])


@pytest.fixture(scope='function')
def stickers_a(workshop_a):
    """Five Disponible stickers A0001..A0005 in Workshop A, intake order = number order."""
    order = sticker_service.register_stickers(
        workshop_a.id,
        sticker_service.build_sticker_numbers("A", 1, 5, pad=4),
        name="Lote A",
    )
    return sticker_service.list_stickers(workshop_a.id), order


@pytest.fixture(scope='function')
def stickers_b(workshop_b):
    order = sticker_service.register_stickers(
        workshop_b.id,
        sticker_service.build_sticker_numbers("B", 1, 3, pad=4),
        name="Lote B",
    )
    return sticker_service.list_stickers(workshop_b.id), order


@pytest.fixture(scope='function')
def make_application(db_session):
    """Factory: Pendiente application for a plate, En curso when start is set."""
    def _make(workshop, plate=PLATE_1, *, start=True):
        application = workflow_service.create_application(workshop.id, plate, owner_ref="owner-1")
        if start:
            application = workflow_service.start_application(application.id)
        return application
    return _make
