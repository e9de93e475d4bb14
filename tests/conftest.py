"""
Shared pytest fixtures for the KEEL familiarisation test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_ship_type / make_vessel / make_cadet / make_section / make_task:
      ORM factories that commit and return the row
    - fleet: a small seeded structure used by most service and API tests
"""

from datetime import date

import pytest

from keel import create_app
from keel.models import db as _db
from keel.models.assignment import STATUS_ACTIVE, VesselAssignment
from keel.models.familiarisation import SectionTemplate, TaskTemplate
from keel.models.reference import Cadet, ShipType, Vessel


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── ORM factories ────────────────────────────────────────────────────────


@pytest.fixture()
def make_ship_type():
    def _make(name="Oil Tanker"):
        st = ShipType(name=name)
        _db.session.add(st)
        _db.session.commit()
        return st
    return _make


@pytest.fixture()
def make_vessel():
    def _make(name="MV Keel Star", ship_type=None, is_active=True, imo_number=None):
        v = Vessel(
            name=name,
            ship_type_id=ship_type.id if ship_type is not None else None,
            is_active=is_active,
            imo_number=imo_number,
        )
        _db.session.add(v)
        _db.session.commit()
        return v
    return _make


@pytest.fixture()
def make_cadet():
    def _make(full_name="Ada Mariner", category="DECK", email=None):
        c = Cadet(full_name=full_name, category=category, email=email)
        _db.session.add(c)
        _db.session.commit()
        return c
    return _make


@pytest.fixture()
def make_section():
    def _make(section_code="A", title="Safety", order_number=1, ship_type=None):
        s = SectionTemplate(
            section_code=section_code,
            title=title,
            order_number=order_number,
            ship_type_id=ship_type.id if ship_type is not None else None,
        )
        _db.session.add(s)
        _db.session.commit()
        return s
    return _make


@pytest.fixture()
def make_task():
    def _make(section, task_code, cadet_category="DECK", order_number=1,
              is_mandatory=True, task_description=None):
        t = TaskTemplate(
            section_id=section.id,
            task_code=task_code,
            cadet_category=cadet_category,
            order_number=order_number,
            is_mandatory=is_mandatory,
            task_description=task_description or f"Familiarise with {task_code}",
        )
        _db.session.add(t)
        _db.session.commit()
        return t
    return _make


@pytest.fixture()
def make_assignment():
    """Insert an assignment row directly, bypassing service checks."""
    def _make(cadet, vessel, start_date=date(2024, 1, 10), status=STATUS_ACTIVE, end_date=None):
        a = VesselAssignment(
            cadet_id=cadet.id,
            vessel_id=vessel.id,
            start_date=start_date,
            end_date=end_date,
            status=status,
        )
        _db.session.add(a)
        _db.session.commit()
        return a
    return _make


# ── Seeded structure ─────────────────────────────────────────────────────


class Fleet:
    """Plain holder for the rows seeded by the ``fleet`` fixture."""


@pytest.fixture()
def fleet(make_ship_type, make_vessel, make_cadet, make_section, make_task):
    """
    Two ship types, one tanker, one bulker, a DECK and an ENGINE cadet, and:

        A  Safety (all ship types)   A1, A2, A3 DECK mandatory
                                     A4 DECK optional
                                     A5 ENGINE mandatory
        B  Cargo (tankers only)      B1 DECK mandatory
        C  Holds (bulkers only)      C1 DECK mandatory
    """
    f = Fleet()
    f.tanker_type = make_ship_type("Oil Tanker")
    f.bulker_type = make_ship_type("Bulk Carrier")
    f.tanker = make_vessel("MV Keel Star", ship_type=f.tanker_type, imo_number="9000001")
    f.bulker = make_vessel("MV Ore Queen", ship_type=f.bulker_type, imo_number="9000002")
    f.deck_cadet = make_cadet("Ada Mariner", "DECK", "ada@example.org")
    f.engine_cadet = make_cadet("Ben Stoker", "ENGINE", "ben@example.org")

    f.section_a = make_section("A", "Safety", 1)
    f.section_b = make_section("B", "Cargo", 2, ship_type=f.tanker_type)
    f.section_c = make_section("C", "Holds", 3, ship_type=f.bulker_type)

    f.a1 = make_task(f.section_a, "A1", order_number=1)
    f.a2 = make_task(f.section_a, "A2", order_number=2)
    f.a3 = make_task(f.section_a, "A3", order_number=3)
    f.a4 = make_task(f.section_a, "A4", order_number=4, is_mandatory=False)
    f.a5 = make_task(f.section_a, "A5", cadet_category="ENGINE", order_number=5)
    f.b1 = make_task(f.section_b, "B1", order_number=1)
    f.c1 = make_task(f.section_c, "C1", order_number=1)
    return f
