from datetime import datetime

import pytest
import pytz
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from floorcheck import models  # noqa: F401
from floorcheck.database import Base
from floorcheck.models import Machine
from floorcheck.templates import activate_template, create_template

START = datetime(2024, 3, 1, 9, 0, tzinfo=pytz.utc)


# Two sections, five items: one critical, one needing a photo
FIVE_ITEM_DEFINITION = {
    "sections": [
        {
            "id": "sec-1",
            "title": "Guarding",
            "items": [
                {"id": "guard", "label": "Guards fitted", "type": "yes_no", "required": True, "critical": True},
                {"id": "estop", "question": "E-stop tested", "type": "yes_no", "required": True, "critical": False},
                {"id": "oil", "label": "Oil level", "type": "numeric", "required": True, "critical": False,
                 "min_value": 10, "max_value": 20, "unit": "mm"},
            ],
        },
        {
            "id": "sec-2",
            "title": "Housekeeping",
            "description": "Area around the machine",
            "items": [
                {"id": "floor", "label": "Floor clear", "type": "yes_no", "required": True, "critical": False,
                 "photoRequired": True},
                {"id": "remarks", "label": "Remarks", "type": "text", "required": False, "critical": False},
            ],
        },
    ]
}


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def machine(db):
    machine = Machine(name="CNC Lathe 1", location="Bay A")
    db.add(machine)
    db.commit()
    return machine


@pytest.fixture()
def other_machine(db):
    machine = Machine(name="CNC Mill 2", location="Bay B")
    db.add(machine)
    db.commit()
    return machine


@pytest.fixture()
def make_template(db):
    def _make(definition=None, frequency="weekly", machine_id=None, activate=True, name="Pre-run check", type="pre_run"):
        template = create_template(
            db,
            name=name,
            type=type,
            definition=FIVE_ITEM_DEFINITION if definition is None else definition,
            machine_id=machine_id,
            frequency=frequency,
        )
        if activate:
            template = activate_template(db, template.id)
        return template
    return _make


@pytest.fixture()
def template(make_template):
    return make_template()


def answer_all(db, run_id, photo="s3://evidence/floor.jpg", now=None):
    """Answer every item of the five item template so the gate holds."""
    from floorcheck.runs import submit_answer

    submit_answer(db, run_id, "guard", True, now=now)
    submit_answer(db, run_id, "estop", True, now=now)
    submit_answer(db, run_id, "oil", 15, now=now)
    submit_answer(db, run_id, "floor", True, photo_url=photo, now=now)
    submit_answer(db, run_id, "remarks", "All good", now=now)
