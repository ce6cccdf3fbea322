from sqlalchemy.orm import Session
from .models import ActivityLog, ChecklistAnswer, ChecklistRun, ChecklistTemplate, Machine
from .schema import ChecklistType, Frequency
from .templates import activate_template, create_template
import logging

logger = logging.getLogger(__name__)

DEMO_MACHINES = [
    ("CNC Lathe 1", "Bay A", "Turning"),
    ("CNC Mill 2", "Bay A", "Milling"),
    ("Injection Press 3", "Bay C", "Moulding"),
]

PRE_RUN_DEFINITION = {
    "sections": [
        {
            "id": "sec-guarding",
            "title": "Guarding",
            "items": [
                {"id": "itm-guard-fitted", "label": "All guards fitted and interlocks working", "type": "yes_no",
                 "required": True, "critical": True},
                {"id": "itm-estop", "label": "Emergency stop tested", "type": "yes_no",
                 "required": True, "critical": True},
            ],
        },
        {
            "id": "sec-fluids",
            "title": "Fluids",
            "items": [
                {"id": "itm-coolant", "label": "Coolant concentration", "type": "numeric",
                 "required": True, "critical": False, "minValue": 5, "maxValue": 8, "unit": "%"},
                {"id": "itm-notes", "label": "Notes for next shift", "type": "text",
                 "required": False, "critical": False},
            ],
        },
    ]
}

SAFETY_DEFINITION = {
    "sections": [
        {
            "id": "sec-area",
            "title": "Work area",
            "items": [
                {"id": "itm-walkways", "label": "Walkways clear", "type": "yes_no",
                 "required": True, "critical": False},
                {"id": "itm-extinguisher", "label": "Extinguisher present and in date", "type": "yes_no",
                 "required": True, "critical": True, "photoRequired": True},
            ],
        },
        {
            "id": "sec-air",
            "title": "Compressed air",
            "items": [
                {"id": "itm-air-pressure", "label": "Line pressure", "type": "numeric",
                 "required": True, "critical": False, "minValue": 6, "maxValue": 7.5, "unit": "bar"},
            ],
        },
    ]
}


def seed_database(db: Session):
    """Seed the database with demo machines and templates."""
    logger.info("Starting database seeding...")

    # Delete all existing data
    db.query(ActivityLog).delete()
    db.query(ChecklistAnswer).delete()
    db.query(ChecklistRun).delete()
    db.query(ChecklistTemplate).delete()
    db.query(Machine).delete()
    db.commit()

    try:
        machines = [Machine(name=name, location=location, work_centre=centre) for name, location, centre in DEMO_MACHINES]
        db.add_all(machines)
        db.commit()
        logger.info(f"Added {len(machines)} machines")

        pre_run = create_template(
            db,
            name="Lathe pre-run check",
            type=ChecklistType.PRE_RUN.value,
            definition=PRE_RUN_DEFINITION,
            machine_id=machines[0].id,
            frequency=Frequency.DAILY.value,
        )
        safety = create_template(
            db,
            name="Weekly area safety check",
            type=ChecklistType.SAFETY.value,
            definition=SAFETY_DEFINITION,
            frequency=Frequency.WEEKLY.value,
        )
        for template in (pre_run, safety):
            activate_template(db, template.id)

        logger.info("Database seeding completed successfully")
    except Exception as e:
        logger.error(f"Error seeding database: {str(e)}", exc_info=True)
        db.rollback()
        raise
