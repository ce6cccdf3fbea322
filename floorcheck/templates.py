"""Template lifecycle: draft, edit, activate, deprecate."""
import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from .exceptions import NotFoundError, TemplateError
from .models import ChecklistTemplate, Machine
from .scheduler import parse_frequency
from .schema import ChecklistDefinition, ChecklistType, TemplateStatus, parse_definition

logger = logging.getLogger(__name__)


def get_template(db: Session, template_id: str, for_update: bool = False) -> ChecklistTemplate:
    query = db.query(ChecklistTemplate).filter(ChecklistTemplate.id == template_id)
    if for_update:
        query = query.with_for_update()
    template = query.first()
    if not template:
        raise NotFoundError("template", template_id)
    return template


def _parse_type(value: Any, template_id: Optional[str]) -> ChecklistType:
    try:
        return ChecklistType(value)
    except ValueError:
        raise TemplateError(template_id, f"unknown checklist type {value!r}")


def _check_machine(db: Session, machine_id: Optional[str], template_id: Optional[str]):
    if machine_id and not db.get(Machine, machine_id):
        raise TemplateError(template_id, f"machine {machine_id} does not exist")


def _check_runnable(definition: ChecklistDefinition, template_id: Optional[str]):
    if not definition.is_runnable():
        raise TemplateError(template_id, "an active template needs at least one section with at least one item")


def create_template(
    db: Session,
    name: str,
    type: Any,
    definition: Any,
    machine_id: Optional[str] = None,
    frequency: Any = None,
    created_by: Optional[str] = None,
) -> ChecklistTemplate:
    """Save a new draft template at version 1."""
    checklist_type = _parse_type(type, None)
    parsed = parse_definition(definition)
    frequency = parse_frequency(frequency)
    _check_machine(db, machine_id, None)

    template = ChecklistTemplate(
        name=name,
        type=checklist_type.value,
        status=TemplateStatus.DRAFT.value,
        version=1,
        machine_id=machine_id,
        frequency=frequency.value if frequency else None,
        json_definition=parsed.to_json(),
        retired_item_ids=[],
        created_by=created_by,
    )
    db.add(template)
    db.commit()
    db.refresh(template)
    logger.info(f"Created template {template.id} ({name}) as draft")
    return template


def _apply_changes(db: Session, template: ChecklistTemplate, name, type, definition, machine_id, frequency):
    template_id = template.id
    if name is not None:
        template.name = name
    if type is not None:
        template.type = _parse_type(type, template_id).value
    if machine_id is not ...:
        _check_machine(db, machine_id, template_id)
        template.machine_id = machine_id
    if frequency is not ...:
        parsed_frequency = parse_frequency(frequency)
        template.frequency = parsed_frequency.value if parsed_frequency else None

    if definition is None:
        return
    new_definition = parse_definition(definition, template_id)
    old_ids = set(template.definition.item_ids())
    new_ids = set(new_definition.item_ids())
    retired = set(template.retired_item_ids or [])
    reused = sorted(new_ids & retired)
    if reused:
        raise TemplateError(template_id, f"item ids cannot be reused after removal: {', '.join(reused)}")
    if template.is_active:
        _check_runnable(new_definition, template_id)

    new_json = new_definition.to_json()
    if new_json != template.json_definition:
        template.json_definition = new_json
        template.retired_item_ids = sorted(retired | (old_ids - new_ids))
        template.version = ChecklistTemplate.version + 1


def update_template(
    db: Session,
    template_id: str,
    name: Optional[str] = None,
    type: Any = None,
    definition: Any = None,
    machine_id: Any = ...,
    frequency: Any = ...,
) -> ChecklistTemplate:
    """Edit a template.

    Replacing the definition bumps ``version``. Item ids that disappear are
    retired and may not be used again, since answers are keyed on them.
    ``machine_id`` and ``frequency`` use ``...`` for "leave unchanged" so
    that ``None`` can clear them.
    """
    template = get_template(db, template_id, for_update=True)
    try:
        _apply_changes(db, template, name, type, definition, machine_id, frequency)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(template)
    logger.info(f"Updated template {template.id}, now version {template.version}")
    return template


def activate_template(db: Session, template_id: str) -> ChecklistTemplate:
    template = get_template(db, template_id, for_update=True)
    _check_runnable(template.definition, template_id)
    # an active template must carry a known frequency
    parse_frequency(template.frequency)
    template.status = TemplateStatus.ACTIVE.value
    db.commit()
    db.refresh(template)
    logger.info(f"Activated template {template.id} version {template.version}")
    return template


def deprecate_template(db: Session, template_id: str) -> ChecklistTemplate:
    template = get_template(db, template_id, for_update=True)
    template.status = TemplateStatus.DEPRECATED.value
    db.commit()
    db.refresh(template)
    logger.info(f"Deprecated template {template.id}")
    return template


def template_to_dict(template: ChecklistTemplate) -> dict:
    return {
        "id": template.id,
        "name": template.name,
        "type": template.type,
        "status": template.status,
        "version": template.version,
        "machine_id": template.machine_id,
        "frequency": template.frequency,
        "json_definition": template.json_definition,
    }
