"""Checklist run state machine.

A run starts ``in_progress`` and ends either ``completed`` (only once the
completion gate holds) or ``aborted``. Both are terminal. Each answer
submission and each transition is one atomic read-modify-write: the run
row is locked, answers are written with a database upsert, and status
changes are conditional updates that only match an in-progress run.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from . import config
from .exceptions import (
    ActiveRunConflictError,
    CompletionBlockedError,
    InvalidTransitionError,
    NotFoundError,
    TemplateError,
    ValidationError,
)
from .models import ActivityLog, ChecklistAnswer, ChecklistRun, ChecklistTemplate, Machine
from .scheduler import compute_due_date
from .schema import ChecklistDefinition, RunStatus
from .utils import as_utc, isoformat, utcnow
from .validator import check_answer, evaluate_gate, require_valid

logger = logging.getLogger(__name__)


def get_run(db: Session, run_id: str, for_update: bool = False) -> ChecklistRun:
    query = db.query(ChecklistRun).filter(ChecklistRun.id == run_id)
    if for_update:
        query = query.with_for_update()
    run = query.first()
    if not run:
        raise NotFoundError("run", run_id)
    return run


def log_activity(
    db: Session,
    action_type: str,
    entity_type: str,
    entity_id: str,
    user_id: Optional[str] = None,
    machine_id: Optional[str] = None,
    details: Optional[dict] = None,
    now: Optional[datetime] = None,
):
    """Stage an activity row; it is committed with the caller's transaction."""
    db.add(ActivityLog(
        user_id=user_id,
        action_type=action_type,
        entity_type=entity_type,
        entity_id=entity_id,
        machine_id=machine_id,
        details=details or {},
        created_at=now or utcnow(),
    ))


def create_run(
    db: Session,
    template_id: str,
    machine_id: str,
    user_id: str,
    now: Optional[datetime] = None,
    job_number: Optional[str] = None,
    part_number: Optional[str] = None,
    program_name: Optional[str] = None,
    notes: Optional[str] = None,
    one_active_run_per_machine: Optional[bool] = None,
) -> ChecklistRun:
    """Start a run of an active template against a machine.

    The due date is computed once here from the template frequency and
    never changes afterwards.
    """
    now = as_utc(now) or utcnow()
    if one_active_run_per_machine is None:
        one_active_run_per_machine = config.ONE_ACTIVE_RUN_PER_MACHINE

    template = db.get(ChecklistTemplate, template_id)
    if not template:
        raise NotFoundError("template", template_id)
    if not template.is_active:
        raise TemplateError(template_id, f"template is {template.status}, only active templates can be run")
    if template.machine_id and template.machine_id != machine_id:
        raise TemplateError(template_id, f"template is bound to machine {template.machine_id}")

    machine = db.query(Machine).filter(Machine.id == machine_id).with_for_update().first()
    if not machine:
        raise NotFoundError("machine", machine_id)

    if one_active_run_per_machine:
        open_run = (
            db.query(ChecklistRun)
            .filter(ChecklistRun.machine_id == machine_id, ChecklistRun.status == RunStatus.IN_PROGRESS.value)
            .first()
        )
        if open_run:
            db.rollback()
            raise ActiveRunConflictError(machine_id, open_run.id)

    run = ChecklistRun(
        template_id=template.id,
        machine_id=machine_id,
        user_id=user_id,
        status=RunStatus.IN_PROGRESS.value,
        started_at=now,
        due_date=compute_due_date(template.frequency, now),
        job_number=job_number,
        part_number=part_number,
        program_name=program_name,
        notes=notes,
    )
    db.add(run)
    db.flush()
    log_activity(
        db, "run_started", "checklist_run", run.id,
        user_id=user_id, machine_id=machine_id,
        details={"template_id": template.id, "template_version": template.version},
        now=now,
    )
    db.commit()
    db.refresh(run)
    logger.info(f"Run {run.id} started on machine {machine_id} by {user_id}, due {isoformat(run.due_date)}")
    return run


def _ensure_open(run: ChecklistRun, action: str):
    if not run.is_open:
        logger.error(f"Rejected {action} on run {run.id} in status {run.status}")
        raise InvalidTransitionError(run.id, run.status, action)


def _upsert_answer(db: Session, values: Dict[str, Any]):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        insert = None

    if insert is not None:
        stmt = insert(ChecklistAnswer).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["run_id", "item_id"],
            set_={
                "section_id": stmt.excluded["section_id"],
                "value": stmt.excluded["value"],
                "passed": stmt.excluded["passed"],
                "comment": stmt.excluded["comment"],
                "photo_url": stmt.excluded["photo_url"],
                "answered_at": stmt.excluded["answered_at"],
            },
        )
        db.execute(stmt)
        return

    # other backends: the run row lock taken by the caller serialises writers
    answer = (
        db.query(ChecklistAnswer)
        .filter(ChecklistAnswer.run_id == values["run_id"], ChecklistAnswer.item_id == values["item_id"])
        .first()
    )
    if answer is None:
        db.add(ChecklistAnswer(**values))
    else:
        for key, value in values.items():
            if key not in ("run_id", "item_id", "created_at"):
                setattr(answer, key, value)


def submit_answer(
    db: Session,
    run_id: str,
    item_id: str,
    value: Any,
    comment: Optional[str] = None,
    photo_url: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ChecklistAnswer:
    """Record the answer for one item; resubmitting overwrites it in place."""
    now = as_utc(now) or utcnow()
    run = get_run(db, run_id, for_update=True)
    try:
        _ensure_open(run, "answer")
        definition = run.template.definition
        item = definition.get_item(item_id)
        if item is None:
            raise ValidationError(item_id, "item is not part of this checklist")
        try:
            result = require_valid(item, value)
        except ValidationError as e:
            logger.warning(f"Run {run_id}: {e}")
            raise

        section = definition.section_for(item_id)
        _upsert_answer(db, {
            "run_id": run.id,
            "item_id": item_id,
            "section_id": section.id if section else None,
            "value": value,
            "passed": result.passed,
            "comment": comment,
            "photo_url": photo_url or None,
            "answered_at": now,
            "created_at": now,
        })
        db.commit()
    except Exception:
        db.rollback()
        raise

    answer = (
        db.query(ChecklistAnswer)
        .filter(ChecklistAnswer.run_id == run_id, ChecklistAnswer.item_id == item_id)
        .populate_existing()
        .one()
    )
    logger.info(f"Run {run_id}: recorded answer for {item_id} (passed={answer.passed})")
    return answer


def _transition(db: Session, run: ChecklistRun, target: RunStatus, action: str, now: datetime):
    result = db.execute(
        update(ChecklistRun)
        .where(ChecklistRun.id == run.id, ChecklistRun.status == RunStatus.IN_PROGRESS.value)
        .values(status=target.value, completed_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        current = db.get(ChecklistRun, run.id, populate_existing=True)
        logger.error(f"Lost race to {action} run {run.id}, now {current.status if current else 'missing'}")
        raise InvalidTransitionError(run.id, current.status if current else None, action)


def complete_run(db: Session, run_id: str, now: Optional[datetime] = None) -> ChecklistRun:
    """Move a run to ``completed`` once every item is answered and every required photo is attached."""
    now = as_utc(now) or utcnow()
    run = get_run(db, run_id, for_update=True)
    try:
        _ensure_open(run, "complete")
        answers = {answer.item_id: answer for answer in run.answers}
        gate = evaluate_gate(run.template.definition.items, answers)
        if not gate.satisfied:
            logger.warning(
                f"Run {run_id} blocked: unanswered={gate.unanswered_item_ids} "
                f"missing_photo={gate.missing_photo_item_ids}"
            )
            raise CompletionBlockedError(run_id, gate.unanswered_item_ids, gate.missing_photo_item_ids)

        _transition(db, run, RunStatus.COMPLETED, "complete", now)
        log_activity(
            db, "run_completed", "checklist_run", run.id,
            user_id=run.user_id, machine_id=run.machine_id,
            details={"template_id": run.template_id},
            now=now,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(run)
    logger.info(f"Run {run_id} completed")
    return run


def abort_run(db: Session, run_id: str, now: Optional[datetime] = None, reason: Optional[str] = None) -> ChecklistRun:
    """Cancel an in-progress run. No completion gate applies."""
    now = as_utc(now) or utcnow()
    run = get_run(db, run_id, for_update=True)
    try:
        _ensure_open(run, "abort")
        _transition(db, run, RunStatus.ABORTED, "abort", now)
        log_activity(
            db, "run_aborted", "checklist_run", run.id,
            user_id=run.user_id, machine_id=run.machine_id,
            details={"template_id": run.template_id, "reason": reason},
            now=now,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(run)
    logger.info(f"Run {run_id} aborted")
    return run


def run_progress(run: ChecklistRun, definition: Optional[ChecklistDefinition] = None) -> dict:
    """Progress against the live template definition.

    Answers for items no longer in the definition are ignored. Pass/fail
    is re-derived from the current item so that edited bounds apply.
    """
    if definition is None:
        definition = run.template.definition
    answers = {answer.item_id: answer for answer in run.answers}
    items = definition.items

    answered = [item for item in items if item.id in answers]
    failed = []
    failed_critical = []
    for item in answered:
        check = check_answer(item, answers[item.id].value)
        if not (check.valid and check.passed):
            failed.append(item.id)
            if item.critical:
                failed_critical.append(item.id)

    gate = evaluate_gate(items, answers)
    total = len(items)
    return {
        "total_items": total,
        "answered_items": len(answered),
        "failed_items": failed,
        "failed_critical_items": failed_critical,
        "unanswered_items": gate.unanswered_item_ids,
        "missing_photo_items": gate.missing_photo_item_ids,
        "can_complete": gate.satisfied,
        "percent_complete": round(100 * len(answered) / total) if total else 0,
    }


def answer_to_dict(answer: ChecklistAnswer) -> dict:
    return {
        "run_id": answer.run_id,
        "section_id": answer.section_id,
        "item_id": answer.item_id,
        "value": answer.value,
        "passed": answer.passed,
        "comment": answer.comment,
        "photo_url": answer.photo_url,
        "answered_at": isoformat(answer.answered_at),
    }


def run_to_dict(run: ChecklistRun) -> dict:
    return {
        "id": run.id,
        "template_id": run.template_id,
        "machine_id": run.machine_id,
        "user_id": run.user_id,
        "status": run.status,
        "started_at": isoformat(run.started_at),
        "completed_at": isoformat(run.completed_at),
        "due_date": isoformat(run.due_date),
        "job_number": run.job_number,
        "part_number": run.part_number,
        "program_name": run.program_name,
        "notes": run.notes,
    }
