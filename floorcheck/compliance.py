"""Compliance classification for the live dashboard.

Nothing here is stored. Every read recomputes the status of each
(template, machine) pair from the template frequency and its runs, since
"now" moves on without any write happening.
"""
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from . import config
from .models import ActivityLog, ChecklistRun, ChecklistTemplate, Machine
from .scheduler import parse_frequency
from .schema import ComplianceStatus, Frequency, RunStatus, TemplateStatus
from .utils import as_utc, isoformat, utcnow

SECONDS_PER_DAY = 24 * 60 * 60

STATUS_ORDER = {
    ComplianceStatus.OVERDUE: 0,
    ComplianceStatus.DUE_SOON: 1,
    ComplianceStatus.IN_PROGRESS: 2,
    ComplianceStatus.ON_TIME: 3,
    ComplianceStatus.NO_SCHEDULE: 4,
}


@dataclass
class ComplianceEntry:
    template_id: str
    machine_id: str
    status: ComplianceStatus
    due_date: Optional[datetime]
    days_overdue: int = 0
    template_name: Optional[str] = None
    frequency: Optional[str] = None
    last_completed_at: Optional[datetime] = None
    current_run_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "template_id": self.template_id,
            "template_name": self.template_name,
            "machine_id": self.machine_id,
            "frequency": self.frequency,
            "status": self.status.value,
            "due_date": isoformat(self.due_date),
            "days_overdue": self.days_overdue,
            "last_completed_at": isoformat(self.last_completed_at),
            "current_run_id": self.current_run_id,
        }


def classify(
    frequency,
    due_date: Optional[datetime],
    run_open: bool,
    now: Optional[datetime] = None,
    threshold_days: Optional[int] = None,
) -> Tuple[ComplianceStatus, int]:
    """Return ``(status, days_overdue)``.

    Precedence: no schedule, then an open run, then the due date. An open
    run past its due date is still ``in_progress``.
    """
    now = as_utc(now) or utcnow()
    if threshold_days is None:
        threshold_days = config.DUE_SOON_THRESHOLD_DAYS

    frequency = parse_frequency(frequency)
    if frequency is None or frequency == Frequency.ONCE:
        return ComplianceStatus.NO_SCHEDULE, 0
    if run_open:
        return ComplianceStatus.IN_PROGRESS, 0
    due_date = as_utc(due_date)
    if due_date is None:
        return ComplianceStatus.ON_TIME, 0
    if due_date < now:
        days = math.ceil((now - due_date).total_seconds() / SECONDS_PER_DAY)
        return ComplianceStatus.OVERDUE, max(days, 1)
    if due_date <= now + timedelta(days=threshold_days):
        return ComplianceStatus.DUE_SOON, 0
    return ComplianceStatus.ON_TIME, 0


def classify_run(
    run: Optional[ChecklistRun],
    frequency,
    now: Optional[datetime] = None,
    threshold_days: Optional[int] = None,
) -> Tuple[ComplianceStatus, int]:
    """Classify a pair from its most recent run, if any.

    Aborted runs never satisfy a schedule, so they carry no due date here.
    """
    if run is None or run.status == RunStatus.ABORTED.value:
        return classify(frequency, None, False, now, threshold_days)
    return classify(frequency, run.due_date, run.is_open, now, threshold_days)


def _latest_runs(db: Session, status: RunStatus) -> Dict[Tuple[str, str], ChecklistRun]:
    """Most recently started run in ``status`` for each (template, machine) pair."""
    newest = (
        db.query(
            ChecklistRun.template_id,
            ChecklistRun.machine_id,
            func.max(ChecklistRun.started_at).label("started_at"),
        )
        .filter(ChecklistRun.status == status.value)
        .group_by(ChecklistRun.template_id, ChecklistRun.machine_id)
        .subquery()
    )
    runs = (
        db.query(ChecklistRun)
        .join(newest, and_(
            ChecklistRun.template_id == newest.c.template_id,
            ChecklistRun.machine_id == newest.c.machine_id,
            ChecklistRun.started_at == newest.c.started_at,
        ))
        .filter(ChecklistRun.status == status.value)
        .order_by(ChecklistRun.id)
    )
    latest = {}
    for run in runs:
        # same start instant: lowest id wins
        latest.setdefault((run.template_id, run.machine_id), run)
    return latest


def _in_window(due_date: Optional[datetime], since: Optional[datetime], until: Optional[datetime]) -> bool:
    if due_date is None:
        return True
    if since is not None and due_date < since:
        return False
    if until is not None and due_date > until:
        return False
    return True


def list_compliance(
    db: Session,
    now: Optional[datetime] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    threshold_days: Optional[int] = None,
) -> List[ComplianceEntry]:
    """One entry per (template, machine) pair that is scheduled or has an open run.

    Active scheduled templates bound to a machine contribute that pair,
    unbound ones one pair per machine. Ad-hoc templates only appear while
    a run of theirs is open. ``since``/``until`` bound the due date of dated
    entries; open runs and undated entries are always returned.
    """
    now = as_utc(now) or utcnow()
    since = as_utc(since)
    until = as_utc(until)

    open_runs = _latest_runs(db, RunStatus.IN_PROGRESS)
    completed_runs = _latest_runs(db, RunStatus.COMPLETED)

    templates = {
        template.id: template
        for template in db.query(ChecklistTemplate).filter(ChecklistTemplate.status == TemplateStatus.ACTIVE.value)
    }
    machine_ids = [machine_id for (machine_id,) in db.query(Machine.id).order_by(Machine.name)]

    pairs = []
    for template in templates.values():
        if parse_frequency(template.frequency) in (None, Frequency.ONCE):
            continue
        for machine_id in ([template.machine_id] if template.machine_id else machine_ids):
            pairs.append((template.id, machine_id))
    for pair in open_runs:
        if pair not in pairs:
            pairs.append(pair)

    missing = {template_id for template_id, _ in pairs if template_id not in templates}
    if missing:
        for template in db.query(ChecklistTemplate).filter(ChecklistTemplate.id.in_(missing)):
            templates[template.id] = template

    entries = []
    for template_id, machine_id in pairs:
        template = templates[template_id]
        open_run = open_runs.get((template_id, machine_id))
        last_completed = completed_runs.get((template_id, machine_id))
        run = open_run or last_completed
        status, days_overdue = classify_run(run, template.frequency, now, threshold_days)
        due_date = as_utc(run.due_date) if run else None

        if open_run is None and not _in_window(due_date, since, until):
            continue

        entries.append(ComplianceEntry(
            template_id=template_id,
            machine_id=machine_id,
            status=status,
            due_date=due_date,
            days_overdue=days_overdue,
            template_name=template.name,
            frequency=template.frequency,
            last_completed_at=as_utc(last_completed.completed_at) if last_completed else None,
            current_run_id=open_run.id if open_run else None,
        ))

    entries.sort(key=lambda e: (
        STATUS_ORDER[e.status],
        e.due_date is None,
        e.due_date or now,
        e.template_name or "",
    ))
    return entries


def recent_activity(db: Session, limit: int = 20) -> List[dict]:
    rows = db.query(ActivityLog).order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).limit(limit).all()
    return [
        {
            "id": row.id,
            "action_type": row.action_type,
            "entity_type": row.entity_type,
            "entity_id": row.entity_id,
            "user_id": row.user_id,
            "machine_id": row.machine_id,
            "metadata": row.details,
            "created_at": isoformat(row.created_at),
        }
        for row in rows
    ]
