"""Tests for compliance classification and the dashboard projection."""
from datetime import datetime, timedelta

import pytest
import pytz

from floorcheck.compliance import classify, classify_run, list_compliance, recent_activity
from floorcheck.runs import abort_run, complete_run, create_run
from floorcheck.schema import ComplianceStatus
from floorcheck.templates import deprecate_template

from conftest import START, answer_all

DUE = START + timedelta(days=7)


def at(day, hour=0):
    return datetime(2024, 3, day, hour, 0, tzinfo=pytz.utc)


@pytest.mark.parametrize("now,status,days", [
    (at(1, 12), ComplianceStatus.ON_TIME, 0),
    (at(5, 8), ComplianceStatus.ON_TIME, 0),
    (at(5, 9), ComplianceStatus.DUE_SOON, 0),
    (at(6), ComplianceStatus.DUE_SOON, 0),
    (at(8, 9), ComplianceStatus.DUE_SOON, 0),
    (at(9), ComplianceStatus.OVERDUE, 1),
    (at(10, 9), ComplianceStatus.OVERDUE, 2),
    (at(10, 10), ComplianceStatus.OVERDUE, 3),
])
def test_classify_by_due_date(now, status, days):
    assert classify("weekly", DUE, False, now=now, threshold_days=3) == (status, days)


def test_overdue_by_a_second_is_one_day():
    assert classify("daily", DUE, False, now=DUE + timedelta(seconds=1)) == (ComplianceStatus.OVERDUE, 1)


def test_threshold_is_configurable():
    assert classify("weekly", DUE, False, now=at(2), threshold_days=7)[0] == ComplianceStatus.DUE_SOON
    assert classify("weekly", DUE, False, now=at(6), threshold_days=1)[0] == ComplianceStatus.ON_TIME


def test_no_schedule_takes_precedence():
    assert classify("once", None, True)[0] == ComplianceStatus.NO_SCHEDULE
    assert classify(None, DUE, False)[0] == ComplianceStatus.NO_SCHEDULE


def test_open_run_past_due_is_in_progress():
    assert classify("weekly", DUE, True, now=DUE + timedelta(days=1)) == (ComplianceStatus.IN_PROGRESS, 0)


def test_missing_due_date_is_on_time():
    assert classify("weekly", None, False, now=at(9)) == (ComplianceStatus.ON_TIME, 0)


def test_classify_run_in_progress_past_due(db, template, machine):
    run = create_run(db, template.id, machine.id, "op", now=START)
    now = DUE + timedelta(days=1)
    assert classify_run(run, template.frequency, now=now) == (ComplianceStatus.IN_PROGRESS, 0)
    abort_run(db, run.id, now=now)
    db.refresh(run)
    assert classify_run(run, template.frequency, now=now) == (ComplianceStatus.ON_TIME, 0)


def test_weekly_scenario(db, make_template, machine):
    template = make_template(frequency="weekly", machine_id=machine.id)
    run = create_run(db, template.id, machine.id, "op", now=START)
    answer_all(db, run.id, now=START)
    complete_run(db, run.id, now=START + timedelta(hours=1))

    [entry] = list_compliance(db, now=at(6), threshold_days=3)
    assert entry.status == ComplianceStatus.DUE_SOON
    assert entry.due_date == DUE
    assert entry.current_run_id is None
    assert entry.last_completed_at == START + timedelta(hours=1)

    [entry] = list_compliance(db, now=at(9), threshold_days=3)
    assert entry.status == ComplianceStatus.OVERDUE
    assert entry.days_overdue == 1


def test_open_run_is_listed_as_in_progress(db, make_template, machine):
    template = make_template(machine_id=machine.id)
    run = create_run(db, template.id, machine.id, "op", now=START)

    [entry] = list_compliance(db, now=DUE + timedelta(days=1))
    assert entry.status == ComplianceStatus.IN_PROGRESS
    assert entry.current_run_id == run.id
    assert entry.days_overdue == 0


def test_terminal_runs_are_not_current(db, make_template, machine):
    template = make_template(machine_id=machine.id)
    finished = create_run(db, template.id, machine.id, "op", now=START)
    answer_all(db, finished.id)
    complete_run(db, finished.id, now=START + timedelta(hours=1))
    cancelled = create_run(db, template.id, machine.id, "op", now=START + timedelta(days=1))
    abort_run(db, cancelled.id, now=START + timedelta(days=1, hours=1))

    entries = list_compliance(db, now=at(9))
    run_ids = {entry.current_run_id for entry in entries}
    assert finished.id not in run_ids
    assert cancelled.id not in run_ids
    # the aborted run does not push the schedule back, the completed one still rules
    [entry] = entries
    assert entry.due_date == DUE
    assert entry.status == ComplianceStatus.OVERDUE


def test_latest_run_per_pair_is_used(db, make_template, machine):
    template = make_template(machine_id=machine.id)
    for day in (0, 7, 14):
        finished = create_run(db, template.id, machine.id, "op", now=START + timedelta(days=day))
        answer_all(db, finished.id)
        complete_run(db, finished.id, now=START + timedelta(days=day, hours=1))
    older_open = create_run(db, template.id, machine.id, "op", now=START + timedelta(days=15))
    newer_open = create_run(db, template.id, machine.id, "op", now=START + timedelta(days=16))

    [entry] = list_compliance(db, now=START + timedelta(days=16, hours=2))
    assert entry.current_run_id == newer_open.id != older_open.id
    assert entry.last_completed_at == START + timedelta(days=14, hours=1)
    assert entry.due_date == START + timedelta(days=23)

    abort_run(db, newer_open.id)
    abort_run(db, older_open.id)
    [entry] = list_compliance(db, now=START + timedelta(days=17), threshold_days=3)
    assert entry.current_run_id is None
    assert entry.due_date == START + timedelta(days=21)
    assert entry.status == ComplianceStatus.ON_TIME


def test_unbound_template_covers_every_machine(db, template, machine, other_machine):
    entries = list_compliance(db, now=at(1))
    assert {entry.machine_id for entry in entries} == {machine.id, other_machine.id}
    assert all(entry.status == ComplianceStatus.ON_TIME for entry in entries)
    assert all(entry.due_date is None for entry in entries)


def test_ad_hoc_template_only_listed_while_open(db, make_template, machine):
    template = make_template(frequency="once")
    assert list_compliance(db, now=at(1)) == []

    run = create_run(db, template.id, machine.id, "op", now=START)
    [entry] = list_compliance(db, now=at(1))
    assert entry.status == ComplianceStatus.NO_SCHEDULE
    assert entry.current_run_id == run.id

    abort_run(db, run.id)
    assert list_compliance(db, now=at(1)) == []


def test_open_run_on_deprecated_template_stays_visible(db, make_template, machine):
    template = make_template(machine_id=machine.id)
    run = create_run(db, template.id, machine.id, "op", now=START)
    deprecate_template(db, template.id)

    [entry] = list_compliance(db, now=at(2))
    assert entry.current_run_id == run.id


def test_window_filters_dated_entries(db, make_template, machine, other_machine):
    weekly = make_template(frequency="weekly", machine_id=machine.id, name="Weekly")
    monthly = make_template(frequency="monthly", machine_id=other_machine.id, name="Monthly")
    for template, machine_id in ((weekly, machine.id), (monthly, other_machine.id)):
        run = create_run(db, template.id, machine_id, "op", now=START)
        answer_all(db, run.id)
        complete_run(db, run.id, now=START)

    entries = list_compliance(db, now=at(2), until=at(10))
    assert [entry.template_name for entry in entries] == ["Weekly"]

    entries = list_compliance(db, now=at(2), since=at(10))
    assert [entry.template_name for entry in entries] == ["Monthly"]


def test_overdue_sorted_first(db, make_template, machine, other_machine):
    daily = make_template(frequency="daily", machine_id=machine.id, name="Daily")
    weekly = make_template(frequency="weekly", machine_id=other_machine.id, name="Weekly")
    for template, machine_id in ((weekly, other_machine.id), (daily, machine.id)):
        run = create_run(db, template.id, machine_id, "op", now=START)
        answer_all(db, run.id)
        complete_run(db, run.id, now=START)

    entries = list_compliance(db, now=at(4))
    assert [(e.template_name, e.status) for e in entries] == [
        ("Daily", ComplianceStatus.OVERDUE),
        ("Weekly", ComplianceStatus.ON_TIME),
    ]


def test_recent_activity(db, template, machine):
    run = create_run(db, template.id, machine.id, "op", now=START)
    abort_run(db, run.id, now=START + timedelta(minutes=1), reason="wrong machine")

    activity = recent_activity(db)
    assert [row["action_type"] for row in activity] == ["run_aborted", "run_started"]
    assert activity[0]["metadata"]["reason"] == "wrong machine"
