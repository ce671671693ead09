from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import timedelta

import pytest
from sqlalchemy import select

import upkeep.tasks.maintenance_tasks as tasks_mod
from upkeep.core.enums import ContractStatus, VisitStatus
from upkeep.models import MaintenanceContract, MaintenanceVisit
from upkeep.models.base import utcnow_naive
from upkeep.tasks.celery_app import celery_app


@pytest.fixture
def task_sessions(monkeypatch, session_factory):
    @contextmanager
    def session_ctx():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    monkeypatch.setattr(tasks_mod, "get_db_session", session_ctx)
    return session_ctx


def _add_visit(session, contract, days_from_today, status=VisitStatus.SCHEDULED):
    visit = MaintenanceVisit.for_contract(
        contract,
        scheduled_date=utcnow_naive().date() + timedelta(days=days_from_today),
        status=status,
    )
    session.add(visit)
    session.commit()
    return visit


def _statuses(session_ctx):
    with session_ctx() as db:
        rows = db.execute(select(MaintenanceVisit.id, MaintenanceVisit.status)).all()
    return {visit_id: VisitStatus(status) for visit_id, status in rows}


def test_mark_missed_task_flags_only_stale_scheduled_visits(session, world, make_contract, task_sessions, caplog):
    today = utcnow_naive().date()
    contract = make_contract(start_date=today - timedelta(days=60), end_date=today + timedelta(days=60))
    stale = _add_visit(session, contract, -10)
    recent = _add_visit(session, contract, -5)
    running = _add_visit(session, contract, -8, status=VisitStatus.IN_PROGRESS)
    upcoming = _add_visit(session, contract, 5)

    with caplog.at_level(logging.INFO, logger=tasks_mod.__name__):
        result = tasks_mod.mark_overdue_visits_as_missed.apply().get()

    assert result == {"status": "succeeded", "marked_missed": 2}
    statuses = _statuses(task_sessions)
    assert statuses[stale.id] == VisitStatus.MISSED
    assert statuses[recent.id] == VisitStatus.MISSED
    assert statuses[running.id] == VisitStatus.IN_PROGRESS
    assert statuses[upcoming.id] == VisitStatus.SCHEDULED

    finish = [record for record in caplog.records if record.getMessage() == "task.finish"]
    assert finish and finish[0].count == 2
    assert finish[0].task_name == tasks_mod.MARK_MISSED_TASK

    assert tasks_mod.run_mark_missed() == {"status": "succeeded", "marked_missed": 0}


def test_task_logs_share_one_trace_and_name_the_sweep(world, task_sessions, caplog):
    with caplog.at_level(logging.INFO, logger=tasks_mod.__name__):
        tasks_mod.run_mark_missed(tenant_id=world.globex.id)

    start, finish = [record for record in caplog.records if record.getMessage() in {"task.start", "task.finish"}]
    assert start.trace_id == finish.trace_id
    assert start.tenant_id == world.globex.id
    assert start.sweep == finish.sweep == "single_tenant"
    assert finish.status == "succeeded"

    caplog.clear()
    with caplog.at_level(logging.INFO, logger=tasks_mod.__name__):
        tasks_mod.run_mark_missed()
    assert {record.sweep for record in caplog.records if record.name == tasks_mod.__name__} == {"all_tenants"}


def test_mark_missed_task_respects_tenant_filter(session, world, make_contract, task_sessions):
    today = utcnow_naive().date()
    acme = make_contract(start_date=today - timedelta(days=30), end_date=today + timedelta(days=30))
    globex = make_contract(
        tenant_id=world.globex.id,
        branch_id=world.foreign.id,
        assigned_technician_id=None,
        start_date=today - timedelta(days=30),
        end_date=today + timedelta(days=30),
    )
    acme_visit = _add_visit(session, acme, -7)
    globex_visit = _add_visit(session, globex, -7)

    assert tasks_mod.run_mark_missed(tenant_id=world.globex.id)["marked_missed"] == 1
    statuses = _statuses(task_sessions)
    assert statuses[globex_visit.id] == VisitStatus.MISSED
    assert statuses[acme_visit.id] == VisitStatus.SCHEDULED


def test_process_expired_task(session, world, make_contract, task_sessions):
    today = utcnow_naive().date()
    lapsed = make_contract(start_date=today - timedelta(days=90), end_date=today - timedelta(days=3))
    running = make_contract(start_date=today - timedelta(days=90), end_date=today + timedelta(days=30))
    _add_visit(session, lapsed, 5)

    result = tasks_mod.process_expired_contracts.apply().get()
    assert result == {
        "status": "succeeded",
        "processed_contracts": 1,
        "total_cancelled_visits": 1,
        "failed_contracts": 0,
    }
    with task_sessions() as db:
        statuses = dict(db.execute(select(MaintenanceContract.id, MaintenanceContract.status)).all())
    assert ContractStatus(statuses[lapsed.id]) is ContractStatus.COMPLETED
    assert ContractStatus(statuses[running.id]) is ContractStatus.ACTIVE


def test_task_failure_is_logged_and_raised(monkeypatch, caplog):
    @contextmanager
    def broken_session():
        raise RuntimeError("database unreachable")
        yield

    monkeypatch.setattr(tasks_mod, "get_db_session", broken_session)
    with caplog.at_level(logging.ERROR, logger=tasks_mod.__name__):
        with pytest.raises(RuntimeError, match="database unreachable"):
            tasks_mod.run_process_expired()
    failed = [record for record in caplog.records if record.getMessage() == "task.failed"]
    assert failed and failed[0].status == "failed"


def test_beat_schedule_registers_both_jobs():
    schedule = celery_app.conf.beat_schedule
    assert {entry["task"] for entry in schedule.values()} == {
        tasks_mod.MARK_MISSED_TASK,
        tasks_mod.PROCESS_EXPIRED_TASK,
    }
    assert tasks_mod.MARK_MISSED_TASK in celery_app.tasks
    assert tasks_mod.PROCESS_EXPIRED_TASK in celery_app.tasks
