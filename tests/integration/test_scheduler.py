"""
PERIODIC SWEEP TESTS
"""
from datetime import date

import pytest

from api.dependencies import build_services
from events import ConflictDetected
from scheduler import conflict_sweep, create_scheduler, report_expiring_moratoriums

pytestmark = pytest.mark.asyncio(loop_scope="function")


@pytest.fixture
def services(session_factory, dispatcher):
    return build_services(session_factory, dispatcher)


async def test_jobs_registered(services):
    scheduler = create_scheduler(services.batch_runner, services.moratoriums, cron="30 2 * * *")

    jobs = {job.id: job for job in scheduler.get_jobs()}

    assert set(jobs) == {"conflict_sweep", "expiring_moratoriums"}
    assert "hour='2'" in str(jobs["conflict_sweep"].trigger)
    assert "minute='30'" in str(jobs["conflict_sweep"].trigger)


async def test_sweep_repairs_missing_counterpart(services, session_factory, make_project):
    a_id = await make_project(name="A")
    b_id = await make_project(name="B")

    report = await conflict_sweep(services.batch_runner)

    assert set(report.succeeded) == {a_id, b_id}
    assert report.succeeded[a_id].conflicting_project_ids == [b_id]
    assert report.succeeded[b_id].conflicting_project_ids == [a_id]


async def test_repeated_sweeps_do_not_renotify(services, dispatcher, make_project):
    await make_project(name="A")
    b_id = await make_project(name="B", state="draft")
    seen = []

    async def collect(event):
        seen.append(event)

    dispatcher.subscribe(ConflictDetected, collect)
    await services.transitions.request_transition(b_id, "pending_approval", "applicant-1")
    await conflict_sweep(services.batch_runner)
    await conflict_sweep(services.batch_runner)
    await dispatcher.drain()

    assert [event.project_id for event in seen] == [b_id]


async def test_sweep_swallows_and_logs_errors(services, monkeypatch):
    async def broken():
        raise ConnectionError("database unavailable")

    monkeypatch.setattr(services.batch_runner, "run_all_active", broken)

    assert await conflict_sweep(services.batch_runner) is None


async def test_expiring_moratoriums_job(services, make_moratorium):
    moratorium_id = await make_moratorium(valid_from=date.today(), valid_to=date.today())

    expiring = await report_expiring_moratoriums(services.moratoriums, days=30)

    assert [m.id for m in expiring] == [moratorium_id]
