"""
MORATORIUM SERVICE TESTS

Moratorium violations are advisory; every moratorium change re-evaluates
the active projects it touches.
"""
import uuid
from datetime import date

import pytest
from sqlalchemy import select

from api.dependencies import build_services
from events import ConflictDetected, MoratoriumAction
from exceptions import InvalidGeometry, InvalidMoratorium, MoratoriumNotEditable, MoratoriumNotFound
from models import Project
from schemas import MoratoriumCreate, MoratoriumUpdate

from conftest import PRAGUE_POINT, PRAGUE_SQUARE

pytestmark = pytest.mark.asyncio(loop_scope="function")

ELSEWHERE = {
    "type": "Polygon",
    "coordinates": [[[14.50, 50.10], [14.51, 50.10], [14.51, 50.11], [14.50, 50.11], [14.50, 50.10]]],
}


def _create(**overrides) -> MoratoriumCreate:
    data = {
        "name": "Resurfaced Vinohradska",
        "geometry": PRAGUE_SQUARE,
        "reason": "new_surface",
        "valid_from": date(2024, 1, 1),
        "valid_to": date(2024, 12, 31),
        "municipality_code": "CZ0100",
        "created_by": "coordinator-1",
    }
    data.update(overrides)
    return MoratoriumCreate(**data)


async def _load(session_factory, project_id):
    async with session_factory() as session:
        return (await session.execute(select(Project).where(Project.id == project_id))).scalar_one()


@pytest.fixture
def services(session_factory, dispatcher):
    return build_services(session_factory, dispatcher)


class TestMoratoriumScenario:

    async def test_violation_reported_but_submission_succeeds(self, services, make_project):
        await services.moratoriums.create_moratorium(_create())
        project_id = await make_project(
            state="draft", start=date(2024, 6, 1), end=date(2024, 6, 30)
        )

        outcome = await services.transitions.request_transition(project_id, "pending_approval", "applicant-1")

        assert outcome.project.state == "pending_approval"
        assert outcome.conflict_check == "completed"
        assert len(outcome.conflicts.moratorium_violations) == 1
        assert outcome.conflicts.spatial_conflicts == []
        assert outcome.project.has_conflict is True

    async def test_check_outside_validity_is_clean(self, services, make_project):
        await services.moratoriums.create_moratorium(_create())
        project_id = await make_project(state="draft", start=date(2025, 6, 1), end=date(2025, 6, 30))

        outcome = await services.transitions.request_transition(project_id, "pending_approval", "applicant-1")

        assert outcome.conflicts.has_conflict is False


class TestCreateMoratorium:

    async def test_create_reruns_affected_projects(self, services, session_factory, dispatcher, make_project):
        inside = await make_project(start=date(2024, 6, 1), end=date(2024, 6, 30))
        outside_dates = await make_project(start=date(2025, 6, 1), end=date(2025, 6, 30))

        result = await services.moratoriums.create_moratorium(_create())

        assert result.action == MoratoriumAction.CREATED
        assert list(result.rerun) == [inside]
        assert result.rerun[inside].moratorium_ids == [result.moratorium.id]
        stored = await _load(session_factory, inside)
        assert stored.has_conflict is True
        assert stored.violated_moratorium_ids == [str(result.moratorium.id)]
        assert (await _load(session_factory, outside_dates)).has_conflict is False

    async def test_new_violation_is_notified_once(self, services, dispatcher, make_project):
        project_id = await make_project(start=date(2024, 6, 1), end=date(2024, 6, 30))
        seen = []

        async def collect(event):
            seen.append(event)

        dispatcher.subscribe(ConflictDetected, collect)
        result = await services.moratoriums.create_moratorium(_create())
        await services.batch_runner.run_all_active()
        await dispatcher.drain()

        assert [(event.project_id, event.moratorium_ids) for event in seen] == [
            (project_id, [result.moratorium.id])
        ]

    async def test_point_geometry_rejected(self, services):
        with pytest.raises(InvalidGeometry):
            await services.moratoriums.create_moratorium(_create(geometry=PRAGUE_POINT))

    async def test_longer_than_five_years_rejected(self, services):
        with pytest.raises(InvalidMoratorium):
            await services.moratoriums.create_moratorium(_create(valid_to=date(2029, 1, 2)))

    async def test_reversed_period_rejected(self, services):
        with pytest.raises(InvalidMoratorium):
            await services.moratoriums.create_moratorium(
                _create(valid_from=date(2024, 6, 1), valid_to=date(2024, 5, 1))
            )


class TestUpdateAndDelete:

    async def test_only_creator_may_update(self, services):
        created = await services.moratoriums.create_moratorium(_create())

        with pytest.raises(MoratoriumNotEditable):
            await services.moratoriums.update_moratorium(
                created.moratorium.id, MoratoriumUpdate(actor_id="coordinator-2", name="Hijacked")
            )

    async def test_moving_moratorium_reevaluates_old_and_new_area(self, services, session_factory, make_project):
        project_id = await make_project(start=date(2024, 6, 1), end=date(2024, 6, 30))
        created = await services.moratoriums.create_moratorium(_create())
        assert (await _load(session_factory, project_id)).has_conflict is True

        result = await services.moratoriums.update_moratorium(
            created.moratorium.id, MoratoriumUpdate(actor_id="coordinator-1", geometry=ELSEWHERE)
        )

        assert result.action == MoratoriumAction.UPDATED
        assert project_id in result.rerun
        assert (await _load(session_factory, project_id)).has_conflict is False

    async def test_update_validates_merged_period(self, services):
        created = await services.moratoriums.create_moratorium(_create())

        with pytest.raises(InvalidMoratorium):
            await services.moratoriums.update_moratorium(
                created.moratorium.id, MoratoriumUpdate(actor_id="coordinator-1", valid_to=date(2023, 12, 31))
            )

    async def test_delete_clears_conflict(self, services, session_factory, make_project):
        project_id = await make_project(start=date(2024, 6, 1), end=date(2024, 6, 30))
        created = await services.moratoriums.create_moratorium(_create())

        result = await services.moratoriums.delete_moratorium(created.moratorium.id, "coordinator-1")

        assert result.action == MoratoriumAction.DELETED
        assert list(result.rerun) == [project_id]
        assert (await _load(session_factory, project_id)).has_conflict is False

    async def test_only_creator_may_delete(self, services):
        created = await services.moratoriums.create_moratorium(_create())

        with pytest.raises(MoratoriumNotEditable):
            await services.moratoriums.delete_moratorium(created.moratorium.id, "coordinator-2")

    async def test_missing_moratorium(self, services):
        with pytest.raises(MoratoriumNotFound):
            await services.moratoriums.delete_moratorium(uuid.uuid4(), "coordinator-1")


class TestExpiringSoon:

    async def test_window(self, services, make_moratorium):
        soon = await make_moratorium(valid_from=date(2024, 1, 1), valid_to=date(2024, 7, 20))
        await make_moratorium(valid_from=date(2024, 1, 1), valid_to=date(2024, 9, 1))
        await make_moratorium(valid_from=date(2024, 1, 1), valid_to=date(2024, 6, 30))

        expiring = await services.moratoriums.find_expiring_soon(days=30, today=date(2024, 7, 1))

        assert [m.id for m in expiring] == [soon]
