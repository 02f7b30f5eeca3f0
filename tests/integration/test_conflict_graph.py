"""
CONFLICT GRAPH TESTS

Symmetry, idempotence and best-effort secondary updates.
"""
import asyncio
import uuid
from datetime import date

import pytest
from sqlalchemy import func, select, update

from conflict_detector import ConflictDetectionResult
from conflict_graph import ConflictGraphMaintainer
from conflict_service import ConflictService
from events import ConflictDetected
from exceptions import ProjectNotFound
from infrastructure.uow import ProjectRepository
from models import Project, ProjectConflict
from spatial_query import SpatialQueryLayer

from conftest import offset_point

pytestmark = pytest.mark.asyncio(loop_scope="function")


async def _load(session_factory, project_id):
    async with session_factory() as session:
        return (await session.execute(select(Project).where(Project.id == project_id))).scalar_one()


async def _edge_count(session_factory):
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(ProjectConflict))).scalar_one()


async def _result_for(session_factory, *project_ids) -> ConflictDetectionResult:
    layer = SpatialQueryLayer(session_factory)
    snapshots = [await layer.find_project_by_id(pid) for pid in project_ids]
    return ConflictDetectionResult(
        has_conflict=bool(snapshots),
        spatial_conflicts=snapshots,
        temporal_conflicts=snapshots,
    )


class TestPragueScenario:

    async def test_submitted_project_and_existing_project_list_each_other(
        self, session_factory, dispatcher, make_project
    ):
        a_id = await make_project(name="A", start=date(2024, 1, 15), end=date(2024, 1, 25), state="approved")
        b_id = await make_project(
            name="B", start=date(2024, 1, 20), end=date(2024, 1, 30), state="pending_approval"
        )

        result = await ConflictService(session_factory, dispatcher).run_for_project(b_id)

        assert result.has_conflict is True
        assert result.conflicting_project_ids == [a_id]

        a = await _load(session_factory, a_id)
        b = await _load(session_factory, b_id)
        assert b.has_conflict and b.conflicting_project_ids == {a_id}
        assert a.has_conflict and a.conflicting_project_ids == {b_id}

        assert dispatcher.pending == 1
        event = dispatcher._queue.get_nowait()
        assert isinstance(event, ConflictDetected)
        assert event.project_id == b_id
        assert event.conflicting_project_ids == [a_id]

    async def test_rerun_is_idempotent(self, session_factory, dispatcher, make_project):
        a_id = await make_project(name="A")
        b_id = await make_project(name="B", start=date(2024, 1, 20), end=date(2024, 1, 30))
        service = ConflictService(session_factory, dispatcher)

        await service.run_for_project(b_id)
        await service.run_for_project(b_id)
        await service.run_for_project(a_id)
        await service.run_for_project(a_id)

        assert await _edge_count(session_factory) == 2
        assert (await _load(session_factory, a_id)).conflicting_project_ids == {b_id}
        assert (await _load(session_factory, b_id)).conflicting_project_ids == {a_id}

    async def test_unchanged_rerun_is_not_renotified(self, session_factory, dispatcher, make_project):
        await make_project(name="A")
        b_id = await make_project(name="B", start=date(2024, 1, 20), end=date(2024, 1, 30))
        service = ConflictService(session_factory, dispatcher)

        await service.run_for_project(b_id)
        await service.run_for_project(b_id)

        assert dispatcher.pending == 1

    async def test_new_counterpart_is_notified_again(self, session_factory, dispatcher, make_project):
        await make_project(name="A")
        b_id = await make_project(name="B")
        service = ConflictService(session_factory, dispatcher)

        await service.run_for_project(b_id)
        await make_project(name="C")
        await service.run_for_project(b_id)

        assert dispatcher.pending == 2

    async def test_inactive_counterpart_loses_its_edge(self, session_factory, dispatcher, make_project):
        a_id = await make_project(name="A")
        b_id = await make_project(name="B")
        service = ConflictService(session_factory, dispatcher)
        await service.run_for_project(b_id)

        async with session_factory() as session:
            await session.execute(update(Project).where(Project.id == b_id).values(_state="rejected"))
            await session.commit()
        await service.run_for_project(a_id)

        a = await _load(session_factory, a_id)
        b = await _load(session_factory, b_id)
        assert a.conflicting_project_ids == set() and a.has_conflict is False
        assert b.conflicting_project_ids == set() and b.has_conflict is False

    async def test_far_project_is_not_linked(self, session_factory, dispatcher, make_project):
        await make_project(name="far", geometry=offset_point(d_lat=0.001))
        b_id = await make_project(name="B")

        result = await ConflictService(session_factory, dispatcher).run_for_project(b_id)

        assert result.has_conflict is False
        assert await _edge_count(session_factory) == 0
        assert dispatcher.pending == 0

    async def test_missing_project(self, session_factory, dispatcher):
        with pytest.raises(ProjectNotFound):
            await ConflictService(session_factory, dispatcher).run_for_project(uuid.uuid4())


class TestApplyConflictResult:

    async def test_source_side_is_recomputed_from_scratch(self, session_factory, make_project):
        source = await make_project(name="source")
        first = await make_project(name="first")
        second = await make_project(name="second")
        maintainer = ConflictGraphMaintainer(session_factory)

        await maintainer.apply_conflict_result(source, await _result_for(session_factory, first))
        report = await maintainer.apply_conflict_result(source, await _result_for(session_factory, second))

        assert (await _load(session_factory, source)).conflicting_project_ids == {second}
        assert report.newly_linked == [second]
        assert report.detached == [first]
        dropped = await _load(session_factory, first)
        assert dropped.conflicting_project_ids == set()
        assert dropped.has_conflict is False

    async def test_empty_result_clears_flag(self, session_factory, make_project):
        source = await make_project(name="source")
        other = await make_project(name="other")
        maintainer = ConflictGraphMaintainer(session_factory)

        await maintainer.apply_conflict_result(source, await _result_for(session_factory, other))
        await maintainer.apply_conflict_result(source, ConflictDetectionResult(has_conflict=False))

        project = await _load(session_factory, source)
        assert project.has_conflict is False
        assert project.conflicting_project_ids == set()

    async def test_second_application_reports_already_linked(self, session_factory, make_project):
        source = await make_project(name="source")
        other = await make_project(name="other")
        maintainer = ConflictGraphMaintainer(session_factory)
        result = await _result_for(session_factory, other)

        first = await maintainer.apply_conflict_result(source, result)
        second = await maintainer.apply_conflict_result(source, result)

        assert first.newly_linked == [other]
        assert second.newly_linked == []
        assert second.already_linked == [other]

    async def test_secondary_failure_is_reported_not_raised(self, session_factory, make_project, monkeypatch):
        source = await make_project(name="source")
        healthy = await make_project(name="healthy")
        broken = await make_project(name="broken")
        real_append = ProjectRepository.append_conflict

        async def flaky_append(self, session, project_id, conflicting_id):
            if project_id == broken:
                raise ConnectionError("lost connection")
            return await real_append(self, session, project_id, conflicting_id)

        monkeypatch.setattr(ProjectRepository, "append_conflict", flaky_append)

        report = await ConflictGraphMaintainer(session_factory).apply_conflict_result(
            source, await _result_for(session_factory, healthy, broken)
        )

        assert report.failed == [broken]
        assert report.newly_linked == [healthy]
        assert (await _load(session_factory, source)).conflicting_project_ids == {healthy, broken}
        assert (await _load(session_factory, healthy)).conflicting_project_ids == {source}
        assert (await _load(session_factory, broken)).conflicting_project_ids == set()

    async def test_missing_source(self, session_factory):
        with pytest.raises(ProjectNotFound):
            await ConflictGraphMaintainer(session_factory).apply_conflict_result(
                uuid.uuid4(), ConflictDetectionResult(has_conflict=False)
            )

    async def test_concurrent_appends_never_duplicate(self, session_factory, make_project):
        target = await make_project(name="target")
        source = await make_project(name="source")

        async def append():
            async with session_factory() as session:
                added = await ProjectRepository().append_conflict(session, target, source)
                await session.commit()
                return added

        outcomes = await asyncio.gather(*(append() for _ in range(5)))

        assert outcomes.count(True) == 1
        assert await _edge_count(session_factory) == 1
        assert (await _load(session_factory, target)).has_conflict is True
