"""
Pytest Configuration and Fixtures

Every test gets its own SQLite database file, so concurrent sessions use
separate connections the way they do against PostgreSQL.
"""
import os
import sys
from datetime import date

import pytest
import pytest_asyncio

# Add services/coordination to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'services', 'coordination'))
os.environ.setdefault("LOG_LEVEL", "WARNING")

from database import create_engine_for, create_schema, create_session_factory  # noqa: E402
from events import EventDispatcher  # noqa: E402
from geometry import geometry_bounds, parse_geometry, to_geojson  # noqa: E402
from models import Moratorium, Municipality, Project  # noqa: E402

PRAGUE_POINT = {"type": "Point", "coordinates": [14.4378, 50.0755]}

# ~200 m square around PRAGUE_POINT
PRAGUE_SQUARE = {
    "type": "Polygon",
    "coordinates": [[
        [14.4364, 50.0746],
        [14.4392, 50.0746],
        [14.4392, 50.0764],
        [14.4364, 50.0764],
        [14.4364, 50.0746],
    ]],
}


def offset_point(d_lon: float = 0.0, d_lat: float = 0.0) -> dict:
    lon, lat = PRAGUE_POINT["coordinates"]
    return {"type": "Point", "coordinates": [lon + d_lon, lat + d_lat]}


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'permits.db'}")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def dispatcher():
    dispatcher = EventDispatcher(base_delay_seconds=0.0)
    yield dispatcher
    await dispatcher.stop()


@pytest.fixture
def make_project(session_factory):
    """Insert a project directly in any state; returns its id."""

    async def _make(
        geometry=None,
        start=date(2024, 1, 15),
        end=date(2024, 1, 25),
        state="approved",
        name="Water main replacement",
        applicant_id="applicant-1",
        created_at=None,
    ):
        parsed = parse_geometry(geometry or PRAGUE_POINT)
        project = Project(
            name=name,
            applicant_id=applicant_id,
            _state=state,
            start_date=start,
            end_date=end,
            geometry=to_geojson(parsed),
            has_conflict=False,
            conflict_verification_pending=False,
            affected_municipalities=[],
            conflict_links=[],
        )
        if created_at is not None:
            project.created_at = created_at
        project.set_bounds(geometry_bounds(parsed))

        async with session_factory() as session:
            session.add(project)
            await session.commit()
        return project.id

    return _make


@pytest.fixture
def make_moratorium(session_factory):
    """Insert a moratorium directly, bypassing re-runs; returns its id."""

    async def _make(
        geometry=None,
        valid_from=date(2024, 1, 1),
        valid_to=date(2024, 12, 31),
        created_by="coordinator-1",
        municipality_code="CZ0100",
    ):
        parsed = parse_geometry(geometry or PRAGUE_SQUARE)
        moratorium = Moratorium(
            name="Resurfaced street",
            geometry=to_geojson(parsed),
            reason="new_surface",
            valid_from=valid_from,
            valid_to=valid_to,
            created_by=created_by,
            municipality_code=municipality_code,
        )
        moratorium.set_bounds(geometry_bounds(parsed))

        async with session_factory() as session:
            session.add(moratorium)
            await session.commit()
        return moratorium.id

    return _make


@pytest_asyncio.fixture
async def prague_municipality(session_factory):
    async with session_factory() as session:
        session.add(Municipality(code="CZ0100", name="Praha", geometry=PRAGUE_SQUARE))
        await session.commit()
    return "CZ0100"
