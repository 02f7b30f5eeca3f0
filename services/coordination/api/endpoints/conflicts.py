"""
Conflicts API Endpoints
Ad-hoc checks, buffer zones, statistics and the admin re-run.
"""
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from api.dependencies import Services, get_services, map_exception_to_http
from conflict_detector import ConflictDetectionResult
from exceptions import BasePermitException
from geometry import DateInterval, buffer_geometry, parse_geometry
from logging_config import get_logger
from schemas import BufferRequest, BufferResponse, ConflictCheckRequest, ConflictStatistics

logger = get_logger(__name__)

router = APIRouter(tags=["conflicts"])


@router.post(
    "/conflicts/check",
    response_model=ConflictDetectionResult,
    responses={
        422: {"model": dict, "description": "Invalid geometry or date range"},
        503: {"model": dict, "description": "Conflict detection failed"},
        504: {"model": dict, "description": "Conflict detection timed out"},
    },
)
async def check_conflicts(
    payload: ConflictCheckRequest,
    services: Services = Depends(get_services),
) -> ConflictDetectionResult:
    """Detect conflicts for an arbitrary geometry and interval. Nothing is stored."""
    try:
        interval = DateInterval(start=payload.start_date, end=payload.end_date)
        return await services.conflicts.engine.detect_conflicts(
            payload.geometry,
            interval,
            exclude_project_id=payload.exclude_project_id,
        )
    except BasePermitException as e:
        raise map_exception_to_http(e) from e


@router.post(
    "/conflicts/buffer",
    response_model=BufferResponse,
    responses={422: {"model": dict, "description": "Invalid geometry"}},
)
async def buffer_zone(payload: BufferRequest) -> BufferResponse:
    """Outline of the zone within `buffer_meters` of a geometry, for map display."""
    try:
        geometry = parse_geometry(payload.geometry)
    except BasePermitException as e:
        raise map_exception_to_http(e) from e
    return BufferResponse(
        buffered_geometry=buffer_geometry(geometry, payload.buffer_meters),
        buffer_meters=payload.buffer_meters,
    )


@router.get("/conflicts/statistics", response_model=ConflictStatistics)
async def conflict_statistics(
    municipality: Optional[List[str]] = Query(None, description="Municipality codes"),
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    services: Services = Depends(get_services),
) -> ConflictStatistics:
    try:
        return await services.conflicts.get_conflict_statistics(municipality, start, end)
    except BasePermitException as e:
        raise map_exception_to_http(e) from e


@router.post("/admin/conflicts/rerun", tags=["admin"])
async def rerun_all_conflicts(services: Services = Depends(get_services)):
    """
    Re-evaluate every active project.

    200 when every project succeeded, 207 with per-project errors otherwise.
    """
    report = await services.batch_runner.run_all_active()
    body = report.summary()
    logger.info("admin_conflict_rerun", projects=len(report), failed=len(report.failed))

    if report.failed:
        return JSONResponse(status_code=207, content=body)
    return body
