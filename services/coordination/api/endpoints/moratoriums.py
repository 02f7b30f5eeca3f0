"""
Moratoriums API Endpoints
"""
import uuid
from typing import List

from fastapi import APIRouter, Depends, Query

from api.dependencies import Services, get_services, map_exception_to_http
from exceptions import BasePermitException
from moratorium_service import MoratoriumChangeResult
from schemas import MoratoriumCreate, MoratoriumSnapshot, MoratoriumUpdate

router = APIRouter(prefix="/moratoriums", tags=["moratoriums"])


def _change_response(result: MoratoriumChangeResult) -> dict:
    return {
        "action": result.action.value,
        "moratorium": result.moratorium.model_dump(mode="json"),
        "rerun": result.rerun.summary(),
    }


@router.post(
    "",
    status_code=201,
    responses={422: {"model": dict, "description": "Invalid geometry or validity period"}},
)
async def create_moratorium(
    payload: MoratoriumCreate,
    services: Services = Depends(get_services),
):
    """Create a moratorium and re-evaluate the active projects it covers."""
    try:
        result = await services.moratoriums.create_moratorium(payload)
    except BasePermitException as e:
        raise map_exception_to_http(e) from e
    return _change_response(result)


@router.get("/expiring", response_model=List[MoratoriumSnapshot])
async def expiring_moratoriums(
    days: int = Query(30, ge=0, le=366),
    services: Services = Depends(get_services),
) -> List[MoratoriumSnapshot]:
    return await services.moratoriums.find_expiring_soon(days=days)


@router.patch(
    "/{moratorium_id}",
    responses={
        403: {"model": dict, "description": "Only the creator can modify"},
        404: {"model": dict, "description": "Moratorium not found"},
        422: {"model": dict, "description": "Invalid geometry or validity period"},
    },
)
async def update_moratorium(
    moratorium_id: uuid.UUID,
    payload: MoratoriumUpdate,
    services: Services = Depends(get_services),
):
    try:
        result = await services.moratoriums.update_moratorium(moratorium_id, payload)
    except BasePermitException as e:
        raise map_exception_to_http(e) from e
    return _change_response(result)


@router.delete(
    "/{moratorium_id}",
    responses={
        403: {"model": dict, "description": "Only the creator can delete"},
        404: {"model": dict, "description": "Moratorium not found"},
    },
)
async def delete_moratorium(
    moratorium_id: uuid.UUID,
    actor_id: str = Query(..., description="User performing the deletion"),
    services: Services = Depends(get_services),
):
    try:
        result = await services.moratoriums.delete_moratorium(moratorium_id, actor_id)
    except BasePermitException as e:
        raise map_exception_to_http(e) from e
    return _change_response(result)
