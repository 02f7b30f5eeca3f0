"""
Conflict Detection Engine

Combines the spatial, temporal and moratorium checks into one verdict:

1. Active projects within the 20 m buffer zone (query layer)
2. ... whose date interval overlaps the queried interval
3. Moratoriums overlapping both geometry and interval (independent query)
4. has_conflict = any project conflict OR any moratorium violation

Steps 1 and 3 run concurrently and are merged after both complete.

Failure policy: absence of evidence is not evidence of absence. A query
failure or a timeout raises; the engine never answers "no conflict" when
it could not look.
"""

import asyncio
import time
from typing import List, Optional, Protocol
from uuid import UUID

from pydantic import BaseModel, Field

from conflict_config import CONFLICT_BUFFER_METERS, DETECTION_TIMEOUT_SECONDS
from exceptions import ConflictDetectionFailed, ConflictDetectionTimeout, InvalidGeometry
from geometry import DateInterval, Geometry, overlaps, parse_geometry
from logging_config import get_logger, log_conflict_detection
from schemas import MoratoriumSnapshot, ProjectSnapshot

logger = get_logger(__name__)


# =============================================================================
# Result
# =============================================================================

class ConflictDetectionResult(BaseModel):
    """Transient verdict; never persisted as its own entity"""
    has_conflict: bool
    spatial_conflicts: List[ProjectSnapshot] = Field(default_factory=list)
    temporal_conflicts: List[ProjectSnapshot] = Field(default_factory=list)
    moratorium_violations: List[MoratoriumSnapshot] = Field(default_factory=list)

    class Config:
        frozen = True

    @property
    def conflicting_project_ids(self) -> List[UUID]:
        return [project.id for project in self.spatial_conflicts]

    @property
    def moratorium_ids(self) -> List[UUID]:
        return [moratorium.id for moratorium in self.moratorium_violations]

    def summary(self) -> dict:
        return {
            "has_conflict": self.has_conflict,
            "conflicting_project_ids": [str(pid) for pid in self.conflicting_project_ids],
            "moratorium_ids": [str(mid) for mid in self.moratorium_ids],
        }


class ConflictQueries(Protocol):
    """Read side of the persistence boundary used by the engine"""

    async def find_active_projects_near(
        self, geometry: Geometry, buffer_meters: float, exclude_id: Optional[UUID]
    ) -> List[ProjectSnapshot]: ...

    async def find_overlapping_moratoriums(
        self, geometry: Geometry, interval: DateInterval
    ) -> List[MoratoriumSnapshot]: ...


# =============================================================================
# Engine
# =============================================================================

class ConflictDetectionEngine:

    def __init__(self, queries: ConflictQueries, timeout_seconds: float = DETECTION_TIMEOUT_SECONDS):
        self._queries = queries
        self._timeout_seconds = timeout_seconds

    async def detect_conflicts(
        self,
        geometry,
        interval: DateInterval,
        exclude_project_id: Optional[UUID] = None,
        timeout: Optional[float] = None,
    ) -> ConflictDetectionResult:
        """
        Detect project and moratorium conflicts for a geometry and interval.

        Args:
            geometry: GeoJSON dict or validated Geometry
            interval: inclusive date interval
            exclude_project_id: the project being checked, if already stored
            timeout: seconds; defaults to DETECTION_TIMEOUT_SECONDS

        Raises:
            InvalidGeometry: malformed or empty geometry (detection not run)
            ConflictDetectionTimeout: not completed in time
            ConflictDetectionFailed: query layer failure, with the cause
        """
        geometry = parse_geometry(geometry)
        timeout = self._timeout_seconds if timeout is None else timeout
        started = time.monotonic()

        try:
            result = await asyncio.wait_for(
                self._detect(geometry, interval, exclude_project_id),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(
                "conflict_detection_timeout",
                timeout_seconds=timeout,
                exclude_project_id=str(exclude_project_id) if exclude_project_id else None,
            )
            raise ConflictDetectionTimeout(timeout) from e
        except (InvalidGeometry, ConflictDetectionFailed):
            raise
        except Exception as e:
            logger.error(
                "conflict_detection_failed",
                error_type=type(e).__name__,
                error=str(e),
                exclude_project_id=str(exclude_project_id) if exclude_project_id else None,
            )
            raise ConflictDetectionFailed("Failed to detect conflicts", cause=e) from e

        log_conflict_detection(
            exclude_project_id,
            result.conflicting_project_ids,
            result.moratorium_ids,
            (time.monotonic() - started) * 1000,
        )
        return result

    async def _detect(
        self,
        geometry: Geometry,
        interval: DateInterval,
        exclude_project_id: Optional[UUID],
    ) -> ConflictDetectionResult:
        nearby, moratorium_violations = await asyncio.gather(
            self._queries.find_active_projects_near(geometry, CONFLICT_BUFFER_METERS, exclude_project_id),
            self._queries.find_overlapping_moratoriums(geometry, interval),
        )

        # Spatially near but temporally disjoint is not a conflict
        project_conflicts = [
            project for project in nearby
            if overlaps(project.interval, interval)
        ]

        return ConflictDetectionResult(
            has_conflict=bool(project_conflicts) or bool(moratorium_violations),
            spatial_conflicts=project_conflicts,
            temporal_conflicts=list(project_conflicts),
            moratorium_violations=list(moratorium_violations),
        )
