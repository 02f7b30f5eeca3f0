"""
Batch Conflict Runner

Re-evaluates conflicts for many projects (after a moratorium change, or on
the nightly sweep) without overwhelming the store:

- fixed-size groups (BATCH_GROUP_SIZE), run concurrently within a group
- a short pause (BATCH_GROUP_DELAY_MS) between groups
- a failing project is recorded against its id; the batch carries on
"""

import asyncio
from typing import Dict, Iterable, List, Union
from uuid import UUID

from pydantic import BaseModel

from conflict_config import ACTIVE_PROJECT_STATES, BATCH_GROUP_DELAY_MS, BATCH_GROUP_SIZE
from conflict_detector import ConflictDetectionResult
from exceptions import PartialBatchFailure
from infrastructure.uow import UnitOfWork
from logging_config import get_logger

logger = get_logger(__name__)


class BatchItemFailure(BaseModel):
    project_id: UUID
    error_type: str
    message: str

    class Config:
        frozen = True


BatchOutcome = Union[ConflictDetectionResult, BatchItemFailure]


class BatchReport(dict):
    """project id → ConflictDetectionResult | BatchItemFailure, in request order"""

    @property
    def succeeded(self) -> Dict[UUID, ConflictDetectionResult]:
        return {pid: outcome for pid, outcome in self.items() if isinstance(outcome, ConflictDetectionResult)}

    @property
    def failed(self) -> Dict[UUID, BatchItemFailure]:
        return {pid: outcome for pid, outcome in self.items() if isinstance(outcome, BatchItemFailure)}

    def summary(self) -> dict:
        return {
            "succeeded": {str(pid): result.summary() for pid, result in self.succeeded.items()},
            "failed": {
                str(pid): {"error_type": failure.error_type, "message": failure.message}
                for pid, failure in self.failed.items()
            },
        }

    def raise_for_failures(self) -> None:
        failures = self.failed
        if failures:
            raise PartialBatchFailure({
                str(pid): {"error_type": failure.error_type, "message": failure.message}
                for pid, failure in failures.items()
            })


def _groups(items: List[UUID], size: int) -> Iterable[List[UUID]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class BatchConflictRunner:

    def __init__(
        self,
        conflict_service,
        session_factory=None,
        group_size: int = BATCH_GROUP_SIZE,
        group_delay_ms: int = BATCH_GROUP_DELAY_MS,
    ):
        if group_size < 1:
            raise ValueError("group_size must be at least 1")
        self._conflict_service = conflict_service
        self._session_factory = session_factory
        self._group_size = group_size
        self._group_delay = group_delay_ms / 1000.0

    async def run_batch(self, project_ids: Iterable[UUID]) -> BatchReport:
        """
        Re-run detection for every id. Never raises for a single project's
        failure; see BatchReport.raise_for_failures().
        """
        ordered = list(dict.fromkeys(project_ids))
        report = BatchReport()
        groups = list(_groups(ordered, self._group_size))

        logger.info("conflict_batch_started", projects=len(ordered), groups=len(groups))

        for index, group in enumerate(groups):
            outcomes = await asyncio.gather(
                *(self._conflict_service.run_for_project(project_id) for project_id in group),
                return_exceptions=True,
            )
            for project_id, outcome in zip(group, outcomes):
                if isinstance(outcome, BaseException):
                    if isinstance(outcome, asyncio.CancelledError):
                        raise outcome
                    logger.warning(
                        "conflict_batch_item_failed",
                        project_id=str(project_id),
                        error_type=type(outcome).__name__,
                        error=str(outcome),
                    )
                    report[project_id] = BatchItemFailure(
                        project_id=project_id,
                        error_type=type(outcome).__name__,
                        message=str(outcome),
                    )
                else:
                    report[project_id] = outcome

            if index < len(groups) - 1:
                await asyncio.sleep(self._group_delay)

        logger.info(
            "conflict_batch_finished",
            projects=len(ordered),
            succeeded=len(report.succeeded),
            failed=len(report.failed),
        )
        return report

    async def run_all_active(self) -> BatchReport:
        """Maintenance sweep over every project in an active state."""
        if self._session_factory is None:
            raise RuntimeError("run_all_active needs a session_factory")
        async with UnitOfWork(self._session_factory) as uow:
            project_ids = await uow.projects.list_ids_in_states(uow.session, ACTIVE_PROJECT_STATES)
        return await self.run_batch(project_ids)
