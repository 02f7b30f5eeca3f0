"""
Conflict Graph Maintainer

Persists a detection verdict back onto the involved projects and keeps the
conflict relation symmetric:

1. Source project: has_conflict, the conflicting ids and the violated
   moratoriums are recomputed from scratch (one transaction, row lock on
   the source). Counterparts no longer in the set lose their edge back to
   the source.
2. Every project named in spatial_conflicts gets the source id appended if
   absent (atomic insert-if-absent + flag update, one transaction each).

Step 2 is a best-effort batch of independent writes. A failed secondary
update is logged and reported, never raised: the next detection run repairs
it. Re-running with the same result is a no-op on the secondary side.
"""

from typing import List
from uuid import UUID

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from conflict_detector import ConflictDetectionResult
from exceptions import ProjectNotFound
from infrastructure.uow import UnitOfWork
from logging_config import get_logger, log_graph_update

logger = get_logger(__name__)


class GraphUpdateReport(BaseModel):
    project_id: UUID
    conflicting_project_ids: List[UUID] = Field(default_factory=list)
    # Source side: ids and moratoriums the source did not list before this run
    source_added: List[UUID] = Field(default_factory=list)
    new_moratorium_ids: List[UUID] = Field(default_factory=list)
    # Counterparts whose stale edge to the source was removed
    detached: List[UUID] = Field(default_factory=list)
    # Counterparts that did not list the source yet
    newly_linked: List[UUID] = Field(default_factory=list)
    already_linked: List[UUID] = Field(default_factory=list)
    failed: List[UUID] = Field(default_factory=list)

    @property
    def has_news(self) -> bool:
        """True when this run linked something that was not linked before."""
        return bool(self.source_added or self.new_moratorium_ids or self.newly_linked)


class ConflictGraphMaintainer:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def apply_conflict_result(
        self,
        project_id: UUID,
        result: ConflictDetectionResult,
    ) -> GraphUpdateReport:
        """
        Write `result` onto the source project and its counterparts.

        Raises:
            ProjectNotFound: the source project does not exist
        """
        conflicting_ids = list(dict.fromkeys(result.conflicting_project_ids))
        report = GraphUpdateReport(project_id=project_id, conflicting_project_ids=conflicting_ids)

        async with UnitOfWork(self._session_factory) as uow:
            project = await uow.projects.get_for_update(uow.session, project_id)
            if project is None:
                raise ProjectNotFound(str(project_id))
            change = await uow.projects.replace_conflicts(
                uow.session, project_id, conflicting_ids, result.moratorium_ids
            )
        report.source_added = change.added
        report.new_moratorium_ids = [UUID(mid) for mid in change.added_moratoriums]
        report.detached = change.detached

        for conflicting_id in conflicting_ids:
            if conflicting_id == project_id:
                continue
            try:
                async with UnitOfWork(self._session_factory) as uow:
                    added = await uow.projects.append_conflict(uow.session, conflicting_id, project_id)
            except Exception as e:
                logger.warning(
                    "symmetric_conflict_update_failed",
                    project_id=str(conflicting_id),
                    source_project_id=str(project_id),
                    error=str(e),
                )
                report.failed.append(conflicting_id)
                continue

            if added:
                report.newly_linked.append(conflicting_id)
            else:
                report.already_linked.append(conflicting_id)

        log_graph_update(
            project_id,
            result.has_conflict,
            report.newly_linked,
            report.already_linked,
            report.failed,
        )
        return report
