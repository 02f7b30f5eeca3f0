from sqlalchemy import Column, String, DateTime, Date, ForeignKey, Text, Float, JSON, Boolean, Index, CheckConstraint, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.ext.hybrid import hybrid_property
from datetime import datetime, timezone
import uuid
import enum
from database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# PROJECT LIFECYCLE
# =============================================================================

class ProjectState(str, enum.Enum):
    """
    Project workflow states

    draft → forward_planning | pending_approval
    pending_approval → approved | rejected
    approved → in_progress | cancelled
    in_progress → completed
    """
    DRAFT = "draft"
    FORWARD_PLANNING = "forward_planning"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class BoundingBoxMixin:
    """Stored lon/lat envelope, used as a coarse spatial prefilter."""
    min_lon = Column(Float, nullable=False)
    min_lat = Column(Float, nullable=False)
    max_lon = Column(Float, nullable=False)
    max_lat = Column(Float, nullable=False)

    def set_bounds(self, bounds) -> None:
        self.min_lon, self.min_lat, self.max_lon, self.max_lat = bounds


class Project(BoundingBoxMixin, Base):
    __tablename__ = "projects"
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    name = Column(String(255), nullable=False)
    applicant_id = Column(String, nullable=False, index=True)
    contractor_organization = Column(String(255), nullable=True)
    work_type = Column(String(100), nullable=False, default="excavation")
    work_category = Column(String(50), nullable=False, default="utility")
    description = Column(Text, nullable=True)

    _state = Column('state', String(50), nullable=False, default=ProjectState.DRAFT.value)

    # 🔒 PROTECTION: Direct state assignment is FORBIDDEN
    # Use ProjectTransitionService.request_transition() instead
    @hybrid_property
    def state(self):
        """Read-only state - use request_transition() to change"""
        return self._state

    @state.setter
    def state(self, value):
        raise RuntimeError(
            f"DIRECT STATE ASSIGNMENT BLOCKED: project.state = '{value}'. "
            f"Use ProjectTransitionService.request_transition()"
        )

    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)

    # GeoJSON (Point | LineString | Polygon), EPSG:4326
    geometry = Column(JSON, nullable=False)

    # Derived - maintained by the conflict graph maintainer only
    has_conflict = Column(Boolean, nullable=False, default=False)
    conflict_verification_pending = Column(Boolean, nullable=False, default=False)
    # ids (as strings) of moratoriums violated at the last detection run
    violated_moratorium_ids = Column(JSON, nullable=False, default=list)
    affected_municipalities = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=utcnow)

    conflict_links = relationship(
        "ProjectConflict",
        foreign_keys="ProjectConflict.project_id",
        lazy="selectin",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="valid_date_range"),
        Index("idx_projects_state", "state"),
        Index("idx_projects_dates", "start_date", "end_date"),
        Index("idx_projects_bbox", "min_lon", "max_lon", "min_lat", "max_lat"),
    )

    @property
    def conflicting_project_ids(self) -> set:
        return {link.conflicting_project_id for link in self.conflict_links}


class ProjectConflict(Base):
    """
    One directed edge of the conflict graph: project_id lists conflicting_project_id.

    The composite primary key makes duplicate entries impossible.
    """
    __tablename__ = "project_conflicts"

    project_id = Column(Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True)
    conflicting_project_id = Column(Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Moratorium(BoundingBoxMixin, Base):
    __tablename__ = "moratoriums"
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    name = Column(String(255), nullable=False)
    # GeoJSON LineString | Polygon
    geometry = Column(JSON, nullable=False)
    reason = Column(String(100), nullable=False)
    reason_detail = Column(Text, nullable=True)
    valid_from = Column(Date, nullable=False)
    valid_to = Column(Date, nullable=False)
    exceptions = Column(Text, nullable=True)
    created_by = Column(String, nullable=False, index=True)
    municipality_code = Column(String(10), nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("valid_to >= valid_from", name="valid_moratorium_period"),
        Index("idx_moratoriums_dates", "valid_from", "valid_to"),
    )


class Municipality(Base):
    __tablename__ = "municipalities"
    code = Column(String(10), primary_key=True)
    name = Column(String(255), nullable=False)
    geometry = Column(JSON, nullable=False)


class ProjectStateTransition(Base):
    """Audit trail of project state changes"""
    __tablename__ = "project_state_transitions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    from_state = Column(String(50), nullable=False)
    to_state = Column(String(50), nullable=False)
    actor_id = Column(String, nullable=False)
    transitioned_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
