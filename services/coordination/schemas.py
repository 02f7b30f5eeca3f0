from pydantic import BaseModel, Field, field_validator
from typing import Literal, Optional, List, Dict, Any
from datetime import date, datetime
import uuid

from geometry import DateInterval

# =============================================================================
# Read models (detached from the ORM session)
# =============================================================================

class ProjectSnapshot(BaseModel):
    id: uuid.UUID
    name: str
    applicant_id: str
    state: str
    geometry: Dict[str, Any]
    start_date: date
    end_date: date
    work_type: str = "excavation"
    work_category: str = "utility"
    contractor_organization: Optional[str] = None
    description: Optional[str] = None
    has_conflict: bool = False
    conflict_verification_pending: bool = False
    conflicting_project_ids: List[uuid.UUID] = Field(default_factory=list)
    violated_moratorium_ids: List[uuid.UUID] = Field(default_factory=list)
    affected_municipalities: List[str] = Field(default_factory=list)
    created_at: datetime

    class Config:
        from_attributes = True
        frozen = True

    @field_validator("conflicting_project_ids", "violated_moratorium_ids", mode="before")
    @classmethod
    def _stable_order(cls, value):
        return sorted(value or [], key=str)

    @property
    def interval(self) -> DateInterval:
        return DateInterval(start=self.start_date, end=self.end_date)


class MoratoriumSnapshot(BaseModel):
    id: uuid.UUID
    name: str
    geometry: Dict[str, Any]
    reason: str
    reason_detail: Optional[str] = None
    valid_from: date
    valid_to: date
    exceptions: Optional[str] = None
    created_by: str
    municipality_code: str
    created_at: datetime

    class Config:
        from_attributes = True
        frozen = True

    @property
    def interval(self) -> DateInterval:
        return DateInterval(start=self.valid_from, end=self.valid_to)


# =============================================================================
# Project requests
# =============================================================================

class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    applicant_id: str
    geometry: Dict[str, Any]
    start_date: date
    end_date: date
    work_type: str = Field("excavation", max_length=100)
    work_category: str = Field("utility", max_length=50)
    contractor_organization: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None


class ProjectUpdate(BaseModel):
    """Partial edit; conflict fields and state are not editable here."""
    actor_id: str
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    geometry: Optional[Dict[str, Any]] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    work_type: Optional[str] = Field(None, max_length=100)
    work_category: Optional[str] = Field(None, max_length=50)
    contractor_organization: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None


class ProjectPage(BaseModel):
    items: List[ProjectSnapshot]
    total: int
    page: int
    limit: int
    total_pages: int


class TransitionRequest(BaseModel):
    to_state: str
    actor_id: str


class TransitionResponse(BaseModel):
    project: ProjectSnapshot
    from_state: str
    to_state: str
    conflict_check: Literal["not_required", "completed", "failed"]
    conflicts: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None


class StateTransitionRecord(BaseModel):
    from_state: str
    to_state: str
    actor_id: str
    transitioned_at: datetime

    class Config:
        from_attributes = True


class ConflictCheckRequest(BaseModel):
    geometry: Dict[str, Any]
    start_date: date
    end_date: date
    exclude_project_id: Optional[uuid.UUID] = None


class BufferRequest(BaseModel):
    geometry: Dict[str, Any]
    buffer_meters: float = Field(20.0, ge=0, le=1000)


class BufferResponse(BaseModel):
    buffered_geometry: Dict[str, Any]
    buffer_meters: float


# =============================================================================
# Moratorium requests
# =============================================================================

class MoratoriumCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    geometry: Dict[str, Any]
    reason: str = Field(..., min_length=1, max_length=100)
    reason_detail: Optional[str] = None
    valid_from: date
    valid_to: date
    exceptions: Optional[str] = None
    municipality_code: str = Field(..., min_length=1, max_length=10)
    created_by: str


class MoratoriumUpdate(BaseModel):
    actor_id: str
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    geometry: Optional[Dict[str, Any]] = None
    reason: Optional[str] = Field(None, min_length=1, max_length=100)
    reason_detail: Optional[str] = None
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None
    exceptions: Optional[str] = None


# =============================================================================
# Statistics
# =============================================================================

class ConflictStatistics(BaseModel):
    total_projects: int = 0
    projects_with_conflicts: int = 0
    spatial_conflicts: int = 0
    moratorium_violations: int = 0
