import uuid
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


# Engine records

class Conflict(BaseModel):
    """A worker already committed to another active job in an overlapping window"""
    worker_id: str
    worker_name: str
    conflicting_job_id: str
    conflicting_job_title: str
    conflict_start: datetime
    conflict_end: datetime


class AvailabilityResult(BaseModel):
    available: bool
    conflicts: List[Conflict] = Field(default_factory=list)


class CrewMember(BaseModel):
    id: str
    name: str
    color: Optional[str] = None
    skills: List[str] = Field(default_factory=list)


class GenerationReport(BaseModel):
    created: List[str] = Field(default_factory=list)  # New child job ids
    skipped: int = 0
    failed: int = 0
    provider_summary: Dict[str, int] = Field(default_factory=dict)

    @property
    def total_created(self) -> int:
        return len(self.created)


# Requests

class AssignCrewRequest(BaseModel):
    crew_id: uuid.UUID
    override_conflicts: bool = False


class AssignUsersRequest(BaseModel):
    user_ids: List[str]
    mode: Literal["add", "replace"] = "add"
    override_conflicts: bool = False


class UnassignRequest(BaseModel):
    type: Literal["all", "crew", "users"]
    user_ids: Optional[List[str]] = None


class OverrideRequest(BaseModel):
    reason: str
    assigned_worker_id: Optional[str] = None


class CheckConflictsRequest(BaseModel):
    start_time: datetime
    duration: int = Field(gt=0, description="Minutes")
    worker_ids: List[str]
    exclude_job_id: Optional[str] = None


class CrewCreate(BaseModel):
    name: str
    user_ids: List[str] = Field(default_factory=list)
    leader_id: Optional[str] = None
    color: str = "#10b981"

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Crew name is required")
        return v.strip()


class CrewUpdate(BaseModel):
    name: Optional[str] = None
    user_ids: Optional[List[str]] = None
    leader_id: Optional[str] = None
    color: Optional[str] = None


class WorkerStatusUpdate(BaseModel):
    status: str

    @field_validator("status")
    @classmethod
    def _status_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("status is required")
        return v.strip().lower()


# Responses

class JobAssignmentResponse(BaseModel):
    id: uuid.UUID
    service_type: Optional[str] = None
    start_time: datetime
    end_time: datetime
    status: str
    assigned_user_ids: List[str]
    assigned_crew_id: Optional[uuid.UUID] = None
    allow_unqualified: bool = False
    unqualified_override_by: Optional[uuid.UUID] = None
    unqualified_override_at: Optional[datetime] = None
    unqualified_override_reason: Optional[str] = None

    class Config:
        from_attributes = True


class CrewResponse(BaseModel):
    id: uuid.UUID
    name: str
    color: Optional[str] = None
    user_ids: List[str]
    leader_id: Optional[uuid.UUID] = None

    class Config:
        from_attributes = True
