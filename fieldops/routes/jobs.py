"""
Job assignment API routes.
Crew/worker assignment, unassignment, skill overrides and conflict checks.
"""
from datetime import timedelta

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import Provider, Worker
from ..schemas.scheduling import (
    AssignCrewRequest,
    AssignUsersRequest,
    CheckConflictsRequest,
    JobAssignmentResponse,
    OverrideRequest,
    UnassignRequest,
)
from ..services.assignment import (
    apply_skill_override,
    assign_crew,
    assign_users,
    clear_skill_override,
    get_job_assignment,
    unassign,
)
from ..services.dispatch_conflict import find_conflicting_jobs
from ..services.recurrence import generate_recurring_jobs
from ..services.permissions import require_scheduler

router = APIRouter(prefix="/jobs", tags=["jobs"])


def _job_out(job) -> dict:
    return JobAssignmentResponse.model_validate(job).model_dump(mode="json")


@router.post("/{job_id}/assign-crew")
def assign_crew_to_job(
    job_id: str,
    payload: AssignCrewRequest,
    db: Session = Depends(get_db),
    user: Worker = Depends(get_current_user),
):
    """
    Assign a crew to a job.
    Returns 409 with the conflicts when members are double-booked and override_conflicts is false.
    """
    result = assign_crew(db, user, job_id, payload.crew_id, payload.override_conflicts)
    conflicts = result["conflicts"]
    return {
        "success": True,
        "message": result["message"],
        "job": _job_out(result["job"]),
        "overrode_conflicts": result["overrode_conflicts"],
        "conflicts": [c.model_dump(mode="json") for c in conflicts] if conflicts else None,
    }


@router.post("/{job_id}/assign-users")
def assign_users_to_job(
    job_id: str,
    payload: AssignUsersRequest,
    db: Session = Depends(get_db),
    user: Worker = Depends(get_current_user),
):
    result = assign_users(db, user, job_id, payload.user_ids, payload.mode, payload.override_conflicts)
    return {
        "success": True,
        "message": result["message"],
        "job": _job_out(result["job"]),
        "added_count": result["added_count"],
        "overrode_conflicts": result["overrode_conflicts"],
    }


@router.post("/{job_id}/unassign")
def unassign_from_job(
    job_id: str,
    payload: UnassignRequest,
    db: Session = Depends(get_db),
    user: Worker = Depends(get_current_user),
):
    result = unassign(db, user, job_id, payload.type, payload.user_ids)
    return {"success": True, "message": result["message"], "job": _job_out(result["job"])}


@router.post("/{job_id}/override")
def override_skill_requirements(
    job_id: str,
    payload: OverrideRequest,
    db: Session = Depends(get_db),
    user: Worker = Depends(get_current_user),
):
    result = apply_skill_override(db, user, job_id, payload.reason, payload.assigned_worker_id)
    job = _job_out(result["job"])
    job["override_by_name"] = result["override_by_name"]
    return {"success": True, "message": result["message"], "job": job}


@router.delete("/{job_id}/override")
def remove_skill_override(
    job_id: str,
    db: Session = Depends(get_db),
    user: Worker = Depends(get_current_user),
):
    result = clear_skill_override(db, user, job_id)
    return {"success": True, "message": result["message"], "job": _job_out(result["job"])}


@router.get("/{job_id}/assignment")
def get_assignment(
    job_id: str,
    include_availability: bool = Query(default=False),
    db: Session = Depends(get_db),
    user: Worker = Depends(get_current_user),
):
    return get_job_assignment(db, user.provider_id, job_id, include_availability)


@router.post("/check-conflicts")
def check_conflicts(
    payload: CheckConflictsRequest,
    db: Session = Depends(get_db),
    user: Worker = Depends(get_current_user),
):
    provider = db.query(Provider).filter(Provider.id == user.provider_id).first()
    end_time = payload.start_time + timedelta(minutes=payload.duration)
    return find_conflicting_jobs(
        db,
        user.provider_id,
        payload.worker_ids,
        payload.start_time,
        end_time,
        payload.exclude_job_id,
        timezone_str=provider.timezone if provider else None,
    )


@router.post("/generate-recurring")
def generate_recurring_for_provider(
    db: Session = Depends(get_db),
    user: Worker = Depends(get_current_user),
):
    """On-demand recurring generation for the caller's provider."""
    require_scheduler(user, "generate recurring jobs")
    report = generate_recurring_jobs(db, provider_id=user.provider_id)
    return {
        "success": True,
        "message": f"Generated {report.total_created} recurring job(s)",
        "jobs_created": report.total_created,
        "job_ids": report.created,
        "failed": report.failed,
    }
