"""
Job assignment transitions.
A job's assignment state is (assigned_user_ids, assigned_crew_id). Every check
runs before the first write, and each transition commits once.
"""
from typing import Dict, List, Optional

import structlog
from sqlalchemy.orm import Session

from ..errors import DependencyFailure, InvalidInput, InvalidState, NotFound, SchedulingConflict
from ..models.models import Crew, Job, Worker
from .audit import compute_diff, create_audit_log
from .availability import format_conflict_message, get_crew_availability
from .crew_membership import (
    crew_still_assigned,
    get_crew,
    get_crew_members,
    id_difference,
    id_union,
    normalize_ids,
    to_uuid,
    to_uuid_list,
)
from .dispatch_conflict import check_worker_conflicts
from .notifications import send_crew_assignment_notifications
from .permissions import require_scheduler
from .time_windows import as_utc, utc_now

logger = structlog.get_logger(__name__)

ASSIGN_MODES = ("add", "replace")
UNASSIGN_TYPES = ("all", "crew", "users")


def get_job(db: Session, job_id, provider_id) -> Job:
    job = db.query(Job).filter(
        Job.id == to_uuid(job_id, "job id"),
        Job.provider_id == to_uuid(provider_id, "provider id"),
    ).first()
    if not job:
        raise NotFound("Job not found")
    return job


def _assignment_snapshot(job: Job) -> Dict:
    return {
        "assigned_user_ids": normalize_ids(job.assigned_user_ids),
        "assigned_crew_id": str(job.assigned_crew_id) if job.assigned_crew_id else None,
    }


def _record(db: Session, job: Job, actor: Worker, action: str, before: Dict, context: Optional[Dict] = None) -> None:
    job.updated_at = utc_now()
    create_audit_log(
        db,
        entity_type="job",
        entity_id=job.id,
        action=action,
        actor=actor,
        changes_json=compute_diff(before, _assignment_snapshot(job)),
        context=context,
    )


def _conflict_error(detail: str, conflicts: List) -> SchedulingConflict:
    return SchedulingConflict(detail, conflicts=conflicts, message=format_conflict_message(conflicts))


def assign_crew(
    db: Session,
    actor: Worker,
    job_id,
    crew_id,
    override_conflicts: bool = False,
) -> Dict:
    """
    Assign a crew to a job, merging its active members into the job's assignees.

    Args:
        db: Database session
        actor: Calling worker (owner or office)
        job_id: Job ID
        crew_id: Crew ID
        override_conflicts: Apply even if members are double-booked

    Returns:
        Dict with the job, the crew, whether conflicts were overridden and the conflicts

    Raises:
        Forbidden, NotFound, InvalidState, SchedulingConflict
    """
    provider_id = actor.provider_id
    require_scheduler(actor, "assign crews")

    job = get_job(db, job_id, provider_id)
    crew = get_crew(db, crew_id, provider_id)
    if not crew:
        raise NotFound("Crew not found")

    members = get_crew_members(db, crew.id)
    if not members:
        raise InvalidState("Crew has no active members")

    availability = get_crew_availability(db, crew.id, job.start_time, job.end_time, job.id)
    if not availability.available and not override_conflicts:
        raise _conflict_error("Crew has scheduling conflicts", availability.conflicts)

    member_ids = [m.id for m in members]
    before = _assignment_snapshot(job)
    newly_assigned = id_difference(member_ids, job.assigned_user_ids)

    job.assigned_crew_id = crew.id
    job.assigned_user_ids = id_union(job.assigned_user_ids, member_ids)

    overrode = not availability.available and override_conflicts
    if _assignment_snapshot(job) != before:
        _record(db, job, actor, "ASSIGN_CREW", before, {
            "crew_id": str(crew.id),
            "overrode_conflicts": overrode,
            "conflict_count": len(availability.conflicts),
        })
        db.commit()
        db.refresh(job)

    if overrode:
        logger.warning(
            "crew_conflicts_overridden",
            job_id=str(job.id),
            crew_id=str(crew.id),
            conflicts=len(availability.conflicts),
        )

    try:
        send_crew_assignment_notifications(db, job, crew, newly_assigned)
    except DependencyFailure as e:
        logger.warning("crew_notification_failed", job_id=str(job.id), crew_id=str(crew.id), error=str(e))

    return {
        "job": job,
        "crew": crew,
        "message": f'Crew "{crew.name}" assigned to job',
        "overrode_conflicts": overrode,
        "conflicts": availability.conflicts,
    }


def assign_users(
    db: Session,
    actor: Worker,
    job_id,
    user_ids: List[str],
    mode: str = "add",
    override_conflicts: bool = False,
) -> Dict:
    """
    Assign individual workers to a job.
    'add' merges with current assignees, 'replace' sets exactly the given list.
    Only workers not already on the job are conflict-checked. The crew link is untouched.
    """
    provider_id = actor.provider_id
    require_scheduler(actor, "assign workers")

    if mode not in ASSIGN_MODES:
        raise InvalidInput(f"Mode must be one of: {', '.join(ASSIGN_MODES)}")
    ids = normalize_ids(user_ids)
    if not ids:
        raise InvalidInput("At least one user ID is required")

    job = get_job(db, job_id, provider_id)

    workers = db.query(Worker).filter(
        Worker.id.in_(to_uuid_list(ids, "worker id")),
        Worker.provider_id == provider_id,
    ).all()
    found = {str(w.id): w for w in workers}
    missing = [i for i in ids if i not in found]
    if missing:
        raise NotFound(f"Some users not found: {', '.join(missing)}")

    inactive = [found[i].display_name for i in ids if not found[i].is_active]
    if inactive:
        raise InvalidInput(f"Cannot assign inactive users: {', '.join(inactive)}")

    existing = normalize_ids(job.assigned_user_ids)
    new_ids = [i for i in ids if i not in existing]

    conflicts = []
    if new_ids:
        conflicts = check_worker_conflicts(db, new_ids, job.start_time, job.end_time, job.id)
        if conflicts and not override_conflicts:
            raise _conflict_error("Workers have scheduling conflicts", conflicts)

    before = _assignment_snapshot(job)
    job.assigned_user_ids = list(ids) if mode == "replace" else id_union(existing, ids)

    overrode = bool(conflicts) and override_conflicts
    if _assignment_snapshot(job) != before:
        _record(db, job, actor, "ASSIGN_USERS", before, {
            "mode": mode,
            "overrode_conflicts": overrode,
        })
        db.commit()
        db.refresh(job)

    if overrode:
        logger.warning("worker_conflicts_overridden", job_id=str(job.id), conflicts=len(conflicts))

    return {
        "job": job,
        "message": f"{len(ids)} worker(s) assigned to job",
        "added_count": len(ids) if mode == "replace" else len(new_ids),
        "overrode_conflicts": overrode,
        "conflicts": conflicts,
    }


def unassign(
    db: Session,
    actor: Worker,
    job_id,
    unassign_type: str,
    user_ids: Optional[List[str]] = None,
) -> Dict:
    """
    Remove assignments from a job.

    Args:
        db: Database session
        actor: Calling worker (owner or office)
        job_id: Job ID
        unassign_type: 'all' clears everything, 'crew' removes the crew and its
            members (individual assignees stay), 'users' removes specific workers
        user_ids: Workers to remove when unassign_type is 'users'

    Returns:
        Dict with the job and a summary message
    """
    provider_id = actor.provider_id
    if unassign_type not in UNASSIGN_TYPES:
        raise InvalidInput(f"Type must be one of: {', '.join(UNASSIGN_TYPES)}")
    remove_ids = normalize_ids(user_ids)
    if unassign_type == "users" and not remove_ids:
        raise InvalidInput('User IDs are required when type is "users"')

    require_scheduler(actor, "unassign workers")
    job = get_job(db, job_id, provider_id)
    before = _assignment_snapshot(job)
    crew: Optional[Crew] = get_crew(db, job.assigned_crew_id) if job.assigned_crew_id else None

    if unassign_type == "all":
        job.assigned_user_ids = []
        job.assigned_crew_id = None
        message = "All workers and crew unassigned from job"

    elif unassign_type == "crew":
        if not job.assigned_crew_id:
            raise InvalidState("No crew is assigned to this job")
        crew_member_ids = crew.user_ids if crew else []
        job.assigned_user_ids = id_difference(job.assigned_user_ids, crew_member_ids)
        job.assigned_crew_id = None
        message = f'Crew "{crew.name if crew else "Unknown"}" unassigned from job'

    else:
        remaining = id_difference(job.assigned_user_ids, remove_ids)
        removed_count = len(before["assigned_user_ids"]) - len(remaining)
        job.assigned_user_ids = remaining
        if job.assigned_crew_id and not (crew and crew_still_assigned(remaining, crew.user_ids)):
            job.assigned_crew_id = None
        message = f"{removed_count} worker(s) unassigned from job"

    if _assignment_snapshot(job) != before:
        _record(db, job, actor, "UNASSIGN", before, {"type": unassign_type})
        db.commit()
        db.refresh(job)

    return {"job": job, "message": message}


def apply_skill_override(
    db: Session,
    actor: Worker,
    job_id,
    reason: Optional[str],
    assigned_worker_id=None,
) -> Dict:
    """
    Allow an unqualified assignment with an audited reason.
    An optional worker is added to the job without a conflict check; the
    person overriding owns that risk.
    """
    provider_id = actor.provider_id
    require_scheduler(actor, "override skill requirements")

    if not reason or not reason.strip():
        raise InvalidInput("Override reason is required")

    job = get_job(db, job_id, provider_id)

    worker = None
    if assigned_worker_id:
        worker = db.query(Worker).filter(
            Worker.id == to_uuid(assigned_worker_id, "worker id"),
            Worker.provider_id == provider_id,
        ).first()
        if not worker:
            raise NotFound("Worker not found")

    before = _assignment_snapshot(job)
    job.allow_unqualified = True
    job.unqualified_override_by = actor.id
    job.unqualified_override_at = utc_now()
    job.unqualified_override_reason = reason.strip()

    added = False
    if worker is not None and str(worker.id) not in normalize_ids(job.assigned_user_ids):
        job.assigned_user_ids = id_union(job.assigned_user_ids, [worker.id])
        added = True

    _record(db, job, actor, "OVERRIDE", before, {
        "reason": job.unqualified_override_reason,
        "assigned_worker_id": str(worker.id) if worker else None,
    })
    db.commit()
    db.refresh(job)

    if added:
        logger.warning(
            "override_assignment_without_conflict_check",
            job_id=str(job.id),
            worker_id=str(worker.id),
        )

    return {
        "job": job,
        "override_by_name": actor.display_name,
        "message": "Skill requirement override applied successfully",
    }


def clear_skill_override(db: Session, actor: Worker, job_id) -> Dict:
    provider_id = actor.provider_id
    require_scheduler(actor, "remove skill overrides")
    job = get_job(db, job_id, provider_id)

    before = _assignment_snapshot(job)
    job.allow_unqualified = False
    job.unqualified_override_by = None
    job.unqualified_override_at = None
    job.unqualified_override_reason = None

    _record(db, job, actor, "CLEAR_OVERRIDE", before)
    db.commit()
    db.refresh(job)
    return {"job": job, "message": "Skill override removed"}


def get_job_assignment(db: Session, provider_id, job_id, include_availability: bool = False) -> Dict:
    """
    Read view of a job's assignment: crew members vs individually assigned workers,
    optionally with current conflicts for each group.
    """
    job = get_job(db, job_id, provider_id)
    crew = get_crew(db, job.assigned_crew_id) if job.assigned_crew_id else None
    assigned_ids = normalize_ids(job.assigned_user_ids)
    crew_ids = set(normalize_ids(crew.user_ids)) if crew else set()

    workers = db.query(Worker).filter(Worker.id.in_(to_uuid_list(assigned_ids, "worker id"))).all() if assigned_ids else []
    by_id = {str(w.id): w for w in workers}

    def _view(w: Worker) -> Dict:
        return {
            "id": str(w.id),
            "name": w.display_name,
            "role": w.role,
            "color": w.color,
            "skills": list(w.skills or []),
        }

    crew_members = [_view(by_id[i]) for i in assigned_ids if i in by_id and i in crew_ids]
    individuals = [_view(by_id[i]) for i in assigned_ids if i in by_id and i not in crew_ids]

    response = {
        "job": {
            "id": str(job.id),
            "service_type": job.service_type,
            "start_time": as_utc(job.start_time).isoformat(),
            "end_time": as_utc(job.end_time).isoformat(),
            "status": job.status,
        },
        "assignment": {
            "has_assignments": bool(assigned_ids) or bool(job.assigned_crew_id),
            "total_workers": len(crew_members) + len(individuals),
            "crew": {
                "id": str(crew.id),
                "name": crew.name,
                "member_count": len(crew_members),
                "members": crew_members,
            } if crew else None,
            "individual_workers": individuals,
        },
    }

    if include_availability:
        availability: Dict = {}
        if crew:
            crew_availability = get_crew_availability(db, crew.id, job.start_time, job.end_time, job.id)
            availability["crew_available"] = crew_availability.available
            if crew_availability.conflicts:
                availability["crew_conflicts"] = [c.model_dump(mode="json") for c in crew_availability.conflicts]
        if individuals:
            worker_conflicts = check_worker_conflicts(
                db, [w["id"] for w in individuals], job.start_time, job.end_time, job.id
            )
            if worker_conflicts:
                availability["worker_conflicts"] = [c.model_dump(mode="json") for c in worker_conflicts]
        response["availability"] = availability

    return response
