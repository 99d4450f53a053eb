"""
Dispatch conflict detection service.
A worker may not hold two active jobs whose windows overlap (half-open rule).
"""
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from ..models.models import ACTIVE_JOB_STATUSES, Job, Worker
from ..schemas.scheduling import Conflict
from .crew_membership import normalize_ids, to_uuid, to_uuid_list
from .time_windows import as_utc, overlaps, utc_to_local


def _overlapping_jobs(
    db: Session,
    start_time: datetime,
    end_time: datetime,
    exclude_job_id=None,
    provider_id=None,
) -> List[Job]:
    start, end = as_utc(start_time), as_utc(end_time)
    query = db.query(Job).filter(
        Job.start_time < end,
        Job.end_time > start,
        Job.status.in_(ACTIVE_JOB_STATUSES),
    )
    if exclude_job_id:
        query = query.filter(Job.id != to_uuid(exclude_job_id, "job id"))
    if provider_id:
        query = query.filter(Job.provider_id == to_uuid(provider_id, "provider id"))

    jobs = query.order_by(Job.start_time, Job.id).all()
    # SQL narrowed the candidates; the primitive is the rule
    return [j for j in jobs if overlaps(as_utc(j.start_time), as_utc(j.end_time), start, end)]


def worker_names(db: Session, worker_ids: Iterable) -> Dict[str, str]:
    ids = normalize_ids(worker_ids)
    if not ids:
        return {}
    workers = db.query(Worker).filter(Worker.id.in_(to_uuid_list(ids, "worker id"))).all()
    return {str(w.id): w.display_name for w in workers}


def check_worker_conflicts(
    db: Session,
    worker_ids: Iterable,
    start_time: datetime,
    end_time: datetime,
    exclude_job_id=None,
) -> List[Conflict]:
    """
    Find every active job already holding one of the given workers in an
    overlapping window.

    Args:
        db: Database session
        worker_ids: Worker IDs to check
        start_time: Candidate window start (UTC)
        end_time: Candidate window end (UTC), exclusive
        exclude_job_id: Job being edited, so it never conflicts with itself

    Returns:
        One Conflict per (job, worker) pair, ordered by job start time
    """
    ids = normalize_ids(worker_ids)
    if not ids:
        return []

    jobs = _overlapping_jobs(db, start_time, end_time, exclude_job_id)
    if not jobs:
        return []

    names = worker_names(db, ids)
    conflicts: List[Conflict] = []
    for job in jobs:
        assigned = set(normalize_ids(job.assigned_user_ids))
        for worker_id in ids:
            if worker_id in assigned:
                conflicts.append(Conflict(
                    worker_id=worker_id,
                    worker_name=names.get(worker_id, "Unknown Worker"),
                    conflicting_job_id=str(job.id),
                    conflicting_job_title=job.service_type or "Untitled Job",
                    conflict_start=as_utc(job.start_time),
                    conflict_end=as_utc(job.end_time),
                ))
    return conflicts


def find_conflicting_jobs(
    db: Session,
    provider_id,
    worker_ids: Iterable,
    start_time: datetime,
    end_time: datetime,
    exclude_job_id=None,
    timezone_str: Optional[str] = None,
) -> dict:
    """
    Job-centric conflict summary for booking forms: which of the provider's
    active jobs collide with any of the given workers.
    """
    ids = normalize_ids(worker_ids)
    if not ids:
        return {"has_conflict": False}

    jobs = [
        j for j in _overlapping_jobs(db, start_time, end_time, exclude_job_id, provider_id)
        if set(normalize_ids(j.assigned_user_ids)) & set(ids)
    ]
    if not jobs:
        return {"has_conflict": False}

    conflicting_ids = normalize_ids(
        wid for j in jobs for wid in normalize_ids(j.assigned_user_ids) if wid in ids
    )
    names = worker_names(db, conflicting_ids)
    display = [names.get(wid, "Unknown Worker") for wid in conflicting_ids]

    first = jobs[0]
    local_start = utc_to_local(as_utc(first.start_time), timezone_str)
    at = local_start.strftime("%I:%M %p").lstrip("0")
    verb = "has" if len(display) == 1 else "have"
    message = f"{', '.join(display)} {verb} a conflicting job at {at} ({first.service_type or 'Untitled Job'})"

    return {
        "has_conflict": True,
        "message": message,
        "conflicts": [
            {
                "id": str(j.id),
                "service_type": j.service_type,
                "start_time": as_utc(j.start_time).isoformat(),
                "end_time": as_utc(j.end_time).isoformat(),
                "assigned_user_ids": normalize_ids(j.assigned_user_ids),
            }
            for j in jobs
        ],
    }
