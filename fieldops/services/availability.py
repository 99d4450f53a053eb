"""
Availability service.
Answers "can this crew / these workers take this job" on top of the conflict detector.
"""
from datetime import datetime
from typing import Iterable, List

from sqlalchemy.orm import Session

from ..schemas.scheduling import AvailabilityResult, Conflict
from .crew_membership import get_crew_members, normalize_ids
from .dispatch_conflict import check_worker_conflicts


def get_crew_availability(
    db: Session,
    crew_id,
    start_time: datetime,
    end_time: datetime,
    exclude_job_id=None,
) -> AvailabilityResult:
    """
    Check a crew's active members for conflicts.
    A crew with no active members cannot be double-booked, so it is reported available.
    """
    members = get_crew_members(db, crew_id)
    if not members:
        return AvailabilityResult(available=True, conflicts=[])

    conflicts = check_worker_conflicts(
        db, [m.id for m in members], start_time, end_time, exclude_job_id
    )
    return AvailabilityResult(available=len(conflicts) == 0, conflicts=conflicts)


def get_workers_availability(
    db: Session,
    worker_ids: Iterable,
    start_time: datetime,
    end_time: datetime,
    exclude_job_id=None,
) -> AvailabilityResult:
    conflicts = check_worker_conflicts(db, worker_ids, start_time, end_time, exclude_job_id)
    return AvailabilityResult(available=len(conflicts) == 0, conflicts=conflicts)


def format_conflict_message(conflicts: List[Conflict]) -> str:
    """Render conflicts as one sentence for the person doing the scheduling."""
    if not conflicts:
        return ""

    unique_workers = list(dict.fromkeys(c.worker_name for c in conflicts))

    if len(conflicts) == 1:
        c = conflicts[0]
        return f'{c.worker_name} is already assigned to "{c.conflicting_job_title}" at this time.'

    if len(unique_workers) == 1:
        return f"{unique_workers[0]} has {len(conflicts)} conflicting jobs at this time."

    return f"{len(unique_workers)} workers have scheduling conflicts: {', '.join(unique_workers)}."


def get_crew_member_breakdown(
    db: Session,
    crew,
    start_time: datetime,
    end_time: datetime,
    exclude_job_id=None,
) -> dict:
    """
    Per-member availability for a crew over a window.

    Args:
        db: Database session
        crew: Crew object (already tenant-checked)
        start_time: Window start (UTC)
        end_time: Window end (UTC)
        exclude_job_id: Optional job to ignore

    Returns:
        Dict with available/busy member ids and the conflicts behind them
    """
    members = get_crew_members(db, crew.id)
    conflicts = check_worker_conflicts(
        db, [m.id for m in members], start_time, end_time, exclude_job_id
    )
    busy = normalize_ids(c.worker_id for c in conflicts)
    available = [m.id for m in members if m.id not in busy]

    return {
        "crew_id": str(crew.id),
        "crew_name": crew.name,
        "total_members": len(members),
        "available": available,
        "busy": busy,
        "conflicts": [c.model_dump(mode="json") for c in conflicts],
        "all_available": len(available) == len(members),
        "has_conflicts": len(busy) > 0,
    }
