"""
Team roster service: worker status changes and crew membership.
Taking a worker off the active roster removes them from every crew in the same
transaction. Job assignment history is left alone.
"""
from typing import List, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import DependencyFailure, InvalidInput, InvalidState, NotFound
from ..models.models import INACTIVE_WORKER_STATUSES, Crew, Job, UserStatusLog, Worker
from .audit import compute_diff, create_audit_log
from .crew_membership import get_crew, id_difference, normalize_ids, to_uuid, to_uuid_list
from .permissions import require_scheduler
from .time_windows import utc_now

logger = structlog.get_logger(__name__)


def get_worker(db: Session, worker_id, provider_id) -> Worker:
    worker = db.query(Worker).filter(
        Worker.id == to_uuid(worker_id, "worker id"),
        Worker.provider_id == provider_id,
    ).first()
    if not worker:
        raise NotFound("Team member not found")
    return worker


def remove_worker_from_crews(db: Session, worker: Worker) -> List[Crew]:
    """
    Drop a worker from every crew of their provider and clear leadership.
    Changes are staged on the session; the caller commits.

    Returns:
        Crews that were modified
    """
    worker_id = str(worker.id)
    changed: List[Crew] = []
    for crew in db.query(Crew).filter(Crew.provider_id == worker.provider_id).all():
        members = normalize_ids(crew.user_ids)
        is_member = worker_id in members
        is_leader = crew.leader_id is not None and str(crew.leader_id) == worker_id
        if not (is_member or is_leader):
            continue
        if is_member:
            crew.user_ids = id_difference(members, [worker_id])
        if is_leader:
            crew.leader_id = None
        crew.updated_at = utc_now()
        changed.append(crew)
    return changed


def change_worker_status(
    db: Session,
    actor: Worker,
    worker_id,
    new_status: str,
) -> Worker:
    """
    Update a worker's status, log the transition, and cascade deactivation into crews.

    Args:
        db: Database session
        actor: Calling worker (owner or office)
        worker_id: Worker whose status changes
        new_status: Target status (active|inactive|terminated|...)

    Returns:
        The updated worker

    Raises:
        Forbidden, NotFound, InvalidInput, DependencyFailure
    """
    require_scheduler(actor, "change team member status")
    status = (new_status or "").strip().lower()
    if not status:
        raise InvalidInput("status is required")

    worker = get_worker(db, worker_id, actor.provider_id)
    old_status = worker.status
    if status == old_status:
        return worker

    worker.status = status
    db.add(UserStatusLog(
        user_id=worker.id,
        provider_id=worker.provider_id,
        old_status=old_status,
        new_status=status,
        changed_by=str(actor.id),
    ))

    crews: List[Crew] = []
    if status in INACTIVE_WORKER_STATUSES:
        crews = remove_worker_from_crews(db, worker)
    crew_ids = [str(c.id) for c in crews]

    create_audit_log(
        db,
        entity_type="worker",
        entity_id=worker.id,
        action="STATUS_CHANGE",
        actor=actor,
        changes_json=compute_diff({"status": old_status}, {"status": status}),
        context={"crews_updated": crew_ids},
    )

    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise DependencyFailure("Failed to update team member") from e

    db.refresh(worker)
    logger.info(
        "worker_status_changed",
        worker_id=str(worker.id),
        old_status=old_status,
        new_status=status,
        crews_updated=crew_ids,
    )
    return worker


def reactivate_worker(db: Session, actor: Worker, worker_id) -> Worker:
    """Bring a worker back to active. Crew membership is not restored."""
    require_scheduler(actor, "reactivate team members")
    worker = get_worker(db, worker_id, actor.provider_id)
    if worker.status == "active":
        raise InvalidState("Team member is already active")
    return change_worker_status(db, actor, worker.id, "active")


def _validate_members(db: Session, provider_id, user_ids: List[str]) -> List[str]:
    ids = normalize_ids(user_ids)
    if not ids:
        return []
    count = db.query(Worker).filter(
        Worker.id.in_(to_uuid_list(ids, "worker id")),
        Worker.provider_id == provider_id,
    ).count()
    if count != len(ids):
        raise InvalidInput("Some user IDs do not belong to this provider")
    return ids


def _validate_leader(leader_id, member_ids: List[str]) -> Optional[str]:
    if not leader_id:
        return None
    leader = normalize_ids([leader_id])[0]
    if leader not in member_ids:
        raise InvalidInput("Leader must be a member of the crew")
    return leader


def create_crew(
    db: Session,
    actor: Worker,
    name: str,
    user_ids: Optional[List[str]] = None,
    leader_id=None,
    color: str = "#10b981",
) -> Crew:
    require_scheduler(actor, "manage crews")
    if not name or not name.strip():
        raise InvalidInput("Crew name is required")
    members = _validate_members(db, actor.provider_id, user_ids or [])
    leader = _validate_leader(leader_id, members)

    crew = Crew(
        provider_id=actor.provider_id,
        name=name.strip(),
        color=color,
        user_ids=members,
        leader_id=to_uuid(leader, "leader id") if leader else None,
    )
    db.add(crew)
    db.commit()
    db.refresh(crew)
    logger.info("crew_created", crew_id=str(crew.id), members=len(members))
    return crew


def update_crew(
    db: Session,
    actor: Worker,
    crew_id,
    name: Optional[str] = None,
    user_ids: Optional[List[str]] = None,
    leader_id=None,
    color: Optional[str] = None,
) -> Crew:
    """
    Edit a crew. Omitted fields are kept. Assignments already copied onto jobs
    are not resynchronised with the new membership.
    """
    require_scheduler(actor, "manage crews")
    crew = get_crew(db, crew_id, actor.provider_id)
    if not crew:
        raise NotFound("Crew not found")

    members = _validate_members(db, actor.provider_id, user_ids) if user_ids is not None else normalize_ids(crew.user_ids)
    if leader_id is not None:
        leader = _validate_leader(leader_id, members)
    else:
        leader = str(crew.leader_id) if crew.leader_id else None
        if leader and leader not in members:
            # Leader was dropped from the membership
            leader = None

    if name:
        crew.name = name.strip()
    if color:
        crew.color = color
    crew.user_ids = members
    crew.leader_id = to_uuid(leader, "leader id") if leader else None
    crew.updated_at = utc_now()
    db.commit()
    db.refresh(crew)
    return crew


def delete_crew(db: Session, actor: Worker, crew_id) -> None:
    require_scheduler(actor, "manage crews")
    crew = get_crew(db, crew_id, actor.provider_id)
    if not crew:
        raise NotFound("Crew not found")

    # Workers already copied onto jobs keep their assignment
    db.query(Job).filter(Job.assigned_crew_id == crew.id).update(
        {Job.assigned_crew_id: None}, synchronize_session="fetch"
    )
    db.delete(crew)
    db.commit()
    logger.info("crew_deleted", crew_id=str(crew_id))
