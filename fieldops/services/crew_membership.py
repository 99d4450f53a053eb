"""
Crew membership resolution and id-set helpers.
Crew.user_ids and Job.assigned_user_ids are ordered id sets stored as JSON lists;
the helpers here are the only way they are combined or reduced.
"""
import uuid
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from ..errors import InvalidInput
from ..models.models import Crew, Worker
from ..schemas.scheduling import CrewMember


def _canonical(raw) -> str:
    try:
        return str(uuid.UUID(str(raw)))
    except (ValueError, TypeError, AttributeError):
        return str(raw)


def normalize_ids(ids: Optional[Iterable]) -> List[str]:
    """Canonical string ids, first occurrence kept, duplicates dropped."""
    seen = set()
    out: List[str] = []
    for raw in ids or []:
        sid = _canonical(raw)
        if sid not in seen:
            seen.add(sid)
            out.append(sid)
    return out


def id_union(existing: Optional[Iterable], added: Optional[Iterable]) -> List[str]:
    return normalize_ids(list(existing or []) + list(added or []))


def id_difference(existing: Optional[Iterable], removed: Optional[Iterable]) -> List[str]:
    drop = set(normalize_ids(removed))
    return [i for i in normalize_ids(existing) if i not in drop]


def crew_still_assigned(assigned_user_ids: Optional[Iterable], crew_user_ids: Optional[Iterable]) -> bool:
    """A crew counts as assigned to a job only while one of its members is still on it."""
    assigned = set(normalize_ids(assigned_user_ids))
    return any(i in assigned for i in normalize_ids(crew_user_ids))


def to_uuid(value, label: str = "id") -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError, AttributeError):
        raise InvalidInput(f"Invalid {label}: {value}")


def to_uuid_list(values: Iterable, label: str = "id") -> List[uuid.UUID]:
    return [to_uuid(v, label) for v in normalize_ids(values)]


def get_crew(db: Session, crew_id, provider_id=None) -> Optional[Crew]:
    query = db.query(Crew).filter(Crew.id == to_uuid(crew_id, "crew id"))
    if provider_id is not None:
        query = query.filter(Crew.provider_id == to_uuid(provider_id, "provider id"))
    return query.first()


def get_crew_members(db: Session, crew_id) -> List[CrewMember]:
    """
    Resolve the active members of a crew.

    Args:
        db: Database session
        crew_id: Crew ID

    Returns:
        Active members in crew order; inactive or terminated members and
        unknown crews yield nothing.
    """
    crew = get_crew(db, crew_id)
    if not crew or not crew.user_ids:
        return []

    member_ids = normalize_ids(crew.user_ids)
    workers = db.query(Worker).filter(
        Worker.id.in_(to_uuid_list(member_ids, "worker id")),
        Worker.status == "active",
    ).all()
    by_id = {str(w.id): w for w in workers}

    return [
        CrewMember(
            id=mid,
            name=by_id[mid].display_name,
            color=by_id[mid].color,
            skills=list(by_id[mid].skills or []),
        )
        for mid in member_ids
        if mid in by_id
    ]
