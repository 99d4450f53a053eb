from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..errors import NotFound
from ..models.models import Worker
from ..schemas.scheduling import CrewCreate, CrewResponse, CrewUpdate
from ..services.availability import get_crew_member_breakdown
from ..services.crew_membership import get_crew
from ..services.roster import create_crew, delete_crew, update_crew


router = APIRouter(prefix="/crews", tags=["crews"])


@router.post("")
def create(
    payload: CrewCreate,
    db: Session = Depends(get_db),
    user: Worker = Depends(get_current_user),
):
    crew = create_crew(db, user, payload.name, payload.user_ids, payload.leader_id, payload.color)
    return {"success": True, "crew": CrewResponse.model_validate(crew).model_dump(mode="json")}


@router.put("/{crew_id}")
def update(
    crew_id: str,
    payload: CrewUpdate,
    db: Session = Depends(get_db),
    user: Worker = Depends(get_current_user),
):
    crew = update_crew(
        db, user, crew_id,
        name=payload.name,
        user_ids=payload.user_ids,
        leader_id=payload.leader_id,
        color=payload.color,
    )
    out = CrewResponse.model_validate(crew).model_dump(mode="json")
    out["member_count"] = len(crew.user_ids or [])
    return {"success": True, "crew": out}


@router.delete("/{crew_id}")
def delete(
    crew_id: str,
    db: Session = Depends(get_db),
    user: Worker = Depends(get_current_user),
):
    delete_crew(db, user, crew_id)
    return {"success": True, "message": "Crew deleted successfully"}


@router.get("/{crew_id}/availability")
def availability(
    crew_id: str,
    start: datetime = Query(...),
    end: datetime = Query(...),
    db: Session = Depends(get_db),
    user: Worker = Depends(get_current_user),
):
    if end <= start:
        raise HTTPException(status_code=400, detail="end must be after start")
    crew = get_crew(db, crew_id, user.provider_id)
    if not crew:
        raise NotFound("Crew not found")
    return get_crew_member_breakdown(db, crew, start, end)
