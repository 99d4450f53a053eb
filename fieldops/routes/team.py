from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import Worker
from ..schemas.scheduling import WorkerStatusUpdate
from ..services.roster import change_worker_status, reactivate_worker


router = APIRouter(prefix="/team", tags=["team"])


def _worker_out(worker: Worker) -> dict:
    return {
        "id": str(worker.id),
        "name": worker.display_name,
        "role": worker.role,
        "status": worker.status,
        "color": worker.color,
    }


@router.patch("/{worker_id}/status")
def update_status(
    worker_id: str,
    payload: WorkerStatusUpdate,
    db: Session = Depends(get_db),
    user: Worker = Depends(get_current_user),
):
    """Change a team member's status; deactivation also removes them from crews."""
    worker = change_worker_status(db, user, worker_id, payload.status)
    return {"success": True, "member": _worker_out(worker)}


@router.patch("/{worker_id}/reactivate")
def reactivate(
    worker_id: str,
    db: Session = Depends(get_db),
    user: Worker = Depends(get_current_user),
):
    worker = reactivate_worker(db, user, worker_id)
    return {"success": True, "member": _worker_out(worker)}
