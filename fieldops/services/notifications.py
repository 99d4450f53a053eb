"""
Notification service.
Fan-out is best-effort: callers log failures and keep their committed changes.
"""
from typing import Iterable, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import DependencyFailure
from ..models.models import Crew, Job, Notification, Provider
from .crew_membership import to_uuid_list
from .time_windows import as_utc, utc_to_local

logger = structlog.get_logger(__name__)


def _provider_timezone(db: Session, provider_id) -> Optional[str]:
    provider = db.query(Provider).filter(Provider.id == provider_id).first()
    return provider.timezone if provider else None


def send_crew_assignment_notifications(
    db: Session,
    job: Job,
    crew: Crew,
    member_ids: Iterable[str],
) -> int:
    """
    Create one notification per newly assigned crew member.

    Args:
        db: Database session
        job: Job the crew was assigned to
        crew: Assigned crew
        member_ids: Crew member IDs to notify

    Returns:
        Number of notifications created

    Raises:
        DependencyFailure: the notification store rejected the write
    """
    if not settings.enable_push:
        return 0

    recipients = to_uuid_list(member_ids, "worker id")
    if not recipients:
        return 0

    local_start = utc_to_local(as_utc(job.start_time), _provider_timezone(db, job.provider_id))
    job_date = f"{local_start:%A, %b} {local_start.day}"
    job_time = local_start.strftime("%I:%M %p").lstrip("0")

    try:
        for user_id in recipients:
            db.add(Notification(
                provider_id=job.provider_id,
                user_id=user_id,
                type="crew_job_assigned",
                title="New Job for Your Crew",
                message=f'Your crew "{crew.name}" has been assigned to {job.service_type} on {job_date} at {job_time}',
                link=f"/worker/job/{job.id}",
                data={"job_id": str(job.id), "crew_id": str(crew.id), "crew_name": crew.name},
            ))
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise DependencyFailure("Notification store unavailable") from e

    logger.info("crew_notifications_created", job_id=str(job.id), crew_id=str(crew.id), count=len(recipients))
    return len(recipients)
