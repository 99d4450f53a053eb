import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import require_cron_secret
from ..db import get_db
from ..services.recurrence import generate_recurring_jobs
from ..services.time_windows import utc_now


router = APIRouter(prefix="/cron", tags=["cron"])
logger = structlog.get_logger(__name__)


@router.get("/generate-recurring-jobs", dependencies=[Depends(require_cron_secret)])
def generate_recurring_jobs_all_providers(db: Session = Depends(get_db)):
    """Timed trigger: generate due occurrences across every provider."""
    now = utc_now()
    report = generate_recurring_jobs(db, now=now)
    providers = len(report.provider_summary)
    logger.info("recurring_cron_complete", created=report.total_created, providers=providers)
    return {
        "success": True,
        "message": f"Generated {report.total_created} recurring job(s) across {providers} provider(s)",
        "total_jobs_created": report.total_created,
        "provider_summary": report.provider_summary,
        "failed": report.failed,
        "timestamp": now.isoformat(),
    }
