"""
Recurring job generation.
The template job (is_recurring=True) is the series head; children point back
via parent_recurring_job_id. The next occurrence is derived from the latest real
occurrence, so a manually moved occurrence shifts the rest of the series.
Safe to run repeatedly: an existing child near the due date blocks a duplicate.
"""
from datetime import datetime, timedelta
from typing import Optional

import structlog
from dateutil.relativedelta import relativedelta
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import InvalidInput
from ..models.models import Job, Provider
from ..schemas.scheduling import GenerationReport
from .crew_membership import to_uuid
from .time_windows import as_utc, utc_now

logger = structlog.get_logger(__name__)

FREQUENCY_OFFSETS = {
    "weekly": relativedelta(days=7),
    "biweekly": relativedelta(days=14),
    "monthly": relativedelta(months=1),
    "quarterly": relativedelta(months=3),
}


def calculate_next_occurrence(last_start: datetime, frequency: str) -> datetime:
    """
    Add the frequency offset to an occurrence start.
    Month arithmetic is calendar-based; Jan 31 + 1 month is the last day of February.
    """
    offset = FREQUENCY_OFFSETS.get(frequency)
    if offset is None:
        raise InvalidInput(f"Unknown frequency: {frequency}")
    return last_start + offset


def find_latest_occurrence(db: Session, template: Job) -> Optional[Job]:
    """Latest-starting job among the template and its children."""
    return db.query(Job).filter(
        or_(Job.id == template.id, Job.parent_recurring_job_id == template.id)
    ).order_by(Job.start_time.desc()).first()


def find_existing_occurrence(db: Session, template: Job, occurrence_start: datetime) -> Optional[Job]:
    tolerance = timedelta(minutes=settings.recurrence_duplicate_tolerance_min)
    return db.query(Job).filter(
        Job.parent_recurring_job_id == template.id,
        Job.start_time >= occurrence_start - tolerance,
        Job.start_time <= occurrence_start + tolerance,
    ).first()


def process_template(db: Session, template: Job, now: Optional[datetime] = None) -> Optional[Job]:
    """
    Materialize the next occurrence of one template if it is due.

    Args:
        db: Database session
        template: Recurring template job
        now: Reference time (naive UTC); defaults to the current time

    Returns:
        The created child job, or None when the template was skipped

    Raises:
        InvalidInput: the template has an unknown frequency
    """
    now = as_utc(now) or utc_now()
    template_id = str(template.id)

    if not template.recurring_frequency:
        logger.info("recurring_template_skipped", job_id=template_id, reason="no_frequency")
        return None

    latest = find_latest_occurrence(db, template)
    if latest is None:
        logger.info("recurring_template_skipped", job_id=template_id, reason="no_occurrence")
        return None

    latest_start = as_utc(latest.start_time)
    next_start = calculate_next_occurrence(latest_start, template.recurring_frequency)

    hours_until = (next_start - now).total_seconds() / 3600
    if hours_until > settings.recurrence_due_window_hours:
        logger.info("recurring_template_skipped", job_id=template_id, reason="not_due", hours_until=round(hours_until))
        return None

    end_date = as_utc(template.recurring_end_date)
    if end_date is not None and next_start > end_date:
        logger.info("recurring_template_skipped", job_id=template_id, reason="series_ended")
        return None

    if find_existing_occurrence(db, template, next_start) is not None:
        logger.info("recurring_template_skipped", job_id=template_id, reason="already_generated")
        return None

    duration = as_utc(latest.end_time) - latest_start
    child = Job(
        provider_id=template.provider_id,
        customer_id=template.customer_id,
        service_type=template.service_type,
        address=template.address,
        start_time=next_start,
        end_time=next_start + duration,
        status="scheduled",
        source=template.source,
        appointment_type=template.appointment_type or "anytime",
        estimated_value=template.estimated_value,
        job_instructions=template.job_instructions,
        customer_notes=template.customer_notes,
        internal_notes=template.internal_notes,
        assigned_user_ids=[],
        is_recurring=False,
        parent_recurring_job_id=template.id,
    )
    db.add(child)
    db.commit()
    db.refresh(child)

    logger.info(
        "recurring_job_created",
        job_id=str(child.id),
        template_id=template_id,
        provider_id=str(template.provider_id),
        start_time=next_start.isoformat(),
    )
    return child


def generate_recurring_jobs(db: Session, provider_id=None, now: Optional[datetime] = None) -> GenerationReport:
    """
    Run the generator over every live template, optionally for one provider.
    Each template is independent: a failure is logged and the batch continues,
    and children created earlier in the run are kept.
    """
    now = as_utc(now) or utc_now()
    query = db.query(Job).filter(
        Job.is_recurring.is_(True),
        or_(Job.recurring_end_date.is_(None), Job.recurring_end_date >= now),
    )
    if provider_id is not None:
        query = query.filter(Job.provider_id == to_uuid(provider_id, "provider id"))
    templates = query.order_by(Job.start_time, Job.id).all()

    logger.info("recurring_generation_started", templates=len(templates), provider_id=str(provider_id) if provider_id else None)

    report = GenerationReport()
    provider_names = {}
    for template in templates:
        template_id = str(template.id)
        try:
            child = process_template(db, template, now)
        except Exception as e:
            db.rollback()
            report.failed += 1
            logger.error("recurring_template_failed", job_id=template_id, error=str(e))
            continue

        if child is None:
            report.skipped += 1
            continue

        report.created.append(str(child.id))
        key = provider_names.get(child.provider_id)
        if key is None:
            provider = db.query(Provider).filter(Provider.id == child.provider_id).first()
            key = (provider.business_name if provider else None) or str(child.provider_id)
            provider_names[child.provider_id] = key
        report.provider_summary[key] = report.provider_summary.get(key, 0) + 1

    logger.info(
        "recurring_generation_finished",
        created=report.total_created,
        skipped=report.skipped,
        failed=report.failed,
    )
    return report
