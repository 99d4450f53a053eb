import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Boolean,
    ForeignKey,
    Numeric,
    JSON,
    Text,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base
from ..services.time_windows import utc_now


ACTIVE_JOB_STATUSES = ("scheduled", "in_progress")
INACTIVE_WORKER_STATUSES = ("inactive", "terminated")


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


class Provider(Base):
    """Tenant: a field-service business"""
    __tablename__ = "providers"

    id: Mapped[uuid.UUID] = uuid_pk()
    business_name: Mapped[str] = mapped_column(String(255), nullable=False)
    timezone: Mapped[Optional[str]] = mapped_column(String(64))  # IANA name; falls back to TZ_DEFAULT
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class Worker(Base):
    """Tenant-scoped person: owner, office staff or field worker"""
    __tablename__ = "provider_users"

    id: Mapped[uuid.UUID] = uuid_pk()
    provider_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("providers.id", ondelete="CASCADE"), nullable=False, index=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    email: Mapped[Optional[str]] = mapped_column(String(255))
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="field")  # owner|office|field
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")  # active|inactive|terminated
    color: Mapped[Optional[str]] = mapped_column(String(20))
    skills: Mapped[Optional[list]] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    provider = relationship("Provider")

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_active(self) -> bool:
        return self.status == "active"


class Crew(Base):
    """Named group of workers. user_ids is the membership source of truth."""
    __tablename__ = "crews"

    id: Mapped[uuid.UUID] = uuid_pk()
    provider_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("providers.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    color: Mapped[Optional[str]] = mapped_column(String(20), default="#10b981")
    user_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # Ordered worker id strings
    leader_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("provider_users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class Job(Base):
    """Unit of scheduled work; half-open window [start_time, end_time)"""
    __tablename__ = "jobs"

    id: Mapped[uuid.UUID] = uuid_pk()
    provider_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("providers.id", ondelete="CASCADE"), nullable=False, index=True)
    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), index=True)
    service_type: Mapped[Optional[str]] = mapped_column(String(255))
    address: Mapped[Optional[str]] = mapped_column(String(500))
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="scheduled")  # scheduled|in_progress|completed|cancelled
    source: Mapped[Optional[str]] = mapped_column(String(50))
    appointment_type: Mapped[Optional[str]] = mapped_column(String(30))  # anytime|fixed|window
    estimated_value: Mapped[Optional[float]] = mapped_column(Numeric(12, 2))
    job_instructions: Mapped[Optional[str]] = mapped_column(Text)
    customer_notes: Mapped[Optional[str]] = mapped_column(Text)
    internal_notes: Mapped[Optional[str]] = mapped_column(Text)

    # Assignment (written only through services.assignment)
    assigned_user_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # Materialized copy, ordered id strings
    assigned_crew_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("crews.id", ondelete="SET NULL"))

    # Recurrence: the template job is the series head
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    recurring_frequency: Mapped[Optional[str]] = mapped_column(String(20))  # weekly|biweekly|monthly|quarterly
    recurring_end_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    parent_recurring_job_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("jobs.id", ondelete="SET NULL"))

    # Skill requirement override audit
    allow_unqualified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    unqualified_override_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    unqualified_override_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    unqualified_override_reason: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    assigned_crew = relationship("Crew", foreign_keys=[assigned_crew_id])

    # Indexes for conflict checking and latest-occurrence lookup
    __table_args__ = (
        Index('idx_jobs_window', 'status', 'start_time', 'end_time'),
        Index('idx_jobs_parent_start', 'parent_recurring_job_id', 'start_time'),
    )


class Notification(Base):
    """In-app notification records"""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = uuid_pk()
    provider_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("providers.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("provider_users.id", ondelete="CASCADE"), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[Optional[str]] = mapped_column(Text)
    link: Mapped[Optional[str]] = mapped_column(String(500))
    data: Mapped[Optional[dict]] = mapped_column(JSON)
    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending|sent|failed|read
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        Index('idx_notifications_user_status', 'user_id', 'status'),
    )


class AuditLog(Base):
    """Append-only audit log for assignment actions"""
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # job|crew|worker
    entity_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # ASSIGN_CREW|ASSIGN_USERS|UNASSIGN|OVERRIDE|CLEAR_OVERRIDE
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("provider_users.id", ondelete="SET NULL"), index=True)
    actor_role: Mapped[Optional[str]] = mapped_column(String(50))  # owner|office|system
    source: Mapped[Optional[str]] = mapped_column(String(50))  # api|cron|system
    changes_json: Mapped[Optional[dict]] = mapped_column(JSON)  # Before/after diff
    timestamp_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False, index=True)
    context: Mapped[Optional[dict]] = mapped_column(JSON)
    integrity_hash: Mapped[Optional[str]] = mapped_column(String(64))  # SHA256 hash for integrity verification

    __table_args__ = (
        Index('idx_audit_entity', 'entity_type', 'entity_id'),
    )


class UserStatusLog(Base):
    """Worker status transitions (billing seat history)"""
    __tablename__ = "user_status_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("provider_users.id", ondelete="CASCADE"), nullable=False, index=True)
    provider_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("providers.id", ondelete="CASCADE"), nullable=False, index=True)
    old_status: Mapped[Optional[str]] = mapped_column(String(20))
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    changed_by: Mapped[str] = mapped_column(String(100), nullable=False, default="unknown")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
