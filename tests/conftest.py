from __future__ import annotations

import datetime
import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_CREATE_DB", "false")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("ENABLE_PUSH", "true")

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from fieldops.db import Base  # noqa: E402
from fieldops.models.models import Crew, Job, Provider, Worker  # noqa: E402

NOW = datetime.datetime(2030, 1, 7, 12, 0)


def at(hour: int, minute: int = 0, day: int = 7) -> datetime.datetime:
    return datetime.datetime(2030, 1, day, hour, minute)


class Factory:
    """Builds tenant data directly in the session."""

    def __init__(self, session):
        self.session = session

    def provider(self, name: str = "Sparkle Cleaning", timezone: str | None = None) -> Provider:
        provider = Provider(business_name=name, timezone=timezone)
        self.session.add(provider)
        self.session.commit()
        return provider

    def worker(self, provider, first: str, last: str = "Smith", role: str = "field", status: str = "active") -> Worker:
        worker = Worker(provider_id=provider.id, first_name=first, last_name=last, role=role, status=status, skills=[])
        self.session.add(worker)
        self.session.commit()
        return worker

    def crew(self, provider, members, name: str = "Alpha", leader=None) -> Crew:
        crew = Crew(
            provider_id=provider.id,
            name=name,
            user_ids=[str(m.id) for m in members],
            leader_id=leader.id if leader is not None else None,
        )
        self.session.add(crew)
        self.session.commit()
        return crew

    def job(self, provider, start, end, assigned=(), status: str = "scheduled", service_type: str = "Deep Clean", **extra) -> Job:
        job = Job(
            provider_id=provider.id,
            service_type=service_type,
            start_time=start,
            end_time=end,
            status=status,
            assigned_user_ids=[str(w.id) for w in assigned],
            **extra,
        )
        self.session.add(job)
        self.session.commit()
        return job


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def factory(db):
    return Factory(db)


@pytest.fixture()
def provider(factory):
    return factory.provider()


@pytest.fixture()
def owner(factory, provider):
    return factory.worker(provider, "Olivia", "Owner", role="owner")
