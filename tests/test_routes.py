import datetime

import pytest
from fastapi.testclient import TestClient

from fieldops.auth.security import create_access_token
from fieldops.config import settings
from fieldops.db import get_db
from fieldops.main import app
from fieldops.models.models import Job
from fieldops.services.time_windows import utc_now
from tests.conftest import at


@pytest.fixture()
def client(session_factory):
    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def _auth(worker):
    return {"Authorization": f"Bearer {create_access_token(worker.id, worker.provider_id)}"}


@pytest.fixture()
def crew_job(factory, provider):
    alice = factory.worker(provider, "Alice")
    bob = factory.worker(provider, "Bob")
    crew = factory.crew(provider, [alice, bob])
    job = factory.job(provider, at(10), at(12))
    return alice, bob, crew, job


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_requires_token(client, crew_job):
    _, _, crew, job = crew_job
    res = client.post(f"/jobs/{job.id}/assign-crew", json={"crew_id": str(crew.id)})
    assert res.status_code == 401


def test_assign_crew(client, owner, crew_job):
    alice, bob, crew, job = crew_job

    res = client.post(f"/jobs/{job.id}/assign-crew", json={"crew_id": str(crew.id)}, headers=_auth(owner))

    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["job"]["assigned_user_ids"] == [str(alice.id), str(bob.id)]
    assert body["job"]["assigned_crew_id"] == str(crew.id)
    assert body["conflicts"] is None


def test_conflict_returns_409_with_details(client, owner, factory, provider, crew_job):
    _, bob, crew, job = crew_job
    other = factory.job(provider, at(11), at(13), assigned=[bob], service_type="Gutter Clean")

    res = client.post(f"/jobs/{job.id}/assign-crew", json={"crew_id": str(crew.id)}, headers=_auth(owner))

    assert res.status_code == 409
    body = res.json()
    assert body["error"] == "Crew has scheduling conflicts"
    assert body["requires_override"] is True
    assert body["message"] == 'Bob Smith is already assigned to "Gutter Clean" at this time.'
    assert body["conflicts"] == [{
        "worker_id": str(bob.id),
        "worker_name": "Bob Smith",
        "conflicting_job_id": str(other.id),
        "conflicting_job_title": "Gutter Clean",
        "conflict_start": "2030-01-07T11:00:00",
        "conflict_end": "2030-01-07T13:00:00",
    }]

    res = client.post(
        f"/jobs/{job.id}/assign-crew",
        json={"crew_id": str(crew.id), "override_conflicts": True},
        headers=_auth(owner),
    )
    assert res.status_code == 200
    assert res.json()["overrode_conflicts"] is True


def test_field_worker_gets_403(client, crew_job):
    alice, _, crew, job = crew_job
    res = client.post(f"/jobs/{job.id}/assign-crew", json={"crew_id": str(crew.id)}, headers=_auth(alice))
    assert res.status_code == 403


def test_unknown_job_is_404(client, owner, crew_job):
    crew = crew_job[2]
    res = client.post(
        "/jobs/00000000-0000-0000-0000-000000000000/assign-crew",
        json={"crew_id": str(crew.id)},
        headers=_auth(owner),
    )
    assert res.status_code == 404
    assert res.json() == {"error": "Job not found"}


def test_override_requires_reason(client, owner, crew_job):
    job = crew_job[3]
    res = client.post(f"/jobs/{job.id}/override", json={"reason": ""}, headers=_auth(owner))
    assert res.status_code == 400

    res = client.post(f"/jobs/{job.id}/override", json={"reason": "VIP customer"}, headers=_auth(owner))
    assert res.status_code == 200
    assert res.json()["job"]["override_by_name"] == "Olivia Owner"


def test_unassign_crew_without_crew_is_400(client, owner, crew_job):
    job = crew_job[3]
    res = client.post(f"/jobs/{job.id}/unassign", json={"type": "crew"}, headers=_auth(owner))
    assert res.status_code == 400
    assert res.json()["error"] == "No crew is assigned to this job"


def test_check_conflicts(client, owner, factory, provider):
    alice = factory.worker(provider, "Alice")
    factory.job(provider, at(10), at(12), assigned=[alice])

    res = client.post(
        "/jobs/check-conflicts",
        json={"start_time": "2030-01-07T11:00:00", "duration": 60, "worker_ids": [str(alice.id)]},
        headers=_auth(owner),
    )

    assert res.status_code == 200
    assert res.json()["has_conflict"] is True


def test_crew_availability_window_validation(client, owner, crew_job):
    crew = crew_job[2]
    res = client.get(
        f"/crews/{crew.id}/availability",
        params={"start": "2030-01-07T12:00:00", "end": "2030-01-07T10:00:00"},
        headers=_auth(owner),
    )
    assert res.status_code == 400


def test_deactivate_via_api(client, owner, crew_job):
    alice = crew_job[0]
    res = client.patch(f"/team/{alice.id}/status", json={"status": "inactive"}, headers=_auth(owner))
    assert res.status_code == 200
    assert res.json()["member"]["status"] == "inactive"


class TestCron:
    def test_rejects_wrong_secret(self, client, monkeypatch):
        monkeypatch.setattr(settings, "cron_secret", "s3cret")
        res = client.get("/cron/generate-recurring-jobs", headers={"Authorization": "Bearer nope"})
        assert res.status_code == 401

    def test_unconfigured_secret(self, client, monkeypatch):
        monkeypatch.setattr(settings, "cron_secret", None)
        res = client.get("/cron/generate-recurring-jobs", headers={"Authorization": "Bearer s3cret"})
        assert res.status_code == 503

    def test_generates_due_occurrences(self, client, db, factory, provider, monkeypatch):
        monkeypatch.setattr(settings, "cron_secret", "s3cret")
        start = utc_now().replace(microsecond=0) - datetime.timedelta(days=6, hours=1)
        template = factory.job(
            provider, start, start + datetime.timedelta(hours=2),
            is_recurring=True, recurring_frequency="weekly",
        )

        res = client.get("/cron/generate-recurring-jobs", headers={"Authorization": "Bearer s3cret"})

        assert res.status_code == 200
        body = res.json()
        assert body["total_jobs_created"] == 1
        assert body["provider_summary"] == {"Sparkle Cleaning": 1}
        assert db.query(Job).filter(Job.parent_recurring_job_id == template.id).count() == 1
