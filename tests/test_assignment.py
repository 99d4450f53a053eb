import uuid

import pytest

from fieldops.errors import DependencyFailure, Forbidden, InvalidInput, InvalidState, NotFound, SchedulingConflict
from fieldops.models.models import AuditLog, Job, Notification
from fieldops.services import assignment
from fieldops.services.assignment import (
    apply_skill_override,
    assign_crew,
    assign_users,
    clear_skill_override,
    get_job_assignment,
    unassign,
)
from tests.conftest import at


@pytest.fixture()
def team(factory, provider):
    alice = factory.worker(provider, "Alice")
    bob = factory.worker(provider, "Bob")
    dave = factory.worker(provider, "Dave")
    crew = factory.crew(provider, [alice, bob], leader=alice)
    job = factory.job(provider, at(10), at(12))
    return alice, bob, dave, crew, job


def _ids(*workers):
    return [str(w.id) for w in workers]


class TestAssignCrew:
    def test_merges_members_and_links_crew(self, db, owner, team):
        alice, bob, dave, crew, job = team
        job.assigned_user_ids = _ids(dave)
        db.commit()

        result = assign_crew(db, owner, job.id, crew.id)

        assert result["job"].assigned_user_ids == _ids(dave, alice, bob)
        assert result["job"].assigned_crew_id == crew.id
        assert result["overrode_conflicts"] is False
        assert result["message"] == 'Crew "Alpha" assigned to job'

    def test_second_assignment_is_a_no_op(self, db, owner, team):
        alice, bob, _, crew, job = team
        assign_crew(db, owner, job.id, crew.id)
        audits = db.query(AuditLog).count()
        notifications = db.query(Notification).count()

        result = assign_crew(db, owner, job.id, crew.id)

        assert result["job"].assigned_user_ids == _ids(alice, bob)
        assert db.query(AuditLog).count() == audits
        assert db.query(Notification).count() == notifications

    def test_notifies_new_members_only(self, db, owner, team):
        alice, bob, _, crew, job = team
        job.assigned_user_ids = _ids(alice)
        db.commit()

        assign_crew(db, owner, job.id, crew.id)

        notes = db.query(Notification).all()
        assert [str(n.user_id) for n in notes] == _ids(bob)
        assert notes[0].type == "crew_job_assigned"
        assert notes[0].data["crew_id"] == str(crew.id)

    def test_conflict_blocks_without_override(self, db, owner, factory, provider, team):
        alice, bob, _, crew, job = team
        factory.job(provider, at(11), at(13), assigned=[bob], service_type="Gutter Clean")

        with pytest.raises(SchedulingConflict) as exc:
            assign_crew(db, owner, job.id, crew.id)

        assert exc.value.status_code == 409
        assert exc.value.detail == "Crew has scheduling conflicts"
        assert exc.value.message == 'Bob Smith is already assigned to "Gutter Clean" at this time.'
        db.refresh(job)
        assert job.assigned_user_ids == []
        assert job.assigned_crew_id is None

    def test_override_applies_despite_conflict(self, db, owner, factory, provider, team):
        alice, bob, _, crew, job = team
        factory.job(provider, at(11), at(13), assigned=[bob])

        result = assign_crew(db, owner, job.id, crew.id, override_conflicts=True)

        assert result["overrode_conflicts"] is True
        assert len(result["conflicts"]) == 1
        assert result["job"].assigned_user_ids == _ids(alice, bob)
        audit = db.query(AuditLog).filter(AuditLog.action == "ASSIGN_CREW").one()
        assert audit.context["overrode_conflicts"] is True

    def test_crew_without_active_members(self, db, owner, factory, provider):
        gone = factory.worker(provider, "Gone", status="inactive")
        crew = factory.crew(provider, [gone])
        job = factory.job(provider, at(10), at(12))

        with pytest.raises(InvalidState, match="no active members"):
            assign_crew(db, owner, job.id, crew.id)

    def test_field_worker_is_forbidden(self, db, team):
        alice, _, _, crew, job = team
        with pytest.raises(Forbidden):
            assign_crew(db, alice, job.id, crew.id)

    def test_other_tenants_job_is_not_found(self, db, factory, team):
        _, _, _, crew, job = team
        other = factory.provider("Other Co")
        stranger = factory.worker(other, "Sam", role="owner")

        with pytest.raises(NotFound, match="Job not found"):
            assign_crew(db, stranger, job.id, crew.id)

    def test_unknown_crew(self, db, owner, team):
        job = team[-1]
        with pytest.raises(NotFound, match="Crew not found"):
            assign_crew(db, owner, job.id, uuid.uuid4())

    def test_notification_failure_keeps_assignment(self, db, session_factory, owner, team, monkeypatch):
        alice, bob, _, crew, job = team

        def _fail(*args, **kwargs):
            raise DependencyFailure("Notification store unavailable")

        monkeypatch.setattr(assignment, "send_crew_assignment_notifications", _fail)

        result = assign_crew(db, owner, job.id, crew.id)

        assert result["job"].assigned_crew_id == crew.id
        fresh = session_factory()
        try:
            stored = fresh.query(Job).filter(Job.id == job.id).one()
            assert stored.assigned_user_ids == _ids(alice, bob)
        finally:
            fresh.close()


class TestAssignUsers:
    def test_add_merges(self, db, owner, team):
        alice, bob, dave, _, job = team
        job.assigned_user_ids = _ids(alice)
        db.commit()

        result = assign_users(db, owner, job.id, _ids(bob, alice))

        assert result["job"].assigned_user_ids == _ids(alice, bob)
        assert result["added_count"] == 1

    def test_replace_sets_exact_list(self, db, owner, team):
        alice, bob, dave, _, job = team
        job.assigned_user_ids = _ids(alice, bob)
        db.commit()

        result = assign_users(db, owner, job.id, _ids(dave), mode="replace")

        assert result["job"].assigned_user_ids == _ids(dave)

    def test_crew_link_is_untouched(self, db, owner, team):
        alice, bob, dave, crew, job = team
        assign_crew(db, owner, job.id, crew.id)

        result = assign_users(db, owner, job.id, _ids(dave))

        assert result["job"].assigned_crew_id == crew.id

    def test_missing_workers(self, db, owner, team):
        job = team[-1]
        ghost = str(uuid.uuid4())
        with pytest.raises(NotFound, match=ghost):
            assign_users(db, owner, job.id, [ghost])

    def test_inactive_workers_rejected(self, db, owner, factory, provider, team):
        job = team[-1]
        gone = factory.worker(provider, "Gone", "Away", status="inactive")
        with pytest.raises(InvalidInput, match="Cannot assign inactive users: Gone Away"):
            assign_users(db, owner, job.id, _ids(gone))

    def test_empty_list_rejected(self, db, owner, team):
        with pytest.raises(InvalidInput):
            assign_users(db, owner, team[-1].id, [])

    def test_only_new_workers_are_checked(self, db, owner, factory, provider, team):
        alice, bob, dave, _, job = team
        job.assigned_user_ids = _ids(alice)
        db.commit()
        factory.job(provider, at(11), at(13), assigned=[alice])

        # Alice is already on the job, so her clash does not block Bob
        result = assign_users(db, owner, job.id, _ids(alice, bob))
        assert result["job"].assigned_user_ids == _ids(alice, bob)

        factory.job(provider, at(11), at(13), assigned=[dave])
        with pytest.raises(SchedulingConflict, match="Workers have scheduling conflicts"):
            assign_users(db, owner, job.id, _ids(dave))


class TestUnassign:
    def test_crew_removal_keeps_individuals(self, db, owner, team):
        alice, bob, dave, crew, job = team
        assign_crew(db, owner, job.id, crew.id)
        assign_users(db, owner, job.id, _ids(dave))

        result = unassign(db, owner, job.id, "crew")

        assert result["job"].assigned_user_ids == _ids(dave)
        assert result["job"].assigned_crew_id is None

    def test_crew_removal_without_crew(self, db, owner, team):
        with pytest.raises(InvalidState, match="No crew is assigned"):
            unassign(db, owner, team[-1].id, "crew")

    def test_all(self, db, owner, team):
        alice, bob, dave, crew, job = team
        assign_crew(db, owner, job.id, crew.id)
        result = unassign(db, owner, job.id, "all")
        assert result["job"].assigned_user_ids == []
        assert result["job"].assigned_crew_id is None

    def test_users_keeps_crew_while_a_member_remains(self, db, owner, team):
        alice, bob, _, crew, job = team
        assign_crew(db, owner, job.id, crew.id)

        result = unassign(db, owner, job.id, "users", _ids(alice))

        assert result["job"].assigned_user_ids == _ids(bob)
        assert result["job"].assigned_crew_id == crew.id

    def test_users_clears_crew_with_last_member(self, db, owner, team):
        alice, bob, dave, crew, job = team
        assign_crew(db, owner, job.id, crew.id)
        assign_users(db, owner, job.id, _ids(dave))

        result = unassign(db, owner, job.id, "users", _ids(alice, bob))

        assert result["job"].assigned_user_ids == _ids(dave)
        assert result["job"].assigned_crew_id is None
        assert result["message"] == "2 worker(s) unassigned from job"

    def test_users_requires_ids(self, db, owner, team):
        with pytest.raises(InvalidInput):
            unassign(db, owner, team[-1].id, "users", [])

    def test_unknown_type(self, db, owner, team):
        with pytest.raises(InvalidInput):
            unassign(db, owner, team[-1].id, "everything")


class TestSkillOverride:
    def test_reason_required(self, db, owner, team):
        job = team[-1]
        with pytest.raises(InvalidInput, match="reason is required"):
            apply_skill_override(db, owner, job.id, "   ")
        db.refresh(job)
        assert job.allow_unqualified is False

    def test_override_bypasses_conflicts(self, db, owner, factory, provider, team):
        alice, _, _, _, job = team
        factory.job(provider, at(11), at(13), assigned=[alice])

        result = apply_skill_override(db, owner, job.id, " Client asked for Alice ", alice.id)

        job = result["job"]
        assert job.allow_unqualified is True
        assert job.unqualified_override_by == owner.id
        assert job.unqualified_override_at is not None
        assert job.unqualified_override_reason == "Client asked for Alice"
        assert job.assigned_user_ids == _ids(alice)
        assert result["override_by_name"] == "Olivia Owner"

    def test_unknown_worker(self, db, owner, team):
        with pytest.raises(NotFound, match="Worker not found"):
            apply_skill_override(db, owner, team[-1].id, "short staffed", uuid.uuid4())

    def test_clear(self, db, owner, team):
        job = team[-1]
        apply_skill_override(db, owner, job.id, "short staffed")

        result = clear_skill_override(db, owner, job.id)

        assert result["job"].allow_unqualified is False
        assert result["job"].unqualified_override_reason is None
        assert db.query(AuditLog).filter(AuditLog.action == "CLEAR_OVERRIDE").count() == 1


def test_assignment_view_splits_crew_and_individuals(db, owner, factory, provider, team):
    alice, bob, dave, crew, job = team
    assign_crew(db, owner, job.id, crew.id)
    assign_users(db, owner, job.id, _ids(dave))
    factory.job(provider, at(11), at(13), assigned=[dave])

    view = get_job_assignment(db, provider.id, job.id, include_availability=True)

    assert [m["id"] for m in view["assignment"]["crew"]["members"]] == _ids(alice, bob)
    assert [w["id"] for w in view["assignment"]["individual_workers"]] == _ids(dave)
    assert view["assignment"]["total_workers"] == 3
    assert view["availability"]["crew_available"] is True
    assert view["availability"]["worker_conflicts"][0]["worker_id"] == str(dave.id)
