"""
Tests for the access policy set and role lookup.

Verifies:
- Role lookup returns at most one role and agrees with has_role
- Each table/verb rule allows owners and teachers as described
- Students cannot touch graded submissions or grade their own
- The Essay 1 hand-in scenario end to end through the gateway
"""
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from assignhub import accounts, gateway
from assignhub.errors import AccessDenied, NotFound, ReferenceViolation, UniqueViolation
from assignhub.models import Assignment, Profile, Role, Submission, SubmissionStatus, UserRole
from assignhub.policies import (DELETE, INSERT, SELECT, STORAGE_OBJECTS, UPDATE, authorize,
                                foldername, policies_for, policy)
from assignhub.roles import get_user_role, has_role


def _submit(actor, assignment, student_id=None):
    student_id = student_id or actor
    return gateway.insert(actor, Submission(
        assignment_id=assignment.id,
        student_id=student_id,
        file_url=f"{student_id}/{assignment.id}/1700000000000.pdf",
        file_name="essay.pdf",
        status=SubmissionStatus.SUBMITTED,
    ))


class TestRoleModel:

    def test_role_lookup(self, ctx, teacher, student):
        assert get_user_role(teacher) == Role.TEACHER
        assert get_user_role(student) == Role.STUDENT

    def test_has_role_matches_get_user_role(self, ctx, teacher, student):
        for user_id in (teacher, student):
            for role in Role:
                assert has_role(user_id, role) == (get_user_role(user_id) == role)
        assert has_role(teacher, 'teacher') is True

    def test_no_role(self, ctx):
        identity = accounts.create_identity('norole@school.edu', 'secret123')
        assert get_user_role(identity.id) is None
        assert has_role(identity.id, Role.STUDENT) is False
        assert get_user_role(None) is None

    def test_role_visible_only_to_owner(self, ctx, teacher, student):
        assert [r.user_id for r in gateway.select(student, UserRole)] == [student]
        # Teachers have no read access to other users' role rows
        assert [r.user_id for r in gateway.select(teacher, UserRole)] == [teacher]

    def test_cannot_assign_role_for_someone_else(self, ctx, student):
        other = accounts.create_identity('other@school.edu', 'secret123')
        with pytest.raises(AccessDenied):
            gateway.insert(student, UserRole(user_id=other.id, role=Role.TEACHER))


class TestAuthorize:

    def test_anonymous_denied(self, ctx):
        row = SimpleNamespace(id='x', created_by='x')
        for verb in (SELECT, INSERT, UPDATE, DELETE):
            assert authorize(None, verb, 'assignments', row=row, new_row=row) is False

    def test_unknown_table_denied(self, ctx, teacher):
        assert authorize(teacher, SELECT, 'gradebook', row=SimpleNamespace()) is False

    def test_policies_or_combined(self, ctx, student):
        row = SimpleNamespace(student_id='someone-else', status=SubmissionStatus.SUBMITTED)
        assert authorize(student, SELECT, 'submissions', row=row) is False
        assert len(policies_for('submissions', SELECT)) == 2

    def test_register_rejects_unknown_verb(self):
        with pytest.raises(ValueError):
            policy('assignments', 'truncate')

    def test_foldername(self):
        assert foldername('abc/def/1.pdf') == ['abc', 'def']
        assert foldername('1.pdf') == []
        assert foldername('') == []


class TestProfilePolicies:

    def test_student_reads_only_own_profile(self, ctx, teacher, student, other_student):
        assert [p.id for p in gateway.select(student, Profile)] == [student]
        with pytest.raises(NotFound):
            gateway.get(student, Profile, other_student)

    def test_teacher_reads_all_profiles(self, ctx, teacher, student, other_student):
        ids = {p.id for p in gateway.select(teacher, Profile)}
        assert ids == {teacher, student, other_student}

    def test_teacher_cannot_update_other_profile(self, ctx, teacher, student):
        profile = gateway.get(teacher, Profile, student)
        with pytest.raises(AccessDenied):
            gateway.update(teacher, profile, full_name="Renamed")

    def test_profile_id_cannot_be_moved(self, ctx, student, other_student):
        profile = gateway.get(student, Profile, student)
        with pytest.raises(AccessDenied):
            gateway.update(student, profile, id=other_student)

    def test_profile_insert_requires_own_id(self, ctx, student):
        row = SimpleNamespace(id='someone-else')
        assert authorize(student, INSERT, 'profiles', new_row=row) is False
        assert authorize(student, INSERT, 'profiles', new_row=SimpleNamespace(id=student)) is True


class TestAssignmentPolicies:

    def test_any_authenticated_actor_reads(self, ctx, student, essay):
        assert [a.id for a in gateway.select(student, Assignment)] == [essay.id]

    def test_student_cannot_create_assignment(self, ctx, student):
        """Rejected for lacking the teacher role, whatever created_by says."""
        for created_by in (student, 'some-teacher-id'):
            with pytest.raises(AccessDenied):
                gateway.insert(student, Assignment(
                    title="Fake", subject="Maths", due_date=datetime.utcnow(), created_by=created_by))

    def test_teacher_cannot_create_for_another_teacher(self, ctx, teacher, make_user):
        other = make_user('t2@school.edu', 'teacher')
        with pytest.raises(AccessDenied):
            gateway.insert(teacher, Assignment(
                title="Ghost", subject="Maths", due_date=datetime.utcnow(), created_by=other))

    def test_non_owner_cannot_update_or_delete(self, ctx, essay, student, make_user):
        other_teacher = make_user('t2@school.edu', 'teacher')
        for actor in (student, other_teacher):
            with pytest.raises(AccessDenied):
                gateway.update(actor, essay, title="Hijacked")
            with pytest.raises(AccessDenied):
                gateway.update(actor, essay, created_by=actor)
            with pytest.raises(AccessDenied):
                gateway.delete(actor, essay)
        assert essay.title == "Essay 1"

    def test_owner_cannot_hand_assignment_away(self, ctx, teacher, essay, make_user):
        other_teacher = make_user('t2@school.edu', 'teacher')
        with pytest.raises(AccessDenied):
            gateway.update(teacher, essay, created_by=other_teacher)

    def test_owner_updates_and_deletes(self, ctx, teacher, essay):
        gateway.update(teacher, essay, max_score=50)
        assert essay.max_score == 50
        essay_id = essay.id
        gateway.delete(teacher, essay)
        with pytest.raises(NotFound):
            gateway.get(teacher, Assignment, essay_id)


class TestSubmissionPolicies:

    def test_only_students_submit_for_themselves(self, ctx, teacher, student, other_student, essay):
        with pytest.raises(AccessDenied):
            _submit(teacher, essay)
        with pytest.raises(AccessDenied):
            _submit(student, essay, student_id=other_student)

    def test_unknown_assignment_rejected(self, ctx, student):
        ghost = SimpleNamespace(id='00000000-0000-0000-0000-000000000000')
        with pytest.raises(ReferenceViolation):
            _submit(student, ghost)

    def test_student_sees_only_own_submissions(self, ctx, teacher, student, other_student, essay):
        mine = _submit(student, essay)
        _submit(other_student, essay)
        assert [s.id for s in gateway.select(student, Submission)] == [mine.id]
        assert len(gateway.select(teacher, Submission)) == 2

    def test_student_cannot_grade_own_submission(self, ctx, student, essay):
        sub = _submit(student, essay)
        with pytest.raises(AccessDenied):
            gateway.update(student, sub, grade=100, status=SubmissionStatus.GRADED)
        assert sub.grade is None

    def test_student_cannot_update_other_submission(self, ctx, student, other_student, essay):
        theirs = _submit(other_student, essay)
        with pytest.raises(AccessDenied):
            gateway.update(student, theirs, file_name="mine.pdf")

    def test_teacher_regrades_at_any_status(self, ctx, teacher, student, essay):
        sub = _submit(student, essay)
        gateway.update(teacher, sub, grade=70, status=SubmissionStatus.GRADED)
        gateway.update(teacher, sub, grade=75, feedback="Regraded")
        assert (sub.grade, sub.feedback) == (75, "Regraded")


class TestEssayScenario:

    def test_hand_in_and_grading(self, ctx, teacher, student, other_student):
        essay = gateway.insert(teacher, Assignment(
            title="Essay 1", subject="English", max_score=100,
            due_date=datetime.utcnow() + timedelta(days=3), created_by=teacher))

        first = _submit(student, essay)
        with pytest.raises(UniqueViolation):
            _submit(student, essay)
        _submit(other_student, essay)

        gateway.update(teacher, first, grade=88, feedback="Good work", status=SubmissionStatus.GRADED)
        assert first.status == SubmissionStatus.GRADED
        assert first.graded_at is not None

        with pytest.raises(AccessDenied):
            gateway.update(student, first, file_url=f"{student}/{essay.id}/2.pdf")
        assert first.file_url.endswith("1700000000000.pdf")


class TestStoragePolicies:

    def test_upload_into_own_folder_only(self, ctx, student, other_student):
        own = SimpleNamespace(bucket_id='submissions', name=f"{student}/a/1.pdf")
        foreign = SimpleNamespace(bucket_id='submissions', name=f"{other_student}/a/1.pdf")
        other_bucket = SimpleNamespace(bucket_id='avatars', name=f"{student}/a/1.pdf")
        assert authorize(student, INSERT, STORAGE_OBJECTS, new_row=own) is True
        assert authorize(student, INSERT, STORAGE_OBJECTS, new_row=foreign) is False
        assert authorize(student, INSERT, STORAGE_OBJECTS, new_row=other_bucket) is False

    def test_teacher_reads_any_submission_file(self, ctx, teacher, student):
        row = SimpleNamespace(bucket_id='submissions', name=f"{student}/a/1.pdf")
        assert authorize(teacher, SELECT, STORAGE_OBJECTS, row=row) is True
        assert authorize(teacher, INSERT, STORAGE_OBJECTS, new_row=row) is False
