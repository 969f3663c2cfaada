"""Row-level access policies.

Every predicate is registered against a ``(table, verb)`` key and takes
``(actor, row)`` where ``actor`` is the caller's identity id.  Predicates
registered for the same key are OR-combined.  Anonymous callers are
denied everything.

For ``update`` the predicates are checked twice: once against the stored
row and once against the row as it would look after the write, so an
update can neither reach a row the caller doesn't own nor move a row out
of the caller's reach (a student cannot grade their own submission).
"""
from collections import defaultdict

from flask import current_app

from assignhub.errors import AccessDenied
from assignhub.models import Role, SubmissionStatus
from assignhub.roles import has_role

SELECT = 'select'
INSERT = 'insert'
UPDATE = 'update'
DELETE = 'delete'
VERBS = (SELECT, INSERT, UPDATE, DELETE)

STORAGE_OBJECTS = 'storage.objects'
SUBMISSIONS_BUCKET = 'submissions'

_POLICIES = defaultdict(list)


def policy(table, *verbs):
    """Register the decorated predicate for ``table`` under each verb."""
    for verb in verbs:
        if verb not in VERBS:
            raise ValueError(f"Unknown verb: {verb}")

    def register(predicate):
        for verb in verbs:
            _POLICIES[(table, verb)].append(predicate)
        return predicate
    return register


def policies_for(table, verb):
    return tuple(_POLICIES.get((table, verb), ()))


def _passes(actor, predicates, row):
    return any(predicate(actor, row) for predicate in predicates)


def authorize(actor, verb, table, row=None, new_row=None):
    """Return True when ``actor`` may apply ``verb`` to the target row.

    ``row`` is the stored row (select/update/delete), ``new_row`` the
    submitted one (insert/update).
    """
    if actor is None:
        return False
    predicates = policies_for(table, verb)
    if not predicates:
        return False

    if verb == INSERT:
        return _passes(actor, predicates, new_row)
    if verb == UPDATE:
        return (_passes(actor, predicates, row)
                and _passes(actor, predicates, new_row if new_row is not None else row))
    return _passes(actor, predicates, row)


def require(actor, verb, table, row=None, new_row=None):
    if not authorize(actor, verb, table, row=row, new_row=new_row):
        current_app.logger.warning("Denied %s on %s for actor %s", verb, table, actor)
        raise AccessDenied(f"Not allowed to {verb} {table}")


def foldername(name):
    """Folder segments of a storage object name (the file name excluded)."""
    return [segment for segment in (name or '').split('/')[:-1] if segment]


def _owner_folder(row):
    folders = foldername(row.name)
    return folders[0] if folders else None


# --- PROFILES ---
@policy('profiles', SELECT, UPDATE)
def own_profile(actor, row):
    return actor == row.id


@policy('profiles', INSERT)
def insert_own_profile(actor, new_row):
    return actor == new_row.id


@policy('profiles', SELECT)
def teacher_reads_profiles(actor, row):
    return has_role(actor, Role.TEACHER)


# --- USER ROLES ---
@policy('user_roles', SELECT, INSERT)
def own_role(actor, row):
    return actor == row.user_id


# --- ASSIGNMENTS ---
@policy('assignments', SELECT)
def authenticated_reads_assignments(actor, row):
    return True


@policy('assignments', INSERT, UPDATE, DELETE)
def teacher_owns_assignment(actor, row):
    return has_role(actor, Role.TEACHER) and actor == row.created_by


# --- SUBMISSIONS ---
@policy('submissions', SELECT)
def own_submission(actor, row):
    return actor == row.student_id


@policy('submissions', INSERT)
def student_submits(actor, new_row):
    return has_role(actor, Role.STUDENT) and actor == new_row.student_id


@policy('submissions', UPDATE)
def student_updates_ungraded(actor, row):
    return actor == row.student_id and row.status == SubmissionStatus.SUBMITTED


@policy('submissions', SELECT, UPDATE)
def teacher_manages_submissions(actor, row):
    return has_role(actor, Role.TEACHER)


# --- STORAGE ---
@policy(STORAGE_OBJECTS, INSERT, SELECT)
def own_submission_file(actor, row):
    return row.bucket_id == SUBMISSIONS_BUCKET and actor == _owner_folder(row)


@policy(STORAGE_OBJECTS, SELECT)
def teacher_reads_submission_files(actor, row):
    return row.bucket_id == SUBMISSIONS_BUCKET and has_role(actor, Role.TEACHER)
