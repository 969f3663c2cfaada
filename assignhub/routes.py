import math
from datetime import datetime, timezone
from functools import wraps
from io import BytesIO

from flask import Blueprint, current_app, jsonify, request, send_file, session
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import RequestEntityTooLarge
from werkzeug.utils import secure_filename

from assignhub import accounts, db, gateway
from assignhub.errors import HubError, NotAuthenticated, ValidationError
from assignhub.models import Assignment, AuditLog, Role, Submission, SubmissionStatus
from assignhub.roles import get_user_role
from assignhub.storage import get_blob_store, submission_path

routes = Blueprint('routes', __name__)


# --- HELPER: CALLER ---
def current_actor():
    return session.get('user_id')


def login_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if current_actor() is None:
            raise NotAuthenticated()
        return view(*args, **kwargs)
    return wrapped


# --- HELPER: AUDIT LOG ---
def log_audit(action, details=""):
    try:
        db.session.add(AuditLog(
            user_id=current_actor(),
            action=action,
            ip_address=request.remote_addr,
            details=details
        ))
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Could not write audit entry %s", action)


# --- HELPER: INPUT ---
def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _string(data, field):
    value = data.get(field)
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    return value


def _parse_datetime(value, field):
    if not value:
        raise ValidationError(f"{field} is required")
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO 8601 timestamp") from None
    # Stored as naive UTC
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _parse_int(value, field):
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise ValidationError(f"{field} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer") from None


def _round_half_up(value):
    return math.floor(value + 0.5)


def _assignment_fields(data, partial=False):
    fields = {}
    if not partial or 'title' in data:
        title = (_string(data, 'title') or '').strip()
        if not 3 <= len(title) <= 100:
            raise ValidationError("Title must be between 3 and 100 characters")
        fields['title'] = title
    if not partial or 'subject' in data:
        subject = (_string(data, 'subject') or '').strip()
        if not 2 <= len(subject) <= 50:
            raise ValidationError("Subject must be between 2 and 50 characters")
        fields['subject'] = subject
    if 'description' in data:
        description = (_string(data, 'description') or '').strip()
        if len(description) > 1000:
            raise ValidationError("Description must be at most 1000 characters")
        fields['description'] = description or None
    if not partial or 'due_date' in data:
        fields['due_date'] = _parse_datetime(data.get('due_date'), 'due_date')
    if 'max_score' in data:
        max_score = _parse_int(data.get('max_score'), 'max_score')
        if not 1 <= max_score <= 1000:
            raise ValidationError("Max score must be between 1 and 1000")
        fields['max_score'] = max_score
    return fields


def _uploaded_file():
    file = request.files.get('file')
    if not file or not file.filename:
        raise ValidationError("Please select a file to upload")
    filename = secure_filename(file.filename)
    ext = filename.rsplit('.', 1)[-1].lower() if '.' in filename else ''
    if ext not in current_app.config['ALLOWED_EXTENSIONS']:
        raise ValidationError("Please upload a PDF or DOC/DOCX file")
    return file, filename


# --- ERRORS ---
@routes.errorhandler(HubError)
def handle_hub_error(error):
    current_app.logger.info("%s: %s", type(error).__name__, error.message)
    return jsonify({"message": error.message}), error.status_code


@routes.app_errorhandler(RequestEntityTooLarge)
def handle_too_large(error):
    return jsonify({"message": "File size must be less than 10MB"}), 413


# --- AUTH ROUTES ---
@routes.route('/auth/signup', methods=['POST'])
def signup():
    data = _json_body()
    identity = accounts.sign_up(_string(data, 'email'), _string(data, 'password'),
                                _string(data, 'full_name'), _string(data, 'role'))
    session.clear()
    session['user_id'] = identity.id
    log_audit("SIGNUP", f"Account {identity.email} created")
    profile = accounts.get_profile(identity.id)
    return jsonify({"profile": profile.to_dict(), "role": get_user_role(identity.id).value}), 201


@routes.route('/auth/login', methods=['POST'])
def login():
    data = _json_body()
    identity = accounts.authenticate(_string(data, 'email'), _string(data, 'password'))
    if identity is None:
        raise NotAuthenticated("Invalid email or password")
    session.clear()
    session['user_id'] = identity.id
    log_audit("LOGIN", f"User {identity.email} logged in")
    role = get_user_role(identity.id)
    return jsonify({"user_id": identity.id, "role": role.value if role else None})


@routes.route('/auth/logout', methods=['POST'])
def logout():
    if current_actor() is not None:
        log_audit("LOGOUT")
    session.clear()
    return jsonify({"message": "Signed out"})


@routes.route('/auth/me', methods=['GET'])
@login_required
def me():
    actor = current_actor()
    role = get_user_role(actor)
    return jsonify({"profile": accounts.get_profile(actor).to_dict(), "role": role.value if role else None})


@routes.route('/auth/me', methods=['PATCH'])
@login_required
def update_me():
    profile = accounts.update_profile(current_actor(), _string(_json_body(), 'full_name'))
    return jsonify(profile.to_dict())


# --- ASSIGNMENT ROUTES ---
@routes.route('/assignments', methods=['GET'])
@login_required
def list_assignments():
    actor = current_actor()
    role = get_user_role(actor)

    if role == Role.TEACHER:
        assignments = gateway.select(actor, Assignment, Assignment.created_by == actor,
                                     order_by=Assignment.due_date.asc())
        return jsonify([a.to_dict() for a in assignments])

    assignments = gateway.select(actor, Assignment, order_by=Assignment.due_date.asc())
    if role != Role.STUDENT:
        return jsonify([a.to_dict() for a in assignments])

    my_subs = {s.assignment_id: s for s in gateway.select(actor, Submission, Submission.student_id == actor)}
    results = []
    for assignment in assignments:
        data = assignment.to_dict()
        sub = my_subs.get(assignment.id)
        data["submission"] = {
            "id": sub.id, "status": sub.status.value, "grade": sub.grade,
        } if sub else None
        results.append(data)
    return jsonify(results)


@routes.route('/assignments', methods=['POST'])
@login_required
def create_assignment():
    actor = current_actor()
    fields = _assignment_fields(_json_body())
    assignment = gateway.insert(actor, Assignment(created_by=actor, **fields))
    log_audit("CREATE_ASSIGNMENT", f"Assignment {assignment.id} ({assignment.title})")
    return jsonify(assignment.to_dict()), 201


@routes.route('/assignments/<assignment_id>', methods=['GET'])
@login_required
def get_assignment(assignment_id):
    return jsonify(gateway.get(current_actor(), Assignment, assignment_id).to_dict())


@routes.route('/assignments/<assignment_id>', methods=['PATCH'])
@login_required
def edit_assignment(assignment_id):
    actor = current_actor()
    assignment = gateway.get(actor, Assignment, assignment_id)
    fields = _assignment_fields(_json_body(), partial=True)
    gateway.update(actor, assignment, **fields)
    return jsonify(assignment.to_dict())


@routes.route('/assignments/<assignment_id>', methods=['DELETE'])
@login_required
def delete_assignment(assignment_id):
    actor = current_actor()
    assignment = gateway.get(actor, Assignment, assignment_id)
    files = [s.file_url for s in assignment.submissions]
    gateway.delete(actor, assignment)

    store = get_blob_store()
    for name in files:
        store.remove(name)
    log_audit("DELETE_ASSIGNMENT", f"Assignment {assignment_id}")
    return jsonify({"message": "Assignment deleted"})


# --- SUBMISSION ROUTES ---
@routes.route('/assignments/<assignment_id>/submit', methods=['POST'])
@login_required
def submit_assignment(assignment_id):
    actor = current_actor()
    assignment = gateway.get(actor, Assignment, assignment_id)
    file, filename = _uploaded_file()

    store = get_blob_store()
    path = store.upload(actor, submission_path(actor, assignment.id, filename), file.read())
    try:
        submission = gateway.insert(actor, Submission(
            assignment_id=assignment.id,
            student_id=actor,
            file_url=path,
            file_name=file.filename,
            status=SubmissionStatus.SUBMITTED,
        ))
    except Exception:
        store.remove(path)
        raise

    log_audit("SUBMIT", f"Submission {submission.id} for assignment {assignment.id}")
    return jsonify(submission.to_dict()), 201


@routes.route('/submissions', methods=['GET'])
@login_required
def list_submissions():
    actor = current_actor()
    criteria = []
    status = request.args.get('status')
    if status:
        try:
            criteria.append(Submission.status == SubmissionStatus(status))
        except ValueError:
            raise ValidationError(f"Unknown status: {status}") from None
    if request.args.get('assignment_id'):
        criteria.append(Submission.assignment_id == request.args['assignment_id'])

    submissions = gateway.select(actor, Submission, *criteria, order_by=Submission.submitted_at.desc())
    return jsonify([s.to_dict(with_relations=True) for s in submissions])


@routes.route('/submissions/<submission_id>', methods=['GET'])
@login_required
def get_submission(submission_id):
    return jsonify(gateway.get(current_actor(), Submission, submission_id).to_dict(with_relations=True))


@routes.route('/submissions/<submission_id>', methods=['PATCH'])
@login_required
def resubmit(submission_id):
    actor = current_actor()
    submission = gateway.get(actor, Submission, submission_id)
    file, filename = _uploaded_file()

    store = get_blob_store()
    old_path = submission.file_url
    # Stays in the owning student's folder; anyone else fails the storage check
    path = store.upload(actor, submission_path(submission.student_id, submission.assignment_id, filename),
                        file.read())
    try:
        gateway.update(actor, submission, file_url=path, file_name=file.filename,
                       submitted_at=datetime.utcnow())
    except Exception:
        store.remove(path)
        raise

    store.remove(old_path)
    log_audit("RESUBMIT", f"Submission {submission.id}")
    return jsonify(submission.to_dict())


@routes.route('/submissions/<submission_id>/grade', methods=['POST'])
@login_required
def grade_submission(submission_id):
    actor = current_actor()
    submission = gateway.get(actor, Submission, submission_id)
    data = _json_body()

    max_score = submission.assignment.max_score if submission.assignment else 100
    grade = _parse_int(data.get('grade'), 'grade')
    if not 0 <= grade <= max_score:
        raise ValidationError(f"Grade must be between 0 and {max_score}")
    feedback = (_string(data, 'feedback') or '').strip() or None

    gateway.update(actor, submission, grade=grade, feedback=feedback,
                   status=SubmissionStatus.GRADED, graded_at=datetime.utcnow())
    log_audit("GRADE", f"Submission {submission.id} graded {grade}/{max_score}")
    return jsonify(submission.to_dict(with_relations=True))


@routes.route('/submissions/<submission_id>/file', methods=['GET'])
@login_required
def download_submission(submission_id):
    actor = current_actor()
    submission = gateway.get(actor, Submission, submission_id)
    data = get_blob_store().download(actor, submission.file_url)
    return send_file(BytesIO(data), as_attachment=True, download_name=submission.file_name)


# --- DASHBOARD ---
@routes.route('/dashboard', methods=['GET'])
@login_required
def dashboard():
    actor = current_actor()
    role = get_user_role(actor)

    if role == Role.TEACHER:
        assignments = gateway.select(actor, Assignment, Assignment.created_by == actor)
        submissions = gateway.select(actor, Submission, order_by=Submission.submitted_at.desc())
        return jsonify({
            "role": role.value,
            "total_assignments": len(assignments),
            "total_submissions": len(submissions),
            "pending_grading": len([s for s in submissions if s.status == SubmissionStatus.SUBMITTED]),
            "graded_submissions": len([s for s in submissions if s.status == SubmissionStatus.GRADED]),
            "recent_submissions": [s.to_dict(with_relations=True) for s in submissions[:5]],
        })

    now = datetime.utcnow()
    assignments = gateway.select(actor, Assignment, order_by=Assignment.due_date.asc())
    submissions = gateway.select(actor, Submission, Submission.student_id == actor)
    submitted_ids = {s.assignment_id for s in submissions}
    graded = [s for s in submissions if s.status == SubmissionStatus.GRADED]
    upcoming = [a for a in assignments if a.due_date > now][:5]

    return jsonify({
        "role": role.value if role else None,
        "total_assignments": len(assignments),
        "pending_submissions": len([a for a in assignments if a.id not in submitted_ids and a.due_date > now]),
        "submitted_count": len([s for s in submissions if s.status == SubmissionStatus.SUBMITTED]),
        "graded_count": len(graded),
        "average_grade": _round_half_up(sum(s.grade or 0 for s in graded) / len(graded)) if graded else None,
        "upcoming_assignments": [
            dict(a.to_dict(), has_submitted=a.id in submitted_ids) for a in upcoming
        ],
    })
