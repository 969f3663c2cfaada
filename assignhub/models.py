import enum
import uuid
from datetime import datetime

from sqlalchemy import event

from assignhub import db


def _new_id():
    return str(uuid.uuid4())


def _iso(value):
    return value.isoformat() if value else None


class Role(str, enum.Enum):
    TEACHER = 'teacher'
    STUDENT = 'student'


class SubmissionStatus(str, enum.Enum):
    PENDING = 'pending'
    SUBMITTED = 'submitted'
    GRADED = 'graded'


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Identity(db.Model):
    """Account record owned by the identity layer (login credentials)."""
    __tablename__ = 'identities'

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    # Signup metadata, copied into the profile at creation time
    full_name = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


class Profile(db.Model):
    __tablename__ = 'profiles'

    id = db.Column(db.String(36), db.ForeignKey('identities.id', ondelete='CASCADE'), primary_key=True)
    full_name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "full_name": self.full_name,
            "email": self.email,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class UserRole(db.Model):
    __tablename__ = 'user_roles'
    __table_args__ = (
        db.UniqueConstraint('user_id', 'role', name='uq_user_roles_user_id_role'),
        # One role per identity
        db.UniqueConstraint('user_id', name='uq_user_roles_user_id'),
    )

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    user_id = db.Column(db.String(36), db.ForeignKey('identities.id', ondelete='CASCADE'), nullable=False)
    role = db.Column(db.Enum(Role, name='app_role', values_callable=_enum_values), nullable=False)


class Assignment(db.Model):
    __tablename__ = 'assignments'

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    title = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    subject = db.Column(db.String(50), nullable=False)
    due_date = db.Column(db.DateTime, nullable=False)
    max_score = db.Column(db.Integer, nullable=False, default=100)
    created_by = db.Column(db.String(36), db.ForeignKey('identities.id', ondelete='CASCADE'), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    submissions = db.relationship('Submission', backref='assignment', lazy=True, cascade="all, delete-orphan")

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "subject": self.subject,
            "due_date": _iso(self.due_date),
            "max_score": self.max_score,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Submission(db.Model):
    __tablename__ = 'submissions'
    __table_args__ = (
        db.UniqueConstraint('assignment_id', 'student_id', name='uq_submissions_assignment_student'),
    )

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    assignment_id = db.Column(db.String(36), db.ForeignKey('assignments.id', ondelete='CASCADE'), nullable=False)
    student_id = db.Column(db.String(36), db.ForeignKey('identities.id', ondelete='CASCADE'), nullable=False)
    # Blob path inside the submissions bucket
    file_url = db.Column(db.String(512), nullable=False)
    file_name = db.Column(db.String(255), nullable=False)
    submitted_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    grade = db.Column(db.Integer, nullable=True)
    feedback = db.Column(db.Text, nullable=True)
    status = db.Column(db.Enum(SubmissionStatus, name='submission_status', values_callable=_enum_values),
                       nullable=False, default=SubmissionStatus.SUBMITTED)
    graded_at = db.Column(db.DateTime, nullable=True)

    student = db.relationship('Profile', primaryjoin='foreign(Submission.student_id) == Profile.id',
                              viewonly=True, lazy='joined')

    def to_dict(self, with_relations=False):
        data = {
            "id": self.id,
            "assignment_id": self.assignment_id,
            "student_id": self.student_id,
            "file_url": self.file_url,
            "file_name": self.file_name,
            "submitted_at": _iso(self.submitted_at),
            "grade": self.grade,
            "feedback": self.feedback,
            "status": self.status.value if self.status else None,
            "graded_at": _iso(self.graded_at),
        }
        if with_relations:
            assignment = self.assignment
            data["assignment"] = {
                "id": assignment.id,
                "title": assignment.title,
                "subject": assignment.subject,
                "max_score": assignment.max_score,
            } if assignment else None
            data["student"] = {
                "id": self.student.id,
                "full_name": self.student.full_name,
                "email": self.student.email,
            } if self.student else None
        return data


class AuditLog(db.Model):
    __tablename__ = 'audit_log'

    id = db.Column(db.Integer, primary_key=True)
    timestamp = db.Column(db.DateTime, default=datetime.utcnow)
    user_id = db.Column(db.String(36), nullable=True)
    action = db.Column(db.String(100), nullable=False)  # e.g., "LOGIN", "GRADE"
    ip_address = db.Column(db.String(50))
    details = db.Column(db.Text)


# --- IDENTITY BOOTSTRAP ---
@event.listens_for(Identity, 'after_insert')
def create_profile_for_identity(mapper, connection, target):
    """Insert the profile row in the same flush as the identity.

    Runs on the identity's own connection, so a failing profile insert
    aborts the transaction that created the identity.
    """
    now = datetime.utcnow()
    connection.execute(
        Profile.__table__.insert().values(
            id=target.id,
            full_name=target.full_name or 'User',
            email=target.email,
            created_at=now,
            updated_at=now,
        )
    )


# --- TIMESTAMP MAINTENANCE ---
def touch_updated_at(mapper, connection, target):
    target.updated_at = datetime.utcnow()


event.listen(Profile, 'before_update', touch_updated_at)
event.listen(Assignment, 'before_update', touch_updated_at)


@event.listens_for(Submission, 'before_update')
def stamp_graded_at(mapper, connection, target):
    if target.status == SubmissionStatus.GRADED and target.graded_at is None:
        target.graded_at = datetime.utcnow()
