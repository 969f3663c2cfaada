from flask import current_app
from sqlalchemy import select
from werkzeug.security import check_password_hash, generate_password_hash

from assignhub import db, gateway
from assignhub.errors import ValidationError
from assignhub.models import Identity, Profile, Role, UserRole


def _normalize_email(email):
    return (email or '').strip().lower()


def parse_role(value):
    try:
        return Role(value)
    except ValueError:
        raise ValidationError("Role must be 'teacher' or 'student'") from None


def create_identity(email, password, full_name=None):
    """Create an account; its profile row is written in the same transaction."""
    email = _normalize_email(email)
    if not email or '@' not in email:
        raise ValidationError("A valid email is required")
    if not password or len(password) < 6:
        raise ValidationError("Password must be at least 6 characters")

    identity = Identity(
        email=email,
        password_hash=generate_password_hash(password),
        full_name=(full_name or '').strip() or None,
    )
    db.session.add(identity)
    gateway.commit()
    current_app.logger.info("Created identity %s", identity.id)
    return identity


def assign_role(actor, role):
    """Record ``actor``'s own role. Only ever done once, at signup."""
    return gateway.insert(actor, UserRole(user_id=actor, role=parse_role(role)))


def sign_up(email, password, full_name, role):
    role = parse_role(role)
    identity = create_identity(email, password, full_name)
    assign_role(identity.id, role)
    return identity


def authenticate(email, password):
    identity = db.session.execute(
        select(Identity).where(Identity.email == _normalize_email(email))
    ).scalar_one_or_none()
    if identity and check_password_hash(identity.password_hash, password or ''):
        return identity
    return None


def get_profile(actor, user_id=None):
    return gateway.get(actor, Profile, user_id or actor)


def update_profile(actor, full_name):
    profile = get_profile(actor)
    full_name = (full_name or '').strip()
    if not full_name:
        raise ValidationError("Full name is required")
    return gateway.update(actor, profile, full_name=full_name)
