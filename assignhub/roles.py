"""Privileged role lookup.

These helpers read ``user_roles`` directly through the session and never
go through :func:`assignhub.policies.authorize`; the access policies call
them, so routing them back through the policy layer would make a caller's
role unprovable.
"""
from flask import g
from sqlalchemy import select

from assignhub import db
from assignhub.models import Role, UserRole


def _role_cache():
    if '_role_cache' not in g:
        g._role_cache = {}
    return g._role_cache


def get_user_role(user_id):
    """Return the caller's :class:`Role`, or ``None`` when none is assigned."""
    if user_id is None:
        return None
    cache = _role_cache()
    if user_id in cache:
        return cache[user_id]

    role = db.session.execute(
        select(UserRole.role).where(UserRole.user_id == user_id).limit(1)
    ).scalar()
    # Roles are never changed once assigned, so only hits are memoised
    if role is not None:
        cache[user_id] = role
    return role


def has_role(user_id, role):
    return get_user_role(user_id) == Role(role)
