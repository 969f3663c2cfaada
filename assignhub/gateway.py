"""Policy-checked data access.

All reads and writes made on behalf of a caller go through these helpers.
Reads silently drop rows the caller may not see; writes raise
:class:`~assignhub.errors.AccessDenied`.  Each write commits on its own,
and integrity failures are rolled back and re-raised as hub errors.
"""
from types import SimpleNamespace

from flask import current_app
from sqlalchemy import inspect, select as sa_select
from sqlalchemy.exc import IntegrityError

from assignhub import db
from assignhub.errors import ConstraintViolation, NotFound, ReferenceViolation, UniqueViolation
from assignhub.policies import DELETE, INSERT, SELECT, UPDATE, authorize, require


def _table(model):
    return model.__tablename__


def snapshot(obj, **changes):
    """Column values of ``obj`` with ``changes`` applied, as a plain row."""
    values = {attr.key: getattr(obj, attr.key) for attr in inspect(obj).mapper.column_attrs}
    values.update(changes)
    return SimpleNamespace(**values)


def commit():
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        detail = str(exc.orig)
        current_app.logger.info("Integrity failure: %s", detail)
        pgcode = getattr(exc.orig, 'pgcode', None)
        if pgcode == '23505' or 'unique' in detail.lower():
            raise UniqueViolation(detail) from exc
        if pgcode == '23503' or 'foreign key' in detail.lower():
            raise ReferenceViolation(detail) from exc
        raise ConstraintViolation(detail) from exc


def select(actor, model, *criteria, order_by=None, limit=None):
    statement = sa_select(model).where(*criteria)
    if order_by is not None:
        statement = statement.order_by(order_by)
    rows = db.session.execute(statement).unique().scalars().all()
    visible = [row for row in rows if authorize(actor, SELECT, _table(model), row=row)]
    return visible[:limit] if limit is not None else visible


def get(actor, model, ident):
    row = db.session.get(model, ident)
    if row is None or not authorize(actor, SELECT, _table(model), row=row):
        raise NotFound(f"{model.__name__} not found")
    return row


def insert(actor, obj):
    require(actor, INSERT, _table(type(obj)), new_row=obj)
    db.session.add(obj)
    commit()
    return obj


def update(actor, obj, **changes):
    table = _table(type(obj))
    unknown = set(changes) - {attr.key for attr in inspect(obj).mapper.column_attrs}
    if unknown:
        raise ValueError(f"Unknown columns for {table}: {sorted(unknown)}")

    require(actor, UPDATE, table, row=snapshot(obj), new_row=snapshot(obj, **changes))
    for key, value in changes.items():
        setattr(obj, key, value)
    commit()
    return obj


def delete(actor, obj):
    require(actor, DELETE, _table(type(obj)), row=obj)
    db.session.delete(obj)
    commit()
