"""Flask-SQLAlchemy storage for recurring templates and their per-date exceptions."""

from flask import current_app

from models import db, RecurrenceException, TEMPLATE_MODELS
from recurrence import EXCEPTION_TYPES, SERIES_FIELDS, as_date
from recurrence_router import (
    DELETE_EXCEPTION,
    DELETE_EXCEPTIONS_FOR_PARENT,
    DELETE_TEMPLATE,
    UPDATE_TEMPLATE,
    UPSERT_EXCEPTION,
)

READ_ONLY_COLUMNS = {'id', 'user_id', 'created_at'}


def _template_model(kind):
    model = TEMPLATE_MODELS.get(kind)
    if model is None:
        raise ValueError(f"Unknown template kind: {kind}")
    return model


def get_template_row(user_id, kind, template_id):
    model = _template_model(kind)
    return model.query.filter_by(id=template_id, user_id=user_id).first()


def load_templates(user_id, kinds=None):
    templates = []
    for kind in kinds or TEMPLATE_MODELS:
        model = _template_model(kind)
        rows = model.query.filter_by(user_id=user_id).order_by(model.id.asc()).all()
        templates.extend(row.to_template() for row in rows)
    return templates


def load_exceptions(user_id, parent_type=None, parent_id=None, start_day=None, end_day=None):
    """Exception dicts for a user, optionally narrowed to one parent and/or [start_day, end_day)."""
    query = RecurrenceException.query.filter(RecurrenceException.user_id == user_id)
    if parent_type:
        query = query.filter(RecurrenceException.parent_type == parent_type)
    if parent_id is not None:
        query = query.filter(RecurrenceException.parent_id == parent_id)
    if start_day:
        query = query.filter(RecurrenceException.exception_date >= start_day)
    if end_day:
        query = query.filter(RecurrenceException.exception_date < end_day)
    rows = query.order_by(RecurrenceException.exception_date.asc(), RecurrenceException.id.asc()).all()
    return [exc.to_dict() for exc in rows]


def create_template(user_id, kind, values):
    model = _template_model(kind)
    row = model(user_id=user_id, **values)
    db.session.add(row)
    db.session.commit()
    current_app.logger.info(f"Created {kind} {row.id} for user {user_id} (recurrence={row.recurrence})")
    return row


def _set_template_values(row, values):
    for key, value in (values or {}).items():
        if key in READ_ONLY_COLUMNS or not hasattr(row, key):
            continue
        setattr(row, key, value)


def _stage_template_update(user_id, kind, template_id, values):
    row = get_template_row(user_id, kind, template_id)
    if row is None:
        raise ValueError(f"No {kind} {template_id} to update")
    _set_template_values(row, values)
    return row


def _stage_template_delete(user_id, kind, template_id):
    row = get_template_row(user_id, kind, template_id)
    if row is None:
        return False
    db.session.delete(row)
    return True


def update_template(user_id, kind, template_id, values):
    row = _stage_template_update(user_id, kind, template_id, values)
    db.session.commit()
    current_app.logger.info(f"Updated {kind} {template_id} for user {user_id}")
    return row


def delete_template(user_id, kind, template_id):
    """Delete a template row together with every exception attached to it."""
    deleted = _stage_template_delete(user_id, kind, template_id)
    db.session.flush()
    count = _stage_parent_cleanup(user_id, kind, template_id)
    db.session.commit()
    if deleted:
        current_app.logger.info(f"Deleted {kind} {template_id} and {count} exceptions")
    return deleted


def _find_exception(user_id, parent_type, parent_id, exception_date):
    return RecurrenceException.query.filter_by(
        user_id=user_id,
        parent_type=parent_type,
        parent_id=parent_id,
        exception_date=as_date(exception_date),
    ).first()


def _stage_exception(user_id, parent_type, parent_id, exception_date, exception_type, overrides=None):
    if exception_type not in EXCEPTION_TYPES:
        raise ValueError(f"Invalid exception type: {exception_type}")
    day_value = as_date(exception_date)
    if day_value is None:
        raise ValueError("Exception date is required")
    if exception_type != 'modified':
        overrides = None
    elif overrides and any(key in overrides for key in SERIES_FIELDS):
        raise ValueError("Overrides cannot change the recurrence of a series")

    parent = get_template_row(user_id, parent_type, parent_id)
    if parent is None:
        raise ValueError(f"No {parent_type} {parent_id} to attach an exception to")
    if not parent.recurrence:
        current_app.logger.warning(f"Refused exception on one-time {parent_type} {parent_id}")
        raise ValueError("Only recurring items can have exceptions")

    exc = _find_exception(user_id, parent_type, parent_id, day_value)
    if exc is None:
        exc = RecurrenceException(
            user_id=user_id,
            parent_type=parent_type,
            parent_id=parent_id,
            exception_date=day_value,
        )
        db.session.add(exc)
    exc.exception_type = exception_type
    exc.overrides = dict(overrides) if overrides else None
    return exc


def upsert_exception(user_id, parent_type, parent_id, exception_date, exception_type, overrides=None):
    """Insert or replace the exception of one series date (last write wins)."""
    exc = _stage_exception(user_id, parent_type, parent_id, exception_date, exception_type, overrides)
    db.session.commit()
    current_app.logger.info(
        f"Saved {exception_type} exception for {parent_type} {parent_id} on {exc.exception_date.isoformat()}"
    )
    return exc


def _stage_exception_delete(user_id, parent_type, parent_id, exception_date):
    exc = _find_exception(user_id, parent_type, parent_id, exception_date)
    if exc is None:
        return False
    db.session.delete(exc)
    return True


def _stage_parent_cleanup(user_id, parent_type, parent_id):
    return RecurrenceException.query.filter_by(
        user_id=user_id,
        parent_type=parent_type,
        parent_id=parent_id,
    ).delete(synchronize_session=False)


def delete_exception(user_id, parent_type, parent_id, exception_date):
    deleted = _stage_exception_delete(user_id, parent_type, parent_id, exception_date)
    db.session.commit()
    return deleted


def delete_exceptions_for_parent(user_id, parent_type, parent_id):
    count = _stage_parent_cleanup(user_id, parent_type, parent_id)
    db.session.commit()
    if count:
        current_app.logger.info(f"Removed {count} exceptions of {parent_type} {parent_id}")
    return count


def _stage_write(user_id, write):
    if write.action == UPDATE_TEMPLATE:
        _stage_template_update(user_id, write.parent_type, write.parent_id, write.payload)
    elif write.action == DELETE_TEMPLATE:
        _stage_template_delete(user_id, write.parent_type, write.parent_id)
    elif write.action == UPSERT_EXCEPTION:
        payload = write.payload or {}
        _stage_exception(
            user_id,
            write.parent_type,
            write.parent_id,
            write.exception_date,
            payload.get('exception_type'),
            payload.get('overrides'),
        )
    elif write.action == DELETE_EXCEPTION:
        _stage_exception_delete(user_id, write.parent_type, write.parent_id, write.exception_date)
    elif write.action == DELETE_EXCEPTIONS_FOR_PARENT:
        _stage_parent_cleanup(user_id, write.parent_type, write.parent_id)
    else:
        raise ValueError(f"Unknown storage action: {write.action}")


def apply_writes(user_id, writes):
    """Apply router decisions for one user action in a single commit."""
    try:
        for write in writes:
            _stage_write(user_id, write)
            # Deleted rows must be gone before a later write looks the parent up again
            db.session.flush()
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to apply {len(writes)} writes for user {user_id}: {e}")
        raise
    for write in writes:
        current_app.logger.info(
            f"{write.action} {write.parent_type} {write.parent_id}"
            + (f" on {write.exception_date.isoformat()}" if write.exception_date else "")
        )
    return writes
