"""
Decide which storage writes a user action on one occurrence turns into.

One-time items are always changed directly. For a recurring series a completion toggle
only ever touches the occurrence's exception, while edits and deletes need the caller to
choose between "this occurrence" (an exception on the series date) and "all occurrences"
(the template row itself).
"""

from collections import namedtuple
from datetime import date, datetime

from recurrence import SERIES_FIELDS, as_date, as_datetime, normalize_recurrence, occurrence_bounds

SCOPE_THIS = 'this'
SCOPE_ALL = 'all'
SCOPES = (SCOPE_THIS, SCOPE_ALL)

UPDATE_TEMPLATE = 'update_template'
DELETE_TEMPLATE = 'delete_template'
UPSERT_EXCEPTION = 'upsert_exception'
DELETE_EXCEPTION = 'delete_exception'
DELETE_EXCEPTIONS_FOR_PARENT = 'delete_exceptions_for_parent'

# Never stored as per-occurrence overrides
OVERRIDE_EXCLUDED_FIELDS = set(SERIES_FIELDS) | {'id', 'user_id', 'created_at', 'completed'}

StorageWrite = namedtuple('StorageWrite', ['action', 'parent_type', 'parent_id', 'exception_date', 'payload'])


class RecurrenceScopeRequired(ValueError):
    """An edit or delete on a recurring series arrived without a this/all choice."""

    def __init__(self, action):
        super().__init__(f"Choose whether to {action} this occurrence or all occurrences")
        self.action = action


def normalize_scope(raw):
    if raw is None or raw == '':
        return None
    scope = str(raw).strip().lower()
    if scope not in SCOPES:
        raise ValueError(f"Invalid scope: {raw}")
    return scope


def _jsonable(value):
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def write_to_dict(write):
    return {
        'action': write.action,
        'parent_type': write.parent_type,
        'parent_id': write.parent_id,
        'exception_date': write.exception_date.isoformat() if write.exception_date else None,
        'payload': {k: _jsonable(v) for k, v in write.payload.items()} if write.payload else None,
    }


def _template_write(action, occurrence, payload=None):
    return StorageWrite(action, occurrence.kind, occurrence.template_id, None, payload)


def _exception_write(action, occurrence, payload=None):
    return StorageWrite(action, occurrence.kind, occurrence.template_id, occurrence.occurrence_date, payload)


def _delete_series(occurrence):
    return [
        _template_write(DELETE_TEMPLATE, occurrence),
        _template_write(DELETE_EXCEPTIONS_FOR_PARENT, occurrence),
    ]


def route_toggle_complete(occurrence):
    template = occurrence.template
    if not template.is_recurring:
        return [_template_write(UPDATE_TEMPLATE, occurrence, {'completed': not template.completed})]
    if occurrence.exception_type == 'completed':
        return [_exception_write(DELETE_EXCEPTION, occurrence)]
    return [_exception_write(UPSERT_EXCEPTION, occurrence, {'exception_type': 'completed', 'overrides': None})]


def route_delete(occurrence, scope=None):
    if not occurrence.template.is_recurring:
        # Also clears exceptions left over from when the item used to repeat
        return _delete_series(occurrence)
    scope = normalize_scope(scope)
    if scope is None:
        raise RecurrenceScopeRequired('delete')
    if scope == SCOPE_THIS:
        return [_exception_write(UPSERT_EXCEPTION, occurrence, {'exception_type': 'skipped', 'overrides': None})]
    return _delete_series(occurrence)


def route_edit(occurrence, changes, scope=None):
    changes = dict(changes or {})
    if not occurrence.template.is_recurring:
        return [_template_write(UPDATE_TEMPLATE, occurrence, changes)]
    scope = normalize_scope(scope)
    if scope is None:
        raise RecurrenceScopeRequired('edit')
    if scope == SCOPE_ALL:
        writes = [_template_write(UPDATE_TEMPLATE, occurrence, rebase_series_changes(occurrence, changes))]
        if 'recurrence' in changes and normalize_recurrence(changes['recurrence']) is None:
            # A one-time item keeps no exceptions
            writes.append(_template_write(DELETE_EXCEPTIONS_FOR_PARENT, occurrence))
        return writes

    overrides = {}
    if occurrence.exception_type == 'modified':
        overrides.update(occurrence.exception.get('overrides') or {})
    for key, value in changes.items():
        if key not in OVERRIDE_EXCLUDED_FIELDS:
            overrides[key] = _jsonable(value)
    return [_exception_write(UPSERT_EXCEPTION, occurrence, {'exception_type': 'modified', 'overrides': overrides})]


def rebase_series_changes(occurrence, changes):
    """
    Translate date changes made on a repeat back onto the template's anchor.

    The edit form of a repeat shows that repeat's own date, so moving it by one day
    should move the whole series by one day rather than re-anchoring the series on
    the clicked date.
    """
    template = occurrence.template
    if not occurrence.is_virtual or template.date_field not in changes:
        return changes
    shift = template.anchor - occurrence.occurrence_date
    rebased = dict(changes)
    if template.kind == 'event':
        for key in ('start_time', 'end_time'):
            value = as_datetime(rebased.get(key))
            if value is not None:
                rebased[key] = value + shift
    else:
        value = as_date(rebased.get(template.date_field))
        if value is not None:
            rebased[template.date_field] = value + shift
    return rebased


def edit_form_defaults(occurrence):
    """Values to pre-fill an edit form with for this occurrence (JSON ready)."""
    values = {k: _jsonable(v) for k, v in occurrence.data.items()}
    template = occurrence.template
    if template.kind == 'event':
        start, end = occurrence_bounds(occurrence)
        values['start_time'] = _jsonable(start)
        values['end_time'] = _jsonable(end)
    elif occurrence.effective_date is not None:
        values[template.date_field] = occurrence.effective_date.isoformat()
    values['completed'] = occurrence.completed
    values['occurrence_date'] = _jsonable(occurrence.occurrence_date)
    values['is_virtual'] = occurrence.is_virtual
    values['is_recurring'] = template.is_recurring
    return values
