"""
Recurrence expansion for events, to-dos and assignments.

A template row optionally carries a rule (daily, weekly, biweekly, monthly) and an
inclusive `recurrence_until` date. Expanding a template over a display window yields
VirtualOccurrence objects; RecurrenceException rows (skipped / modified / completed)
patch single dates of the series. Nothing here touches the database: callers pass
plain dicts shaped like the models' `to_dict()` output.
"""

import calendar
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Optional

RECURRENCE_RULES = ('daily', 'weekly', 'biweekly', 'monthly')
NO_RECURRENCE_VALUES = {'', 'none', 'once'}
EXCEPTION_TYPES = ('skipped', 'modified', 'completed')
SERIES_FIELDS = ('recurrence', 'recurrence_until')

# Field holding each kind's anchor date/time
DATE_FIELDS = {
    'event': 'start_time',
    'todo': 'due_date',
    'assignment': 'due_date',
}

MAX_RECURRENCE_STEPS = 1000

_STEP_DAYS = {'daily': 1, 'weekly': 7, 'biweekly': 14}


def as_date(value):
    """Coerce a date, datetime or ISO string to a calendar date (None passes through)."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def as_datetime(value):
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time())
    return datetime.fromisoformat(str(value))


def normalize_recurrence(value):
    """Return the canonical rule name, or None for one-time items."""
    if value is None:
        return None
    rule = str(value).strip().lower()
    if rule in NO_RECURRENCE_VALUES:
        return None
    if rule not in RECURRENCE_RULES:
        raise ValueError(f"Unknown recurrence rule: {value}")
    return rule


def _add_months(day_value, months):
    month_index = day_value.month - 1 + months
    year = day_value.year + month_index // 12
    month = month_index % 12 + 1
    _, last_dom = calendar.monthrange(year, month)
    return date(year, month, min(day_value.day, last_dom))


def nth_occurrence(anchor, rule, step):
    """Date of the `step`-th repeat of `anchor` (step 0 is the anchor itself).

    Monthly series keep the anchor's day of month and clamp it to short months,
    so Jan 31 gives Feb 28 and then Mar 31.
    """
    if rule == 'monthly':
        return _add_months(anchor, step)
    return anchor + timedelta(days=_STEP_DAYS[rule] * step)


def occurrence_dates(anchor, rule, until, window_start, window_end):
    """
    Ordered candidate dates of a series inside [window_start, window_end).

    A one-time item returns its own date regardless of the window; filtering it is
    the caller's job. Iteration stops past `until` (inclusive), at `window_end`, or
    after MAX_RECURRENCE_STEPS steps, whichever comes first.
    """
    anchor = as_date(anchor)
    if anchor is None:
        return []
    rule = normalize_recurrence(rule)
    if rule is None:
        return [anchor]

    until = as_date(until)
    window_start = as_date(window_start)
    window_end = as_date(window_end)

    dates = []
    for step in range(MAX_RECURRENCE_STEPS):
        current = nth_occurrence(anchor, rule, step)
        if until and current > until:
            break
        if window_end and current >= window_end:
            break
        if window_start is None or current >= window_start:
            dates.append(current)
    return dates


@dataclass
class Template:
    """The handful of template fields the engine reads, for any of the three kinds."""
    kind: str
    id: object
    date_field: str
    anchor: Optional[date]
    recurrence: Optional[str]
    recurrence_until: Optional[date]
    completed: bool
    data: dict = field(default_factory=dict)

    @property
    def is_recurring(self):
        return self.recurrence is not None


def template_from_dict(kind, data):
    if kind not in DATE_FIELDS:
        raise ValueError(f"Unknown template kind: {kind}")
    date_field = DATE_FIELDS[kind]
    return Template(
        kind=kind,
        id=data.get('id'),
        date_field=date_field,
        anchor=as_date(data.get(date_field)),
        recurrence=normalize_recurrence(data.get('recurrence')),
        recurrence_until=as_date(data.get('recurrence_until')),
        completed=bool(data.get('completed')),
        data=dict(data),
    )


def exception_key(parent_type, parent_id, exception_date):
    return (parent_type, parent_id, as_date(exception_date))


def index_exceptions(exceptions):
    """Map (parent_type, parent_id, exception_date) to its exception dict.

    Duplicate keys should not exist; if they do, a skipped exception is kept over
    anything else so the date stays suppressed.
    """
    index = {}
    for exc in exceptions or []:
        key = exception_key(exc.get('parent_type'), exc.get('parent_id'), exc.get('exception_date'))
        current = index.get(key)
        if current is not None and current.get('exception_type') == 'skipped':
            continue
        index[key] = exc
    return index


def _as_index(exceptions):
    if isinstance(exceptions, dict):
        return exceptions
    return index_exceptions(exceptions)


@dataclass
class VirtualOccurrence:
    template: Template
    data: dict
    occurrence_date: Optional[date]  # series date; key for exception lookups
    effective_date: Optional[date]  # date the occurrence is displayed on
    is_virtual: bool
    exception: Optional[dict] = None

    @property
    def kind(self):
        return self.template.kind

    @property
    def template_id(self):
        return self.template.id

    @property
    def completed(self):
        return occurrence_completed(self)

    @property
    def exception_type(self):
        return self.exception.get('exception_type') if self.exception else None

    def to_dict(self):
        payload = {
            'kind': self.kind,
            'id': self.template_id,
            'occurrence_date': self.occurrence_date.isoformat() if self.occurrence_date else None,
            'effective_date': self.effective_date.isoformat() if self.effective_date else None,
            'is_virtual': self.is_virtual,
            'is_recurring': self.template.is_recurring,
            'completed': self.completed,
            'exception': self.exception,
            'data': self.data,
        }
        if self.kind == 'event':
            start, end = occurrence_bounds(self)
            payload['start_time'] = start.isoformat() if start else None
            payload['end_time'] = end.isoformat() if end else None
        return payload


def _in_window(day_value, window_start, window_end):
    if window_start and day_value < window_start:
        return False
    if window_end and day_value >= window_end:
        return False
    return True


def _single_occurrence(template):
    return VirtualOccurrence(
        template=template,
        data=dict(template.data),
        occurrence_date=template.anchor,
        effective_date=template.anchor,
        is_virtual=False,
    )


def expand_item(template, exceptions, window_start, window_end):
    """Occurrences of one template inside [window_start, window_end), ascending."""
    window_start = as_date(window_start)
    window_end = as_date(window_end)
    if template.anchor is None:
        return []

    if not template.is_recurring:
        if not _in_window(template.anchor, window_start, window_end):
            return []
        return [_single_occurrence(template)]

    index = _as_index(exceptions)
    results = []
    dates = occurrence_dates(
        template.anchor,
        template.recurrence,
        template.recurrence_until,
        window_start,
        window_end,
    )
    for day_value in dates:
        exc = index.get((template.kind, template.id, day_value))
        exc_type = exc.get('exception_type') if exc else None
        if exc_type == 'skipped':
            continue

        data = dict(template.data)
        effective_date = day_value
        if exc_type == 'modified' and exc.get('overrides'):
            overrides = {k: v for k, v in exc['overrides'].items() if k not in SERIES_FIELDS}
            data.update(overrides)
            if overrides.get(template.date_field):
                effective_date = as_date(overrides[template.date_field])

        results.append(VirtualOccurrence(
            template=template,
            data=data,
            occurrence_date=day_value,
            effective_date=effective_date,
            is_virtual=day_value != template.anchor,
            exception=exc,
        ))
    return results


def expand_items(templates, exceptions, window_start, window_end):
    index = _as_index(exceptions)
    occurrences = []
    for template in templates:
        occurrences.extend(expand_item(template, index, window_start, window_end))
    return occurrences


def find_occurrence(template, exceptions, day_value):
    """Rebuild the occurrence keyed on `day_value`, or None when the series has none there.

    A one-time template has a single occurrence whatever the day asked for.
    """
    if not template.is_recurring:
        return _single_occurrence(template)
    day_value = as_date(day_value)
    if day_value is None:
        return None
    for occurrence in expand_item(template, exceptions, day_value, day_value + timedelta(days=1)):
        if occurrence.occurrence_date == day_value:
            return occurrence
    return None


def occurrence_completed(occurrence):
    template = occurrence.template
    if not template.is_recurring:
        return template.completed
    exc = occurrence.exception
    if exc and exc.get('exception_type') == 'completed':
        return True
    # The stored row is the first occurrence until an exception exists for it
    if exc is None and not occurrence.is_virtual:
        return template.completed
    return False


def occurrence_bounds(occurrence):
    """Start and end datetimes of an event occurrence; (None, None) for other kinds.

    Repeats keep the template's time of day and duration on their own date. Values set
    by a 'modified' exception are used as stored.
    """
    if occurrence.kind != 'event':
        return None, None
    start = as_datetime(occurrence.data.get('start_time'))
    end = as_datetime(occurrence.data.get('end_time'))
    if start is None or occurrence.occurrence_date is None:
        return start, end

    overrides = {}
    if occurrence.exception_type == 'modified':
        overrides = occurrence.exception.get('overrides') or {}
    shift = occurrence.occurrence_date - occurrence.template.anchor
    if 'start_time' not in overrides:
        start = start + shift
    if end is not None and 'end_time' not in overrides:
        end = end + shift
    if end is not None and end <= start:
        end = end + timedelta(days=1)
    return start, end


def display_sort_key(occurrence):
    start, _ = occurrence_bounds(occurrence)
    return (
        occurrence.effective_date or date.max,
        start.time() if start else time.min,
        occurrence.kind,
        str(occurrence.template_id),
    )
