from datetime import date, datetime, timedelta

from recurrence import DATE_FIELDS, normalize_recurrence

KIND_PATHS = {
    'events': 'event',
    'todos': 'todo',
    'assignments': 'assignment',
}

TASK_TEXT_FIELDS = ('type', 'status', 'course')


def parse_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ["1", "true", "yes", "on"]


def parse_day_value(raw):
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    try:
        return datetime.strptime(str(raw), "%Y-%m-%d").date()
    except (TypeError, ValueError):
        return None


def parse_datetime_value(raw):
    """Parse an ISO date-time ('2026-02-02T09:00', optional offset) into a naive datetime."""
    if not raw:
        return None
    if isinstance(raw, datetime):
        value = raw
    elif isinstance(raw, date):
        return datetime.combine(raw, datetime.min.time())
    else:
        s = str(raw).strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(s)
        except ValueError:
            return None
    return value.replace(tzinfo=None)


def parse_int(raw):
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def _clean_text(raw):
    return (str(raw) if raw is not None else "").strip() or None


def clean_template_payload(kind, data, check_series_bounds=True):
    """
    Validate an event/to-do/assignment form and return column values.

    Raises ValueError with a message fit for the user. A repeating item must carry an
    end date, and is stored with completed=False since completion of repeats lives in
    exceptions. `check_series_bounds` compares the end date with the form's date; it is
    off for single-occurrence edits, which may move that occurrence past the end date,
    and for series edits, whose date is only known once moved back onto the anchor.
    """
    if kind not in DATE_FIELDS:
        raise ValueError("Unknown item type")

    title = (data.get("title") or "").strip()
    if not title:
        raise ValueError("Title is required")
    cleaned = {"title": title, "description": _clean_text(data.get("description"))}

    if kind == "event":
        start = parse_datetime_value(data.get("start_time"))
        end = parse_datetime_value(data.get("end_time"))
        if not start or not end:
            raise ValueError("Start and end time are required")
        if end <= start:
            raise ValueError("End time must be after start time.")
        cleaned.update(start_time=start, end_time=end, calendar_id=parse_int(data.get("calendar_id")))
        anchor = start.date()
    else:
        due_raw = data.get("due_date")
        due = parse_day_value(due_raw) if due_raw else None
        if due_raw and not due:
            raise ValueError("Invalid due date")
        if kind == "assignment" and not due:
            raise ValueError("Due date is required")
        cleaned["due_date"] = due
        cleaned["completed"] = parse_bool(data.get("completed"))
        for key in TASK_TEXT_FIELDS:
            cleaned[key] = _clean_text(data.get(key))
        anchor = due

    try:
        recurrence = normalize_recurrence(data.get("recurrence"))
    except ValueError:
        raise ValueError("Invalid recurrence")
    until = None
    if recurrence:
        until_raw = data.get("recurrence_until")
        until = parse_day_value(until_raw) if until_raw else None
        if not until:
            raise ValueError("Please select an end date for recurring items.")
        if anchor is None:
            raise ValueError("A due date is required for repeating items")
        if check_series_bounds:
            validate_series_bounds(kind, {**cleaned, "recurrence_until": until})
        if "completed" in cleaned:
            cleaned["completed"] = False
    cleaned["recurrence"] = recurrence
    cleaned["recurrence_until"] = until
    return cleaned


def validate_series_bounds(kind, values):
    """Reject a repeat end date that falls before the series' first date."""
    until = values.get("recurrence_until")
    first = values.get(DATE_FIELDS[kind])
    if isinstance(first, datetime):
        first = first.date()
    if until and first and until < first:
        raise ValueError("Repeat end date must be on or after the start date")


def parse_window(start_raw, end_raw, today):
    """Return the half-open display window [start, end); defaults to today's month."""
    start_day = parse_day_value(start_raw) if start_raw else today.replace(day=1)
    if not start_day:
        raise ValueError("Invalid start date")
    if end_raw:
        end_day = parse_day_value(end_raw)
        if not end_day:
            raise ValueError("Invalid end date")
    else:
        # First day of the month after start_day
        end_day = (start_day.replace(day=28) + timedelta(days=4)).replace(day=1)
    if end_day <= start_day:
        raise ValueError("end must be after start")
    return start_day, end_day


def parse_kinds(raw):
    if not raw:
        return list(DATE_FIELDS)
    kinds = []
    for value in str(raw).split(","):
        value = value.strip().lower()
        if not value:
            continue
        kind = KIND_PATHS.get(value, value)
        if kind not in DATE_FIELDS:
            raise ValueError(f"Unknown item type: {value}")
        if kind not in kinds:
            kinds.append(kind)
    return kinds or list(DATE_FIELDS)
