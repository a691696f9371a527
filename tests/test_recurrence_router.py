from datetime import date, datetime

import pytest

from recurrence import find_occurrence, template_from_dict
from recurrence_router import (
    DELETE_EXCEPTION,
    DELETE_EXCEPTIONS_FOR_PARENT,
    DELETE_TEMPLATE,
    RecurrenceScopeRequired,
    SCOPE_ALL,
    SCOPE_THIS,
    UPDATE_TEMPLATE,
    UPSERT_EXCEPTION,
    edit_form_defaults,
    normalize_scope,
    rebase_series_changes,
    route_delete,
    route_edit,
    route_toggle_complete,
    write_to_dict,
)


def make_todo(**extra):
    data = {
        "id": 5,
        "title": "Flashcards",
        "due_date": "2026-02-02",
        "completed": False,
        "recurrence": "weekly",
        "recurrence_until": "2026-03-02",
    }
    data.update(extra)
    return template_from_dict("todo", data)


def make_event(**extra):
    data = {
        "id": 9,
        "title": "Seminar",
        "start_time": "2026-02-02T14:00:00",
        "end_time": "2026-02-02T15:30:00",
        "recurrence": "weekly",
        "recurrence_until": "2026-03-02",
    }
    data.update(extra)
    return template_from_dict("event", data)


def exception(parent_type, parent_id, day, exception_type, overrides=None):
    return {
        "parent_type": parent_type,
        "parent_id": parent_id,
        "exception_date": day,
        "exception_type": exception_type,
        "overrides": overrides,
    }


def test_toggle_on_one_time_item_updates_template():
    occurrence = find_occurrence(make_todo(recurrence=None, completed=False), [], None)
    writes = route_toggle_complete(occurrence)
    assert len(writes) == 1
    assert writes[0].action == UPDATE_TEMPLATE
    assert writes[0].payload == {"completed": True}
    assert writes[0].exception_date is None


def test_toggle_on_repeat_writes_completed_exception():
    occurrence = find_occurrence(make_todo(), [], "2026-02-09")
    (write,) = route_toggle_complete(occurrence)
    assert write.action == UPSERT_EXCEPTION
    assert (write.parent_type, write.parent_id, write.exception_date) == ("todo", 5, date(2026, 2, 9))
    assert write.payload == {"exception_type": "completed", "overrides": None}


def test_toggle_on_anchor_of_series_never_touches_template():
    occurrence = find_occurrence(make_todo(), [], "2026-02-02")
    writes = route_toggle_complete(occurrence)
    assert [w.action for w in writes] == [UPSERT_EXCEPTION]
    assert writes[0].exception_date == date(2026, 2, 2)


def test_toggle_on_completed_repeat_removes_exception():
    exceptions = [exception("todo", 5, "2026-02-09", "completed")]
    occurrence = find_occurrence(make_todo(), exceptions, "2026-02-09")
    assert occurrence.completed is True
    (write,) = route_toggle_complete(occurrence)
    assert write.action == DELETE_EXCEPTION
    assert write.exception_date == date(2026, 2, 9)


def test_delete_one_time_item_removes_it_and_any_exceptions():
    occurrence = find_occurrence(make_todo(recurrence=None), [], None)
    writes = route_delete(occurrence)
    assert [w.action for w in writes] == [DELETE_TEMPLATE, DELETE_EXCEPTIONS_FOR_PARENT]


def test_delete_repeat_requires_scope():
    occurrence = find_occurrence(make_todo(), [], "2026-02-16")
    with pytest.raises(RecurrenceScopeRequired) as excinfo:
        route_delete(occurrence)
    assert excinfo.value.action == "delete"
    assert isinstance(excinfo.value, ValueError)


def test_delete_this_occurrence_writes_skip():
    occurrence = find_occurrence(make_todo(), [], "2026-02-16")
    (write,) = route_delete(occurrence, SCOPE_THIS)
    assert write.action == UPSERT_EXCEPTION
    assert write.exception_date == date(2026, 2, 16)
    assert write.payload["exception_type"] == "skipped"


def test_delete_all_occurrences_drops_series():
    occurrence = find_occurrence(make_todo(), [], "2026-02-16")
    writes = route_delete(occurrence, "ALL")
    assert [w.action for w in writes] == [DELETE_TEMPLATE, DELETE_EXCEPTIONS_FOR_PARENT]
    assert all(w.parent_id == 5 for w in writes)


def test_edit_one_time_item_updates_template_with_changes():
    occurrence = find_occurrence(make_todo(recurrence=None), [], None)
    (write,) = route_edit(occurrence, {"title": "New"})
    assert write.action == UPDATE_TEMPLATE
    assert write.payload == {"title": "New"}


def test_edit_repeat_requires_scope():
    occurrence = find_occurrence(make_todo(), [], "2026-02-09")
    with pytest.raises(RecurrenceScopeRequired) as excinfo:
        route_edit(occurrence, {"title": "x"})
    assert excinfo.value.action == "edit"


def test_edit_this_occurrence_stores_overrides_without_series_fields():
    occurrence = find_occurrence(make_todo(), [], "2026-02-09")
    changes = {
        "title": "Week 2 cards",
        "due_date": date(2026, 2, 10),
        "recurrence": "daily",
        "recurrence_until": date(2026, 5, 1),
        "completed": True,
        "id": 77,
    }
    (write,) = route_edit(occurrence, changes, SCOPE_THIS)
    assert write.action == UPSERT_EXCEPTION
    assert write.exception_date == date(2026, 2, 9)
    assert write.payload == {
        "exception_type": "modified",
        "overrides": {"title": "Week 2 cards", "due_date": "2026-02-10"},
    }


def test_edit_this_occurrence_keeps_earlier_overrides():
    exceptions = [exception("todo", 5, "2026-02-09", "modified", {"title": "Moved", "course": "BIO"})]
    occurrence = find_occurrence(make_todo(), exceptions, "2026-02-09")
    (write,) = route_edit(occurrence, {"description": "bring cards"}, SCOPE_THIS)
    assert write.payload["overrides"] == {"title": "Moved", "course": "BIO", "description": "bring cards"}


def test_edit_all_from_anchor_passes_changes_through():
    occurrence = find_occurrence(make_todo(), [], "2026-02-02")
    changes = {"title": "Deck", "due_date": date(2026, 2, 3)}
    (write,) = route_edit(occurrence, changes, SCOPE_ALL)
    assert write.action == UPDATE_TEMPLATE
    assert write.payload == changes


def test_edit_all_from_repeat_shifts_anchor_by_same_amount():
    occurrence = find_occurrence(make_todo(), [], "2026-02-16")
    (write,) = route_edit(occurrence, {"due_date": date(2026, 2, 17)}, SCOPE_ALL)
    assert write.payload["due_date"] == date(2026, 2, 3)


def test_rebase_event_times_keeps_new_time_of_day():
    occurrence = find_occurrence(make_event(), [], "2026-02-16")
    rebased = rebase_series_changes(occurrence, {
        "title": "Seminar",
        "start_time": datetime(2026, 2, 16, 16, 0),
        "end_time": datetime(2026, 2, 16, 17, 0),
    })
    assert rebased["start_time"] == datetime(2026, 2, 2, 16, 0)
    assert rebased["end_time"] == datetime(2026, 2, 2, 17, 0)
    assert rebased["title"] == "Seminar"


def test_rebase_leaves_changes_without_date_alone():
    occurrence = find_occurrence(make_event(), [], "2026-02-16")
    changes = {"title": "Only the name"}
    assert rebase_series_changes(occurrence, changes) == changes


def test_edit_form_defaults_for_event_repeat():
    occurrence = find_occurrence(make_event(), [], "2026-02-09")
    values = edit_form_defaults(occurrence)
    assert values["start_time"] == "2026-02-09T14:00:00"
    assert values["end_time"] == "2026-02-09T15:30:00"
    assert values["occurrence_date"] == "2026-02-09"
    assert values["is_virtual"] is True
    assert values["is_recurring"] is True
    assert values["title"] == "Seminar"


def test_edit_form_defaults_for_todo_use_displayed_date_and_completion():
    exceptions = [
        exception("todo", 5, "2026-02-09", "modified", {"due_date": "2026-02-11"}),
        exception("todo", 5, "2026-02-16", "completed"),
    ]
    moved = edit_form_defaults(find_occurrence(make_todo(), exceptions, "2026-02-09"))
    assert moved["due_date"] == "2026-02-11"
    assert moved["occurrence_date"] == "2026-02-09"
    assert moved["completed"] is False

    done = edit_form_defaults(find_occurrence(make_todo(), exceptions, "2026-02-16"))
    assert done["due_date"] == "2026-02-16"
    assert done["completed"] is True


def test_write_to_dict_is_json_ready():
    occurrence = find_occurrence(make_todo(), [], "2026-02-09")
    (write,) = route_edit(occurrence, {"title": "x"}, SCOPE_THIS)
    assert write_to_dict(write) == {
        "action": UPSERT_EXCEPTION,
        "parent_type": "todo",
        "parent_id": 5,
        "exception_date": "2026-02-09",
        "payload": {"exception_type": "modified", "overrides": {"title": "x"}},
    }


def test_normalize_scope():
    assert normalize_scope(None) is None
    assert normalize_scope("") is None
    assert normalize_scope(" This ") == SCOPE_THIS
    with pytest.raises(ValueError):
        normalize_scope("future")


def test_edit_all_to_one_time_clears_exceptions():
    exceptions = [exception("todo", 5, "2026-02-09", "skipped")]
    occurrence = find_occurrence(make_todo(), exceptions, "2026-02-02")
    writes = route_edit(occurrence, {"title": "Flashcards", "recurrence": None, "recurrence_until": None}, SCOPE_ALL)
    assert [w.action for w in writes] == [UPDATE_TEMPLATE, DELETE_EXCEPTIONS_FOR_PARENT]
    assert writes[1].parent_id == 5

    writes = route_edit(occurrence, {"title": "Flashcards", "recurrence": "daily"}, SCOPE_ALL)
    assert [w.action for w in writes] == [UPDATE_TEMPLATE]
