from datetime import datetime
from types import SimpleNamespace

import pytest

from tests.factories import make_goal, make_task
from tracker.errors import ValidationError
from tracker.models import Task
from tracker.services.calendar_rules import RepeatType
from tracker.services.recurrence import (
    expand,
    materialize,
    prune_beyond_deadline,
    recurrence_possible,
    series_bound,
    validate_template,
)


def template(scheduled, repeat_type="weekly", repeat_until=None, id=7):
    return SimpleNamespace(
        id=id,
        goal_id=1,
        title="Long run",
        description=None,
        time_of_day="morning",
        scheduled_date=scheduled,
        repeat_type=repeat_type,
        repeat_until=repeat_until,
    )


def dates(occurrences):
    return [o.scheduled_date for o in occurrences]


def test_weekly_series_ends_on_repeat_until():
    occurrences = expand(template(datetime(2024, 1, 15), repeat_until=datetime(2024, 2, 5)), datetime(2024, 12, 31))
    assert dates(occurrences) == [
        datetime(2024, 1, 15),
        datetime(2024, 1, 22),
        datetime(2024, 1, 29),
        datetime(2024, 2, 5),
    ]


def test_origin_first_then_children_linked_to_template():
    origin, *children = expand(template(datetime(2024, 1, 15), repeat_until=datetime(2024, 2, 5)), None)
    assert origin.is_origin and origin.parent_task_id is None
    assert all(child.parent_task_id == 7 and not child.is_origin for child in children)
    assert all(child.time_of_day == "morning" for child in children)


def test_goal_deadline_bounds_open_series():
    occurrences = expand(template(datetime(2024, 1, 1, 9, 0), "daily"), datetime(2024, 1, 3))
    assert dates(occurrences) == [datetime(2024, 1, d, 9, 0) for d in (1, 2, 3)]


def test_bound_with_a_time_is_exact():
    occurrences = expand(template(datetime(2024, 1, 1, 9, 0), "every_other_day"), datetime(2024, 1, 5, 8, 0))
    assert dates(occurrences) == [datetime(2024, 1, 1, 9, 0), datetime(2024, 1, 3, 9, 0)]


def test_earlier_of_repeat_until_and_deadline_wins():
    assert series_bound(datetime(2024, 3, 1, 12, 0), datetime(2024, 2, 1, 12, 0)) == datetime(2024, 2, 1, 12, 0)
    assert series_bound(None, None) is None


def test_monthly_series_clamps_from_month_end():
    occurrences = expand(template(datetime(2024, 1, 31), "monthly", datetime(2024, 4, 30)), None)
    assert dates(occurrences) == [
        datetime(2024, 1, 31),
        datetime(2024, 2, 29),
        datetime(2024, 3, 29),
        datetime(2024, 4, 29),
    ]


def test_repeat_until_before_start_yields_only_the_task():
    t = template(datetime(2024, 3, 1), "daily", repeat_until=datetime(2024, 2, 1))
    assert dates(expand(t, datetime(2024, 12, 31))) == [datetime(2024, 3, 1)]
    assert recurrence_possible(t, datetime(2024, 12, 31)) is False


def test_non_repeating_task_expands_to_itself():
    t = template(datetime(2024, 3, 1), "none")
    assert len(expand(t, datetime(2024, 12, 31))) == 1
    assert recurrence_possible(t, datetime(2024, 12, 31)) is False


def test_expansion_is_deterministic():
    t = template(datetime(2024, 1, 1), "every_other_day", datetime(2024, 2, 1))
    assert expand(t, None) == expand(t, None)


def _daily_template(session, goal):
    return make_task(
        session, goal, datetime(2024, 1, 25),
        is_repeating=True, repeat_type="daily",
    )


def test_materialize_is_idempotent(session, user):
    goal = make_goal(session, user, deadline=datetime(2024, 1, 31))
    origin = _daily_template(session, goal)

    created = materialize(session, origin, goal)
    assert [t.scheduled_date.day for t in created] == [26, 27, 28, 29, 30, 31]
    assert all(t.parent_task_id == origin.id and not t.is_repeating for t in created)
    assert all(t.is_recurring for t in created)

    assert materialize(session, origin, goal) == []
    assert session.query(Task).filter(Task.goal_id == goal.id).count() == 7


def test_prune_keeps_completed_occurrences(session, user):
    goal = make_goal(session, user, deadline=datetime(2024, 1, 31))
    origin = _daily_template(session, goal)
    children = {t.scheduled_date.day: t for t in materialize(session, origin, goal)}
    children[30].is_completed = True
    children[30].completed_at = datetime(2024, 1, 30, 8, 0)
    session.flush()

    goal.deadline = datetime(2024, 1, 28)
    assert prune_beyond_deadline(session, goal) == 2

    left = sorted(t.scheduled_date.day for t in session.query(Task).filter(Task.goal_id == goal.id))
    assert left == [25, 26, 27, 28, 30]


def test_validate_template_accepts_weekly(session, user):
    goal = make_goal(session, user, deadline=datetime(2024, 1, 31))
    rule = validate_template(session, goal, datetime(2024, 1, 2), True, "weekly", None, 5)
    assert rule is RepeatType.WEEKLY


@pytest.mark.parametrize("scheduled, is_repeating, repeat_type, repeat_until, field", [
    (datetime(2024, 1, 2), True, "none", None, "repeat_type"),
    (datetime(2024, 1, 2), False, "daily", None, "is_repeating"),
    (datetime(2024, 1, 2), False, "none", datetime(2024, 1, 9), "repeat_until"),
    (datetime(2024, 2, 2), False, "none", None, "scheduled_date"),
])
def test_validate_template_rejects(session, user, scheduled, is_repeating, repeat_type, repeat_until, field):
    goal = make_goal(session, user, deadline=datetime(2024, 1, 31))
    with pytest.raises(ValidationError) as exc:
        validate_template(session, goal, scheduled, is_repeating, repeat_type, repeat_until, 5)
    assert exc.value.field == field


def test_validate_template_rejects_archived_goal(session, user):
    goal = make_goal(session, user, deadline=datetime(2024, 1, 31), is_archived=True)
    with pytest.raises(ValidationError):
        validate_template(session, goal, datetime(2024, 1, 2), False, None, None, 5)


def test_validate_template_enforces_daily_limit(session, user):
    goal = make_goal(session, user, deadline=datetime(2024, 1, 31))
    make_task(session, goal, datetime(2024, 1, 2, 8, 0))
    make_task(session, goal, datetime(2024, 1, 2, 18, 0))
    with pytest.raises(ValidationError):
        validate_template(session, goal, datetime(2024, 1, 2, 12, 0), False, None, None, 2)
    validate_template(session, goal, datetime(2024, 1, 3), False, None, None, 2)
