from datetime import date, datetime

import pytest

from shared.database import Database
from tracker.errors import ConcurrentUpdateConflict, NotFound, ValidationError
from tracker.models import Task, UserStats
from tracker.services import notifications
from tracker.services import stats as stats_service
from tracker.services import triggers


@pytest.fixture
def owner(db, settings):
    return triggers.create_user(db, "alice", "UTC", settings=settings)


@pytest.fixture
def goal(db, owner):
    return triggers.create_goal(db, owner["id"], title="Get fit", deadline=datetime(2024, 2, 29))


def create_task(db, owner, goal, settings, **fields):
    fields.setdefault("title", "Gym")
    fields.setdefault("scheduled_date", datetime(2024, 1, 15))
    return triggers.on_task_created(db, owner["id"], goal["id"], settings=settings, **fields)


def tasks_completed(db, user_id):
    with db.session_ctx() as session:
        return session.query(UserStats).filter(UserStats.user_id == user_id).one().tasks_completed


def test_recurring_task_creates_series(db, owner, goal, settings):
    result = create_task(
        db, owner, goal, settings,
        is_repeating=True, repeat_type="weekly", repeat_until=datetime(2024, 2, 5),
    )
    assert result["recurrence_possible"] is True
    assert [o["scheduled_date"] for o in result["occurrences"]] == [
        "2024-01-22T00:00:00", "2024-01-29T00:00:00", "2024-02-05T00:00:00",
    ]
    assert {o["parent_task_id"] for o in result["occurrences"]} == {result["task"]["id"]}


def test_series_ending_before_it_starts_creates_single_task(db, owner, goal, settings):
    result = create_task(
        db, owner, goal, settings,
        is_repeating=True, repeat_type="daily", repeat_until=datetime(2024, 1, 10),
    )
    assert result["recurrence_possible"] is False
    assert result["occurrences"] == []
    assert result["task"]["id"] is not None


def test_task_after_deadline_is_rejected(db, owner, goal, settings):
    with pytest.raises(ValidationError):
        create_task(db, owner, goal, settings, scheduled_date=datetime(2024, 3, 15))


def test_other_owner_cannot_touch_goal(db, owner, goal, settings):
    other = triggers.create_user(db, "bob", "UTC", settings=settings)
    with pytest.raises(NotFound):
        triggers.on_task_created(db, other["id"], goal["id"], "Gym", datetime(2024, 1, 15), settings=settings)


def test_completing_twice_counts_once(db, owner, goal, settings):
    task = create_task(db, owner, goal, settings)["task"]

    first = triggers.on_task_completed(db, owner["id"], task["id"], datetime(2024, 1, 15, 7, 0), "morning", settings=settings)
    second = triggers.on_task_completed(db, owner["id"], task["id"], datetime(2024, 1, 16, 7, 0), settings=settings)

    assert first["already_completed"] is False
    assert first["task"]["completed_on_time"] is True
    assert second["already_completed"] is True
    assert second["task"]["completed_at"] == "2024-01-15T07:00:00"
    assert tasks_completed(db, owner["id"]) == 1


def test_completion_in_archived_goal_is_rejected(db, owner, goal, settings):
    task = create_task(db, owner, goal, settings)["task"]
    triggers.on_goal_archived(db, owner["id"], goal["id"])
    with pytest.raises(ValidationError):
        triggers.on_task_completed(db, owner["id"], task["id"], settings=settings)

    assert triggers.on_goal_unarchived(db, owner["id"], goal["id"])["is_archived"] is False
    triggers.on_task_completed(db, owner["id"], task["id"], datetime(2024, 1, 15, 9, 0), settings=settings)
    assert tasks_completed(db, owner["id"]) == 1


def test_lost_races_fall_back_to_recompute(db, owner, goal, settings, monkeypatch):
    task = create_task(db, owner, goal, settings)["task"]
    calls = []

    def always_conflicts(session, task, goal, tz_name):
        calls.append(task.id)
        raise ConcurrentUpdateConflict("user_stats", goal.user_id)

    monkeypatch.setattr(stats_service, "record_task_completion", always_conflicts)
    triggers.on_task_completed(db, owner["id"], task["id"], datetime(2024, 1, 15, 9, 0), settings=settings)

    assert len(calls) == settings.stats_retry_attempts
    assert tasks_completed(db, owner["id"]) == 1


def test_conflict_surfaces_when_recompute_also_fails(db, owner, goal, settings, monkeypatch):
    task = create_task(db, owner, goal, settings)["task"]

    def conflict(*args, **kwargs):
        raise ConcurrentUpdateConflict("user_stats", owner["id"])

    monkeypatch.setattr(stats_service, "record_task_completion", conflict)
    monkeypatch.setattr(stats_service, "recompute_user", conflict)
    with pytest.raises(ConcurrentUpdateConflict):
        triggers.on_task_completed(db, owner["id"], task["id"], settings=settings)

    # the completion itself is durable
    with db.session_ctx() as session:
        assert session.get(Task, task["id"]).is_completed is True


def test_uncomplete_rebuilds_stats(db, owner, goal, settings):
    task = create_task(db, owner, goal, settings)["task"]
    triggers.on_task_completed(db, owner["id"], task["id"], datetime(2024, 1, 15, 9, 0), settings=settings)

    reopened = triggers.on_task_uncompleted(db, owner["id"], task["id"], settings=settings)
    assert reopened["is_completed"] is False
    assert tasks_completed(db, owner["id"]) == 0


def test_goal_completion_publishes_achievement(db, owner, goal, settings):
    received = []
    listener = notifications.subscribe(received.append)
    try:
        result = triggers.on_goal_completed(db, owner["id"], goal["id"], datetime(2024, 2, 1), settings=settings)
    finally:
        notifications.unsubscribe(listener)

    assert [a["title"] for a in result["achievements"]] == ["Goal Starter"]
    assert [event.title for event in received] == ["Goal Starter"]
    again = triggers.on_goal_completed(db, owner["id"], goal["id"], settings=settings)
    assert again["already_completed"] is True


def test_deadline_change_prunes_and_extends(db, owner, goal, settings):
    create_task(db, owner, goal, settings, is_repeating=True, repeat_type="weekly")

    shorter = triggers.on_goal_deadline_changed(db, owner["id"], goal["id"], datetime(2024, 1, 31))
    assert shorter["pruned"] == 4
    longer = triggers.on_goal_deadline_changed(db, owner["id"], goal["id"], datetime(2024, 2, 12))
    assert (longer["pruned"], longer["generated"]) == (0, 2)


def test_deleting_goal_recomputes_owner_stats(db, owner, goal, settings):
    task = create_task(db, owner, goal, settings)["task"]
    triggers.on_task_completed(db, owner["id"], task["id"], datetime(2024, 1, 15, 9, 0), settings=settings)

    triggers.on_goal_deleted(db, owner["id"], goal["id"], settings=settings)
    assert tasks_completed(db, owner["id"]) == 0


def test_backfilled_completion_matches_replayed_history(db, owner, goal, settings):
    monday, tuesday, wednesday = (
        create_task(db, owner, goal, settings, scheduled_date=datetime(2024, 1, day))["task"] for day in (15, 16, 17)
    )

    triggers.on_task_completed(db, owner["id"], monday["id"], datetime(2024, 1, 15, 9, 0), settings=settings)
    triggers.on_task_completed(db, owner["id"], wednesday["id"], datetime(2024, 1, 17, 9, 0), settings=settings)
    late = triggers.on_task_completed(db, owner["id"], tuesday["id"], datetime(2024, 1, 16, 9, 0), settings=settings)

    assert [a["title"] for a in late["achievements"]] == ["Consistency Champion"]
    with db.session_ctx() as session:
        row = session.query(UserStats).filter(UserStats.user_id == owner["id"]).one()
        assert (row.current_streak, row.longest_streak) == (3, 3)
        assert row.streak_start_date == date(2024, 1, 15)
        stats_service.check_consistency(session, owner["id"])


def test_deleting_series_origin_removes_occurrences(db, owner, goal, settings):
    created = create_task(
        db, owner, goal, settings,
        is_repeating=True, repeat_type="weekly", repeat_until=datetime(2024, 2, 5),
    )
    occurrence = created["occurrences"][0]
    triggers.on_task_completed(db, owner["id"], occurrence["id"], datetime(2024, 1, 22, 9, 0), settings=settings)
    assert tasks_completed(db, owner["id"]) == 1

    other = triggers.create_user(db, "bob", "UTC", settings=settings)
    with pytest.raises(NotFound):
        triggers.on_task_deleted(db, other["id"], created["task"]["id"], settings=settings)

    triggers.on_task_deleted(db, owner["id"], created["task"]["id"], settings=settings)
    with db.session_ctx() as session:
        assert session.query(Task).filter(Task.goal_id == goal["id"]).count() == 0
    assert tasks_completed(db, owner["id"]) == 0


def test_stale_stats_write_is_a_conflict(tmp_path, settings):
    database = Database(f"sqlite:///{tmp_path / 'tracker.db'}")
    database.create_all()
    user_id = triggers.create_user(database, "alice", "UTC", settings=settings)["id"]

    stale_session, fresh_session = database.get_session(), database.get_session()
    try:
        stale = stale_session.query(UserStats).filter(UserStats.user_id == user_id).one()
        fresh = fresh_session.query(UserStats).filter(UserStats.user_id == user_id).one()
        fresh.tasks_completed += 1
        fresh_session.commit()

        stale.tasks_completed += 1
        with pytest.raises(ConcurrentUpdateConflict):
            with stats_service.translate_conflicts("user_stats", user_id):
                stale_session.flush()
    finally:
        stale_session.rollback()
        stale_session.close()
        fresh_session.close()
        database.engine.dispose()
