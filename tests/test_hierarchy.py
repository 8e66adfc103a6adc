from datetime import datetime
from types import SimpleNamespace

import pytest

from tests.factories import make_goal
from tracker.errors import CycleDetected, NotFound, ValidationError
from tracker.services.hierarchy import ancestors, goal_tree, resolve_forest, validate_parent
from tracker.services.users import create_user


def goal(id, parent=None, deadline=None, created=None):
    return SimpleNamespace(
        id=id,
        parent_goal_id=parent,
        deadline=deadline or datetime(2024, 12, 31),
        created_at=created or datetime(2024, 1, 1, 0, id),
    )


def shape(nodes):
    return [(node.id, shape(node.children)) for node in nodes]


def test_builds_nested_forest():
    goals = [
        goal(1),
        goal(2, parent=1, deadline=datetime(2024, 6, 1)),
        goal(3, parent=1, deadline=datetime(2024, 9, 1)),
        goal(4, parent=2),
    ]
    forest = resolve_forest(goals)
    assert shape(forest.roots) == [(1, [(2, [(4, [])]), (3, [])])]
    assert forest.cycles == []


def test_siblings_ordered_by_deadline_then_creation():
    goals = [
        goal(1),
        goal(2, parent=1, deadline=datetime(2024, 9, 1)),
        goal(3, parent=1, deadline=datetime(2024, 3, 1)),
        goal(4, parent=1, deadline=datetime(2024, 9, 1), created=datetime(2023, 1, 1)),
    ]
    [root] = resolve_forest(goals).roots
    assert [child.id for child in root.children] == [3, 4, 2]


def test_goal_with_missing_parent_becomes_root():
    forest = resolve_forest([goal(1), goal(2, parent=99)])
    assert sorted(node.id for node in forest.roots) == [1, 2]


def test_cycle_is_broken_and_reported():
    goals = [goal(1), goal(2, parent=3), goal(3, parent=2)]
    forest = resolve_forest(goals)

    assert forest.cycles == [[2, 3]]
    placed = [node.id for root in forest.roots for node in root.walk()]
    assert sorted(placed) == [1, 2, 3]


def test_cycle_raises_in_strict_mode():
    with pytest.raises(CycleDetected) as exc:
        resolve_forest([goal(1, parent=2), goal(2, parent=1)], strict=True)
    assert sorted(exc.value.goal_ids) == [1, 2]


def test_ancestors_nearest_first():
    by_id = {g.id: g for g in [goal(1), goal(2, parent=1), goal(3, parent=2)]}
    assert ancestors(3, by_id) == [2, 1]


def test_node_to_dict_nests_children():
    forest = resolve_forest([goal(1), goal(2, parent=1)])
    data = forest.roots[0].to_dict()
    assert data["id"] == 1
    assert data["children"][0]["id"] == 2


def test_validate_parent_rejects_self_and_cycles(session, user):
    a = make_goal(session, user, "A")
    b = make_goal(session, user, "B", parent_goal_id=a.id)

    with pytest.raises(ValidationError):
        validate_parent(session, user.id, a.id, a.id)
    with pytest.raises(ValidationError):
        validate_parent(session, user.id, a.id, b.id)
    validate_parent(session, user.id, None, b.id)


def test_validate_parent_rejects_foreign_goal(session, user):
    other = create_user(session, "bob", "UTC")
    foreign = make_goal(session, other, "Bob's goal")
    with pytest.raises(NotFound):
        validate_parent(session, user.id, None, foreign.id)


def test_goal_tree_hides_archived(session, user):
    root = make_goal(session, user, "Root")
    make_goal(session, user, "Archived", parent_goal_id=root.id, is_archived=True)
    make_goal(session, user, "Active", parent_goal_id=root.id)

    forest = goal_tree(session, user.id)
    assert [c.goal.title for c in forest.roots[0].children] == ["Active"]
    assert len(goal_tree(session, user.id, include_archived=True).roots[0].children) == 2
