"""
Goal hierarchy: flat goal rows linked by parent_goal_id -> ordered forest.

Goals are kept in an arena keyed by id and linked by index lookup, never as
an embedded object graph. Children are ordered by deadline, then creation
order. A parent loop can only come from corrupted data; by default the
resolver breaks it, promotes one member to a root and reports the loop.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, FrozenSet, Iterable, List, Optional

from sqlalchemy.orm import Session

from tracker.errors import CycleDetected, NotFound, ValidationError
from tracker.models.goal import Goal

logger = logging.getLogger(__name__)


@dataclass
class GoalNode:
    goal: object
    children: List["GoalNode"] = field(default_factory=list)

    @property
    def id(self) -> int:
        return self.goal.id

    def walk(self):
        yield self
        for child in self.children:
            yield from child.walk()

    def to_dict(self):
        data = self.goal.to_dict() if hasattr(self.goal, "to_dict") else {"id": self.goal.id}
        data["children"] = [child.to_dict() for child in self.children]
        return data


@dataclass
class Forest:
    roots: List[GoalNode]
    cycles: List[List[int]] = field(default_factory=list)


def _order_key(goal):
    created = getattr(goal, "created_at", None) or datetime.min
    return (goal.deadline or datetime.max, created, goal.id)


def resolve_forest(goals: Iterable, strict: bool = False) -> Forest:
    by_id: Dict[int, object] = {goal.id: goal for goal in goals}
    children: Dict[int, List[int]] = defaultdict(list)
    root_ids: List[int] = []

    for goal in by_id.values():
        parent_id = goal.parent_goal_id
        if parent_id is None or parent_id not in by_id:
            root_ids.append(goal.id)
        else:
            children[parent_id].append(goal.id)

    for child_ids in children.values():
        child_ids.sort(key=lambda goal_id: _order_key(by_id[goal_id]))

    placed = set()
    cycles: List[List[int]] = []

    def build(goal_id: int, ancestors: FrozenSet[int]) -> GoalNode:
        node = GoalNode(goal=by_id[goal_id])
        placed.add(goal_id)
        lineage = ancestors | {goal_id}
        for child_id in children[goal_id]:
            if child_id in lineage:
                # Edge closing a loop back onto this branch, only reachable from a promoted root
                continue
            node.children.append(build(child_id, lineage))
        return node

    roots = [build(goal_id, frozenset()) for goal_id in sorted(root_ids, key=lambda i: _order_key(by_id[i]))]

    for goal_id in sorted(by_id, key=lambda i: _order_key(by_id[i])):
        if goal_id in placed:
            continue
        cycle = _find_cycle(goal_id, by_id)
        if strict:
            raise CycleDetected(cycle)
        promoted = min(cycle, key=lambda i: _order_key(by_id[i]))
        logger.error("Goal parent cycle %s, treating goal %s as a root until repaired", cycle, promoted)
        cycles.append(cycle)
        roots.append(build(promoted, frozenset()))

    roots.sort(key=lambda node: _order_key(node.goal))
    return Forest(roots=roots, cycles=cycles)


def _find_cycle(start_id: int, by_id: Dict[int, object]) -> List[int]:
    """Follow parent links from ``start_id`` until one repeats; return the loop."""
    seen: Dict[int, int] = {}
    path: List[int] = []
    current: Optional[int] = start_id
    while current is not None and current in by_id and current not in seen:
        seen[current] = len(path)
        path.append(current)
        current = by_id[current].parent_goal_id
    if current is None or current not in seen:
        return path
    return path[seen[current]:]


def build_forest(goals: Iterable, strict: bool = False) -> List[GoalNode]:
    return resolve_forest(goals, strict=strict).roots


def ancestors(goal_id: int, by_id: Dict[int, object]) -> List[int]:
    """Parent chain of ``goal_id``, nearest first. Raises CycleDetected on a loop."""
    chain: List[int] = []
    seen = {goal_id}
    current = by_id[goal_id].parent_goal_id if goal_id in by_id else None
    while current is not None and current in by_id:
        if current in seen:
            raise CycleDetected(chain + [current])
        seen.add(current)
        chain.append(current)
        current = by_id[current].parent_goal_id
    return chain


def validate_parent(session: Session, user_id: int, goal_id: Optional[int], parent_goal_id: Optional[int]) -> None:
    """Reject a parent link that crosses owners or makes a goal its own ancestor."""
    if parent_goal_id is None:
        return
    if goal_id is not None and parent_goal_id == goal_id:
        raise ValidationError("A goal cannot be its own parent", field="parent_goal_id")

    parent = session.query(Goal).filter(Goal.id == parent_goal_id).first()
    if parent is None or parent.user_id != user_id:
        raise NotFound("Goal", parent_goal_id)
    if goal_id is None:
        return

    by_id = {g.id: g for g in session.query(Goal).filter(Goal.user_id == user_id).all()}
    try:
        chain = ancestors(parent_goal_id, by_id)
    except CycleDetected:
        logger.error("Existing parent chain of goal %s is already cyclic", parent_goal_id)
        raise
    if goal_id in chain:
        raise ValidationError(
            f"Goal {parent_goal_id} descends from goal {goal_id}, linking them would create a cycle",
            field="parent_goal_id",
        )


def goal_tree(session: Session, user_id: int, include_archived: bool = False) -> Forest:
    q = session.query(Goal).filter(Goal.user_id == user_id)
    if not include_archived:
        q = q.filter(Goal.is_archived.is_(False))
    return resolve_forest(q.all())
