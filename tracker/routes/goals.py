from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from shared.database import Database
from shared.schemas import goals as goal_schemas
from shared.schemas import stats as stats_schemas
from tracker.config import Settings
from tracker.dependencies import get_app_settings, get_database
from tracker.services import stats as stats_service
from tracker.services import triggers
from tracker.services.hierarchy import goal_tree
from tracker.services.users import get_user

router = APIRouter(prefix="/api/goals", tags=["goals"])


@router.post("", response_model=goal_schemas.GoalResponse, status_code=status.HTTP_201_CREATED)
def create_goal(payload: goal_schemas.GoalCreate, db: Database = Depends(get_database)):
    return triggers.create_goal(
        db,
        payload.user_id,
        title=payload.title,
        deadline=payload.deadline,
        type=payload.type,
        description=payload.description,
        parent_goal_id=payload.parent_goal_id,
    )


@router.get("/tree", response_model=goal_schemas.GoalTreeResponse)
def get_goal_tree(
    user_id: int = Query(...),
    include_archived: bool = Query(default=False),
    db: Database = Depends(get_database),
):
    with db.session_ctx() as session:
        get_user(session, user_id)
        forest = goal_tree(session, user_id, include_archived=include_archived)
        return {"roots": [node.to_dict() for node in forest.roots], "cycles": forest.cycles}


@router.get("/{goal_id}/stats", response_model=stats_schemas.GoalStatsResponse)
def get_goal_stats(goal_id: int, user_id: int = Query(...), db: Database = Depends(get_database)):
    with db.session_ctx() as session:
        return stats_service.snapshot_goal(session, user_id, goal_id)


@router.patch("/{goal_id}/complete", response_model=goal_schemas.GoalCompletionResponse)
def complete_goal(
    goal_id: int,
    payload: goal_schemas.GoalAction,
    db: Database = Depends(get_database),
    settings: Settings = Depends(get_app_settings),
):
    return triggers.on_goal_completed(db, payload.user_id, goal_id, payload.at, settings=settings)


@router.patch("/{goal_id}/archive", response_model=goal_schemas.GoalResponse)
def archive_goal(goal_id: int, payload: goal_schemas.GoalAction, db: Database = Depends(get_database)):
    return triggers.on_goal_archived(db, payload.user_id, goal_id, payload.at)


@router.patch("/{goal_id}/unarchive", response_model=goal_schemas.GoalResponse)
def unarchive_goal(goal_id: int, payload: goal_schemas.GoalAction, db: Database = Depends(get_database)):
    return triggers.on_goal_unarchived(db, payload.user_id, goal_id)


@router.patch("/{goal_id}/deadline", response_model=goal_schemas.GoalDeadlineResponse)
def change_goal_deadline(
    goal_id: int,
    payload: goal_schemas.GoalDeadlineUpdate,
    db: Database = Depends(get_database),
):
    return triggers.on_goal_deadline_changed(db, payload.user_id, goal_id, payload.deadline)


@router.patch("/{goal_id}/parent", response_model=goal_schemas.GoalResponse)
def change_goal_parent(
    goal_id: int,
    payload: goal_schemas.GoalParentUpdate,
    db: Database = Depends(get_database),
):
    return triggers.on_goal_parent_changed(db, payload.user_id, goal_id, payload.parent_goal_id)


@router.delete("/{goal_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_goal(
    goal_id: int,
    user_id: int = Query(...),
    db: Database = Depends(get_database),
    settings: Settings = Depends(get_app_settings),
):
    triggers.on_goal_deleted(db, user_id, goal_id, settings=settings)
