from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from shared.database import Database
from shared.schemas import achievements as achievement_schemas
from shared.schemas import stats as stats_schemas
from shared.schemas import users as user_schemas
from tracker.config import Settings
from tracker.dependencies import get_app_settings, get_database
from tracker.services import achievements as achievements_service
from tracker.services import stats as stats_service
from tracker.services import triggers
from tracker.services.users import get_user

router = APIRouter(prefix="/api/users", tags=["users"])


@router.post("", response_model=user_schemas.UserResponse, status_code=status.HTTP_201_CREATED)
def create_user(
    payload: user_schemas.UserCreate,
    db: Database = Depends(get_database),
    settings: Settings = Depends(get_app_settings),
):
    return triggers.create_user(db, payload.username, payload.timezone, settings=settings)


@router.get("/{user_id}/stats", response_model=stats_schemas.UserStatsResponse)
def get_user_stats(user_id: int, db: Database = Depends(get_database)):
    with db.session_ctx() as session:
        return stats_service.snapshot_user(session, user_id)


@router.post("/{user_id}/stats/recalculate", response_model=stats_schemas.UserStatsRecalculatedResponse)
def recalculate_user_stats(
    user_id: int,
    db: Database = Depends(get_database),
    settings: Settings = Depends(get_app_settings),
):
    return triggers.recalculate_user_stats(db, user_id, settings=settings)


@router.get("/{user_id}/achievements", response_model=list[achievement_schemas.AchievementResponse])
def list_user_achievements(
    user_id: int,
    type: Optional[str] = Query(default=None),
    completed: Optional[bool] = Query(default=None),
    db: Database = Depends(get_database),
):
    with db.session_ctx() as session:
        get_user(session, user_id)
        return achievements_service.list_achievements(session, user_id, type=type, completed=completed)
