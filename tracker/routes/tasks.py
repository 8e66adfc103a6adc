from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from shared.database import Database
from shared.schemas import tasks as task_schemas
from tracker.config import Settings
from tracker.dependencies import get_app_settings, get_database
from tracker.services import triggers

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


@router.post("", response_model=task_schemas.TaskCreatedResponse, status_code=status.HTTP_201_CREATED)
def create_task(
    payload: task_schemas.TaskCreate,
    db: Database = Depends(get_database),
    settings: Settings = Depends(get_app_settings),
):
    return triggers.on_task_created(
        db,
        payload.user_id,
        payload.goal_id,
        title=payload.title,
        scheduled_date=payload.scheduled_date,
        description=payload.description,
        time_of_day=payload.time_of_day,
        is_repeating=payload.is_repeating,
        repeat_type=payload.repeat_type,
        repeat_until=payload.repeat_until,
        settings=settings,
    )


@router.patch("/{task_id}/complete", response_model=task_schemas.TaskCompletionResponse)
def complete_task(
    task_id: int,
    payload: task_schemas.TaskComplete,
    db: Database = Depends(get_database),
    settings: Settings = Depends(get_app_settings),
):
    return triggers.on_task_completed(
        db, payload.user_id, task_id, payload.completed_at, payload.time_of_day, settings=settings
    )


@router.patch("/{task_id}/uncomplete", response_model=task_schemas.TaskResponse)
def uncomplete_task(
    task_id: int,
    payload: task_schemas.TaskAction,
    db: Database = Depends(get_database),
    settings: Settings = Depends(get_app_settings),
):
    return triggers.on_task_uncompleted(db, payload.user_id, task_id, settings=settings)


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_task(
    task_id: int,
    user_id: int = Query(...),
    db: Database = Depends(get_database),
    settings: Settings = Depends(get_app_settings),
):
    triggers.on_task_deleted(db, user_id, task_id, settings=settings)
