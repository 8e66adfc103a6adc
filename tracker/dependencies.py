from fastapi import Request

from shared.database import Database
from tracker.config import Settings


def get_database(request: Request) -> Database:
    return request.app.state.db


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings
