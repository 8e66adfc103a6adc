from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime


class UserCreate(BaseModel):
    username: str = Field(..., min_length=1, max_length=64)
    timezone: Optional[str] = Field(default=None, max_length=64)


class UserResponse(BaseModel):
    id: int
    username: str
    timezone: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
