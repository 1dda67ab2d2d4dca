"""Pydantic schemas for users."""
from datetime import datetime
from typing import Optional

from prepaidly.schemas.base import CamelModel


class UserCreate(CamelModel):
    email: str


class UserResponse(CamelModel):
    id: int
    email: str
    created_at: Optional[datetime] = None


class UserUpdate(CamelModel):
    email: Optional[str] = None
