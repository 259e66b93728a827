"""
Pydantic schemas for user-related request/response validation.
"""

from datetime import datetime
from typing import Literal
from pydantic import BaseModel, EmailStr, Field

Role = Literal["USER", "CABIN_OWNER", "TOUR_LEADER", "ADMIN"]


class UserCreate(BaseModel):
    email: EmailStr
    username: str = Field(..., min_length=3, max_length=100, pattern=r"^[a-zA-Z0-9_]+$")
    password: str = Field(..., min_length=8, max_length=72)


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class UserResponse(BaseModel):
    id: int
    email: str
    username: str
    roles: list[str]
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class UserRolesUpdate(BaseModel):
    roles: list[Role] = Field(..., min_length=1)


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
