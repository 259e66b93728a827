"""
Pydantic schemas for tour-related request/response validation.

participants_count and status are never accepted from clients: the first
is owned by the booking service, the second changes only through the
publish/unpublish/cancel actions.
"""

from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field

from tourbook.models.tour import MAX_PARTICIPANTS_LIMIT

Difficulty = Literal["EASY", "MODERATE", "HARD"]


class TourCreate(BaseModel):
    title: str = Field(..., min_length=3, max_length=120)
    short_description: str = Field("", max_length=300)
    full_description: str = Field("", max_length=8000)
    start_location: Optional[str] = Field(None, max_length=120)
    end_location: Optional[str] = Field(None, max_length=120)
    start_datetime: datetime
    end_datetime: datetime
    max_participants: int = Field(..., ge=1, le=MAX_PARTICIPANTS_LIMIT)
    price_amount: float = Field(0, ge=0)
    currency: str = Field("NOK", min_length=3, max_length=8)
    difficulty: Difficulty = "MODERATE"


class TourUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=3, max_length=120)
    short_description: Optional[str] = Field(None, max_length=300)
    full_description: Optional[str] = Field(None, max_length=8000)
    start_location: Optional[str] = Field(None, max_length=120)
    end_location: Optional[str] = Field(None, max_length=120)
    start_datetime: Optional[datetime] = None
    end_datetime: Optional[datetime] = None
    max_participants: Optional[int] = Field(None, ge=1, le=MAX_PARTICIPANTS_LIMIT)
    price_amount: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=8)
    difficulty: Optional[Difficulty] = None

    model_config = {"extra": "ignore"}


class TourResponse(BaseModel):
    id: int
    title: str
    short_description: str
    full_description: str
    start_location: Optional[str]
    end_location: Optional[str]
    start_datetime: datetime
    end_datetime: datetime
    max_participants: int
    participants_count: int
    available_spots: int
    price_amount: float
    currency: str
    difficulty: str
    status: str
    created_by: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class TourListResponse(BaseModel):
    tours: list[TourResponse]
    total: int
    page: int
    page_size: int
    cached: bool = False
