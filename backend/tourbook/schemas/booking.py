"""
Pydantic schemas for booking-related responses.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel

from tourbook.schemas.tour import TourResponse


class BookingResponse(BaseModel):
    id: int
    user_id: int
    tour_id: int
    status: str
    created_at: datetime

    model_config = {"from_attributes": True}


class BookingResultResponse(BaseModel):
    message: str
    tour: TourResponse


class BookingStatusResponse(BaseModel):
    booked: bool
    booking_id: Optional[int] = None


class TourBookingsResponse(BaseModel):
    tour_id: int
    title: str
    participants_count: int
    confirmed_count: int
    bookings: list[BookingResponse]
