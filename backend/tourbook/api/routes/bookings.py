"""
Booking endpoints with capacity-safe spot reservation.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tourbook.db.session import get_db
from tourbook.schemas.booking import BookingResponse, BookingResultResponse, BookingStatusResponse
from tourbook.schemas.tour import TourResponse
from tourbook.services.booking_service import (
    book_tour,
    get_booking_status,
    get_user_bookings,
    unbook_tour,
)
from tourbook.services.cache_service import invalidate_tour_cache
from tourbook.core.exceptions import TourFullError
from tourbook.core.security import get_current_user
from tourbook.models.user import User

router = APIRouter(tags=["Bookings"])


@router.post("/tours/{tour_id}/book", response_model=BookingResultResponse)
async def book_tour_endpoint(
    tour_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Book one spot on a tour.

    Errors carry a `code`: NOT_FOUND, NOT_BOOKABLE, FULL, ALREADY_BOOKED,
    or TRANSIENT_CONFLICT (503, safe to retry).
    """
    try:
        tour = await book_tour(db, tour_id, user.id)
    except TourFullError:
        # the attempt may have committed a PUBLISHED -> FULL correction
        await invalidate_tour_cache()
        raise
    # participants_count changed
    await invalidate_tour_cache()
    return BookingResultResponse(message="Booking successful", tour=TourResponse.model_validate(tour))


@router.delete("/tours/{tour_id}/book", response_model=BookingResultResponse)
async def unbook_tour_endpoint(
    tour_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Cancel the caller's booking and release the spot."""
    tour = await unbook_tour(db, tour_id, user.id)
    await invalidate_tour_cache()
    return BookingResultResponse(message="Unbook successful", tour=TourResponse.model_validate(tour))


@router.get("/tours/{tour_id}/my-booking", response_model=BookingStatusResponse)
async def my_booking_status(
    tour_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Whether the caller holds a confirmed booking on this tour."""
    booked, booking_id = await get_booking_status(db, tour_id, user.id)
    return BookingStatusResponse(booked=booked, booking_id=booking_id)


@router.get("/bookings/", response_model=list[BookingResponse])
async def list_user_bookings(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get all bookings (confirmed and cancelled) for the authenticated user."""
    return await get_user_bookings(db, user.id)
