"""
Tour endpoints: public listing (Redis-cached) and management for tour
leaders. Booking actions live in routes/bookings.py.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from tourbook.db.session import get_db
from tourbook.models.user import User
from tourbook.schemas.booking import BookingResponse, TourBookingsResponse
from tourbook.schemas.tour import TourCreate, TourUpdate, TourResponse, TourListResponse
from tourbook.services import tour_service
from tourbook.services.cache_service import get_cached_tours, set_cached_tours, invalidate_tour_cache
from tourbook.core.security import require_roles
from tourbook.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/tours", tags=["Tours"])

tour_manager = require_roles("TOUR_LEADER", "ADMIN")


@router.post("/", response_model=TourResponse, status_code=status.HTTP_201_CREATED)
async def create_tour_endpoint(
    tour_data: TourCreate,
    user: User = Depends(tour_manager),
    db: AsyncSession = Depends(get_db),
):
    """Create a DRAFT tour. Requires TOUR_LEADER or ADMIN."""
    return await tour_service.create_tour(db, tour_data, user)


@router.get("/", response_model=TourListResponse)
async def list_tours_endpoint(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    start_from: Optional[datetime] = Query(None, alias="from"),
    start_to: Optional[datetime] = Query(None, alias="to"),
    db: AsyncSession = Depends(get_db),
):
    """
    List published and full tours by start time.
    Results are cached in Redis; any tour write invalidates the cache.
    """
    cached = await get_cached_tours(page, page_size, start_from, start_to)
    if cached:
        logger.info("tours_list_cache_hit", page=page)
        cached["cached"] = True
        return TourListResponse(**cached)

    tours, total = await tour_service.list_public_tours(db, page, page_size, start_from, start_to)

    response_data = {
        "tours": [TourResponse.model_validate(t).model_dump() for t in tours],
        "total": total,
        "page": page,
        "page_size": page_size,
        "cached": False,
    }
    await set_cached_tours(page, page_size, start_from, start_to, response_data)

    return TourListResponse(**response_data)


@router.get("/mine", response_model=list[TourResponse])
async def list_my_tours_endpoint(
    user: User = Depends(tour_manager),
    db: AsyncSession = Depends(get_db),
):
    """Tours created by the caller (all tours for admins), any status."""
    return await tour_service.list_my_tours(db, user)


@router.get("/{tour_id}", response_model=TourResponse)
async def get_tour_endpoint(tour_id: int, db: AsyncSession = Depends(get_db)):
    """Get a published tour. Not cached (needs real-time participant counts)."""
    return await tour_service.get_public_tour(db, tour_id)


@router.patch("/{tour_id}", response_model=TourResponse)
async def update_tour_endpoint(
    tour_id: int,
    patch: TourUpdate,
    user: User = Depends(tour_manager),
    db: AsyncSession = Depends(get_db),
):
    tour = await tour_service.update_tour(db, tour_id, patch, user)
    await invalidate_tour_cache()
    return tour


@router.post("/{tour_id}/publish", response_model=TourResponse)
async def publish_tour_endpoint(
    tour_id: int,
    user: User = Depends(tour_manager),
    db: AsyncSession = Depends(get_db),
):
    tour = await tour_service.publish_tour(db, tour_id, user)
    await invalidate_tour_cache()
    return tour


@router.post("/{tour_id}/unpublish", response_model=TourResponse)
async def unpublish_tour_endpoint(
    tour_id: int,
    user: User = Depends(tour_manager),
    db: AsyncSession = Depends(get_db),
):
    tour = await tour_service.unpublish_tour(db, tour_id, user)
    await invalidate_tour_cache()
    return tour


@router.post("/{tour_id}/cancel", response_model=TourResponse)
async def cancel_tour_endpoint(
    tour_id: int,
    user: User = Depends(tour_manager),
    db: AsyncSession = Depends(get_db),
):
    tour = await tour_service.cancel_tour(db, tour_id, user)
    await invalidate_tour_cache()
    return tour


@router.delete("/{tour_id}")
async def delete_tour_endpoint(
    tour_id: int,
    user: User = Depends(tour_manager),
    db: AsyncSession = Depends(get_db),
):
    """Delete a tour and all of its bookings."""
    await tour_service.delete_tour(db, tour_id, user)
    await invalidate_tour_cache()
    return {"ok": True}


@router.get("/{tour_id}/bookings", response_model=TourBookingsResponse)
async def list_tour_bookings_endpoint(
    tour_id: int,
    user: User = Depends(tour_manager),
    db: AsyncSession = Depends(get_db),
):
    """Who booked this tour. Owner or admin only."""
    tour, bookings, confirmed = await tour_service.list_tour_bookings(db, tour_id, user)
    return TourBookingsResponse(
        tour_id=tour.id,
        title=tour.title,
        participants_count=tour.participants_count,
        confirmed_count=confirmed,
        bookings=[BookingResponse.model_validate(b) for b in bookings],
    )
