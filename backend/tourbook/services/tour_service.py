"""
Tour service: catalog management for tour leaders and the public listing.

Status-changing writes lock/version-check the tour row through
TourCatalog, same as bookings, so a publish or capacity change never
interleaves with a booking on the same tour.
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tourbook.core.exceptions import StaleTourError, TransientConflictError
from tourbook.core.logging import get_logger
from tourbook.core.metrics import record_status_transition
from tourbook.infrastructure import BookingLedger, TourCatalog
from tourbook.models.booking import Booking
from tourbook.models.tour import Tour, TourStatus, as_utc
from tourbook.models.user import User
from tourbook.schemas.tour import TourCreate, TourUpdate

logger = get_logger(__name__)

NULLABLE_FIELDS = {"start_location", "end_location"}


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def _ensure_owner(tour: Tour, user: User) -> None:
    if not user.is_admin and tour.created_by != user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden: not owner",
        )


def _publish_problem(tour: Tour) -> Optional[str]:
    if not tour.title or len(tour.title.strip()) < 3:
        return "title is required"
    if tour.start_datetime is None or tour.end_datetime is None:
        return "start_datetime and end_datetime are required"
    if as_utc(tour.end_datetime) <= as_utc(tour.start_datetime):
        return "end_datetime must be after start_datetime"
    if not tour.max_participants or tour.max_participants < 1:
        return "max_participants must be > 0"
    return None


async def _save(catalog: TourCatalog, tour: Tour, **changes) -> Tour:
    previous_status = tour.status
    try:
        await catalog.save(tour, **changes)
    except StaleTourError as exc:
        raise TransientConflictError(
            "Tour was modified concurrently. Please try again.", tour_id=tour.id
        ) from exc
    record_status_transition(previous_status, tour.status)
    return tour


async def create_tour(db: AsyncSession, tour_data: TourCreate, owner: User) -> Tour:
    """Create a tour in DRAFT with no participants."""
    start = as_utc(tour_data.start_datetime)
    end = as_utc(tour_data.end_datetime)

    if start <= datetime.now(timezone.utc):
        raise _bad_request("start_datetime must be in the future")
    if end <= start:
        raise _bad_request("end_datetime must be after start_datetime")

    tour = Tour(
        title=tour_data.title.strip(),
        short_description=tour_data.short_description.strip(),
        full_description=tour_data.full_description.strip(),
        start_location=tour_data.start_location,
        end_location=tour_data.end_location,
        start_datetime=start,
        end_datetime=end,
        max_participants=tour_data.max_participants,
        participants_count=0,
        price_amount=tour_data.price_amount,
        currency=tour_data.currency.upper(),
        difficulty=tour_data.difficulty,
        status=TourStatus.DRAFT,
        created_by=owner.id,
    )
    await TourCatalog(db).add(tour)
    await db.commit()

    logger.info("tour_created", tour_id=tour.id, title=tour.title, max_participants=tour.max_participants)
    return tour


async def update_tour(db: AsyncSession, tour_id: int, patch: TourUpdate, user: User) -> Tour:
    """
    Apply a partial update. Capacity may not drop below the current
    participant count; PUBLISHED/FULL follows the new capacity.
    """
    catalog = TourCatalog(db)
    tour = await catalog.get_for_update(tour_id)
    _ensure_owner(tour, user)

    changes = {
        field: value
        for field, value in patch.model_dump(exclude_unset=True).items()
        if value is not None or field in NULLABLE_FIELDS
    }
    if "title" in changes:
        changes["title"] = changes["title"].strip()
    if "currency" in changes:
        changes["currency"] = changes["currency"].upper()
    for field in ("start_datetime", "end_datetime"):
        if field in changes:
            changes[field] = as_utc(changes[field])

    start = as_utc(changes.get("start_datetime", tour.start_datetime))
    end = as_utc(changes.get("end_datetime", tour.end_datetime))
    if end <= start:
        raise _bad_request("end_datetime must be after start_datetime")

    if "max_participants" in changes:
        new_max = changes["max_participants"]
        if new_max < tour.participants_count:
            raise _bad_request(
                f"max_participants cannot be lower than current participants ({tour.participants_count})"
            )
        if tour.status == TourStatus.PUBLISHED and tour.participants_count >= new_max:
            changes["status"] = TourStatus.FULL
        elif tour.status == TourStatus.FULL and tour.participants_count < new_max:
            changes["status"] = TourStatus.PUBLISHED

    if changes:
        await _save(catalog, tour, **changes)
    await db.commit()

    logger.info("tour_updated", tour_id=tour.id, fields=sorted(changes))
    return tour


async def publish_tour(db: AsyncSession, tour_id: int, user: User) -> Tour:
    catalog = TourCatalog(db)
    tour = await catalog.get_for_update(tour_id)
    _ensure_owner(tour, user)

    if tour.status == TourStatus.CANCELLED:
        raise _bad_request("Cannot publish: tour is cancelled")

    problem = _publish_problem(tour)
    if problem:
        raise _bad_request(f"Cannot publish: {problem}")

    if tour.max_participants > 0 and tour.participants_count >= tour.max_participants:
        new_status = TourStatus.FULL
    else:
        new_status = TourStatus.PUBLISHED

    await _save(catalog, tour, status=new_status)
    await db.commit()

    logger.info("tour_published", tour_id=tour.id, status=new_status)
    return tour


async def unpublish_tour(db: AsyncSession, tour_id: int, user: User) -> Tour:
    catalog = TourCatalog(db)
    tour = await catalog.get_for_update(tour_id)
    _ensure_owner(tour, user)

    if tour.status == TourStatus.CANCELLED:
        raise _bad_request("Cannot unpublish: tour is cancelled")

    await _save(catalog, tour, status=TourStatus.DRAFT)
    await db.commit()

    logger.info("tour_unpublished", tour_id=tour.id)
    return tour


async def cancel_tour(db: AsyncSession, tour_id: int, user: User) -> Tour:
    """Withdraw a tour permanently. Existing bookings are kept as history."""
    catalog = TourCatalog(db)
    tour = await catalog.get_for_update(tour_id)
    _ensure_owner(tour, user)

    if tour.status != TourStatus.CANCELLED:
        await _save(catalog, tour, status=TourStatus.CANCELLED)
    await db.commit()

    logger.info("tour_cancelled", tour_id=tour.id, participants=tour.participants_count)
    return tour


async def delete_tour(db: AsyncSession, tour_id: int, user: User) -> None:
    """Delete a tour together with all of its bookings."""
    catalog = TourCatalog(db)
    tour = await catalog.get_for_update(tour_id)
    _ensure_owner(tour, user)

    await BookingLedger(db).delete_for_tour(tour.id)
    await catalog.delete(tour)
    await db.commit()

    logger.info("tour_deleted", tour_id=tour_id, deleted_by=user.id)


async def get_public_tour(db: AsyncSession, tour_id: int) -> Tour:
    """Get a published (or full) tour by ID."""
    tour = await TourCatalog(db).get(tour_id)
    if tour is None or tour.status not in TourStatus.PUBLIC:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Tour {tour_id} not found",
        )
    return tour


async def list_public_tours(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    start_from: Optional[datetime] = None,
    start_to: Optional[datetime] = None,
) -> tuple[list[Tour], int]:
    """
    List PUBLISHED and FULL tours by start time, with pagination.
    Uses the ix_tours_status_start index.
    """
    query = select(Tour).where(Tour.status.in_(TourStatus.PUBLIC))

    if start_from is not None:
        query = query.where(Tour.start_datetime >= as_utc(start_from))
    if start_to is not None:
        query = query.where(Tour.start_datetime <= as_utc(start_to))

    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar()

    tours_query = (
        query
        .order_by(Tour.start_datetime.asc(), Tour.id.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(tours_query)
    return list(result.scalars().all()), total


async def list_my_tours(db: AsyncSession, user: User, limit: int = 200) -> list[Tour]:
    """Tours created by the caller; admins see every tour."""
    query = select(Tour)
    if not user.is_admin:
        query = query.where(Tour.created_by == user.id)
    result = await db.execute(query.order_by(Tour.created_at.desc(), Tour.id.desc()).limit(limit))
    return list(result.scalars().all())


async def list_tour_bookings(db: AsyncSession, tour_id: int, user: User) -> tuple[Tour, list[Booking], int]:
    """
    Owner (or admin) view of who booked a tour, with the number of
    CONFIRMED bookings counted from the ledger.
    """
    tour = await TourCatalog(db).get(tour_id)
    if tour is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tour not found")
    _ensure_owner(tour, user)
    ledger = BookingLedger(db)
    bookings = await ledger.list_for_tour(tour_id)
    confirmed = await ledger.count_confirmed(tour_id)
    if confirmed != tour.participants_count:
        logger.warning(
            "tour_participants_mismatch",
            tour_id=tour_id,
            participants=tour.participants_count,
            confirmed=confirmed,
        )
    return tour, bookings, confirmed
