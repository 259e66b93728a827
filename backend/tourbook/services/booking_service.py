"""
Tour booking with capacity-safe spot reservation.

CONCURRENCY STRATEGY
====================

Problem:
  Two users try to book the last spot of a tour simultaneously.
  Both read participants_count = max - 1, both increment, both succeed.
  Result: overbooking. Or the same user double-clicks "Book" and ends up
  with two confirmed bookings.

Solution:
  book/unbook each run as ONE transaction owned by this module:

  1. Read the tour through TourCatalog.get_for_update (row lock in
     pessimistic mode, fresh read in optimistic mode).
  2. Check status / capacity / existing booking against that read.
  3. Insert or cancel the booking row.
  4. Write participants_count + status with a version-guarded UPDATE.
  5. Commit. Any failure rolls back all of it.

  Conflicts (stale version, serialization failure, deadlock, lock
  timeout, SQLite "database is locked") retry the whole transaction with
  jittered backoff, up to BOOKING_MAX_RETRIES attempts, then surface as
  TransientConflictError.

  Double booking: the existence check in step 2 is the fast path. The
  partial unique index on (user_id, tour_id) WHERE status = 'CONFIRMED' is
  the real guarantee; its violation is reported as AlreadyBookedError, the
  same kind the fast path raises.

  No in-process locks: every decision is made against the database, so
  the guarantees hold across any number of server processes.
"""

import asyncio
import random
import time
from typing import Awaitable, Callable, Optional

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from tourbook.core.config import get_settings
from tourbook.core.exceptions import (
    AlreadyBookedError,
    BookingError,
    DuplicateBookingError,
    NotBookedError,
    StaleTourError,
    TourFullError,
    TourNotBookableError,
    TransientConflictError,
)
from tourbook.core.logging import get_logger
from tourbook.core.metrics import (
    booking_latency,
    record_booking_attempt,
    record_retry,
    record_status_transition,
)
from tourbook.infrastructure import BookingLedger, TourCatalog
from tourbook.models.booking import Booking
from tourbook.models.tour import Tour, TourStatus

logger = get_logger(__name__)
settings = get_settings()

# SQLSTATEs that mean "the transaction lost a race, run it again"
RETRYABLE_SQLSTATES = {
    "40001": "serialization",
    "40P01": "deadlock",
    "55P03": "lock_timeout",
}

# A step returns the updated tour and the status it had before the step
BookingStep = Callable[[AsyncSession, int, int], Awaitable[tuple[Tour, str]]]


def retry_reason(exc: Exception) -> Optional[str]:
    """Classify a failure as retryable (returns a reason) or not (None)."""
    if isinstance(exc, StaleTourError):
        return "stale_version"
    if isinstance(exc, DBAPIError):
        orig = getattr(exc, "orig", None)
        code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
        if code in RETRYABLE_SQLSTATES:
            return RETRYABLE_SQLSTATES[code]
        if "database is locked" in str(exc).lower():
            return "locked"
    return None


def _backoff_delay(attempt: int) -> float:
    return settings.BOOKING_RETRY_BASE_DELAY * (2 ** (attempt - 1)) * random.uniform(0.5, 1.5)


async def _run_transaction(
    db: AsyncSession,
    operation: str,
    tour_id: int,
    user_id: int,
    step: BookingStep,
) -> Tour:
    max_attempts = max(1, settings.BOOKING_MAX_RETRIES)
    started = time.perf_counter()

    try:
        for attempt in range(1, max_attempts + 1):
            try:
                tour, previous_status = await step(db, tour_id, user_id)
                await db.commit()
            except BookingError as exc:
                await db.rollback()
                record_booking_attempt(operation, exc.code.lower())
                logger.info(
                    f"{operation}_rejected",
                    tour_id=tour_id,
                    user_id=user_id,
                    reason=exc.code,
                    attempt=attempt,
                )
                raise
            except DuplicateBookingError as exc:
                # Lost the race on the unique index: same answer as the pre-check
                await db.rollback()
                record_booking_attempt(operation, "already_booked")
                logger.info(
                    f"{operation}_rejected",
                    tour_id=tour_id,
                    user_id=user_id,
                    reason="ALREADY_BOOKED",
                    source="unique_index",
                    attempt=attempt,
                )
                raise AlreadyBookedError(tour_id=tour_id, user_id=user_id) from exc
            except (StaleTourError, DBAPIError) as exc:
                await db.rollback()
                reason = retry_reason(exc)
                if reason is None:
                    raise
                record_retry(reason)
                logger.info(
                    f"{operation}_retry",
                    tour_id=tour_id,
                    user_id=user_id,
                    attempt=attempt,
                    reason=reason,
                )
                if attempt < max_attempts:
                    await asyncio.sleep(_backoff_delay(attempt))
                continue
            except Exception:
                await db.rollback()
                raise

            record_booking_attempt(operation, "success")
            record_status_transition(previous_status, tour.status)
            return tour

        record_booking_attempt(operation, "transient_conflict")
        logger.warning(
            f"{operation}_retries_exhausted",
            tour_id=tour_id,
            user_id=user_id,
            attempts=max_attempts,
        )
        raise TransientConflictError(tour_id=tour_id, user_id=user_id)
    finally:
        booking_latency.labels(operation=operation).observe(time.perf_counter() - started)


async def _book_once(db: AsyncSession, tour_id: int, user_id: int) -> tuple[Tour, str]:
    catalog = TourCatalog(db)
    ledger = BookingLedger(db)

    tour = await catalog.get_for_update(tour_id)

    if tour.status == TourStatus.FULL:
        raise TourFullError(tour_id=tour_id)
    if tour.status != TourStatus.PUBLISHED:
        raise TourNotBookableError(
            f"Tour is not bookable (status {tour.status})", tour_id=tour_id, status=tour.status
        )

    if not tour.has_capacity_left:
        # Stale PUBLISHED status: correct it in this same transaction so
        # later callers fail fast on the status check without recounting.
        await catalog.save(tour, status=TourStatus.FULL)
        await db.commit()
        record_status_transition(TourStatus.PUBLISHED, TourStatus.FULL)
        logger.warning(
            "tour_marked_full",
            tour_id=tour_id,
            participants=tour.participants_count,
            max_participants=tour.max_participants,
        )
        raise TourFullError(tour_id=tour_id)

    if await ledger.find_confirmed(user_id, tour_id) is not None:
        raise AlreadyBookedError(tour_id=tour_id, user_id=user_id)

    booking = await ledger.insert_confirmed(user_id, tour_id)

    participants = tour.participants_count + 1
    status = tour.status
    if tour.max_participants > 0 and participants >= tour.max_participants:
        status = TourStatus.FULL

    await catalog.save(tour, participants_count=participants, status=status)

    logger.info(
        "booking_created",
        booking_id=booking.id,
        tour_id=tour_id,
        user_id=user_id,
        participants=participants,
        max_participants=tour.max_participants,
        status=status,
    )
    return tour, TourStatus.PUBLISHED


async def _unbook_once(db: AsyncSession, tour_id: int, user_id: int) -> tuple[Tour, str]:
    catalog = TourCatalog(db)
    ledger = BookingLedger(db)

    tour = await catalog.get_for_update(tour_id)

    booking = await ledger.find_confirmed(user_id, tour_id)
    if booking is None:
        raise NotBookedError(tour_id=tour_id, user_id=user_id)

    await ledger.cancel(booking)

    participants = max(0, tour.participants_count - 1)
    changes = {"participants_count": participants}
    if tour.status == TourStatus.FULL and (
        tour.max_participants == 0 or participants < tour.max_participants
    ):
        changes["status"] = TourStatus.PUBLISHED

    previous_status = tour.status
    await catalog.save(tour, **changes)

    logger.info(
        "booking_cancelled",
        booking_id=booking.id,
        tour_id=tour_id,
        user_id=user_id,
        participants=participants,
        status=tour.status,
    )
    return tour, previous_status


async def book_tour(db: AsyncSession, tour_id: int, user_id: int) -> Tour:
    """
    Reserve one spot on a tour for user_id.
    Returns the updated tour; raises a BookingError kind otherwise.
    """
    return await _run_transaction(db, "book", tour_id, user_id, _book_once)


async def unbook_tour(db: AsyncSession, tour_id: int, user_id: int) -> Tour:
    """Cancel user_id's confirmed booking and release the spot."""
    return await _run_transaction(db, "unbook", tour_id, user_id, _unbook_once)


async def get_booking_status(db: AsyncSession, tour_id: int, user_id: int) -> tuple[bool, Optional[int]]:
    booking = await BookingLedger(db).find_confirmed(user_id, tour_id)
    if booking is None:
        return False, None
    return True, booking.id


async def get_user_bookings(db: AsyncSession, user_id: int) -> list[Booking]:
    """Get all bookings for a user, newest first."""
    return await BookingLedger(db).list_for_user(user_id)
