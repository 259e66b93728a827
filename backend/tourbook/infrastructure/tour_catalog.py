"""
Tour Catalog Store.

LOCKING
=======

Every write goes through `save()`, a single UPDATE guarded by the row's
`version`:

  UPDATE tours SET ..., version = version + 1
  WHERE id = :id AND version = :read_version

rowcount == 0 means someone else wrote the tour after we read it, and the
caller gets StaleTourError (the booking service retries the whole
transaction).

How the read is taken depends on TOUR_LOCK_MODE:

  - pessimistic: SELECT ... FOR UPDATE. Concurrent bookings of the same
    tour queue on the row lock; the version guard never fires. Bounded by
    the connection's lock_timeout.
  - optimistic: plain SELECT. No waiting on the read, conflicts surface as
    StaleTourError at write time.

SQLite ignores FOR UPDATE; there the BEGIN IMMEDIATE issued by the session
setup serializes writers instead.

The CHECK constraints on `tours` repeat the capacity and schedule rules;
`save()` validates them in Python first so a bad write never reaches the
database.
"""

from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tourbook.core.config import get_settings
from tourbook.core.exceptions import StaleTourError, TourIntegrityError, TourNotFoundError
from tourbook.db.base import utcnow
from tourbook.models.tour import Tour, as_utc

settings = get_settings()

LOCK_MODES = ("pessimistic", "optimistic")


def check_tour_invariants(start_datetime, end_datetime, max_participants: int, participants_count: int) -> None:
    if start_datetime is not None and end_datetime is not None:
        if as_utc(end_datetime) <= as_utc(start_datetime):
            raise TourIntegrityError("end_datetime must be after start_datetime")
    if participants_count < 0:
        raise TourIntegrityError("participants_count cannot be negative")
    if max_participants is not None and participants_count > max_participants:
        raise TourIntegrityError("participants_count cannot exceed max_participants")


class TourCatalog:
    def __init__(self, db: AsyncSession, lock_mode: Optional[str] = None):
        self.db = db
        self.lock_mode = lock_mode or settings.TOUR_LOCK_MODE
        if self.lock_mode not in LOCK_MODES:
            raise ValueError(f"Unknown TOUR_LOCK_MODE {self.lock_mode!r}, expected one of {LOCK_MODES}")

    async def get(self, tour_id: int) -> Optional[Tour]:
        result = await self.db.execute(select(Tour).where(Tour.id == tour_id))
        return result.scalar_one_or_none()

    async def get_for_update(self, tour_id: int) -> Tour:
        """
        Read the tour inside the caller's transaction, bypassing whatever
        the session has cached from an earlier attempt.
        """
        query = (
            select(Tour)
            .where(Tour.id == tour_id)
            .execution_options(populate_existing=True)
        )
        if self.lock_mode == "pessimistic":
            query = query.with_for_update()

        tour = (await self.db.execute(query)).scalar_one_or_none()
        if tour is None:
            raise TourNotFoundError(f"Tour {tour_id} not found", tour_id=tour_id)
        return tour

    async def save(self, tour: Tour, **changes) -> Tour:
        """
        Apply `changes` to the tour with a version-guarded UPDATE.
        The in-session instance is updated to match.
        """
        check_tour_invariants(
            changes.get("start_datetime", tour.start_datetime),
            changes.get("end_datetime", tour.end_datetime),
            changes.get("max_participants", tour.max_participants),
            changes.get("participants_count", tour.participants_count),
        )

        expected_version = tour.version
        values = dict(changes, version=expected_version + 1, updated_at=utcnow())

        result = await self.db.execute(
            update(Tour)
            .where(Tour.id == tour.id, Tour.version == expected_version)
            .values(**values)
            .execution_options(synchronize_session="evaluate")
        )
        if result.rowcount == 0:
            raise StaleTourError(tour.id, expected_version)
        return tour

    async def add(self, tour: Tour) -> Tour:
        check_tour_invariants(
            tour.start_datetime, tour.end_datetime, tour.max_participants, tour.participants_count or 0
        )
        self.db.add(tour)
        await self.db.flush()
        return tour

    async def delete(self, tour: Tour) -> None:
        await self.db.delete(tour)
        await self.db.flush()
