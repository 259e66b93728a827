"""
Booking Ledger: confirmed/cancelled booking rows.

The partial unique index uq_bookings_user_tour_confirmed is authoritative
for "one confirmed booking per (user, tour)". A violation at insert time is
reported as DuplicateBookingError, never as a generic database error.
"""

from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tourbook.core.exceptions import DuplicateBookingError
from tourbook.models.booking import Booking, BookingStatus

UNIQUE_CONFIRMED_INDEX = "uq_bookings_user_tour_confirmed"
UNIQUE_VIOLATION_SQLSTATE = "23505"


def is_duplicate_booking(exc: IntegrityError) -> bool:
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    message = str(exc)
    if code == UNIQUE_VIOLATION_SQLSTATE and UNIQUE_CONFIRMED_INDEX in message:
        return True
    # SQLite names the columns instead of the index
    return "UNIQUE constraint failed: bookings.user_id, bookings.tour_id" in message


class BookingLedger:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_confirmed(self, user_id: int, tour_id: int) -> Optional[Booking]:
        result = await self.db.execute(
            select(Booking)
            .where(
                Booking.user_id == user_id,
                Booking.tour_id == tour_id,
                Booking.status == BookingStatus.CONFIRMED,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def insert_confirmed(self, user_id: int, tour_id: int) -> Booking:
        booking = Booking(user_id=user_id, tour_id=tour_id, status=BookingStatus.CONFIRMED)
        self.db.add(booking)
        try:
            await self.db.flush()
        except IntegrityError as exc:
            if is_duplicate_booking(exc):
                raise DuplicateBookingError(user_id, tour_id) from exc
            raise
        return booking

    async def cancel(self, booking: Booking) -> Booking:
        booking.status = BookingStatus.CANCELLED
        await self.db.flush()
        return booking

    async def list_for_tour(self, tour_id: int) -> list[Booking]:
        result = await self.db.execute(
            select(Booking)
            .where(Booking.tour_id == tour_id)
            .order_by(Booking.created_at.desc(), Booking.id.desc())
        )
        return list(result.scalars().all())

    async def list_for_user(self, user_id: int) -> list[Booking]:
        result = await self.db.execute(
            select(Booking)
            .where(Booking.user_id == user_id)
            .order_by(Booking.created_at.desc(), Booking.id.desc())
        )
        return list(result.scalars().all())

    async def count_confirmed(self, tour_id: int) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(Booking)
            .where(
                Booking.tour_id == tour_id,
                Booking.status == BookingStatus.CONFIRMED,
            )
        )
        return result.scalar_one()

    async def delete_for_tour(self, tour_id: int) -> None:
        await self.db.execute(delete(Booking).where(Booking.tour_id == tour_id))
