"""
Booking model: one user's claim on one spot of a tour.

Key design decisions:
- Partial unique index on (user_id, tour_id) WHERE status = 'CONFIRMED'.
  This is what makes double booking impossible under concurrent writers;
  the service-level existence check is only the fast path. Cancelled
  rows stay for history and do not block re-booking.
- Bookings are cancelled, never deleted by users. They are only removed
  together with their tour (ON DELETE CASCADE).
"""

from sqlalchemy import Column, Integer, String, ForeignKey, Index, CheckConstraint, text

from tourbook.db.base import Base, TimestampMixin


class BookingStatus:
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


CONFIRMED_ONLY = text("status = 'CONFIRMED'")


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    tour_id = Column(Integer, ForeignKey("tours.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=BookingStatus.CONFIRMED)

    __table_args__ = (
        # One confirmed booking per user per tour
        Index(
            "uq_bookings_user_tour_confirmed",
            "user_id",
            "tour_id",
            unique=True,
            postgresql_where=CONFIRMED_ONLY,
            sqlite_where=CONFIRMED_ONLY,
        ),
        CheckConstraint("status IN ('CONFIRMED', 'CANCELLED')", name="check_booking_status"),
    )

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, user={self.user_id}, tour={self.tour_id}, status={self.status})>"
