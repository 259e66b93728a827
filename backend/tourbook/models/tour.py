"""
Tour model: a schedulable, capacity-bounded offering.

Key design decisions:
- `participants_count` is a materialized count of CONFIRMED bookings. Only
  the booking service writes it, together with the booking row.
- `version` guards every write (optimistic concurrency); in pessimistic
  mode the row is additionally locked with SELECT ... FOR UPDATE.
- CHECK constraints repeat the capacity and schedule rules so a buggy
  writer fails at the database instead of corrupting the count.
- No relationship collections: bookings and owners are referenced by id.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Index, CheckConstraint, Numeric, Text,
)

from tourbook.db.base import Base, TimestampMixin


class TourStatus:
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    FULL = "FULL"
    CANCELLED = "CANCELLED"

    ALL = (DRAFT, PUBLISHED, FULL, CANCELLED)
    PUBLIC = (PUBLISHED, FULL)


MAX_PARTICIPANTS_LIMIT = 200


class Tour(Base, TimestampMixin):
    __tablename__ = "tours"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(120), nullable=False)
    short_description = Column(String(300), nullable=False, default="")
    full_description = Column(Text, nullable=False, default="")
    start_location = Column(String(120), nullable=True)
    end_location = Column(String(120), nullable=True)

    start_datetime = Column(DateTime(timezone=True), nullable=False)
    end_datetime = Column(DateTime(timezone=True), nullable=False)

    max_participants = Column(Integer, nullable=False)
    participants_count = Column(Integer, nullable=False, default=0)

    price_amount = Column(Numeric(10, 2), nullable=False, default=0)
    currency = Column(String(8), nullable=False, default="NOK")
    difficulty = Column(String(20), nullable=False, default="MODERATE")

    status = Column(String(20), nullable=False, default=TourStatus.DRAFT)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Optimistic locking version counter
    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("max_participants >= 1", name="check_tour_max_participants_positive"),
        CheckConstraint("participants_count >= 0", name="check_tour_participants_non_negative"),
        CheckConstraint(
            "participants_count <= max_participants", name="check_tour_participants_lte_max"
        ),
        CheckConstraint("end_datetime > start_datetime", name="check_tour_schedule"),
        CheckConstraint(
            "status IN ('DRAFT', 'PUBLISHED', 'FULL', 'CANCELLED')", name="check_tour_status"
        ),
        # Public listing: published/full tours ordered by start time
        Index("ix_tours_status_start", "status", "start_datetime"),
    )

    @property
    def available_spots(self) -> int:
        left = (self.max_participants or 0) - (self.participants_count or 0)
        return max(left, 0)

    @property
    def has_capacity_left(self) -> bool:
        # max_participants == 0 would mean "unlimited"; the CHECK above keeps
        # it unreachable, the guard stays for rows written by hand.
        max_participants = self.max_participants or 0
        return max_participants == 0 or (self.participants_count or 0) < max_participants

    def __repr__(self) -> str:
        return (
            f"<Tour(id={self.id}, title={self.title}, status={self.status}, "
            f"participants={self.participants_count}/{self.max_participants})>"
        )


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
