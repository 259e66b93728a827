"""
Booking service tests: capacity consistency under concurrent and
sequential book/unbook calls.

Each simulated request gets its own session, like separate API workers.
"""

import asyncio
import random

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from tourbook.core.exceptions import (
    AlreadyBookedError,
    DuplicateBookingError,
    NotBookedError,
    StaleTourError,
    TourFullError,
    TourIntegrityError,
    TourNotBookableError,
    TransientConflictError,
)
from tourbook.infrastructure import BookingLedger, TourCatalog
from tourbook.infrastructure import tour_catalog
from tourbook.models.tour import Tour, TourStatus
from tourbook.services import booking_service
from conftest import confirmed_count, load_tour, make_tour, make_user


async def book_as(session_factory, tour_id: int, user_id: int) -> Tour:
    async with session_factory() as session:
        return await booking_service.book_tour(session, tour_id, user_id)


async def unbook_as(session_factory, tour_id: int, user_id: int) -> Tour:
    async with session_factory() as session:
        return await booking_service.unbook_tour(session, tour_id, user_id)


async def make_users(session_factory, count: int, prefix: str = "hiker"):
    return [await make_user(session_factory, f"{prefix}{i}") for i in range(count)]


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    monkeypatch.setattr(booking_service.settings, "BOOKING_RETRY_BASE_DELAY", 0)


async def assert_consistent(session_factory, tour_id: int) -> Tour:
    tour = await load_tour(session_factory, tour_id)
    assert tour.participants_count == await confirmed_count(session_factory, tour_id)
    assert 0 <= tour.participants_count <= tour.max_participants
    if tour.participants_count == tour.max_participants:
        assert tour.status == TourStatus.FULL
    return tour


@pytest.mark.asyncio
async def test_concurrent_bookings_never_exceed_capacity(session_factory, tour_leader):
    """Seven users race for three spots: exactly three win."""
    tour = await make_tour(session_factory, tour_leader, max_participants=3)
    users = await make_users(session_factory, 7)

    results = await asyncio.gather(
        *(book_as(session_factory, tour.id, u.id) for u in users),
        return_exceptions=True,
    )

    successes = [r for r in results if isinstance(r, Tour)]
    rejected = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 3
    assert len(rejected) == 4
    assert all(isinstance(r, TourFullError) for r in rejected)

    final = await assert_consistent(session_factory, tour.id)
    assert final.participants_count == 3
    assert final.status == TourStatus.FULL


@pytest.mark.asyncio
async def test_concurrent_bookings_optimistic_mode(session_factory, tour_leader, monkeypatch):
    monkeypatch.setattr(tour_catalog.settings, "TOUR_LOCK_MODE", "optimistic")
    tour = await make_tour(session_factory, tour_leader, max_participants=2)
    users = await make_users(session_factory, 5)

    results = await asyncio.gather(
        *(book_as(session_factory, tour.id, u.id) for u in users),
        return_exceptions=True,
    )

    assert sum(isinstance(r, Tour) for r in results) == 2
    for r in results:
        if isinstance(r, Exception):
            assert isinstance(r, (TourFullError, TransientConflictError))

    final = await assert_consistent(session_factory, tour.id)
    assert final.participants_count == 2


@pytest.mark.asyncio
async def test_same_user_double_submit(session_factory, tour_leader, test_user):
    """Five simultaneous requests from one user yield one booking."""
    tour = await make_tour(session_factory, tour_leader, max_participants=10)

    results = await asyncio.gather(
        *(book_as(session_factory, tour.id, test_user.id) for _ in range(5)),
        return_exceptions=True,
    )

    assert sum(isinstance(r, Tour) for r in results) == 1
    assert sum(isinstance(r, AlreadyBookedError) for r in results) == 4

    final = await assert_consistent(session_factory, tour.id)
    assert final.participants_count == 1


@pytest.mark.asyncio
async def test_random_operation_sequence_keeps_count(session_factory, tour_leader):
    """Count matches confirmed bookings after every step of a random walk."""
    tour = await make_tour(session_factory, tour_leader, max_participants=3)
    users = await make_users(session_factory, 5)
    rng = random.Random(7)

    for _ in range(40):
        user = rng.choice(users)
        operation = rng.choice((book_as, unbook_as))
        try:
            await operation(session_factory, tour.id, user.id)
        except (TourFullError, AlreadyBookedError, NotBookedError):
            pass
        await assert_consistent(session_factory, tour.id)


@pytest.mark.asyncio
async def test_concurrent_mixed_book_and_unbook(session_factory, tour_leader):
    tour = await make_tour(session_factory, tour_leader, max_participants=4)
    holders = await make_users(session_factory, 3, prefix="holder")
    newcomers = await make_users(session_factory, 4, prefix="newcomer")
    for user in holders:
        await book_as(session_factory, tour.id, user.id)

    await asyncio.gather(
        *(unbook_as(session_factory, tour.id, u.id) for u in holders),
        *(book_as(session_factory, tour.id, u.id) for u in newcomers),
        return_exceptions=True,
    )

    await assert_consistent(session_factory, tour.id)


@pytest.mark.asyncio
async def test_book_then_unbook_restores_state(session_factory, tour_leader, test_user):
    tour = await make_tour(session_factory, tour_leader, max_participants=1)

    booked = await book_as(session_factory, tour.id, test_user.id)
    assert booked.participants_count == 1
    assert booked.status == TourStatus.FULL

    released = await unbook_as(session_factory, tour.id, test_user.id)
    assert released.participants_count == 0
    assert released.status == TourStatus.PUBLISHED

    async with session_factory() as session:
        bookings = await BookingLedger(session).list_for_user(test_user.id)
    assert [b.status for b in bookings] == ["CANCELLED"]


@pytest.mark.asyncio
async def test_rejected_booking_changes_nothing(session_factory, tour_leader, test_user):
    tour = await make_tour(
        session_factory, tour_leader, max_participants=2, participants_count=2, status=TourStatus.FULL
    )
    before = await load_tour(session_factory, tour.id)

    with pytest.raises(TourFullError):
        await book_as(session_factory, tour.id, test_user.id)

    after = await load_tour(session_factory, tour.id)
    assert after.participants_count == before.participants_count
    assert after.status == before.status
    assert after.version == before.version


@pytest.mark.asyncio
async def test_full_error_is_not_bookable(session_factory, tour_leader, test_user):
    tour = await make_tour(
        session_factory, tour_leader, max_participants=1, participants_count=1, status=TourStatus.FULL
    )
    with pytest.raises(TourNotBookableError) as exc_info:
        await book_as(session_factory, tour.id, test_user.id)
    assert exc_info.value.code == "FULL"


@pytest.mark.asyncio
async def test_stale_published_status_is_corrected(session_factory, tour_leader, test_user):
    """A PUBLISHED tour with no spots left is flipped to FULL on the way out."""
    tour = await make_tour(
        session_factory, tour_leader, max_participants=2, participants_count=2, status=TourStatus.PUBLISHED
    )

    with pytest.raises(TourFullError):
        await book_as(session_factory, tour.id, test_user.id)

    after = await load_tour(session_factory, tour.id)
    assert after.status == TourStatus.FULL
    assert after.participants_count == 2


@pytest.mark.asyncio
async def test_unique_index_catches_missed_duplicate(session_factory, tour_leader, test_user, monkeypatch):
    """If the existence check misses, the unique index still refuses the second booking."""
    tour = await make_tour(session_factory, tour_leader, max_participants=5)
    await book_as(session_factory, tour.id, test_user.id)

    async def never_found(self, user_id, tour_id):
        return None

    monkeypatch.setattr(BookingLedger, "find_confirmed", never_found)

    with pytest.raises(AlreadyBookedError):
        await book_as(session_factory, tour.id, test_user.id)

    final = await load_tour(session_factory, tour.id)
    assert final.participants_count == 1
    assert await confirmed_count(session_factory, tour.id) == 1


@pytest.mark.asyncio
async def test_stale_version_is_retried(session_factory, tour_leader, test_user, monkeypatch):
    tour = await make_tour(session_factory, tour_leader, max_participants=5)
    original_save = TourCatalog.save
    calls = {"count": 0}

    async def flaky_save(self, tour, **changes):
        calls["count"] += 1
        if calls["count"] == 1:
            raise StaleTourError(tour.id, tour.version)
        return await original_save(self, tour, **changes)

    monkeypatch.setattr(TourCatalog, "save", flaky_save)

    result = await book_as(session_factory, tour.id, test_user.id)
    assert result.participants_count == 1
    assert calls["count"] == 2
    await assert_consistent(session_factory, tour.id)


@pytest.mark.asyncio
async def test_retries_exhausted_leave_no_trace(session_factory, tour_leader, test_user, monkeypatch):
    tour = await make_tour(session_factory, tour_leader, max_participants=5)
    monkeypatch.setattr(booking_service.settings, "BOOKING_MAX_RETRIES", 2)
    calls = {"count": 0}

    async def always_stale(self, tour, **changes):
        calls["count"] += 1
        raise StaleTourError(tour.id, tour.version)

    monkeypatch.setattr(TourCatalog, "save", always_stale)

    with pytest.raises(TransientConflictError):
        await book_as(session_factory, tour.id, test_user.id)

    assert calls["count"] == 2
    assert await confirmed_count(session_factory, tour.id) == 0
    final = await load_tour(session_factory, tour.id)
    assert final.participants_count == 0


@pytest.mark.asyncio
async def test_unbook_without_booking(session_factory, tour_leader, test_user):
    tour = await make_tour(session_factory, tour_leader)
    with pytest.raises(NotBookedError):
        await unbook_as(session_factory, tour.id, test_user.id)


@pytest.mark.asyncio
async def test_booking_status(session_factory, tour_leader, test_user):
    tour = await make_tour(session_factory, tour_leader)

    async with session_factory() as session:
        assert await booking_service.get_booking_status(session, tour.id, test_user.id) == (False, None)

    booked = await book_as(session_factory, tour.id, test_user.id)
    assert booked.participants_count == 1

    async with session_factory() as session:
        is_booked, booking_id = await booking_service.get_booking_status(session, tour.id, test_user.id)
    assert is_booked is True
    assert booking_id is not None


@pytest.mark.asyncio
async def test_ledger_reports_duplicate_insert(session_factory, tour_leader, test_user):
    tour = await make_tour(session_factory, tour_leader)

    async with session_factory() as session:
        ledger = BookingLedger(session)
        await ledger.insert_confirmed(test_user.id, tour.id)
        with pytest.raises(DuplicateBookingError):
            await ledger.insert_confirmed(test_user.id, tour.id)
        await session.rollback()


@pytest.mark.asyncio
async def test_catalog_save_detects_concurrent_write(session_factory, tour_leader):
    tour = await make_tour(session_factory, tour_leader)

    async with session_factory() as first:
        first_catalog = TourCatalog(first, lock_mode="optimistic")
        stale = await first_catalog.get_for_update(tour.id)
        await first.commit()

        async with session_factory() as second:
            second_catalog = TourCatalog(second, lock_mode="optimistic")
            fresh = await second_catalog.get_for_update(tour.id)
            await second_catalog.save(fresh, title="Renamed")
            await second.commit()

        with pytest.raises(StaleTourError):
            await first_catalog.save(stale, title="Lost update")
        await first.rollback()

    final = await load_tour(session_factory, tour.id)
    assert final.title == "Renamed"


@pytest.mark.asyncio
async def test_catalog_save_rejects_overbooking(session_factory, tour_leader):
    tour = await make_tour(session_factory, tour_leader, max_participants=2)

    async with session_factory() as session:
        catalog = TourCatalog(session)
        loaded = await catalog.get_for_update(tour.id)
        with pytest.raises(TourIntegrityError):
            await catalog.save(loaded, participants_count=3)
        await session.rollback()


def test_unknown_lock_mode_rejected():
    with pytest.raises(ValueError):
        TourCatalog(db=None, lock_mode="hopeful")


class FakeDriverError(Exception):
    def __init__(self, pgcode):
        super().__init__(f"driver error {pgcode}")
        self.pgcode = pgcode


@pytest.mark.parametrize("pgcode,reason", [
    ("40001", "serialization"),
    ("40P01", "deadlock"),
    ("55P03", "lock_timeout"),
    ("23503", None),
])
def test_retry_reason_for_sqlstates(pgcode, reason):
    exc = OperationalError("UPDATE tours ...", {}, FakeDriverError(pgcode))
    assert booking_service.retry_reason(exc) == reason


def test_retry_reason_for_sqlite_lock_and_stale_version():
    locked = OperationalError("BEGIN IMMEDIATE", {}, Exception("database is locked"))
    assert booking_service.retry_reason(locked) == "locked"
    assert booking_service.retry_reason(StaleTourError(1, 3)) == "stale_version"
    assert booking_service.retry_reason(ValueError("nope")) is None


def test_capacity_properties():
    assert Tour(max_participants=3, participants_count=1).available_spots == 2
    assert Tour(max_participants=3, participants_count=3).has_capacity_left is False
    # zero capacity reads as unlimited
    assert Tour(max_participants=0, participants_count=5).has_capacity_left is True


@pytest.mark.asyncio
async def test_status_transition_recorded_only_after_commit(session_factory, tour_leader, test_user, monkeypatch):
    """A failed commit that is retried counts the PUBLISHED -> FULL change once."""
    tour = await make_tour(session_factory, tour_leader, max_participants=1)
    transitions = []
    monkeypatch.setattr(
        booking_service, "record_status_transition", lambda old, new: transitions.append((old, new))
    )

    original_commit = AsyncSession.commit
    calls = {"count": 0}

    async def commit_locked_once(self):
        calls["count"] += 1
        if calls["count"] == 1:
            raise OperationalError("COMMIT", {}, Exception("database is locked"))
        return await original_commit(self)

    monkeypatch.setattr(AsyncSession, "commit", commit_locked_once)

    result = await book_as(session_factory, tour.id, test_user.id)
    assert result.status == TourStatus.FULL
    assert calls["count"] == 2
    assert transitions == [(TourStatus.PUBLISHED, TourStatus.FULL)]


@pytest.mark.asyncio
async def test_unbook_records_reopening(session_factory, tour_leader, test_user, monkeypatch):
    tour = await make_tour(session_factory, tour_leader, max_participants=1)
    await book_as(session_factory, tour.id, test_user.id)

    transitions = []
    monkeypatch.setattr(
        booking_service, "record_status_transition", lambda old, new: transitions.append((old, new))
    )

    await unbook_as(session_factory, tour.id, test_user.id)
    assert transitions == [(TourStatus.FULL, TourStatus.PUBLISHED)]
