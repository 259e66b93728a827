"""
Infrastructure layer - storage boundaries used by the booking service.
Keeps business logic clean from query and locking details.
"""

from .tour_catalog import TourCatalog
from .booking_ledger import BookingLedger

__all__ = ['TourCatalog', 'BookingLedger']
