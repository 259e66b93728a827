from tourbook.models.user import User
from tourbook.models.tour import Tour, TourStatus
from tourbook.models.booking import Booking, BookingStatus

__all__ = ["User", "Tour", "TourStatus", "Booking", "BookingStatus"]
