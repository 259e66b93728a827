from tourbook.schemas.user import UserCreate, UserResponse, UserLogin, UserRolesUpdate, Token
from tourbook.schemas.tour import TourCreate, TourUpdate, TourResponse, TourListResponse
from tourbook.schemas.booking import (
    BookingResponse, BookingResultResponse, BookingStatusResponse, TourBookingsResponse,
)

__all__ = [
    "UserCreate", "UserResponse", "UserLogin", "UserRolesUpdate", "Token",
    "TourCreate", "TourUpdate", "TourResponse", "TourListResponse",
    "BookingResponse", "BookingResultResponse", "BookingStatusResponse", "TourBookingsResponse",
]
