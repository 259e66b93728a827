"""
Admin endpoints. Only role assignment; the booking flow does not depend
on anything here beyond the TOUR_LEADER/ADMIN roles it grants.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tourbook.core.security import require_roles
from tourbook.db.session import get_db
from tourbook.models.user import User
from tourbook.schemas.user import UserResponse, UserRolesUpdate
from tourbook.services.auth_service import set_user_roles

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.put("/users/{user_id}/roles", response_model=UserResponse)
async def update_user_roles(
    user_id: int,
    payload: UserRolesUpdate,
    admin: User = Depends(require_roles("ADMIN")),
    db: AsyncSession = Depends(get_db),
):
    return await set_user_roles(db, user_id, payload.roles, admin)
