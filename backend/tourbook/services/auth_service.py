"""
Authentication service: registration, login and role assignment.
"""

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import HTTPException, status

from tourbook.models.user import User
from tourbook.schemas.user import UserCreate, UserLogin
from tourbook.core.security import hash_password, verify_password, create_access_token
from tourbook.core.logging import get_logger

logger = get_logger(__name__)


async def register_user(db: AsyncSession, user_data: UserCreate) -> User:
    """
    Register a new user with the USER role.
    Raises 409 if email or username already exists.
    """
    result = await db.execute(
        select(User).where(or_(User.email == user_data.email, User.username == user_data.username))
    )
    existing = result.scalars().first()
    if existing is not None:
        reason = "email_exists" if existing.email == user_data.email else "username_exists"
        logger.warning("registration_failed", reason=reason, email=user_data.email)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered" if reason == "email_exists" else "Username already taken",
        )

    user = User(
        email=user_data.email,
        username=user_data.username,
        hashed_password=hash_password(user_data.password),
        roles=["USER"],
    )
    db.add(user)
    await db.commit()

    logger.info("user_registered", user_id=user.id, email=user.email)
    return user


async def authenticate_user(db: AsyncSession, login_data: UserLogin) -> str:
    """
    Authenticate user and return JWT access token.
    Raises 401 if credentials are invalid.
    """
    result = await db.execute(select(User).where(User.email == login_data.email))
    user = result.scalar_one_or_none()

    if not user or not verify_password(login_data.password, user.hashed_password):
        logger.warning("login_failed", email=login_data.email)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is deactivated",
        )

    token = create_access_token(data={"sub": str(user.id)})
    logger.info("user_logged_in", user_id=user.id)
    return token


async def set_user_roles(db: AsyncSession, user_id: int, roles: list[str], admin: User) -> User:
    """Replace a user's roles. USER is always kept."""
    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    new_roles = ["USER"] + sorted({role for role in roles if role != "USER"})
    user.roles = new_roles
    await db.commit()

    logger.info("user_roles_updated", user_id=user.id, roles=new_roles, admin_id=admin.id)
    return user
