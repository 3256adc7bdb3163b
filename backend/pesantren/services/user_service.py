# backend/pesantren/services/user_service.py
from datetime import timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from pesantren.db.models.user import User
from pesantren.core.errors import ValidationFailed
from pesantren.core.roles import Role
from pesantren.core.security import (
    get_password_hash,
    verify_password,
    create_access_token,
    ACCESS_TOKEN_EXPIRE_MINUTES,
)
from pesantren.schemas.user import Token, UserCreate, UserLogin

async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == email.lower()))
    return result.scalars().first()

async def register_user(db: AsyncSession, user_in: UserCreate, role: Role = Role.ORANGTUA) -> User:
    """
    Registration: rejects a taken email, then stores the user with a hashed password.
    Self-registration always creates an orangtua account.
    """
    if await get_user_by_email(db, user_in.email):
        raise ValidationFailed("Registrasi gagal, email sudah digunakan")

    new_user = User(
        email=user_in.email.lower(),
        name=user_in.name.strip(),
        password=get_password_hash(user_in.password),
        role=role,
        is_active=True,
    )
    db.add(new_user)
    await db.commit()
    await db.refresh(new_user)
    return new_user

async def authenticate_user(db: AsyncSession, user_in: UserLogin) -> Optional[Token]:
    """
    Login: checks the credentials and issues a JWT. None when they do not match.
    """
    user = await get_user_by_email(db, user_in.email)
    if not user or not user.is_active or not verify_password(user_in.password, user.password):
        return None  # the router turns this into a 401

    access_token = create_access_token(
        data={"sub": str(user.id)},
        expires_delta=timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
    )
    return Token(
        access_token=access_token,
        token_type="bearer",
        user_id=user.id,
        name=user.name,
        role=user.role,
    )
