# backend/pesantren/api/v1/auth.py
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from pesantren.db.database import get_db
from pesantren.db.models.user import User
from pesantren.services import user_service
from pesantren.core.errors import Unauthorized
from pesantren.core.security import get_current_user
from pesantren.schemas.user import Token, UserCreate, UserLogin, UserRead

router = APIRouter()

@router.post("/register", response_model=UserRead, status_code=status.HTTP_201_CREATED)
async def register(user_in: UserCreate, db: AsyncSession = Depends(get_db)):
    """Registers a parent (orangtua) account."""
    return await user_service.register_user(db, user_in)

@router.post("/login", response_model=Token)
async def login(user_in: UserLogin, db: AsyncSession = Depends(get_db)):
    auth_result = await user_service.authenticate_user(db, user_in)

    if not auth_result:
        raise Unauthorized("Email atau password tidak valid")

    return auth_result

@router.get("/me", response_model=UserRead)
async def read_me(current_user: User = Depends(get_current_user)):
    return current_user
