from passlib.context import CryptContext
import os
from datetime import datetime, timedelta, timezone
from jose import jwt, JWTError
from typing import Optional
from fastapi import Depends, Query
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from pesantren.core.errors import Unauthorized
from pesantren.db.database import get_db
from pesantren.db.models.user import User

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# JWT settings
SECRET_KEY = os.getenv("SECRET_KEY", "your-secret-key-very-secret")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24)))  # 1 day

def get_password_hash(password: str) -> str:
    """Hashes a password (bcrypt only looks at the first 72 bytes)."""
    return pwd_context.hash(password[:72])

def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password[:72], hashed_password)

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    """Creates a signed JWT access token."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=15))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

# auto_error=False so a missing token produces our own 401 message
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

def verify_token(token: str) -> int:
    """
    Decodes the JWT and returns the user id stored in "sub".
    """
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id = payload.get("sub")
        if user_id is None:
            raise Unauthorized()
        return int(user_id)
    except (JWTError, ValueError):
        raise Unauthorized()

async def load_active_user(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if not user or not user.is_active:
        raise Unauthorized()
    return user

async def get_current_user_id(token: Optional[str] = Depends(oauth2_scheme)) -> int:
    """
    FastAPI Dependency: extracts the bearer token and returns the user id.
    """
    if not token:
        raise Unauthorized()
    return verify_token(token)

async def get_current_user(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> User:
    return await load_active_user(db, user_id)

async def get_stream_user(
    header_token: Optional[str] = Depends(oauth2_scheme),
    token: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Same as get_current_user, but EventSource clients cannot set headers,
    so the token may also come from the "token" query parameter.
    """
    raw = header_token or token
    if not raw:
        raise Unauthorized()
    return await load_active_user(db, verify_token(raw))
