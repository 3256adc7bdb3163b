from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from typing import AsyncGenerator
import logging
import os
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# Database connection settings. DATABASE_URL wins over the POSTGRES_* parts.
POSTGRES_USER = os.getenv("POSTGRES_USER")
POSTGRES_PASSWORD = os.getenv("POSTGRES_PASSWORD")
POSTGRES_HOST = os.getenv("POSTGRES_HOST", "db")
POSTGRES_PORT = os.getenv("POSTGRES_PORT", "5432")
POSTGRES_DB = os.getenv("POSTGRES_DB")

SQLALCHEMY_DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+asyncpg://{POSTGRES_USER}:{POSTGRES_PASSWORD}@{POSTGRES_HOST}:{POSTGRES_PORT}/{POSTGRES_DB}",
)
SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() == "true"

engine = create_async_engine(SQLALCHEMY_DATABASE_URL, echo=SQL_ECHO)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

class Base(DeclarativeBase):
    pass

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session

# One account per role so the chat pairing rules can be tried right away
DEMO_USERS = [
    ("admin@pesantren.id", "Admin Pesantren", "admin"),
    ("ustad@pesantren.id", "Ustad Ahmad", "ustad"),
    ("orangtua@pesantren.id", "Bapak Budi", "orangtua"),
    ("santri@pesantren.id", "Santri Fulan", "santri"),
]
DEMO_PASSWORD = "password123"

async def create_tables():
    # Register models on Base.metadata
    from pesantren.db.models import user, chat_data  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

async def seed_demo_users(session: AsyncSession):
    from sqlalchemy import select
    from pesantren.db.models.user import User
    from pesantren.core.roles import Role
    from pesantren.core.security import get_password_hash

    hashed_pwd = get_password_hash(DEMO_PASSWORD)
    for email, name, role in DEMO_USERS:
        res = await session.execute(select(User).where(User.email == email))
        if res.scalar_one_or_none():
            continue
        logger.info(f"[DB] Creating demo user {email} ({role})")
        session.add(User(email=email, name=name, password=hashed_pwd, role=Role(role), is_active=True))
    await session.commit()

async def init_db():
    """
    Creates missing tables on startup. Demo users are seeded only when
    SEED_DEMO_USERS=true.
    """
    await create_tables()

    if os.getenv("SEED_DEMO_USERS", "false").lower() == "true":
        async with AsyncSessionLocal() as session:
            await seed_demo_users(session)
        logger.info("[DB] Demo users ready")
