import os

# Must be set before the application modules create their engine/notifier
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["CHAT_NOTIFIER_BACKEND"] = "memory"

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from pesantren.core.roles import Role
from pesantren.core.security import create_access_token
from pesantren.db.database import Base, get_db
from pesantren.db.models.chat_data import Chat, make_pair_key
from pesantren.db.models.user import User, get_utc_now
from pesantren.main import app
from pesantren.services.chat_notifier import ChatNotifier, get_notifier

# Not a real bcrypt hash; these users never log in with a password
DUMMY_PASSWORD_HASH = "not-a-real-hash"


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def notifier():
    return ChatNotifier(backend="memory")


@pytest.fixture
async def users(session_factory):
    """
    U1 ustad and U2 orangtua share chat C1; U3 is another parent,
    plus one admin and one santri.
    """
    people = {
        "ustad": User(email="ustad@pondok.id", name="Ustad Ahmad", role=Role.USTAD),
        "orangtua": User(email="budi@pondok.id", name="Bapak Budi", role=Role.ORANGTUA),
        "orangtua2": User(email="siti@pondok.id", name="Ibu Siti", role=Role.ORANGTUA),
        "admin": User(email="admin@pondok.id", name="Admin Pondok", role=Role.ADMIN),
        "santri": User(email="fulan@pondok.id", name="Santri Fulan", role=Role.SANTRI),
    }
    async with session_factory() as session:
        for user in people.values():
            user.password = DUMMY_PASSWORD_HASH
            user.is_active = True
            session.add(user)
        await session.commit()
    return people


@pytest.fixture
async def chat(session_factory, users):
    ustad, parent = users["ustad"], users["orangtua"]
    chat = Chat(
        id="C1",
        participant1_id=ustad.id,
        participant2_id=parent.id,
        participant1_name=ustad.name,
        participant2_name=parent.name,
        pair_key=make_pair_key(ustad.id, parent.id),
        created_at=get_utc_now(),
    )
    async with session_factory() as session:
        session.add(chat)
        await session.commit()
    return chat


@pytest.fixture
async def client(session_factory, notifier):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


def auth_headers(user: User) -> dict:
    token = create_access_token({"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth():
    return auth_headers
