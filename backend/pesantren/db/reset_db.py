import asyncio

from pesantren.db.database import engine, Base, AsyncSessionLocal, seed_demo_users, DEMO_USERS, DEMO_PASSWORD
from pesantren.db.models import user, chat_data  # noqa: F401  (register tables)

async def reset_database():
    print("--- Resetting database ---")
    async with engine.begin() as conn:
        print("1. Dropping all tables...")
        await conn.run_sync(Base.metadata.drop_all)
        print("2. Creating tables from the current models...")
        await conn.run_sync(Base.metadata.create_all)

    print("3. Seeding demo users...")
    async with AsyncSessionLocal() as session:
        await seed_demo_users(session)

    for email, _, role in DEMO_USERS:
        print(f"   - {role:<9} {email} / {DEMO_PASSWORD}")
    print("--- Done ---")

if __name__ == "__main__":
    asyncio.run(reset_database())
